"""
Unit tests for the transaction manager against a mocked engine connection.
"""
import logging

import pytest
from dbmap.exceptions import EngineError, NestedTransactionError
from dbmap.exceptions import NoActiveTransactionError
from dbmap.transaction import Transaction, TransactionManager


@pytest.fixture
def manager(mocker):
    connection = mocker.MagicMock(name='Connection')
    connection.closed = False
    return TransactionManager(connection, statement_cache_size=2)


def test_begin_and_commit(manager):
    manager.begin()
    assert manager.in_transaction
    tx = manager.connection.begin.return_value

    manager.commit()
    tx.commit.assert_called_once()
    assert not manager.in_transaction


def test_nested_begin(manager):
    manager.begin()
    with pytest.raises(NestedTransactionError):
        manager.begin()
    manager.connection.begin.assert_called_once()


@pytest.mark.parametrize('action', ['commit', 'rollback', 'end'])
def test_no_active_transaction(manager, action):
    with pytest.raises(NoActiveTransactionError):
        getattr(manager, action)()


def test_end_commits_without_error(manager):
    manager.begin()
    tx = manager.transaction
    manager.end()
    tx.commit.assert_called_once()
    tx.rollback.assert_not_called()


def test_end_rolls_back_with_error(manager):
    manager.begin()
    tx = manager.transaction
    manager.set_error(EngineError('boom'))
    manager.end()
    tx.rollback.assert_called_once()
    tx.commit.assert_not_called()


def test_failed_commit_clears_transaction(manager):
    manager.begin()
    manager.transaction.commit.side_effect = EngineError('database is locked')
    with pytest.raises(EngineError):
        manager.commit()
    assert not manager.in_transaction


def test_first_error_wins(manager):
    first = EngineError('first')
    manager.set_error(first)
    manager.set_error(EngineError('second'))
    manager.set_error(None)
    assert manager.error is first
    assert not manager.ok

    manager.clear_error()
    assert manager.ok
    assert manager.error is None


def test_statement_cache(manager):
    stmt, cached = manager.statement('SELECT 1')
    assert cached is False
    assert manager.statement('SELECT 1') == (stmt, True)
    manager.connection.prepare.assert_called_once_with('SELECT 1')


def test_statement_cache_is_bounded(manager):
    for sql in ('SELECT 1', 'SELECT 2', 'SELECT 3'):
        manager.statement(sql)
    assert len(manager.statements) == 2
    assert 'SELECT 1' not in manager.statements


def test_distinct_text_cached_separately(manager):
    manager.statement('SELECT 1')
    manager.statement('select 1')
    assert manager.connection.prepare.call_count == 2


def test_trace_flags(manager, caplog):
    manager.trace = True
    with caplog.at_level(logging.INFO, logger='dbmap.transaction'):
        manager.report('SELECT 1', False)
        manager.begin()
        manager.report('SELECT 1', True)
        manager.set_error(EngineError('boom'))
        manager.report('SELECT 1', True)

    messages = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
    assert messages == [
        'dbmap [---] SELECT 1',
        'dbmap [---] BEGIN',
        'dbmap [CT-] SELECT 1',
        'dbmap [CTE] SELECT 1',
    ]


def test_no_trace_by_default(manager, caplog):
    with caplog.at_level(logging.INFO, logger='dbmap.transaction'):
        manager.report('SELECT 1', False)
    assert not [r for r in caplog.records if r.levelno == logging.INFO]


def test_close_rolls_back(manager):
    manager.begin()
    tx = manager.transaction
    manager.statement('SELECT 1')
    manager.close()

    tx.rollback.assert_called_once()
    manager.connection.close.assert_called_once()
    assert len(manager.statements) == 0


class TestTransactionContext:

    def test_commit_on_success(self, manager):
        with Transaction(manager) as state:
            assert state.in_transaction
            tx = state.transaction
        tx.commit.assert_called_once()
        assert not manager.in_transaction

    def test_exception_latched_and_rolled_back(self, manager):
        with pytest.raises(ValueError), Transaction(manager):
            tx = manager.transaction
            raise ValueError('bad record')

        tx.rollback.assert_called_once()
        assert isinstance(manager.error, ValueError)

    def test_nested_is_latched(self, manager):
        manager.begin()
        with Transaction(manager):
            pass
        assert isinstance(manager.error, NestedTransactionError)
        assert manager.in_transaction

    def test_skipped_when_error_latched(self, manager):
        manager.set_error(EngineError('earlier'))
        with Transaction(manager):
            pass
        manager.connection.begin.assert_not_called()
