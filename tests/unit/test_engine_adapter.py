"""
Unit tests for the engine registry, connection wrapper and dialect strategy.
"""
import sqlite3

import pytest
from dbmap.connection import Connection, dispose_all_engines
from dbmap.connection import get_engine_for_options
from dbmap.exceptions import EngineError
from dbmap.options import DatabaseOptions
from dbmap.strategy import SQLiteStrategy, get_available_dialects, get_strategy
from dbmap.strategy import get_strategy_class, is_supported_dialect


@pytest.fixture(autouse=True)
def empty_registry():
    dispose_all_engines()
    yield
    dispose_all_engines()


@pytest.fixture
def create_engine(mocker):
    return mocker.patch('dbmap.connection.sa.create_engine')


def test_engine_created_once_per_options(create_engine):
    """Test engines are reused for equal options"""
    options = DatabaseOptions(database='app.db', timeout=2.0)

    first = get_engine_for_options(options)
    second = get_engine_for_options(DatabaseOptions(database='app.db', timeout=2.0))

    assert first is second
    create_engine.assert_called_once()
    url = create_engine.call_args.args[0]
    assert url.drivername == 'sqlite'
    assert url.database == 'app.db'
    kwargs = create_engine.call_args.kwargs
    assert kwargs['connect_args'] == {'timeout': 2.0, 'cached_statements': 128}


def test_distinct_options_get_distinct_engines(create_engine):
    create_engine.side_effect = lambda *args, **kwargs: object()
    first = get_engine_for_options(DatabaseOptions(database='one.db'))
    second = get_engine_for_options(DatabaseOptions(database='two.db'))
    assert first is not second


def test_dispose_all_engines(create_engine):
    engine = get_engine_for_options(DatabaseOptions())
    dispose_all_engines()
    engine.dispose.assert_called_once()
    get_engine_for_options(DatabaseOptions())
    assert create_engine.call_count == 2


def test_from_options_uses_driver_connection(create_engine, mocker):
    raw = mocker.MagicMock(name='sqlite3_connection')
    pooled = create_engine.return_value.raw_connection.return_value
    pooled.driver_connection = raw

    cn = Connection.from_options(DatabaseOptions())

    assert cn.dbapi_connection is raw
    assert raw.isolation_level is None
    cn.close()
    pooled.close.assert_called_once()
    raw.close.assert_not_called()
    assert cn.closed


class TestConnection:

    @pytest.fixture
    def cn(self):
        cn = Connection(sqlite3.connect(':memory:'))
        yield cn
        cn.close()

    def test_configured_for_explicit_transactions(self, cn):
        assert cn.dbapi_connection.isolation_level is None
        assert cn.dialect == 'sqlite'

    def test_exec_and_query(self, cn):
        cn.prepare('CREATE TABLE t (a integer)').exec()
        result = cn.prepare('INSERT INTO t (a) VALUES (?)').exec([5])
        assert result.rows_affected == 1
        assert result.last_insert_id == 1

        cursor = cn.prepare('SELECT a FROM t').query()
        assert list(cursor) == [(5,)]
        assert cn.calls == 3

    def test_prepared_statement_is_reusable(self, cn):
        cn.prepare('CREATE TABLE t (a integer)').exec()
        stmt = cn.prepare('INSERT INTO t (a) VALUES (?)')
        for value in range(3):
            stmt.exec([value])
        cursor = cn.prepare('SELECT count(*) FROM t').query()
        assert list(cursor) == [(3,)]

    def test_engine_errors_wrapped(self, cn):
        with pytest.raises(EngineError, match='no such table') as excinfo:
            cn.prepare('SELECT * FROM missing').query()
        assert isinstance(excinfo.value.__cause__, sqlite3.Error)

    def test_bind_overflow_wrapped(self, cn):
        cn.prepare('CREATE TABLE t (a integer)').exec()
        with pytest.raises(EngineError):
            cn.prepare('INSERT INTO t (a) VALUES (?)').exec([2**64])

    def test_empty_command(self, cn):
        with pytest.raises(EngineError):
            cn.prepare('  ')

    def test_transaction_rollback(self, cn):
        cn.prepare('CREATE TABLE t (a integer)').exec()
        tx = cn.begin()
        cn.prepare('INSERT INTO t (a) VALUES (1)').exec()
        assert cn.dbapi_connection.in_transaction
        tx.rollback()
        assert not cn.dbapi_connection.in_transaction
        assert list(cn.prepare('SELECT a FROM t').query()) == []

        with pytest.raises(EngineError):
            tx.commit()

    def test_failed_commit_rolls_back(self, cn):
        """Test a commit refused by a deferred constraint leaves the connection idle"""
        raw = cn.dbapi_connection
        raw.execute('PRAGMA foreign_keys = ON')
        cn.prepare('CREATE TABLE p (id integer PRIMARY KEY)').exec()
        cn.prepare('CREATE TABLE c (pid integer REFERENCES p (id) DEFERRABLE INITIALLY DEFERRED)').exec()

        tx = cn.begin()
        cn.prepare('INSERT INTO c (pid) VALUES (99)').exec()
        with pytest.raises(EngineError, match='FOREIGN KEY constraint failed'):
            tx.commit()

        assert not raw.in_transaction
        assert list(cn.prepare('SELECT count(*) FROM c').query()) == [(0,)]
        cn.begin().commit()

    def test_ddl_is_transactional(self, cn):
        tx = cn.begin()
        cn.prepare('CREATE TABLE t (a integer)').exec()
        tx.rollback()
        with pytest.raises(EngineError):
            cn.prepare('SELECT a FROM t').query()

    def test_closed_connection(self):
        cn = Connection(sqlite3.connect(':memory:'))
        stmt = cn.prepare('SELECT 1')
        cn.close()
        cn.close()
        assert cn.closed
        with pytest.raises(EngineError):
            stmt.exec()
        with pytest.raises(EngineError):
            cn.prepare('SELECT 1')

    def test_context_manager(self):
        with Connection(sqlite3.connect(':memory:')) as cn:
            assert not cn.closed
        assert cn.closed


def test_strategy_registry():
    assert get_available_dialects() == ['sqlite']
    assert is_supported_dialect('sqlite')
    assert not is_supported_dialect('postgresql')
    assert get_strategy_class('sqlite') is SQLiteStrategy
    assert get_strategy() is get_strategy('sqlite')
    with pytest.raises(ValueError):
        get_strategy('oracle')


def test_sqlite_strategy():
    strategy = SQLiteStrategy()
    assert strategy.row_id_alias == 'rowid'
    assert strategy.replace_verb == 'INSERT OR REPLACE'
    assert strategy.build_connection_url(DatabaseOptions(database='x.db')) == 'sqlite:///x.db'
    assert strategy.quote_identifier('a"b') == '"a""b"'
    assert strategy.placeholders(2) == '?, ?'
    assert SQLiteStrategy.get_required_options() == ['database']
