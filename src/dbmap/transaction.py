"""
Transaction lifecycle and the state shared by joined coordinators.

A `TransactionManager` owns one connection together with its open
transaction, its latched error and its prepared-statement cache. Every
coordinator built over the same manager (a `Database` and the sessions
joined to it) observes the same transaction and the same error.

Examples
    with Transaction(manager):
        session.insert(rec)
        other.update(rec2)
"""
import logging
from typing import Any

import cachetools

from dbmap.connection import Connection, EngineTransaction, Statement
from dbmap.exceptions import DatabaseError, NestedTransactionError
from dbmap.exceptions import NoActiveTransactionError

__all__ = [
    'TransactionManager',
    'Transaction',
    ]

logger = logging.getLogger(__name__)


class TransactionManager:
    """Connection, open transaction, latched error and statement cache.

    Not safe for concurrent use by more than one logical caller.
    """

    def __init__(self, connection: Connection, statement_cache_size: int = 128,
                 trace: bool = False) -> None:
        self.connection = connection
        self.transaction: EngineTransaction | None = None
        self.error: BaseException | None = None
        self.statements: cachetools.LRUCache = cachetools.LRUCache(maxsize=statement_cache_size)
        self.trace = trace

    def __repr__(self) -> str:
        return (f'TransactionManager(transaction={self.in_transaction}, '
                f'error={self.error!r}, statements={len(self.statements)})')

    @property
    def in_transaction(self) -> bool:
        return self.transaction is not None

    @property
    def ok(self) -> bool:
        return self.error is None

    def set_error(self, err: BaseException | None) -> None:
        """Latch an error; None is ignored and the first error wins.
        """
        if err is None:
            return
        if self.error is None:
            self.error = err
            logger.debug(f'Latched error: {err!r}')
        else:
            logger.debug(f'Ignoring error {err!r}, already latched {self.error!r}')

    def clear_error(self) -> None:
        self.error = None

    def begin(self) -> None:
        """Open a transaction.

        Raises
            NestedTransactionError: If a transaction is already open
        """
        if self.transaction is not None:
            raise NestedTransactionError('transaction already in progress')
        self.report('BEGIN', False)
        self.transaction = self.connection.begin()
        logger.debug('Started transaction')

    def _take(self, action: str) -> EngineTransaction:
        if self.transaction is None:
            raise NoActiveTransactionError(f'no transaction to {action}')
        tx, self.transaction = self.transaction, None
        return tx

    def commit(self) -> None:
        """Commit the open transaction.

        Raises
            NoActiveTransactionError: If no transaction is open
        """
        tx = self._take('commit')
        self.report('COMMIT', False)
        tx.commit()
        logger.debug('Committed transaction')

    def rollback(self) -> None:
        """Roll back the open transaction.

        Raises
            NoActiveTransactionError: If no transaction is open
        """
        tx = self._take('roll back')
        self.report('ROLLBACK', False)
        tx.rollback()
        logger.warning('Rolled back the current transaction')

    def end(self) -> None:
        """Commit if no error is latched, otherwise roll back.

        Raises
            NoActiveTransactionError: If no transaction is open
        """
        if self.error is None:
            self.commit()
        else:
            self.rollback()

    def statement(self, sql: str) -> tuple[Statement, bool]:
        """Return the prepared statement for `sql` and whether it was cached.
        """
        stmt = self.statements.get(sql)
        if stmt is not None:
            return stmt, True
        stmt = self.connection.prepare(sql)
        self.statements[sql] = stmt
        logger.debug(f'Prepared statement ({len(self.statements)} cached): {sql}')
        return stmt, False

    def report(self, sql: str, cached: bool) -> None:
        """Log a submitted command with its cached/transaction/error flags.
        """
        if self.trace:
            flags = ('C' if cached else '-') + ('T' if self.transaction else '-') + ('E' if self.error else '-')
            logger.info(f'dbmap [{flags}] {sql}')
        else:
            logger.debug(f'Executing: {sql}')

    def close(self) -> None:
        """Roll back any open transaction and release the connection.
        """
        if self.connection.closed:
            return
        try:
            if self.transaction is not None:
                self.rollback()
        finally:
            self.statements.clear()
            self.connection.close()


class Transaction:
    """Context manager running a block in one transaction.

    The transaction is ended on exit: committed when no error is latched,
    rolled back otherwise. An exception escaping the block is latched first
    so the block's work is rolled back, then propagated. Opening a transaction
    while one is open latches `NestedTransactionError`.

    Examples
        with Transaction(db.state):
            db.insert(records)
            db.update(rec, 'Name')
    """

    def __init__(self, manager: TransactionManager) -> None:
        self.manager = manager
        self.owned = False

    def __enter__(self) -> TransactionManager:
        if self.manager.ok:
            try:
                self.manager.begin()
                self.owned = True
            except DatabaseError as exc:
                self.manager.set_error(exc)
        return self.manager

    def __exit__(self, exc_type: type | None, value: BaseException | None, traceback: Any | None) -> None:
        if value is not None:
            self.manager.set_error(value)
        if self.owned and self.manager.in_transaction:
            try:
                self.manager.end()
            except DatabaseError as exc:
                self.manager.set_error(exc)
        self.owned = False
