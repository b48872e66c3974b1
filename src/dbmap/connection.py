"""
Engine adapter over a DBAPI connection.

This module provides:
1. Engine creation and management through a thread-safe SQLAlchemy registry
2. The `Connection` wrapper exposing the prepare/exec/query/begin surface the
   coordinators consume
3. `Statement` (a prepared command) and `EngineTransaction`

The DBAPI connection is configured by the dialect strategy so that the
driver never opens transactions implicitly; `Connection.begin()` is the only
way a transaction starts.
"""
import atexit
import logging
import threading
import time
from collections.abc import Sequence
from typing import Any, Self

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from dbmap.cursor import Cursor, Result, translate_errors
from dbmap.exceptions import EngineError
from dbmap.options import DatabaseOptions
from dbmap.strategy import DatabaseStrategy, get_strategy

__all__ = [
    'Connection',
    'Statement',
    'EngineTransaction',
    'get_engine_for_options',
    'dispose_all_engines',
    ]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def get_engine_for_options(options: DatabaseOptions) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = f'{options.drivername}:{options.database}:{options.timeout}:{options.cached_statements}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        strategy = get_strategy(options.drivername)
        url = sa.make_url(strategy.build_connection_url(options))
        engine = sa.create_engine(url, poolclass=NullPool, **strategy.get_engine_kwargs(options))

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class Statement:
    """Prepared command bound to one connection.
    """

    def __init__(self, connection: 'Connection', sql: str) -> None:
        self.connection = connection
        self.sql = sql

    def __repr__(self) -> str:
        return f'Statement({self.sql!r})'

    def exec(self, args: Sequence[Any] = ()) -> Result:
        """Execute a command that returns no rows.
        """
        raw = self.connection.raw()
        start = time.perf_counter()
        with translate_errors(self.sql):
            cursor = raw.cursor()
            try:
                cursor.execute(self.sql, tuple(args))
                result = Result(cursor.rowcount, cursor.lastrowid)
            finally:
                cursor.close()
        self.connection.addcall(time.perf_counter() - start)
        return result

    def query(self, args: Sequence[Any] = ()) -> Cursor:
        """Execute a command that returns rows and return a cursor over them.
        """
        raw = self.connection.raw()
        start = time.perf_counter()
        with translate_errors(self.sql):
            cursor = raw.cursor()
            try:
                cursor.execute(self.sql, tuple(args))
            except Exception:
                cursor.close()
                raise
        self.connection.addcall(time.perf_counter() - start)
        return Cursor(cursor, self.sql)


class EngineTransaction:
    """Transaction opened on a connection by `Connection.begin()`.
    """

    def __init__(self, connection: 'Connection') -> None:
        self.connection = connection
        self.active = True

    def _finish(self, action: str) -> None:
        if not self.active:
            raise EngineError(f'transaction already finished, cannot {action}')
        strategy = self.connection.strategy
        raw = self.connection.raw()
        self.active = False
        with translate_errors(action.upper()):
            getattr(strategy, action)(raw)

    def commit(self) -> None:
        """Commit the transaction.

        The engine may keep the transaction open when COMMIT fails (deferred
        constraint violation, busy database); it is then rolled back so the
        connection is left idle, and the commit error is raised.
        """
        try:
            self._finish('commit')
        except EngineError:
            self._abandon()
            raise

    def _abandon(self) -> None:
        strategy = self.connection.strategy
        raw = self.connection.raw()
        if not strategy.in_transaction(raw):
            return
        logger.warning('Commit failed, rolling back the open transaction')
        with translate_errors('ROLLBACK'):
            strategy.rollback(raw)

    def rollback(self) -> None:
        self._finish('rollback')


class Connection:
    """Wraps a DBAPI connection with the engine surface used by the mapper.

    Tracks query counts and timing, and supports the context manager
    protocol for explicit resource management.
    """

    def __init__(self, dbapi_connection: Any, strategy: DatabaseStrategy | None = None,
                 pooled: Any = None) -> None:
        self.dbapi_connection = dbapi_connection
        self.strategy = strategy or get_strategy()
        self._pooled = pooled
        self.calls = 0
        self.time = 0.0
        self.strategy.configure_connection(dbapi_connection)

    @classmethod
    def from_options(cls, options: DatabaseOptions) -> Self:
        """Open a new connection through the engine registry.
        """
        engine = get_engine_for_options(options)
        pooled = engine.raw_connection()
        return cls(pooled.driver_connection, get_strategy(options.drivername), pooled=pooled)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self.dbapi_connection is None

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    def raw(self) -> Any:
        """Return the open DBAPI connection.

        Raises
            EngineError: If the connection has been closed
        """
        if self.dbapi_connection is None:
            raise EngineError('connection is closed')
        return self.dbapi_connection

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def prepare(self, sql: str) -> Statement:
        """Prepare a command for repeated execution.

        Raises
            EngineError: If the connection is closed or the command is empty
        """
        self.raw()
        if not sql or not sql.strip():
            raise EngineError('cannot prepare an empty command')
        return Statement(self, sql)

    def begin(self) -> EngineTransaction:
        """Open a transaction.
        """
        with translate_errors('BEGIN'):
            self.strategy.begin(self.raw())
        return EngineTransaction(self)

    def close(self) -> None:
        """Close the DBAPI connection (returning it to its pool if pooled).
        """
        if self.dbapi_connection is None:
            return
        if self._pooled is not None:
            self._pooled.close()
        else:
            self.dbapi_connection.close()
        self.dbapi_connection = None
        self._pooled = None
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1, self.calls):.3f}s per query)')
