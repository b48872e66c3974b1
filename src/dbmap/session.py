"""
Error-latched CRUD coordinators.

`Database` maps any number of record types over one connection. `Session`
is bound to one record type and can be joined to other sessions (or to a
`Database`) so that one transaction and one error span several tables.

Every operation follows the same discipline:

- If an error is latched the call does nothing and returns its empty
  result (None, False, 0, or the untouched destination).
- Otherwise the first `DatabaseError` raised during the call is latched and
  the call returns its empty result. Later failures never replace it until
  `clear_error()` is called.
- Write operations run inside a transaction: one is opened if none is
  active, and it is ended by the same call only if that call opened it.

Examples
    >>> db = connect(database=':memory:')
    >>> db.create_table(Rec)
    >>> db.insert([Rec(name='Athos'), Rec(name='Porthos')])
    >>> db.select(Rec, 'WHERE name LIKE ?', 'A%')
    >>> if not db.ok:
    ...     print(db.error)
"""
import logging
from collections.abc import Callable, Iterable, MutableSequence
from contextlib import contextmanager
from functools import wraps
from typing import Any, Self

from dbmap.connection import Connection
from dbmap.cursor import Cursor, Result
from dbmap.descriptor import Descriptor, describe
from dbmap.exceptions import DatabaseError, NoRowsError, NotASequenceError
from dbmap.exceptions import OperationError
from dbmap.marshal import Target, buffer_targets, copy_record, insert_args
from dbmap.marshal import record_factory, select_targets, update_args
from dbmap.options import DatabaseOptions, load_options
from dbmap.transaction import Transaction, TransactionManager
from dbmap.utils.sql_generation import count_sql, create_table_sql, delete_sql
from dbmap.utils.sql_generation import drop_table_sql, insert_or_replace_sql
from dbmap.utils.sql_generation import insert_sql, select_sql, truncate_sql
from dbmap.utils.sql_generation import update_sql

__all__ = [
    'Database',
    'Session',
    'connect',
    'latched',
    'owned_transaction',
    ]

logger = logging.getLogger(__name__)


def latched(empty: Any = None):
    """Decorator applying the latched-error discipline to a coordinator method.

    Args:
        empty: Result returned when the call is skipped or fails. A callable
            is invoked with the call's arguments to build it.

    Usage:
        @latched(0)
        def delete(self, record_type, tail='', *args):
            ...
    """
    def decorator(f: Callable) -> Callable:
        def empty_result(args, kwargs):
            return empty(*args, **kwargs) if callable(empty) else empty

        @wraps(f)
        def inner(self, *args, **kwargs):
            state = self.state
            if state.error is not None:
                logger.debug(f'Skipping {f.__name__}, error latched: {state.error}')
                return empty_result(args, kwargs)
            try:
                return f(self, *args, **kwargs)
            except DatabaseError as exc:
                state.set_error(exc)
                return empty_result(args, kwargs)

        return inner
    return decorator


@contextmanager
def owned_transaction(state: TransactionManager):
    """Run a block in the open transaction, or in a new one it owns.

    A transaction opened here is committed when the block succeeds and rolled
    back when it raises. A transaction opened by the caller is left open; a
    failure is latched so that the caller's `end()` rolls it back.
    """
    owned = not state.in_transaction
    if owned:
        state.begin()
    try:
        yield
    except BaseException as exc:
        if isinstance(exc, DatabaseError):
            state.set_error(exc)
        if owned and state.in_transaction:
            state.rollback()
        raise
    if owned:
        state.end()


def _as_connection(connection: Any) -> Connection:
    if isinstance(connection, Connection):
        return connection
    return Connection(connection)


def _check_sequence(dest: Any, name: str) -> None:
    if not isinstance(dest, MutableSequence):
        raise NotASequenceError(f'{name} expects a mutable sequence destination, got {type(dest).__name__}')


def _records(records: Any, name: str) -> list[Any]:
    if not isinstance(records, Iterable) or isinstance(records, str | bytes):
        raise NotASequenceError(f'{name} expects an iterable of records, got {type(records).__name__}')
    return list(records)


class Coordinator:
    """Operations and error/transaction state common to `Database` and `Session`.
    """

    def __init__(self, state: TransactionManager) -> None:
        self.state = state
        self.result: Result | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    # error state

    @property
    def ok(self) -> bool:
        """True if no error is latched."""
        return self.state.ok

    @property
    def error(self) -> BaseException | None:
        """The latched error, None if no error has occurred."""
        return self.state.error

    def set_error(self, err: BaseException | None) -> None:
        """Latch an error to halt further calls; None is ignored.

        Lets application checks share the coordinator's short-circuiting.
        Only the first error is kept; use `clear_error()` to unset it.
        """
        self.state.set_error(err)

    def set_errorf(self, message: str, *args: Any) -> None:
        """Latch an `OperationError` built from a %-style message."""
        if self.state.error is None:
            self.state.set_error(OperationError(message % args if args else message))

    def clear_error(self) -> None:
        self.state.clear_error()

    def trace(self, on: bool = True) -> None:
        """Log every submitted command at INFO with its `[CTE]` flags.

        C: statement was cached, T: transaction pending, E: error latched.
        """
        self.state.trace = on

    # transactions

    @property
    def in_transaction(self) -> bool:
        return self.state.in_transaction

    @latched()
    def begin(self) -> None:
        """Open a transaction; latches `NestedTransactionError` if one is open."""
        self.state.begin()

    @latched()
    def commit(self) -> None:
        """Commit the open transaction; latches `NoActiveTransactionError` if none."""
        self.state.commit()

    def rollback(self) -> None:
        """Roll back the open transaction, whether or not an error is latched.
        """
        try:
            self.state.rollback()
        except DatabaseError as exc:
            self.state.set_error(exc)

    def end(self) -> None:
        """Commit if no error is latched, otherwise roll back.

        Finalizes a caller-opened transaction according to the accumulated
        outcome of the calls made inside it.
        """
        try:
            self.state.end()
        except DatabaseError as exc:
            self.state.set_error(exc)

    def transaction(self) -> Transaction:
        """Context manager running a block in one transaction.

        Examples
            with db.transaction():
                db.insert(batch)
                db.delete(Rec, 'WHERE stale = 1')
        """
        return Transaction(self.state)

    # raw commands

    def _exec(self, sql: str, args: Iterable[Any] = ()) -> Result:
        stmt, cached = self.state.statement(sql)
        self.state.report(sql, cached)
        self.result = stmt.exec(list(args))
        return self.result

    def _query(self, sql: str, args: Iterable[Any] = ()) -> Cursor:
        stmt, cached = self.state.statement(sql)
        self.state.report(sql, cached)
        return stmt.query(list(args))

    @latched()
    def execute(self, sql: str, *args: Any) -> Result:
        """Prepare (if not cached) and execute a command that returns no rows.
        """
        return self._exec(sql, args)

    @latched()
    def query(self, sql: str, *args: Any) -> Cursor:
        """Prepare (if not cached) and execute a command that returns rows.
        """
        return self._query(sql, args)

    # shared record operations

    def _create(self, dsc: Descriptor) -> None:
        drop_table, drop_indexes = drop_table_sql(dsc)
        create_table, create_indexes = create_table_sql(dsc)
        with owned_transaction(self.state):
            for sql in (drop_table, *drop_indexes, create_table, *create_indexes):
                self._exec(sql)
        logger.debug(f'Created table {dsc.table} with {len(dsc.indexes)} indexes')

    def _insert(self, dsc: Descriptor, records: list[Any], replace: bool) -> int:
        sql = insert_or_replace_sql(dsc) if replace else insert_sql(dsc)
        count = 0
        with owned_transaction(self.state):
            for record in records:
                values, set_id = insert_args(dsc, record)
                result = self._exec(sql, values)
                if set_id is not None:
                    set_id(result.last_insert_id)
                count += 1
        logger.debug(f'Inserted {count} records into {dsc.table}')
        return count

    def _update(self, dsc: Descriptor, record: Any, columns: tuple[str, ...]) -> int:
        sql = update_sql(dsc, columns)
        values = update_args(dsc, record, columns)
        with owned_transaction(self.state):
            result = self._exec(sql, values)
        return result.rows_affected

    def _delete(self, sql: str, args: Iterable[Any]) -> int:
        with owned_transaction(self.state):
            result = self._exec(sql, args)
        return result.rows_affected

    def _retrieve(self, dsc: Descriptor, dest: MutableSequence, tail: str, args: Iterable[Any]) -> None:
        # each row is scanned into one buffer, then copied into a fresh record
        factory = record_factory(dsc)
        buffer = factory()
        targets = buffer_targets(dsc, buffer)
        cursor = self._query(select_sql(dsc, tail), args)
        count = 0
        try:
            while cursor.next():
                cursor.scan(targets)
                dest.append(copy_record(dsc, buffer, factory))
                count += 1
        finally:
            cursor.close()
        logger.debug(f'Retrieved {count} {dsc.record_type.__name__} records from {dsc.table}')

    def _count(self, dsc: Descriptor, tail: str, args: Iterable[Any]) -> int:
        cursor = self._query(count_sql(dsc, tail), args)
        try:
            cursor.next()
            return cursor.row[0]
        finally:
            cursor.close()

    def close(self) -> None:
        """Release the connection, rolling back any open transaction.

        Joined coordinators share the connection and are closed with it.
        """
        try:
            self.state.close()
        except DatabaseError as exc:
            self.state.set_error(exc)


class Database(Coordinator):
    """Record mapper over one connection, for any number of record types.

    Create with `connect()` or, over an already open connection,
    `Database.from_connection()`.
    """

    def __str__(self) -> str:
        return 'dbmap'

    def __repr__(self) -> str:
        return f'Database({self.state!r})'

    @classmethod
    def from_options(cls, options: DatabaseOptions) -> Self:
        connection = Connection.from_options(options)
        state = TransactionManager(connection, options.statement_cache_size, options.trace)
        return cls(state)

    @classmethod
    def from_connection(cls, connection: Any, statement_cache_size: int = 128,
                        trace: bool = False) -> Self:
        """Wrap an open `Connection` or sqlite3 connection.

        The connection is switched to explicit transaction control.
        """
        return cls(TransactionManager(_as_connection(connection), statement_cache_size, trace))

    def session(self, record_type: type) -> 'Session':
        """Return a `Session` for `record_type` sharing this handle's state.
        """
        return Session(describe(record_type), self.state)

    @latched()
    def create_table(self, record_type: Any) -> None:
        """Drop the table and its indexes if they exist, then recreate them.

        Existing rows are always discarded.
        """
        self._create(describe(record_type))

    @latched(0)
    def insert(self, records: Iterable[Any]) -> int:
        """Insert records of one type in a single transaction.

        The row id assigned to each record is written to its primary key
        field. The first failure stops the iteration and, when the
        transaction was opened by this call, nothing is committed.

        Returns
            Number of records inserted
        """
        records = _records(records, 'insert')
        if not records:
            return 0
        return self._insert(describe(records[0]), records, replace=False)

    @latched(0)
    def insert_or_replace(self, records: Iterable[Any]) -> int:
        """Like `insert()`, replacing rows that violate a uniqueness constraint.
        """
        records = _records(records, 'insert_or_replace')
        if not records:
            return 0
        return self._insert(describe(records[0]), records, replace=True)

    @latched(0)
    def update(self, record: Any, *columns: str) -> int:
        """Store a record by its primary key.

        `columns` names the managed columns to write; none, or a first name
        of `'*'`, writes them all.

        Returns
            Rows affected
        """
        return self._update(describe(record), record, columns)

    @latched(0)
    def delete(self, record_type: Any, tail: str = '', *args: Any) -> int:
        """Delete the rows matching `tail`, every row if it is empty.

        Examples
            >>> db.delete(Rec, 'WHERE num > ? AND num < ?', 10, 20)
        """
        return self._delete(delete_sql(describe(record_type), tail), args)

    @latched(0)
    def truncate(self, record_type: Any) -> int:
        """Delete every row of the table."""
        return self._delete(truncate_sql(describe(record_type)), ())

    @latched(lambda dest, *args, **kwargs: dest)
    def retrieve(self, dest: MutableSequence, record_type: Any, tail: str = '', *args: Any) -> MutableSequence:
        """Append one new record per selected row to `dest`.

        `tail` holds the WHERE/ORDER BY/LIMIT part of the SELECT with `?`
        placeholders bound from `args`. On failure `dest` keeps the records
        appended before it.

        Returns
            dest
        """
        _check_sequence(dest, 'retrieve')
        self._retrieve(describe(record_type), dest, tail, args)
        return dest

    @latched(lambda *args, **kwargs: [])
    def select(self, record_type: Any, tail: str = '', *args: Any) -> list[Any]:
        """Return the records matching `tail` as a new list.
        """
        dest: list[Any] = []
        try:
            self._retrieve(describe(record_type), dest, tail, args)
        except DatabaseError as exc:
            self.state.set_error(exc)
        return dest

    @latched(0)
    def count(self, record_type: Any, tail: str = '', *args: Any) -> int:
        """Count the rows matching `tail`."""
        return self._count(describe(record_type), tail, args)


class Session(Coordinator):
    """Record mapper bound to one record type.

    Sessions joined with `join()` share one connection, transaction, error
    and statement cache, so one transaction may span several tables. A
    session is not safe for concurrent use.

    Examples
        >>> people = Session.wrap(Person, sqlite3.connect(path))
        >>> pets = people.join(Pet)
        >>> people.begin()
        >>> people.insert(alice)
        >>> pets.insert(Pet(owner=alice.id, name='Rex'))
        >>> people.end()
    """

    def __init__(self, descriptor: Descriptor, state: TransactionManager) -> None:
        super().__init__(state)
        self.descriptor = descriptor
        self._cursor: Cursor | None = None
        self._targets: list[Target] | None = None

    def __str__(self) -> str:
        return 'dbmap/session'

    def __repr__(self) -> str:
        return f'Session({self.descriptor}, {self.state!r})'

    @classmethod
    def open(cls, record_type: type, options: DatabaseOptions | dict | None = None, **kwargs: Any) -> Self:
        """Open a new connection and bind a session for `record_type` to it.
        """
        options = load_options(options, **kwargs)
        connection = Connection.from_options(options)
        return cls(describe(record_type),
                   TransactionManager(connection, options.statement_cache_size, options.trace))

    @classmethod
    def wrap(cls, record_type: type, connection: Any, statement_cache_size: int = 128) -> Self:
        """Bind a session for `record_type` to an open connection.
        """
        return cls(describe(record_type), TransactionManager(_as_connection(connection), statement_cache_size))

    def join(self, record_type: type) -> 'Session':
        """Return a session for another record type sharing this session's state.
        """
        return Session(describe(record_type), self.state)

    @property
    def table(self) -> str:
        return self.descriptor.table

    @latched()
    def create(self) -> None:
        """Drop and recreate the table and its indexes."""
        self._create(self.descriptor)

    @latched(0)
    def insert(self, *records: Any) -> int:
        """Insert records in one transaction, writing back their row ids.
        """
        return self._insert(self.descriptor, list(records), replace=False)

    @latched(0)
    def insert_or_replace(self, *records: Any) -> int:
        return self._insert(self.descriptor, list(records), replace=True)

    @latched(0)
    def update(self, record: Any, *columns: str) -> int:
        """Store a record by its primary key; see `Database.update()`."""
        return self._update(self.descriptor, record, columns)

    @latched(0)
    def delete(self, tail: str = '', *args: Any) -> int:
        return self._delete(delete_sql(self.descriptor, tail), args)

    @latched(0)
    def truncate(self) -> int:
        return self._delete(truncate_sql(self.descriptor), ())

    @latched(lambda dest, *args, **kwargs: dest)
    def retrieve(self, dest: MutableSequence, tail: str = '', *args: Any) -> MutableSequence:
        _check_sequence(dest, 'retrieve')
        self._retrieve(self.descriptor, dest, tail, args)
        return dest

    @latched(lambda *args, **kwargs: [])
    def select(self, tail: str = '', *args: Any) -> list[Any]:
        dest: list[Any] = []
        try:
            self._retrieve(self.descriptor, dest, tail, args)
        except DatabaseError as exc:
            self.state.set_error(exc)
        return dest

    @latched(0)
    def count(self, tail: str = '', *args: Any) -> int:
        return self._count(self.descriptor, tail, args)

    @latched(False)
    def query_row(self, record: Any, tail: str = '', *args: Any) -> bool:
        """Copy the first selected row into `record`.

        The tail should select at most one row, e.g. with a LIMIT clause.
        Latches `NoRowsError` when nothing matches.
        """
        targets = select_targets(self.descriptor, record)
        cursor = self._query(select_sql(self.descriptor, tail), args)
        try:
            if not cursor.next():
                raise NoRowsError(f'no rows in result set from {self.descriptor.table}')
            cursor.scan(targets)
        finally:
            cursor.close()
        return True

    @latched()
    def query(self, record: Any, tail: str = '', *args: Any) -> None:
        """Start a row cursor writing each row into `record`; see `next()`.
        """
        targets = select_targets(self.descriptor, record)
        self._close_query()
        self._cursor = self._query(select_sql(self.descriptor, tail), args)
        self._targets = targets

    @latched(False)
    def next(self) -> bool:
        """Copy the next row of the current query into its record.

        Returns False when the rows are exhausted and when an error occurs;
        check `ok` to tell the two apart.
        """
        if self._cursor is None:
            return False
        try:
            if not self._cursor.next():
                self._close_query()
                return False
            self._cursor.scan(self._targets)
        except DatabaseError:
            self._close_query()
            raise
        return True

    def _close_query(self) -> None:
        if self._cursor is not None:
            self._cursor.close()
        self._cursor = None
        self._targets = None

    def close(self) -> None:
        self._close_query()
        super().close()


def connect(options: DatabaseOptions | dict | None = None, **kwargs: Any) -> Database:
    """Open a `Database` from options, a mapping or keyword arguments.

    Examples
        >>> db = connect(database='/tmp/app.db', trace=True)
        >>> db = connect(DatabaseOptions(database=':memory:'))
    """
    return Database.from_options(load_options(options, **kwargs))
