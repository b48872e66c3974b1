"""
Describe-once record mapping for SQLite.

A record type is a dataclass whose fields declare their mapping:

    @dataclass
    class Rec:
        id: int = primary_key(table='rec')
        name: str = column('*', index='*')

All record operations can be called either as:
- Module functions: db.insert(cn, records)
- Database methods: cn.insert(records)

The module functions are facades over the `Database` methods.
"""
__version__ = '0.1.0'

from collections.abc import Iterable, MutableSequence
from typing import Any

from dbmap.connection import Connection
from dbmap.cursor import Cursor, Result
from dbmap.descriptor import Descriptor, build_descriptor, clear_descriptor_cache
from dbmap.descriptor import describe
from dbmap.exceptions import ArgumentTypeError, DatabaseError, DescribeError
from dbmap.exceptions import DuplicateColumnError, DuplicateIndexSequenceError
from dbmap.exceptions import EngineError, FrozenRecordError, MalformedIndexError
from dbmap.exceptions import MissingPrimaryKeyError, MissingTableError
from dbmap.exceptions import MultiplePrimaryKeyError, MultipleTableError
from dbmap.exceptions import NestedTransactionError, NoActiveTransactionError
from dbmap.exceptions import NoManagedFieldsError, NoRowsError
from dbmap.exceptions import NotARecordError, NotASequenceError, OperationError
from dbmap.exceptions import PrimaryKeyTypeError, RecordTypeError, ScanError
from dbmap.exceptions import TransactionError, UnknownColumnError
from dbmap.exceptions import UnsupportedFieldTypeError
from dbmap.fields import column, primary_key, table_name
from dbmap.options import DatabaseOptions
from dbmap.session import Database, Session, connect
from dbmap.transaction import Transaction as transaction


def create_table(cn: Database, record_type: Any) -> None:
    """Drop and recreate the table and indexes of a record type.
    """
    cn.create_table(record_type)


def insert(cn: Database, records: Iterable[Any]) -> int:
    """Insert records of one type in a single transaction.
    """
    return cn.insert(records)


def insert_or_replace(cn: Database, records: Iterable[Any]) -> int:
    return cn.insert_or_replace(records)


def update(cn: Database, record: Any, *columns: str) -> int:
    """Store a record by its primary key.
    """
    return cn.update(record, *columns)


def delete(cn: Database, record_type: Any, tail: str = '', *args: Any) -> int:
    return cn.delete(record_type, tail, *args)


def truncate(cn: Database, record_type: Any) -> int:
    return cn.truncate(record_type)


def retrieve(cn: Database, dest: MutableSequence, record_type: Any, tail: str = '',
             *args: Any) -> MutableSequence:
    """Append the selected records to `dest`.
    """
    return cn.retrieve(dest, record_type, tail, *args)


def select(cn: Database, record_type: Any, tail: str = '', *args: Any) -> list[Any]:
    """Return the selected records as a list.
    """
    return cn.select(record_type, tail, *args)


__all__ = [
    'connect',
    'Database',
    'Session',
    'Connection',
    'Cursor',
    'Result',
    'DatabaseOptions',
    'Descriptor',
    'describe',
    'build_descriptor',
    'clear_descriptor_cache',
    'column',
    'primary_key',
    'table_name',
    'transaction',
    'create_table',
    'insert',
    'insert_or_replace',
    'update',
    'delete',
    'truncate',
    'retrieve',
    'select',
    'DatabaseError',
    'DescribeError',
    'OperationError',
    'NotARecordError',
    'NoManagedFieldsError',
    'MissingTableError',
    'MultipleTableError',
    'MultiplePrimaryKeyError',
    'PrimaryKeyTypeError',
    'UnsupportedFieldTypeError',
    'DuplicateColumnError',
    'MalformedIndexError',
    'DuplicateIndexSequenceError',
    'ArgumentTypeError',
    'RecordTypeError',
    'UnknownColumnError',
    'MissingPrimaryKeyError',
    'FrozenRecordError',
    'NotASequenceError',
    'NoRowsError',
    'TransactionError',
    'NestedTransactionError',
    'NoActiveTransactionError',
    'EngineError',
    'ScanError',
    ]
