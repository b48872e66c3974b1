"""
Mapper-specific exception classes.

Describe-time errors are permanent until the record definition changes.
Operation-time errors are raised per call by the descriptor functions and
latched by the coordinators in `dbmap.session`.
"""
import sqlite3


class DatabaseError(Exception):
    """Base class for all dbmap errors.
    """


class DescribeError(DatabaseError):
    """A record type cannot be mapped to a table.
    """


class OperationError(DatabaseError):
    """A database operation failed.
    """


class NotARecordError(DescribeError):
    """Argument is not a dataclass record type or instance.
    """


class NoManagedFieldsError(DescribeError):
    """Record type declares no managed columns.
    """


class MissingTableError(DescribeError):
    """No field of the record type owns the table declaration.
    """


class MultipleTableError(DescribeError):
    """More than one field owns the table declaration.
    """


class MultiplePrimaryKeyError(DescribeError):
    """More than one field owns the primary key declaration.
    """


class PrimaryKeyTypeError(DescribeError):
    """Primary key field is not a 64-bit signed integer.
    """


class UnsupportedFieldTypeError(DescribeError):
    """Managed field type has no storage class.
    """


class DuplicateColumnError(DescribeError):
    """Two managed fields resolve to the same column name.
    """


class MalformedIndexError(DescribeError):
    """Index declaration cannot be parsed.
    """


class DuplicateIndexSequenceError(MalformedIndexError):
    """Two columns of one index group share a sequence number.
    """


class ArgumentTypeError(OperationError):
    """Field value does not match its declared type.
    """


class RecordTypeError(ArgumentTypeError):
    """Record is not an instance of the described type.
    """


class UnknownColumnError(OperationError):
    """Column name is not managed by the descriptor.
    """


class MissingPrimaryKeyError(OperationError):
    """Operation requires a primary key the descriptor does not have.
    """


class FrozenRecordError(OperationError):
    """Destination record is frozen and cannot receive scanned values.
    """


class NotASequenceError(OperationError):
    """Retrieve destination is not a mutable sequence.
    """


class NoRowsError(OperationError):
    """Query expected a row and found none.
    """


class TransactionError(OperationError):
    """Invalid transaction state transition.
    """


class NestedTransactionError(TransactionError):
    """A transaction is already open.
    """


class NoActiveTransactionError(TransactionError):
    """No transaction is open to commit or roll back.
    """


class EngineError(OperationError):
    """Error reported by the SQL engine, surfaced verbatim.
    """


class ScanError(EngineError):
    """Engine value cannot be stored in the destination field.
    """


# Driver errors wrapped into EngineError by the engine adapter
# (sqlite3 raises OverflowError binding integers outside 64 bits)
DriverError = (
    sqlite3.Error,
    OverflowError,
    )
