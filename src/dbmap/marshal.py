"""
Argument marshaling between record fields and SQL parameters.

- `insert_args()` - Ordered bind values plus an optional row-id write-back
- `update_args()` - SET values followed by the primary key value
- `select_targets()` - Scan targets writing a row into a record in place

Values are type checked against the declared scalar type and never coerced.
"""
import dataclasses
import logging
from collections.abc import Callable
from typing import Any

from dbmap.descriptor import ColumnMap, Descriptor
from dbmap.exceptions import ArgumentTypeError, FrozenRecordError
from dbmap.exceptions import MissingPrimaryKeyError, NotARecordError
from dbmap.exceptions import RecordTypeError, ScanError
from dbmap.fields import record_fields
from dbmap.types import ScalarType, resolve_scalar_type

__all__ = [
    'Target',
    'insert_args',
    'update_args',
    'select_targets',
    'bind_value',
    'check_record',
    'record_factory',
    'copy_record',
    ]

logger = logging.getLogger(__name__)

SCAN_ERRORS = (TypeError, ValueError, OverflowError, UnicodeDecodeError)


class Target:
    """Addressable scan target for one selected column of a record.
    """

    __slots__ = ('record', 'field', 'scalar', 'nullable', '_setter')

    def __init__(self, record: Any, field: str, scalar: ScalarType, nullable: bool = False,
                 setter: Callable[[Any, str, Any], None] = setattr) -> None:
        self.record = record
        self.field = field
        self.scalar = scalar
        self.nullable = nullable
        self._setter = setter

    def __repr__(self) -> str:
        return f'Target({type(self.record).__name__}.{self.field}: {self.scalar.name})'

    def assign(self, value: Any) -> None:
        """Convert an engine value to the declared type and store it.

        Raises
            ScanError: If the field cannot hold the value
        """
        if value is None:
            if not self.nullable:
                raise ScanError(f'converting NULL to {self.scalar.name} is unsupported ({self.field})')
            converted = None
        else:
            try:
                converted = self.scalar.from_db(value)
            except SCAN_ERRORS as exc:
                raise ScanError(f'{self.field}: {exc}') from exc
        self._setter(self.record, self.field, converted)


def _is_frozen(record: Any) -> bool:
    return type(record).__dataclass_params__.frozen


def check_record(dsc: Descriptor, record: Any) -> None:
    """Ensure `record` is an instance of the described type.

    Raises
        NotARecordError: If record is a class or not a dataclass instance
        RecordTypeError: If record is an instance of another type
    """
    if isinstance(record, type) or not dataclasses.is_dataclass(record):
        raise NotARecordError(f'expecting a record instance, got {type(record).__name__}')
    if type(record) is not dsc.record_type:
        raise RecordTypeError(
            f'expecting {dsc.record_type.__name__} record, got {type(record).__name__}')


def bind_value(col: ColumnMap, value: Any) -> Any:
    """Check a field value against its column and convert it for binding.

    Raises
        ArgumentTypeError: If the value does not match the declared type
    """
    if value is None:
        if col.nullable:
            return None
        raise ArgumentTypeError(f'{col.field} is not nullable, got None')
    if not col.scalar.check(value):
        raise ArgumentTypeError(
            f'{col.field} expects {col.scalar.name}, got {type(value).__name__} {value!r}')
    return col.scalar.to_db(value)


def insert_args(dsc: Descriptor, record: Any) -> tuple[list[Any], Callable[[int], None] | None]:
    """Build INSERT values in column order and a row-id write-back.

    The write-back is None when the descriptor has no primary key or the
    record is frozen.
    """
    check_record(dsc, record)
    values = [bind_value(col, col.get(record)) for col in dsc.columns]
    pk = dsc.primary_key
    if pk is None or _is_frozen(record):
        return values, None

    def set_id(row_id: int) -> None:
        setattr(record, pk.field, pk.scalar.from_db(row_id))

    return values, set_id


def update_args(dsc: Descriptor, record: Any,
                columns: tuple[str, ...] | list[str] | None = None) -> list[Any]:
    """Build UPDATE values: the chosen columns, then the primary key.

    Raises
        MissingPrimaryKeyError: If the descriptor has no primary key
        UnknownColumnError: If a requested column is not managed
        RecordTypeError: If record is not of the described type
    """
    pk = dsc.primary_key
    if pk is None:
        raise MissingPrimaryKeyError(f'{dsc.table} has no primary key to update by')
    check_record(dsc, record)
    values = [bind_value(col, col.get(record)) for col in dsc.resolve_columns(columns)]
    row_id = pk.get(record)
    if not pk.scalar.check(row_id):
        raise ArgumentTypeError(f'{pk.field} expects {pk.scalar.name}, got {type(row_id).__name__}')
    values.append(pk.scalar.to_db(row_id))
    return values


def _targets(dsc: Descriptor, record: Any, setter: Callable[[Any, str, Any], None]) -> list[Target]:
    targets = []
    if dsc.primary_key is not None:
        targets.append(Target(record, dsc.primary_key.field, dsc.primary_key.scalar, setter=setter))
    for col in dsc.columns:
        targets.append(Target(record, col.field, col.scalar, col.nullable, setter=setter))
    return targets


def select_targets(dsc: Descriptor, record: Any) -> list[Target]:
    """Build scan targets in SELECT column order for a destination record.

    The same list is reused for every row of a query; each row overwrites the
    record in place.

    Raises
        FrozenRecordError: If the record cannot be written
    """
    check_record(dsc, record)
    if _is_frozen(record):
        raise FrozenRecordError(f'{type(record).__name__} is frozen and cannot be a query destination')
    return _targets(dsc, record, setattr)


def buffer_targets(dsc: Descriptor, buffer: Any) -> list[Target]:
    """Scan targets over an internal buffer record, frozen or not."""
    return _targets(dsc, buffer, object.__setattr__)


def record_factory(dsc: Descriptor) -> Callable[[], Any]:
    """Return a callable producing zero-valued records of the described type.

    Init fields without defaults receive the zero value of their scalar type
    (None for nullable or unmapped types).
    """
    cls = dsc.record_type
    specs = {spec.name: spec for spec in record_fields(cls)}
    zeros = {}
    for f in dataclasses.fields(cls):
        if not f.init or f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING:
            continue
        spec = specs[f.name]
        scalar = resolve_scalar_type(spec.type)
        zeros[f.name] = None if spec.nullable or scalar is None else scalar.python_type()

    def factory():
        return cls(**zeros)
    return factory


def copy_record(dsc: Descriptor, record: Any, factory: Callable[[], Any]) -> Any:
    """Return a new record from `factory` holding the mapped fields of `record`.

    Unmapped fields keep the values the factory gives them, so mutable
    defaults are never shared between copies. Frozen records are written
    without their `__setattr__` check.
    """
    result = factory()
    if dsc.primary_key is not None:
        object.__setattr__(result, dsc.primary_key.field, dsc.primary_key.get(record))
    for col in dsc.columns:
        object.__setattr__(result, col.field, col.get(record))
    return result
