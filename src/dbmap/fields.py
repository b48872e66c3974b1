"""
Record type introspection.

Records are dataclasses. Mapping is declared per field with the helpers below,
which store their settings in the field metadata under the `dbmap` key:

    @dataclass
    class Rec:
        id: int = primary_key(table='rec')
        name: str = column('*', index='*')
        num: int = column('group_num', index='byNum1')

`record_fields()` reads these declarations back as an ordered tuple of
`FieldSpec` for the descriptor builder.
"""
import dataclasses
import logging
import types
import typing
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from dbmap.exceptions import DescribeError, NotARecordError

logger = logging.getLogger(__name__)

METADATA_KEY = 'dbmap'
WILDCARD = '*'

IndexDecl = str | Iterable[tuple[str, int]] | None


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Mapping declarations of one record field."""
    name: str
    type: Any
    nullable: bool = False
    column: str | None = None
    primary: bool = False
    table: str | None = None
    index: IndexDecl = None


def _field(metadata: dict[str, Any], default: Any, default_factory: Any) -> Any:
    if default_factory is not dataclasses.MISSING:
        return dataclasses.field(default_factory=default_factory,
                                 metadata={METADATA_KEY: metadata})
    return dataclasses.field(default=default, metadata={METADATA_KEY: metadata})


def column(name: str = WILDCARD, *, index: IndexDecl = None, table: str | None = None,
           default: Any = dataclasses.MISSING,
           default_factory: Any = dataclasses.MISSING) -> Any:
    """Declare a managed column.

    `name` is the column name; the wildcard `'*'` uses the field name.
    `index` is either the tag form `'groupA1,groupB2'` (or `'*'` for a
    single-column index) or an iterable of `(group, sequence)` pairs.
    `table` additionally makes this field the owner of the table name.
    """
    metadata = {'column': name, 'index': index, 'table': table}
    return _field(metadata, default, default_factory)


def primary_key(*, table: str | None = None, default: Any = 0) -> Any:
    """Declare the row-identifier field; it must be typed as a 64-bit integer.
    """
    return _field({'primary': True, 'table': table}, default, dataclasses.MISSING)


def table_name(name: str, *, default: Any = dataclasses.MISSING,
               default_factory: Any = dataclasses.MISSING) -> Any:
    """Declare the table name on a field that is otherwise not managed."""
    return _field({'table': name}, default, default_factory)


def record_type(obj: Any) -> type:
    """Return the dataclass type of a record class or instance.
    """
    cls = obj if isinstance(obj, type) else type(obj)
    if not dataclasses.is_dataclass(cls):
        raise NotARecordError(f'expecting a dataclass record, got {cls.__name__}')
    return cls


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Split `X | None` / `Optional[X]` into (X, True)."""
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(tp)) == 2:
            return args[0], True
    return tp, False


def record_fields(cls: type) -> tuple[FieldSpec, ...]:
    """Extract the ordered field declarations of a dataclass record type.
    """
    cls = record_type(cls)
    try:
        hints = typing.get_type_hints(cls)
    except NameError as exc:
        raise DescribeError(f'cannot resolve field types of {cls.__name__}: {exc}') from exc
    specs = []
    for f in dataclasses.fields(cls):
        decl = f.metadata.get(METADATA_KEY, {})
        tp, nullable = _unwrap_optional(hints.get(f.name, f.type))
        specs.append(FieldSpec(
            name=f.name,
            type=tp,
            nullable=nullable,
            column=decl.get('column'),
            primary=decl.get('primary', False),
            table=decl.get('table'),
            index=decl.get('index'),
            ))
    logger.debug(f'Introspected {len(specs)} fields of {cls.__name__}')
    return tuple(specs)


__all__ = [
    'FieldSpec',
    'column',
    'primary_key',
    'table_name',
    'record_type',
    'record_fields',
    'WILDCARD',
    ]
