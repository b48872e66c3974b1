"""
Descriptor building and caching.

A `Descriptor` is the immutable mapping of a dataclass record type to a
table: its managed columns in declaration order, the optional row-identifier
primary key and the secondary index groups. It is built once per record type
by `describe()`, validated strictly, and cached for the life of the process.

Index declarations use either the tag form, a comma-separated list of
`groupName+sequence` segments such as `'byName1, byNum2'` (the lone wildcard
`'*'` indexes the column on its own), or the structured form, an iterable of
`(group, sequence)` pairs.
"""
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any

from dbmap.exceptions import DuplicateColumnError, DuplicateIndexSequenceError
from dbmap.exceptions import MalformedIndexError, MissingTableError
from dbmap.exceptions import MultiplePrimaryKeyError, MultipleTableError
from dbmap.exceptions import NoManagedFieldsError, PrimaryKeyTypeError
from dbmap.exceptions import UnknownColumnError, UnsupportedFieldTypeError
from dbmap.fields import WILDCARD, FieldSpec, record_fields, record_type
from dbmap.strategy import get_strategy
from dbmap.types import ScalarType, StorageClass, is_int64, resolve_scalar_type

__all__ = [
    'ColumnMap',
    'PrimaryKeyMap',
    'IndexGroup',
    'Descriptor',
    'describe',
    'build_descriptor',
    'parse_index',
    'clear_descriptor_cache',
    ]

logger = logging.getLogger(__name__)

_INDEX_SEGMENT = re.compile(r'^(\D+)(\d+)$')

_descriptor_cache: dict[type, 'Descriptor'] = {}
_descriptor_cache_lock = threading.RLock()


@dataclass(frozen=True, slots=True)
class ColumnMap:
    """Managed column bound to its record field."""
    name: str
    field: str
    scalar: ScalarType
    nullable: bool = False

    @property
    def storage(self) -> StorageClass:
        return self.scalar.storage

    def get(self, record: Any) -> Any:
        return getattr(record, self.field)


@dataclass(frozen=True, slots=True)
class PrimaryKeyMap:
    """Row-identifier field of a record type."""
    field: str
    scalar: ScalarType

    def get(self, record: Any) -> Any:
        return getattr(record, self.field)


@dataclass(frozen=True, slots=True)
class IndexGroup:
    """Secondary index over columns in ascending sequence order."""
    name: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class Descriptor:
    """Immutable mapping of a record type to a table.
    """
    record_type: type
    table: str
    columns: tuple[ColumnMap, ...]
    primary_key: PrimaryKeyMap | None = None
    indexes: tuple[IndexGroup, ...] = ()
    dialect: str = 'sqlite'
    # fragments generated once at build time
    column_list: str = ''
    placeholder_list: str = ''
    create_columns: str = ''
    select_list: str = ''
    _by_name: dict[str, ColumnMap] = field(default_factory=dict, repr=False, compare=False)

    def __str__(self) -> str:
        return f'Descriptor({self.record_type.__name__} -> {self.table})'

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def has_primary_key(self) -> bool:
        return self.primary_key is not None

    def column(self, name: str) -> ColumnMap:
        """Return the managed column called `name`.

        Raises
            UnknownColumnError: If the column is not managed or not a name
        """
        if not isinstance(name, str):
            raise UnknownColumnError(f'column names must be strings, got {type(name).__name__} {name!r}')
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownColumnError(f'{self.table} has no managed column {name!r}')

    def resolve_columns(self, names: tuple[str, ...] | list[str] | None = None) -> tuple[ColumnMap, ...]:
        """Resolve a caller-chosen column subset; empty or `'*'` means all.
        """
        if not names or names[0] == WILDCARD:
            return self.columns
        return tuple(self.column(name) for name in names)


def parse_index(decl: Any, column: str) -> list[tuple[str, int]]:
    """Parse an index declaration into `(group, sequence)` segments.

    Raises
        MalformedIndexError: If a segment does not match `groupName+sequence`
    """
    if decl is None:
        return []
    if isinstance(decl, str):
        if decl.strip() == WILDCARD:
            return [(column, 1)]
        segments = []
        for part in decl.split(','):
            match = _INDEX_SEGMENT.match(part.strip())
            if match is None:
                raise MalformedIndexError(
                    f'index segment {part.strip()!r} of column {column} must be a name followed by a sequence number')
            segments.append((match.group(1), int(match.group(2))))
        return segments

    try:
        pairs = list(decl)
    except TypeError:
        raise MalformedIndexError(f'index declaration of column {column} must be a string or (group, sequence) pairs')
    segments = []
    for pair in pairs:
        if not isinstance(pair, tuple | list) or len(pair) != 2:
            raise MalformedIndexError(f'index segment {pair!r} of column {column} is not a (group, sequence) pair')
        group, sequence = pair
        if not isinstance(group, str) or not group or isinstance(sequence, bool) or not isinstance(sequence, int):
            raise MalformedIndexError(f'index segment {pair!r} of column {column} is not a (group, sequence) pair')
        segments.append((group, sequence))
    return segments


def _finalize_indexes(table: str, groups: dict[str, list[tuple[str, int]]]) -> tuple[IndexGroup, ...]:
    """Sort each group by sequence, rejecting duplicate sequence numbers."""
    indexes = []
    for name, members in groups.items():
        sequences = [seq for _, seq in members]
        if len(set(sequences)) != len(sequences):
            raise DuplicateIndexSequenceError(
                f'index {name} of table {table} repeats a sequence number: {sorted(sequences)}')
        ordered = sorted(members, key=lambda m: m[1])
        indexes.append(IndexGroup(name, tuple(col for col, _ in ordered)))
    return tuple(indexes)


def _build_column(spec: FieldSpec) -> ColumnMap:
    name = spec.column
    if name == WILDCARD:
        name = spec.name
    scalar = resolve_scalar_type(spec.type)
    if scalar is None:
        type_name = getattr(spec.type, '__name__', repr(spec.type))
        raise UnsupportedFieldTypeError(f'database does not support fields of type {type_name} ({spec.name})')
    return ColumnMap(name=name, field=spec.name, scalar=scalar, nullable=spec.nullable)


def _build_primary_key(spec: FieldSpec) -> PrimaryKeyMap:
    if spec.nullable or not is_int64(spec.type):
        type_name = getattr(spec.type, '__name__', repr(spec.type))
        raise PrimaryKeyTypeError(f'expecting int64 for primary key {spec.name}, got {type_name}')
    return PrimaryKeyMap(field=spec.name, scalar=resolve_scalar_type(spec.type))


def build_descriptor(cls: type, dialect: str = 'sqlite') -> Descriptor:
    """Validate the field declarations of `cls` and build its Descriptor.

    Does not consult or populate the cache; see `describe()`.
    """
    strategy = get_strategy(dialect)
    table = None
    primary = None
    columns: list[ColumnMap] = []
    by_name: dict[str, ColumnMap] = {}
    groups: dict[str, list[tuple[str, int]]] = {}

    for spec in record_fields(cls):
        if spec.column is not None:
            col = _build_column(spec)
            if col.name in by_name:
                raise DuplicateColumnError(f'column {col.name} is declared by {by_name[col.name].field} and {spec.name}')
            by_name[col.name] = col
            columns.append(col)
            for group, sequence in parse_index(spec.index, col.name):
                groups.setdefault(group, []).append((col.name, sequence))
        elif spec.primary:
            if primary is not None:
                raise MultiplePrimaryKeyError(f'multiple primary key fields: {primary.field} and {spec.name}')
            primary = _build_primary_key(spec)
        if spec.table:
            if table is not None:
                raise MultipleTableError(f'multiple table declarations: {table!r} and {spec.table!r}')
            table = spec.table

    if not columns:
        raise NoManagedFieldsError(f'no fields of {cls.__name__} are declared as columns')
    if not table:
        raise MissingTableError(f'no field of {cls.__name__} declares a table name')

    quote = strategy.quote_identifier
    select = [quote(c.name) for c in columns]
    if primary is not None:
        select.insert(0, strategy.row_id_alias)

    return Descriptor(
        record_type=cls,
        table=table,
        columns=tuple(columns),
        primary_key=primary,
        indexes=_finalize_indexes(table, groups),
        dialect=strategy.dialect_name,
        column_list=', '.join(quote(c.name) for c in columns),
        placeholder_list=strategy.placeholders(len(columns)),
        create_columns=', '.join(f'{quote(c.name)} {c.scalar.decltype}' for c in columns),
        select_list=', '.join(select),
        _by_name=by_name,
        )


def describe(record: Any) -> Descriptor:
    """Return the cached Descriptor of a record type or instance.

    The first call for a type builds and validates the Descriptor; later calls
    return the same object. A failed build caches nothing.

    Raises
        DescribeError: If the record type cannot be mapped
    """
    cls = record_type(record)
    dsc = _descriptor_cache.get(cls)
    if dsc is not None:
        return dsc
    with _descriptor_cache_lock:
        dsc = _descriptor_cache.get(cls)
        if dsc is None:
            dsc = build_descriptor(cls)
            _descriptor_cache[cls] = dsc
            logger.debug(f'Described {cls.__name__}: table {dsc.table}, '
                         f'{len(dsc.columns)} columns, {len(dsc.indexes)} indexes')
    return dsc


def cached_descriptors() -> dict[type, Descriptor]:
    """Return a snapshot of the descriptor cache."""
    with _descriptor_cache_lock:
        return dict(_descriptor_cache)


def clear_descriptor_cache() -> None:
    """Drop every cached Descriptor.
    """
    with _descriptor_cache_lock:
        _descriptor_cache.clear()
