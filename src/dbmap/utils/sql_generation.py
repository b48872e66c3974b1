"""
SQL statement generation from record descriptors.

Every function here is pure: the same Descriptor and arguments always produce
byte-identical text, which the statement cache relies on. Tail clauses
(WHERE/ORDER BY/LIMIT) are appended verbatim and their placeholders are
supplied by the caller.
"""
import logging

from dbmap.descriptor import Descriptor, IndexGroup
from dbmap.exceptions import MissingPrimaryKeyError
from dbmap.sql import pre_pad
from dbmap.strategy import get_strategy

logger = logging.getLogger(__name__)


def index_name(dsc: Descriptor, group: IndexGroup) -> str:
    """Name of the index created for an index group, `<table>_<group>`.
    """
    return f'{dsc.table}_{group.name}'


def create_table_sql(dsc: Descriptor) -> tuple[str, list[str]]:
    """Generate the CREATE TABLE statement and one CREATE INDEX per group.

    Returns
        (table statement, list of index statements)
    """
    strategy = get_strategy(dsc.dialect)
    quote = strategy.quote_identifier
    quoted_table = quote(dsc.table)
    table_sql = f'CREATE TABLE {quoted_table} ({dsc.create_columns})'
    index_sql = []
    for group in dsc.indexes:
        quoted_cols = ', '.join(quote(col) for col in group.columns)
        index_sql.append(f'CREATE INDEX {quote(index_name(dsc, group))} ON {quoted_table} ({quoted_cols})')
    return table_sql, index_sql


def drop_table_sql(dsc: Descriptor) -> tuple[str, list[str]]:
    """Generate DROP statements for the table and each of its named indexes.
    """
    quote = get_strategy(dsc.dialect).quote_identifier
    table_sql = f'DROP TABLE IF EXISTS {quote(dsc.table)}'
    index_sql = [f'DROP INDEX IF EXISTS {quote(index_name(dsc, group))}' for group in dsc.indexes]
    return table_sql, index_sql


def insert_sql(dsc: Descriptor) -> str:
    """Generate a parameterized INSERT over the managed columns.
    """
    quote = get_strategy(dsc.dialect).quote_identifier
    return f'INSERT INTO {quote(dsc.table)} ({dsc.column_list}) VALUES ({dsc.placeholder_list})'


def insert_or_replace_sql(dsc: Descriptor) -> str:
    """Generate a parameterized INSERT that replaces on a uniqueness conflict.
    """
    strategy = get_strategy(dsc.dialect)
    quoted_table = strategy.quote_identifier(dsc.table)
    return f'{strategy.replace_verb} INTO {quoted_table} ({dsc.column_list}) VALUES ({dsc.placeholder_list})'


def select_sql(dsc: Descriptor, tail: str = '') -> str:
    """Generate a SELECT of the row id (if any) and managed columns.

    Example:
        >>> select_sql(dsc, 'WHERE Name LIKE ? ORDER BY Name')
        'SELECT rowid, "Name" FROM "rec" WHERE Name LIKE ? ORDER BY Name'
    """
    quote = get_strategy(dsc.dialect).quote_identifier
    return f'SELECT {dsc.select_list} FROM {quote(dsc.table)}{pre_pad(tail)}'


def count_sql(dsc: Descriptor, tail: str = '') -> str:
    """Generate a row count over the table, optionally filtered by a tail clause."""
    quote = get_strategy(dsc.dialect).quote_identifier
    return f'SELECT count(*) FROM {quote(dsc.table)}{pre_pad(tail)}'


def update_sql(dsc: Descriptor, columns: tuple[str, ...] | list[str] | None = None) -> str:
    """Generate an UPDATE of a column subset keyed on the row id.

    An omitted or empty subset, or one starting with `'*'`, updates every
    managed column.

    Raises
        MissingPrimaryKeyError: If the descriptor has no primary key
        UnknownColumnError: If a requested column is not managed
    """
    if dsc.primary_key is None:
        raise MissingPrimaryKeyError(f'{dsc.table} has no primary key to update by')
    strategy = get_strategy(dsc.dialect)
    quote = strategy.quote_identifier
    marker = strategy.placeholders(1)
    assignments = ', '.join(f'{quote(col.name)} = {marker}' for col in dsc.resolve_columns(columns))
    return f'UPDATE {quote(dsc.table)} SET {assignments} WHERE {strategy.row_id_alias} = {marker}'


def delete_sql(dsc: Descriptor, tail: str = '') -> str:
    """Generate a DELETE, unconditional unless a tail clause is given.
    """
    quote = get_strategy(dsc.dialect).quote_identifier
    return f'DELETE FROM {quote(dsc.table)}{pre_pad(tail)}'


def truncate_sql(dsc: Descriptor) -> str:
    """Generate a DELETE of every row of the table.
    """
    return delete_sql(dsc)
