"""
SQLite-specific strategy implementation.

SQLite realizes the primary key as the implicit `rowid` column, supports
`INSERT OR REPLACE`, and runs DDL inside transactions. The DBAPI connection is
put in autocommit mode (`isolation_level = None`) so that transactions are
opened and closed only by explicit BEGIN/COMMIT/ROLLBACK statements.
"""
import logging
from typing import TYPE_CHECKING, Any

from dbmap.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from dbmap.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    @property
    def row_id_alias(self) -> str:
        return 'rowid'

    @property
    def replace_verb(self) -> str:
        return 'INSERT OR REPLACE'

    def build_connection_url(self, options: 'DatabaseOptions') -> str:
        """Build the SQLAlchemy connection URL for SQLite."""
        return f'sqlite:///{options.database}'

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        return {
            'connect_args': {
                'timeout': options.timeout,
                'cached_statements': options.cached_statements,
            }
        }

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def configure_connection(self, raw_conn: Any) -> None:
        """Switch the driver to autocommit so transactions are explicit.
        """
        raw_conn.isolation_level = None
        logger.debug('Configured SQLite connection for explicit transactions')

    def in_transaction(self, raw_conn: Any) -> bool:
        return raw_conn.in_transaction

    def begin(self, raw_conn: Any) -> None:
        raw_conn.execute('BEGIN')

    def commit(self, raw_conn: Any) -> None:
        raw_conn.execute('COMMIT')

    def rollback(self, raw_conn: Any) -> None:
        raw_conn.execute('ROLLBACK')
