"""
Base strategy interface for dialect-specific behavior.

The mapper generates and executes SQL through a small set of dialect hooks:
the row-identifier alias, declared column types, the insert-or-replace verb,
identifier quoting and connection setup. Each concrete strategy implements
them for one engine while the generator and coordinators stay generic.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from dbmap.sql import make_placeholders
from dbmap.sql import quote_identifier as sql_quote_identifier

if TYPE_CHECKING:
    from dbmap.options import DatabaseOptions

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('sqlite')
        class SQLiteStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'sqlite')."""

    @property
    @abstractmethod
    def row_id_alias(self) -> str:
        """Return the engine's implicit row identifier used as primary key."""

    @property
    @abstractmethod
    def replace_verb(self) -> str:
        """Return the statement prefix for insert-or-replace."""

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> str:
        """Build the database connection URL for this dialect.

        Args:
            options: DatabaseOptions containing connection parameters

        Returns
            Connection URL string suitable for SQLAlchemy
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """

    @abstractmethod
    def configure_connection(self, raw_conn: Any) -> None:
        """Configure a raw DBAPI connection for explicit transaction control.
        """

    @abstractmethod
    def in_transaction(self, raw_conn: Any) -> bool:
        """Return True if the engine has a transaction open on the connection."""

    @abstractmethod
    def begin(self, raw_conn: Any) -> None:
        """Open a transaction on a raw DBAPI connection."""

    @abstractmethod
    def commit(self, raw_conn: Any) -> None:
        """Commit the open transaction on a raw DBAPI connection."""

    @abstractmethod
    def rollback(self, raw_conn: Any) -> None:
        """Roll back the open transaction on a raw DBAPI connection."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or empty
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or empty')

    def quote_identifier(self, identifier: str) -> str:
        """Quote a database identifier for this dialect.
        """
        return sql_quote_identifier(identifier, self.dialect_name)

    def placeholders(self, count: int) -> str:
        """Return `count` positional placeholders for this dialect."""
        return make_placeholders(count, self.dialect_name)
