from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from dbmap.strategy import get_available_dialects, get_strategy_class
from dbmap.strategy import is_supported_dialect

__all__ = [
    'DatabaseOptions',
    'load_options',
    ]


@dataclass
class DatabaseOptions:
    """Options

    supported driver names: `sqlite`

    - database: path of the store, `:memory:` for a private in-memory store
    - timeout: seconds the driver waits on a locked database (default: 5.0)
    - trace: log every submitted command at INFO (default: False)
    - statement_cache_size: prepared statements kept per connection (default: 128)
    - cached_statements: driver-side compiled statement cache (default: 128)
    """
    drivername: str = 'sqlite'
    database: str = ':memory:'
    timeout: float = 5.0
    trace: bool = False
    statement_cache_size: int = 128
    cached_statements: int = 128

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        if self.statement_cache_size < 1:
            raise ValueError('statement_cache_size must be positive')
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)


def load_options(options: DatabaseOptions | Mapping[str, Any] | None = None,
                 **kwargs: Any) -> DatabaseOptions:
    """Build DatabaseOptions from an instance, a mapping and/or keywords.

    Keywords override values from `options`. Unknown names raise TypeError.
    """
    if isinstance(options, DatabaseOptions):
        if not kwargs:
            return options
        options = {f.name: getattr(options, f.name) for f in fields(DatabaseOptions)}
    merged = dict(options or {})
    merged.update(kwargs)
    return DatabaseOptions(**merged)
