"""
Scalar type table for managed record fields.

Maps each supported Python field type to:
- its storage class (numeric, text, binary)
- the declared SQL column type
- a bind check and converter (Python -> engine)
- a scan converter (engine -> Python)

Anything not in the table cannot be a managed column.
"""
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class StorageClass(enum.Enum):
    """Engine storage class of a managed column."""
    NUMERIC = 'numeric'
    TEXT = 'text'
    BINARY = 'binary'


@dataclass(frozen=True, slots=True)
class ScalarType:
    """Binding between a Python field type and its column representation.
    """
    python_type: type
    storage: StorageClass
    decltype: str
    accepts: Callable[[Any], bool]
    to_db: Callable[[Any], Any]
    from_db: Callable[[Any], Any]

    @property
    def name(self) -> str:
        return getattr(self.python_type, '__name__', str(self.python_type))

    def check(self, value: Any) -> bool:
        """Return True if value can be bound without coercion."""
        return self.accepts(value)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool | np.bool_)


def _is_integral(value: Any) -> bool:
    return isinstance(value, int | np.integer) and not _is_bool(value)


def _is_real(value: Any) -> bool:
    return isinstance(value, float | np.floating) or _is_integral(value)


def _to_python(value: Any) -> Any:
    """Convert numpy scalars to builtin scalars the driver can bind."""
    if isinstance(value, np.generic):
        return value.item()
    return value


def _scan_int(value: Any) -> int:
    if not _is_integral(value):
        raise TypeError(f'converting {type(value).__name__} to int is unsupported')
    return int(value)


def _scan_bool(value: Any) -> bool:
    if not (_is_integral(value) or _is_bool(value)):
        raise TypeError(f'converting {type(value).__name__} to bool is unsupported')
    return bool(value)


def _scan_float(value: Any) -> float:
    if not _is_real(value):
        raise TypeError(f'converting {type(value).__name__} to float is unsupported')
    return float(value)


def _scan_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8')
    if not isinstance(value, str):
        raise TypeError(f'converting {type(value).__name__} to str is unsupported')
    return value


def _scan_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return value.encode('utf-8')
    if not isinstance(value, bytes | bytearray | memoryview):
        raise TypeError(f'converting {type(value).__name__} to bytes is unsupported')
    return bytes(value)


def _numpy_int(np_type: type) -> ScalarType:
    """Sized numpy integer accepting its own type or an in-range Python int."""
    info = np.iinfo(np_type)

    def accepts(value):
        if isinstance(value, np_type):
            return True
        return isinstance(value, int) and not isinstance(value, bool) and info.min <= value <= info.max

    def from_db(value):
        if not _is_integral(value) or not info.min <= int(value) <= info.max:
            raise TypeError(f'converting {value!r} to {np_type.__name__} is unsupported')
        return np_type(value)

    return ScalarType(np_type, StorageClass.NUMERIC, 'integer', accepts, _to_python, from_db)


def _numpy_float(np_type: type) -> ScalarType:
    """Sized numpy float accepting its own type or a Python number."""
    def accepts(value):
        return isinstance(value, np_type) or (isinstance(value, float | int) and not isinstance(value, bool))

    def from_db(value):
        return np_type(_scan_float(value))

    return ScalarType(np_type, StorageClass.NUMERIC, 'real', accepts, _to_python, from_db)


def _to_bytes(value: Any) -> bytes:
    return bytes(value)


SCALAR_TYPES: dict[type, ScalarType] = {
    int: ScalarType(int, StorageClass.NUMERIC, 'integer', _is_integral, _to_python, _scan_int),
    bool: ScalarType(bool, StorageClass.NUMERIC, 'integer', _is_bool, lambda v: bool(v), _scan_bool),
    float: ScalarType(float, StorageClass.NUMERIC, 'real', _is_real, _to_python, _scan_float),
    str: ScalarType(str, StorageClass.TEXT, 'text', lambda v: isinstance(v, str), _to_python, _scan_str),
    bytes: ScalarType(bytes, StorageClass.BINARY, 'blob',
                      lambda v: isinstance(v, bytes | bytearray | memoryview), _to_bytes, _scan_bytes),
    np.bool_: ScalarType(np.bool_, StorageClass.NUMERIC, 'integer', _is_bool,
                         lambda v: bool(v), lambda v: np.bool_(_scan_bool(v))),
    np.float32: _numpy_float(np.float32),
    np.float64: _numpy_float(np.float64),
    }

for _np_int in (np.int8, np.int16, np.int32, np.int64,
                np.uint8, np.uint16, np.uint32, np.uint64):
    SCALAR_TYPES[_np_int] = _numpy_int(_np_int)

# Types allowed for the row-identifier field
INT64_TYPES: tuple[type, ...] = (int, np.int64)


def resolve_scalar_type(python_type: Any) -> ScalarType | None:
    """Look up the scalar type for a field type, None if unsupported.
    """
    try:
        return SCALAR_TYPES.get(python_type)
    except TypeError:
        logger.debug(f'Unhashable field type {python_type!r}')
        return None


def is_int64(python_type: Any) -> bool:
    """Check whether a field type can hold a 64-bit row identifier."""
    return python_type in INT64_TYPES


__all__ = [
    'StorageClass',
    'ScalarType',
    'SCALAR_TYPES',
    'INT64_TYPES',
    'resolve_scalar_type',
    'is_int64',
    ]
