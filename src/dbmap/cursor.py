"""
Statement results and row cursors of the engine adapter.

Driver exceptions raised while executing or fetching are translated to
`EngineError` with the original exception chained; they are never retried.
"""
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from dbmap.exceptions import DriverError, EngineError, ScanError

if TYPE_CHECKING:
    from dbmap.marshal import Target

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(sql: str) -> Iterator[None]:
    """Re-raise driver errors as EngineError."""
    try:
        yield
    except DriverError as exc:
        logger.debug(f'Engine error for {sql!r}: {exc}')
        raise EngineError(str(exc)) from exc


@dataclass(frozen=True, slots=True)
class Result:
    """Outcome of a statement that does not return rows."""
    rows_affected: int
    last_insert_id: int | None


class Cursor:
    """Forward-only row cursor over a query.

    Call `next()` to advance, then `scan()` to copy the current row into
    targets. The cursor closes itself when exhausted.
    """

    def __init__(self, dbapi_cursor: Any, sql: str) -> None:
        self.dbapi_cursor = dbapi_cursor
        self.sql = sql
        self.row: Sequence[Any] | None = None
        self.closed = False

    def __iter__(self) -> Iterator[Sequence[Any]]:
        while self.next():
            yield self.row

    @property
    def columns(self) -> list[str]:
        """Column names of the result set."""
        description = self.dbapi_cursor.description or ()
        return [desc[0] for desc in description]

    def next(self) -> bool:
        """Advance to the next row; False once the rows are exhausted.
        """
        if self.closed:
            return False
        with translate_errors(self.sql):
            row = self.dbapi_cursor.fetchone()
        if row is None:
            self.close()
            return False
        self.row = row
        return True

    def scan(self, targets: Sequence['Target']) -> None:
        """Copy the current row into targets, one per column.

        Raises
            ScanError: If no row is current, the counts differ, or a value
                does not fit its target
        """
        if self.row is None:
            raise ScanError('scan called without a current row')
        if len(targets) != len(self.row):
            raise ScanError(f'expected {len(self.row)} scan targets, got {len(targets)}')
        for target, value in zip(targets, self.row):
            target.assign(value)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.row = None
            self.dbapi_cursor.close()
