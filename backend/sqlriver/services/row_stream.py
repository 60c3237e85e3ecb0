"""Streams the rows of the river query from the relational source."""

import logging
import threading
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError

from sqlriver.exceptions import SourceUnavailable

Row = Dict[str, Any]


class RowStream:
    """
    Executes one query and yields its rows without materializing the result.

    Use as a context manager; the connection and cursor are released on every
    exit path. A stream can be iterated only once: build a new one per cycle.

    The row count is probed with ``SELECT COUNT(*)`` over the query before it
    runs. When the probe is disabled or fails, ``row_count`` stays None.
    """

    def __init__(
        self,
        engine: Engine,
        query: str,
        cancel_event: Optional[threading.Event] = None,
        fetch_size: int = 500,
        count_rows: bool = True,
        log: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.query = query.strip().rstrip(";")
        self.cancel_event = cancel_event or threading.Event()
        self.fetch_size = fetch_size
        self.count_rows = count_rows
        self.log = log or logging.getLogger(__name__)

        self.row_count: Optional[int] = None
        self.rows_read = 0
        self.cancelled = False
        self._connection: Optional[Connection] = None
        self._result: Optional[CursorResult] = None
        self._consumed = False

    def __enter__(self) -> "RowStream":
        try:
            self._connection = self.engine.connect()
            if self.count_rows:
                self.row_count = self._probe_count()
            self._result = self._connection.execution_options(
                stream_results=True, yield_per=self.fetch_size
            ).execute(text(self.query))
        except SQLAlchemyError as e:
            self.close()
            raise SourceUnavailable(f"Error trying to read data from database: {e}") from e
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _probe_count(self) -> Optional[int]:
        count_sql = text(f"SELECT COUNT(*) FROM ({self.query}) AS river_count")
        try:
            return int(self._connection.execute(count_sql).scalar_one())
        except SQLAlchemyError as e:
            # The probe is optional; a failed statement may leave a transaction to reset.
            self.log.debug(f"Row count probe failed, continuing with unknown count: {e}")
            self._connection.rollback()
            return None

    def __iter__(self) -> Iterator[Row]:
        if self._result is None:
            raise RuntimeError("RowStream must be entered before iterating")
        if self._consumed:
            raise RuntimeError("RowStream is not restartable; open a new one per cycle")
        self._consumed = True

        rows = iter(self._result.mappings())
        while True:
            if self.cancel_event.is_set():
                self.cancelled = True
                self.log.info(f"Row stream cancelled after {self.rows_read} rows")
                return
            try:
                row = next(rows, None)
            except SQLAlchemyError as e:
                raise SourceUnavailable(f"Error reading row {self.rows_read + 1} from database: {e}") from e
            if row is None:
                return
            self.rows_read += 1
            yield dict(row)

    def close(self) -> None:
        try:
            if self._result is not None:
                self._result.close()
            if self._connection is not None:
                self._connection.close()
        except SQLAlchemyError as e:
            self.log.warning(f"Error closing database connection properly: {e}")
        finally:
            self._result = None
            self._connection = None
