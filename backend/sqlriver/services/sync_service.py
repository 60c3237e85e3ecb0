import logging
import threading
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from sqlriver.connectors.base import BaseSink
from sqlriver.constants.abort_reasons import AbortReason, explain_reason
from sqlriver.exceptions import IndexAlreadyExists, ProvisioningError, PurgeFailure, SourceUnavailable
from sqlriver.schemas.river import SyncConfig
from sqlriver.schemas.sync import BatchContext, CycleResult
from sqlriver.services.batch_writer import BatchWriter
from sqlriver.services.mapper import DocumentMapper
from sqlriver.services.purger import StalePurger
from sqlriver.services.row_stream import RowStream


class CycleState(Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    READING = "reading"
    WRITING = "writing"
    PURGING = "purging"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncCycle:
    """
    Runs one full refresh of the index from the source query:
    provision index -> stream rows -> write documents -> purge stale documents.

    All documents of a cycle carry the same batch timestamp, captured when the
    cycle starts, and the purge deletes everything older than it. A cycle
    never raises; the outcome is reported in the returned CycleResult.
    """

    def __init__(
        self,
        config: SyncConfig,
        sink: BaseSink,
        engine: Optional[Engine] = None,
        log: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.sink = sink
        # NullPool: no source connection is held open between cycles
        self.engine = engine or create_engine(config.connection_url, poolclass=NullPool)
        self.log = log or logging.getLogger(__name__)
        self.clock = clock
        self.mapper = DocumentMapper(config.unique_id_field)
        self.purger = StalePurger(sink, log=self.log)
        self.state = CycleState.IDLE

    def run(self, cancel_event: Optional[threading.Event] = None) -> CycleResult:
        """Execute one cycle. ``cancel_event`` is checked before every row."""
        cancel_event = cancel_event or threading.Event()
        result = CycleResult(batch_timestamp=int(self.clock()), started_at=_now_iso())
        try:
            self._run(result, cancel_event)
        except Exception as e:
            self.log.error(f"River cycle failed unexpectedly: {e}")
            self.log.debug(traceback.format_exc())
            self._abort(result, AbortReason.UNEXPECTED_ERROR, {"error_detail": str(e)})
        finally:
            self.state = CycleState.IDLE
            result.finished_at = _now_iso()
        return result

    def _run(self, result: CycleResult, cancel_event: threading.Event) -> None:
        config = self.config

        # 1. Provision index and mapping
        self.state = CycleState.PROVISIONING
        try:
            self._provision()
        except ProvisioningError as e:
            self.log.warning(f"Failed to create index [{config.index}], skipping this cycle: {e}")
            self._abort(result, AbortReason.PROVISIONING_FAILED, {
                "index": config.index,
                "doc_type": config.doc_type,
                "error_detail": str(e),
            })
            return

        # 2. Stream rows
        self.state = CycleState.READING
        ctx = BatchContext(timestamp=result.batch_timestamp)
        writer = BatchWriter(self.sink, config.index, config.doc_type, log=self.log)
        cancelled = False
        try:
            with RowStream(
                self.engine,
                config.query,
                cancel_event=cancel_event,
                fetch_size=config.fetch_size,
                count_rows=config.count_rows,
                log=self.log
            ) as stream:
                ctx.row_count = stream.row_count
                if stream.row_count is not None:
                    self.log.info(f"Got {stream.row_count} results from database")
                if stream.row_count == 0:
                    self.log.warning("Got 0 results from database. Aborting before we do some damage and remove still valid entries.")
                    self._abort(result, AbortReason.EMPTY_RESULT, {"index": config.index})
                    return

                # 3. Map and write every row
                self.state = CycleState.WRITING
                for row in stream:
                    writer.write(self.mapper.map_row(row, ctx), ctx)
                cancelled = stream.cancelled
        except SourceUnavailable as e:
            self.log.error(f"Error trying to read data from database: {e}")
            self._abort(result, AbortReason.SOURCE_UNAVAILABLE, {"error_detail": str(e)})
            return
        finally:
            result.rows_read = ctx.processed_count
            result.rows_written = writer.written
            result.rows_failed = writer.failed

        if cancelled:
            self.log.info("River stopped during the cycle; not removing old entries")
            self._abort(result, AbortReason.CANCELLED, {
                "processed": ctx.processed_count,
                "total": ctx.row_count if ctx.row_count is not None else "unknown",
            })
            return
        if ctx.processed_count == 0:
            # Row count was unknown, so the guard only applies now
            self.log.warning("Got 0 results from database. Aborting before we do some damage and remove still valid entries.")
            self._abort(result, AbortReason.EMPTY_RESULT, {"index": config.index})
            return

        self.log.info(
            f"Imported {writer.written} entries into {config.index} ({writer.failed} failed)"
        )

        # 4. Purge stale documents
        if config.delete_old_entries:
            self.state = CycleState.PURGING
            try:
                result.deleted_stale = self.purger.purge(config.index, config.doc_type, result.batch_timestamp)
                result.purged = True
            except PurgeFailure as e:
                self.log.error(f"Failed to remove old entries from {config.index}: {e}")
        else:
            self.log.info("Not removing old entries from the index")

        self.log.info(f"River cycle completed: {result.rows_written} written, {result.deleted_stale} stale removed")

    def _provision(self) -> None:
        index, doc_type = self.config.index, self.config.doc_type
        try:
            try:
                self.sink.create_index(index, doc_type)
            except IndexAlreadyExists:
                self.log.debug(f"Not creating Index {index} as it already exists")
            self.sink.put_mapping(index, doc_type, ignore_conflicts=True)
        except ProvisioningError:
            raise
        except Exception as e:
            raise ProvisioningError(str(e)) from e

    def _abort(self, result: CycleResult, reason: AbortReason, context: dict) -> None:
        result.aborted = True
        result.abort_reason = reason
        result.abort_detail = explain_reason(reason, context)
