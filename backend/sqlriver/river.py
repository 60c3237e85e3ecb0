"""The river component a host process embeds."""

import logging
import threading
from collections import deque
from typing import Any, Deque, List, Mapping, Optional

from sqlalchemy.engine import Engine

from sqlriver.connectors.base import BaseSink
from sqlriver.schemas.river import SyncConfig
from sqlriver.schemas.sync import CycleResult, RiverStatusResponse
from sqlriver.scheduler import Scheduler
from sqlriver.services.sync_service import SyncCycle


class SqlRiver:
    """
    Mirrors the rows of an SQL query into a document index.

    Construction resolves the river settings and raises ConfigurationError
    when a required key is missing; nothing is scheduled in that case.
    """

    def __init__(
        self,
        river_name: str,
        river_settings: Mapping[str, Any],
        sink: BaseSink,
        engine: Optional[Engine] = None,
        history_size: int = 20,
        log: Optional[logging.Logger] = None
    ):
        self.log = log or logging.getLogger(__name__)
        self.log.info(f"Creating SQL river {river_name}")
        self.config = SyncConfig.from_river_settings(river_name, river_settings)
        self.sink = sink
        self.cycle = SyncCycle(self.config, sink, engine=engine, log=self.log)
        self.history: Deque[CycleResult] = deque(maxlen=history_size)
        self._history_lock = threading.Lock()
        self.scheduler = Scheduler(
            self.cycle.run,
            self.config.interval_seconds,
            on_result=self._record,
            log=self.log
        )

    def start(self) -> None:
        self.log.info(f"Starting river {self.config.river_name} into {self.config.index}/{self.config.doc_type}")
        self.scheduler.start()

    def stop(self) -> None:
        self.log.info(f"Closing river {self.config.river_name}")
        self.scheduler.stop()

    def close(self, timeout: Optional[float] = 30.0) -> None:
        """Stop the river and release the sink once the in-flight cycle has returned."""
        self.stop()
        if not self.scheduler.join(timeout):
            self.log.warning(f"River cycle still running after {timeout} seconds, closing the sink anyway")
        self.sink.close()

    def _record(self, result: CycleResult) -> None:
        with self._history_lock:
            self.history.append(result)

    def recent_results(self) -> List[CycleResult]:
        """Most recent cycle results, newest first."""
        with self._history_lock:
            return list(reversed(self.history))

    def status(self) -> RiverStatusResponse:
        last_run = self.scheduler.last_run
        return RiverStatusResponse(
            river_name=self.config.river_name,
            index=self.config.index,
            doc_type=self.config.doc_type,
            running=self.scheduler.is_running,
            run_count=self.scheduler.run_count,
            last_run=last_run.isoformat() if last_run else None
        )
