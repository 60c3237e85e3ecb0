"""APScheduler integration for the periodic river cycle."""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sqlriver.schemas.sync import CycleResult

JOB_ID = "river_cycle_job"

CycleRunner = Callable[[threading.Event], CycleResult]


class Scheduler:
    """
    Runs the river cycle on one background worker.

    With a positive interval the cycle starts immediately and then once
    ``interval_seconds`` have elapsed since the previous cycle started; a cycle
    that overruns the interval is followed by the next one right away. Cycles
    never overlap. With ``interval_seconds <= 0`` exactly one cycle runs and the
    scheduler shuts itself down.

    ``stop()`` sets the cancellation event seen by the running cycle and
    prevents any new cycle from starting. The scheduler counts as running until
    the in-flight cycle has returned; ``join()`` waits for that.
    """

    def __init__(
        self,
        run_cycle: CycleRunner,
        interval_seconds: float,
        on_result: Optional[Callable[[CycleResult], None]] = None,
        log: Optional[logging.Logger] = None
    ):
        self.run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self.on_result = on_result
        self.log = log or logging.getLogger(__name__)

        self.last_run: Optional[datetime] = None
        self.run_count = 0
        self._lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self._cancel_event = threading.Event()
        self._in_cycle = False
        self._cycle_started = 0.0
        # Set once stopped and no cycle is in flight
        self._finished = threading.Event()
        self._finished.set()

    @property
    def one_shot(self) -> bool:
        return self.interval_seconds <= 0

    @property
    def is_running(self) -> bool:
        return not self._finished.is_set()

    def start(self) -> None:
        """
        Begin background scheduling. No-op when already running.

        After a ``stop()`` whose cycle is still finishing, waits for that cycle
        to return before scheduling the next one.
        """
        while True:
            with self._lock:
                if self._finished.is_set():
                    self._start_locked()
                    return
                if self._scheduler is not None:
                    self.log.debug("River scheduler already running")
                    return
            self.log.info("Waiting for the previous river cycle to finish before starting")
            self._finished.wait()

    def _start_locked(self) -> None:
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        self._finished.clear()

        scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
            daemon=True
        )
        scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        scheduler.add_listener(lambda event: self._on_executed(scheduler, event), EVENT_JOB_EXECUTED)
        if self.one_shot:
            trigger = DateTrigger(run_date=datetime.now())
        else:
            trigger = IntervalTrigger(seconds=self.interval_seconds)
        scheduler.add_job(
            self._execute,
            trigger=trigger,
            args=[cancel_event],
            id=JOB_ID,
            next_run_time=datetime.now(),
            replace_existing=True
        )
        self._scheduler = scheduler
        scheduler.start()
        mode = "one-shot" if self.one_shot else f"every {self.interval_seconds:g} seconds"
        self.log.info(f"River import thread has started ({mode})")

    def stop(self) -> None:
        """Request a graceful halt. Safe to call from any thread, and more than once."""
        with self._lock:
            self._cancel_event.set()
            scheduler, self._scheduler = self._scheduler, None
            idle = not self._in_cycle
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        if scheduler is not None:
            self.log.info("River scheduler stopped")
        if idle:
            self._finished.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until the scheduler has stopped and its last cycle has returned. False on timeout."""
        return self._finished.wait(timeout)

    def _execute(self, cancel_event: threading.Event) -> None:
        with self._lock:
            # A fire submitted just before stop() belongs to a finished run
            if cancel_event.is_set():
                return
            self._in_cycle = True
            self.last_run = datetime.now()
            self._cycle_started = time.monotonic()
            self.run_count += 1
            run_number = self.run_count

        try:
            result = self.run_cycle(cancel_event)
            self.log.info(f"River cycle #{run_number} finished: {result.model_dump(mode='json')}")
            if self.on_result:
                self.on_result(result)
        except Exception as e:
            self.log.error(f"River cycle #{run_number} failed: {e}", exc_info=True)
        finally:
            with self._lock:
                self._in_cycle = False
                stopped = self._scheduler is None
            if stopped:
                self._finished.set()

        if self.one_shot:
            self.log.info("River import thread has finished (one-shot)")
            self.stop()

    def _on_executed(self, scheduler: BackgroundScheduler, event) -> None:
        """Anchor the next run on the start of the cycle that just ended."""
        if self.one_shot or event.job_id != JOB_ID:
            return
        with self._lock:
            if self._scheduler is not scheduler:
                return
            elapsed = time.monotonic() - self._cycle_started
            if elapsed >= self.interval_seconds:
                self.log.info(f"River cycle overran the interval ({elapsed:.1f} seconds), running the next one now")
                scheduler.modify_job(JOB_ID, next_run_time=datetime.now())
            else:
                self.log.info(
                    f"River import thread is waiting for {self.interval_seconds - elapsed:.1f} seconds "
                    f"until the next run"
                )

    def _on_max_instances(self, event) -> None:
        self.log.warning("River cycle skipped: previous run still active")
