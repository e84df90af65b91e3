"""Source supervisor: one adaptive polling loop per data source.

Each supervisor owns a background thread that:

  1. initializes (seeds the predictor, runs one catch-up pass, does a
     first fetch) while the service is STARTING,
  2. waits until the predictor's next check time, interruptibly,
  3. asks its DataSource to fetch and classifies the outcome,
  4. feeds the outcome to the IntervalPredictor and ServiceLifecycle and
     publishes the matching event, then loops.

Predictor, lifecycle and run bookkeeping share one RLock, so an outcome
is applied atomically and stop() can never interleave with it. Every
start() begins a new run; a loop whose run is no longer current (or has
been stopped) discards whatever it was doing and publishes nothing.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from lifestream.data_source import (
    DataSource,
    FatalError,
    FetchContext,
    FetchOutcome,
    Miss,
    NewData,
    UnchangedData,
)
from lifestream.errors import FatalSourceError
from lifestream.event_bus import EventBus
from lifestream.events import DataReceived, ErrorOccurred, StatusChanged
from lifestream.gaps import GapReconciler, ReconcileReport
from lifestream.intervals import IntervalPredictor
from lifestream.lifecycle import ServiceLifecycle
from lifestream.options import SourceOptions
from lifestream.status import ServiceStatus
from lifestream.timeutil import seconds, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceSnapshot:
    """Consistent, read-only view of one service for status displays."""

    service_id: str
    name: str
    source_type: str
    status: ServiceStatus
    is_running: bool
    last_refresh: Optional[datetime]
    next_refresh: Optional[datetime]
    last_error: Optional[str]
    consecutive_failures: int
    consecutive_misses: int
    current_slack: timedelta
    average_interval: timedelta
    last_data_timestamp: Optional[datetime]
    unavailable_instants: int

    def to_dict(self) -> Dict[str, Any]:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "service_id": self.service_id,
            "name": self.name,
            "source_type": self.source_type,
            "status": self.status.value,
            "is_running": self.is_running,
            "last_refresh": iso(self.last_refresh),
            "next_refresh": iso(self.next_refresh),
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_misses": self.consecutive_misses,
            "current_slack": seconds(self.current_slack),
            "average_interval": seconds(self.average_interval),
            "last_data_timestamp": iso(self.last_data_timestamp),
            "unavailable_instants": self.unavailable_instants,
        }


class _Run:
    """Signals belonging to one start()..stop() cycle."""

    def __init__(self, generation: int):
        self.generation = generation
        self.wake = threading.Event()      # stop or refresh_now
        self.stopping = threading.Event()  # stop only
        self.refresh = False


class SourceSupervisor:
    """Drives one DataSource with adaptive scheduling and lifecycle tracking."""

    def __init__(
        self,
        source: DataSource,
        bus: EventBus,
        options: SourceOptions,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.bus = bus
        self.options = options
        self._clock = clock
        self._lock = threading.RLock()
        # Held around every call into the source, across runs: a restart
        # waits for a fetch the previous run left in flight.
        self._fetch_lock = threading.Lock()

        self.predictor = IntervalPredictor(
            base_interval=options.base_interval,
            initial_slack=options.initial_slack,
            minimum_interval=options.minimum_interval,
            maximum_interval=options.maximum_interval,
            retry_interval=options.retry_interval,
            max_retries=options.max_retries,
            max_observations=options.max_observations,
            outlier_factor=options.outlier_factor,
            clock=clock,
            lock=self._lock,
        )
        self.reconciler: Optional[GapReconciler] = None
        if options.catchup_enabled:
            self.reconciler = GapReconciler(
                cadence=options.catchup_cadence,
                lookback=options.catchup_window,
                attempt_cap=options.catchup_attempt_cap,
                max_per_pass=options.catchup_max_per_pass,
                clock=clock,
            )
        self.lifecycle = ServiceLifecycle(
            source.source_id, on_change=self._publish_status, clock=clock, lock=self._lock
        )

        self._generation = 0
        self._run: Optional[_Run] = None
        self._thread: Optional[threading.Thread] = None
        self._last_catchup: Optional[datetime] = None
        self._last_payload: Any = None
        self._last_report: Optional[ReconcileReport] = None

    # ─── Identity and status ───

    @property
    def service_id(self) -> str:
        return self.source.source_id

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def source_type(self) -> str:
        return self.source.source_type

    @property
    def status(self) -> ServiceStatus:
        return self.lifecycle.status

    @property
    def is_running(self) -> bool:
        return self.lifecycle.is_running

    @property
    def last_refresh(self) -> Optional[datetime]:
        return self.lifecycle.last_refresh

    @property
    def next_refresh(self) -> Optional[datetime]:
        return self.lifecycle.next_refresh

    @property
    def last_error(self) -> Optional[str]:
        return self.lifecycle.last_error

    @property
    def consecutive_failures(self) -> int:
        return self.lifecycle.consecutive_failures

    @property
    def last_payload(self) -> Any:
        """Last good payload; stays visible while the service is degraded."""
        with self._lock:
            return self._last_payload

    @property
    def last_catchup_report(self) -> Optional[ReconcileReport]:
        with self._lock:
            return self._last_report

    def snapshot(self) -> ServiceSnapshot:
        with self._lock:
            pred = self.predictor.snapshot()
            lc = self.lifecycle
            return ServiceSnapshot(
                service_id=self.service_id,
                name=self.name,
                source_type=self.source_type,
                status=lc.status,
                is_running=lc.is_running,
                last_refresh=lc.last_refresh,
                next_refresh=lc.next_refresh,
                last_error=lc.last_error,
                consecutive_failures=lc.consecutive_failures,
                consecutive_misses=pred.consecutive_misses,
                current_slack=pred.current_slack,
                average_interval=pred.average_interval,
                last_data_timestamp=pred.last_data_timestamp,
                unavailable_instants=len(self.reconciler.unavailable) if self.reconciler else 0,
            )

    # ─── Control ───

    def start(self) -> bool:
        """Begin polling. Legal from STOPPED or FAULTED; returns False otherwise."""
        with self._lock:
            status = self.lifecycle.status
            if status not in (ServiceStatus.STOPPED, ServiceStatus.FAULTED):
                logger.warning("%s start() ignored, status is %s", self.service_id, status.value)
                return False

            logger.info("Starting service: %s", self.name)
            self._generation += 1
            run = _Run(self._generation)
            self._run = run
            self.lifecycle.transition(ServiceStatus.STARTING)
            self._thread = threading.Thread(
                target=self._loop, args=(run,), daemon=True, name=f"src-{self.service_id}"
            )
            self._thread.start()
        return True

    def stop(self):
        """Stop polling. Returns without waiting out the current delay.

        A fetch still in flight is not aborted; its result is discarded, and
        a later start() does not call the source until it returns.
        No event from the stopped run is published after this returns.
        """
        with self._lock:
            status = self.lifecycle.status
            if status is ServiceStatus.STOPPED:
                return
            logger.info("Stopping service: %s", self.name)
            run = self._run
            if run:
                run.stopping.set()
                run.wake.set()
            if status is not ServiceStatus.STOPPING:
                self.lifecycle.transition(ServiceStatus.STOPPING)
            thread = self._thread

        if thread and thread is not threading.current_thread():
            thread.join(self.options.stop_timeout.total_seconds())
            if thread.is_alive():
                logger.warning("%s: fetch still in flight, result will be discarded", self.service_id)

        with self._lock:
            if self._thread is thread:
                self._thread = None
            self.lifecycle.transition(ServiceStatus.STOPPED)
            logger.info("Service stopped: %s", self.name)

    def refresh_now(self) -> bool:
        """Interrupt the wait and fetch out of cycle."""
        with self._lock:
            run = self._run
            if run is None or not self.lifecycle.is_running:
                logger.warning("%s refresh_now() called but service is not running", self.service_id)
                return False
            logger.debug("%s: manual refresh requested", self.service_id)
            run.refresh = True
            run.wake.set()
        return True

    def reset(self):
        """Forget learned cadence and catch-up history (explicit user action)."""
        with self._lock:
            self.predictor.reset()
            if self.reconciler:
                self.reconciler.clear()
        logger.info("%s: predictor state reset", self.service_id)

    def join(self, timeout: Optional[float] = None):
        """Wait for the polling thread to exit (after stop or a fault)."""
        thread = self._thread
        if thread:
            thread.join(timeout)

    def close(self):
        self.stop()
        self.source.close()

    # ─── Polling loop (background thread) ───

    def _publish_status(self, event: StatusChanged):
        self.bus.publish(event)

    def _live(self, run: _Run) -> bool:
        with self._lock:
            return run is self._run and not run.stopping.is_set()

    def _loop(self, run: _Run):
        try:
            if not self._initialize(run):
                return
            while self._live(run):
                manual = self._wait(run)
                if not self._live(run):
                    break
                outcome, error = self._fetch(run, manual)
                if not self._apply(run, outcome, error, manual):
                    break
                if self._catchup_due():
                    self._catch_up(run)
        except FatalSourceError as exc:
            self._fault(run, str(exc))
        except Exception as exc:
            logger.exception("%s: polling loop crashed", self.service_id)
            self._fault(run, f"Internal error: {exc}")
        finally:
            logger.debug("%s: polling loop exited (run %d)", self.service_id, run.generation)

    def _initialize(self, run: _Run) -> bool:
        try:
            seed = self.source.seed_observation()
        except FatalSourceError:
            raise
        except Exception as exc:
            logger.warning("%s: could not read seed observation: %s", self.service_id, exc)
            seed = None
        if seed is not None:
            self.predictor.seed(seed)
            logger.debug("%s: seeded with %s", self.service_id, seed.isoformat())

        if self.reconciler:
            self._catch_up(run)
        if not self._live(run):
            return False

        outcome, error = self._fetch(run, manual=False)
        if isinstance(outcome, FatalError) or isinstance(error, FatalSourceError):
            reason = outcome.reason if isinstance(outcome, FatalError) else str(error)
            self._fault(run, reason)
            return False

        with self._lock:
            if not self._live(run):
                return False
            self.lifecycle.transition(ServiceStatus.RUNNING)
            logger.info("Service started: %s", self.name)
        return self._apply(run, outcome, error, manual=False)

    def _wait(self, run: _Run) -> bool:
        """Sleep until the next check, a refresh request, or stop."""
        with self._lock:
            now = self._clock()
            delay = self.predictor.delay_until_next_check(now)
            self.lifecycle.set_next_refresh(now + delay)
        logger.debug("%s: next poll in %.0fs", self.service_id, delay.total_seconds())

        run.wake.wait(delay.total_seconds())
        with self._lock:
            run.wake.clear()
            manual, run.refresh = run.refresh, False
        return manual

    def _fetch(self, run: _Run, manual: bool) -> Tuple[Optional[FetchOutcome], Optional[Exception]]:
        with self._fetch_lock:
            if run.stopping.is_set():
                return Miss("stopped before fetch"), None
            context = FetchContext(
                service_id=self.service_id,
                now=self._clock(),
                last_data_timestamp=self.predictor.last_data_timestamp,
                manual=manual,
                cancelled=run.stopping.is_set,
            )
            try:
                return self.source.fetch(context), None
            except Exception as exc:
                return None, exc

    def _apply(self, run: _Run, outcome: Optional[FetchOutcome], error: Optional[Exception], manual: bool) -> bool:
        """Apply one fetch outcome. Returns False when the loop must end."""
        if isinstance(error, FatalSourceError) or isinstance(outcome, FatalError):
            reason = outcome.reason if isinstance(outcome, FatalError) else str(error)
            self._fault(run, reason)
            return False

        with self._lock:
            if not self._live(run):
                logger.debug("%s: discarding result of stopped run", self.service_id)
                return False
            now = self._clock()

            if error is not None:
                message = str(error) or type(error).__name__
                failures = self.lifecycle.record_failure(message)
                if not manual:
                    self.predictor.record_miss()
                if self.lifecycle.status is ServiceStatus.RUNNING:
                    self.lifecycle.transition(ServiceStatus.DEGRADED)
                next_retry = now + self.predictor.delay_until_next_check(now)
                logger.warning("%s fetch failed (attempt %d): %s", self.service_id, failures, message)
                self.bus.publish(ErrorOccurred(self.service_id, message, True, next_retry))

            elif isinstance(outcome, NewData):
                self.predictor.record_success(outcome.timestamp)
                self.lifecycle.record_success(now)
                self._last_payload = outcome.payload
                logger.debug("%s: new data stamped %s", self.service_id, outcome.timestamp.isoformat())
                self.bus.publish(DataReceived(self.service_id, outcome.payload, True, outcome.timestamp))

            elif isinstance(outcome, UnchangedData):
                if not manual:
                    self.predictor.record_success(outcome.timestamp)
                self.lifecycle.record_success(now)
                self.bus.publish(DataReceived(self.service_id, None, False, outcome.timestamp))

            elif isinstance(outcome, Miss):
                if not manual:
                    self.predictor.record_miss()
                logger.debug(
                    "%s: %s (miss %d/%d)", self.service_id, outcome.reason,
                    self.predictor.consecutive_misses, self.predictor.max_retries,
                )

            else:
                raise TypeError(f"{self.service_id}: fetch returned {outcome!r}")
        return True

    def _fault(self, run: _Run, message: str):
        with self._lock:
            if not self._live(run):
                return
            self.lifecycle.record_failure(message)
            self.lifecycle.transition(ServiceStatus.FAULTED)
            self.lifecycle.set_next_refresh(None)
            self.bus.publish(ErrorOccurred(self.service_id, message, False, None, fatal=True))
        logger.error("%s faulted: %s", self.service_id, message)

    # ─── Catch-up ───

    def _catchup_due(self) -> bool:
        interval = self.options.catchup_interval
        if not self.reconciler or not interval:
            return False
        with self._lock:
            last = self._last_catchup
        return last is None or self._clock() - last >= interval

    def _catch_up(self, run: _Run):
        with self._lock:
            self._last_catchup = self._clock()
        delay = self.options.catchup_delay.total_seconds()

        def backfill(instant: datetime) -> FetchOutcome:
            context = FetchContext(
                service_id=self.service_id,
                now=self._clock(),
                last_data_timestamp=self.predictor.last_data_timestamp,
                cancelled=run.stopping.is_set,
            )
            with self._fetch_lock:
                outcome = self.source.fetch_instant(instant, context)
            if isinstance(outcome, NewData):
                with self._lock:
                    if self._live(run):
                        self.predictor.seed(outcome.timestamp)
                        self.bus.publish(DataReceived(self.service_id, outcome.payload, False, outcome.timestamp))
            return outcome

        try:
            report = self.reconciler.reconcile(
                backfill,
                self.source.check_exists,
                should_stop=run.stopping.is_set,
                pause=(lambda: run.stopping.wait(delay)) if delay > 0 else None,
            )
        except FatalSourceError:
            raise
        except Exception as exc:
            logger.warning("%s: catch-up pass failed: %s", self.service_id, exc)
            return
        with self._lock:
            self._last_report = report
