"""Gap reconciliation ("catch-up") over a trailing time window.

When the dashboard was not running, or a fetch was missed, a source can
have holes in its recent history. The reconciler enumerates the instants
a source should have published inside a bounded window, asks an
existence check which ones are already held, and backfills the rest.

Two kinds of failure are kept apart:

  - transient: the request itself failed (network, rate limit). Nothing
    is recorded; the instant is tried again on the next pass.
  - confirmed absent: the source answered and does not have the data.
    After attempt_cap such answers the instant is marked permanently
    unavailable and skipped, so a genuine hole in the source's own
    publication never burns requests forever.

Each pass is capped at max_per_pass backfill requests.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Set

from lifestream.data_source import FatalError, FetchOutcome, Miss, NewData, UnchangedData
from lifestream.errors import FatalSourceError
from lifestream.timeutil import align_down, ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GapWindow:
    window_start: datetime
    window_end: datetime
    cadence: timedelta

    @classmethod
    def trailing(cls, end: datetime, span: timedelta, cadence: timedelta) -> "GapWindow":
        """Window of length span ending at the last grid instant <= end."""
        aligned_end = align_down(end, cadence)
        return cls(aligned_end - span, aligned_end, cadence)

    def instants(self) -> Iterator[datetime]:
        """Expected instants, oldest first, both ends inclusive."""
        instant = self.window_start
        while instant <= self.window_end:
            yield instant
            instant += self.cadence

    def __contains__(self, instant: datetime) -> bool:
        return self.window_start <= instant <= self.window_end


@dataclass(frozen=True)
class ReconcileReport:
    window: GapWindow
    attempted: int = 0
    filled: int = 0
    absent: int = 0
    failed: int = 0
    unavailable: int = 0
    aborted: bool = False


class GapReconciler:
    """Finds and fills missing instants for one source."""

    def __init__(
        self,
        cadence: timedelta,
        lookback: timedelta,
        attempt_cap: int = 3,
        max_per_pass: int = 24,
        clock: Callable[[], datetime] = utc_now,
    ):
        if cadence <= timedelta(0):
            raise ValueError("cadence must be positive")
        self.cadence = cadence
        self.lookback = lookback
        self.attempt_cap = attempt_cap
        self.max_per_pass = max_per_pass
        self._clock = clock
        self._lock = threading.Lock()
        self._absences: Dict[datetime, int] = {}
        self._unavailable: Set[datetime] = set()

    def window(self, end: Optional[datetime] = None) -> GapWindow:
        end = ensure_utc(end) if end is not None else self._clock()
        return GapWindow.trailing(end, self.lookback, self.cadence)

    @property
    def unavailable(self) -> List[datetime]:
        with self._lock:
            return sorted(self._unavailable)

    def is_unavailable(self, instant: datetime) -> bool:
        with self._lock:
            return ensure_utc(instant) in self._unavailable

    def missing(self, window: GapWindow, exists: Callable[[datetime], bool]) -> List[datetime]:
        """Instants in the window not yet held, oldest first, capped per pass."""
        with self._lock:
            skip = set(self._unavailable)

        result = []
        for instant in window.instants():
            if instant in skip:
                continue
            if exists(instant):
                continue
            result.append(instant)
            if len(result) >= self.max_per_pass:
                break
        return result

    def record_absent(self, instant: datetime) -> bool:
        """Count a confirmed-absent answer. True once the instant is given up on."""
        instant = ensure_utc(instant)
        with self._lock:
            if instant in self._unavailable:
                return True
            count = self._absences.get(instant, 0) + 1
            if count >= self.attempt_cap:
                self._absences.pop(instant, None)
                self._unavailable.add(instant)
                logger.info(
                    "Instant %s confirmed absent %d times, marking unavailable",
                    instant.isoformat(), count,
                )
                return True
            self._absences[instant] = count
            return False

    def record_filled(self, instant: datetime):
        instant = ensure_utc(instant)
        with self._lock:
            self._absences.pop(instant, None)
            self._unavailable.discard(instant)

    def prune(self, before: datetime):
        """Drop bookkeeping for instants that fell out of the window."""
        with self._lock:
            self._absences = {i: n for i, n in self._absences.items() if i >= before}
            self._unavailable = {i for i in self._unavailable if i >= before}

    def clear(self):
        with self._lock:
            self._absences.clear()
            self._unavailable.clear()

    def reconcile(
        self,
        backfill: Callable[[datetime], FetchOutcome],
        exists: Callable[[datetime], bool],
        end: Optional[datetime] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        pause: Optional[Callable[[], None]] = None,
    ) -> ReconcileReport:
        """Run one catch-up pass.

        backfill(instant) fetches a single instant; its outcome decides
        whether the gap was filled, confirmed absent, or failed. pause()
        runs between requests (rate limiting). A fatal outcome raises
        FatalSourceError.
        """
        window = self.window(end)
        self.prune(window.window_start)
        todo = self.missing(window, exists)
        if not todo:
            logger.debug("No gaps in window %s .. %s",
                         window.window_start.isoformat(), window.window_end.isoformat())
            return ReconcileReport(window)

        logger.info("Catching up %d missing instant(s) from %s",
                    len(todo), todo[0].isoformat())

        attempted = filled = absent = failed = unavailable = 0
        aborted = False
        for index, instant in enumerate(todo):
            if should_stop and should_stop():
                aborted = True
                break
            if index and pause:
                pause()
                if should_stop and should_stop():
                    aborted = True
                    break

            attempted += 1
            try:
                outcome = backfill(instant)
            except FatalSourceError:
                raise
            except Exception as exc:
                failed += 1
                logger.warning("Catch-up for %s failed: %s", instant.isoformat(), exc)
                continue

            if isinstance(outcome, (NewData, UnchangedData)):
                filled += 1
                self.record_filled(instant)
            elif isinstance(outcome, Miss):
                absent += 1
                if self.record_absent(instant):
                    unavailable += 1
            elif isinstance(outcome, FatalError):
                raise FatalSourceError(outcome.reason)

        logger.info(
            "Catch-up complete: %d filled, %d absent, %d failed%s",
            filled, absent, failed, " (aborted)" if aborted else "",
        )
        return ReconcileReport(window, attempted, filled, absent, failed, unavailable, aborted)
