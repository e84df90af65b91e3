"""Adaptive interval prediction for one polled source.

Learns a source's real publication cadence from the timestamps embedded
in the data it returns, and turns that into the next time worth polling:

  - Normal mode: poll at last_data + cadence + slack, where cadence is the
    mean of recent observed intervals (or the configured base interval
    until 3 samples exist) and slack absorbs publication jitter.
  - Retrying mode: after a miss, poll again after a short retry interval
    until the retry budget (max_retries) is spent, then fall back to the
    normal cycle with a wider slack.

Every answer is clamped into [now + minimum_interval, now + maximum_interval]
so a confused predictor can neither flood a source nor starve it.

Pure state and arithmetic: no I/O and no threads of its own. The lock
may be shared with the owning supervisor so predictor and lifecycle
mutate under one critical section.
"""

import logging
import statistics
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from lifestream.timeutil import ensure_utc, utc_now

logger = logging.getLogger(__name__)

MIN_SAMPLES = 3                   # samples needed before the mean is trusted
SLACK_GROWTH = 1.2                # per exhausted retry budget
SLACK_STDDEV_FACTOR = 1.5
SLACK_FLOOR = timedelta(seconds=15)
SLACK_CEILING = timedelta(seconds=120)


class PredictorMode(Enum):
    NORMAL = "normal"
    RETRYING = "retrying"


@dataclass(frozen=True)
class PredictorSnapshot:
    """Consistent read of predictor state for display."""

    mode: PredictorMode
    consecutive_misses: int
    current_slack: timedelta
    average_interval: timedelta
    sample_count: int
    last_data_timestamp: Optional[datetime]
    last_check_time: Optional[datetime]


class IntervalPredictor:
    """Predicts when a source will next publish new data."""

    def __init__(
        self,
        base_interval: timedelta,
        initial_slack: timedelta,
        minimum_interval: timedelta,
        maximum_interval: timedelta,
        retry_interval: timedelta,
        max_retries: int = 3,
        max_observations: int = 10,
        outlier_factor: float = 2.0,
        clock: Callable[[], datetime] = utc_now,
        lock: Optional[threading.RLock] = None,
    ):
        self.base_interval = base_interval
        self.minimum_interval = minimum_interval
        self.maximum_interval = maximum_interval
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.max_observations = max_observations
        self.outlier_factor = outlier_factor
        self._clock = clock
        self._lock = lock or threading.RLock()

        self._samples: Deque[timedelta] = deque()
        self._current_slack = initial_slack
        self._consecutive_misses = 0
        self._mode = PredictorMode.NORMAL
        self._last_data_timestamp: Optional[datetime] = None
        self._last_check_time: Optional[datetime] = None

    # ─── Read accessors ───

    @property
    def current_slack(self) -> timedelta:
        with self._lock:
            return self._current_slack

    @property
    def consecutive_misses(self) -> int:
        with self._lock:
            return self._consecutive_misses

    @property
    def mode(self) -> PredictorMode:
        with self._lock:
            return self._mode

    @property
    def last_data_timestamp(self) -> Optional[datetime]:
        with self._lock:
            return self._last_data_timestamp

    @property
    def last_check_time(self) -> Optional[datetime]:
        with self._lock:
            return self._last_check_time

    @property
    def samples(self) -> Tuple[timedelta, ...]:
        with self._lock:
            return tuple(self._samples)

    @property
    def average_observed_interval(self) -> timedelta:
        """Mean of retained samples, or the base interval when there are none."""
        with self._lock:
            return self._average()

    @property
    def should_retry(self) -> bool:
        with self._lock:
            return self._mode is PredictorMode.RETRYING

    @property
    def sample_ceiling(self) -> timedelta:
        """Largest interval still accepted as a representative sample."""
        return self.maximum_interval * self.outlier_factor

    def snapshot(self) -> PredictorSnapshot:
        with self._lock:
            return PredictorSnapshot(
                mode=self._mode,
                consecutive_misses=self._consecutive_misses,
                current_slack=self._current_slack,
                average_interval=self._average(),
                sample_count=len(self._samples),
                last_data_timestamp=self._last_data_timestamp,
                last_check_time=self._last_check_time,
            )

    # ─── Mutations ───

    def record_success(self, data_timestamp: datetime):
        """Record a fetch that returned data stamped with data_timestamp.

        The interval since the previous data timestamp only becomes a sample
        if it is plausible: catch-up bursts (many historical items at once)
        and long outages would otherwise poison the mean.
        """
        data_timestamp = ensure_utc(data_timestamp)
        with self._lock:
            last = self._last_data_timestamp
            if last is not None and data_timestamp > last:
                interval = data_timestamp - last
                if self.minimum_interval <= interval <= self.sample_ceiling:
                    self._samples.append(interval)
                    while len(self._samples) > self.max_observations:
                        self._samples.popleft()
                    self._adapt_slack()
                else:
                    logger.debug(
                        "Rejected interval %.0fs (outside %.0fs..%.0fs)",
                        interval.total_seconds(),
                        self.minimum_interval.total_seconds(),
                        self.sample_ceiling.total_seconds(),
                    )

            self._last_data_timestamp = data_timestamp
            self._last_check_time = self._clock()
            self._consecutive_misses = 0
            self._mode = PredictorMode.NORMAL

    def record_miss(self):
        """Record a check that found no new data."""
        with self._lock:
            self._consecutive_misses += 1
            self._last_check_time = self._clock()

            if self._consecutive_misses >= self.max_retries:
                # Retry budget spent: the source is reliably later than we think
                grown = self._current_slack * SLACK_GROWTH
                self._current_slack = min(grown, self.maximum_interval / 2)
                self._mode = PredictorMode.NORMAL
            else:
                self._mode = PredictorMode.RETRYING

    def seed(self, data_timestamp: datetime):
        """Prime the predictor with the most recent known observation."""
        data_timestamp = ensure_utc(data_timestamp)
        with self._lock:
            last = self._last_data_timestamp
            if last is None or data_timestamp > last:
                self._last_data_timestamp = data_timestamp

    def reset(self):
        """Forget everything learned. Tuning constants survive."""
        with self._lock:
            self._samples.clear()
            self._last_data_timestamp = None
            self._last_check_time = None
            self._consecutive_misses = 0
            self._mode = PredictorMode.NORMAL

    # ─── Scheduling ───

    def next_check_time(self, now: Optional[datetime] = None) -> datetime:
        """When to poll next."""
        with self._lock:
            now = ensure_utc(now) if now is not None else self._clock()

            if self._mode is PredictorMode.RETRYING:
                return now + self.retry_interval

            if self._last_data_timestamp is not None:
                if len(self._samples) >= MIN_SAMPLES:
                    interval = self._average()
                else:
                    interval = self.base_interval
                expected = self._last_data_timestamp + interval + self._current_slack
            else:
                expected = now + self.minimum_interval

            floor = now + self.minimum_interval
            ceiling = now + self.maximum_interval
            return max(floor, min(expected, ceiling))

    def delay_until_next_check(self, now: Optional[datetime] = None) -> timedelta:
        with self._lock:
            now = ensure_utc(now) if now is not None else self._clock()
            delay = self.next_check_time(now) - now
            return max(delay, self.minimum_interval)

    # ─── Internals (caller holds the lock) ───

    def _average(self) -> timedelta:
        if not self._samples:
            return self.base_interval
        total = sum((s.total_seconds() for s in self._samples), 0.0)
        return timedelta(seconds=total / len(self._samples))

    def _adapt_slack(self):
        if len(self._samples) < MIN_SAMPLES:
            return
        stddev = statistics.pstdev(s.total_seconds() for s in self._samples)
        slack = timedelta(seconds=stddev * SLACK_STDDEV_FACTOR) + SLACK_FLOOR
        self._current_slack = max(SLACK_FLOOR, min(slack, SLACK_CEILING))
