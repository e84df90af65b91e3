"""Status state machine and health counters for one source.

The lifecycle is the single writer of its own state; the supervisor that
owns it is the only caller of its mutators. Observers read through the
properties, which take the same lock the supervisor uses for predictor
updates, so a display never sees half of an outcome applied.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from lifestream.errors import InvalidTransition
from lifestream.events import StatusChanged
from lifestream.status import TRANSITIONS, ServiceStatus
from lifestream.timeutil import utc_now

logger = logging.getLogger(__name__)


class ServiceLifecycle:
    """Tracks status, refresh times and failures for one service."""

    def __init__(
        self,
        service_id: str,
        on_change: Optional[Callable[[StatusChanged], None]] = None,
        clock: Callable[[], datetime] = utc_now,
        lock: Optional[threading.RLock] = None,
    ):
        self.service_id = service_id
        self._on_change = on_change
        self._clock = clock
        self._lock = lock or threading.RLock()
        self._status = ServiceStatus.STOPPED
        self._last_refresh: Optional[datetime] = None
        self._next_refresh: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._consecutive_failures = 0

    @property
    def status(self) -> ServiceStatus:
        with self._lock:
            return self._status

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._status.is_active

    @property
    def last_refresh(self) -> Optional[datetime]:
        with self._lock:
            return self._last_refresh

    @property
    def next_refresh(self) -> Optional[datetime]:
        with self._lock:
            return self._next_refresh

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def can_transition(self, new: ServiceStatus) -> bool:
        with self._lock:
            return new is self._status or new in TRANSITIONS[self._status]

    def transition(self, new: ServiceStatus) -> Optional[StatusChanged]:
        """Move to a new status and announce it.

        Returns the StatusChanged event, or None if already in that status.
        Raises InvalidTransition for moves the state table forbids.
        """
        with self._lock:
            old = self._status
            if new is old:
                return None
            if new not in TRANSITIONS[old]:
                raise InvalidTransition(old, new)
            self._status = new
            if new is ServiceStatus.STOPPED:
                self._next_refresh = None
            event = StatusChanged(self.service_id, old, new, self._clock())

        logger.debug("%s: %s -> %s", self.service_id, old.value, new.value)
        if self._on_change:
            self._on_change(event)
        return event

    def record_success(self, when: Optional[datetime] = None) -> Optional[StatusChanged]:
        """A fetch succeeded. Recovers a degraded service."""
        with self._lock:
            self._last_refresh = when or self._clock()
            self._last_error = None
            self._consecutive_failures = 0
            if self._status is ServiceStatus.DEGRADED:
                return self.transition(ServiceStatus.RUNNING)
        return None

    def record_failure(self, message: str) -> int:
        """A fetch failed. Returns the consecutive failure count."""
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = message
            return self._consecutive_failures

    def set_next_refresh(self, when: Optional[datetime]):
        with self._lock:
            self._next_refresh = when
