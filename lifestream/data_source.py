"""Data source collaborator contract.

A DataSource knows how to talk to one external source (an HTTP API, an
image listing, /proc). It does not schedule itself: a SourceSupervisor
decides when to call fetch() and what the outcome means for the
polling cadence. The dashboard doesn't care where data comes from --
it just subscribes to events.

fetch() reports what it found as one of four outcome values:

    NewData(payload, timestamp)  -- fresh data, stamped by the source
    UnchangedData(timestamp)     -- source answered, nothing new
    Miss(reason)                 -- expected data is not there (yet)
    FatalError(reason)           -- unrecoverable; stop polling

Transient trouble (timeouts, rate limits, 5xx) is raised as an exception,
usually TransientFetchError. FatalSourceError may be raised instead of
returning FatalError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, Optional, Union


@dataclass(frozen=True)
class NewData:
    payload: Any
    timestamp: datetime


@dataclass(frozen=True)
class UnchangedData:
    timestamp: datetime


@dataclass(frozen=True)
class Miss:
    reason: str = "no new data"


@dataclass(frozen=True)
class FatalError:
    reason: str


FetchOutcome = Union[NewData, UnchangedData, Miss, FatalError]


def _never_cancelled() -> bool:
    return False


@dataclass(frozen=True)
class FetchContext:
    """What a collaborator may know about the fetch it is asked to do."""

    service_id: str
    now: datetime
    last_data_timestamp: Optional[datetime] = None
    manual: bool = False
    cancelled: Callable[[], bool] = field(default=_never_cancelled, compare=False)


class DataSource(ABC):
    """Base class for all data providers.

    Subclasses implement fetch(), which runs on the supervisor's
    background thread. Sources that can backfill history also override
    check_exists() and fetch_instant().
    """

    source_type: ClassVar[str] = "generic"
    # Tuning defaults (seconds) merged under the YAML options for this type
    default_options: ClassVar[Dict[str, Any]] = {}

    def __init__(self, source_id: str, config: Optional[Dict] = None):
        self.source_id = source_id
        self.config = dict(config or {})
        self.name = self.config.get("name", source_id)

    @abstractmethod
    def fetch(self, context: FetchContext) -> FetchOutcome:
        """Ask the source for its latest data."""
        ...

    def check_exists(self, instant: datetime) -> bool:
        """Whether data for this instant is already held locally."""
        return True

    def fetch_instant(self, instant: datetime, context: FetchContext) -> FetchOutcome:
        """Backfill one historical instant. Miss means the source lacks it."""
        return Miss("backfill not supported")

    def seed_observation(self) -> Optional[datetime]:
        """Most recent data timestamp known at startup, if any."""
        return None

    def close(self):
        """Release resources. Override if needed."""
