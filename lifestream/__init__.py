"""Adaptive source polling engine for the LifeStream dashboard.

Decides when to ask each data source for fresh data, learns each
source's real publication cadence, retries misses without flooding,
backfills gaps in recent history, and reports status uniformly.

Architecture:
    DataSource         -- collaborator that talks to one external source
    IntervalPredictor  -- learns cadence + slack, picks the next check time
    GapReconciler      -- finds and backfills missing instants in a window
    ServiceLifecycle   -- status state machine and health counters
    SourceSupervisor   -- one background polling loop per source
    ServiceRegistry    -- composition root: all supervisors, aggregate control
    EventBus           -- delivers events to subscribers on one context
"""

from lifestream.data_source import (
    DataSource,
    FatalError,
    FetchContext,
    Miss,
    NewData,
    UnchangedData,
)
from lifestream.errors import (
    ConfigError,
    FatalSourceError,
    LifeStreamError,
    RegistryError,
    TransientFetchError,
)
from lifestream.event_bus import EventBus
from lifestream.events import DataReceived, ErrorOccurred, StatusChanged
from lifestream.gaps import GapReconciler, GapWindow
from lifestream.intervals import IntervalPredictor, PredictorMode
from lifestream.lifecycle import ServiceLifecycle
from lifestream.options import SourceOptions
from lifestream.registry import SOURCE_REGISTRY, register_source
from lifestream.service_registry import ServiceRegistry
from lifestream.status import ServiceStatus
from lifestream.supervisor import ServiceSnapshot, SourceSupervisor

__version__ = "1.0.0"

__all__ = [
    "DataSource",
    "FetchContext",
    "NewData",
    "UnchangedData",
    "Miss",
    "FatalError",
    "LifeStreamError",
    "ConfigError",
    "RegistryError",
    "TransientFetchError",
    "FatalSourceError",
    "EventBus",
    "DataReceived",
    "StatusChanged",
    "ErrorOccurred",
    "GapReconciler",
    "GapWindow",
    "IntervalPredictor",
    "PredictorMode",
    "ServiceLifecycle",
    "ServiceStatus",
    "SourceOptions",
    "SOURCE_REGISTRY",
    "register_source",
    "ServiceRegistry",
    "ServiceSnapshot",
    "SourceSupervisor",
]
