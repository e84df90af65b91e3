"""Immutable event values emitted by source supervisors.

Each event names its topic so the EventBus can route it. Events are
created on the polling thread and delivered on the bus's delivery
context, so they must never be mutated after publication.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from lifestream.status import ServiceStatus
from lifestream.timeutil import utc_now

TOPIC_DATA = "data"
TOPIC_STATUS = "status"
TOPIC_ERROR = "error"
TOPIC_ALL = "*"


@dataclass(frozen=True)
class DataReceived:
    topic: ClassVar[str] = TOPIC_DATA

    service_id: str
    payload: Any
    is_new_data: bool
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "is_new_data": self.is_new_data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StatusChanged:
    topic: ClassVar[str] = TOPIC_STATUS

    service_id: str
    old: ServiceStatus
    new: ServiceStatus
    at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "old": self.old.value,
            "new": self.new.value,
            "at": self.at.isoformat(),
        }


@dataclass(frozen=True)
class ErrorOccurred:
    topic: ClassVar[str] = TOPIC_ERROR

    service_id: str
    message: str
    will_retry: bool
    next_retry: Optional[datetime] = None
    fatal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "message": self.message,
            "will_retry": self.will_retry,
            "next_retry": self.next_retry.isoformat() if self.next_retry else None,
            "fatal": self.fatal,
        }
