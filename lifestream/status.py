"""Service status values shared by every polled source."""

from enum import Enum


class ServiceStatus(Enum):
    STOPPED = "stopped"      # not started
    STARTING = "starting"    # initializing, catching up history
    RUNNING = "running"
    DEGRADED = "degraded"    # last fetch failed, showing stale data
    STOPPING = "stopping"
    FAULTED = "faulted"      # fatal error, needs an explicit restart

    @property
    def is_active(self) -> bool:
        return self in (ServiceStatus.RUNNING, ServiceStatus.DEGRADED)


# Allowed transitions. FAULTED is left only by an explicit restart or stop.
TRANSITIONS = {
    ServiceStatus.STOPPED: {ServiceStatus.STARTING, ServiceStatus.FAULTED},
    ServiceStatus.STARTING: {ServiceStatus.RUNNING, ServiceStatus.STOPPING, ServiceStatus.FAULTED},
    ServiceStatus.RUNNING: {ServiceStatus.DEGRADED, ServiceStatus.STOPPING, ServiceStatus.FAULTED},
    ServiceStatus.DEGRADED: {ServiceStatus.RUNNING, ServiceStatus.STOPPING, ServiceStatus.FAULTED},
    ServiceStatus.STOPPING: {ServiceStatus.STOPPED, ServiceStatus.FAULTED},
    ServiceStatus.FAULTED: {ServiceStatus.STARTING, ServiceStatus.STOPPING},
}
