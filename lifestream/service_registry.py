"""Service registry: the composition root for all polled sources.

Holds every SourceSupervisor, exposes aggregate start/stop/refresh and
the status listing used by the operational status view. It only
aggregates: each call fans out to the supervisors outside the registry
lock, and one misbehaving source never stops the others.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from lifestream.data_source import DataSource
from lifestream.errors import ConfigError, RegistryError
from lifestream.event_bus import EventBus
from lifestream.options import SourceOptions
from lifestream.registry import SOURCE_REGISTRY
from lifestream.supervisor import ServiceSnapshot, SourceSupervisor
from lifestream.timeutil import utc_now

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Manages the lifecycle of all information services."""

    def __init__(self, bus: EventBus, clock: Callable[[], datetime] = utc_now):
        self.bus = bus
        self._clock = clock
        self._lock = threading.Lock()
        self._services: Dict[str, SourceSupervisor] = {}

    @classmethod
    def from_config(cls, config: Dict, bus: EventBus, demo: bool = False,
                    clock: Callable[[], datetime] = utc_now) -> "ServiceRegistry":
        """Build supervisors for every entry of the config's sources list.

        Unknown types and sources that fail to construct are logged and
        skipped so one bad entry cannot take the dashboard down.
        """
        registry = cls(bus, clock=clock)
        for src_cfg in config.get("sources", []) or []:
            src_type = src_cfg.get("type")
            src_id = src_cfg.get("id")
            if not src_id:
                logger.warning("Skipping source without id: %s", src_cfg)
                continue
            if src_cfg.get("enabled") is False:
                logger.info("Source %s disabled in config", src_id)
                continue
            if src_type not in SOURCE_REGISTRY:
                logger.warning("Unknown source type: %s (for %s)", src_type, src_id)
                continue

            source_cls = SOURCE_REGISTRY[src_type]
            try:
                if demo:
                    src_cfg = dict(src_cfg, demo=True)
                source = source_cls(src_id, src_cfg)
                options = SourceOptions.from_config(src_cfg, source_cls.default_options)
                registry.add_source(source, options)
            except (ConfigError, RegistryError) as exc:
                logger.error("Invalid config for source %s: %s", src_id, exc)
            except Exception as exc:
                logger.error("Failed to create source %s: %s", src_id, exc)
        return registry

    # ─── Membership ───

    def register(self, supervisor: SourceSupervisor) -> SourceSupervisor:
        with self._lock:
            if supervisor.service_id in self._services:
                raise RegistryError(f"Duplicate service id: {supervisor.service_id}")
            self._services[supervisor.service_id] = supervisor
        logger.info("Registered service: %s (%s)", supervisor.name, supervisor.source_type)
        return supervisor

    def add_source(self, source: DataSource, options: SourceOptions) -> SourceSupervisor:
        """Wrap a DataSource in a supervisor and register it."""
        return self.register(SourceSupervisor(source, self.bus, options, clock=self._clock))

    def unregister(self, service_id: str) -> SourceSupervisor:
        """Stop and remove a service."""
        with self._lock:
            supervisor = self._services.pop(service_id, None)
        if supervisor is None:
            raise RegistryError(f"Unknown service id: {service_id}")
        supervisor.close()
        logger.info("Unregistered service: %s", service_id)
        return supervisor

    def get(self, service_id: str) -> Optional[SourceSupervisor]:
        with self._lock:
            return self._services.get(service_id)

    def __iter__(self) -> Iterator[SourceSupervisor]:
        return iter(self._members())

    def __len__(self) -> int:
        with self._lock:
            return len(self._services)

    def __contains__(self, service_id: str) -> bool:
        with self._lock:
            return service_id in self._services

    def _members(self) -> List[SourceSupervisor]:
        with self._lock:
            return list(self._services.values())

    # ─── Aggregate control ───

    def start_all(self):
        members = self._members()
        logger.info("Starting all services (%d registered)", len(members))
        for supervisor in members:
            try:
                supervisor.start()
            except Exception as exc:
                logger.error("Failed to start service %s: %s", supervisor.service_id, exc)

    def stop_all(self):
        members = self._members()
        logger.info("Stopping all services")
        for supervisor in members:
            try:
                supervisor.stop()
            except Exception as exc:
                logger.error("Failed to stop service %s: %s", supervisor.service_id, exc)
        logger.info("All services stopped")

    def refresh_all(self):
        for supervisor in self._members():
            if supervisor.is_running:
                supervisor.refresh_now()

    def statuses(self) -> List[ServiceSnapshot]:
        return [supervisor.snapshot() for supervisor in self._members()]

    def close(self):
        self.stop_all()
        for supervisor in self._members():
            try:
                supervisor.source.close()
            except Exception as exc:
                logger.error("Error closing source %s: %s", supervisor.service_id, exc)
        with self._lock:
            self._services.clear()
