"""Simulated source for demo mode and local testing.

Pretends to be an upstream that publishes roughly every `period`
seconds (give or take `jitter`), sometimes fails transiently, and has
a few permanent holes in its history for catch-up to find.

Config example (in dashboard.yaml):
    sources:
      - id: "demo.feed"
        type: "demo"
        period: 60
        jitter: 10
        failure_rate: 0.1
        catchup_window: 600
"""

import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

from lifestream.data_source import DataSource, FetchContext, Miss, NewData, UnchangedData
from lifestream.errors import TransientFetchError
from lifestream.registry import register_source

logger = logging.getLogger(__name__)


@register_source("demo")
class DemoSource(DataSource):
    """Jittered publication schedule with injected failures and holes."""

    default_options = {
        "base_interval": 60,
        "initial_slack": 5,
        "minimum_interval": 5,
        "maximum_interval": 300,
        "retry_interval": 10,
        "catchup_cadence": 60,
    }

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.period = float(self.config.get("period", 60))
        self.jitter = float(self.config.get("jitter", 0))
        self.failure_rate = float(self.config.get("failure_rate", 0))
        self.hole_rate = float(self.config.get("hole_rate", 0.2))
        self._rng = random.Random(self.config.get("seed"))
        self._lock = threading.Lock()
        self._next_publish: Optional[datetime] = None
        self._latest: Optional[datetime] = None
        self._held: Set[datetime] = set()
        self._counter = 0

    def _schedule_after(self, instant: datetime) -> datetime:
        offset = self.period + self._rng.uniform(-self.jitter, self.jitter)
        return instant + timedelta(seconds=max(1.0, offset))

    def fetch(self, context: FetchContext):
        if self.failure_rate and self._rng.random() < self.failure_rate:
            raise TransientFetchError("simulated upstream failure")

        with self._lock:
            if self._next_publish is None:
                self._next_publish = context.now
            # Publications that happened since the last poll; keep the newest
            while self._next_publish <= context.now:
                self._latest = self._next_publish
                self._next_publish = self._schedule_after(self._next_publish)
                self._counter += 1

            latest = self._latest
            last = context.last_data_timestamp
            if latest is None:
                return Miss("nothing published yet")
            if last is not None and latest <= last:
                if context.manual:
                    return UnchangedData(latest)
                return Miss("no new publication yet")
            self._held.add(latest)
            payload = {"sequence": self._counter, "value": round(self._rng.uniform(0, 100), 2)}
        return NewData(payload, latest)

    def check_exists(self, instant: datetime) -> bool:
        with self._lock:
            return instant in self._held

    def fetch_instant(self, instant: datetime, context: FetchContext):
        if self._rng.random() < self.hole_rate:
            return Miss(f"no record for {instant.isoformat()}")
        with self._lock:
            self._held.add(instant)
        return NewData({"backfilled": True, "value": round(self._rng.uniform(0, 100), 2)}, instant)
