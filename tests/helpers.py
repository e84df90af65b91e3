"""Shared test doubles: scripted sources, a fake clock, event recording."""

import threading
import time
from collections import deque
from datetime import datetime, timedelta, timezone

from lifestream.data_source import DataSource, NewData
from lifestream.events import TOPIC_ALL, StatusChanged
from lifestream.options import SourceOptions

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds=0, **kwargs):
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class ScriptedSource(DataSource):
    """Plays back a list of outcomes, exceptions or callables(context).

    When the script runs out, `default` is used; a default of None means
    fresh NewData stamped with the fetch time.
    """

    def __init__(self, source_id="test.source", script=(), default=None, config=None):
        super().__init__(source_id, config or {})
        self.script = deque(script)
        self.default = default
        self.contexts = []
        self.closed = False
        self.seed = None
        self.held = set()
        self.backfill = {}
        self._lock = threading.Lock()

    @property
    def calls(self):
        with self._lock:
            return len(self.contexts)

    def fetch(self, context):
        with self._lock:
            self.contexts.append(context)
            step = self.script.popleft() if self.script else self.default
            count = len(self.contexts)
        if step is None:
            return NewData({"n": count}, context.now)
        if callable(step):
            step = step(context)
        if isinstance(step, BaseException):
            raise step
        return step

    def check_exists(self, instant):
        return instant in self.held

    def fetch_instant(self, instant, context):
        outcome = self.backfill.get(instant)
        if outcome is None:
            self.held.add(instant)
            return NewData({"instant": instant.isoformat()}, instant)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def seed_observation(self):
        return self.seed

    def close(self):
        self.closed = True


class Recorder:
    """Subscribes to everything on a bus and keeps what is delivered."""

    def __init__(self, bus):
        self.bus = bus
        self.events = []
        self.threads = set()
        bus.subscribe(TOPIC_ALL, self._on_event)

    def _on_event(self, event):
        self.events.append(event)
        self.threads.add(threading.get_ident())

    def drain(self):
        self.bus.drain()
        return list(self.events)

    def of(self, cls):
        return [e for e in self.drain() if isinstance(e, cls)]

    def transitions(self):
        return [(e.old, e.new) for e in self.of(StatusChanged)]


def fast_options(**overrides):
    """Options with sub-second intervals so real polling threads finish quickly."""
    values = dict(
        base_interval=timedelta(seconds=0.05),
        initial_slack=timedelta(0),
        minimum_interval=timedelta(seconds=0.02),
        maximum_interval=timedelta(seconds=0.2),
        retry_interval=timedelta(seconds=0.02),
        stop_timeout=timedelta(seconds=0.5),
    )
    values.update(overrides)
    return SourceOptions(**values)


def wait_for(predicate, timeout=3.0, interval=0.01):
    """Poll predicate until true or timeout. Returns the last result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
