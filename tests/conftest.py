import pytest

from helpers import FakeClock, Recorder, ScriptedSource, fast_options
from lifestream.event_bus import EventBus
from lifestream.supervisor import SourceSupervisor


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return Recorder(bus)


@pytest.fixture
def make_supervisor(bus):
    """Build supervisors that are always stopped at teardown."""
    created = []

    def factory(source=None, options=None, **option_overrides):
        source = source or ScriptedSource()
        supervisor = SourceSupervisor(source, bus, options or fast_options(**option_overrides))
        created.append(supervisor)
        return supervisor

    yield factory
    for supervisor in created:
        supervisor.stop()
        supervisor.join(1.0)

