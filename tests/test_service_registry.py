import pytest

import sources  # noqa: F401
from helpers import ScriptedSource, fast_options, wait_for
from lifestream.data_source import FatalError
from lifestream.errors import RegistryError
from lifestream.service_registry import ServiceRegistry
from lifestream.status import ServiceStatus as S
from sources.demo_source import DemoSource
from sources.quote_source import QuoteSource


@pytest.fixture
def registry(bus):
    reg = ServiceRegistry(bus)
    yield reg
    reg.close()


def test_from_config_builds_known_sources(bus):
    config = {
        "sources": [
            {"id": "demo.a", "type": "demo", "period": 5},
            {"id": "market", "type": "quote", "symbol": "SPY"},
            {"id": "mystery", "type": "does-not-exist"},
            {"type": "demo"},
            {"id": "off", "type": "demo", "enabled": False},
            {"id": "broken", "type": "demo", "minimum_interval": -1},
        ]
    }
    reg = ServiceRegistry.from_config(config, bus)
    try:
        assert sorted(s.service_id for s in reg) == ["demo.a", "market"]
        assert isinstance(reg.get("demo.a").source, DemoSource)
        assert reg.get("market").source_type == "quote"
        assert reg.get("mystery") is None
    finally:
        reg.close()


def test_type_defaults_reach_the_supervisor(bus):
    reg = ServiceRegistry.from_config(
        {"sources": [{"id": "m", "type": "quote", "retry_interval": 120}]}, bus
    )
    try:
        options = reg.get("m").options
        assert options.base_interval.total_seconds() == QuoteSource.default_options["base_interval"]
        assert options.retry_interval.total_seconds() == 120
    finally:
        reg.close()


def test_demo_flag_is_passed_to_sources(bus):
    reg = ServiceRegistry.from_config({"sources": [{"id": "m", "type": "quote"}]}, bus, demo=True)
    try:
        assert reg.get("m").source.demo
    finally:
        reg.close()


def test_empty_config(bus):
    assert len(ServiceRegistry.from_config({}, bus)) == 0
    assert len(ServiceRegistry.from_config({"sources": None}, bus)) == 0


def test_duplicate_and_unknown_ids(registry):
    registry.add_source(ScriptedSource("a"), fast_options())
    with pytest.raises(RegistryError):
        registry.add_source(ScriptedSource("a"), fast_options())
    with pytest.raises(RegistryError):
        registry.unregister("nope")
    assert "a" in registry
    assert len(registry) == 1


def test_unregister_stops_and_closes(registry):
    source = ScriptedSource("a")
    sup = registry.add_source(source, fast_options())
    sup.start()
    assert wait_for(lambda: sup.status is S.RUNNING)
    registry.unregister("a")
    assert sup.status is S.STOPPED
    assert source.closed
    assert "a" not in registry


def test_one_faulted_source_does_not_affect_others(registry):
    good = registry.add_source(ScriptedSource("good"), fast_options())
    bad = registry.add_source(ScriptedSource("bad", script=[FatalError("no key")]), fast_options())
    registry.start_all()
    assert wait_for(lambda: bad.status is S.FAULTED)
    assert wait_for(lambda: good.status is S.RUNNING)
    assert wait_for(lambda: good.source.calls >= 3)
    assert good.status is S.RUNNING


def test_start_all_survives_a_failing_start(registry, monkeypatch):
    broken = registry.add_source(ScriptedSource("broken"), fast_options())
    fine = registry.add_source(ScriptedSource("fine"), fast_options())

    def explode():
        raise RuntimeError("cannot start")

    monkeypatch.setattr(broken, "start", explode)
    registry.start_all()
    assert wait_for(lambda: fine.status is S.RUNNING)


def test_refresh_all_only_touches_running_services(registry):
    running = registry.add_source(ScriptedSource("running"), fast_options())
    stopped = registry.add_source(ScriptedSource("stopped"), fast_options())
    running.start()
    assert wait_for(lambda: running.status is S.RUNNING)
    registry.refresh_all()
    assert stopped.source.calls == 0


def test_statuses_and_stop_all(registry):
    for name in ("a", "b"):
        registry.add_source(ScriptedSource(name), fast_options())
    registry.start_all()
    assert wait_for(lambda: all(s.status is S.RUNNING for s in registry.statuses()))

    registry.stop_all()
    assert [s.status for s in registry.statuses()] == [S.STOPPED, S.STOPPED]


def test_close_closes_every_source(bus):
    reg = ServiceRegistry(bus)
    srcs = [ScriptedSource(name) for name in ("a", "b")]
    for src in srcs:
        reg.add_source(src, fast_options())
    reg.start_all()
    reg.close()
    assert all(src.closed for src in srcs)
    assert len(reg) == 0
