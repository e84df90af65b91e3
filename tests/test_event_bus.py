import threading

from helpers import T0, wait_for
from lifestream.event_bus import POLL_MS, EventBus
from lifestream.events import DataReceived, ErrorOccurred, StatusChanged
from lifestream.status import ServiceStatus
from lifestream.web_event_bus import SSEBroadcaster


def data(service_id="a", new=True):
    return DataReceived(service_id, {"v": 1}, new, T0)


def test_events_are_delivered_on_the_draining_thread(bus):
    seen = []
    bus.subscribe("data", lambda e: seen.append(threading.get_ident()))

    worker = threading.Thread(target=lambda: [bus.publish(data()) for _ in range(5)])
    worker.start()
    worker.join()
    assert seen == []  # nothing delivered until drained

    assert bus.drain() == 5
    assert set(seen) == {threading.get_ident()}
    assert bus.delivery_thread_id == threading.get_ident()


def test_topic_routing_and_wildcard(bus):
    got = {"data": [], "status": [], "error": [], "*": []}
    for topic, events in got.items():
        bus.subscribe(topic, events.append)

    bus.publish(data())
    bus.publish(StatusChanged("a", ServiceStatus.STOPPED, ServiceStatus.STARTING, T0))
    bus.publish(ErrorOccurred("a", "boom", True))
    bus.drain()

    assert len(got["data"]) == 1
    assert len(got["status"]) == 1
    assert len(got["error"]) == 1
    assert len(got["*"]) == 3


def test_service_filter(bus):
    only_b = []
    bus.subscribe("data", only_b.append, service_id="b")
    bus.publish(data("a"))
    bus.publish(data("b"))
    bus.drain()
    assert [e.service_id for e in only_b] == ["b"]


def test_failing_subscriber_does_not_stop_delivery(bus):
    good = []

    def bad(event):
        raise RuntimeError("subscriber bug")

    bus.subscribe("data", bad)
    bus.subscribe("data", good.append)
    bus.publish(data())
    bus.publish(data())
    assert bus.drain() == 2
    assert len(good) == 2


def test_unsubscribe(bus):
    got = []
    bus.subscribe("data", got.append)
    bus.unsubscribe("data", got.append)
    bus.publish(data())
    bus.drain()
    assert got == []


def test_drain_respects_batch_limit(bus):
    for _ in range(10):
        bus.publish(data())
    assert bus.drain(max_events=4) == 4
    assert bus.pending == 6


def test_dedicated_delivery_thread():
    bus = EventBus()
    names = []
    bus.subscribe("*", lambda e: names.append(threading.current_thread().name))
    bus.start()
    try:
        bus.publish(data())
        assert wait_for(lambda: names)
    finally:
        bus.stop()
    assert names == ["event-bus"]


def test_run_delivers_until_stopped(bus):
    got = []
    bus.subscribe("data", got.append)
    stop = threading.Event()
    bus.publish(data())
    threading.Timer(0.2, stop.set).start()
    bus.run(stop, poll_interval=0.01)
    assert len(got) == 1


class FakeRoot:
    """Stands in for a tkinter root: after() callbacks run when told to."""

    def __init__(self):
        self.scheduled = []

    def after(self, ms, callback):
        self.scheduled.append((ms, callback))

    def tick(self):
        ms, callback = self.scheduled.pop(0)
        callback()
        return ms


def test_tk_root_polling():
    root = FakeRoot()
    bus = EventBus(root=root)
    got = []
    bus.subscribe("data", got.append)
    bus.publish(data())

    assert root.tick() == POLL_MS
    assert len(got) == 1
    assert len(root.scheduled) == 1


# ─── SSE broadcaster ───


def test_broadcaster_keeps_latest_per_service_and_topic(bus):
    broadcaster = SSEBroadcaster(bus)
    first, second = data("a"), DataReceived("a", {"v": 2}, True, T0)
    bus.publish(first)
    bus.publish(second)
    bus.publish(ErrorOccurred("b", "boom", True))
    bus.drain()

    assert broadcaster.get_latest("a") == {"data": second}
    assert set(broadcaster.get_latest()) == {"a", "b"}
    assert broadcaster.get_latest("missing") == {}


def test_broadcaster_stream(bus):
    broadcaster = SSEBroadcaster(bus, keepalive=0.01)
    stream = broadcaster.stream()
    assert next(stream) == ("keepalive", None)
    assert broadcaster.client_count == 1

    event = data()
    bus.publish(event)
    bus.drain()
    assert next(stream) == ("data", event)

    stream.close()
    assert broadcaster.client_count == 0


def test_slow_client_is_dropped(bus):
    broadcaster = SSEBroadcaster(bus, keepalive=0.01)
    stream = broadcaster.stream()
    next(stream)
    for _ in range(150):
        bus.publish(data())
    bus.drain()
    assert broadcaster.client_count == 0
    stream.close()
