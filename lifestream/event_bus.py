"""Thread-safe event bus for LifeStream.

Supervisor threads push event values via publish(). Subscribers are only
ever called on one designated delivery context, never on a fetch thread:

    bus = EventBus()            # caller drains: bus.drain() / bus.run(stop)
    bus = EventBus(root=tk)     # tkinter main thread, polled with after()
    bus.start()                 # dedicated "event-bus" delivery thread

Pick exactly one. Subscribers may therefore touch UI state (or any other
single-threaded consumer) without locking.
"""

import logging
import threading
from queue import Empty, Queue
from typing import Any, Callable, Dict, List, Optional, Tuple

from lifestream.events import TOPIC_ALL

logger = logging.getLogger(__name__)

POLL_MS = 50
BATCH = 50  # messages per tick

Subscription = Tuple[Callable[[Any], None], Optional[str]]


class EventBus:
    """Central message channel bridging supervisor threads to one consumer context."""

    def __init__(self, root=None):
        self._root = root
        self._queue: Queue = Queue()
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._sub_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._delivery_thread_id: Optional[int] = None
        if root is not None:
            self._poll()

    def publish(self, event: Any):
        """Push an event from any thread. Thread-safe, never blocks."""
        self._queue.put(event)

    def subscribe(self, topic: str, callback: Callable[[Any], None], service_id: Optional[str] = None):
        """Register a callback for a topic ("data", "status", "error" or "*").

        With service_id set, only that service's events are delivered.
        """
        with self._sub_lock:
            self._subscribers.setdefault(topic, []).append((callback, service_id))

    def unsubscribe(self, topic: str, callback: Callable[[Any], None]):
        """Remove a callback."""
        with self._sub_lock:
            if topic in self._subscribers:
                self._subscribers[topic] = [
                    sub for sub in self._subscribers[topic] if sub[0] != callback
                ]

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def delivery_thread_id(self) -> Optional[int]:
        """Ident of the thread that last delivered events."""
        return self._delivery_thread_id

    def drain(self, max_events: Optional[int] = None) -> int:
        """Deliver queued events on the calling thread. Returns how many."""
        delivered = 0
        while max_events is None or delivered < max_events:
            try:
                event = self._queue.get_nowait()
            except Empty:
                break
            self._dispatch(event)
            delivered += 1
        return delivered

    def run(self, stop: threading.Event, poll_interval: float = POLL_MS / 1000):
        """Block the calling thread, delivering events until stop is set."""
        while not stop.is_set():
            try:
                event = self._queue.get(timeout=poll_interval)
            except Empty:
                continue
            self._dispatch(event)
        self.drain()

    def start(self):
        """Deliver events on a dedicated background thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run, args=(self._stop,), daemon=True, name="event-bus"
        )
        self._thread.start()
        logger.info("EventBus delivery thread started")

    def stop(self, timeout: float = 2.0):
        """Stop the dedicated delivery thread after flushing the queue."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def _dispatch(self, event: Any):
        self._delivery_thread_id = threading.get_ident()
        topic = getattr(event, "topic", None)
        service_id = getattr(event, "service_id", None)
        with self._sub_lock:
            subs = list(self._subscribers.get(topic, [])) + list(self._subscribers.get(TOPIC_ALL, []))
        for cb, only in subs:
            if only is not None and only != service_id:
                continue
            try:
                cb(event)
            except Exception as exc:
                logger.error("EventBus callback error [%s]: %s", topic, exc)

    def _poll(self):
        """Drain the queue on the tkinter main thread. Runs every 50ms."""
        self.drain(BATCH)
        self._root.after(POLL_MS, self._poll)
