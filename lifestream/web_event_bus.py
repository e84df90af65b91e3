"""Server-sent-event fan-out for the web status view.

Subscribes to the EventBus (so it runs on the bus's delivery context)
and copies every event into per-client queues consumed by Flask
streaming responses. Also keeps the latest event of each topic per
service for snapshot requests.
"""

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterator, List, Optional, Tuple

from lifestream.event_bus import EventBus
from lifestream.events import TOPIC_ALL

logger = logging.getLogger(__name__)

CLIENT_QUEUE_SIZE = 100


class SSEBroadcaster:
    """Fans bus events out to SSE clients. No Flask dependency."""

    def __init__(self, bus: EventBus, keepalive: float = 30.0):
        self._latest: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._clients: List[Queue] = []
        self._keepalive = keepalive
        bus.subscribe(TOPIC_ALL, self._on_event)

    def _on_event(self, event: Any):
        service_id = getattr(event, "service_id", "")
        with self._lock:
            self._latest.setdefault(service_id, {})[event.topic] = event
            clients = list(self._clients)

        # Slow clients are dropped rather than allowed to back up the bus
        dead = []
        for q in clients:
            try:
                q.put_nowait((event.topic, event))
            except Full:
                dead.append(q)
        if dead:
            with self._lock:
                for q in dead:
                    if q in self._clients:
                        self._clients.remove(q)
            logger.info("Dropped %d slow SSE client(s)", len(dead))

    def get_latest(self, service_id: Optional[str] = None) -> Any:
        """Latest events per topic for a service, or for all services."""
        with self._lock:
            if service_id:
                return dict(self._latest.get(service_id, {}))
            return {sid: dict(topics) for sid, topics in self._latest.items()}

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def stream(self) -> Iterator[Tuple[str, Any]]:
        """Generator for SSE clients. Yields (topic, event) tuples.

        Usage in Flask:
            def generate():
                for topic, event in broadcaster.stream():
                    yield f"event: {topic}\\ndata: {json.dumps(event.to_dict())}\\n\\n"
        """
        q: Queue = Queue(maxsize=CLIENT_QUEUE_SIZE)
        with self._lock:
            self._clients.append(q)
        try:
            while True:
                try:
                    yield q.get(timeout=self._keepalive)
                except Empty:
                    yield "keepalive", None
        finally:
            with self._lock:
                if q in self._clients:
                    self._clients.remove(q)
