#!/usr/bin/env python3
"""LifeStream -- operational status view over HTTP.

Runs the same sources as main.py and serves their status as JSON, with
an SSE stream of live events. Meant for a small dashboard frontend or
for curl.

Usage:
    python3 web_app.py              # Normal mode
    python3 web_app.py --demo       # Simulated sources
    python3 web_app.py --port 5000  # Custom port
"""

import argparse
import json
import logging
import time

from flask import Flask, Response, jsonify
from flask_cors import CORS

from config import DEFAULT_CONFIG_PATH, SSE_KEEPALIVE, WEB_HOST, WEB_PORT, load_config
from lifestream import __version__
from lifestream.errors import ConfigError
from lifestream.event_bus import EventBus
from lifestream.events import TOPIC_DATA
from lifestream.service_registry import ServiceRegistry
from lifestream.web_event_bus import SSEBroadcaster
from main import build_registry, configure_logging, setup_logging

logger = logging.getLogger(__name__)


def create_app(registry: ServiceRegistry, bus: EventBus, broadcaster: SSEBroadcaster = None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    CORS(app)  # Allow CORS for local dev
    if broadcaster is None:
        broadcaster = SSEBroadcaster(bus, keepalive=SSE_KEEPALIVE)

    def service_or_404(service_id):
        supervisor = registry.get(service_id)
        if supervisor is None:
            return None, (jsonify({"error": f"unknown service: {service_id}"}), 404)
        return supervisor, None

    # ─── Routes: Status ───

    @app.route("/api/services")
    def services():
        return jsonify({
            "version": __version__,
            "services": [snap.to_dict() for snap in registry.statuses()],
            "sse_clients": broadcaster.client_count,
        })

    @app.route("/api/services/<service_id>")
    def service_detail(service_id):
        supervisor, error = service_or_404(service_id)
        if error:
            return error
        detail = supervisor.snapshot().to_dict()
        detail["payload"] = _clean_payload(supervisor.last_payload)
        report = supervisor.last_catchup_report
        if report is not None:
            detail["last_catchup"] = {
                "window_start": report.window.window_start.isoformat(),
                "window_end": report.window.window_end.isoformat(),
                "attempted": report.attempted,
                "filled": report.filled,
                "absent": report.absent,
                "failed": report.failed,
                "unavailable": report.unavailable,
                "aborted": report.aborted,
            }
        detail["events"] = {
            topic: event.to_dict() for topic, event in broadcaster.get_latest(service_id).items()
        }
        return jsonify(detail)

    # ─── Routes: Control ───

    @app.route("/api/services/<service_id>/refresh", methods=["POST"])
    def refresh_service(service_id):
        supervisor, error = service_or_404(service_id)
        if error:
            return error
        if not supervisor.refresh_now():
            return jsonify({"error": "service is not running", "status": supervisor.status.value}), 409
        return jsonify({"service_id": service_id, "refreshing": True}), 202

    @app.route("/api/services/<service_id>/restart", methods=["POST"])
    def restart_service(service_id):
        supervisor, error = service_or_404(service_id)
        if error:
            return error
        supervisor.stop()
        started = supervisor.start()
        return jsonify({"service_id": service_id, "started": started, "status": supervisor.status.value})

    @app.route("/api/services/refresh", methods=["POST"])
    def refresh_all():
        registry.refresh_all()
        return jsonify({"refreshing": [s.service_id for s in registry if s.is_running]}), 202

    # ─── Routes: SSE stream ───

    @app.route("/api/services/stream")
    def service_stream():
        """SSE endpoint streaming status changes, errors and data arrivals."""
        def generate():
            for topic, event in broadcaster.stream():
                if topic == "keepalive":
                    yield ": keepalive\n\n"
                    continue
                try:
                    body = event.to_dict()
                    if topic == TOPIC_DATA and event.is_new_data:
                        body["payload"] = _clean_payload(event.payload)
                    yield f"event: {topic}\ndata: {json.dumps(body)}\n\n"
                except Exception as exc:
                    logger.debug("SSE serialize error for %s: %s", topic, exc)

        return Response(
            generate(),
            mimetype="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
                "Connection": "keep-alive",
            },
        )

    return app


def _clean_payload(payload):
    """Keep only the JSON-friendly part of a payload."""
    if payload is None:
        return None
    if not isinstance(payload, dict):
        payload = {"value": payload}
    clean = {}
    for k, v in payload.items():
        if isinstance(v, (str, int, float, bool, type(None))):
            clean[k] = v
        elif isinstance(v, (list, tuple)):
            clean[k] = list(v)
        elif isinstance(v, dict):
            clean[k] = v
        # Skip anything else (bytes, images, etc.)
    clean["_ts"] = time.time()
    return clean


def main():
    parser = argparse.ArgumentParser(description="LifeStream status web view")
    parser.add_argument("--demo", action="store_true", help="Use simulated sources")
    parser.add_argument("--port", type=int, default=WEB_PORT, help="Web server port")
    parser.add_argument("--host", default=WEB_HOST, help="Bind address")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Config file path")
    parser.add_argument("--log-level", default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also log to this file, rotated daily")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        setup_logging(args.log_level or "INFO", args.log_file)
        logger.error("%s", exc)
        return 1
    configure_logging(args, config)
    logger.info("LifeStream Web v%s starting", __version__)

    # Subscribers run on the bus's own delivery thread
    bus = EventBus()
    registry = build_registry(config, bus, demo=args.demo)
    app = create_app(registry, bus)
    bus.start()
    registry.start_all()
    logger.info("Status view at http://%s:%d/api/services", args.host, args.port)

    try:
        app.run(host=args.host, port=args.port, threaded=True, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        registry.close()
        bus.stop()
        logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
