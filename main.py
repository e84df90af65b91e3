#!/usr/bin/env python3
"""LifeStream -- headless runner.

Starts every source listed in dashboard.yaml and logs what they report.
The main thread is the event delivery context.

Usage:
    python3 main.py                      # Sources from dashboard.yaml
    python3 main.py --demo               # Simulated sources (no network)
    python3 main.py --log-level DEBUG    # Verbose logging
    python3 main.py --log-file ~/.lifestream/logs/lifestream.log
"""

import argparse
import logging
import logging.handlers
import os
import signal
import threading

from config import DEFAULT_CONFIG_PATH, DEMO_SOURCES, LOG_DATEFMT, LOG_FILE_FORMAT, LOG_FORMAT, LOG_RETAIN_DAYS, load_config
from lifestream import __version__
from lifestream.errors import ConfigError
from lifestream.event_bus import EventBus
from lifestream.events import TOPIC_DATA, TOPIC_ERROR, TOPIC_STATUS
from lifestream.service_registry import ServiceRegistry

# Import sources to trigger @register_source decorators
import sources  # noqa: F401

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="LifeStream -- adaptive polling for dashboard data sources",
    )
    parser.add_argument(
        "--demo", action="store_true",
        help="Use simulated sources (no network or API keys needed)",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_PATH,
        help="Path to dashboard YAML config (default: dashboard.yaml)",
    )
    parser.add_argument(
        "--log-level", default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging verbosity (default: logging.level from the config, else INFO)",
    )
    parser.add_argument(
        "--log-file", default=None,
        help="Also log to this file, rotated daily",
    )
    parser.add_argument(
        "--version", action="version",
        version=f"LifeStream {__version__}",
    )
    return parser.parse_args(argv)


def setup_logging(level_name: str, log_file=None) -> None:
    """Configure root logger with a consistent format."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if log_file:
        log_file = os.path.expanduser(log_file)
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handler = logging.handlers.TimedRotatingFileHandler(
            log_file, when="midnight", backupCount=LOG_RETAIN_DAYS, encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
        logging.getLogger().addHandler(handler)


def configure_logging(args, config) -> None:
    """CLI flags win over the config's optional `logging:` section."""
    section = config.get("logging") or {}
    setup_logging(args.log_level or section.get("level") or "INFO",
                  args.log_file or section.get("file"))


def build_registry(config: dict, bus: EventBus, demo: bool = False) -> ServiceRegistry:
    """Create a supervisor per source entry of a loaded config."""
    if demo and not config.get("sources"):
        logger.info("No sources configured, using built-in demo sources")
        config = dict(config, sources=DEMO_SOURCES)
    return ServiceRegistry.from_config(config, bus, demo=demo)


def log_event(event):
    """Bus subscriber for the headless runner."""
    if event.topic == TOPIC_STATUS:
        logger.info("[%s] %s -> %s", event.service_id, event.old.value, event.new.value)
    elif event.topic == TOPIC_ERROR:
        if event.fatal:
            logger.error("[%s] fatal: %s", event.service_id, event.message)
        else:
            logger.warning("[%s] %s (retry at %s)", event.service_id, event.message,
                           event.next_retry.strftime("%H:%M:%S") if event.next_retry else "?")
    elif event.topic == TOPIC_DATA and event.is_new_data:
        logger.info("[%s] new data stamped %s", event.service_id, event.timestamp.isoformat())


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        setup_logging(args.log_level or "INFO", args.log_file)
        logger.error("%s", exc)
        return 1
    configure_logging(args, config)
    logger.info("LifeStream v%s starting", __version__)

    bus = EventBus()
    for topic in (TOPIC_DATA, TOPIC_STATUS, TOPIC_ERROR):
        bus.subscribe(topic, log_event)

    registry = build_registry(config, bus, demo=args.demo)
    if not len(registry):
        logger.error("No usable sources in %s", args.config)
        return 1

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())

    registry.start_all()
    try:
        bus.run(stop)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        registry.close()
        bus.drain()
        logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
