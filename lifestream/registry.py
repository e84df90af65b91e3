"""Data source type registry for LifeStream.

Register source types by name. The service registry loads configuration
(YAML or dict) and instantiates the right classes by looking them up here.

Usage:
    @register_source("radar")
    class RadarSource(DataSource):
        ...
"""

import logging

logger = logging.getLogger(__name__)

SOURCE_REGISTRY = {}


def register_source(name):
    """Decorator to register a data source class by type name."""
    def decorator(cls):
        SOURCE_REGISTRY[name] = cls
        cls.source_type = name
        logger.debug("Registered source type: %s -> %s", name, cls.__name__)
        return cls
    return decorator
