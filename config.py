"""LifeStream - Configuration defaults

Paths, formats and endpoints shared by the entry points and sources.
Polling defaults live in lifestream/options.py (SOURCE_DEFAULTS); per-source
settings come from dashboard.yaml and each source type's default_options.

Durations are seconds.
"""

import logging
import os
from typing import Dict

import yaml

from lifestream.errors import ConfigError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
DEFAULT_CONFIG_PATH = "dashboard.yaml"
DATA_DIR = os.environ.get("LIFESTREAM_DATA", os.path.join(os.path.expanduser("~"), ".lifestream"))

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s  %(levelname)-7s  %(name)s  %(message)s"
LOG_DATEFMT = "%H:%M:%S"
LOG_FILE_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
LOG_RETAIN_DAYS = 30

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
HTTP_TIMEOUT = 15
USER_AGENT = "LifeStream/1.0"

# ---------------------------------------------------------------------------
# Web status view
# ---------------------------------------------------------------------------
WEB_HOST = "127.0.0.1"
WEB_PORT = 5000
SSE_KEEPALIVE = 30


def load_config(path: str) -> Dict:
    """Load dashboard config from a YAML file.

    A missing file yields an empty config; malformed YAML raises ConfigError.
    """
    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file not found: %s", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(config, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return config


# ---------------------------------------------------------------------------
# Demo mode (used by --demo when the config lists no sources)
# ---------------------------------------------------------------------------
DEMO_SOURCES = [
    {"id": "demo.fast", "type": "demo", "name": "Fast feed", "period": 20, "jitter": 3,
     "base_interval": 20, "minimum_interval": 5, "maximum_interval": 120},
    {"id": "demo.flaky", "type": "demo", "name": "Flaky feed", "period": 60, "jitter": 10,
     "failure_rate": 0.2, "catchup_window": 600, "catchup_interval": 300},
    {"id": "demo.quote", "type": "quote", "name": "Demo quote", "symbol": "DEMO",
     "base_interval": 30, "minimum_interval": 10, "maximum_interval": 300},
    {"id": "local.system", "type": "system", "name": "This machine"},
]
