"""Per-source tuning options.

Durations are given in seconds in dashboard.yaml:

    sources:
      - id: "radar.sydney"
        type: "radar"
        base_interval: 360       # expected cadence
        initial_slack: 30
        minimum_interval: 30     # never poll faster than this
        maximum_interval: 900    # never wait longer than this
        retry_interval: 20
        max_retries: 3
        catchup_window: 3600     # 0 disables catch-up
        catchup_cadence: 360

Unset keys fall back to the source type's default_options, then to
SOURCE_DEFAULTS below.
"""

from dataclasses import MISSING, dataclass, fields
from datetime import timedelta
from typing import Any, Dict, Optional

from lifestream.errors import ConfigError

# Global fallbacks, in seconds
SOURCE_DEFAULTS: Dict[str, Any] = {
    "base_interval": 600,       # 10 minutes
    "initial_slack": 30,
    "minimum_interval": 60,     # safety floor between polls
    "maximum_interval": 3600,   # never wait longer than an hour
    "retry_interval": 60,
    "max_retries": 3,
    "max_observations": 10,
    "outlier_factor": 2.0,      # samples above maximum_interval * this are dropped
    "catchup_window": 0,        # disabled unless the source opts in
    "catchup_attempt_cap": 3,   # confirmed-absent answers before giving up on an instant
    "catchup_max_per_pass": 24,
    "catchup_delay": 0,
    "stop_timeout": 1.0,
}

_DURATION_KEYS = {
    "base_interval",
    "initial_slack",
    "minimum_interval",
    "maximum_interval",
    "retry_interval",
    "catchup_window",
    "catchup_cadence",
    "catchup_interval",
    "catchup_delay",
    "stop_timeout",
}


def _duration(key: str, value: Any) -> Optional[timedelta]:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value
    try:
        secs = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key}: expected seconds, got {value!r}") from None
    if secs < 0:
        raise ConfigError(f"{key}: must not be negative ({value!r})")
    return timedelta(seconds=secs)


@dataclass(frozen=True)
class SourceOptions:
    base_interval: timedelta
    initial_slack: timedelta
    minimum_interval: timedelta
    maximum_interval: timedelta
    retry_interval: timedelta
    max_retries: int = 3
    max_observations: int = 10
    outlier_factor: float = 2.0
    catchup_window: Optional[timedelta] = None
    catchup_cadence: Optional[timedelta] = None
    catchup_attempt_cap: int = 3
    catchup_max_per_pass: int = 24
    catchup_interval: Optional[timedelta] = None
    catchup_delay: timedelta = timedelta(0)
    stop_timeout: timedelta = timedelta(seconds=1)

    def __post_init__(self):
        if self.minimum_interval <= timedelta(0):
            raise ConfigError("minimum_interval must be positive")
        if self.maximum_interval < self.minimum_interval:
            raise ConfigError("maximum_interval must be >= minimum_interval")
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.max_observations < 1:
            raise ConfigError("max_observations must be >= 1")
        if self.outlier_factor < 1:
            raise ConfigError("outlier_factor must be >= 1")
        if self.catchup_attempt_cap < 1 or self.catchup_max_per_pass < 1:
            raise ConfigError("catch-up caps must be >= 1")
        if self.catchup_enabled and not self.catchup_cadence:
            raise ConfigError("catchup_window requires a positive catchup_cadence")

    @property
    def catchup_enabled(self) -> bool:
        return bool(self.catchup_window)

    @classmethod
    def from_config(cls, config: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> "SourceOptions":
        """Build options from a source's YAML entry.

        Precedence: the entry itself, then defaults (the source type's
        default_options), then SOURCE_DEFAULTS.
        """
        merged: Dict[str, Any] = dict(SOURCE_DEFAULTS)
        merged.update(defaults or {})
        merged.update({k: v for k, v in config.items() if v is not None})

        kwargs: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in merged:
                continue
            value = merged[f.name]
            if f.name in _DURATION_KEYS:
                value = _duration(f.name, value)
            else:
                convert = float if f.name == "outlier_factor" else int
                try:
                    value = convert(value)
                except (TypeError, ValueError):
                    raise ConfigError(f"{f.name}: expected a number, got {value!r}") from None
            kwargs[f.name] = value

        missing = [f.name for f in fields(cls) if f.name not in kwargs and f.default is MISSING]
        if missing:
            raise ConfigError(f"missing options: {', '.join(missing)}")
        if kwargs.get("catchup_delay") is None:
            kwargs.pop("catchup_delay", None)
        if kwargs.get("stop_timeout") is None:
            kwargs.pop("stop_timeout", None)
        return cls(**kwargs)
