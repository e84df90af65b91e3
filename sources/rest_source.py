"""Generic REST API data source.

Fetches JSON from any HTTP endpoint. Freshness is judged by a timestamp
inside the payload, not by when we fetched it, so the supervisor can
learn the endpoint's real update cadence.

Config example (in dashboard.yaml):
    sources:
      - id: "api.weather"
        type: "rest"
        url: "https://api.open-meteo.com/v1/forecast?latitude=52.52&longitude=13.41&current_weather=true"
        timestamp_field: "current_weather.time"   # dotted path; ISO 8601 or epoch
        extract: "current_weather"                # optional: pull nested key
        base_interval: 900
        headers:                                  # optional
          Authorization: "Bearer xxx"
"""

import logging
from typing import Any, Dict, Optional

from lifestream.data_source import DataSource, FatalError, FetchContext, Miss, NewData, UnchangedData
from lifestream.errors import TransientFetchError
from lifestream.registry import register_source
from lifestream.timeutil import parse_timestamp
from sources.httpclient import http_get, make_session

logger = logging.getLogger(__name__)


def extract_path(data: Any, path: Optional[str]) -> Any:
    """Follow a dotted key path into nested dicts. Missing keys give None."""
    if not path:
        return data
    for key in path.split("."):
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


@register_source("rest")
class RESTSource(DataSource):
    """Fetches JSON from a REST endpoint."""

    default_options = {
        "base_interval": 600,
        "minimum_interval": 60,
        "maximum_interval": 1800,
        "retry_interval": 60,
    }

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.url = self.config.get("url", "")
        self.extract_key = self.config.get("extract")
        self.timestamp_field = self.config.get("timestamp_field")
        self._timeout = self.config.get("timeout", 10)
        self._session = make_session(self.config.get("headers", {}))

    def fetch(self, context: FetchContext):
        if not self.url:
            return FatalError("no url configured")

        resp = http_get(self._session, self.url, timeout=self._timeout)
        if resp is None:
            return Miss("endpoint returned 404")

        try:
            raw = resp.json()
        except ValueError as exc:
            raise TransientFetchError(f"invalid JSON: {exc}") from exc

        if self.timestamp_field:
            stamp = parse_timestamp(extract_path(raw, self.timestamp_field))
            if stamp is None:
                return Miss(f"no timestamp at {self.timestamp_field}")
        else:
            stamp = context.now

        data = extract_path(raw, self.extract_key)
        # Ensure we return a dict
        if not isinstance(data, dict):
            data = {"value": data}

        last = context.last_data_timestamp
        if last is not None and stamp <= last:
            return UnchangedData(stamp)
        return NewData(data, stamp)

    def close(self):
        self._session.close()
