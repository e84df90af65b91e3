"""NASA Astronomy Picture of the Day (APOD) data source.

One image per day. Metadata is cached as JSON per date so the gap
reconciler can tell which recent days are already held and backfill
the rest after the dashboard has been off for a while.

Config example (in dashboard.yaml):
    sources:
      - id: "nasa.apod"
        type: "apod"
        api_key: "DEMO_KEY"       # or set NASA_API_KEY
        catchup_window: 518400    # last 6 days + today
"""

import json
import logging
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional

from config import DATA_DIR
from lifestream.data_source import DataSource, FetchContext, Miss, NewData, UnchangedData
from lifestream.errors import TransientFetchError
from lifestream.registry import register_source
from sources.httpclient import http_get, make_session

logger = logging.getLogger(__name__)

API_URL = "https://api.nasa.gov/planetary/apod"
DAY = 86400


def date_instant(day: date) -> datetime:
    """Grid instant (UTC midnight) for an APOD date."""
    return datetime.combine(day, time(0), tzinfo=timezone.utc)


@register_source("apod")
class ApodSource(DataSource):
    """Fetches the daily APOD entry and backfills missed days."""

    default_options = {
        "base_interval": DAY,
        "initial_slack": 3600,
        "minimum_interval": 900,
        "maximum_interval": 12 * 3600,
        "retry_interval": 900,
        "max_retries": 3,
        "outlier_factor": 3.0,       # 24h spacings count, a skipped day does not
        "catchup_window": 6 * DAY,
        "catchup_cadence": DAY,
        "catchup_interval": 6 * 3600,
        "catchup_delay": 1,          # NASA API: 1000 requests/hour with a key
        "catchup_max_per_pass": 7,
    }

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.api_key = self.config.get("api_key") or os.environ.get("NASA_API_KEY", "DEMO_KEY")
        self.cache_dir = self.config.get("cache_dir") or os.path.join(DATA_DIR, "apod")
        self._timeout = self.config.get("timeout", 30)
        self._session = make_session()
        os.makedirs(self.cache_dir, exist_ok=True)

    # ─── Cache ───

    def _cache_path(self, day: date) -> str:
        return os.path.join(self.cache_dir, f"{day.isoformat()}.json")

    def _store(self, entry: Dict[str, Any]):
        path = self._cache_path(date.fromisoformat(entry["date"]))
        tmp = path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(entry, f)
        os.replace(tmp, path)

    def check_exists(self, instant: datetime) -> bool:
        return os.path.exists(self._cache_path(instant.date()))

    def seed_observation(self) -> Optional[datetime]:
        days = []
        for name in os.listdir(self.cache_dir):
            if not name.endswith(".json"):
                continue
            try:
                days.append(date.fromisoformat(name[:-5]))
            except ValueError:
                continue
        return date_instant(max(days)) if days else None

    # ─── Network ───

    def _request(self, day: Optional[date]) -> Optional[Dict[str, Any]]:
        params = {"api_key": self.api_key, "thumbs": "true"}
        if day is not None:
            params["date"] = day.isoformat()
        # 400 is APOD's answer for dates outside its archive
        resp = http_get(self._session, API_URL, params=params, timeout=self._timeout,
                        absent_statuses=(400, 404))
        if resp is None:
            return None
        try:
            entry = resp.json()
        except ValueError as exc:
            raise TransientFetchError(f"invalid APOD JSON: {exc}") from exc
        if not isinstance(entry, dict) or "date" not in entry:
            raise TransientFetchError("APOD response without a date")
        return entry

    def fetch(self, context: FetchContext):
        entry = self._request(None)
        if entry is None:
            return Miss("no APOD published")

        stamp = date_instant(date.fromisoformat(entry["date"]))
        last = context.last_data_timestamp
        if last is not None and stamp <= last and self.check_exists(stamp):
            if context.now - last >= timedelta(seconds=DAY):
                return Miss("next APOD not published yet")
            return UnchangedData(stamp)

        self._store(entry)
        logger.info("APOD %s: %s", entry["date"], entry.get("title", ""))
        return NewData(entry, stamp)

    def fetch_instant(self, instant: datetime, context: FetchContext):
        day = instant.date()
        entry = self._request(day)
        if entry is None:
            logger.debug("No APOD available for %s", day.isoformat())
            return Miss(f"no APOD for {day.isoformat()}")
        self._store(entry)
        logger.info("Caught up APOD for %s: %s", entry["date"], entry.get("title", ""))
        return NewData(entry, date_instant(day))

    def close(self):
        self._session.close()
