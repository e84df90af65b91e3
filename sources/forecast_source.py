"""Bureau of Meteorology precis forecasts over anonymous FTP.

BOM publishes one XML product per state into /anon/gen/fwo:

    ftp://ftp.bom.gov.au/anon/gen/fwo/IDN11060.xml   # NSW precis

The product is reissued a few times a day. Its own issue time
(amoc/issue-time-utc) is the data timestamp, so the predictor learns
BOM's issue schedule rather than our polling rhythm. The newest parsed
forecast is cached as JSON and its issue time seeds the predictor.

Config example (in dashboard.yaml):
    sources:
      - id: "bom.forecast.sydney"
        type: "forecast"
        product: "IDN11060"
        location: "Sydney"
        aac: "NSW_PT131"           # optional, preferred over the name
"""

import ftplib
import io
import json
import logging
import os
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import DATA_DIR
from lifestream.data_source import DataSource, FatalError, FetchContext, NewData, UnchangedData
from lifestream.errors import TransientFetchError
from lifestream.registry import register_source
from lifestream.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

FTP_HOST = "ftp.bom.gov.au"
FWO_PATH = "/anon/gen/fwo"
FTP_USER = "anonymous"
FTP_PASSWORD = "lifestream@local"

FALLBACK_AREA_TYPES = ("metropolitan", "location", "public-district")


def _number(convert, value: str):
    try:
        return convert(value.strip().rstrip("%"))
    except (AttributeError, ValueError):
        return None


# element type -> (payload key, converter)
DAY_ELEMENTS = {
    "forecast_icon_code": ("icon_code", lambda v: _number(int, v)),
    "air_temperature_minimum": ("min_temp", lambda v: _number(float, v)),
    "air_temperature_maximum": ("max_temp", lambda v: _number(float, v)),
    "precipitation_range": ("rainfall_range", str),
    "probability_of_precipitation": ("precipitation_chance", lambda v: _number(int, v)),
    "uv_alert": ("uv_alert", str),
    "fire_danger": ("fire_danger", str),
}
DAY_TEXTS = {"precis": "summary", "forecast": "description"}


def _issue_time(root: ET.Element) -> Optional[datetime]:
    amoc = root.find("amoc")
    if amoc is None:
        return None
    for tag in ("issue-time-utc", "issue-time-local"):
        stamp = parse_timestamp((amoc.findtext(tag) or "").strip())
        if stamp is not None:
            return stamp
    return None


def _pick_area(root: ET.Element, aac: str, location: str) -> Optional[ET.Element]:
    """Area for the configured location, most specific match first."""
    areas = list(root.iter("area"))
    name = location.lower()

    for match in (
        lambda a: aac and a.get("aac") == aac,
        lambda a: name and (a.get("description") or "").lower() == name,
        lambda a: name and name in (a.get("description") or "").lower(),
        lambda a: a.get("type") in FALLBACK_AREA_TYPES and a.find("forecast-period") is not None,
        lambda a: a.find("forecast-period") is not None,
    ):
        found = [a for a in areas if match(a)]
        if found:
            return found[0]
    return None


def _parse_day(period: ET.Element) -> Dict[str, Any]:
    day: Dict[str, Any] = {}
    start = parse_timestamp(period.get("start-time-utc"))
    if start is None:
        start = parse_timestamp(period.get("start-time-local"))
    if start is not None:
        day["date"] = start.date().isoformat()

    for element in period.findall("element"):
        mapping = DAY_ELEMENTS.get(element.get("type"))
        if mapping:
            key, convert = mapping
            day[key] = convert(element.text or "")
    for text in period.findall("text"):
        key = DAY_TEXTS.get(text.get("type"))
        if key:
            day[key] = (text.text or "").strip()
    return day


def parse_forecast(xml: bytes, aac: str = "", location: str = "") -> Dict[str, Any]:
    """Parse a BOM precis product into a forecast dict.

    Raises ValueError when the document has no issue time or no usable area.
    """
    root = ET.fromstring(xml)
    issued = _issue_time(root)
    if issued is None:
        raise ValueError("forecast has no issue time")

    area = _pick_area(root, aac, location)
    if area is None:
        raise ValueError(f"no forecast area for {location or aac or '?'}")

    periods = sorted(
        area.findall("forecast-period"),
        key=lambda p: p.get("start-time-utc") or p.get("start-time-local") or "",
    )
    days: List[Dict[str, Any]] = [_parse_day(p) for p in periods]
    return {
        "issued_at": issued.isoformat(),
        "location": area.get("description") or location,
        "aac": area.get("aac") or aac,
        "days": days,
    }


@register_source("forecast")
class ForecastSource(DataSource):
    """Fetches the precis forecast for one location."""

    default_options = {
        "base_interval": 6 * 3600,     # a handful of issues per day
        "initial_slack": 300,
        "minimum_interval": 600,
        "maximum_interval": 4 * 3600,
        "retry_interval": 300,
        "max_retries": 3,
        "outlier_factor": 3.0,         # overnight gaps between issues still count
    }

    # Replaced in tests
    ftp_factory = ftplib.FTP

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.product = self.config.get("product", "")
        self.location = self.config.get("location", "")
        self.aac = self.config.get("aac", "")
        self.host = self.config.get("host", FTP_HOST)
        self.path = self.config.get("path", FWO_PATH)
        self.cache_dir = self.config.get("cache_dir") or os.path.join(DATA_DIR, "forecast")
        self._timeout = self.config.get("timeout", 30)
        os.makedirs(self.cache_dir, exist_ok=True)

    @property
    def cache_path(self) -> str:
        return os.path.join(self.cache_dir, f"{self.product or 'forecast'}.json")

    def _download(self) -> bytes:
        buf = io.BytesIO()
        try:
            with self.ftp_factory(self.host, timeout=self._timeout) as ftp:
                ftp.login(FTP_USER, FTP_PASSWORD)
                ftp.cwd(self.path)
                ftp.retrbinary(f"RETR {self.product}.xml", buf.write)
        except ftplib.all_errors as exc:
            raise TransientFetchError(f"FTP download of {self.product}.xml failed: {exc}") from exc
        return buf.getvalue()

    def _store(self, forecast: Dict[str, Any]):
        tmp = self.cache_path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(forecast, f)
        os.replace(tmp, self.cache_path)

    def seed_observation(self) -> Optional[datetime]:
        try:
            with open(self.cache_path) as f:
                cached = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("%s: unreadable forecast cache: %s", self.source_id, exc)
            return None
        return parse_timestamp(cached.get("issued_at")) if isinstance(cached, dict) else None

    def fetch(self, context: FetchContext):
        if not self.product:
            return FatalError("no forecast product configured")

        raw = self._download()
        try:
            forecast = parse_forecast(raw, self.aac, self.location)
        except (ET.ParseError, ValueError) as exc:
            raise TransientFetchError(f"{self.product}: {exc}") from exc

        issued = parse_timestamp(forecast["issued_at"])
        last = context.last_data_timestamp
        if last is not None and issued <= last:
            return UnchangedData(issued)

        self._store(forecast)
        logger.info("Forecast %s for %s issued %s", self.product, forecast["location"], forecast["issued_at"])
        return NewData(forecast, issued)
