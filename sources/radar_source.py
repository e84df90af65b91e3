"""Bureau of Meteorology radar frames over anonymous FTP.

BOM publishes one PNG per radar product roughly every 6 minutes into a
single flat directory:

    ftp://ftp.bom.gov.au/anon/gen/radar/IDR713.T.202601151234.png

The frame time in the name (UTC) is the data timestamp. The directory
only holds the last hour or so, which bounds how far back catch-up can
reach. Downloaded frames are kept in a local cache directory; the cache
is what check_exists() answers from.

Config example (in dashboard.yaml):
    sources:
      - id: "bom.radar.sydney"
        type: "radar"
        product: "IDR713"          # Sydney 128km
        catchup_window: 3600
"""

import ftplib
import logging
import os
import re
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from config import DATA_DIR
from lifestream.data_source import DataSource, FatalError, FetchContext, Miss, NewData
from lifestream.errors import TransientFetchError
from lifestream.registry import register_source

logger = logging.getLogger(__name__)

FTP_HOST = "ftp.bom.gov.au"
RADAR_PATH = "/anon/gen/radar"
FTP_USER = "anonymous"
FTP_PASSWORD = "lifestream@local"

FRAME_CADENCE = 360


def parse_frame_name(filename: str, product: str) -> Optional[datetime]:
    """Frame time from a name like IDR713.T.202601151234.png, else None."""
    match = re.match(rf"^{re.escape(product)}\.T\.(\d{{12}})\.\w+$", filename)
    if not match:
        return None
    try:
        stamp = datetime.strptime(match.group(1), "%Y%m%d%H%M")
    except ValueError:
        return None
    return stamp.replace(tzinfo=timezone.utc)


@register_source("radar")
class RadarSource(DataSource):
    """Downloads the newest frame of one radar product."""

    default_options = {
        "base_interval": FRAME_CADENCE,
        "initial_slack": 30,
        "minimum_interval": 30,
        "maximum_interval": 900,
        "retry_interval": 20,
        "max_retries": 3,
        "max_observations": 20,
        "catchup_window": 3600,
        "catchup_cadence": FRAME_CADENCE,
        "catchup_interval": 1800,
        "catchup_max_per_pass": 10,
    }

    # Replaced in tests
    ftp_factory = ftplib.FTP

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.product = self.config.get("product", "")
        self.host = self.config.get("host", FTP_HOST)
        self.path = self.config.get("path", RADAR_PATH)
        self.cache_dir = self.config.get("cache_dir") or os.path.join(DATA_DIR, "radar", self.product)
        self.slot = timedelta(seconds=self.config.get("catchup_cadence", FRAME_CADENCE))
        self._timeout = self.config.get("timeout", 30)
        self._listing_ttl = self.config.get("listing_ttl", 60)
        self._listing: Dict[datetime, str] = {}
        self._listed_at: Optional[float] = None
        self._lock = threading.Lock()
        os.makedirs(self.cache_dir, exist_ok=True)

    # ─── FTP ───

    def _connect(self):
        ftp = self.ftp_factory(self.host, timeout=self._timeout)
        ftp.login(FTP_USER, FTP_PASSWORD)
        ftp.cwd(self.path)
        return ftp

    def _list_frames(self, force: bool = False) -> Dict[datetime, str]:
        """Frame time -> remote file name, cached for listing_ttl seconds."""
        with self._lock:
            fresh = self._listed_at is not None and time.monotonic() - self._listed_at < self._listing_ttl
            if fresh and not force:
                return dict(self._listing)

        try:
            with self._connect() as ftp:
                names = ftp.nlst()
        except ftplib.all_errors as exc:
            raise TransientFetchError(f"FTP listing failed: {exc}") from exc

        listing = {}
        for name in names:
            name = os.path.basename(name)
            stamp = parse_frame_name(name, self.product)
            if stamp is not None:
                listing[stamp] = name

        with self._lock:
            self._listing = listing
            self._listed_at = time.monotonic()
        logger.debug("%s: %d frames listed for %s", self.source_id, len(listing), self.product)
        return dict(listing)

    def _download(self, name: str) -> str:
        path = os.path.join(self.cache_dir, name)
        if os.path.exists(path):
            return path
        tmp = path + ".part"
        try:
            with self._connect() as ftp, open(tmp, "wb") as f:
                ftp.retrbinary(f"RETR {name}", f.write)
        except ftplib.all_errors as exc:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise TransientFetchError(f"FTP download of {name} failed: {exc}") from exc
        os.replace(tmp, path)
        logger.info("Downloaded radar frame %s", name)
        return path

    def _frame(self, stamp: datetime, name: str) -> Dict:
        return {
            "product": self.product,
            "frame": name,
            "path": self._download(name),
            "timestamp": stamp.isoformat(),
        }

    # ─── Cache ───

    def _cached_frames(self) -> Dict[datetime, str]:
        frames = {}
        for name in os.listdir(self.cache_dir):
            stamp = parse_frame_name(name, self.product)
            if stamp is not None:
                frames[stamp] = name
        return frames

    def _in_slot(self, frames: Dict[datetime, str], instant: datetime) -> Optional[datetime]:
        # Frames are not aligned to the catch-up grid; any frame inside the
        # slot [instant, instant + cadence) stands for it.
        inside = [stamp for stamp in frames if instant <= stamp < instant + self.slot]
        return min(inside) if inside else None

    def check_exists(self, instant: datetime) -> bool:
        return self._in_slot(self._cached_frames(), instant) is not None

    def seed_observation(self) -> Optional[datetime]:
        frames = self._cached_frames()
        return max(frames) if frames else None

    # ─── Fetch ───

    def fetch(self, context: FetchContext):
        if not self.product:
            return FatalError("no radar product configured")

        listing = self._list_frames(force=True)
        if not listing:
            return Miss(f"no frames listed for {self.product}")

        newest = max(listing)
        last = context.last_data_timestamp
        if last is not None and newest <= last:
            return Miss("no new frame yet")
        return NewData(self._frame(newest, listing[newest]), newest)

    def fetch_instant(self, instant: datetime, context: FetchContext):
        listing = self._list_frames()
        stamp = self._in_slot(listing, instant)
        if stamp is None:
            return Miss(f"no frame for {instant:%H:%M} in listing")
        return NewData(self._frame(stamp, listing[stamp]), stamp)
