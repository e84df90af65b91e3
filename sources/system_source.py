"""System monitoring data source -- CPU, RAM, disk, uptime.

Reads from /proc and /sys on Linux. No external dependencies.
Every poll is a fresh reading, so every fetch is new data.
"""

import logging
import os
from typing import Any, Dict

from lifestream.data_source import DataSource, FetchContext, NewData
from lifestream.registry import register_source

logger = logging.getLogger(__name__)

PROC = "/proc"
THERMAL_ZONE = "/sys/class/thermal/thermal_zone0/temp"


@register_source("system")
class SystemSource(DataSource):
    """Publishes system metrics: CPU load and temp, RAM, disk, uptime."""

    default_options = {
        "base_interval": 5,
        "initial_slack": 0,
        "minimum_interval": 5,
        "maximum_interval": 60,
        "retry_interval": 5,
    }

    def __init__(self, source_id: str, config: Dict):
        super().__init__(source_id, config)
        self.proc = self.config.get("proc", PROC)
        self.disk_path = self.config.get("disk_path", "/")
        self._prev_cpu = None

    def _read(self, name: str) -> str:
        with open(os.path.join(self.proc, name)) as f:
            return f.read()

    def _cpu_percent(self) -> float:
        # Busy share of jiffies since the previous reading
        fields = [int(v) for v in self._read("stat").splitlines()[0].split()[1:]]
        idle = fields[3] + (fields[4] if len(fields) > 4 else 0)
        total = sum(fields)
        prev, self._prev_cpu = self._prev_cpu, (idle, total)
        if prev is None or total == prev[1]:
            return 0.0
        return (1 - (idle - prev[0]) / (total - prev[1])) * 100

    def fetch(self, context: FetchContext):
        data: Dict[str, Any] = {}

        try:
            data["cpu_percent"] = round(self._cpu_percent(), 1)
        except (OSError, ValueError, IndexError):
            data["cpu_percent"] = 0.0

        # CPU temperature
        try:
            with open(THERMAL_ZONE) as f:
                data["cpu_temp"] = int(f.read().strip()) / 1000.0
        except (OSError, ValueError):
            data["cpu_temp"] = None

        # Memory from /proc/meminfo
        try:
            meminfo = {}
            for line in self._read("meminfo").splitlines():
                parts = line.split(":")
                if len(parts) == 2:
                    meminfo[parts[0].strip()] = int(parts[1].strip().split()[0])
            total = meminfo.get("MemTotal", 1)
            available = meminfo.get("MemAvailable", 0)
            data["ram_total_mb"] = total / 1024
            data["ram_used_mb"] = (total - available) / 1024
            data["ram_percent"] = ((total - available) / total) * 100
        except (OSError, ValueError, IndexError):
            data["ram_percent"] = 0.0

        # Disk usage
        try:
            st = os.statvfs(self.disk_path)
            total = st.f_blocks * st.f_frsize
            used = total - st.f_bavail * st.f_frsize
            data["disk_total_gb"] = total / (1024 ** 3)
            data["disk_used_gb"] = used / (1024 ** 3)
            data["disk_percent"] = (used / total) * 100 if total else 0
        except OSError:
            data["disk_percent"] = 0.0

        # Uptime
        try:
            seconds = float(self._read("uptime").split()[0])
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            data["uptime_str"] = f"{hours}h {minutes}m"
        except (OSError, ValueError, IndexError):
            data["uptime_str"] = "?"

        # Load average
        try:
            parts = self._read("loadavg").split()
            data["load_1m"] = float(parts[0])
            data["load_5m"] = float(parts[1])
        except (OSError, ValueError, IndexError):
            data["load_1m"] = 0.0

        return NewData(data, context.now)
