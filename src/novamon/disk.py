"""Disk usage, I/O counters, and cached SMART health."""

import logging
import os
import re
import shutil
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import psutil

from novamon.models import DiskInfo, DisksSnapshot, SmartHealth, SmartInfo
from novamon.sync import Guarded
from novamon.sysfs import DeviceTree
from novamon.trackers import LazyResource, RateTracker, TTLCache

logger = logging.getLogger(__name__)

# SMART data changes slowly and smartctl is expensive
SMART_TTL = 60.0

_NVME_RE = re.compile(r"(/dev/(?:nvme\d+n\d+|mmcblk\d+))(?:p\d+)?")
_SD_RE = re.compile(r"(/dev/[a-z]+)\d*")

SmartRunner = Callable[[str, str], str | None]


def base_device(device: str) -> str | None:
    """
    Whole-disk device for a partition, e.g. /dev/sda1 -> /dev/sda.

    Returns None for anything that is not a /dev path.
    """
    if not device.startswith("/dev/"):
        return None
    match = _NVME_RE.fullmatch(device) or _SD_RE.fullmatch(device)
    return match.group(1) if match else device


def _raw_value(line: str) -> int | None:
    # ID# ATTRIBUTE_NAME FLAG VALUE WORST THRESH TYPE UPDATED WHEN_FAILED RAW_VALUE
    parts = line.split()
    if len(parts) < 10:
        return None
    try:
        return int(parts[9])
    except ValueError:
        return None


def _nvme_value(line: str) -> int | None:
    match = re.search(r":\s*([\d,]+)", line)
    if match is None:
        return None
    return int(match.group(1).replace(",", ""))


def parse_smartctl(output: str) -> SmartInfo:
    """Parse ``smartctl -H -A`` output for ATA and NVMe devices."""
    if "PASSED" in output:
        health = SmartHealth.PASSED
    elif "FAILED" in output:
        health = SmartHealth.FAILED
    else:
        health = SmartHealth.UNKNOWN

    temperature = power_on_hours = power_cycle_count = None
    for line in output.splitlines():
        if temperature is None and (
            "Temperature_Celsius" in line or "Airflow_Temperature" in line
        ):
            temperature = _raw_value(line)
        elif temperature is None and line.startswith("Temperature:"):
            temperature = _nvme_value(line)
        elif power_on_hours is None and "Power_On_Hours" in line:
            power_on_hours = _raw_value(line)
        elif power_on_hours is None and line.startswith("Power On Hours:"):
            power_on_hours = _nvme_value(line)
        elif power_cycle_count is None and "Power_Cycle_Count" in line:
            power_cycle_count = _raw_value(line)
        elif power_cycle_count is None and line.startswith("Power Cycles:"):
            power_cycle_count = _nvme_value(line)

    return SmartInfo(
        health=health,
        temperature=temperature,
        power_on_hours=power_on_hours,
        power_cycle_count=power_cycle_count,
    )


def run_smartctl(binary: str, device: str, timeout: float = 10.0) -> str | None:
    """Run smartctl against ``device`` and return its stdout, or None on failure."""
    try:
        completed = subprocess.run(
            [binary, "-H", "-A", device],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("smartctl %s failed: %s", device, exc)
        return None
    # Bits 0 and 1 mean the command line or device open failed;
    # higher bits only describe disk condition.
    if completed.returncode & 0b11:
        logger.debug("smartctl %s exited with %d", device, completed.returncode)
        return None
    return completed.stdout


@dataclass(slots=True)
class _DiskState:
    io_rates: RateTracker = field(default_factory=RateTracker)


class DiskMonitor:
    """Mounted partitions with usage, I/O counters and SMART data."""

    def __init__(
        self,
        tree: DeviceTree | None = None,
        smartctl: str = "smartctl",
        smart_ttl: float = SMART_TTL,
        smart_timeout: float = 10.0,
        runner: SmartRunner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tree = tree or DeviceTree()
        self._smartctl_name = smartctl
        self._smart_ttl = smart_ttl
        self._smart_timeout = smart_timeout
        self._runner = runner
        self._clock = clock
        self._smartctl: LazyResource[str] = LazyResource("smartctl")
        self._smart_cache: TTLCache[SmartInfo] = TTLCache(clock=clock)
        self._state = Guarded("disk", _DiskState())

    def _smart_output(self, device: str) -> str | None:
        if self._runner is not None:
            return self._runner(self._smartctl_name, device)
        binary = self._smartctl.get_or_init(lambda: shutil.which(self._smartctl_name))
        if binary is None:
            return None
        return run_smartctl(binary, device, self._smart_timeout)

    def smart_info(self, device: str) -> SmartInfo | None:
        """SMART data for the disk holding ``device``, cached for the TTL."""
        disk = base_device(device)
        if disk is None:
            return None

        def probe() -> SmartInfo | None:
            output = self._smart_output(disk)
            return parse_smartctl(output) if output is not None else None

        return self._smart_cache.get_or_compute(disk, self._smart_ttl, probe)

    def _is_removable(self, device: str) -> bool:
        disk = base_device(device)
        if disk is None:
            return False
        return self._tree.read("block", os.path.basename(disk), "removable") == "1"

    def refresh(self) -> DisksSnapshot:
        disks: list[DiskInfo] = []
        total_space = total_used = total_available = 0

        with self._state.write() as state:
            partitions = psutil.disk_partitions(all=False)

            # One read of the whole counter table, looked up per device
            try:
                io_stats = psutil.disk_io_counters(perdisk=True) or {}
            except (OSError, RuntimeError):
                io_stats = {}
            now = self._clock()

            for part in partitions:
                try:
                    usage = psutil.disk_usage(part.mountpoint)
                except OSError:
                    logger.debug("cannot stat %s", part.mountpoint)
                    continue

                disk_total = usage.total
                disk_available = usage.free
                disk_used = max(disk_total - disk_available, 0)
                usage_percent = (disk_used / disk_total * 100.0) if disk_total > 0 else 0.0

                kernel_name = os.path.basename(part.device)
                counters = io_stats.get(kernel_name)
                read_bytes = counters.read_bytes if counters else 0
                written_bytes = counters.write_bytes if counters else 0
                read_rate, write_rate = state.io_rates.observe(
                    part.mountpoint, now, (read_bytes, written_bytes)
                )

                disks.append(
                    DiskInfo(
                        name=part.device,
                        mount_point=part.mountpoint,
                        file_system=part.fstype,
                        total_space=disk_total,
                        available_space=disk_available,
                        used_space=disk_used,
                        usage_percent=usage_percent,
                        is_removable=self._is_removable(part.device),
                        read_bytes=read_bytes,
                        written_bytes=written_bytes,
                        read_rate_bps=read_rate,
                        write_rate_bps=write_rate,
                        smart=self.smart_info(part.device),
                    )
                )
                total_space += disk_total
                total_available += disk_available
                total_used += disk_used

            state.io_rates.prune(d.mount_point for d in disks)

        return DisksSnapshot(
            disks=tuple(disks),
            total_space=total_space,
            total_used=total_used,
            total_available=total_available,
        )
