"""CPU usage, frequency and per-core statistics."""

import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil

from novamon.models import CpuCore, CpuSnapshot
from novamon.sync import Guarded
from novamon.trackers import LazyResource


@dataclass(slots=True, frozen=True)
class CpuIdentity:
    vendor: str
    brand: str
    physical_cores: int


def read_cpu_identity(cpuinfo: str | Path = "/proc/cpuinfo") -> CpuIdentity:
    """Static CPU identity; read once per process."""
    vendor = brand = ""
    try:
        text = Path(cpuinfo).read_text(encoding="utf-8", errors="replace")
    except OSError:
        text = ""
    for line in text.splitlines():
        key, _, value = line.partition(":")
        key = key.strip()
        if key == "vendor_id" and not vendor:
            vendor = value.strip()
        elif key == "model name" and not brand:
            brand = value.strip()
        if vendor and brand:
            break

    return CpuIdentity(
        vendor=vendor,
        brand=brand or platform.processor() or platform.machine(),
        physical_cores=psutil.cpu_count(logical=False) or 0,
    )


def _total(times: Any) -> float:
    # guest time is already included in user time on Linux
    return sum(times) - getattr(times, "guest", 0.0) - getattr(times, "guest_nice", 0.0)


def _idle(times: Any) -> float:
    return times.idle + getattr(times, "iowait", 0.0)


def busy_percent(prior: Any, current: Any) -> float:
    """Share of non-idle time between two cpu_times() readings."""
    total = _total(current) - _total(prior)
    if total <= 0:
        return 0.0
    idle = _idle(current) - _idle(prior)
    return min(max((total - idle) / total * 100.0, 0.0), 100.0)


@dataclass(slots=True)
class _CpuState:
    prior_times: list[Any] | None = None


class CpuMonitor:
    """Per-core usage derived from successive cpu_times() readings."""

    def __init__(self) -> None:
        self._identity: LazyResource[CpuIdentity] = LazyResource("cpu identity")
        self._state = Guarded("cpu", _CpuState())

    def refresh(self) -> CpuSnapshot:
        identity = self._identity.get_or_init(read_cpu_identity)

        with self._state.write() as state:
            times = psutil.cpu_times(percpu=True)
            prior = state.prior_times
            if prior is None or len(prior) != len(times):
                usages = [0.0] * len(times)
            else:
                usages = [busy_percent(p, c) for p, c in zip(prior, times)]
            state.prior_times = list(times)

        try:
            freqs = psutil.cpu_freq(percpu=True) or []
        except (OSError, NotImplementedError):
            freqs = []

        cores = []
        for i, usage in enumerate(usages):
            freq = freqs[i] if i < len(freqs) else (freqs[0] if freqs else None)
            cores.append(
                CpuCore(
                    name=f"cpu{i}",
                    usage=usage,
                    frequency=int(freq.current) if freq else 0,
                )
            )

        try:
            load_avg = tuple(psutil.getloadavg())
        except (OSError, AttributeError):
            load_avg = (0.0, 0.0, 0.0)

        return CpuSnapshot(
            name=cores[0].name if cores else "",
            vendor=identity.vendor if identity else "",
            brand=identity.brand if identity else "",
            physical_cores=identity.physical_cores if identity else 0,
            logical_cores=len(cores),
            global_usage=(sum(c.usage for c in cores) / len(cores)) if cores else 0.0,
            cores=tuple(cores),
            load_avg=load_avg,
        )
