"""Temperature and fan sensors, rescanned at most every few seconds."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import psutil

from novamon.models import SensorReading, SensorsSnapshot, SensorType
from novamon.sync import Guarded
from novamon.trackers import LazyResource, TTLCache

logger = logging.getLogger(__name__)

# Minimum time between full sensor rescans
MIN_REFRESH_INTERVAL = 2.0

_CPU_HINTS = ("cpu", "core", "tctl", "tdie", "package", "k10temp", "coretemp")
_GPU_HINTS = ("gpu", "edge", "junction", "radeon", "nvidia", "amdgpu", "nouveau")

EMPTY = SensorsSnapshot(sensors=(), cpu_temp=None, gpu_temp=None)


@dataclass(slots=True, frozen=True)
class SensorReaders:
    """Sensor enumeration functions this platform provides."""

    temperatures: Callable[[], dict[str, list[Any]]] | None
    fans: Callable[[], dict[str, list[Any]]] | None


def detect_readers() -> SensorReaders | None:
    readers = SensorReaders(
        temperatures=getattr(psutil, "sensors_temperatures", None),
        fans=getattr(psutil, "sensors_fans", None),
    )
    if readers.temperatures is None and readers.fans is None:
        return None
    return readers


def _label(chip: str, label: str) -> str:
    return f"{chip} {label}" if label else chip


def _matches(text: str, hints: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(hint in lowered for hint in hints)


def _read(reader: Callable[[], dict[str, list[Any]]] | None, kind: str) -> dict[str, list[Any]]:
    if reader is None:
        return {}
    try:
        return reader() or {}
    except (OSError, RuntimeError) as exc:
        logger.debug("reading %s sensors failed: %s", kind, exc)
        return {}


@dataclass(slots=True)
class _SensorsState:
    readers: LazyResource[SensorReaders] = field(
        default_factory=lambda: LazyResource("sensor readers")
    )
    scans: int = 0


class SensorsMonitor:
    """Sensor readings, served from cache within the minimum rescan interval."""

    def __init__(
        self,
        interval: float = MIN_REFRESH_INTERVAL,
        detect: Callable[[], SensorReaders | None] = detect_readers,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = interval
        self._detect = detect
        self._cache: TTLCache[SensorsSnapshot] = TTLCache(clock=clock)
        self._state = Guarded("sensors", _SensorsState())

    @property
    def scans(self) -> int:
        """Number of full rescans performed so far."""
        with self._state.read() as state:
            return state.scans

    def refresh(self) -> SensorsSnapshot:
        snapshot = self._cache.get_or_compute("sensors", self._interval, self._rescan)
        return snapshot if snapshot is not None else EMPTY

    def _rescan(self) -> SensorsSnapshot:
        with self._state.write() as state:
            readers = state.readers.get_or_init(self._detect)
            state.scans += 1
            if readers is None:
                return EMPTY
            temperatures = _read(readers.temperatures, "temperature")
            fans = _read(readers.fans, "fan")

        sensors: list[SensorReading] = []
        cpu_temp: float | None = None
        gpu_temp: float | None = None

        for chip, entries in temperatures.items():
            for entry in entries:
                if entry.current is None:
                    continue
                label = _label(chip, entry.label)
                value = float(entry.current)
                if cpu_temp is None and _matches(label, _CPU_HINTS):
                    cpu_temp = value
                elif gpu_temp is None and _matches(label, _GPU_HINTS):
                    gpu_temp = value
                sensors.append(
                    SensorReading(
                        label=label,
                        sensor_type=SensorType.TEMPERATURE,
                        value=value,
                        max_value=float(entry.high) if entry.high is not None else None,
                        critical_value=float(entry.critical) if entry.critical is not None else None,
                        unit="°C",
                    )
                )

        for chip, entries in fans.items():
            for entry in entries:
                sensors.append(
                    SensorReading(
                        label=_label(chip, entry.label),
                        sensor_type=SensorType.FAN,
                        value=float(entry.current),
                        max_value=None,
                        critical_value=None,
                        unit="RPM",
                    )
                )

        return SensorsSnapshot(sensors=tuple(sensors), cpu_temp=cpu_temp, gpu_temp=gpu_temp)
