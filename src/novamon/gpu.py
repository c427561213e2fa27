"""GPU monitoring for NVIDIA (NVML), AMD and Intel (device-attribute tree)."""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any

import pynvml

from novamon.models import GpuRecord, GpusSnapshot, GpuVendor
from novamon.sync import Guarded
from novamon.sysfs import DeviceTree
from novamon.trackers import LazyResource, ResidencyTracker

logger = logging.getLogger(__name__)

AMD_VENDOR_ID = "0x1002"
INTEL_VENDOR_ID = "0x8086"

_AMD_DEVICE_NAMES = {
    "0x1638": "AMD Radeon Graphics (Ryzen 5000 Series iGPU)",
    "0x1506": "AMD Radeon Graphics (Ryzen 7000 Series iGPU)",
}

_CARD_RE = re.compile(r"card\d+")


@dataclass(slots=True)
class ProbeResult:
    """What one vendor probe found during a refresh."""

    devices: list[GpuRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    driver_version: str | None = None


class GpuProbe:
    """Enumerates the devices of one vendor and extracts their metrics."""

    vendor: GpuVendor = GpuVendor.UNKNOWN
    label = "GPU"

    def probe(self, now: float) -> ProbeResult:
        raise NotImplementedError


def load_nvml() -> ModuleType:
    """Initialize NVML; raises NVMLError when no driver is present."""
    pynvml.nvmlInit()
    return pynvml


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _nvml_read(fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except pynvml.NVMLError:
        return None


class NvidiaProbe(GpuProbe):
    """NVIDIA devices through the NVML library, initialized once."""

    vendor = GpuVendor.NVIDIA
    label = "NVIDIA"

    def __init__(self, loader: Callable[[], Any] = load_nvml, enabled: bool = True) -> None:
        self._loader = loader
        self._enabled = enabled
        self._nvml: LazyResource[Any] = LazyResource("NVML")

    def probe(self, now: float) -> ProbeResult:
        result = ProbeResult()
        if not self._enabled:
            return result

        nvml = self._nvml.get_or_init(self._loader)
        if nvml is None:
            result.errors.append("NVIDIA: NVML not available")
            return result

        driver = _nvml_read(nvml.nvmlSystemGetDriverVersion)
        result.driver_version = _text(driver) if driver is not None else None

        try:
            count = nvml.nvmlDeviceGetCount()
        except pynvml.NVMLError as exc:
            result.errors.append(f"NVIDIA: Failed to get device count: {exc}")
            return result

        for index in range(count):
            try:
                handle = nvml.nvmlDeviceGetHandleByIndex(index)
            except pynvml.NVMLError as exc:
                result.errors.append(f"NVIDIA: device {index}: {exc}")
                continue
            result.devices.append(self._read_device(nvml, index, handle))
        return result

    def _read_device(self, nvml: Any, index: int, handle: Any) -> GpuRecord:
        name = _nvml_read(nvml.nvmlDeviceGetName, handle)
        uuid = _nvml_read(nvml.nvmlDeviceGetUUID, handle)
        util = _nvml_read(nvml.nvmlDeviceGetUtilizationRates, handle)
        memory = _nvml_read(nvml.nvmlDeviceGetMemoryInfo, handle)
        encoder = _nvml_read(nvml.nvmlDeviceGetEncoderUtilization, handle)
        decoder = _nvml_read(nvml.nvmlDeviceGetDecoderUtilization, handle)

        return GpuRecord(
            index=index,
            name=_text(name) if name is not None else "Unknown NVIDIA GPU",
            vendor=GpuVendor.NVIDIA,
            uuid=_text(uuid) if uuid is not None else f"nvidia-{index}",
            utilization_gpu=int(util.gpu) if util is not None else 0,
            utilization_memory=int(util.memory) if util is not None else 0,
            memory_total=int(memory.total) if memory is not None else None,
            memory_used=int(memory.used) if memory is not None else None,
            memory_free=int(memory.free) if memory is not None else None,
            temperature=_nvml_read(nvml.nvmlDeviceGetTemperature, handle, nvml.NVML_TEMPERATURE_GPU),
            power_usage=_nvml_read(nvml.nvmlDeviceGetPowerUsage, handle),
            power_limit=_nvml_read(nvml.nvmlDeviceGetPowerManagementLimit, handle),
            fan_speed=_nvml_read(nvml.nvmlDeviceGetFanSpeed, handle),
            clock_graphics=_nvml_read(nvml.nvmlDeviceGetClockInfo, handle, nvml.NVML_CLOCK_GRAPHICS) or 0,
            clock_memory=_nvml_read(nvml.nvmlDeviceGetClockInfo, handle, nvml.NVML_CLOCK_MEM) or 0,
            # Both return [utilization, sampling period in us]
            encoder_utilization=int(encoder[0]) if encoder is not None else None,
            decoder_utilization=int(decoder[0]) if decoder is not None else None,
        )


class _DrmProbe(GpuProbe):
    """Cards under class/drm whose PCI vendor id matches."""

    vendor_id = ""

    def __init__(self, tree: DeviceTree) -> None:
        self._tree = tree

    def _cards(self) -> list[str]:
        cards = []
        for entry in self._tree.children("class/drm"):
            if not _CARD_RE.fullmatch(entry):
                continue
            vendor = self._tree.read("class/drm", entry, "device", "vendor")
            if vendor is not None and vendor.lower() == self.vendor_id:
                cards.append(entry)
        return cards


class AmdProbe(_DrmProbe):
    """AMD GPUs through amdgpu sysfs attributes."""

    vendor = GpuVendor.AMD
    label = "AMD"
    vendor_id = AMD_VENDOR_ID

    def probe(self, now: float) -> ProbeResult:
        result = ProbeResult()
        for index, card in enumerate(self._cards()):
            result.devices.append(self._read_card(index, card))
        return result

    def _read_card(self, index: int, card: str) -> GpuRecord:
        tree = self._tree
        device = f"class/drm/{card}/device"

        device_id = tree.read(device, "device")
        if device_id is None:
            name = "AMD Radeon Graphics"
        else:
            name = _AMD_DEVICE_NAMES.get(device_id.lower(), f"AMD Radeon Graphics (Device {device_id})")

        memory_total = tree.read_int(device, "mem_info_vram_total")
        memory_used = tree.read_int(device, "mem_info_vram_used")
        memory_free = None
        utilization_memory = 0
        if memory_total is not None and memory_used is not None:
            memory_free = max(memory_total - memory_used, 0)
            if memory_total > 0:
                utilization_memory = int(memory_used / memory_total * 100)

        return GpuRecord(
            index=index,
            name=name,
            vendor=GpuVendor.AMD,
            uuid=f"amd-{index}",
            utilization_gpu=tree.read_int(device, "gpu_busy_percent") or 0,
            utilization_memory=utilization_memory,
            memory_total=memory_total,
            memory_used=memory_used,
            memory_free=memory_free,
            temperature=self._temperature(device),
            power_usage=self._power(device, "power1_average", "power1_input"),
            power_limit=self._power(device, "power1_cap"),
            fan_speed=self._fan_percent(device),
            clock_graphics=self._active_clock(device, "pp_dpm_sclk") or 0,
            clock_memory=self._active_clock(device, "pp_dpm_mclk") or 0,
        )

    def _hwmon_int(self, device: str, attribute: str) -> int | None:
        for hwmon in self._tree.children(device, "hwmon"):
            value = self._tree.read_int(device, "hwmon", hwmon, attribute)
            if value is not None:
                return value
        return None

    def _temperature(self, device: str) -> int | None:
        millidegrees = self._hwmon_int(device, "temp1_input")
        return millidegrees // 1000 if millidegrees is not None else None

    def _power(self, device: str, *attributes: str) -> int | None:
        for attribute in attributes:
            microwatts = self._hwmon_int(device, attribute)
            if microwatts is not None:
                return microwatts // 1000
        return None

    def _fan_percent(self, device: str) -> int | None:
        pwm = self._hwmon_int(device, "pwm1")
        if pwm is None:
            return None
        pwm_max = self._hwmon_int(device, "pwm1_max") or 255
        return min(int(pwm / pwm_max * 100), 100)

    def _active_clock(self, device: str, clock_file: str) -> int | None:
        text = self._tree.read(device, clock_file)
        if text is None:
            return None
        # Lines look like "1: 1800Mhz *", the active level is starred
        for line in text.splitlines():
            if "*" not in line:
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            freq = parts[1]
            if freq.lower().endswith("mhz"):
                try:
                    return int(freq[:-3])
                except ValueError:
                    return None
        return None


class IntelProbe(_DrmProbe):
    """Intel GPUs; utilization is derived from RC6 idle residency."""

    vendor = GpuVendor.INTEL
    label = "Intel"
    vendor_id = INTEL_VENDOR_ID

    def __init__(self, tree: DeviceTree) -> None:
        super().__init__(tree)
        self._residency = ResidencyTracker()

    def probe(self, now: float) -> ProbeResult:
        result = ProbeResult()
        cards = self._cards()
        for index, card in enumerate(cards):
            result.devices.append(self._read_card(index, card, now))
        self._residency.prune(range(len(cards)))
        return result

    def _read_card(self, index: int, card: str, now: float) -> GpuRecord:
        tree = self._tree
        base = f"class/drm/{card}"

        clock = tree.read_int(base, "gt/gt0/rps_cur_freq_mhz")
        if clock is None:
            clock = tree.read_int(base, "gt_cur_freq_mhz")

        rc6 = tree.read_int(base, "gt/gt0/rc6_residency_ms")
        if rc6 is None:
            rc6 = tree.read_int(base, "power/rc6_residency_ms")
        utilization = 0
        if rc6 is not None:
            utilization = round(self._residency.utilization(index, now, rc6))

        return GpuRecord(
            index=index,
            name="Intel Integrated GPU",
            vendor=GpuVendor.INTEL,
            uuid=f"intel-{index}",
            utilization_gpu=utilization,
            utilization_memory=0,
            memory_total=None,
            memory_used=None,
            memory_free=None,
            temperature=None,
            power_usage=None,
            power_limit=None,
            fan_speed=None,
            clock_graphics=clock or 0,
            clock_memory=0,
        )


@dataclass(slots=True)
class _GpuState:
    probes: tuple[GpuProbe, ...]


class GpuMonitor:
    """
    Merges every vendor probe into one snapshot.

    A probe that raises is recorded as a diagnostic string and never
    prevents the other vendors from reporting.
    """

    def __init__(
        self,
        tree: DeviceTree | None = None,
        probes: tuple[GpuProbe, ...] | None = None,
        enable_nvml: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        tree = tree or DeviceTree()
        if probes is None:
            probes = (NvidiaProbe(enabled=enable_nvml), AmdProbe(tree), IntelProbe(tree))
        self._clock = clock
        self._state = Guarded("gpu", _GpuState(probes=probes))

    def refresh(self) -> GpusSnapshot:
        gpus: list[GpuRecord] = []
        errors: list[str] = []
        driver_version: str | None = None

        with self._state.write() as state:
            now = self._clock()
            for probe in state.probes:
                try:
                    result = probe.probe(now)
                except Exception as exc:
                    logger.warning("%s probe failed", probe.label, exc_info=True)
                    errors.append(f"{probe.label}: {exc}")
                    continue
                gpus.extend(result.devices)
                errors.extend(result.errors)
                if driver_version is None:
                    driver_version = result.driver_version

        vendors = {gpu.vendor for gpu in gpus}
        return GpusSnapshot(
            gpus=tuple(gpus),
            nvidia_available=GpuVendor.NVIDIA in vendors,
            amd_available=GpuVendor.AMD in vendors,
            intel_available=GpuVendor.INTEL in vendors,
            driver_version=driver_version,
            errors=tuple(errors),
        )
