"""Snapshot data models for novamon."""

from dataclasses import dataclass, fields, is_dataclass
from enum import Enum
from typing import Any

from novamon.errors import GpuNotAvailableError


@dataclass(slots=True, frozen=True)
class CpuCore:
    name: str
    usage: float
    frequency: int  # MHz


@dataclass(slots=True, frozen=True)
class CpuSnapshot:
    """Per-core and global CPU usage."""

    name: str
    vendor: str
    brand: str
    physical_cores: int
    logical_cores: int
    global_usage: float
    cores: tuple[CpuCore, ...]
    load_avg: tuple[float, float, float]


@dataclass(slots=True, frozen=True)
class MemorySnapshot:
    """RAM and swap usage in bytes."""

    total_memory: int
    used_memory: int
    available_memory: int
    total_swap: int
    used_swap: int
    memory_usage_percent: float
    swap_usage_percent: float


class SmartHealth(Enum):
    PASSED = "passed"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class SmartInfo:
    health: SmartHealth
    temperature: int | None  # Celsius
    power_on_hours: int | None
    power_cycle_count: int | None


@dataclass(slots=True, frozen=True)
class DiskInfo:
    """One mounted partition."""

    name: str
    mount_point: str
    file_system: str
    total_space: int
    available_space: int
    used_space: int
    usage_percent: float
    is_removable: bool
    read_bytes: int
    written_bytes: int
    read_rate_bps: float
    write_rate_bps: float
    smart: SmartInfo | None


@dataclass(slots=True, frozen=True)
class DisksSnapshot:
    disks: tuple[DiskInfo, ...]
    total_space: int
    total_used: int
    total_available: int


@dataclass(slots=True, frozen=True)
class NetworkInterface:
    name: str
    mac_address: str
    received_bytes: int
    transmitted_bytes: int
    received_packets: int
    transmitted_packets: int
    errors_in: int
    errors_out: int
    download_rate_bps: float  # Bytes per second
    upload_rate_bps: float


@dataclass(slots=True, frozen=True)
class NetworkSnapshot:
    interfaces: tuple[NetworkInterface, ...]
    total_received: int
    total_transmitted: int
    total_download_rate: float
    total_upload_rate: float


class ProcStatus(Enum):
    """Normalized process state."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPED = "stopped"
    ZOMBIE = "zombie"
    DEAD = "dead"
    IDLE = "idle"
    UNKNOWN = "unknown"

    @property
    def short(self) -> str:
        """Single letter as shown by top."""
        return {
            ProcStatus.RUNNING: "R",
            ProcStatus.SLEEPING: "S",
            ProcStatus.STOPPED: "T",
            ProcStatus.ZOMBIE: "Z",
            ProcStatus.DEAD: "X",
            ProcStatus.IDLE: "I",
        }.get(self, "?")


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of a single OS process."""

    pid: int
    parent_pid: int | None
    name: str
    exe_path: str
    command: tuple[str, ...]
    status: ProcStatus
    cpu_usage: float  # 0.0 - 100.0 * core_count
    memory_bytes: int  # RSS
    memory_percent: float
    start_time: int  # Unix timestamp
    run_time: int  # Seconds
    user: str | None
    nice: int

    @property
    def command_line(self) -> str:
        return " ".join(self.command) if self.command else self.name


@dataclass(slots=True, frozen=True)
class GroupedProcessRecord(ProcessRecord):
    """All processes sharing an executable name, represented by the lowest pid."""

    instance_count: int = 1


@dataclass(slots=True, frozen=True)
class ProcessList:
    processes: tuple[GroupedProcessRecord, ...]
    total_count: int


class GpuVendor(Enum):
    NVIDIA = "nvidia"
    AMD = "amd"
    INTEL = "intel"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class GpuRecord:
    """
    One GPU device.

    Utilization and clock fields are 0 when unreadable. All other metrics
    are None when the vendor interface does not expose them.
    """

    index: int
    name: str
    vendor: GpuVendor
    uuid: str
    utilization_gpu: int  # Percentage
    utilization_memory: int  # Percentage
    memory_total: int | None  # Bytes
    memory_used: int | None
    memory_free: int | None
    temperature: int | None  # Celsius
    power_usage: int | None  # Milliwatts
    power_limit: int | None  # Milliwatts
    fan_speed: int | None  # Percentage
    clock_graphics: int  # MHz
    clock_memory: int  # MHz
    encoder_utilization: int | None = None
    decoder_utilization: int | None = None


@dataclass(slots=True, frozen=True)
class GpusSnapshot:
    gpus: tuple[GpuRecord, ...]
    nvidia_available: bool
    amd_available: bool
    intel_available: bool
    driver_version: str | None
    errors: tuple[str, ...]

    def device(self, uuid: str) -> GpuRecord:
        """Look up a device by UUID."""
        for gpu in self.gpus:
            if gpu.uuid == uuid:
                return gpu
        raise GpuNotAvailableError(f"no device with uuid {uuid}")


class SensorType(Enum):
    TEMPERATURE = "temperature"
    FAN = "fan"
    VOLTAGE = "voltage"
    POWER = "power"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class SensorReading:
    label: str
    sensor_type: SensorType
    value: float
    max_value: float | None
    critical_value: float | None
    unit: str


@dataclass(slots=True, frozen=True)
class SensorsSnapshot:
    sensors: tuple[SensorReading, ...]
    cpu_temp: float | None
    gpu_temp: float | None


@dataclass(slots=True, frozen=True)
class SystemInfo:
    hostname: str
    os_name: str
    os_version: str
    kernel_version: str
    architecture: str
    uptime: int  # Seconds
    boot_time: int  # Unix timestamp


def snapshot_to_dict(value: Any) -> Any:
    """Convert a snapshot into JSON-ready builtins."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: snapshot_to_dict(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [snapshot_to_dict(item) for item in value]
    if isinstance(value, dict):
        return {str(k): snapshot_to_dict(v) for k, v in value.items()}
    return value
