"""Monitor orchestration: per-domain monitors, worker pool and poll loop."""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from queue import Queue
from typing import Any, Protocol, cast

from novamon.config import MonitorConfig
from novamon.cpu import CpuMonitor
from novamon.disk import DiskMonitor
from novamon.errors import StatePoisonedError
from novamon.gpu import GpuMonitor
from novamon.memory import MemoryMonitor
from novamon.models import (
    CpuSnapshot,
    GpusSnapshot,
    MemorySnapshot,
    NetworkSnapshot,
    ProcessList,
    SensorsSnapshot,
)
from novamon.network import NetworkMonitor
from novamon.process import ProcessMonitor
from novamon.sensors import SensorsMonitor
from novamon.sync import abort_on_poison
from novamon.sysfs import DeviceTree
from novamon.system import SystemInfoMonitor

logger = logging.getLogger(__name__)


class Domain(Enum):
    """Monitored domains."""

    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"
    PROCESS = "process"
    GPU = "gpu"
    SENSORS = "sensors"
    SYSTEM = "system"


class DomainMonitor(Protocol):
    def refresh(self) -> Any: ...


def build_monitors(config: MonitorConfig) -> dict[Domain, DomainMonitor]:
    """One monitor per domain, configured from ``config``."""
    tree = DeviceTree(config.sysfs_root)
    return {
        Domain.CPU: CpuMonitor(),
        Domain.MEMORY: MemoryMonitor(),
        Domain.DISK: DiskMonitor(
            tree=tree,
            smartctl=config.smartctl_path,
            smart_ttl=config.smart_ttl,
            smart_timeout=config.smartctl_timeout,
        ),
        Domain.NETWORK: NetworkMonitor(),
        Domain.PROCESS: ProcessMonitor(),
        Domain.GPU: GpuMonitor(tree=tree, enable_nvml=config.enable_nvml),
        Domain.SENSORS: SensorsMonitor(interval=config.sensors_interval),
        Domain.SYSTEM: SystemInfoMonitor(),
    }


class MonitorHub:
    """
    Owns one monitor per domain and runs refreshes on a bounded worker pool.

    Refreshes of different domains run in parallel; each domain serializes
    its own state. Callers bound how long they wait with ``timeout``.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        monitors: dict[Domain, DomainMonitor] | None = None,
    ) -> None:
        config = config or MonitorConfig()
        self._monitors = monitors if monitors is not None else build_monitors(config)
        self._executor = ThreadPoolExecutor(
            max_workers=config.workers,
            thread_name_prefix="novamon-worker",
        )
        self._closed = False

    def __enter__(self) -> "MonitorHub":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def monitor(self, domain: Domain) -> DomainMonitor:
        return self._monitors[domain]

    @property
    def process(self) -> ProcessMonitor:
        return cast(ProcessMonitor, self._monitors[Domain.PROCESS])

    def submit(self, domain: Domain) -> Future:
        """Schedule a refresh of ``domain`` on the worker pool."""
        return self._executor.submit(self._monitors[domain].refresh)

    def refresh(self, domain: Domain, timeout: float | None = None) -> Any:
        return self.submit(domain).result(timeout=timeout)

    def refresh_many(self, domains: list[Domain], timeout: float | None = None) -> dict[Domain, Any]:
        """Refresh several domains in parallel; the first failure propagates."""
        futures = {domain: self.submit(domain) for domain in domains}
        return {domain: future.result(timeout=timeout) for domain, future in futures.items()}

    def terminate(self, pid: int, force: bool, timeout: float | None = None) -> bool:
        return self._executor.submit(self.process.terminate, pid, force).result(timeout=timeout)

    def set_priority(self, pid: int, nice: int, timeout: float | None = None) -> None:
        self._executor.submit(self.process.set_priority, pid, nice).result(timeout=timeout)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True, cancel_futures=True)


DASHBOARD_DOMAINS = [
    Domain.CPU,
    Domain.MEMORY,
    Domain.NETWORK,
    Domain.PROCESS,
    Domain.GPU,
    Domain.SENSORS,
]


@dataclass(slots=True, frozen=True)
class DashboardSnapshot:
    """One poll of every dashboard domain; a failed domain is None."""

    cpu: CpuSnapshot | None
    memory: MemorySnapshot | None
    network: NetworkSnapshot | None
    processes: ProcessList | None
    gpus: GpusSnapshot | None
    sensors: SensorsSnapshot | None
    errors: tuple[str, ...] = ()


class SystemMonitor:
    """
    Polls the dashboard domains through a MonitorHub.

    Runs in a separate daemon thread and pushes DashboardSnapshots to a
    thread-safe Queue. A domain that fails is logged and left out of that
    snapshot; a poisoned domain terminates the process.
    """

    def __init__(
        self,
        update_queue: Queue[DashboardSnapshot],
        hub: MonitorHub | None = None,
        poll_rate: float = 2.0,
        refresh_timeout: float = 30.0,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            hub: Hub to refresh through. One is created when omitted.
            poll_rate: How often to poll the system (in seconds). Default 2.0s.
            refresh_timeout: Longest wait for a single domain refresh.
        """
        self._queue = update_queue
        self._hub = hub if hub is not None else MonitorHub()
        self._owns_hub = hub is None
        self._poll_rate = poll_rate
        self._refresh_timeout = refresh_timeout
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cpu_history: deque[list[float]] = deque(maxlen=60)

    @property
    def hub(self) -> MonitorHub:
        return self._hub

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def close(self) -> None:
        """Stop polling and shut down the hub if this monitor created it."""
        self.stop()
        if self._owns_hub:
            self._hub.close()

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect_snapshot())
            except StatePoisonedError as exc:
                abort_on_poison(exc)
            except Exception:
                logger.exception("poll failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def collect_snapshot(self) -> DashboardSnapshot:
        """Refresh every dashboard domain in parallel and combine the results."""
        futures = {domain: self._hub.submit(domain) for domain in DASHBOARD_DOMAINS}
        results: dict[Domain, Any] = {}
        errors: list[str] = []

        for domain, future in futures.items():
            try:
                results[domain] = future.result(timeout=self._refresh_timeout)
            except StatePoisonedError:
                raise
            except FutureTimeoutError:
                logger.warning("%s refresh timed out", domain.value)
                errors.append(f"{domain.value}: timed out")
            except Exception as exc:
                logger.warning("%s refresh failed", domain.value, exc_info=True)
                errors.append(f"{domain.value}: {exc}")

        cpu = results.get(Domain.CPU)
        if cpu is not None:
            self._cpu_history.append([core.usage for core in cpu.cores])

        return DashboardSnapshot(
            cpu=cpu,
            memory=results.get(Domain.MEMORY),
            network=results.get(Domain.NETWORK),
            processes=results.get(Domain.PROCESS),
            gpus=results.get(Domain.GPU),
            sensors=results.get(Domain.SENSORS),
            errors=tuple(errors),
        )

    def get_cpu_history(self) -> list[list[float]]:
        """Get the CPU usage history for sparkline rendering."""
        return list(self._cpu_history)
