"""Process listing, grouping by executable name, and process management."""

import logging
import math
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

import psutil

from novamon import oscalls
from novamon.errors import ProcessNotFoundError
from novamon.models import GroupedProcessRecord, ProcessList, ProcessRecord, ProcStatus
from novamon.sync import Guarded

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    psutil.STATUS_RUNNING: ProcStatus.RUNNING,
    psutil.STATUS_SLEEPING: ProcStatus.SLEEPING,
    psutil.STATUS_DISK_SLEEP: ProcStatus.SLEEPING,
    psutil.STATUS_STOPPED: ProcStatus.STOPPED,
    psutil.STATUS_TRACING_STOP: ProcStatus.STOPPED,
    psutil.STATUS_ZOMBIE: ProcStatus.ZOMBIE,
    psutil.STATUS_DEAD: ProcStatus.DEAD,
    psutil.STATUS_IDLE: ProcStatus.IDLE,
}

# Attributes fetched per process in one oneshot() pass
_ATTRS = [
    "pid",
    "ppid",
    "name",
    "exe",
    "cmdline",
    "status",
    "cpu_percent",
    "memory_info",
    "create_time",
    "username",
]


def group_by_name(records: Iterable[ProcessRecord]) -> list[GroupedProcessRecord]:
    """
    Collapse processes sharing an executable name into one row per name.

    The representative of a group is its lowest pid and every field but
    cpu usage comes from it. CPU usage is summed over the group. The
    result does not depend on input order and is sorted by cpu usage,
    highest first.
    """
    representatives: dict[str, ProcessRecord] = {}
    cpu: dict[str, list[float]] = {}

    for record in records:
        current = representatives.get(record.name)
        if current is None or record.pid < current.pid:
            representatives[record.name] = record
        cpu.setdefault(record.name, []).append(record.cpu_usage)

    grouped = [
        GroupedProcessRecord(
            **{
                **_record_fields(rep),
                "cpu_usage": math.fsum(cpu[name]),
                "instance_count": len(cpu[name]),
            }
        )
        for name, rep in representatives.items()
    ]
    grouped.sort(key=lambda g: (-g.cpu_usage, g.pid))
    return grouped


def _record_fields(record: ProcessRecord) -> dict:
    return {name: getattr(record, name) for name in ProcessRecord.__dataclass_fields__}


@dataclass(slots=True)
class _ProcessState:
    # psutil handles are kept between refreshes so cpu_percent has a baseline
    handles: dict[int, psutil.Process] = field(default_factory=dict)
    initialized: bool = False


class ProcessMonitor:
    """Lists processes grouped by name and signals or renices them."""

    def __init__(self) -> None:
        self._state = Guarded("process", _ProcessState())

    def refresh(self) -> ProcessList:
        with self._state.write() as state:
            if not state.initialized:
                # First cpu_percent() call for a handle always returns 0.0
                self._sync_handles(state)
                for proc in state.handles.values():
                    try:
                        proc.cpu_percent(None)
                    except psutil.Error:
                        continue
                state.initialized = True

            self._sync_handles(state)
            records = self._collect(state)

        grouped = group_by_name(records)
        return ProcessList(processes=tuple(grouped), total_count=len(grouped))

    def _sync_handles(self, state: _ProcessState) -> None:
        live = set(psutil.pids())
        for pid in [p for p in state.handles if p not in live]:
            del state.handles[pid]
        for pid in live:
            proc = state.handles.get(pid)
            # is_running() compares create time, so a recycled pid fails it
            if proc is not None and proc.is_running():
                continue
            try:
                state.handles[pid] = psutil.Process(pid)
            except psutil.Error:
                state.handles.pop(pid, None)

    def _collect(self, state: _ProcessState) -> list[ProcessRecord]:
        total_memory = psutil.virtual_memory().total
        now = time.time()
        records: list[ProcessRecord] = []

        for pid, proc in list(state.handles.items()):
            try:
                with proc.oneshot():
                    info = proc.as_dict(attrs=_ATTRS, ad_value=None)
            except psutil.NoSuchProcess:
                del state.handles[pid]
                continue
            except psutil.Error:
                continue

            mem_info = info.get("memory_info")
            memory = mem_info.rss if mem_info else 0
            create_time = info.get("create_time") or 0.0
            ppid = info.get("ppid")

            records.append(
                ProcessRecord(
                    pid=pid,
                    parent_pid=ppid if ppid else None,
                    name=info.get("name") or "",
                    exe_path=info.get("exe") or "",
                    command=tuple(info.get("cmdline") or ()),
                    status=_STATUS_MAP.get(info.get("status"), ProcStatus.UNKNOWN),
                    cpu_usage=float(info.get("cpu_percent") or 0.0),
                    memory_bytes=memory,
                    memory_percent=(memory / total_memory * 100.0) if total_memory > 0 else 0.0,
                    start_time=int(create_time),
                    run_time=max(int(now - create_time), 0) if create_time else 0,
                    user=info.get("username"),
                    nice=oscalls.read_nice(pid),
                )
            )

        logger.debug("collected %d process records", len(records))
        return records

    def terminate(self, pid: int, force: bool) -> bool:
        """
        Ask a process to exit.

        Args:
            pid: Target process id.
            force: Send SIGKILL instead of SIGTERM.

        Raises:
            ProcessNotFoundError: No live process with this pid.
            PermissionDeniedError: The signal could not be delivered.
        """
        with self._state.read() as state:
            proc = state.handles.get(pid)

        if proc is None or not proc.is_running():
            try:
                proc = psutil.Process(pid)
            except psutil.NoSuchProcess as exc:
                raise ProcessNotFoundError(pid) from exc

        return oscalls.send_termination(proc, force)

    def set_priority(self, pid: int, nice: int) -> None:
        """Set process niceness, -20 (highest priority) to 19 (lowest)."""
        oscalls.set_nice(pid, nice)

