"""novamon - Textual dashboard and command line entry point."""

import argparse
import json
import sys
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from pathlib import Path
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static
from textual.widgets.data_table import CellDoesNotExist, DuplicateKey, RowDoesNotExist

from novamon.config import AppConfig, load_config
from novamon.errors import MonitorError, StatePoisonedError
from novamon.logging_setup import configure_logging
from novamon.models import GroupedProcessRecord, snapshot_to_dict
from novamon.monitor import DashboardSnapshot, Domain, MonitorHub, SystemMonitor
from novamon.sync import abort_on_poison


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    USER = "user"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_rate(bytes_per_second: float) -> str:
    return f"{format_bytes(bytes_per_second).strip()}/s"


def _bar(percent: float, color: str, width: int = 20) -> str:
    filled = min(max(int(percent / (100 / width)), 0), width)
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (width - filled)


class HeaderStats(Static):
    """Header widget showing CPU, memory, network and GPU statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot: DashboardSnapshot | None = None

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Static(self._get_cpu_info(), id="cpu-info"),
            Static(self._get_mem_info(), id="mem-info"),
            Static(self._get_device_info(), id="device-info"),
        )

    def update_stats(self, snapshot: DashboardSnapshot) -> None:
        """Update the statistics from a dashboard snapshot."""
        self._snapshot = snapshot
        try:
            self.query_one("#cpu-info", Static).update(self._get_cpu_info())
            self.query_one("#mem-info", Static).update(self._get_mem_info())
            self.query_one("#device-info", Static).update(self._get_device_info())
        except NoMatches:
            pass  # Widget not mounted yet

    def _get_cpu_info(self) -> str:
        cpu = self._snapshot.cpu if self._snapshot else None
        if cpu is None or not cpu.cores:
            return "Loading CPU info..."
        lines = [
            f"CPU{i:<2} \\[{_bar(core.usage, 'green')}] {core.usage:5.1f}%"
            for i, core in enumerate(cpu.cores)
        ]
        load = cpu.load_avg
        lines.append(f"Load average: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}")
        return "\n".join(lines)

    def _get_mem_info(self) -> str:
        mem = self._snapshot.memory if self._snapshot else None
        if mem is None or mem.total_memory == 0:
            return "Loading memory info..."

        gib = 1024**3
        lines = [
            f"Mem\\[{_bar(mem.memory_usage_percent, 'cyan')}] "
            f"{mem.used_memory / gib:.1f}G/{mem.total_memory / gib:.1f}G",
            f"Swp\\[{_bar(mem.swap_usage_percent, 'yellow')}] "
            f"{mem.used_swap / gib:.1f}G/{mem.total_swap / gib:.1f}G",
        ]
        net = self._snapshot.network
        if net is not None:
            lines.append(
                f"Net ↓ {format_rate(net.total_download_rate)} ↑ {format_rate(net.total_upload_rate)}"
            )
        return "\n".join(lines)

    def _get_device_info(self) -> str:
        if self._snapshot is None:
            return ""
        lines = []
        gpus = self._snapshot.gpus
        if gpus is not None:
            for gpu in gpus.gpus:
                temp = f" {gpu.temperature}°C" if gpu.temperature is not None else ""
                lines.append(f"{gpu.name[:24]} {gpu.utilization_gpu:3d}%{temp}")
            if not gpus.gpus:
                lines.append("No GPU detected")
        sensors = self._snapshot.sensors
        if sensors is not None and sensors.cpu_temp is not None:
            lines.append(f"CPU temp: {sensors.cpu_temp:.0f}°C")
        if self._snapshot.errors:
            lines.append(f"[red]{len(self._snapshot.errors)} domain(s) failed[/red]")
        return "\n".join(lines)


class ProcessTable(Container):
    """Container for the grouped process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._records: dict[int, GroupedProcessRecord] = {}
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("USER", key="user", width=10)
        table.add_column("NI", key="nice", width=4)
        table.add_column("S", key="status", width=3)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("#", key="count", width=4)
        table.add_column("Command", key="command")

    def selected(self) -> GroupedProcessRecord | None:
        """Record under the cursor, if any."""
        table = self.query_one("#process-table", DataTable)
        try:
            row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        except CellDoesNotExist:
            return None
        if row_key.value is None:
            return None
        return self._records.get(int(row_key.value))

    def update_processes(self, processes: tuple[GroupedProcessRecord, ...]) -> None:
        """
        Update the process table with new data.

        Rows are keyed by the representative pid; existing rows are updated
        in place and vanished groups removed.
        """
        table = self.query_one("#process-table", DataTable)
        sorted_processes = self._sort_processes(processes)
        new_records = {proc.pid: proc for proc in sorted_processes}

        for pid in self._records.keys() - new_records.keys():
            try:
                table.remove_row(str(pid))
            except RowDoesNotExist:
                pass

        for proc in sorted_processes:
            if proc.pid in self._records:
                self._update_row(table, proc)
            else:
                self._add_row(table, proc)

        self._records = new_records
        position = {str(proc.pid): i for i, proc in enumerate(sorted_processes)}
        table.sort("pid", key=lambda pid: position.get(str(pid), len(position)))

    def _sort_processes(
        self, processes: tuple[GroupedProcessRecord, ...]
    ) -> list[GroupedProcessRecord]:
        key_func = {
            SortKey.CPU: lambda p: p.cpu_usage,
            SortKey.MEM: lambda p: p.memory_percent,
            SortKey.PID: lambda p: p.pid,
            SortKey.USER: lambda p: (p.user or "").lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)

    @staticmethod
    def _cells(proc: GroupedProcessRecord) -> dict[str, str]:
        return {
            "pid": str(proc.pid),
            "user": (proc.user or "?")[:10],
            "nice": str(proc.nice),
            "status": proc.status.short,
            "cpu": f"{proc.cpu_usage:5.1f}",
            "mem": f"{proc.memory_percent:5.1f}",
            "rss": format_bytes(proc.memory_bytes),
            "count": str(proc.instance_count),
            "command": proc.command_line[:50],
        }

    def _update_row(self, table: DataTable, proc: GroupedProcessRecord) -> None:
        try:
            for column, value in self._cells(proc).items():
                table.update_cell(str(proc.pid), column, value)
        except CellDoesNotExist:
            pass  # Row removed meanwhile

    def _add_row(self, table: DataTable, proc: GroupedProcessRecord) -> None:
        try:
            table.add_row(*self._cells(proc).values(), key=str(proc.pid))
        except DuplicateKey:
            pass


class NovamonApp(App):
    """Main novamon application."""

    TITLE = "novamon"
    SUB_TITLE = "System Telemetry Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #cpu-info {
        width: 1fr;
        padding-right: 2;
    }

    #mem-info {
        width: 1fr;
        padding-left: 2;
    }

    #device-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("k", "terminate", "Term"),
        ("K", "kill", "Kill"),
        ("plus", "nice(1)", "Nice+"),
        ("minus", "nice(-1)", "Nice-"),
    ]

    def __init__(self, config: AppConfig | None = None) -> None:
        super().__init__()
        self._config = config or AppConfig()
        self._hub = MonitorHub(self._config.monitor)
        self._update_queue: Queue[DashboardSnapshot] = Queue()
        self._monitor = SystemMonitor(
            self._update_queue,
            hub=self._hub,
            poll_rate=self._config.monitor.poll_rate,
        )

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and render the most recent snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break
        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: DashboardSnapshot) -> None:
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
            if snapshot.processes is not None:
                self.query_one(ProcessTable).update_processes(snapshot.processes.processes)
        except NoMatches:
            pass  # Screen is being torn down

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def _manage(self, action: str, operation) -> None:
        record = self.query_one(ProcessTable).selected()
        if record is None:
            self.notify("No process selected", severity="warning")
            return
        try:
            operation(record)
        except StatePoisonedError as exc:
            abort_on_poison(exc)
            return
        except MonitorError as exc:
            self.notify(f"{type(exc).__name__}: {exc}", severity="error")
            return
        except FutureTimeoutError:
            self.notify(f"Timed out waiting on pid {record.pid}", severity="error")
            return
        self.notify(f"{action} {record.name} ({record.pid})")

    def action_terminate(self) -> None:
        self._manage("Terminated", lambda r: self._hub.terminate(r.pid, force=False, timeout=5.0))

    def action_kill(self) -> None:
        self._manage("Killed", lambda r: self._hub.terminate(r.pid, force=True, timeout=5.0))

    def action_nice(self, step: int) -> None:
        self._manage(
            "Reniced",
            lambda r: self._hub.set_priority(r.pid, r.nice + step, timeout=5.0),
        )

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self._hub.close()
        self.exit()


# Domains whose values are rates and need two samples
_RATE_DOMAINS = {Domain.CPU, Domain.NETWORK, Domain.DISK, Domain.PROCESS, Domain.GPU}


def dump(config: AppConfig, domains: list[Domain], sample_interval: float = 1.0) -> dict:
    """Refresh ``domains`` and return their snapshots as plain data."""
    with MonitorHub(config.monitor) as hub:
        results = hub.refresh_many(domains)
        if sample_interval > 0 and _RATE_DOMAINS.intersection(domains):
            time.sleep(sample_interval)
            results = hub.refresh_many(domains)
    return {domain.value: snapshot_to_dict(snapshot) for domain, snapshot in results.items()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="novamon", description="System telemetry monitor")
    parser.add_argument("--config", type=Path, help="path to config.json")
    parser.add_argument("--poll-rate", type=float, help="dashboard refresh interval in seconds")
    parser.add_argument(
        "--dump",
        nargs="+",
        choices=[d.value for d in Domain],
        metavar="DOMAIN",
        help="print snapshots of the given domains as JSON and exit",
    )
    parser.add_argument(
        "--sample-interval",
        type=float,
        default=1.0,
        help="seconds between the two samples taken for rates in --dump mode",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for novamon."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    if args.poll_rate is not None:
        config.monitor.poll_rate = max(0.1, args.poll_rate)
    if not args.dump:
        # Textual owns the terminal
        config.logging.console = False
    configure_logging(config.logging)

    if args.dump:
        try:
            data = dump(config, [Domain(d) for d in args.dump], args.sample_interval)
        except StatePoisonedError as exc:
            abort_on_poison(exc)
        json.dump(data, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    NovamonApp(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
