"""Tests for CPU, memory and system information monitors."""

from types import SimpleNamespace

import psutil
import pytest

from novamon.cpu import CpuMonitor, busy_percent, read_cpu_identity
from novamon.memory import MemoryMonitor
from novamon.system import SystemInfoMonitor


class CpuTimes(tuple):
    """Minimal stand-in for psutil's scputimes namedtuple."""

    def __new__(cls, user, system, idle, iowait=0.0):
        return super().__new__(cls, (user, system, idle, iowait))

    user = property(lambda self: self[0])
    system = property(lambda self: self[1])
    idle = property(lambda self: self[2])
    iowait = property(lambda self: self[3])


class TestBusyPercent:
    """Tests for usage derived from cpu time deltas."""

    def test_quarter_busy(self):
        assert busy_percent(CpuTimes(0, 0, 0), CpuTimes(20, 5, 75)) == pytest.approx(25.0)

    def test_iowait_counts_as_idle(self):
        assert busy_percent(CpuTimes(0, 0, 0), CpuTimes(50, 0, 25, 25)) == pytest.approx(50.0)

    def test_no_elapsed_time(self):
        assert busy_percent(CpuTimes(1, 1, 1), CpuTimes(1, 1, 1)) == 0.0


def test_cpu_identity_from_cpuinfo(tmp_path):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text(
        "processor\t: 0\nvendor_id\t: AuthenticAMD\nmodel name\t: AMD Ryzen 9 7950X 16-Core Processor\n"
    )
    identity = read_cpu_identity(cpuinfo)
    assert identity.vendor == "AuthenticAMD"
    assert identity.brand == "AMD Ryzen 9 7950X 16-Core Processor"


def test_cpu_identity_without_cpuinfo(tmp_path):
    identity = read_cpu_identity(tmp_path / "missing")
    assert identity.vendor == ""


class TestCpuMonitor:
    """Tests for CpuMonitor."""

    def test_first_refresh_is_zero(self, monkeypatch):
        monkeypatch.setattr(psutil, "cpu_times", lambda percpu=False: [CpuTimes(10, 10, 80)] * 2)
        snapshot = CpuMonitor().refresh()
        assert snapshot.logical_cores == 2
        assert snapshot.global_usage == 0.0
        assert [c.name for c in snapshot.cores] == ["cpu0", "cpu1"]

    def test_usage_between_refreshes(self, monkeypatch):
        readings = iter(
            [
                [CpuTimes(0, 0, 0), CpuTimes(0, 0, 0)],
                [CpuTimes(50, 0, 50), CpuTimes(0, 0, 100)],
            ]
        )
        monkeypatch.setattr(psutil, "cpu_times", lambda percpu=False: next(readings))
        monitor = CpuMonitor()
        monitor.refresh()
        snapshot = monitor.refresh()

        assert [c.usage for c in snapshot.cores] == pytest.approx([50.0, 0.0])
        assert snapshot.global_usage == pytest.approx(25.0)

    def test_live_refresh(self):
        monitor = CpuMonitor()
        monitor.refresh()
        snapshot = monitor.refresh()
        assert snapshot.logical_cores == len(snapshot.cores) > 0
        assert all(0.0 <= c.usage <= 100.0 for c in snapshot.cores)
        assert len(snapshot.load_avg) == 3


class TestMemoryMonitor:
    """Tests for MemoryMonitor."""

    def test_percentages(self, monkeypatch):
        monkeypatch.setattr(
            psutil,
            "virtual_memory",
            lambda: SimpleNamespace(total=16 * 1024**3, used=4 * 1024**3, available=12 * 1024**3),
        )
        monkeypatch.setattr(psutil, "swap_memory", lambda: SimpleNamespace(total=0, used=0))

        snapshot = MemoryMonitor().refresh()

        assert snapshot.memory_usage_percent == pytest.approx(25.0)
        assert snapshot.swap_usage_percent == 0.0

    def test_live_refresh(self):
        snapshot = MemoryMonitor().refresh()
        assert snapshot.total_memory > 0
        assert 0.0 <= snapshot.memory_usage_percent <= 100.0


def test_system_info():
    info = SystemInfoMonitor().refresh()
    assert info.hostname
    assert info.architecture
    assert info.boot_time > 0
    assert info.uptime >= 0
