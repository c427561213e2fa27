"""Tests for disk usage, I/O rates and SMART parsing."""

from types import SimpleNamespace

import psutil
import pytest

from novamon.disk import DiskMonitor, base_device, parse_smartctl
from novamon.models import SmartHealth
from novamon.sysfs import DeviceTree

ATA_OUTPUT = """\
smartctl 7.4 2023-08-01 r5530 [x86_64-linux-6.6.0] (local build)
=== START OF READ SMART DATA SECTION ===
SMART overall-health self-assessment test result: PASSED

ID# ATTRIBUTE_NAME          FLAG     VALUE WORST THRESH TYPE      UPDATED  WHEN_FAILED RAW_VALUE
  9 Power_On_Hours          0x0032   095   095   000    Old_age   Always       -       21345
 12 Power_Cycle_Count       0x0032   099   099   000    Old_age   Always       -       1203
194 Temperature_Celsius     0x0022   064   052   000    Old_age   Always       -       36
"""

NVME_OUTPUT = """\
=== START OF SMART DATA SECTION ===
SMART overall-health self-assessment test result: FAILED!

SMART/Health Information (NVMe Log 0x02)
Temperature:                        41 Celsius
Power Cycles:                       1,024
Power On Hours:                     12,345
"""


class TestParseSmartctl:
    """Tests for smartctl output parsing."""

    def test_ata_attributes(self):
        info = parse_smartctl(ATA_OUTPUT)
        assert info.health is SmartHealth.PASSED
        assert info.temperature == 36
        assert info.power_on_hours == 21345
        assert info.power_cycle_count == 1203

    def test_nvme_log(self):
        info = parse_smartctl(NVME_OUTPUT)
        assert info.health is SmartHealth.FAILED
        assert info.temperature == 41
        assert info.power_on_hours == 12345
        assert info.power_cycle_count == 1024

    def test_unrecognized_output(self):
        info = parse_smartctl("nothing useful here\n")
        assert info.health is SmartHealth.UNKNOWN
        assert info.temperature is None


@pytest.mark.parametrize(
    "device, expected",
    [
        ("/dev/sda1", "/dev/sda"),
        ("/dev/sdb", "/dev/sdb"),
        ("/dev/nvme0n1p2", "/dev/nvme0n1"),
        ("/dev/nvme0n1", "/dev/nvme0n1"),
        ("/dev/mmcblk0p1", "/dev/mmcblk0"),
        ("tmpfs", None),
        ("overlay", None),
    ],
)
def test_base_device(device, expected):
    assert base_device(device) == expected


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def partition(device, mountpoint):
    return SimpleNamespace(device=device, mountpoint=mountpoint, fstype="ext4", opts="rw")


@pytest.fixture
def fake_psutil(monkeypatch):
    """Two partitions on sda with scripted I/O counters."""
    state = SimpleNamespace(io_calls=0, counters={"sda1": (1000, 2000), "sda2": (0, 0)})

    def disk_io_counters(perdisk=False):
        state.io_calls += 1
        return {
            name: SimpleNamespace(read_bytes=r, write_bytes=w)
            for name, (r, w) in state.counters.items()
        }

    monkeypatch.setattr(
        psutil,
        "disk_partitions",
        lambda all=False: [partition("/dev/sda1", "/"), partition("/dev/sda2", "/home")],
    )
    monkeypatch.setattr(psutil, "disk_io_counters", disk_io_counters)
    monkeypatch.setattr(
        psutil, "disk_usage", lambda path: SimpleNamespace(total=1000, used=400, free=500)
    )
    return state


class TestDiskMonitor:
    """Tests for DiskMonitor with psutil stubbed out."""

    def test_usage_and_totals(self, tmp_path, fake_psutil):
        (tmp_path / "block" / "sda").mkdir(parents=True)
        (tmp_path / "block" / "sda" / "removable").write_text("1\n")
        monitor = DiskMonitor(tree=DeviceTree(tmp_path), runner=lambda binary, dev: None)

        snapshot = monitor.refresh()

        assert [d.mount_point for d in snapshot.disks] == ["/", "/home"]
        root = snapshot.disks[0]
        # used is derived from total - available
        assert root.used_space == 500
        assert root.usage_percent == pytest.approx(50.0)
        assert root.is_removable
        assert snapshot.total_space == 2000
        assert snapshot.total_used == 1000
        assert snapshot.total_available == 1000

    def test_io_counters_read_once_per_refresh(self, tmp_path, fake_psutil):
        monitor = DiskMonitor(tree=DeviceTree(tmp_path), runner=lambda binary, dev: None)
        monitor.refresh()
        assert fake_psutil.io_calls == 1

    def test_io_rates(self, tmp_path, fake_psutil):
        clock = FakeClock()
        monitor = DiskMonitor(
            tree=DeviceTree(tmp_path), runner=lambda binary, dev: None, clock=clock
        )
        first = monitor.refresh()
        assert first.disks[0].read_rate_bps == 0.0

        clock.now = 2.0
        fake_psutil.counters["sda1"] = (5000, 2000)
        root = monitor.refresh().disks[0]
        assert root.read_bytes == 5000
        assert root.read_rate_bps == pytest.approx(2000.0)
        assert root.write_rate_bps == 0.0

    def test_smart_results_are_cached(self, tmp_path, fake_psutil):
        clock = FakeClock()
        calls = []

        def runner(binary, device):
            calls.append(device)
            return ATA_OUTPUT

        monitor = DiskMonitor(
            tree=DeviceTree(tmp_path), runner=runner, smart_ttl=60.0, clock=clock
        )
        snapshot = monitor.refresh()
        monitor.refresh()

        # Both partitions live on /dev/sda, probed once
        assert calls == ["/dev/sda"]
        assert snapshot.disks[1].smart.temperature == 36

        clock.now = 61.0
        monitor.refresh()
        assert calls == ["/dev/sda", "/dev/sda"]

    def test_smart_failure_is_cached_as_none(self, tmp_path):
        calls = []

        def runner(binary, device):
            calls.append(device)
            return None

        monitor = DiskMonitor(tree=DeviceTree(tmp_path), runner=runner)
        assert monitor.smart_info("/dev/sdb1") is None
        assert monitor.smart_info("/dev/sdb2") is None
        assert calls == ["/dev/sdb"]

    def test_virtual_devices_skip_smart(self, tmp_path):
        monitor = DiskMonitor(tree=DeviceTree(tmp_path), runner=lambda binary, dev: ATA_OUTPUT)
        assert monitor.smart_info("tmpfs") is None

    def test_missing_smartctl(self, tmp_path):
        monitor = DiskMonitor(tree=DeviceTree(tmp_path), smartctl="novamon-no-such-smartctl")
        assert monitor.smart_info("/dev/sda1") is None


def test_real_refresh_does_not_raise():
    snapshot = DiskMonitor(runner=lambda binary, dev: None).refresh()
    assert snapshot.total_space >= snapshot.total_used
