"""Tests for novamon data models."""

import json

import pytest

from novamon.errors import GpuNotAvailableError
from novamon.models import (
    GpuRecord,
    GpusSnapshot,
    GpuVendor,
    GroupedProcessRecord,
    ProcessRecord,
    ProcStatus,
    SmartHealth,
    SmartInfo,
    snapshot_to_dict,
)


def make_record(pid=123, name="test_process", cpu=50.0, command=("/usr/bin/test",)):
    return ProcessRecord(
        pid=pid,
        parent_pid=1,
        name=name,
        exe_path="/usr/bin/test",
        command=command,
        status=ProcStatus.RUNNING,
        cpu_usage=cpu,
        memory_bytes=1024000,
        memory_percent=25.0,
        start_time=1700000000,
        run_time=60,
        user="testuser",
        nice=0,
    )


def make_gpu(index=0, uuid="GPU-abc", vendor=GpuVendor.NVIDIA):
    return GpuRecord(
        index=index,
        name="Test GPU",
        vendor=vendor,
        uuid=uuid,
        utilization_gpu=10,
        utilization_memory=5,
        memory_total=None,
        memory_used=None,
        memory_free=None,
        temperature=None,
        power_usage=None,
        power_limit=None,
        fan_speed=None,
        clock_graphics=0,
        clock_memory=0,
    )


def test_process_record_creation():
    """Test ProcessRecord dataclass creation."""
    record = make_record()

    assert record.pid == 123
    assert record.name == "test_process"
    assert record.user == "testuser"
    assert record.status is ProcStatus.RUNNING
    assert record.cpu_usage == 50.0
    assert record.memory_bytes == 1024000


def test_process_record_is_frozen():
    """Test that ProcessRecord is immutable (frozen)."""
    record = make_record()

    with pytest.raises(AttributeError):
        record.pid = 999


def test_process_record_uses_slots():
    """Test that ProcessRecord uses __slots__ for memory efficiency."""
    assert not hasattr(make_record(), "__dict__")


def test_command_line_falls_back_to_name():
    assert make_record(command=("python", "-m", "x")).command_line == "python -m x"
    assert make_record(command=()).command_line == "test_process"


def test_grouped_record_defaults_to_single_instance():
    fields = {name: getattr(make_record(), name) for name in ProcessRecord.__dataclass_fields__}
    grouped = GroupedProcessRecord(**fields)
    assert grouped.instance_count == 1
    assert isinstance(grouped, ProcessRecord)


def test_status_short_letters():
    assert ProcStatus.RUNNING.short == "R"
    assert ProcStatus.ZOMBIE.short == "Z"
    assert ProcStatus.UNKNOWN.short == "?"


class TestGpusSnapshot:
    """Tests for GPU device lookup."""

    def test_device_lookup_by_uuid(self):
        gpu = make_gpu(uuid="GPU-1")
        snapshot = GpusSnapshot(
            gpus=(make_gpu(uuid="GPU-0"), gpu),
            nvidia_available=True,
            amd_available=False,
            intel_available=False,
            driver_version="550.54",
            errors=(),
        )
        assert snapshot.device("GPU-1") is gpu

    def test_unknown_uuid_raises(self):
        snapshot = GpusSnapshot(
            gpus=(),
            nvidia_available=False,
            amd_available=False,
            intel_available=False,
            driver_version=None,
            errors=(),
        )
        with pytest.raises(GpuNotAvailableError):
            snapshot.device("GPU-missing")


def test_snapshot_to_dict_is_json_serializable():
    """Enums become their values and nested snapshots become dicts."""
    data = snapshot_to_dict(
        {"smart": SmartInfo(SmartHealth.PASSED, 35, 1200, 40), "gpu": make_gpu()}
    )

    assert data["smart"]["health"] == "passed"
    assert data["gpu"]["vendor"] == "nvidia"
    assert data["gpu"]["memory_total"] is None
    json.dumps(data)
