"""Tests for the reader/writer lock and guarded state."""

import threading
import time

import pytest

from novamon.errors import StatePoisonedError
from novamon.sync import EXIT_POISONED, Guarded, RWLock, abort_on_poison


class TestRWLock:
    """Tests for RWLock."""

    def test_readers_share_the_lock(self):
        lock = RWLock()
        inside = threading.Barrier(3, timeout=2.0)

        def reader():
            with lock.read():
                # All three readers must be inside at the same time
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=3.0)
        assert not inside.broken

    def test_writer_excludes_readers(self):
        lock = RWLock()
        events = []

        lock.acquire_write()

        def reader():
            with lock.read():
                events.append("read")

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.1)
        events.append("write-done")
        lock.release_write()
        t.join(timeout=2.0)

        assert events == ["write-done", "read"]

    def test_waiting_writer_blocks_new_readers(self):
        lock = RWLock()
        events = []
        lock.acquire_read()

        def writer():
            with lock.write():
                events.append("write")

        def late_reader():
            with lock.read():
                events.append("late-read")

        w = threading.Thread(target=writer)
        w.start()
        time.sleep(0.1)
        r = threading.Thread(target=late_reader)
        r.start()
        time.sleep(0.1)
        lock.release_read()
        w.join(timeout=2.0)
        r.join(timeout=2.0)

        assert events == ["write", "late-read"]


class TestGuarded:
    """Tests for Guarded state and poisoning."""

    def test_write_then_read(self):
        guarded = Guarded("counter", {"n": 0})
        with guarded.write() as state:
            state["n"] += 1
        with guarded.read() as state:
            assert state["n"] == 1
        assert not guarded.poisoned

    def test_failed_write_poisons(self):
        guarded = Guarded("network", [])

        with pytest.raises(ValueError):
            with guarded.write() as state:
                state.append(1)
                raise ValueError("half done")

        assert guarded.poisoned
        with pytest.raises(StatePoisonedError) as excinfo:
            with guarded.read():
                pass
        assert excinfo.value.name == "network"
        with pytest.raises(StatePoisonedError):
            with guarded.write():
                pass

    def test_failed_read_does_not_poison(self):
        guarded = Guarded("cpu", 0)
        with pytest.raises(KeyError):
            with guarded.read():
                raise KeyError("x")
        assert not guarded.poisoned


def test_abort_on_poison_exits_with_status(monkeypatch):
    exits = []
    monkeypatch.setattr("novamon.sync.os._exit", exits.append)
    monkeypatch.setattr("novamon.sync.logging.shutdown", lambda: None)

    abort_on_poison(StatePoisonedError("disk"))

    assert exits == [EXIT_POISONED]
