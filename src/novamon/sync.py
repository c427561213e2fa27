"""Reader/writer locking and per-domain guarded state."""

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Generic, TypeVar

from novamon.errors import StatePoisonedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exit status used when a poisoned domain forces the process down.
EXIT_POISONED = 70


class RWLock:
    """
    Writer-preferring reader/writer lock.

    Any number of readers may hold the lock at once; a writer holds it
    alone. Once a writer is waiting, new readers queue behind it.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class Guarded(Generic[T]):
    """
    A domain's mutable state behind its own RWLock.

    If an exclusive section exits with an exception the state is marked
    poisoned and every later acquisition raises StatePoisonedError.
    """

    def __init__(self, name: str, value: T) -> None:
        self._name = name
        self._value = value
        self._lock = RWLock()
        self._poisoned = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    def _check(self) -> None:
        if self._poisoned:
            raise StatePoisonedError(self._name)

    @contextmanager
    def read(self) -> Iterator[T]:
        """Shared access. Readers must not mutate the yielded state."""
        with self._lock.read():
            self._check()
            yield self._value

    @contextmanager
    def write(self) -> Iterator[T]:
        """Exclusive access."""
        with self._lock.write():
            self._check()
            try:
                yield self._value
            except BaseException:
                self._poisoned = True
                logger.error("%s state poisoned by failed update", self._name, exc_info=True)
                raise


def abort_on_poison(exc: StatePoisonedError) -> None:
    """Terminate the process; a poisoned domain cannot be trusted."""
    logger.critical(
        "unrecoverable state: %s",
        exc,
        extra={"event": "state_poisoned"},
    )
    logging.shutdown()
    os._exit(EXIT_POISONED)
