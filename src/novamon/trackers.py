"""Stateful building blocks shared by the domain monitors."""

import logging
import threading
import time
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from novamon.errors import StatePoisonedError
from novamon.sync import RWLock

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RateSample:
    """One cumulative reading for a key."""

    timestamp: float
    values: tuple[int, ...]


class RateTracker:
    """
    Converts successive cumulative counter readings into per-second rates.

    Holds at most one sample per key. Not locked itself: the owning
    domain's guarded state serializes access.
    """

    def __init__(self) -> None:
        self._samples: dict[Hashable, RateSample] = {}

    def __len__(self) -> int:
        return len(self._samples)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._samples

    def observe_interval(
        self, key: Hashable, timestamp: float, values: Sequence[int]
    ) -> tuple[float, ...] | None:
        """
        Record a reading and return rates, or None without a valid interval.

        There is no valid interval on the first reading for a key, when
        the number of counters changed, or when time did not advance.
        Counters that went backwards (reset or wrap) yield a zero rate.
        """
        current = RateSample(timestamp, tuple(values))
        prior = self._samples.get(key)

        if prior is None or len(prior.values) != len(current.values):
            self._samples[key] = current
            return None

        delta_t = current.timestamp - prior.timestamp
        if delta_t <= 0:
            return None

        self._samples[key] = current
        return tuple(
            max(0, new - old) / delta_t for new, old in zip(current.values, prior.values)
        )

    def observe(self, key: Hashable, timestamp: float, values: Sequence[int]) -> tuple[float, ...]:
        """Record a reading and return rates; zeros when there is no interval yet."""
        rates = self.observe_interval(key, timestamp, values)
        if rates is None:
            return (0.0,) * len(values)
        return rates

    def prune(self, live_keys: Iterable[Hashable]) -> None:
        """Forget samples for keys that are no longer reported."""
        live = set(live_keys)
        for key in [k for k in self._samples if k not in live]:
            del self._samples[key]


class ResidencyTracker:
    """
    Utilization from a cumulative idle-residency counter in milliseconds.

    idle% = delta residency / delta wall time * 100, utilization is
    100 - idle% clamped to [0, 100]. The first reading for a key gives 0.
    """

    def __init__(self) -> None:
        self._rates = RateTracker()

    def utilization(self, key: Hashable, timestamp: float, residency_ms: int) -> float:
        rates = self._rates.observe_interval(key, timestamp, (residency_ms,))
        if rates is None:
            return 0.0
        # rate is idle milliseconds per wall second
        idle_percent = rates[0] / 1000.0 * 100.0
        return min(max(100.0 - idle_percent, 0.0), 100.0)

    def prune(self, live_keys: Iterable[Hashable]) -> None:
        self._rates.prune(live_keys)


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T | None
    recorded_at: float


class TTLCache(Generic[T]):
    """
    Keyed cache with per-call time-to-live.

    Fresh hits only take shared access. Misses compute outside any lock
    and store the outcome, including None, under exclusive access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = RWLock()
        self._entries: dict[Hashable, CacheEntry[T]] = {}

    def _fresh(self, key: Hashable, ttl: float) -> CacheEntry[T] | None:
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.recorded_at < ttl:
            return entry
        return None

    def get_or_compute(
        self, key: Hashable, ttl: float, compute_fn: Callable[[], T | None]
    ) -> T | None:
        with self._lock.read():
            entry = self._fresh(key, ttl)
        if entry is not None:
            return entry.value

        try:
            value = compute_fn()
        except StatePoisonedError:
            raise
        except Exception:
            logger.warning("cached computation %r failed", key, exc_info=True)
            value = None

        with self._lock.write():
            self._entries[key] = CacheEntry(value, self._clock())
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock.write():
            self._entries.pop(key, None)


class ResourceState(Enum):
    """Lifecycle of a lazily initialized resource."""

    NOT_YET_ATTEMPTED = "not_yet_attempted"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class LazyResource(Generic[T]):
    """
    Handle initialized at most once, on first use.

    An init function that returns None or raises leaves the resource
    permanently unavailable; it is never retried.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._lock = threading.Lock()
        self._state = ResourceState.NOT_YET_ATTEMPTED
        self._handle: T | None = None

    @property
    def state(self) -> ResourceState:
        return self._state

    def get_or_init(self, init_fn: Callable[[], T | None]) -> T | None:
        if self._state is not ResourceState.NOT_YET_ATTEMPTED:
            return self._handle

        with self._lock:
            if self._state is not ResourceState.NOT_YET_ATTEMPTED:
                return self._handle
            handle: Any = None
            try:
                handle = init_fn()
            except Exception as exc:
                logger.info("%s unavailable: %s", self._name, exc)
            if handle is None:
                self._state = ResourceState.UNAVAILABLE
            else:
                self._handle = handle
                self._state = ResourceState.READY
                logger.debug("%s initialized", self._name)
            return self._handle
