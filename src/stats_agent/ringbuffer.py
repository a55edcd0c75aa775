# src/stats_agent/ringbuffer.py
"""Ring buffer for metric samples.

Stores the most recent `capacity` samples (default 720 = 6 hours at 30s).
One writer (the sampling loop) and any number of readers (HTTP handlers)
share it through a reader/writer lock: add() is exclusive, all queries are
shared and never block each other.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from stats_agent.sample import Sample


def local_now() -> datetime:
    """Current time as a timezone-aware local datetime."""
    return datetime.now().astimezone()


class ReadWriteLock:
    """Reader/writer lock with writer preference.

    Any number of readers may hold the lock at once; a writer holds it alone.
    Once a writer is waiting, new readers queue behind it so a steady stream
    of queries cannot starve the sampling loop.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        """Hold the lock in shared mode."""
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        """Hold the lock in exclusive mode."""
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RingBuffer:
    """Fixed-capacity circular buffer of samples, oldest evicted first.

    Slots are overwritten in place: head is the next write position and
    size saturates at capacity, so the oldest sample always sits at
    (head - size) % capacity.
    """

    def __init__(self, capacity: int = 720, clock: Callable[[], datetime] = local_now) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"capacity must be a positive integer, got {capacity!r}")
        self._capacity = capacity
        self._slots: list[Sample | None] = [None] * capacity
        self._head = 0
        self._size = 0
        self._clock = clock
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        """Return number of samples in buffer."""
        return self.size()

    @property
    def capacity(self) -> int:
        """Return maximum number of samples the buffer can hold."""
        return self._capacity

    @property
    def is_empty(self) -> bool:
        """Return True if buffer has no samples."""
        return self.size() == 0

    def add(self, sample: Sample) -> None:
        """Insert sample as the newest entry, overwriting the oldest when full."""
        with self._lock.write():
            self._slots[self._head] = sample
            self._head = (self._head + 1) % self._capacity
            if self._size < self._capacity:
                self._size += 1

    def get_latest(self) -> Sample | None:
        """Return the most recently added sample, or None if empty."""
        with self._lock.read():
            if self._size == 0:
                return None
            return self._slots[(self._head - 1) % self._capacity]

    def get_history(self, window_seconds: int) -> list[Sample]:
        """Return samples newer than now - window_seconds, oldest first.

        The cutoff is computed once per call. Zero or negative windows are
        accepted and put the cutoff at or after now. A window reaching past
        the datetime range covers everything (positive) or nothing (negative).
        """
        try:
            cutoff = self._clock() - timedelta(seconds=window_seconds)
        except OverflowError:
            return self.get_all() if window_seconds > 0 else []
        with self._lock.read():
            return [s for s in self._iter_oldest_first() if s.timestamp > cutoff]

    def get_all(self) -> list[Sample]:
        """Return all stored samples, oldest first."""
        with self._lock.read():
            return list(self._iter_oldest_first())

    def size(self) -> int:
        """Return current number of stored samples."""
        with self._lock.read():
            return self._size

    def _iter_oldest_first(self) -> Iterator[Sample]:
        # Caller must hold the lock.
        start = (self._head - self._size) % self._capacity
        for i in range(self._size):
            sample = self._slots[(start + i) % self._capacity]
            if sample is not None:
                yield sample
