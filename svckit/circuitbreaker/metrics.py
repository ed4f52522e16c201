"""Counters and sliding-window metrics for circuit breakers.

A :class:`Window` keeps a ring of buckets, each counting the successes,
failures and timeouts seen while it was the current bucket. Calling
:meth:`Window.tick` moves to the next bucket. Once the ring is full, each
tick drops the oldest bucket's counts from the totals.
"""

from __future__ import annotations

import os
import threading
import time

__all__ = ["AtomicCounter", "ShardedCounter", "Window"]

_MIN_BUCKET_NUMS = 100


class AtomicCounter:
    """A thread-safe integer counter."""

    __slots__ = ("_lock", "_value")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def add(self, i: int) -> None:
        """Add i to the counter."""
        with self._lock:
            self._value += i

    def get(self) -> int:
        """Return the current value."""
        return self._value

    def zero(self) -> None:
        """Set the counter to zero."""
        with self._lock:
            self._value = 0


class ShardedCounter:
    """A counter split into shards chosen by the calling thread.

    Writers from different threads mostly touch different shards. Reading
    sums all shards and is not a precise snapshot under concurrent writes.
    """

    __slots__ = ("_locks", "_values")

    def __init__(self, shards: int | None = None) -> None:
        count = shards if shards is not None else (os.cpu_count() or 1)
        if count <= 0:
            raise ValueError("shards must be positive")
        self._locks = [threading.Lock() for _ in range(count)]
        self._values = [0] * count

    def add(self, i: int) -> None:
        """Add i to the shard of the calling thread."""
        index = threading.get_ident() % len(self._values)
        with self._locks[index]:
            self._values[index] += i

    def get(self) -> int:
        """Return the sum over all shards."""
        return sum(self._values)

    def zero(self) -> None:
        """Set every shard to zero."""
        for index, lock in enumerate(self._locks):
            with lock:
                self._values[index] = 0


class _Bucket:
    __slots__ = ("success", "failure", "timeout")

    def __init__(self, sharded: bool) -> None:
        self.success: AtomicCounter | ShardedCounter = (
            ShardedCounter() if sharded else AtomicCounter()
        )
        self.failure = 0
        self.timeout = 0

    def reset(self) -> None:
        self.success.zero()
        self.failure = 0
        self.timeout = 0


class Window:
    """A ring of buckets recording successes, failures and timeouts.

    ``bucket_time`` is the time in seconds each bucket is meant to cover;
    the owner drives the ring forward with :meth:`tick`. ``bucket_nums``
    must be at least 100. With ``sharded`` set, success counts use
    :class:`ShardedCounter` to spread contention between threads.
    """

    def __init__(
        self,
        bucket_time: float = 0.1,
        bucket_nums: int = 100,
        sharded: bool = False,
    ) -> None:
        if bucket_nums < _MIN_BUCKET_NUMS:
            raise ValueError("BucketNums can't be less than 100")
        self.bucket_time = bucket_time
        self.bucket_nums = bucket_nums
        self.sharded = sharded
        self._lock = threading.Lock()
        self._buckets = [_Bucket(sharded) for _ in range(bucket_nums)]
        self._all_success: AtomicCounter | ShardedCounter = (
            ShardedCounter() if sharded else AtomicCounter()
        )
        self._all_failure = 0
        self._all_timeout = 0
        self._err_start = 0
        self._conse_err = 0
        self._oldest = 0
        self._latest = 0
        self._in_window = 1
        self.reset()

    def _current(self) -> _Bucket:
        return self._buckets[self._latest]

    def succeed(self) -> None:
        """Record a success; this ends any run of consecutive errors."""
        with self._lock:
            bucket = self._current()
            self._err_start = 0
            self._conse_err = 0
            self._all_success.add(1)
        bucket.success.add(1)

    def _error(self, is_timeout: bool) -> None:
        with self._lock:
            bucket = self._current()
            self._conse_err += 1
            if is_timeout:
                self._all_timeout += 1
                bucket.timeout += 1
            else:
                self._all_failure += 1
                bucket.failure += 1
            if self._err_start == 0:
                self._err_start = time.time_ns()

    def fail(self) -> None:
        """Record a failure."""
        self._error(False)

    def timeout(self) -> None:
        """Record a timeout."""
        self._error(True)

    def counts(self) -> tuple[int, int, int]:
        """Return (successes, failures, timeouts) over the whole window."""
        return self.successes(), self.failures(), self.timeouts()

    def successes(self) -> int:
        """Return the number of successes in the window."""
        return self._all_success.get()

    def failures(self) -> int:
        """Return the number of failures in the window."""
        return self._all_failure

    def timeouts(self) -> int:
        """Return the number of timeouts in the window."""
        return self._all_timeout

    def conse_errors(self) -> int:
        """Return the number of errors since the last success."""
        return self._conse_err

    def conse_time(self) -> float:
        """Return seconds elapsed since the first of the consecutive errors."""
        return (time.time_ns() - self._err_start) / 1e9

    def error_rate(self) -> float:
        """Return (failures + timeouts) / samples, or 0.0 with no samples."""
        successes, failures, timeouts = self.counts()
        total = successes + failures + timeouts
        if total == 0:
            return 0.0
        return (failures + timeouts) / total

    def samples(self) -> int:
        """Return successes + failures + timeouts."""
        successes, failures, timeouts = self.counts()
        return successes + failures + timeouts

    def reset(self) -> None:
        """Clear all counts and start the ring afresh."""
        with self._lock:
            self._oldest = 0
            self._latest = 0
            self._in_window = 1
            self._conse_err = 0
            self._all_success.zero()
            self._all_failure = 0
            self._all_timeout = 0
            self._current().reset()

    def tick(self) -> None:
        """Advance to the next bucket, dropping the oldest once the ring is full."""
        with self._lock:
            if self._in_window == self.bucket_nums:
                old = self._buckets[self._oldest]
                self._all_success.add(-old.success.get())
                self._all_failure -= old.failure
                self._all_timeout -= old.timeout
                self._oldest = (self._oldest + 1) % self.bucket_nums
            else:
                self._in_window += 1
            self._latest = (self._latest + 1) % self.bucket_nums
            self._current().reset()