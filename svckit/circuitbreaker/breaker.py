"""A circuit breaker state machine and the trip policies that drive it.

A breaker moves between three states::

    CLOSED --tripped--> OPEN --cooling timeout--> HALF_OPEN
    HALF_OPEN --detect failed--> OPEN
    HALF_OPEN --enough consecutive successes--> CLOSED

While CLOSED every request is allowed and errors are fed to a trip policy.
While OPEN requests are rejected until the cooling timeout has passed.
While HALF_OPEN one probe request is allowed per detect timeout.
"""

from __future__ import annotations

import dataclasses
import enum
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .metrics import Window

__all__ = [
    "State",
    "Options",
    "Breaker",
    "TripFunc",
    "TripFuncWithKey",
    "threshold_trip_func",
    "consecutive_trip_func",
    "rate_trip_func",
    "consecutive_trip_func_v2",
]

DEFAULT_BUCKET_TIME = 0.1
DEFAULT_BUCKET_NUMS = 100
DEFAULT_COOLING_TIMEOUT = 5.0
DEFAULT_DETECT_TIMEOUT = 0.2
DEFAULT_HALF_OPEN_SUCCESSES = 2

TripFunc = Callable[[Window], bool]
TripFuncWithKey = Callable[[str], TripFunc]


class State(enum.Enum):
    """The state of a circuit breaker."""

    OPEN = 0
    HALF_OPEN = 1
    CLOSED = 2

    def __str__(self) -> str:
        return {
            State.OPEN: "OPEN",
            State.HALF_OPEN: "HALFOPEN",
            State.CLOSED: "CLOSED",
        }[self]


BreakerStateChangeHandler = Callable[[State, State, Window], None]


@dataclass
class Options:
    """Settings for a :class:`Breaker`.

    Durations are in seconds. Zero or negative numeric settings fall back to
    the defaults: 0.1 s buckets, 100 buckets, 5 s cooling, 0.2 s detect and
    2 half-open successes. ``now`` returns the current time in seconds and
    defaults to :func:`time.monotonic`.
    """

    bucket_time: float = 0.0
    bucket_nums: int = 0
    cooling_timeout: float = 0.0
    detect_timeout: float = 0.0
    half_open_successes: int = 0
    should_trip: TripFunc | None = None
    should_trip_with_key: TripFuncWithKey | None = None
    breaker_state_change_handler: BreakerStateChangeHandler | None = None
    enable_shard_p: bool = False
    now: Callable[[], float] | None = None


def _resolve(options: Options) -> Options:
    return dataclasses.replace(
        options,
        bucket_time=options.bucket_time if options.bucket_time > 0 else DEFAULT_BUCKET_TIME,
        bucket_nums=options.bucket_nums if options.bucket_nums > 0 else DEFAULT_BUCKET_NUMS,
        cooling_timeout=(
            options.cooling_timeout if options.cooling_timeout > 0 else DEFAULT_COOLING_TIMEOUT
        ),
        detect_timeout=(
            options.detect_timeout if options.detect_timeout > 0 else DEFAULT_DETECT_TIMEOUT
        ),
        half_open_successes=(
            options.half_open_successes
            if options.half_open_successes > 0
            else DEFAULT_HALF_OPEN_SUCCESSES
        ),
        now=options.now if options.now is not None else time.monotonic,
    )


class Breaker:
    """A single circuit breaker.

    Raises :class:`ValueError` if the options describe an invalid window.
    State change handlers run on their own threads.
    """

    def __init__(self, options: Options | None = None) -> None:
        self.options = _resolve(options if options is not None else Options())
        self._metricer = Window(
            self.options.bucket_time,
            self.options.bucket_nums,
            self.options.enable_shard_p,
        )
        self._now: Callable[[], float] = self.options.now  # type: ignore[assignment]
        self._lock = threading.Lock()
        self._state = State.CLOSED
        self._open_time = 0.0
        self._last_retry_time = 0.0
        self._half_open_successes = 0

    def _notify(self, old: State, new: State) -> None:
        handler = self.options.breaker_state_change_handler
        if handler is not None:
            threading.Thread(
                target=handler, args=(old, new, self._metricer), daemon=True
            ).start()

    def _open(self, old: State) -> None:
        self._notify(old, State.OPEN)
        self._open_time = self._now()
        self._state = State.OPEN

    def succeed(self) -> None:
        """Record a success."""
        with self._lock:
            state = self._state
            if state is State.CLOSED:
                self._metricer.succeed()
            elif state is State.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.options.half_open_successes:
                    self._notify(State.HALF_OPEN, State.CLOSED)
                    self._metricer.reset()
                    self._state = State.CLOSED

    def _error(self, is_timeout: bool, trip: TripFunc | None) -> None:
        if is_timeout:
            self._metricer.timeout()
        else:
            self._metricer.fail()

        state = self._state
        if state is State.HALF_OPEN:
            with self._lock:
                if self._state is State.HALF_OPEN:
                    self._open(State.HALF_OPEN)
        elif state is State.CLOSED:
            if trip is not None and trip(self._metricer):
                with self._lock:
                    if self._state is State.CLOSED:
                        self._open(State.CLOSED)

    def fail(self) -> None:
        """Record a failure, tripping with the configured policy."""
        self._error(False, self.options.should_trip)

    def fail_with_trip(self, trip: TripFunc | None) -> None:
        """Record a failure, tripping with the given policy."""
        self._error(False, trip)

    def timeout(self) -> None:
        """Record a timeout, tripping with the configured policy."""
        self._error(True, self.options.should_trip)

    def timeout_with_trip(self, trip: TripFunc | None) -> None:
        """Record a timeout, tripping with the given policy."""
        self._error(True, trip)

    def is_allowed(self) -> bool:
        """Return whether a request may go through now."""
        with self._lock:
            state = self._state
            if state is State.CLOSED:
                return True
            now = self._now()
            if state is State.OPEN:
                if self._open_time + self.options.cooling_timeout > now:
                    return False
                self._notify(State.OPEN, State.HALF_OPEN)
                self._state = State.HALF_OPEN
                self._half_open_successes = 0
                self._last_retry_time = now
                return True
            if self._last_retry_time + self.options.detect_timeout > now:
                return False
            self._last_retry_time = now
            return True

    def state(self) -> State:
        """Return the current state."""
        return self._state

    def metricer(self) -> Window:
        """Return the window recording this breaker's outcomes."""
        return self._metricer

    def reset(self) -> None:
        """Clear the metrics and close the breaker."""
        with self._lock:
            self._metricer.reset()
            self._state = State.CLOSED


def threshold_trip_func(threshold: int) -> TripFunc:
    """Trip once failures plus timeouts reach threshold."""

    def trip(m: Window) -> bool:
        return m.failures() + m.timeouts() >= threshold

    return trip


def consecutive_trip_func(threshold: int) -> TripFunc:
    """Trip once consecutive errors reach threshold."""

    def trip(m: Window) -> bool:
        return m.conse_errors() >= threshold

    return trip


def rate_trip_func(rate: float, min_samples: int) -> TripFunc:
    """Trip once there are min_samples samples and the error rate reaches rate."""

    def trip(m: Window) -> bool:
        return m.samples() >= min_samples and m.error_rate() >= rate

    return trip


def consecutive_trip_func_v2(
    rate: float,
    min_samples: int,
    duration: float,
    duration_samples: int,
    conse_errors: int,
) -> TripFunc:
    """Trip when any of three conditions holds.

    1. samples >= min_samples and error rate >= rate;
    2. duration > 0, consecutive errors >= duration_samples and the errors
       have lasted at least duration seconds;
    3. conse_errors > 0 and consecutive errors >= conse_errors.
    """

    def trip(m: Window) -> bool:
        if m.samples() >= min_samples and m.error_rate() >= rate:
            return True
        if duration > 0 and m.conse_errors() >= duration_samples and m.conse_time() >= duration:
            return True
        return conse_errors > 0 and m.conse_errors() >= conse_errors

    return trip