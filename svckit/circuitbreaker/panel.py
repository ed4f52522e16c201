"""A panel managing one circuit breaker per key.

All breakers of a panel share its default options. Their windows are
advanced by a ticker thread shared between all panels with the same bucket
time.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections.abc import Callable

from .breaker import Breaker, Options, State, TripFunc
from .metrics import Window

__all__ = ["Panel", "PanelStateChangeHandler"]

PanelStateChangeHandler = Callable[[str, State, State, Window], None]


class _SharedTicker:
    """Advances the windows of every registered panel once per interval."""

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._lock = threading.Lock()
        self._panels: set[Panel] = set()
        self._stop: threading.Event | None = None

    def register(self, panel: Panel) -> None:
        with self._lock:
            self._panels.add(panel)
            if self._stop is None:
                self._stop = threading.Event()
                threading.Thread(
                    target=self._run,
                    args=(self._stop,),
                    daemon=True,
                    name=f"circuitbreaker-ticker-{self.interval}",
                ).start()

    def unregister(self, panel: Panel) -> None:
        with self._lock:
            self._panels.discard(panel)
            if not self._panels and self._stop is not None:
                self._stop.set()
                self._stop = None

    def _run(self, stop: threading.Event) -> None:
        deadline = time.monotonic()
        while True:
            deadline += self.interval
            if stop.wait(max(0.0, deadline - time.monotonic())):
                return
            with self._lock:
                if stop.is_set():
                    return
                for panel in self._panels:
                    panel._tick()


_registry_lock = threading.Lock()
_tickers: dict[float, _SharedTicker] = {}


def _ticker(interval: float) -> _SharedTicker:
    with _registry_lock:
        ticker = _tickers.get(interval)
        if ticker is None:
            ticker = _tickers[interval] = _SharedTicker(interval)
        return ticker


class Panel:
    """A set of breakers addressed by key.

    Call :meth:`close` (or use the panel as a context manager) when it is no
    longer needed so its ticker can stop. Raises :class:`ValueError` if the
    default options are invalid.
    """

    def __init__(
        self,
        change_handler: PanelStateChangeHandler | None = None,
        default_options: Options | None = None,
    ) -> None:
        probe = Breaker(default_options if default_options is not None else Options())
        self._default_options = probe.options
        self._change_handler = change_handler
        self._lock = threading.Lock()
        self._breakers: dict[str, Breaker] = {}
        self._closed = False
        _ticker(self._default_options.bucket_time).register(self)

    def __enter__(self) -> Panel:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_breaker(self, key: str) -> Breaker:
        """Return the breaker for key, creating it on first use."""
        breaker = self._breakers.get(key)
        if breaker is not None:
            return breaker
        options = self._default_options
        handler = self._change_handler
        if handler is not None:

            def on_change(old: State, new: State, m: Window) -> None:
                handler(key, old, new, m)

            options = dataclasses.replace(options, breaker_state_change_handler=on_change)
        candidate = Breaker(options)
        with self._lock:
            return self._breakers.setdefault(key, candidate)

    def remove_breaker(self, key: str) -> None:
        """Forget the breaker for key."""
        with self._lock:
            self._breakers.pop(key, None)

    def dump_breakers(self) -> dict[str, Breaker]:
        """Return a copy of the key-to-breaker mapping."""
        with self._lock:
            return dict(self._breakers)

    def succeed(self, key: str) -> None:
        """Record a success for key."""
        self.get_breaker(key).succeed()

    def fail(self, key: str) -> None:
        """Record a failure for key."""
        breaker = self.get_breaker(key)
        by_key = self._default_options.should_trip_with_key
        if by_key is not None:
            breaker.fail_with_trip(by_key(key))
        else:
            breaker.fail()

    def fail_with_trip(self, key: str, f: TripFunc | None) -> None:
        """Record a failure for key, tripping with f."""
        self.get_breaker(key).fail_with_trip(f)

    def timeout(self, key: str) -> None:
        """Record a timeout for key."""
        breaker = self.get_breaker(key)
        by_key = self._default_options.should_trip_with_key
        if by_key is not None:
            breaker.timeout_with_trip(by_key(key))
        else:
            breaker.timeout()

    def timeout_with_trip(self, key: str, f: TripFunc | None) -> None:
        """Record a timeout for key, tripping with f."""
        self.get_breaker(key).timeout_with_trip(f)

    def is_allowed(self, key: str) -> bool:
        """Return whether a request for key may go through now."""
        return self.get_breaker(key).is_allowed()

    def get_metricer(self, key: str) -> Window:
        """Return the metrics window of the breaker for key."""
        return self.get_breaker(key).metricer()

    def close(self) -> None:
        """Detach the panel from its ticker."""
        if self._closed:
            return
        self._closed = True
        _ticker(self._default_options.bucket_time).unregister(self)

    def _tick(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.metricer().tick()