"""A key/value cache that refreshes its entries in the background.

Entries are fetched on first use and then re-fetched periodically by a
ticker thread shared between all caches with the same refresh interval.
Optionally, entries that are not read between two expiry ticks are evicted.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

__all__ = ["Options", "AsyncCache"]

_log = logging.getLogger(__name__)

Fetcher = Callable[[str], Any]


@dataclass
class Options:
    """Settings for an :class:`AsyncCache`.

    Durations are in seconds. The fetcher returns the value for a key or
    raises an exception to report failure. When ``enable_expire`` is set,
    ``expire_duration`` must be positive.
    """

    refresh_duration: float
    fetcher: Fetcher
    enable_expire: bool = False
    expire_duration: float = 0.0
    error_handler: Callable[[str, BaseException], None] | None = None
    change_handler: Callable[[str, Any, Any], None] | None = None
    delete_handler: Callable[[str, Any], None] | None = None
    is_same: Callable[[str, Any, Any], bool] | None = None
    err_log_func: Callable[[str], None] | None = None


class _Entry:
    __slots__ = ("value", "error", "expiring")

    def __init__(self, value: Any = None, error: BaseException | None = None) -> None:
        self.value = value
        self.error = error
        self.expiring = False


class _Call:
    __slots__ = ("done", "result")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Any = None


class _SingleFlight:
    """Runs at most one call per key at a time; concurrent callers share its result."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def do(self, key: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call
        if not leader:
            call.done.wait()
            return call.result
        try:
            call.result = fn()
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()
        return call.result


def _spawn(fn: Callable[..., Any], *args: Any) -> None:
    threading.Thread(target=fn, args=args, daemon=True).start()


class _TickerKind(enum.Enum):
    REFRESH = "refresh"
    EXPIRE = "expire"


class _SharedTicker:
    """A periodic thread serving every cache registered with it."""

    def __init__(self, interval: float, kind: _TickerKind) -> None:
        self.interval = interval
        self.kind = kind
        self._lock = threading.Lock()
        self._caches: set[AsyncCache] = set()
        self._stop: threading.Event | None = None

    def register(self, cache: AsyncCache) -> None:
        with self._lock:
            self._caches.add(cache)
            if self._stop is None:
                self._stop = threading.Event()
                threading.Thread(
                    target=self._run,
                    args=(self._stop,),
                    daemon=True,
                    name=f"asynccache-{self.kind.value}-{self.interval}",
                ).start()

    def unregister(self, cache: AsyncCache) -> None:
        with self._lock:
            self._caches.discard(cache)
            if not self._caches and self._stop is not None:
                self._stop.set()
                self._stop = None

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            with self._lock:
                if stop.is_set():
                    return
                workers = [
                    threading.Thread(target=self._work, args=(cache,), daemon=True)
                    for cache in self._caches
                ]
                for worker in workers:
                    worker.start()
                for worker in workers:
                    worker.join()

    def _work(self, cache: AsyncCache) -> None:
        try:
            if self.kind is _TickerKind.EXPIRE:
                cache.expire()
            else:
                cache.refresh()
        except Exception as exc:  # keep the ticker alive whatever a callback does
            cache._log_error(f"asynccache: {self.kind.value} failed: {exc!r}")


_registry_lock = threading.Lock()
_tickers: dict[tuple[_TickerKind, float], _SharedTicker] = {}


def _ticker(kind: _TickerKind, interval: float) -> _SharedTicker:
    with _registry_lock:
        ticker = _tickers.get((kind, interval))
        if ticker is None:
            ticker = _tickers[(kind, interval)] = _SharedTicker(interval, kind)
        return ticker


class AsyncCache:
    """A cache whose entries are refreshed by a background ticker.

    Call :meth:`close` (or use the cache as a context manager) when it is no
    longer needed, so its ticker can stop.
    """

    def __init__(self, options: Options) -> None:
        if options.refresh_duration <= 0:
            raise ValueError("asynccache: invalid RefreshDuration")
        if options.enable_expire and options.expire_duration <= 0:
            raise ValueError("asynccache: invalid ExpireDuration")
        self._opt = options
        self._log_error: Callable[[str], None] = options.err_log_func or _log.error
        self._lock = threading.RLock()
        self._data: dict[str, _Entry] = {}
        self._flight = _SingleFlight()
        self._closed = False

        if options.enable_expire:
            _ticker(_TickerKind.EXPIRE, options.expire_duration).register(self)
        _ticker(_TickerKind.REFRESH, options.refresh_duration).register(self)

    def __enter__(self) -> AsyncCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _fetch(self, key: str) -> tuple[Any, BaseException | None]:
        try:
            return self._opt.fetcher(key), None
        except Exception as exc:
            return None, exc

    def set_default(self, key: str, val: Any) -> bool:
        """Store val for key unless the key is already cached.

        Returns True if the key already existed; in that case the existing
        entry is marked as recently used.
        """
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                entry.expiring = False
                return True
            self._data[key] = _Entry(val)
            return False

    def get(self, key: str) -> Any:
        """Return the cached value for key, fetching it on first use.

        A failed first fetch is cached and re-raised on every call until a
        background refresh succeeds.
        """
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                entry.expiring = False
                value, error = entry.value, entry.error
                found = True
            else:
                found = False
        if not found:
            def load() -> tuple[Any, BaseException | None]:
                result = self._fetch(key)
                with self._lock:
                    self._data[key] = _Entry(*result)
                return result

            value, error = self._flight.do(key, load)
        if error is not None:
            raise error
        return value

    def get_or_set(self, key: str, default: Any) -> Any:
        """Return the cached value for key, storing default if it cannot be had."""
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                if entry.error is not None:
                    self._data[key] = _Entry(default)
                    return default
                entry.expiring = False
                return entry.value

        def load() -> Any:
            value, error = self._fetch(key)
            if error is not None:
                value = default
            with self._lock:
                self._data[key] = _Entry(value)
            return value

        return self._flight.do(key, load)

    def _valid_items(self) -> list[tuple[str, _Entry]]:
        """Snapshot the entries, dropping any whose key is not a string."""
        with self._lock:
            items = []
            for key, entry in list(self._data.items()):
                if not isinstance(key, str):
                    self._log_error(
                        f"invalid key: {key!r}, type: {type(key).__name__} is not string"
                    )
                    del self._data[key]
                    continue
                items.append((key, entry))
            return items

    def dump(self) -> dict[str, Any]:
        """Return a copy of every cached value. Does not count as use."""
        return {key: entry.value for key, entry in self._valid_items()}

    def delete_if(self, should_delete: Callable[[str], bool]) -> None:
        """Remove every entry whose key matches the predicate."""
        with self._lock:
            for key, entry in list(self._data.items()):
                if should_delete(key):
                    if self._opt.delete_handler is not None:
                        _spawn(self._opt.delete_handler, key, entry.value)
                    del self._data[key]

    def close(self) -> None:
        """Detach the cache from its background tickers."""
        if self._closed:
            return
        self._closed = True
        _ticker(_TickerKind.REFRESH, self._opt.refresh_duration).unregister(self)
        if self._opt.enable_expire:
            _ticker(_TickerKind.EXPIRE, self._opt.expire_duration).unregister(self)

    def expire(self) -> None:
        """Evict entries not used since the previous call; mark the rest."""
        for key, entry in self._valid_items():
            with self._lock:
                if not entry.expiring:
                    entry.expiring = True
                    continue
                if self._data.get(key) is entry:
                    del self._data[key]
            if self._opt.delete_handler is not None:
                _spawn(self._opt.delete_handler, key, entry.value)

    def refresh(self) -> None:
        """Re-fetch every cached entry."""
        for key, entry in self._valid_items():
            new_value, error = self._fetch(key)
            if error is not None:
                if self._opt.error_handler is not None:
                    _spawn(self._opt.error_handler, key, error)
                with self._lock:
                    if entry.error is not None:
                        entry.error = error
                continue
            with self._lock:
                old_value = entry.value
            is_same = self._opt.is_same
            if is_same is not None and not is_same(key, old_value, new_value):
                if self._opt.change_handler is not None:
                    _spawn(self._opt.change_handler, key, old_value, new_value)
            with self._lock:
                entry.value = new_value
                entry.error = None