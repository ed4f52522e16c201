# svckit

Small building blocks for writing services, using only the standard
library.

## Contents

- `svckit.hashset` — `HashSet`, an unordered set of hashable values with
  `add`, `contains`, `remove` and `range` (call a function for each value,
  stopping when it returns `False`), plus `len()`, `in` and iteration.
  `add` and `remove` always return `True`.
- `svckit.asynccache` — `AsyncCache`, a key/value cache configured with
  `Options`:
  - `get(key)` fetches a missing key with `Options.fetcher`; if that fetch
    raises, the error is cached and raised again on each `get` until a
    background refresh succeeds;
  - `get_or_set(key, default)` stores `default` when the fetch fails or a
    cached error is found;
  - `set_default(key, val)` warms the cache and returns whether the key
    already existed;
  - `dump()` and `delete_if(predicate)` inspect and prune entries;
  - every `refresh_duration` seconds a background thread re-fetches all
    keys (`refresh()`), calling `error_handler` and `change_handler` as
    configured;
  - with `enable_expire`, every `expire_duration` seconds entries not read
    since the previous tick are evicted (`expire()`), calling
    `delete_handler`;
  - `close()` stops the background work; the cache is also a context
    manager. Concurrent fetches of the same key are collapsed into one.
- `svckit.circuitbreaker`:
  - `metrics.Window` counts successes, failures and timeouts over a ring of
    at least 100 buckets, advanced by `tick()`, and reports `error_rate()`,
    `samples()`, `conse_errors()` and `conse_time()` (seconds);
    `AtomicCounter` and `ShardedCounter` are the counters behind it;
  - `breaker.Breaker` moves between `State.CLOSED`, `State.OPEN` and
    `State.HALF_OPEN` according to `Options` (cooling and detect timeouts
    in seconds, half-open successes) and a trip function:
    `threshold_trip_func`, `consecutive_trip_func`, `rate_trip_func` or
    `consecutive_trip_func_v2`;
  - `panel.Panel` keeps one breaker per key and advances all their windows
    every `bucket_time` seconds on a shared thread. Call `close()` or use
    it as a context manager.

## Example

```python
from svckit.circuitbreaker.breaker import Options, consecutive_trip_func
from svckit.circuitbreaker.panel import Panel

with Panel(None, Options(should_trip=consecutive_trip_func(5))) as panel:
    if panel.is_allowed("downstream"):
        try:
            call_downstream()
        except TimeoutError:
            panel.timeout("downstream")
        except Exception:
            panel.fail("downstream")
        else:
            panel.succeed("downstream")
```

```python
from svckit.asynccache import AsyncCache, Options

with AsyncCache(Options(refresh_duration=30.0, fetcher=load_config)) as cache:
    config = cache.get("service-a")
```

## What it does not do

The `svckit.metainfo` package is present but empty: there are no helpers
for carrying request metadata through a context, nor for converting it to
or from HTTP headers.

## Tests

```
pip install -e .[test]
pytest
```