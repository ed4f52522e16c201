import queue
import threading
import time

import pytest

from svckit.circuitbreaker.breaker import Options, State, consecutive_trip_func
from svckit.circuitbreaker.panel import Panel


def test_panel_concurrent_workers():
    counter = 0
    peak = 0
    lock = threading.Lock()
    violations = []

    with Panel(None, Options(cooling_timeout=0.01, should_trip=consecutive_trip_func(1000))) as p:

        def worker():
            nonlocal counter, peak
            for _ in range(10):
                if p.is_allowed("xxx"):
                    with lock:
                        counter += 1
                        peak = max(peak, counter)
                    time.sleep(0.001)
                    with lock:
                        counter -= 1
                    p.succeed("xxx")
                time.sleep(0.001)

        def checker():
            for _ in range(20):
                with lock:
                    if counter > 20:
                        violations.append(counter)
                time.sleep(0.001)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        threads.append(threading.Thread(target=checker))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counter == 0
        assert violations == []
        assert 1 <= peak <= 10
        assert p.get_metricer("xxx").successes() == 100


def test_get_breaker_is_stable_and_remove_replaces():
    with Panel(None, Options()) as p:
        first = p.get_breaker("a")
        assert p.get_breaker("a") is first
        p.remove_breaker("a")
        assert p.get_breaker("a") is not first


def test_dump_breakers():
    with Panel(None, Options()) as p:
        p.succeed("a")
        p.fail("b")
        dumped = p.dump_breakers()
        assert sorted(dumped) == ["a", "b"]
        assert dumped["a"].metricer().successes() == 1
        assert dumped["b"].metricer().failures() == 1


def test_invalid_options_rejected():
    with pytest.raises(ValueError):
        Panel(None, Options(bucket_nums=50))


def test_fail_uses_trip_with_key():
    def by_key(key):
        return consecutive_trip_func(1 if key == "fragile" else 100)

    with Panel(None, Options(should_trip_with_key=by_key)) as p:
        p.fail("fragile")
        p.timeout("sturdy")
        assert p.get_breaker("fragile").state() is State.OPEN
        assert p.get_breaker("sturdy").state() is State.CLOSED
        assert not p.is_allowed("fragile")
        assert p.is_allowed("sturdy")


def test_fail_and_timeout_with_trip():
    with Panel(None, Options()) as p:
        p.timeout_with_trip("t", consecutive_trip_func(1))
        p.fail_with_trip("f", None)
        assert p.get_breaker("t").state() is State.OPEN
        assert p.get_breaker("f").state() is State.CLOSED


def test_change_handler_receives_key():
    seen = queue.Queue()

    def handler(key, old, new, m):
        seen.put((key, old, new))

    with Panel(handler, Options(should_trip=consecutive_trip_func(1))) as p:
        p.fail("svc")
        assert p.get_breaker("svc").state() is State.OPEN
        assert seen.get(timeout=2) == ("svc", State.CLOSED, State.OPEN)


def test_window_slides_with_ticker():
    with Panel(None, Options(bucket_time=0.01, bucket_nums=100)) as p:
        m = p.get_metricer("test")

        m.succeed()
        assert m.counts() == (1, 0, 0)

        time.sleep(1.2)
        assert m.counts() == (0, 0, 0)

        for _ in range(10):
            m.fail()
        assert m.failures() == 10
        assert m.conse_errors() == 10

        time.sleep(0.5)
        for _ in range(100):
            m.fail()
        assert m.failures() == 110
        assert m.conse_errors() == 110

        time.sleep(0.7)
        assert m.successes() == 0
        assert m.failures() == 100
        assert m.conse_errors() == 110

        time.sleep(0.5)
        assert m.failures() == 0
        assert m.timeouts() == 0
        assert m.conse_errors() == 110

        m.succeed()
        assert m.counts() == (1, 0, 0)
        assert m.conse_errors() == 0


def test_close_stops_ticking():
    p = Panel(None, Options(bucket_time=0.013, bucket_nums=100))
    m = p.get_metricer("k")
    p.close()
    p.close()
    m.succeed()
    time.sleep(1.6)
    assert m.successes() == 1