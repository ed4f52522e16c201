import pytest

from svckit.hashset import HashSet


def test_int_set_correctness():
    s = HashSet()
    assert len(s) == 0
    assert not s.contains(0)

    s.add(0)
    assert len(s) == 1
    assert s.contains(0)

    s.remove(0)
    assert len(s) == 0

    s.add(20)
    assert len(s) == 1
    s.add(22)
    assert len(s) == 2
    s.add(21)
    assert len(s) == 3
    s.add(21)
    assert len(s) == 3


def test_example_usage():
    s = HashSet()
    for v in (10, 12, 15):
        s.add(v)
    assert s.contains(10)

    seen = []
    s.range(lambda v: seen.append(v) or True)
    assert sorted(seen) == [10, 12, 15]

    s.remove(15)
    assert len(s) == 2


def test_add_and_remove_return_true():
    s = HashSet()
    assert s.add(5) is True
    assert s.add(5) is True
    assert s.remove(5) is True
    assert s.remove(5) is True
    assert len(s) == 0


def test_range_stops_when_callback_returns_false():
    s = HashSet(range(10))
    calls = []

    def visit(value):
        calls.append(value)
        return False

    s.range(visit)
    assert len(calls) == 1
    assert calls[0] in s


def test_range_visits_all_when_true():
    s = HashSet([1.5, 2.5, 3.5])
    seen = set()
    s.range(lambda v: seen.add(v) or True)
    assert seen == {1.5, 2.5, 3.5}


def test_init_from_iterable_deduplicates():
    s = HashSet([1, 2, 2, 3, 3, 3])
    assert len(s) == 3
    assert sorted(s) == [1, 2, 3]


@pytest.mark.parametrize("value", [-1, 0, 2**40, 3.25])
def test_in_operator(value):
    s = HashSet()
    assert value not in s
    s.add(value)
    assert value in s
    assert s.contains(value)


def test_remove_missing_leaves_set_unchanged():
    s = HashSet([1, 2])
    s.remove(99)
    assert sorted(s) == [1, 2]


def test_range_on_empty_set_never_calls():
    calls = []
    HashSet().range(lambda v: calls.append(v) or True)
    assert calls == []