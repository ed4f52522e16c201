"""A small hash set with a callback-driven range operation."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T", bound=Hashable)


class HashSet(Generic[T]):
    """An unordered set of hashable values."""

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[T] = ()) -> None:
        self._items: set[T] = set(items)

    def add(self, value: T) -> bool:
        """Add a value. Always returns True."""
        self._items.add(value)
        return True

    def contains(self, value: T) -> bool:
        """Return True if the value is in the set."""
        return value in self._items

    def remove(self, value: T) -> bool:
        """Remove a value if present. Always returns True."""
        self._items.discard(value)
        return True

    def range(self, f: Callable[[T], bool]) -> None:
        """Call f for each value; stop as soon as f returns False."""
        for value in list(self._items):
            if not f(value):
                break

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, value: object) -> bool:
        return value in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __repr__(self) -> str:
        return f"HashSet({sorted(self._items, key=repr)!r})"