from __future__ import annotations

import heapq
from typing import Callable, Iterable, Iterator, List, TypeVar

T = TypeVar("T")

CountingPredicate = Callable[[int, T], bool]


def limit(items: Iterable[T], predicate: CountingPredicate) -> Iterator[T]:
    """
    Yields the leading streak of items for which predicate(index, item) holds.

    Stops pulling from `items` at the first failure; later items that would
    pass are never produced.
    """
    for index, item in enumerate(items):
        if not predicate(index, item):
            return
        yield item


def merge_descending(sources: List[Iterable[T]], key: Callable[[T], int]) -> Iterator[T]:
    """
    Lazy k-way merge of sources that are each sorted newest-first.

    heapq.merge keeps one pending item per source; on equal keys the earlier
    source wins.
    """
    return heapq.merge(*sources, key=key, reverse=True)


class Restartable(Iterable[T]):
    """
    Iterable that builds a fresh iterator from `factory` on every iter() call.
    """

    def __init__(self, factory: Callable[[], Iterator[T]], label: str = "") -> None:
        self._factory = factory
        self._label = label

    def __iter__(self) -> Iterator[T]:
        return self._factory()

    def __repr__(self) -> str:
        return f"Restartable({self._label})" if self._label else "Restartable()"
