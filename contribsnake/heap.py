"""Binary min-heap ordered by a caller-supplied ``less(a, b)`` predicate.

``heapq`` only orders by ``<`` on the elements themselves; the path search needs
to order records by a derived score without wrapping them, so the heap takes the
ordering as a function instead.
"""

from __future__ import annotations

import operator
from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class PriorityQueue(Generic[T]):
    """Min-heap; ``pop``/``peek`` return ``None`` when empty instead of raising."""

    def __init__(self, less: Callable[[T, T], bool] = operator.lt) -> None:
        self._heap: List[T] = []
        self._less = less

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)

    def is_empty(self) -> bool:
        return not self._heap

    def push(self, item: T) -> None:
        self._heap.append(item)
        self._sift_up(len(self._heap) - 1)

    def pop(self) -> Optional[T]:
        if not self._heap:
            return None
        top = self._heap[0]
        last = self._heap.pop()
        if self._heap:
            self._heap[0] = last
            self._sift_down(0)
        return top

    def peek(self) -> Optional[T]:
        return self._heap[0] if self._heap else None

    def _sift_up(self, index: int) -> None:
        heap = self._heap
        while index > 0:
            parent = (index - 1) // 2
            if not self._less(heap[index], heap[parent]):
                break
            heap[index], heap[parent] = heap[parent], heap[index]
            index = parent

    def _sift_down(self, index: int) -> None:
        heap = self._heap
        size = len(heap)
        while True:
            smallest = index
            left = 2 * index + 1
            right = left + 1
            if left < size and self._less(heap[left], heap[smallest]):
                smallest = left
            if right < size and self._less(heap[right], heap[smallest]):
                smallest = right
            if smallest == index:
                return
            heap[index], heap[smallest] = heap[smallest], heap[index]
            index = smallest
