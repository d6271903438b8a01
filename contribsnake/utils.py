from __future__ import annotations

from typing import Tuple

Cell = Tuple[int, int]


def sign(x: int) -> int:
    """Return -1, 0, or 1 depending on the sign of x (numpy-free)."""
    return (x > 0) - (x < 0)


def manhattan(a: Cell, b: Cell) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])
