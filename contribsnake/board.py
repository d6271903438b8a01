"""Board geometry, per-cell rewards, and consumption tracking."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, NamedTuple, Optional, Sequence, Set, Tuple

from . import config
from .errors import ConfigError

logger = logging.getLogger(__name__)

Action = Tuple[int, int]

RIGHT: Action = (1, 0)
LEFT: Action = (-1, 0)
DOWN: Action = (0, 1)
UP: Action = (0, -1)

# Fixed iteration / tie-break order.
ACTIONS: Tuple[Action, ...] = (RIGHT, LEFT, DOWN, UP)


class Position(NamedTuple):
    week: int
    day: int

    def step(self, action: Action) -> "Position":
        return Position(self.week + action[0], self.day + action[1])


def as_position(cell: Sequence[int]) -> Position:
    return cell if isinstance(cell, Position) else Position(int(cell[0]), int(cell[1]))


class Board:
    """Read-only grid of contribution counts plus the set of consumed cells.

    ``counts`` is the flat per-day series of the collaborator's calendar; the
    cell at ``(week, day)`` maps to ``counts[week * days + day - first_day_offset]``
    so a year that starts mid-week leaves the leading cells of week 0 empty.
    """

    def __init__(
        self,
        total_weeks: int,
        counts: Iterable[int] = (),
        *,
        first_day_offset: int = 0,
        days: int = config.DAYS_PER_WEEK,
    ) -> None:
        if int(total_weeks) <= 0:
            raise ConfigError(f"total_weeks must be > 0, got {total_weeks}")
        if int(days) <= 0:
            raise ConfigError(f"days must be > 0, got {days}")
        if int(first_day_offset) < 0:
            raise ConfigError(f"first_day_offset must be >= 0, got {first_day_offset}")

        self.total_weeks = int(total_weeks)
        self.days = int(days)
        self.first_day_offset = int(first_day_offset)
        self.counts: Tuple[int, ...] = tuple(max(0, int(c)) for c in counts)
        self.consumed: Set[Position] = set()

        self._reward_cells: Tuple[Position, ...] = tuple(
            pos for pos in self.cells() if self.count_at(pos) > 0
        )

    @classmethod
    def from_grid(cls, grid: Sequence[Sequence[int]]) -> "Board":
        """Build a board from ``grid[week][day]`` counts (all weeks equally long)."""
        if not grid or not grid[0]:
            raise ConfigError("grid must have at least one week and one day")
        days = len(grid[0])
        flat: List[int] = []
        for week in grid:
            if len(week) != days:
                raise ConfigError("all weeks in grid must have the same number of days")
            flat.extend(int(c) for c in week)
        return cls(len(grid), flat, days=days)

    def __repr__(self) -> str:
        return (
            f"Board(total_weeks={self.total_weeks}, days={self.days}, "
            f"rewards={len(self._reward_cells)}, consumed={len(self.consumed)})"
        )

    # ----------------------------
    # Geometry
    # ----------------------------
    def cells(self) -> Iterator[Position]:
        """All in-bounds positions in scan order (week-major, then day)."""
        for week in range(self.total_weeks):
            for day in range(self.days):
                yield Position(week, day)

    def in_bounds(self, pos: Sequence[int]) -> bool:
        return 0 <= pos[0] < self.total_weeks and 0 <= pos[1] < self.days

    def _index(self, pos: Sequence[int]) -> int:
        return pos[0] * self.days + pos[1] - self.first_day_offset

    def is_valid(self, pos: Sequence[int]) -> bool:
        """True if the cell is in bounds and backed by a calendar day."""
        return self.in_bounds(pos) and 0 <= self._index(pos) < len(self.counts)

    def neighbors(self, pos: Sequence[int]) -> List[Position]:
        """In-bounds neighbours in right, left, down, up order."""
        out: List[Position] = []
        for dw, dd in ACTIONS:
            cand = Position(pos[0] + dw, pos[1] + dd)
            if self.in_bounds(cand):
                out.append(cand)
        return out

    def start_position(self) -> Position:
        for pos in self.cells():
            if self.is_valid(pos):
                return pos
        return Position(0, 0)

    # ----------------------------
    # Rewards
    # ----------------------------
    def count_at(self, pos: Sequence[int]) -> int:
        if not self.in_bounds(pos):
            return 0
        idx = self._index(pos)
        if 0 <= idx < len(self.counts):
            return self.counts[idx]
        return 0

    def reward(self, pos: Sequence[int]) -> int:
        """Reward weight of a cell; 0 when out of range, empty, or already consumed."""
        if as_position(pos) in self.consumed:
            return 0
        return self.count_at(pos)

    def reward_cells(self) -> List[Position]:
        """Unconsumed reward cells in scan order."""
        return [pos for pos in self._reward_cells if pos not in self.consumed]

    def total_rewards(self) -> int:
        return len(self._reward_cells)

    def remaining(self) -> int:
        return len(self._reward_cells) - len(self.consumed)

    def is_exhausted(self) -> bool:
        return self.remaining() <= 0

    def consume(self, pos: Sequence[int]) -> int:
        """Mark a reward cell eaten and return its count (0 if nothing to eat)."""
        pos = as_position(pos)
        count = self.reward(pos)
        if count > 0:
            self.consumed.add(pos)
        return count

    def restore(self) -> None:
        self.consumed.clear()

    # ----------------------------
    # Collision model
    # ----------------------------
    @staticmethod
    def is_occupied(pos: Sequence[int], body: Iterable[Sequence[int]]) -> bool:
        target = as_position(pos)
        return any(as_position(b) == target for b in body)

    def free_neighbors(self, pos: Sequence[int], body: Iterable[Sequence[int]]) -> int:
        occupied = {as_position(b) for b in body}
        return sum(1 for n in self.neighbors(pos) if n not in occupied)

    def safety(self, pos: Sequence[int], body: Iterable[Sequence[int]]) -> float:
        """Fraction of the four neighbours that are in bounds and unoccupied."""
        return self.free_neighbors(pos, body) / 4.0

    def is_dead_end(self, pos: Sequence[int], body: Iterable[Sequence[int]]) -> bool:
        return self.free_neighbors(pos, body) <= 1


def direction_between(src: Sequence[int], dst: Sequence[int]) -> Optional[Action]:
    delta = (dst[0] - src[0], dst[1] - src[1])
    return delta if delta in ACTIONS else None
