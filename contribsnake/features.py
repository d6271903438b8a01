"""State encoding and the transition reward model.

Keying:
- A state is reduced to constant-size local features (direction to the nearest
  reward, clipped distance, 4-neighbourhood occupancy, body length) so the table
  generalizes across board positions.
- ``state_key`` joins a fixed-order tuple of those fields, so two equal states
  always produce the same key regardless of how they were built.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from . import config
from .board import ACTIONS, Action, Board, Position, as_position
from .utils import manhattan, sign


@dataclass(frozen=True)
class State:
    direction: Tuple[int, int]
    distance: int
    surroundings: Tuple[int, int, int, int]
    body_length: int

    @property
    def free_neighbors(self) -> int:
        return sum(1 for s in self.surroundings if s == 0)

    @property
    def key(self) -> str:
        return state_key(self)


def nearest_reward(board: Board, head: Sequence[int]) -> Optional[Position]:
    """Closest unconsumed reward cell by Manhattan distance; first found wins ties."""
    best: Optional[Position] = None
    best_dist = None
    for pos in board.reward_cells():
        dist = manhattan(pos, head)
        if best_dist is None or dist < best_dist:
            best, best_dist = pos, dist
    return best


def _surroundings(board: Board, head: Position, body: Sequence[Position]) -> Tuple[int, int, int, int]:
    occupied = set(body)
    out = []
    for move in ACTIONS:
        pos = head.step(move)
        is_wall = not board.in_bounds(pos)
        out.append(1 if (is_wall or pos in occupied) else 0)
    return tuple(out)  # type: ignore[return-value]


def encode(
    board: Board,
    body: Sequence[Sequence[int]],
    head: Optional[Sequence[int]] = None,
    length: Optional[int] = None,
) -> State:
    """Build the feature state for ``head`` (defaults to ``body[0]``).

    ``length`` overrides ``len(body)``; the engine passes the committed snake
    length so growth shows up on the tick the reward is eaten.
    """
    body = [as_position(b) for b in body]
    head = as_position(head) if head is not None else body[0]

    target = nearest_reward(board, head)
    if target is not None:
        direction = (sign(target.week - head.week), sign(target.day - head.day))
        distance = min(manhattan(target, head), config.DISTANCE_CLIP)
    else:
        direction = (0, 0)
        distance = config.DISTANCE_CLIP

    return State(
        direction=direction,
        distance=int(distance),
        surroundings=_surroundings(board, head, body),
        body_length=int(length if length is not None else len(body)),
    )


def state_key(state: State) -> str:
    fields = (
        state.direction[0],
        state.direction[1],
        state.distance,
        *state.surroundings,
        state.body_length,
    )
    return "|".join(str(int(f)) for f in fields)


def action_key(action: Action) -> str:
    return f"{action[0]},{action[1]}"


def parse_action_key(key: str) -> Optional[Action]:
    if "," not in key:
        return None
    try:
        move = tuple(int(token) for token in key.split(","))
    except ValueError:
        return None
    return move if move in ACTIONS else None  # type: ignore[return-value]


def compute_reward(prev: State, nxt: State) -> float:
    """Scalar reward for the transition ``prev -> nxt`` (pure)."""
    reward = config.REWARD_STEP_COST
    if nxt.body_length > prev.body_length:
        reward += config.REWARD_GROWTH
    reward += config.REWARD_FREE_NEIGHBOR * nxt.free_neighbors
    if nxt.distance < prev.distance:
        reward += config.REWARD_PROGRESS
    reward += config.REWARD_SURVIVAL
    return reward
