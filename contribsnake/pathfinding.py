"""Safety-aware A* over the contribution board.

The search is biased three ways at once: toward the target (distance), toward
open space (safety), and through cells that carry a reward on the way. Dead-end
cells are never entered except as the final target, and a reconstructed route
that still touches a dead end is thrown away rather than returned.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .board import ACTIONS, Action, Board, Position, as_position
from .heap import PriorityQueue
from .utils import manhattan

logger = logging.getLogger(__name__)

# (f, g, position)
_Entry = Tuple[float, int, Position]


def cell_heuristic(cell: Position, target: Position, board: Board, body: Sequence[Position]) -> float:
    distance = manhattan(cell, target)
    safety = board.safety(cell, body)
    reward = board.reward(cell)
    return (
        distance * config.PATH_DISTANCE_WEIGHT
        + (1.0 - safety) * config.PATH_SAFETY_WEIGHT
        - reward
    ) / config.PATH_HEURISTIC_NORM


def _ordered_neighbors(
    current: Position, target: Position, board: Board, body: Sequence[Position]
) -> List[Position]:
    """Neighbours sorted by descending safety, then ascending distance to target."""
    neighbors = board.neighbors(current)
    neighbors.sort(key=lambda n: (-board.safety(n, body), manhattan(n, target)))
    return neighbors


def find_path(
    start: Sequence[int],
    target: Sequence[int],
    board: Board,
    body: Sequence[Sequence[int]],
) -> Optional[List[Position]]:
    """Return the cells from the step after ``start`` up to ``target``, or None.

    ``None`` covers both "unreachable" and "only unsafe routes exist"; callers treat
    it as an ordinary outcome.
    """
    start = as_position(start)
    target = as_position(target)
    body = [as_position(b) for b in body]
    occupied = set(body)

    if start == target:
        return []

    g_score: Dict[Position, int] = {start: 0}
    came_from: Dict[Position, Position] = {}
    open_set: PriorityQueue[_Entry] = PriorityQueue(lambda a, b: a[0] < b[0])
    open_set.push((float(manhattan(start, target)), 0, start))

    while open_set:
        _f, g, current = open_set.pop()
        if g > g_score.get(current, g):
            # stale entry; a cheaper route to this cell was found later
            continue

        if current == target:
            path: List[Position] = []
            node = current
            while node in came_from:
                path.append(node)
                node = came_from[node]
            path.reverse()
            for pos in path[:-1]:
                if board.is_dead_end(pos, body):
                    logger.debug("Discarding path through dead end %s", pos)
                    return None
            return path

        for neighbor in _ordered_neighbors(current, target, board, body):
            if neighbor in occupied:
                continue
            if neighbor != target and board.is_dead_end(neighbor, body):
                continue

            tentative_g = g + 1
            if tentative_g < g_score.get(neighbor, 10**9):
                came_from[neighbor] = current
                g_score[neighbor] = tentative_g
                f = tentative_g + cell_heuristic(neighbor, target, board, body)
                open_set.push((f, tentative_g, neighbor))

    return None


def rank_neighbors(
    head: Sequence[int],
    target: Optional[Sequence[int]],
    board: Board,
    body: Sequence[Sequence[int]],
    candidates: Sequence[Action] = ACTIONS,
) -> List[Action]:
    """Order candidate moves best-first by the path heuristic.

    Without a target only safety and reward count. Ties keep the fixed
    right, left, down, up order.
    """
    head = as_position(head)
    body = [as_position(b) for b in body]
    goal = as_position(target) if target is not None else None

    def score(move: Action) -> float:
        cell = head.step(move)
        if goal is not None:
            return cell_heuristic(cell, goal, board, body)
        return (
            (1.0 - board.safety(cell, body)) * config.PATH_SAFETY_WEIGHT - board.reward(cell)
        ) / config.PATH_HEURISTIC_NORM

    order = {move: idx for idx, move in enumerate(ACTIONS)}
    return sorted(candidates, key=lambda mv: (score(mv), order.get(mv, len(order))))


def best_neighbor(
    head: Sequence[int],
    target: Optional[Sequence[int]],
    board: Board,
    body: Sequence[Sequence[int]],
    candidates: Sequence[Action] = ACTIONS,
) -> Optional[Action]:
    ranked = rank_neighbors(head, target, board, body, candidates)
    return ranked[0] if ranked else None
