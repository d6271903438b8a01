from __future__ import annotations

from typing import Iterable, List, Sequence

from .board import ACTIONS, Action, Board, Position, as_position


def _next_cell(head: Sequence[int], move: Action) -> Position:
    return Position(head[0] + move[0], head[1] + move[1])


def safe_actions(
    board: Board,
    head: Sequence[int],
    body: Iterable[Sequence[int]],
) -> List[Action]:
    """Return the moves that stay on the board and do not land on the body.

    Unlike a classic snake the tail gets no exemption: the body is a sliding window
    of past heads and a move onto any of its cells is a collision. A set keeps the
    membership checks O(1).
    """
    occupied = {as_position(cell) for cell in body}
    moves: List[Action] = []
    for move in ACTIONS:
        new_head = _next_cell(head, move)
        if not board.in_bounds(new_head):
            continue
        if new_head in occupied:
            continue
        moves.append(move)
    return moves


def is_safe_action(
    board: Board,
    head: Sequence[int],
    body: Iterable[Sequence[int]],
    move: Action,
) -> bool:
    """Return True if the move is legal under the engine's collision rules."""
    if tuple(move) not in ACTIONS:
        return False
    new_head = _next_cell(head, move)
    if not board.in_bounds(new_head):
        return False
    return not board.is_occupied(new_head, body)
