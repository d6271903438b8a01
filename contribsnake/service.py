"""Decision request/response contract used by the learned policy.

A request carries everything needed to rebuild the board and the agent body, so
the decision can be computed out of process (or on another thread) and returned
as a plain direction. ``direction=None`` in a response means "no viable action".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import config
from .board import Action, Board, Position, as_position
from .errors import RequestError
from .features import encode, nearest_reward
from .qlearning import QLearningAgent
from .rules import safe_actions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionRequest:
    total_weeks: int
    counts: Tuple[int, ...]
    body: Tuple[Position, ...]
    first_day_offset: int = 0
    days: int = config.DAYS_PER_WEEK
    consumed: Tuple[Position, ...] = ()
    candidate: Optional[Action] = None
    training: bool = True
    length: Optional[int] = None

    @classmethod
    def from_board(
        cls,
        board: Board,
        body: Sequence[Sequence[int]],
        *,
        candidate: Optional[Action] = None,
        training: bool = True,
        length: Optional[int] = None,
    ) -> "DecisionRequest":
        return cls(
            total_weeks=board.total_weeks,
            counts=board.counts,
            body=tuple(as_position(b) for b in body),
            first_day_offset=board.first_day_offset,
            days=board.days,
            consumed=tuple(sorted(board.consumed)),
            candidate=candidate,
            training=training,
            length=length,
        )

    def build_board(self) -> Board:
        board = Board(
            self.total_weeks,
            self.counts,
            first_day_offset=self.first_day_offset,
            days=self.days,
        )
        for pos in self.consumed:
            board.consume(pos)
        return board

    def to_dict(self) -> Dict[str, Any]:
        return {
            "yearInfo": {
                "totalWeeks": self.total_weeks,
                "firstDayOfWeek": self.first_day_offset,
                "days": self.days,
            },
            "contributionData": list(self.counts),
            "consumed": [list(p) for p in self.consumed],
            "snakeBody": [list(p) for p in self.body],
            "snakeLength": self.length,
            "candidate": list(self.candidate) if self.candidate is not None else None,
            "isTraining": bool(self.training),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DecisionRequest":
        try:
            info = payload["yearInfo"]
            body = [as_position(p) for p in payload["snakeBody"]]
            counts = tuple(int(c) for c in payload["contributionData"])
            total_weeks = int(info["totalWeeks"])
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            raise RequestError(f"missing required parameters: {exc}") from exc
        if not body:
            raise RequestError("snakeBody must contain at least the head")
        candidate = payload.get("candidate")
        length = payload.get("snakeLength")
        return cls(
            total_weeks=total_weeks,
            counts=counts,
            body=tuple(body),
            first_day_offset=int(info.get("firstDayOfWeek", 0) or 0),
            days=int(info.get("days", config.DAYS_PER_WEEK) or config.DAYS_PER_WEEK),
            consumed=tuple(as_position(p) for p in payload.get("consumed", [])),
            candidate=(int(candidate[0]), int(candidate[1])) if candidate else None,
            training=bool(payload.get("isTraining", True)),
            length=int(length) if length is not None else None,
        )


@dataclass(frozen=True)
class DecisionResponse:
    direction: Optional[Action]
    nearest: Optional[Position] = None
    safe: Tuple[Action, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nextDirection": list(self.direction) if self.direction is not None else None,
            "nearestContribution": list(self.nearest) if self.nearest is not None else None,
        }


class DecisionService:
    """Answers decision requests with the shared Q-learning agent."""

    def __init__(self, agent: QLearningAgent) -> None:
        self.agent = agent

    def handle(self, request: DecisionRequest) -> DecisionResponse:
        if not request.body:
            raise RequestError("snakeBody must contain at least the head")
        board = request.build_board()
        head = request.body[0]
        nearest = nearest_reward(board, head)

        if not request.training:
            return DecisionResponse(direction=request.candidate, nearest=nearest)

        safe: List[Action] = safe_actions(board, head, request.body)
        if not safe:
            return DecisionResponse(direction=None, nearest=nearest)

        state = encode(board, request.body, head, length=request.length)
        direction = self.agent.select_action(state, safe)
        return DecisionResponse(direction=direction, nearest=nearest, safe=tuple(safe))

    def handle_dict(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Wire-level entry point: dict in, dict out (``{"error": ...}`` on bad input)."""
        try:
            request = DecisionRequest.from_dict(payload)
        except RequestError as exc:
            logger.warning("Rejected decision request: %s", exc)
            return {"error": str(exc)}
        return self.handle(request).to_dict()
