"""Per-tick decision loop: encode, choose, move, reward, learn."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional, Sequence, Tuple

from . import config
from .board import Action, Board, Position, as_position
from .config import EngineConfig
from .errors import ConfigError
from .features import State, compute_reward, encode
from .policy import Policy
from .qlearning import QLearningAgent
from .rules import is_safe_action, safe_actions

logger = logging.getLogger(__name__)


def growth_for(count: int) -> int:
    return min(int(count) * config.GROWTH_PER_COUNT, config.MAX_GROWTH_PER_EAT)


class Snake:
    """Head position plus a sliding window of previous heads.

    ``length`` counts the head, so a fresh snake is a single cell and the trail
    holds at most ``length - 1`` earlier positions, newest first.
    """

    def __init__(self, start: Sequence[int], max_length: int = config.MAX_BODY_LENGTH) -> None:
        self.max_length = int(max_length)
        self.head = as_position(start)
        self.length = 1
        self._trail: Deque[Position] = deque()

    @property
    def body(self) -> Tuple[Position, ...]:
        return (self.head, *self._trail)

    def contains(self, pos: Sequence[int]) -> bool:
        pos = as_position(pos)
        return pos == self.head or pos in self._trail

    def grow(self, count: int) -> int:
        before = self.length
        self.length = min(self.length + growth_for(count), self.max_length)
        return self.length - before

    def advance(self, new_head: Sequence[int]) -> None:
        self._trail.appendleft(self.head)
        self.head = as_position(new_head)
        while len(self._trail) > self.length - 1:
            self._trail.pop()

    def reset(self, start: Sequence[int]) -> None:
        self.head = as_position(start)
        self.length = 1
        self._trail.clear()

    def place(self, cells: Sequence[Sequence[int]], length: Optional[int] = None) -> None:
        """Adopt an explicit head-first body (e.g. handed over by the collaborator)."""
        body = [as_position(c) for c in cells]
        if not body:
            raise ValueError("body must contain at least the head")
        if len(set(body)) != len(body):
            raise ValueError("body cells must be distinct")
        size = len(body) if length is None else int(length)
        if not len(body) <= size <= self.max_length:
            raise ValueError(f"body length must be in [{len(body)}, {self.max_length}]")
        self.head = body[0]
        self.length = size
        self._trail = deque(body[1:])


class LoopState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class Outcome(str, Enum):
    IDLE = "idle"
    MOVED = "moved"
    ATE = "ate"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class TickResult:
    outcome: Outcome
    head: Position
    action: Optional[Action] = None
    reward: float = 0.0
    state: Optional[State] = None
    next_state: Optional[State] = None
    reason: Optional[str] = None


@dataclass
class EpisodeStats:
    episodes: int = 0
    successes: int = 0
    total_score: float = 0.0
    total_reward: float = 0.0
    last_outcome: Optional[str] = None
    best_score: float = 0.0

    @property
    def failures(self) -> int:
        return self.episodes - self.successes

    @property
    def success_rate(self) -> float:
        return 100.0 * self.successes / self.episodes if self.episodes else 0.0

    @property
    def average_score(self) -> float:
        return self.total_score / self.episodes if self.episodes else 0.0

    @property
    def average_reward(self) -> float:
        return self.total_reward / self.episodes if self.episodes else 0.0

    def as_dict(self) -> dict:
        return {
            "episodes": self.episodes,
            "successes": self.successes,
            "success_rate": self.success_rate,
            "average_score": self.average_score,
            "average_reward": self.average_reward,
            "best_score": self.best_score,
        }


@dataclass(frozen=True)
class EpisodeSummary:
    index: int
    success: bool
    reason: str
    score: float
    reward: float
    steps: int
    length: int


class DecisionLoop:
    """Single-agent tick orchestrator.

    The board is handed in on every call and never kept between ticks; the loop
    owns only the snake body and the running episode counters. Ending an episode
    (success or "no safe action") is an ordinary outcome: the snake is reset to
    the board's first valid cell and the loop keeps going.
    """

    def __init__(
        self,
        policy: Policy,
        agent: Optional[QLearningAgent] = None,
        engine_config: Optional[EngineConfig] = None,
        *,
        on_eat: Optional[Callable[[Position, int], None]] = None,
        on_reset: Optional[Callable[[], None]] = None,
        on_episode_end: Optional[Callable[[EpisodeSummary], None]] = None,
        on_save_request: Optional[Callable[[], None]] = None,
    ) -> None:
        if policy.learns and agent is None:
            raise ConfigError("a learning policy needs a QLearningAgent")
        self.policy = policy
        self.agent = agent
        self.config = engine_config or EngineConfig()
        self.on_eat = on_eat
        self.on_reset = on_reset
        self.on_episode_end = on_episode_end
        self.on_save_request = on_save_request

        self.status = LoopState.IDLE
        self.snake = Snake((0, 0), max_length=self.config.max_body_length)
        self.stats = EpisodeStats()

        self.episode_score = 0.0
        self.episode_reward = 0.0
        self.episode_steps = 0

    # ----------------------------
    # Collaborator surface
    # ----------------------------
    @property
    def learning(self) -> bool:
        return bool(self.policy.learns)

    @property
    def head(self) -> Position:
        return self.snake.head

    @property
    def body(self) -> Tuple[Position, ...]:
        return self.snake.body

    def is_snake_cell(self, pos: Sequence[int]) -> bool:
        return self.status is LoopState.ACTIVE and self.snake.contains(pos)

    def is_head(self, pos: Sequence[int]) -> bool:
        return self.status is LoopState.ACTIVE and as_position(pos) == self.snake.head

    @staticmethod
    def is_rage(board: Board) -> bool:
        return board.is_exhausted()

    def interval(self, board: Board) -> float:
        if self.is_rage(board):
            return self.config.rage_interval
        if self.learning:
            return self.config.learned_interval
        return self.config.heuristic_interval

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def _reset(self, board: Board) -> None:
        board.restore()
        self.snake.reset(board.start_position())
        self.episode_score = 0.0
        self.episode_reward = 0.0
        self.episode_steps = 0
        if self.on_reset is not None:
            self.on_reset()

    def activate(self, board: Board) -> None:
        self._reset(board)
        self.status = LoopState.ACTIVE
        logger.info("Decision loop active (%s mode) at %s", "learned" if self.learning else "heuristic", self.head)

    def deactivate(self, board: Optional[Board] = None) -> None:
        if board is not None:
            self._reset(board)
        else:
            self.snake.reset(self.snake.head)
        self.status = LoopState.IDLE

    def _end_episode(self, board: Board, success: bool, reason: str) -> EpisodeSummary:
        stats = self.stats
        stats.episodes += 1
        if success:
            stats.successes += 1
        stats.total_score += self.episode_score
        stats.total_reward += self.episode_reward
        stats.best_score = max(stats.best_score, self.episode_score)
        stats.last_outcome = "success" if success else reason

        summary = EpisodeSummary(
            index=stats.episodes,
            success=success,
            reason=reason,
            score=self.episode_score,
            reward=self.episode_reward,
            steps=self.episode_steps,
            length=self.snake.length,
        )
        logger.info(
            "Episode %d: %s Score=%.0f Reward=%.2f Steps=%d Length=%d",
            summary.index,
            "success" if success else f"failure ({reason})",
            summary.score,
            summary.reward,
            summary.steps,
            summary.length,
        )
        if self.on_episode_end is not None:
            self.on_episode_end(summary)
        self._reset(board)
        return summary

    def abort(self, board: Board, reason: str) -> Optional[EpisodeSummary]:
        """End the running episode as a failure (e.g. a tick cap was reached)."""
        if self.status is not LoopState.ACTIVE:
            return None
        return self._end_episode(board, success=False, reason=reason)

    # ----------------------------
    # Tick
    # ----------------------------
    def _fail(self, board: Board, state: Optional[State], reason: str) -> TickResult:
        self._end_episode(board, success=False, reason=reason)
        return TickResult(Outcome.FAILURE, head=self.snake.head, state=state, reason=reason)

    def tick(self, board: Board) -> TickResult:
        if self.status is not LoopState.ACTIVE:
            return TickResult(Outcome.IDLE, head=self.snake.head)

        head = self.snake.head
        body = self.snake.body
        state = encode(board, body, head, length=self.snake.length)

        safe = safe_actions(board, head, body)
        if not safe:
            return self._fail(board, state, "no_safe_action")

        action = self.policy.choose(state, safe, board, body, length=self.snake.length)
        if action is None:
            return self._fail(board, state, "no_decision")
        action = (int(action[0]), int(action[1]))
        if not is_safe_action(board, head, body, action):
            logger.warning("Policy returned unsafe move %s at %s", action, head)
            return self._fail(board, state, "unsafe_decision")

        new_head = head.step(action)
        count = board.consume(new_head)
        ate = count > 0
        if ate:
            self.snake.grow(count)
            self.episode_score += count * config.EAT_TALLY_PER_COUNT
            if self.on_eat is not None:
                self.on_eat(new_head, count)

        self.snake.advance(new_head)
        next_state = encode(board, self.snake.body, new_head, length=self.snake.length)
        reward = compute_reward(state, next_state)
        self.episode_reward += reward
        self.episode_steps += 1

        if self.learning:
            self.agent.update(state, action, next_state, reward)
            every = self.config.save_every_updates
            if every and self.on_save_request is not None and self.agent.stats.episode_count % every == 0:
                self.on_save_request()

        if ate and board.total_rewards() > 0 and board.is_exhausted():
            self._end_episode(board, success=True, reason="cleared")
            return TickResult(
                Outcome.SUCCESS,
                head=self.snake.head,
                action=action,
                reward=reward,
                state=state,
                next_state=next_state,
                reason="cleared",
            )

        return TickResult(
            Outcome.ATE if ate else Outcome.MOVED,
            head=new_head,
            action=action,
            reward=reward,
            state=state,
            next_state=next_state,
        )

    def close(self) -> None:
        self.policy.close()
