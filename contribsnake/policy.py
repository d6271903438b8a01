"""Move-selection policies sharing one ``(state, safe actions) -> action`` contract."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from . import config
from .board import Action, Board, Position, as_position, direction_between
from .errors import ConfigError
from .features import State, nearest_reward
from .pathfinding import best_neighbor, find_path
from .qlearning import QLearningAgent
from .service import DecisionRequest, DecisionResponse, DecisionService

logger = logging.getLogger(__name__)

DecisionClient = Callable[[DecisionRequest], DecisionResponse]


class Policy(Protocol):
    #: True if the loop should feed transitions back into the agent.
    learns: bool

    def choose(
        self,
        state: State,
        safe_actions: Sequence[Action],
        board: Board,
        body: Sequence[Position],
        *,
        length: Optional[int] = None,
    ) -> Optional[Action]:
        """Return the move to commit, or None for "no viable action"."""
        ...

    def close(self) -> None:
        ...


class HeuristicPolicy:
    """Follow the safety-aware A* route to the nearest reward.

    When no reward is left, or every route to it is unsafe, fall back to the single
    best-ranked safe neighbour under the same heuristic.
    """

    learns = False

    def __init__(self) -> None:
        self.last_path: List[Position] = []

    def choose(
        self,
        state: State,
        safe_actions: Sequence[Action],
        board: Board,
        body: Sequence[Position],
        *,
        length: Optional[int] = None,
    ) -> Optional[Action]:
        if not safe_actions:
            return None
        head = as_position(body[0])
        target = nearest_reward(board, head)

        self.last_path = []
        if target is not None:
            path = find_path(head, target, board, body)
            if path:
                move = direction_between(head, path[0])
                if move in safe_actions:
                    self.last_path = path
                    return move
        return best_neighbor(head, target, board, body, safe_actions)

    def close(self) -> None:
        return None


class LearnedPolicy:
    """Delegate to the Q-learning agent through the decision request contract.

    Each call runs the client on its own daemon thread with a hard deadline, so a
    stuck client can neither starve the next tick nor hold up interpreter exit.
    A timeout or client error returns None and the loop records an episode
    failure; there is no retry.
    """

    learns = True

    def __init__(
        self,
        agent: QLearningAgent,
        client: Optional[DecisionClient] = None,
        *,
        timeout: float = config.DECISION_TIMEOUT,
    ) -> None:
        self.agent = agent
        self.client: DecisionClient = client or DecisionService(agent).handle
        self.timeout = float(timeout)
        self.last_worker: Optional[threading.Thread] = None

    def _call(self, request: DecisionRequest) -> Optional[DecisionResponse]:
        box: Dict[str, object] = {}
        done = threading.Event()

        def _work() -> None:
            try:
                box["response"] = self.client(request)
            except Exception as exc:
                box["error"] = exc
            finally:
                done.set()

        worker = threading.Thread(target=_work, name="snake-decision", daemon=True)
        self.last_worker = worker
        worker.start()
        if not done.wait(self.timeout):
            logger.warning("Decision request timed out after %.3fs", self.timeout)
            return None
        if "error" in box:
            logger.warning("Decision request failed: %s", box["error"])
            return None
        return box["response"]

    def choose(
        self,
        state: State,
        safe_actions: Sequence[Action],
        board: Board,
        body: Sequence[Position],
        *,
        length: Optional[int] = None,
    ) -> Optional[Action]:
        request = DecisionRequest.from_board(
            board,
            body,
            candidate=safe_actions[0] if safe_actions else None,
            training=True,
            length=length,
        )
        response = self._call(request)
        if response is None:
            return None
        return response.direction

    def close(self) -> None:
        # abandoned workers are daemons and die with the interpreter
        self.last_worker = None


def make_policy(
    mode: str,
    agent: Optional[QLearningAgent] = None,
    *,
    timeout: float = config.DECISION_TIMEOUT,
) -> Policy:
    if mode == "heuristic":
        return HeuristicPolicy()
    if mode == "learned":
        if agent is None:
            raise ConfigError("learned mode requires an agent")
        return LearnedPolicy(agent, timeout=timeout)
    raise ConfigError(f"unknown mode {mode!r}")
