"""Tabular Q-learning agent with an adaptive exploration schedule."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from . import config
from .board import ACTIONS, Action
from .config import AgentConfig
from .features import State, action_key, state_key
from .persistence import PersistenceStore, SaveResult, SnapshotData, utc_timestamp

logger = logging.getLogger(__name__)

StateLike = Union[State, str]


def _key(state: StateLike) -> str:
    return state if isinstance(state, str) else state_key(state)


@dataclass
class TrainingStats:
    episode_count: int = 0
    total_reward: float = 0.0
    reward_history: List[float] = field(default_factory=list)
    stable_episodes: int = 0
    last_average_reward: Optional[float] = None
    has_converged: bool = False


class QLearningAgent:
    """Epsilon-greedy tabular agent over ``(StateKey, ActionKey) -> value``.

    ``episode_count`` counts ``update`` calls, matching how the statistics window
    (every ``stats_window`` updates) and the exploration schedule are driven.
    """

    def __init__(self, agent_config: Optional[AgentConfig] = None, rng: Optional[random.Random] = None) -> None:
        self.config = agent_config or AgentConfig()
        self.rng = rng or random.Random()

        self.q_table: Dict[str, Dict[str, float]] = {}
        self.learning_rate = float(self.config.learning_rate)
        self.discount_factor = float(self.config.discount_factor)
        self.exploration_rate = float(self.config.exploration_rate)
        self.stats = TrainingStats()

        self._lock = threading.RLock()

    # ----------------------------
    # Table access
    # ----------------------------
    @property
    def state_count(self) -> int:
        return len(self.q_table)

    @property
    def total_actions(self) -> int:
        return sum(len(actions) for actions in self.q_table.values())

    def q_value(self, state: StateLike, action: Action) -> float:
        return float(self.q_table.get(_key(state), {}).get(action_key(action), 0.0))

    def max_q(self, state: StateLike) -> float:
        values = self.q_table.get(_key(state))
        if not values:
            return 0.0
        return max(values.values())

    # ----------------------------
    # Policy
    # ----------------------------
    def _explore(self, safe_actions: Sequence[Action]) -> Action:
        pool = list(safe_actions) if safe_actions else list(ACTIONS)
        return self.rng.choice(pool)

    def select_action(self, state: StateLike, safe_actions: Sequence[Action]) -> Action:
        with self._lock:
            if not safe_actions or self.rng.random() < self.exploration_rate:
                return self._explore(safe_actions)

            values = self.q_table.get(_key(state), {})
            best: Optional[Action] = None
            best_value = float("-inf")
            for move in ACTIONS:
                if move not in safe_actions:
                    continue
                value = values.get(action_key(move), 0.0)
                if value > best_value:
                    best, best_value = move, value
            if best is None:
                return self._explore(safe_actions)
            return best

    # ----------------------------
    # Learning
    # ----------------------------
    def update(self, state: StateLike, action: Action, next_state: StateLike, reward: float) -> float:
        """Bellman update ``Q(s,a) += alpha * (r + gamma * max Q(s') - Q(s,a))``.

        Returns the new ``Q(s,a)``.
        """
        with self._lock:
            s_key = _key(state)
            a_key = action_key(action)
            entry = self.q_table.setdefault(s_key, {})
            current = entry.get(a_key, 0.0)
            target = float(reward) + self.discount_factor * self.max_q(next_state)
            entry[a_key] = current + self.learning_rate * (target - current)
            self._record_step(float(reward))
            return entry[a_key]

    def _record_step(self, reward: float) -> None:
        stats = self.stats
        stats.episode_count += 1
        stats.total_reward += reward

        window = int(self.config.stats_window)
        if stats.episode_count % window != 0:
            return

        average = stats.total_reward / window
        stats.reward_history.append(average)
        stats.total_reward = 0.0

        if (
            stats.last_average_reward is not None
            and abs(average - stats.last_average_reward) < self.config.convergence_threshold
        ):
            stats.stable_episodes += 1
        else:
            stats.stable_episodes = 0
        stats.last_average_reward = average

        self.update_exploration_rate()
        stats.has_converged = self.check_convergence()

    def exploration_target(self) -> float:
        progress = min(self.stats.episode_count / float(self.config.training_horizon), 1.0)
        low = self.config.min_exploration_rate
        high = self.config.max_exploration_rate
        return low + (high - low) * (1.0 - progress)

    def update_exploration_rate(self) -> float:
        """Decay toward the progress-dependent floor, or recover up to it."""
        target = self.exploration_target()
        if self.exploration_rate > target:
            self.exploration_rate = max(target, self.exploration_rate * self.config.exploration_decay)
        else:
            self.exploration_rate = min(self.exploration_rate * self.config.exploration_recovery, target)
        return self.exploration_rate

    def check_convergence(self) -> bool:
        window = int(self.config.convergence_window)
        history = self.stats.reward_history
        if len(history) < window:
            return False
        recent = history[-window:]
        mean = sum(recent) / window
        variance = sum((r - mean) ** 2 for r in recent) / window
        return variance < self.config.convergence_threshold

    # ----------------------------
    # Snapshots
    # ----------------------------
    def to_snapshot(self) -> SnapshotData:
        with self._lock:
            return SnapshotData(
                q_table={s: dict(actions) for s, actions in self.q_table.items()},
                learning_rate=self.learning_rate,
                discount_factor=self.discount_factor,
                exploration_rate=self.exploration_rate,
                episode_count=self.stats.episode_count,
                reward_history=list(self.stats.reward_history),
                stable_episodes=self.stats.stable_episodes,
                last_average_reward=self.stats.last_average_reward,
                has_converged=self.check_convergence(),
                timestamp=utc_timestamp(),
            )

    def restore(self, snapshot: SnapshotData) -> None:
        """Adopt a snapshot, flooring learning and exploration rates.

        The floors keep a long-trained table from settling into zero exploration;
        the stability count is lowered to start a fresh training phase.
        """
        with self._lock:
            self.q_table = {s: dict(actions) for s, actions in snapshot.q_table.items()}
            self.learning_rate = max(float(snapshot.learning_rate), self.config.restore_min_learning_rate)
            self.discount_factor = float(snapshot.discount_factor)
            self.exploration_rate = max(
                float(snapshot.exploration_rate), self.config.restore_min_exploration_rate
            )
            self.stats = TrainingStats(
                episode_count=int(snapshot.episode_count),
                total_reward=0.0,
                reward_history=list(snapshot.reward_history),
                stable_episodes=max(0, int(snapshot.stable_episodes) - config.RESTORE_STABLE_PENALTY),
                last_average_reward=snapshot.last_average_reward,
            )
            self.stats.has_converged = self.check_convergence()

    def save(self, store: PersistenceStore) -> SaveResult:
        return store.save(self.to_snapshot())

    @classmethod
    def from_store(
        cls,
        store: Optional[PersistenceStore],
        agent_config: Optional[AgentConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> "QLearningAgent":
        """Build an agent, restoring the latest snapshot when one loads cleanly."""
        agent = cls(agent_config, rng=rng)
        snapshot = store.load() if store is not None else None
        if snapshot is None:
            logger.info("No training data restored; using default learning parameters")
            return agent
        agent.restore(snapshot)
        logger.info(
            "Restored agent: states=%d updates=%d exploration=%.3f",
            agent.state_count,
            agent.stats.episode_count,
            agent.exploration_rate,
        )
        return agent
