from __future__ import annotations

import random
import unittest

from contribsnake import config
from contribsnake.board import ACTIONS, DOWN, LEFT, RIGHT, UP
from contribsnake.config import AgentConfig
from contribsnake.errors import ConfigError
from contribsnake.persistence import InMemoryStore, SnapshotData
from contribsnake.qlearning import QLearningAgent


class QUpdateTest(unittest.TestCase):
    def test_single_update_from_empty_table(self):
        agent = QLearningAgent(rng=random.Random(0))
        value = agent.update("s", RIGHT, "t", 1.0)
        self.assertAlmostEqual(value, 0.2)
        self.assertAlmostEqual(agent.q_value("s", RIGHT), 0.2)
        self.assertEqual(agent.q_value("s", LEFT), 0.0)
        self.assertEqual(agent.q_value("missing", UP), 0.0)

    def test_repeated_update_converges_to_fixed_point(self):
        agent = QLearningAgent(rng=random.Random(0))
        for _ in range(2000):
            agent.update("s", RIGHT, "s", 1.0)
        expected = 1.0 / (1.0 - config.DISCOUNT_FACTOR)
        self.assertAlmostEqual(agent.q_value("s", RIGHT), expected, delta=1e-3)

    def test_table_counts(self):
        agent = QLearningAgent(rng=random.Random(0))
        agent.update("a", RIGHT, "b", 1.0)
        agent.update("a", DOWN, "b", 1.0)
        agent.update("b", UP, "a", 1.0)
        self.assertEqual(agent.state_count, 2)
        self.assertEqual(agent.total_actions, 3)


class SelectActionTest(unittest.TestCase):
    def setUp(self):
        self.agent = QLearningAgent(rng=random.Random(3))
        self.agent.exploration_rate = 0.0

    def test_greedy_picks_highest_safe_value(self):
        self.agent.q_table["k"] = {"0,1": 5.0, "1,0": 1.0, "0,-1": 9.0}
        self.assertEqual(self.agent.select_action("k", [RIGHT, DOWN]), DOWN)

    def test_greedy_ties_follow_action_order(self):
        self.assertEqual(self.agent.select_action("unknown", [UP, LEFT]), LEFT)

    def test_empty_safe_set_still_returns_a_move(self):
        self.assertIn(self.agent.select_action("k", []), ACTIONS)

    def test_full_exploration_stays_within_safe_moves(self):
        self.agent.exploration_rate = 1.0
        for _ in range(50):
            self.assertIn(self.agent.select_action("k", [LEFT, UP]), (LEFT, UP))


class ScheduleTest(unittest.TestCase):
    def test_window_statistics_and_decay(self):
        agent = QLearningAgent(rng=random.Random(0))
        for _ in range(config.STATS_WINDOW):
            agent.update("s", RIGHT, "s", 1.0)
        self.assertEqual(agent.stats.episode_count, config.STATS_WINDOW)
        self.assertEqual(agent.stats.reward_history, [1.0])
        self.assertEqual(agent.stats.last_average_reward, 1.0)
        self.assertLess(agent.exploration_rate, config.EXPLORATION_RATE)
        self.assertGreaterEqual(agent.exploration_rate, agent.exploration_target())

    def test_stable_windows_are_counted(self):
        agent = QLearningAgent(rng=random.Random(0))
        for _ in range(config.STATS_WINDOW * 4):
            agent.update("s", RIGHT, "s", 1.0)
        self.assertEqual(agent.stats.stable_episodes, 3)

    def test_exploration_recovers_below_target(self):
        agent = QLearningAgent(rng=random.Random(0))
        agent.exploration_rate = 0.05
        agent.update_exploration_rate()
        self.assertAlmostEqual(agent.exploration_rate, 0.05 * config.EXPLORATION_RECOVERY)

    def test_convergence_needs_a_full_window(self):
        cfg = AgentConfig(stats_window=1, convergence_window=5)
        agent = QLearningAgent(cfg, rng=random.Random(0))
        for _ in range(4):
            agent.update("s", RIGHT, "t", 1.0)
        self.assertFalse(agent.stats.has_converged)
        agent.update("s", RIGHT, "t", 1.0)
        self.assertTrue(agent.stats.has_converged)

    def test_invalid_config(self):
        with self.assertRaises(ConfigError):
            AgentConfig(learning_rate=0.0)
        with self.assertRaises(ConfigError):
            AgentConfig(min_exploration_rate=0.5, max_exploration_rate=0.2)


class SnapshotRestoreTest(unittest.TestCase):
    def test_restore_applies_floors(self):
        snapshot = SnapshotData(
            q_table={"s": {"1,0": 2.0}},
            learning_rate=0.05,
            discount_factor=0.8,
            exploration_rate=0.01,
            episode_count=500,
            reward_history=[1.0, 1.0],
            stable_episodes=5,
            last_average_reward=1.0,
        )
        agent = QLearningAgent(rng=random.Random(0))
        agent.restore(snapshot)

        self.assertEqual(agent.learning_rate, config.RESTORE_MIN_LEARNING_RATE)
        self.assertEqual(agent.exploration_rate, config.RESTORE_MIN_EXPLORATION_RATE)
        self.assertEqual(agent.discount_factor, 0.8)
        self.assertEqual(agent.stats.stable_episodes, 3)
        self.assertEqual(agent.stats.episode_count, 500)
        self.assertEqual(agent.q_value("s", RIGHT), 2.0)

    def test_from_store_round_trip(self):
        store = InMemoryStore()
        agent = QLearningAgent(rng=random.Random(0))
        agent.update("s", RIGHT, "t", 4.0)
        agent.learning_rate = 0.5
        self.assertTrue(agent.save(store).ok)

        restored = QLearningAgent.from_store(store, rng=random.Random(0))
        self.assertEqual(restored.q_table, agent.q_table)
        self.assertEqual(restored.learning_rate, 0.5)
        self.assertEqual(restored.stats.episode_count, 1)

    def test_from_empty_store_uses_defaults(self):
        agent = QLearningAgent.from_store(InMemoryStore())
        self.assertEqual(agent.state_count, 0)
        self.assertEqual(agent.learning_rate, config.LEARNING_RATE)
        self.assertEqual(agent.exploration_rate, config.EXPLORATION_RATE)
