from __future__ import annotations

import random
import unittest

from contribsnake import config
from contribsnake.board import Board, Position
from contribsnake.config import EngineConfig
from contribsnake.engine import DecisionLoop, LoopState, Outcome, Snake, growth_for
from contribsnake.errors import ConfigError
from contribsnake.policy import HeuristicPolicy, LearnedPolicy
from contribsnake.qlearning import QLearningAgent


def board_with(rewards, weeks: int = 5, days: int = 5) -> Board:
    grid = [[0] * days for _ in range(weeks)]
    for (week, day), count in rewards.items():
        grid[week][day] = count
    return Board.from_grid(grid)


class SnakeBodyTest(unittest.TestCase):
    def test_growth_is_capped_per_eat(self):
        self.assertEqual(growth_for(1), 2)
        self.assertEqual(growth_for(3), 6)
        self.assertEqual(growth_for(10), config.MAX_GROWTH_PER_EAT)

    def test_body_is_a_sliding_window(self):
        snake = Snake((0, 0))
        snake.grow(1)
        self.assertEqual(snake.length, 3)
        for day in range(1, 5):
            snake.advance((0, day))
        self.assertEqual(snake.body, (Position(0, 4), Position(0, 3), Position(0, 2)))
        self.assertTrue(snake.contains((0, 2)))
        self.assertFalse(snake.contains((0, 1)))

    def test_length_is_capped(self):
        snake = Snake((0, 0), max_length=10)
        snake.grow(4)
        snake.grow(4)
        self.assertEqual(snake.length, 10)

    def test_place_validates_body(self):
        snake = Snake((0, 0), max_length=5)
        snake.place([(1, 1), (1, 2)], length=4)
        self.assertEqual(snake.head, Position(1, 1))
        self.assertEqual(snake.length, 4)
        with self.assertRaises(ValueError):
            snake.place([])
        with self.assertRaises(ValueError):
            snake.place([(0, 0), (0, 0)])
        with self.assertRaises(ValueError):
            snake.place([(0, 0)], length=6)


class DecisionLoopTest(unittest.TestCase):
    def test_idle_loop_does_nothing(self):
        loop = DecisionLoop(HeuristicPolicy())
        board = board_with({(2, 2): 1})
        self.assertEqual(loop.tick(board).outcome, Outcome.IDLE)
        self.assertFalse(loop.is_snake_cell((0, 0)))

    def test_learning_policy_requires_agent(self):
        with self.assertRaises(ConfigError):
            DecisionLoop(LearnedPolicy(QLearningAgent()))

    def test_enclosed_head_ends_episode(self):
        resets = []
        loop = DecisionLoop(HeuristicPolicy(), on_reset=lambda: resets.append(1))
        board = board_with({(3, 3): 1})
        loop.activate(board)
        loop.snake.place([(0, 0), (1, 0), (1, 1), (0, 1)])

        result = loop.tick(board)

        self.assertEqual(result.outcome, Outcome.FAILURE)
        self.assertEqual(result.reason, "no_safe_action")
        self.assertEqual(loop.stats.episodes, 1)
        self.assertEqual(loop.stats.successes, 0)
        self.assertEqual(loop.stats.last_outcome, "no_safe_action")
        self.assertEqual(loop.body, (Position(0, 0),))
        self.assertEqual(loop.status, LoopState.ACTIVE)
        self.assertEqual(len(resets), 2)

    def test_eating_last_reward_is_a_success(self):
        eaten = []
        episodes = []
        loop = DecisionLoop(
            HeuristicPolicy(),
            on_eat=lambda pos, count: eaten.append((pos, count)),
            on_episode_end=episodes.append,
        )
        board = Board(3, [0, 2, 0], days=1)
        loop.activate(board)

        result = loop.tick(board)

        self.assertEqual(result.outcome, Outcome.SUCCESS)
        self.assertEqual(eaten, [(Position(1, 0), 2)])
        self.assertEqual(loop.stats.successes, 1)
        self.assertEqual(loop.stats.best_score, 2 * config.EAT_TALLY_PER_COUNT)
        self.assertEqual(episodes[0].length, 5)
        self.assertTrue(episodes[0].success)
        # board and body are reset for the next episode
        self.assertEqual(board.remaining(), 1)
        self.assertEqual(loop.head, Position(0, 0))

    def test_eating_grows_the_body(self):
        loop = DecisionLoop(HeuristicPolicy())
        board = Board(4, [0, 1, 0, 1], days=1)
        loop.activate(board)

        result = loop.tick(board)
        self.assertEqual(result.outcome, Outcome.ATE)
        self.assertEqual(loop.snake.length, 3)
        self.assertGreater(result.reward, config.REWARD_GROWTH)
        self.assertTrue(loop.is_head((1, 0)))
        self.assertTrue(loop.is_snake_cell((0, 0)))

    def test_learning_loop_updates_and_requests_saves(self):
        agent = QLearningAgent(rng=random.Random(11))
        saves = []
        policy = LearnedPolicy(agent, timeout=2.0)
        loop = DecisionLoop(
            policy,
            agent,
            EngineConfig(save_every_updates=5),
            on_save_request=lambda: saves.append(agent.stats.episode_count),
        )
        board = board_with({(4, 4): 2, (2, 0): 1, (0, 3): 1})
        loop.activate(board)
        try:
            for _ in range(60):
                loop.tick(board)
        finally:
            loop.close()

        self.assertGreater(agent.stats.episode_count, 0)
        self.assertGreater(agent.state_count, 0)
        self.assertEqual(len(saves), agent.stats.episode_count // 5)
        self.assertTrue(all(count % 5 == 0 for count in saves))

    def test_abort_ends_episode(self):
        loop = DecisionLoop(HeuristicPolicy())
        board = board_with({(4, 4): 1})
        self.assertIsNone(loop.abort(board, "tick_cap"))
        loop.activate(board)
        loop.tick(board)
        summary = loop.abort(board, "tick_cap")
        self.assertFalse(summary.success)
        self.assertEqual(summary.reason, "tick_cap")
        self.assertEqual(summary.steps, 1)

    def test_move_off_the_board_ends_episode(self):
        class WallPolicy:
            learns = False

            def choose(self, state, safe_actions, board, body, *, length=None):
                return (-1, 0)

            def close(self):
                return None

        loop = DecisionLoop(WallPolicy())
        board = board_with({(3, 3): 1})
        loop.activate(board)

        result = loop.tick(board)

        self.assertEqual(result.outcome, Outcome.FAILURE)
        self.assertEqual(result.reason, "unsafe_decision")
        self.assertEqual(loop.stats.last_outcome, "unsafe_decision")
        self.assertEqual(loop.head, Position(0, 0))

    def test_cadence_depends_on_mode(self):
        heuristic = DecisionLoop(HeuristicPolicy())
        agent = QLearningAgent()
        learned = DecisionLoop(LearnedPolicy(agent), agent)
        board = board_with({(1, 1): 1})
        empty = board_with({})

        self.assertTrue(DecisionLoop.is_rage(empty))
        self.assertEqual(heuristic.interval(board), config.HEURISTIC_INTERVAL)
        self.assertEqual(learned.interval(board), config.LEARNED_INTERVAL)
        self.assertEqual(learned.interval(empty), config.RAGE_INTERVAL)
        learned.close()

    def test_deactivate_resets_board(self):
        loop = DecisionLoop(HeuristicPolicy())
        board = Board(4, [0, 1, 0, 1], days=1)
        loop.activate(board)
        loop.tick(board)
        loop.deactivate(board)
        self.assertEqual(loop.status, LoopState.IDLE)
        self.assertEqual(board.remaining(), 2)
        self.assertEqual(loop.tick(board).outcome, Outcome.IDLE)
