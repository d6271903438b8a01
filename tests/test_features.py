from __future__ import annotations

import unittest

from contribsnake import config
from contribsnake.board import DOWN, RIGHT, Board, Position
from contribsnake.features import (
    State,
    action_key,
    compute_reward,
    encode,
    nearest_reward,
    parse_action_key,
    state_key,
)


def board_with(rewards, weeks: int = 5, days: int = 5) -> Board:
    grid = [[0] * days for _ in range(weeks)]
    for (week, day), count in rewards.items():
        grid[week][day] = count
    return Board.from_grid(grid)


class EncodeTest(unittest.TestCase):
    def test_encodes_direction_distance_and_surroundings(self):
        board = board_with({(3, 1): 2})
        state = encode(board, [(1, 1), (1, 2)])

        self.assertEqual(state.direction, (1, 0))
        self.assertEqual(state.distance, 2)
        self.assertEqual(state.surroundings, (0, 0, 1, 0))
        self.assertEqual(state.body_length, 2)
        self.assertEqual(state.free_neighbors, 3)
        self.assertEqual(state.key, "1|0|2|0|0|1|0|2")

    def test_walls_count_as_blocked(self):
        state = encode(board_with({(4, 4): 1}), [(0, 0)])
        self.assertEqual(state.surroundings, (0, 1, 0, 1))
        self.assertEqual(state.direction, (1, 1))

    def test_no_reward_left(self):
        board = board_with({(2, 2): 1})
        board.consume((2, 2))
        state = encode(board, [(0, 0)])
        self.assertEqual(state.direction, (0, 0))
        self.assertEqual(state.distance, config.DISTANCE_CLIP)

    def test_distance_is_clipped(self):
        board = board_with({(19, 0): 1}, weeks=20)
        self.assertEqual(encode(board, [(0, 0)]).distance, config.DISTANCE_CLIP)

    def test_length_override(self):
        state = encode(board_with({(1, 1): 1}), [(0, 0)], length=7)
        self.assertEqual(state.body_length, 7)

    def test_nearest_reward_ties_go_to_scan_order(self):
        board = board_with({(2, 0): 1, (0, 2): 1})
        self.assertEqual(nearest_reward(board, (1, 1)), Position(0, 2))

    def test_equal_states_share_a_key(self):
        a = State((1, 0), 3, (0, 0, 0, 1), 4)
        b = State((1, 0), 3, (0, 0, 0, 1), 4)
        self.assertEqual(state_key(a), state_key(b))
        self.assertNotEqual(state_key(a), state_key(State((1, 0), 3, (0, 0, 0, 1), 5)))


class ActionKeyTest(unittest.TestCase):
    def test_action_keys(self):
        self.assertEqual(action_key(RIGHT), "1,0")
        self.assertEqual(parse_action_key("0,1"), DOWN)
        self.assertIsNone(parse_action_key("1,1"))
        self.assertIsNone(parse_action_key("up"))


class RewardModelTest(unittest.TestCase):
    def test_progress_with_three_free_neighbors(self):
        prev = State((1, 0), 5, (0, 0, 0, 0), 3)
        nxt = State((1, 0), 4, (0, 0, 0, 1), 3)
        self.assertAlmostEqual(compute_reward(prev, nxt), 2.5)

    def test_growth_bonus(self):
        prev = State((1, 0), 1, (0, 0, 0, 0), 1)
        nxt = State((0, 0), 10, (0, 0, 0, 0), 3)
        self.assertAlmostEqual(compute_reward(prev, nxt), 12.0)

    def test_boxed_in_without_progress(self):
        prev = State((1, 0), 2, (0, 0, 0, 0), 3)
        nxt = State((1, 0), 3, (1, 1, 1, 1), 3)
        self.assertAlmostEqual(compute_reward(prev, nxt), 0.0)
