from __future__ import annotations

import unittest

from contribsnake.board import ACTIONS, DOWN, RIGHT, Board, Position
from contribsnake.pathfinding import best_neighbor, cell_heuristic, find_path, rank_neighbors
from contribsnake.utils import manhattan


def empty_board(weeks: int = 5, days: int = 5) -> Board:
    return Board.from_grid([[0] * days for _ in range(weeks)])


class FindPathTest(unittest.TestCase):
    def test_shortest_path_on_empty_board(self):
        board = empty_board()
        path = find_path((0, 0), (4, 4), board, [(0, 0)])

        self.assertIsNotNone(path)
        self.assertEqual(len(path), 8)
        self.assertEqual(path[-1], Position(4, 4))
        prev = Position(0, 0)
        for cell in path:
            self.assertEqual(manhattan(prev, cell), 1)
            prev = cell

    def test_start_equal_to_target_is_empty_path(self):
        self.assertEqual(find_path((2, 2), (2, 2), empty_board(), [(2, 2)]), [])

    def test_route_through_dead_end_is_rejected(self):
        board = empty_board(weeks=5, days=3)
        head = (0, 1)
        body = [(0, 1), (0, 0), (0, 2), (1, 0), (1, 2)]
        # the only way out of the pocket is (1, 1), which has a single free neighbour
        self.assertIsNone(find_path(head, (4, 1), board, body))

    def test_enclosed_target_is_unreachable(self):
        board = empty_board()
        body = [(0, 0), (3, 3), (1, 3), (2, 2), (2, 4)]
        self.assertIsNone(find_path((0, 0), (2, 3), board, body))

    def test_path_avoids_body_cells(self):
        board = empty_board()
        body = [(0, 2), (1, 2), (2, 2)]
        path = find_path((0, 2), (4, 2), board, body)
        self.assertIsNotNone(path)
        for cell in path:
            self.assertNotIn(cell, body)


class NeighborRankingTest(unittest.TestCase):
    def test_heuristic_prefers_reward_cells(self):
        board = Board.from_grid([[0, 0, 0], [0, 0, 4], [0, 0, 0]])
        with_reward = cell_heuristic(Position(1, 2), Position(2, 2), board, [])
        without = cell_heuristic(Position(2, 1), Position(2, 2), board, [])
        self.assertLess(with_reward, without)

    def test_ties_keep_action_order(self):
        board = empty_board()
        self.assertEqual(rank_neighbors((2, 2), None, board, [(2, 2)]), list(ACTIONS))

    def test_best_neighbor_moves_toward_target(self):
        board = empty_board()
        self.assertEqual(best_neighbor((0, 0), (0, 4), board, [(0, 0)]), DOWN)
        self.assertEqual(best_neighbor((0, 0), (4, 0), board, [(0, 0)]), RIGHT)

    def test_best_neighbor_respects_candidates(self):
        board = empty_board()
        self.assertEqual(best_neighbor((0, 0), (4, 0), board, [(0, 0)], [DOWN]), DOWN)
        self.assertIsNone(best_neighbor((0, 0), (4, 0), board, [(0, 0)], []))
