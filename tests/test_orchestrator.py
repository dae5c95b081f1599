import unittest
from unittest import mock

from config import SETTINGS, PieceSpec
from polyomino.models import PieceDefinitionError
from polyomino.orchestrator import PuzzleOrchestrator, RunConfig

SMALL_PIECES = (
    PieceSpec("dot", 1, 1, "1"),
    PieceSpec("bar", 1, 3, "111"),
    PieceSpec("corner", 2, 2, "1011"),
)


class RunConfigTests(unittest.TestCase):
    def test_defaults_come_from_settings(self):
        config = RunConfig.from_settings()
        self.assertEqual(SETTINGS.BOARD_DIM, config.board_dim)
        self.assertEqual(tuple(SETTINGS.PIECES), config.pieces)
        self.assertEqual(SETTINGS.SOLVE_MODE, config.mode)
        self.assertEqual(SETTINGS.ALLOW_TOUCHING, config.allow_touching)

    def test_none_overrides_keep_defaults(self):
        config = RunConfig.from_settings(mode=None, board_dim=6)
        self.assertEqual(SETTINGS.SOLVE_MODE, config.mode)
        self.assertEqual(6, config.board_dim)

    def test_rejects_unknown_values(self):
        for overrides in (
            {"mode": "sideways"},
            {"executor": "gpu"},
            {"board_dim": 0},
            {"pieces": ()},
            {"workers": 0},
            {"colour": "red"},
        ):
            with self.subTest(overrides=overrides):
                with self.assertRaises(ValueError):
                    RunConfig.from_settings(**overrides)


class OrchestratorSolveTests(unittest.TestCase):
    def setUp(self):
        self.orchestrator = PuzzleOrchestrator()

    def test_linear_solve_emits_events_in_order(self):
        events = []
        result, log = self.orchestrator.solve(
            progress_callback=events.append,
            pieces=SMALL_PIECES,
            board_dim=6,
            mode="linear",
        )
        self.assertIsNotNone(result)
        types = [event["type"] for event in events if event["type"] != "search_progress"]
        self.assertEqual(["run_started", "pieces_built", "search_started", "run_completed"], types)
        self.assertTrue(events[-1]["success"])
        self.assertEqual(result.rows, events[-1]["rows"])
        self.assertTrue(log.success)
        self.assertEqual(3, len(log.pieces))

    def test_result_rows_cover_every_piece(self):
        result, log = self.orchestrator.solve(pieces=SMALL_PIECES, board_dim=6)
        self.assertEqual(6, len(result.rows))
        self.assertTrue(all(len(row) == 6 for row in result.rows))
        text = "".join(result.rows)
        self.assertEqual(1 + 3 + 3, sum(text.count(symbol) for symbol in "ABC"))
        self.assertEqual(log.order, result.piece_labels)

    def test_pieces_sorted_by_average_shadow(self):
        _, log = self.orchestrator.solve(pieces=SMALL_PIECES, board_dim=6)
        self.assertEqual("dot", log.order[-1])
        shadows = [piece.average_shadow for piece in log.pieces]
        self.assertEqual(sorted(shadows, reverse=True), shadows)

    def test_sorting_can_be_disabled(self):
        _, log = self.orchestrator.solve(pieces=SMALL_PIECES, board_dim=6, sort_by_shadow=False)
        self.assertEqual(["dot", "bar", "corner"], log.order)

    def test_no_solution_is_not_an_error(self):
        events = []
        pieces = (PieceSpec("a", 1, 1, "1"), PieceSpec("b", 1, 1, "1"))
        result, log = self.orchestrator.solve(progress_callback=events.append, pieces=pieces, board_dim=1)
        self.assertIsNone(result)
        self.assertFalse(log.success)
        self.assertFalse(events[-1]["success"])

    def test_malformed_piece_raises_before_search(self):
        events = []
        pieces = (PieceSpec("wide", 3, 1, "1111"),)
        with self.assertRaises(PieceDefinitionError):
            self.orchestrator.solve(progress_callback=events.append, pieces=pieces, board_dim=4)
        self.assertNotIn("search_started", [event["type"] for event in events])

    def test_parallel_mode_reports_branches(self):
        events = []
        result, log = self.orchestrator.solve(
            progress_callback=events.append,
            pieces=SMALL_PIECES,
            board_dim=5,
            mode="parallel",
            executor="thread",
            stop_on_first=False,
        )
        self.assertIsNotNone(result)
        branch_events = [event for event in events if event["type"] == "branch_completed"]
        self.assertEqual(log.fan_out.branches, len(branch_events))
        self.assertEqual(log.fan_out.branches, log.fan_out.completed)
        self.assertEqual(0, result.branch_index)
        self.assertTrue(result.chain.is_valid())

    def test_parallel_mode_uses_configured_driver(self):
        with mock.patch("polyomino.orchestrator.FanOutDriver") as driver_cls:
            driver = driver_cls.return_value
            driver.solve.return_value = None
            driver.slot.branch = None
            self.orchestrator.solve(
                pieces=SMALL_PIECES,
                board_dim=5,
                mode="parallel",
                executor="process",
                workers=3,
            )
        kwargs = driver_cls.call_args.kwargs
        self.assertEqual("process", kwargs["executor"])
        self.assertEqual(3, kwargs["workers"])
        self.assertEqual(SETTINGS.STOP_ON_FIRST_SOLUTION, kwargs["stop_on_first"])

    def test_linear_mode_passes_touching_policy(self):
        pieces = (PieceSpec("a", 1, 1, "1"), PieceSpec("b", 1, 1, "1"), PieceSpec("c", 1, 1, "1"))
        blocked, _ = self.orchestrator.solve(pieces=pieces, board_dim=2)
        allowed, _ = self.orchestrator.solve(pieces=pieces, board_dim=2, allow_touching=True)
        self.assertIsNone(blocked)
        self.assertIsNotNone(allowed)


if __name__ == "__main__":
    unittest.main()
