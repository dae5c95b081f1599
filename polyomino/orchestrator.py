from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import SETTINGS, PieceSpec, Settings

from .backtracking_solver import BacktrackingSolver, SolverOptions
from .fan_out import EXECUTORS, FanOutDriver, FanOutStats
from .models import Chain, Piece, SolveResult, SolverStats
from .pieces import average_shadow, build_pieces, order_by_average_shadow
from .render import render_chain

MODES = ("linear", "parallel")

ProgressCallback = Callable[[Dict[str, object]], None]


@dataclass
class RunConfig:
    pieces: Tuple[PieceSpec, ...]
    board_dim: int
    mode: str
    executor: str
    workers: Optional[int]
    stop_on_first: bool
    allow_touching: bool
    sort_by_shadow: bool
    time_limit_sec: Optional[float]
    process_check_interval: int

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS, **overrides: object) -> "RunConfig":
        values: Dict[str, object] = {
            "pieces": tuple(settings.PIECES),
            "board_dim": settings.BOARD_DIM,
            "mode": settings.SOLVE_MODE,
            "executor": settings.FAN_OUT_EXECUTOR,
            "workers": settings.FAN_OUT_WORKERS,
            "stop_on_first": settings.STOP_ON_FIRST_SOLUTION,
            "allow_touching": settings.ALLOW_TOUCHING,
            "sort_by_shadow": settings.SORT_BY_SHADOW,
            "time_limit_sec": settings.TIME_LIMIT_SEC,
            "process_check_interval": settings.PROCESS_CANCEL_CHECK_INTERVAL,
        }
        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise ValueError(f"Unknown run option: {key}")
            if value is not None:
                values[key] = value
        values["pieces"] = tuple(values["pieces"])  # type: ignore[arg-type]
        config = cls(**values)  # type: ignore[arg-type]
        config.validate()
        return config

    def validate(self) -> None:
        if self.mode not in MODES:
            raise ValueError(f"Unknown solve mode {self.mode!r}; expected one of {', '.join(MODES)}")
        if self.executor not in EXECUTORS:
            raise ValueError(f"Unknown executor {self.executor!r}; expected one of {', '.join(EXECUTORS)}")
        if self.board_dim <= 0:
            raise ValueError("Board dimension must be positive")
        if not self.pieces:
            raise ValueError("No pieces selected")
        if self.workers is not None and self.workers <= 0:
            raise ValueError("Worker count must be positive")


@dataclass
class PieceSummary:
    label: str
    cells: int
    orientations: int
    average_shadow: float


@dataclass
class RunLog:
    mode: str
    board_dim: int
    pieces: List[PieceSummary] = field(default_factory=list)
    elapsed: float = 0.0
    success: bool = False
    stats: SolverStats = field(default_factory=SolverStats)
    fan_out: Optional[FanOutStats] = None

    @property
    def order(self) -> List[str]:
        return [piece.label for piece in self.pieces]


class PuzzleOrchestrator:
    logger = logging.getLogger("polyomino.orchestrator")

    def __init__(self, settings: Settings = SETTINGS) -> None:
        self.settings = settings

    def solve(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        **overrides: object,
    ) -> Tuple[Optional[SolveResult], RunLog]:
        def emit(event_type: str, **payload: object) -> None:
            if progress_callback:
                event = {"type": event_type}
                event.update(payload)
                progress_callback(event)

        config = RunConfig.from_settings(self.settings, **overrides)
        overall_start = time.time()
        emit(
            "run_started",
            mode=config.mode,
            board_dim=config.board_dim,
            piece_count=len(config.pieces),
            executor=config.executor if config.mode == "parallel" else None,
            stop_on_first=config.stop_on_first,
            allow_touching=config.allow_touching,
        )

        pieces = self.prepare_pieces(config)
        log = RunLog(config.mode, config.board_dim)
        log.pieces = [
            PieceSummary(piece.label, piece.cell_count, len(piece.orientations), average_shadow(piece))
            for piece in pieces
        ]
        emit(
            "pieces_built",
            pieces=[
                {
                    "label": summary.label,
                    "cells": summary.cells,
                    "orientations": summary.orientations,
                    "average_shadow": round(summary.average_shadow, 3),
                }
                for summary in log.pieces
            ],
            order=log.order,
        )
        total_cells = sum(summary.cells for summary in log.pieces)
        if total_cells > config.board_dim * config.board_dim:
            self.logger.warning(
                "Pieces cover %d cells but the board only has %d", total_cells, config.board_dim ** 2
            )

        options = SolverOptions(
            allow_touching=config.allow_touching,
            time_limit_sec=config.time_limit_sec,
        )
        if config.mode == "parallel":
            chain, branch_index = self._run_fan_out(pieces, options, config, log, emit, overall_start)
        else:
            chain, branch_index = self._run_linear(pieces, options, log, emit, overall_start), None

        log.elapsed = time.time() - overall_start
        log.success = chain is not None
        result: Optional[SolveResult] = None
        if chain is not None:
            result = SolveResult(
                chain=chain,
                board_dim=config.board_dim,
                mode=config.mode,
                rows=render_chain(chain, self.settings.EMPTY_SYMBOL),
                elapsed=log.elapsed,
                stats=log.stats,
                branch_index=branch_index,
            )
            self.logger.info("Found a solution after %d nodes in %.2fs", log.stats.nodes, log.elapsed)
        else:
            self.logger.info("No solution after %d nodes in %.2fs", log.stats.nodes, log.elapsed)
        emit(
            "run_completed",
            success=log.success,
            overall_elapsed=log.elapsed,
            nodes=log.stats.nodes,
            backtracks=log.stats.backtracks,
            cancelled=log.stats.cancelled,
            rows=result.rows if result else None,
        )
        return result, log

    def prepare_pieces(self, config: RunConfig) -> List[Piece]:
        pieces = build_pieces(config.pieces, config.board_dim)
        if config.sort_by_shadow:
            pieces = order_by_average_shadow(pieces)
        return pieces

    def _run_linear(
        self,
        pieces: Sequence[Piece],
        options: SolverOptions,
        log: RunLog,
        emit: Callable[..., None],
        overall_start: float,
    ) -> Optional[Chain]:
        emit("search_started", mode="linear", branches=1)

        def report(solver_instance: BacktrackingSolver) -> None:
            emit(
                "search_progress",
                nodes=solver_instance.stats.nodes,
                backtracks=solver_instance.stats.backtracks,
                attempt_elapsed=solver_instance.stats.elapsed,
                overall_elapsed=time.time() - overall_start,
            )

        solver = BacktrackingSolver(pieces, options, progress_callback=report)
        chain = solver.solve()
        log.stats = solver.stats
        return chain

    def _run_fan_out(
        self,
        pieces: Sequence[Piece],
        options: SolverOptions,
        config: RunConfig,
        log: RunLog,
        emit: Callable[..., None],
        overall_start: float,
    ) -> Tuple[Optional[Chain], Optional[int]]:
        def on_branch(branch: int, found: Optional[Chain], branch_stats: SolverStats) -> None:
            emit(
                "branch_completed",
                branch=branch,
                success=found is not None,
                cancelled=branch_stats.cancelled,
                nodes=branch_stats.nodes,
                completed=driver.stats.completed + driver.stats.cancelled,
                branches=driver.stats.branches,
                overall_elapsed=time.time() - overall_start,
            )

        driver = FanOutDriver(
            pieces,
            options,
            executor=config.executor,
            workers=config.workers,
            stop_on_first=config.stop_on_first,
            process_check_interval=config.process_check_interval,
            branch_callback=on_branch,
        )
        emit(
            "search_started",
            mode="parallel",
            branches=len(pieces[0].orientations) if pieces else 0,
            executor=config.executor,
        )
        chain = driver.solve()
        log.stats = driver.stats.solver
        log.fan_out = driver.stats
        return chain, driver.slot.branch


__all__ = ["MODES", "PieceSummary", "PuzzleOrchestrator", "RunConfig", "RunLog"]
