from __future__ import annotations

import logging
import multiprocessing
import threading
import time
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .backtracking_solver import BacktrackingSolver, CancelToken, SolverOptions
from .models import Chain, Piece, Placement, SolverStats

logger = logging.getLogger(__name__)

EXECUTORS = ("thread", "process")

BranchCallback = Callable[[int, Optional[Chain], SolverStats], None]


class SolutionSlot:
    """Holds at most one published chain; later publishers lose."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._chain: Optional[Chain] = None
        self._branch: Optional[int] = None

    def publish(self, branch: int, chain: Chain) -> bool:
        with self._lock:
            if self._chain is not None:
                return False
            self._chain = chain
            self._branch = branch
            return True

    @property
    def chain(self) -> Optional[Chain]:
        with self._lock:
            return self._chain

    @property
    def branch(self) -> Optional[int]:
        with self._lock:
            return self._branch


@dataclass
class FanOutStats:
    branches: int = 0
    completed: int = 0
    cancelled: int = 0
    solutions: int = 0
    elapsed: float = 0.0
    solver: SolverStats = field(default_factory=SolverStats)


def _search_branch(
    pieces: Sequence[Piece],
    branch: int,
    options: SolverOptions,
    cancel: Optional[CancelToken],
) -> Tuple[int, Optional[Chain], SolverStats]:
    first = pieces[0]
    seed = Chain.empty(first.dim).append(Placement(first, branch))
    solver = BacktrackingSolver(pieces[1:], options, cancel=cancel)
    found = solver.solve(seed)
    return branch, found, solver.stats


class FanOutDriver:
    """Runs one independent search per orientation of the first piece.

    With ``stop_on_first`` the first solution is published to a
    :class:`SolutionSlot` and the shared cancel flag tells every other branch
    to unwind at its next check. Without it every branch runs to exhaustion
    and the solution of the lowest branch index wins.
    """

    def __init__(
        self,
        pieces: Sequence[Piece],
        options: Optional[SolverOptions] = None,
        *,
        executor: str = "thread",
        workers: Optional[int] = None,
        stop_on_first: bool = True,
        process_check_interval: int = 256,
        branch_callback: Optional[BranchCallback] = None,
    ) -> None:
        if executor not in EXECUTORS:
            raise ValueError(f"Unknown executor {executor!r}; expected one of {', '.join(EXECUTORS)}")
        self.pieces = list(pieces)
        self.options = options or SolverOptions()
        self.executor = executor
        self.workers = workers
        self.stop_on_first = stop_on_first
        self.process_check_interval = max(process_check_interval, 1)
        self.branch_callback = branch_callback
        self.slot = SolutionSlot()
        self.stats = FanOutStats()
        self.solutions: Dict[int, Chain] = {}

    def solve(self) -> Optional[Chain]:
        if not self.pieces:
            return None
        start = time.time()
        self.stats.branches = len(self.pieces[0].orientations)
        logger.info("%d top levels", self.stats.branches)
        with ExitStack() as stack:
            pool, cancel, options = self._open(stack)
            futures: List[Future] = [
                pool.submit(_search_branch, self.pieces, branch, options, cancel)
                for branch in range(self.stats.branches)
            ]
            for future in as_completed(futures):
                branch, found, branch_stats = future.result()
                self._record(branch, found, branch_stats, cancel)
        self.stats.elapsed = time.time() - start
        if self.stop_on_first:
            return self.slot.chain
        if not self.solutions:
            return None
        first_branch = min(self.solutions)
        self.slot.publish(first_branch, self.solutions[first_branch])
        return self.solutions[first_branch]

    def _open(self, stack: ExitStack) -> Tuple[Executor, CancelToken, SolverOptions]:
        if self.executor == "process":
            manager = stack.enter_context(multiprocessing.Manager())
            cancel: CancelToken = manager.Event()
            options = SolverOptions(
                allow_touching=self.options.allow_touching,
                time_limit_sec=self.options.time_limit_sec,
                cancel_check_interval=max(self.options.cancel_check_interval, self.process_check_interval),
            )
            pool: Executor = stack.enter_context(ProcessPoolExecutor(max_workers=self.workers))
        else:
            cancel = threading.Event()
            options = self.options
            pool = stack.enter_context(ThreadPoolExecutor(max_workers=self.workers))
        return pool, cancel, options

    def _record(
        self,
        branch: int,
        found: Optional[Chain],
        branch_stats: SolverStats,
        cancel: CancelToken,
    ) -> None:
        self.stats.solver.merge(branch_stats)
        if branch_stats.cancelled:
            self.stats.cancelled += 1
        else:
            self.stats.completed += 1
        if found is not None:
            self.stats.solutions += 1
            self.solutions[branch] = found
            if self.stop_on_first and self.slot.publish(branch, found):
                logger.info("Branch %d found a solution, cancelling siblings", branch)
                cancel.set()
        logger.debug("Top level %d done (solution: %s)", branch, "yes" if found is not None else "no")
        if self.branch_callback:
            self.branch_callback(branch, found, branch_stats)


__all__ = ["EXECUTORS", "FanOutDriver", "FanOutStats", "SolutionSlot"]
