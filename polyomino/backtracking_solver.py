from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from .mask import Mask
from .models import Chain, Piece, Placement, SolverStats


class CancelToken(Protocol):
    def is_set(self) -> bool: ...

    def set(self) -> None: ...


@dataclass
class SolverOptions:
    allow_touching: bool = False
    time_limit_sec: Optional[float] = None
    cancel_check_interval: int = 1


ProgressCallback = Callable[["BacktrackingSolver"], None]


class BacktrackingSolver:
    """Depth-first search assigning one orientation per piece, in list order.

    Candidates for the next piece must stay clear of the chain's shadow, so
    placed pieces never touch edge to edge unless ``allow_touching`` is set.
    Surviving candidates are tried in ascending size of the footprint they
    would leave behind and the first complete chain is returned.
    """

    logger = logging.getLogger("polyomino.solve")

    def __init__(
        self,
        pieces: Sequence[Piece],
        options: Optional[SolverOptions] = None,
        cancel: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.pieces = list(pieces)
        self.options = options or SolverOptions()
        self.cancel = cancel
        self.stats = SolverStats()
        self._start_time = 0.0
        self._last_progress_report = 0.0
        self._progress_callback = progress_callback
        self._check_interval = max(self.options.cancel_check_interval, 1)

    def solve(self, chain: Optional[Chain] = None) -> Optional[Chain]:
        """Return the first complete chain extending ``chain``, or None."""
        if chain is None:
            dim = self.pieces[0].dim if self.pieces else Mask().dim
            chain = Chain.empty(dim)
        self._start_time = time.time()
        result = self._search(self.pieces, chain)
        self.stats.elapsed = time.time() - self._start_time
        if result is None and self.stats.cancelled:
            self.logger.debug("Search cancelled after %d nodes", self.stats.nodes)
        return result

    def _report_progress(self) -> None:
        if not self._progress_callback:
            return
        now = time.time()
        if now - self._last_progress_report < 0.25:
            return
        self._last_progress_report = now
        self._progress_callback(self)

    def _should_stop(self) -> bool:
        if self.stats.cancelled:
            return True
        if self.stats.nodes > 1 and self.stats.nodes % self._check_interval:
            return False
        elapsed = time.time() - self._start_time
        self.stats.elapsed = elapsed
        self._report_progress()
        limit = self.options.time_limit_sec
        if limit is not None and elapsed > limit:
            self.stats.cancelled = True
            if self.cancel is not None:
                self.cancel.set()
            return True
        if self.cancel is not None and self.cancel.is_set():
            self.stats.cancelled = True
            return True
        return False

    def _search(self, pieces: Sequence[Piece], chain: Chain) -> Optional[Chain]:
        self.stats.nodes += 1
        if not pieces:
            return chain
        if self._should_stop():
            return None
        piece = pieces[0]
        rest = pieces[1:]
        candidates = self.candidates(piece, chain)
        if not candidates and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                "<%02d> %sDead end: no room for piece %s",
                len(chain),
                "  " * len(chain),
                piece.label,
            )
        for placement in candidates:
            found = self._search(rest, chain.append(placement))
            if found is not None:
                return found
            if self.stats.cancelled:
                return None
        self.stats.backtracks += 1
        return None

    def candidates(self, piece: Piece, chain: Chain) -> List[Placement]:
        """Legal placements of ``piece`` next to ``chain``, best first."""
        shadow_bits = chain.shadow.bits
        blocked_bits = chain.occupied.bits if self.options.allow_touching else shadow_bits
        legal: List[Placement] = []
        for index, mask in enumerate(piece.orientations):
            if blocked_bits & mask.bits:
                continue
            legal.append(Placement(piece, index))
        legal.sort(key=lambda placement: bin(shadow_bits | placement.mask.bits).count("1"))
        return legal


def solve(
    pieces: Sequence[Piece],
    options: Optional[SolverOptions] = None,
    chain: Optional[Chain] = None,
) -> Optional[Chain]:
    return BacktrackingSolver(pieces, options).solve(chain)


__all__ = ["BacktrackingSolver", "CancelToken", "SolverOptions", "solve"]
