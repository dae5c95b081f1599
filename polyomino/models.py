from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .mask import DEFAULT_BOARD_DIM, Mask


class PieceDefinitionError(ValueError):
    """Raised when a piece literal cannot describe a placeable piece."""


@dataclass(frozen=True, eq=False)
class Piece:
    label: str
    dim: int
    orientations: Tuple[Mask, ...]
    shadows: Tuple[Mask, ...]

    def __post_init__(self) -> None:
        if len(self.orientations) != len(self.shadows):
            raise PieceDefinitionError(
                f"Piece {self.label!r} has {len(self.orientations)} orientations but {len(self.shadows)} shadows"
            )

    @property
    def cell_count(self) -> int:
        if not self.orientations:
            return 0
        return self.orientations[0].popcount()

    def __len__(self) -> int:
        return len(self.orientations)

    def __repr__(self) -> str:
        return f"Piece({self.label!r}, orientations={len(self.orientations)})"


@dataclass(frozen=True)
class Placement:
    piece: Piece
    index: int

    @property
    def mask(self) -> Mask:
        return self.piece.orientations[self.index]

    @property
    def shadow(self) -> Mask:
        return self.piece.shadows[self.index]


@dataclass(frozen=True)
class Chain:
    """Ordered, immutable sequence of placements.

    ``shadow`` and ``occupied`` are the OR of the members' shadows and masks.
    They are carried forward on every ``append`` so a search node never has to
    walk the whole chain.
    """

    dim: int = DEFAULT_BOARD_DIM
    placements: Tuple[Placement, ...] = ()
    shadow: Mask = field(default=None)  # type: ignore[assignment]
    occupied: Mask = field(default=None)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.shadow is None or self.occupied is None:
            shadow = Mask.empty(self.dim)
            occupied = Mask.empty(self.dim)
            for placement in self.placements:
                shadow = shadow.or_(placement.shadow)
                occupied = occupied.or_(placement.mask)
            object.__setattr__(self, "shadow", shadow)
            object.__setattr__(self, "occupied", occupied)

    @classmethod
    def empty(cls, dim: int = DEFAULT_BOARD_DIM) -> "Chain":
        return cls(dim)

    def append(self, placement: Placement) -> "Chain":
        return Chain(
            self.dim,
            self.placements + (placement,),
            self.shadow.or_(placement.shadow),
            self.occupied.or_(placement.mask),
        )

    def combined_shadow(self) -> Mask:
        """Recompute the shadow from the members instead of the carried value."""
        shadow = Mask.empty(self.dim)
        for placement in self.placements:
            shadow = shadow.or_(placement.shadow)
        return shadow

    def is_valid(self) -> bool:
        occupied = Mask.empty(self.dim)
        for placement in self.placements:
            if occupied.overlaps(placement.mask):
                return False
            occupied = occupied.or_(placement.mask)
        return True

    def __len__(self) -> int:
        return len(self.placements)

    def __iter__(self) -> Iterator[Placement]:
        return iter(self.placements)

    def __getitem__(self, index: int) -> Placement:
        return self.placements[index]


@dataclass
class SolverStats:
    nodes: int = 0
    backtracks: int = 0
    elapsed: float = 0.0
    cancelled: bool = False

    def merge(self, other: "SolverStats") -> None:
        self.nodes += other.nodes
        self.backtracks += other.backtracks
        self.elapsed = max(self.elapsed, other.elapsed)
        self.cancelled = self.cancelled or other.cancelled


@dataclass
class SolveResult:
    chain: Chain
    board_dim: int
    mode: str
    rows: List[str]
    elapsed: float
    stats: SolverStats
    branch_index: Optional[int] = None

    @property
    def piece_labels(self) -> List[str]:
        return [placement.piece.label for placement in self.chain]
