from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Tuple

DEFAULT_BOARD_DIM = 10


def _full_bits(dim: int) -> int:
    return (1 << (dim * dim)) - 1


def _column_bits(dim: int, column: int) -> int:
    bits = 0
    for y in range(dim):
        bits |= 1 << (y * dim + column)
    return bits


@dataclass(frozen=True)
class Mask:
    """Square bit grid, one bit per cell, row-major (bit index ``y * dim + x``).

    Masks are values: every operation returns a new mask, and two masks with
    the same dimension and bits are equal and hash alike, so they can be used
    directly as dictionary keys when deduplicating placements.
    """

    dim: int = DEFAULT_BOARD_DIM
    bits: int = 0

    def __post_init__(self) -> None:
        if self.dim <= 0:
            raise ValueError(f"Board dimension must be positive, got {self.dim}")
        if self.bits < 0 or self.bits >> (self.dim * self.dim):
            raise ValueError("Mask bits fall outside the board")

    @classmethod
    def empty(cls, dim: int = DEFAULT_BOARD_DIM) -> "Mask":
        return cls(dim, 0)

    @classmethod
    def from_cells(cls, cells: Iterable[Tuple[int, int]], dim: int = DEFAULT_BOARD_DIM) -> "Mask":
        mask = cls(dim, 0)
        for x, y in cells:
            mask = mask.or_bit(x, y, 1)
        return mask

    def _index(self, x: int, y: int) -> int:
        return y * self.dim + x

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.dim and 0 <= y < self.dim

    def at(self, x: int, y: int) -> int:
        # Reads outside the board are zero so neighbourhood scans need no edge cases.
        if not self.in_bounds(x, y):
            return 0
        return (self.bits >> self._index(x, y)) & 1

    def or_bit(self, x: int, y: int, value: int) -> "Mask":
        return Mask(self.dim, self.bits | ((value & 1) << self._index(x, y)))

    def and_bit(self, x: int, y: int, value: int) -> "Mask":
        if value & 1:
            return self
        return Mask(self.dim, self.bits & ~(1 << self._index(x, y)))

    def _check_peer(self, other: "Mask") -> None:
        if other.dim != self.dim:
            raise ValueError(f"Cannot combine a {self.dim}x{self.dim} mask with a {other.dim}x{other.dim} mask")

    def or_(self, other: "Mask") -> "Mask":
        self._check_peer(other)
        return Mask(self.dim, self.bits | other.bits)

    def and_(self, other: "Mask") -> "Mask":
        self._check_peer(other)
        return Mask(self.dim, self.bits & other.bits)

    __or__ = or_
    __and__ = and_

    def overlaps(self, other: "Mask") -> bool:
        self._check_peer(other)
        return (self.bits & other.bits) != 0

    def is_zero(self) -> bool:
        return self.bits == 0

    def popcount(self) -> int:
        return bin(self.bits).count("1")

    def cells(self) -> Iterator[Tuple[int, int]]:
        for y in range(self.dim):
            for x in range(self.dim):
                if self.at(x, y):
                    yield x, y

    def rotate90(self) -> "Mask":
        """Rotate clockwise about the board centre."""
        rotated = 0
        last = self.dim - 1
        for x, y in self.cells():
            rotated |= 1 << self._index(last - y, x)
        return Mask(self.dim, rotated)

    def mirror_horizontal(self) -> "Mask":
        mirrored = 0
        last = self.dim - 1
        for x, y in self.cells():
            mirrored |= 1 << self._index(last - x, y)
        return Mask(self.dim, mirrored)

    def shadow(self) -> "Mask":
        """Return the mask grown by one cell towards each side neighbour.

        Bits pushed past the left or right edge are dropped instead of
        wrapping into the adjacent row.
        """
        dim = self.dim
        full = _full_bits(dim)
        bits = self.bits
        right = (bits << 1) & ~_column_bits(dim, 0)
        left = (bits >> 1) & ~_column_bits(dim, dim - 1)
        down = bits << dim
        up = bits >> dim
        return Mask(dim, (bits | right | left | down | up) & full)

    def to_rows(self, filled: str = "X", empty: str = ".") -> List[str]:
        rows: List[str] = []
        for y in range(self.dim):
            rows.append("".join(filled if self.at(x, y) else empty for x in range(self.dim)))
        return rows

    def __str__(self) -> str:
        return "\n".join(self.to_rows()) + "\n"


__all__ = ["DEFAULT_BOARD_DIM", "Mask"]
