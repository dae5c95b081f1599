from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence, Union

from .mask import DEFAULT_BOARD_DIM, Mask
from .models import Piece, PieceDefinitionError

logger = logging.getLogger(__name__)

Pattern = Union[str, int]


def parse_pattern(label: str, width: int, height: int, pattern: Pattern) -> List[int]:
    """Return the row-major list of 0/1 cells of a piece's bounding box."""
    size = width * height
    if isinstance(pattern, str):
        text = pattern.strip()
        if len(text) != size:
            raise PieceDefinitionError(
                f"Piece {label!r}: pattern has {len(text)} cells, expected {width}x{height}={size}"
            )
        if any(ch not in "01" for ch in text):
            raise PieceDefinitionError(f"Piece {label!r}: pattern may only contain 0 and 1")
        cells = [int(ch) for ch in text]
    elif isinstance(pattern, int) and not isinstance(pattern, bool):
        if pattern < 0 or pattern >> size:
            raise PieceDefinitionError(
                f"Piece {label!r}: pattern {pattern:#b} does not fit a {width}x{height} box"
            )
        cells = [(pattern >> index) & 1 for index in range(size)]
    else:
        raise PieceDefinitionError(f"Piece {label!r}: unsupported pattern type {type(pattern).__name__}")
    if not any(cells):
        raise PieceDefinitionError(f"Piece {label!r}: pattern has no occupied cells")
    return cells


def _validate_box(label: str, width: int, height: int, dim: int) -> None:
    if width <= 0 or height <= 0:
        raise PieceDefinitionError(f"Piece {label!r}: width and height must be positive")
    if width > dim or height > dim:
        raise PieceDefinitionError(
            f"Piece {label!r}: {width}x{height} box does not fit a {dim}x{dim} board"
        )


def _symmetries(mask: Mask) -> Iterable[Mask]:
    for _ in range(4):
        yield mask
        mask = mask.rotate90()
    mask = mask.mirror_horizontal()
    for _ in range(4):
        yield mask
        mask = mask.rotate90()


def build_piece(
    label: str,
    width: int,
    height: int,
    pattern: Pattern,
    dim: int = DEFAULT_BOARD_DIM,
) -> Piece:
    """Enumerate every distinct placement of a piece on a ``dim`` x ``dim`` board.

    Each translation of the bounding box is expanded into the eight board
    symmetries. Rotating and mirroring about the board centre keeps a placement
    on the board, so the union covers every translated, rotated and mirrored
    copy of the shape. Equal masks collapse to one entry.
    """
    _validate_box(label, width, height, dim)
    cells = parse_pattern(label, width, height, pattern)

    translated: List[Mask] = []
    for y in range(dim - height + 1):
        for x in range(dim - width + 1):
            m = Mask.empty(dim)
            for iy in range(height):
                for ix in range(width):
                    if cells[iy * width + ix]:
                        m = m.or_bit(x + ix, y + iy, 1)
            translated.append(m)

    # mask -> shadow
    shadows: Dict[Mask, Mask] = {}
    for m in translated:
        for variant in _symmetries(m):
            if variant not in shadows:
                shadows[variant] = variant.shadow()

    piece = Piece(label, dim, tuple(shadows.keys()), tuple(shadows.values()))
    logger.debug("Built piece %s with %d orientations", label, len(piece.orientations))
    return piece


def build_pieces(specs: Sequence[object], dim: int = DEFAULT_BOARD_DIM) -> List[Piece]:
    """Build every piece of a catalogue of ``PieceSpec``-like objects."""
    pieces: List[Piece] = []
    seen: set[str] = set()
    for spec in specs:
        label = getattr(spec, "label")
        if label in seen:
            raise PieceDefinitionError(f"Duplicate piece label {label!r}")
        seen.add(label)
        pieces.append(
            build_piece(label, getattr(spec, "width"), getattr(spec, "height"), getattr(spec, "pattern"), dim)
        )
    return pieces


def average_shadow(piece: Piece) -> float:
    if not piece.shadows:
        return 0.0
    return sum(shadow.popcount() for shadow in piece.shadows) / len(piece.shadows)


def order_by_average_shadow(pieces: Sequence[Piece]) -> List[Piece]:
    """Most space-hungry pieces first so dead ends surface near the root."""
    return sorted(pieces, key=average_shadow, reverse=True)


__all__ = [
    "Pattern",
    "average_shadow",
    "build_piece",
    "build_pieces",
    "order_by_average_shadow",
    "parse_pattern",
]
