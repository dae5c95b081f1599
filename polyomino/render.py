from __future__ import annotations

import string
from typing import Dict, List, Tuple

from .models import Chain

SYMBOLS = string.ascii_uppercase + string.ascii_lowercase + string.digits


def symbol_for(index: int) -> str:
    if index < 0 or index >= len(SYMBOLS):
        raise ValueError(f"No printable symbol for piece index {index}")
    return SYMBOLS[index]


def render_chain(chain: Chain, empty: str = ".") -> List[str]:
    """Draw the chain as rows of text, one symbol per chain position."""
    grid = [[empty for _ in range(chain.dim)] for _ in range(chain.dim)]
    for index, placement in enumerate(chain):
        symbol = symbol_for(index)
        for x, y in placement.mask.cells():
            grid[y][x] = symbol
    return ["".join(row) for row in grid]


def render_placements(chain: Chain) -> List[Dict[str, object]]:
    rows: List[Dict[str, object]] = []
    for index, placement in enumerate(chain):
        cells: List[Tuple[int, int]] = list(placement.mask.cells())
        rows.append(
            {
                "order": index,
                "symbol": symbol_for(index),
                "label": placement.piece.label,
                "orientation": placement.index,
                "cells": cells,
            }
        )
    return rows


__all__ = ["SYMBOLS", "render_chain", "render_placements", "symbol_for"]
