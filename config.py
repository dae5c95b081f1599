from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


@dataclass(frozen=True)
class PieceSpec:
    """Literal description of one puzzle piece.

    Attributes:
        pattern: Either a string of ``width * height`` ``0``/``1`` characters
            read row by row from the top-left corner of the bounding box, or an
            integer whose bit ``i`` is cell ``i`` of that same row-major box.
    """
    label: str
    width: int
    height: int
    pattern: Union[str, int]


class Settings:
    BOARD_DIM = 10

    PIECES = (
        PieceSpec("+", 3, 3, "010111010"),
        PieceSpec("Z", 3, 3, "110010011"),
        PieceSpec("-L", 3, 3, "010110011"),
        PieceSpec("_L", 3, 3, "010010111"),
        PieceSpec("|", 1, 5, "11111"),
        PieceSpec("Li", 2, 3, "101111"),
        PieceSpec("|.", 2, 4, "10101110"),
        PieceSpec("L_", 3, 3, "100100111"),
        PieceSpec("C", 2, 3, "111011"),
        PieceSpec("M", 3, 3, "110011001"),
        PieceSpec("_S", 4, 2, "00111110"),
        PieceSpec("L", 2, 4, "10101011"),
    )

    # "linear" runs one depth-first search; "parallel" fans out one task per
    # orientation of the first piece.
    SOLVE_MODE = "linear"
    # The search is CPU bound and threads share one interpreter lock. "thread"
    # is still accepted for debugging and small boards.
    FAN_OUT_EXECUTOR = "process"
    FAN_OUT_WORKERS: Optional[int] = None

    # With False every fan-out branch runs to exhaustion and all solutions are
    # collected before the lowest branch's solution is reported.
    STOP_ON_FIRST_SOLUTION = True

    # Placed pieces reserve their side neighbours, so two pieces may never
    # share an edge. Setting this to True only forbids shared cells.
    ALLOW_TOUCHING = False

    SORT_BY_SHADOW = True
    TIME_LIMIT_SEC: Optional[float] = None

    # Process workers see the cancel flag through a manager proxy, so polling
    # it on every node would dominate the search.
    PROCESS_CANCEL_CHECK_INTERVAL = 256

    EMPTY_SYMBOL = "."

    OUTPUT_DIR = Path("outputs")
    LOG_DIR = Path("static")
    LOG_LEVEL = "INFO"


SETTINGS = Settings()
