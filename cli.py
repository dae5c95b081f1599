from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

from config import SETTINGS
from polyomino.models import PieceDefinitionError
from polyomino.orchestrator import EXECUTORS, MODES, PuzzleOrchestrator

LOG_FORMAT = "{asctime} [{levelname:5}] {name} - {message}"


def parse_commandline(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Place every polyomino piece on the board without overlaps.")

    parser.add_argument(
        "-ll", "--log-level",
        default=SETTINGS.LOG_LEVEL,
        help="Set the logging output level to CRITICAL, ERROR, WARNING, INFO or DEBUG (default: %(default)s)",
        dest="log_level",
        metavar="level",
    )
    parser.add_argument(
        "-m", "--mode",
        choices=MODES,
        default=SETTINGS.SOLVE_MODE,
        help="Run a single search or fan out over the first piece (default: %(default)s)",
    )
    parser.add_argument(
        "-x", "--executor",
        choices=EXECUTORS,
        default=SETTINGS.FAN_OUT_EXECUTOR,
        help="Worker pool used in parallel mode (default: %(default)s)",
    )
    parser.add_argument(
        "-w", "--workers",
        type=int,
        default=SETTINGS.FAN_OUT_WORKERS,
        help="Maximum number of parallel workers (default: executor default)",
    )
    parser.add_argument(
        "--collect-all",
        action="store_true",
        help="In parallel mode let every branch run to exhaustion instead of stopping at the first solution",
    )
    parser.add_argument(
        "--allow-touching",
        action=argparse.BooleanOptionalAction,
        default=SETTINGS.ALLOW_TOUCHING,
        help="Only forbid shared cells; by default pieces may not share an edge either",
    )
    parser.add_argument(
        "--no-sort",
        action="store_true",
        help="Keep the catalogue order instead of sorting pieces by average shadow",
    )
    parser.add_argument(
        "-t", "--time-limit",
        type=float,
        default=SETTINGS.TIME_LIMIT_SEC,
        help="Give up after this many seconds (default: no limit)",
        dest="time_limit",
        metavar="seconds",
    )
    parser.add_argument(
        "-of", "--output-folder",
        default="",
        help="Folder for the log file and solution (default: timestamp under the output directory)",
        dest="runfolder",
        metavar="folder",
    )

    options = parser.parse_args(argv)
    options.log_level_int = getattr(logging, str(options.log_level).upper(), logging.INFO)
    if not options.runfolder:
        options.runfolder = str(SETTINGS.OUTPUT_DIR / time.strftime("%Y-%m-%d-%H-%M-%S", time.localtime()))
    return options


def setup_logging(options: argparse.Namespace) -> None:
    os.makedirs(options.runfolder, exist_ok=True)

    fh = logging.FileHandler(os.path.join(options.runfolder, "solver.log"))
    fh.setLevel(options.log_level_int)

    ch = logging.StreamHandler()
    ch.setLevel(options.log_level_int)

    ch.setFormatter(logging.Formatter(LOG_FORMAT, "%H:%M:%S", style="{"))
    fh.setFormatter(logging.Formatter(LOG_FORMAT, style="{"))

    root = logging.getLogger()
    root.addHandler(ch)
    root.addHandler(fh)
    root.setLevel(logging.DEBUG)


def run(options: argparse.Namespace) -> int:
    logger = logging.getLogger("polyomino.main")
    logger.info("Starting. Output goes to %s", options.runfolder)

    def progress(event: Dict[str, object]) -> None:
        if event.get("type") == "pieces_built":
            logger.info("Search order: %s", " ".join(str(label) for label in event.get("order") or []))  # type: ignore[union-attr]
        elif event.get("type") == "branch_completed":
            logger.debug("Top level %s done (%s/%s)", event.get("branch"), event.get("completed"), event.get("branches"))

    orchestrator = PuzzleOrchestrator()
    try:
        result, log = orchestrator.solve(
            progress_callback=progress,
            mode=options.mode,
            executor=options.executor,
            workers=options.workers,
            stop_on_first=not options.collect_all,
            allow_touching=options.allow_touching,
            sort_by_shadow=not options.no_sort,
            time_limit_sec=options.time_limit,
        )
    except PieceDefinitionError as exc:
        logger.error("Malformed piece: %s", exc)
        return 2

    if result is None:
        reason = "search was cancelled" if log.stats.cancelled else "no solution exists for this piece order"
        logger.warning("No solution found (%s)", reason)
        return 1

    solution_path = Path(options.runfolder) / "solution.txt"
    solution_path.write_text("\n".join(result.rows) + "\n", encoding="utf-8")
    print("\n".join(result.rows))
    logger.info(
        "Solved in %.2fs after %d nodes and %d backtracks. Written to %s",
        result.elapsed,
        result.stats.nodes,
        result.stats.backtracks,
        solution_path,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    options = parse_commandline(argv)
    setup_logging(options)
    return run(options)


if __name__ == "__main__":
    sys.exit(main())
