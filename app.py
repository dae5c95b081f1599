from __future__ import annotations

import json
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from flask import (
    Flask,
    Response,
    abort,
    jsonify,
    request,
    send_from_directory,
    stream_with_context,
)

from config import SETTINGS, PieceSpec
from polyomino.models import SolveResult
from polyomino.orchestrator import PuzzleOrchestrator, RunLog
from polyomino.render import render_placements

app = Flask(__name__)

orchestrator = PuzzleOrchestrator()


class RunLogWriter:
    def __init__(self, path: Path, overrides: Optional[Dict[str, object]] = None):
        self.path = path
        self._lock = threading.Lock()
        self._summary_written = False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        header = self._build_header(overrides)
        with self._lock:
            with self.path.open("w", encoding="utf-8") as fh:
                for line in header:
                    fh.write(f"{line}\n")

    def _build_header(self, overrides: Optional[Dict[str, object]]) -> List[str]:
        timestamp = datetime.now().astimezone().isoformat(timespec="seconds")
        overrides = overrides or {}
        header: List[str] = [
            "POLYOMINO SOLVER RUN LOG",
            f"Generated at: {timestamp}",
            f"BOARD_DIM={overrides.get('board_dim') or SETTINGS.BOARD_DIM}",
            f"SOLVE_MODE={overrides.get('mode') or SETTINGS.SOLVE_MODE}",
            f"ALLOW_TOUCHING={_first_set(overrides.get('allow_touching'), SETTINGS.ALLOW_TOUCHING)}",
            f"STOP_ON_FIRST_SOLUTION={_first_set(overrides.get('stop_on_first'), SETTINGS.STOP_ON_FIRST_SOLUTION)}",
        ]
        header.extend(self._piece_lines(overrides.get("pieces")))
        header.extend(["", "Events:"])
        return header

    def _piece_lines(self, pieces: object) -> List[str]:
        specs = list(pieces) if pieces else list(SETTINGS.PIECES)  # type: ignore[call-overload]
        if not specs:
            return ["Pieces: none selected"]
        lines: List[str] = ["Pieces:"]
        for spec in specs:
            lines.append(f"  - {spec.label}: {spec.width}x{spec.height} {spec.pattern}")
        lines.append(f"  Total pieces: {len(specs)}")
        return lines

    def handle_event(self, event: Dict[str, object]) -> None:
        event_type = event.get("type")
        lines: List[str] = []
        if event_type == "run_started":
            lines.append(
                "Run started on a {dim}x{dim} board with {count} pieces ({mode} mode).".format(
                    dim=event.get("board_dim"),
                    count=event.get("piece_count"),
                    mode=event.get("mode"),
                )
            )
        elif event_type == "pieces_built":
            pieces = event.get("pieces") or []
            lines.append("Pieces built (search order):")
            for piece in pieces:  # type: ignore[union-attr]
                lines.append(
                    "  {label}: {cells} cells, {orientations} orientations, average shadow {shadow}".format(
                        label=piece.get("label"),
                        cells=piece.get("cells"),
                        orientations=piece.get("orientations"),
                        shadow=piece.get("average_shadow"),
                    )
                )
        elif event_type == "search_started":
            lines.append(f"Search started with {event.get('branches')} top level branch(es).")
        elif event_type == "branch_completed":
            success = "yes" if event.get("success") else "no"
            cancelled = " (cancelled)" if event.get("cancelled") else ""
            lines.append(
                "Branch {branch} done{cancelled} ({completed}/{total}, solution: {success}, nodes: {nodes}).".format(
                    branch=event.get("branch"),
                    cancelled=cancelled,
                    completed=event.get("completed"),
                    total=event.get("branches"),
                    success=success,
                    nodes=event.get("nodes"),
                )
            )
        elif event_type == "run_completed":
            elapsed = event.get("overall_elapsed")
            elapsed_text = f"{elapsed:.2f}s" if isinstance(elapsed, (int, float)) else "unknown"
            success = "yes" if event.get("success") else "no"
            lines.append(f"Run completed in {elapsed_text} (success: {success}).")
            rows = event.get("rows")
            if rows:
                lines.append("  Solution:")
                for row in rows:  # type: ignore[union-attr]
                    lines.append(f"    {row}")
        elif event_type == "error":
            message = event.get("message")
            if message:
                lines.append(f"Error: {message}")

        if lines:
            self._append_lines(lines)

    def log_error(self, message: str) -> None:
        self._append_lines([f"Error: {message}"])

    def append_summary(
        self,
        log: Optional[RunLog],
        result: Optional[SolveResult],
        error: Optional[str] = None,
    ) -> None:
        if self._summary_written:
            return
        lines: List[str] = ["", "Summary:"]
        if log is not None:
            lines.append(f"  Mode: {log.mode}")
            lines.append(f"  Piece order: {' '.join(log.order)}")
            lines.append(f"  Total elapsed: {log.elapsed:.2f}s")
            lines.append(f"  Nodes visited: {log.stats.nodes:,}")
            lines.append(f"  Total backtracks performed: {log.stats.backtracks:,}")
            if log.fan_out is not None:
                lines.append(
                    "  Branches: {total} ({completed} exhausted, {cancelled} cancelled, {solutions} with a solution)".format(
                        total=log.fan_out.branches,
                        completed=log.fan_out.completed,
                        cancelled=log.fan_out.cancelled,
                        solutions=log.fan_out.solutions,
                    )
                )
        if result:
            lines.append("  Placements:")
            for entry in render_placements(result.chain):
                lines.append(f"    {entry['symbol']} = {entry['label']}")
        lines.append("")
        if error:
            lines.append(f"Run ended with error: {error}")
        elif result:
            lines.append("Run ended with a successful solution.")
        else:
            lines.append("Run completed without a solution.")
        self._append_lines(lines)
        self._summary_written = True

    def _append_lines(self, lines: List[str]) -> None:
        if not lines:
            return
        with self._lock:
            with self.path.open("a", encoding="utf-8") as fh:
                for line in lines:
                    fh.write(f"{line}\n")


def _first_set(value: object, default: object) -> object:
    return default if value is None else value


@dataclass
class RunState:
    queue: "queue.Queue[Dict[str, object]]"
    result: Optional[SolveResult] = None
    log: Optional[RunLog] = None
    error: Optional[str] = None
    done: bool = False
    thread: Optional[threading.Thread] = None
    created_at: float = field(default_factory=time.time)
    overrides: Dict[str, object] = field(default_factory=dict)
    log_path: Optional[Path] = None
    log_writer: Optional[RunLogWriter] = None


class RunManager:
    def __init__(self) -> None:
        self._runs: Dict[str, RunState] = {}
        self._lock = threading.Lock()

    def start_run(self, overrides: Dict[str, object]) -> str:
        run_id = uuid.uuid4().hex
        log_path = SETTINGS.LOG_DIR / "run_log.txt"
        log_writer = RunLogWriter(log_path, overrides)
        state = RunState(
            queue.Queue(),
            overrides=dict(overrides),
            log_path=log_path,
            log_writer=log_writer,
        )
        with self._lock:
            self._runs[run_id] = state
        thread = threading.Thread(
            target=self._worker,
            args=(run_id, overrides),
            daemon=True,
        )
        state.thread = thread
        thread.start()
        return run_id

    def get_state(self, run_id: str) -> Optional[RunState]:
        with self._lock:
            return self._runs.get(run_id)

    def _worker(self, run_id: str, overrides: Dict[str, object]) -> None:
        state = self.get_state(run_id)
        if state is None:
            return

        log_writer = state.log_writer

        def progress(event: Dict[str, object]) -> None:
            event.setdefault("run_id", run_id)
            state.queue.put(event)
            if log_writer:
                log_writer.handle_event(event)

        try:
            result, log = orchestrator.solve(progress_callback=progress, **overrides)
            state.result = result
            state.log = log
        except ValueError as exc:
            state.error = str(exc)
            if log_writer:
                log_writer.log_error(state.error)
            state.queue.put({"type": "error", "message": state.error, "run_id": run_id})
        finally:
            if log_writer:
                log_writer.append_summary(state.log, state.result, state.error)
            state.done = True
            state.queue.put(
                {
                    "type": "finished",
                    "success": state.result is not None,
                    "error": state.error,
                    "run_id": run_id,
                }
            )


run_manager = RunManager()


@app.route("/")
def index():
    return jsonify(
        {
            "board_dim": SETTINGS.BOARD_DIM,
            "solve_mode": SETTINGS.SOLVE_MODE,
            "fan_out_executor": SETTINGS.FAN_OUT_EXECUTOR,
            "stop_on_first_solution": SETTINGS.STOP_ON_FIRST_SOLUTION,
            "allow_touching": SETTINGS.ALLOW_TOUCHING,
            "pieces": [_spec_to_dict(spec) for spec in SETTINGS.PIECES],
        }
    )


@app.route("/solve", methods=["POST"])
def solve_puzzle():
    try:
        overrides = _parse_overrides(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    log_writer = RunLogWriter(SETTINGS.LOG_DIR / "run_log.txt", overrides)

    try:
        result, log = orchestrator.solve(progress_callback=log_writer.handle_event, **overrides)
    except ValueError as exc:
        message = str(exc)
        log_writer.log_error(message)
        log_writer.append_summary(None, None, message)
        return jsonify({"error": message, "outputs": {"run_log": log_writer.path.name}}), 400
    log_writer.append_summary(log, result, None)
    outputs = _write_outputs(result, log_writer.path)
    return jsonify(_result_payload(result, log, outputs))


@app.route("/runs", methods=["POST"])
def start_run():
    try:
        overrides = _parse_overrides(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    run_id = run_manager.start_run(overrides)
    return jsonify({"run_id": run_id}), 202


@app.route("/runs/<run_id>/stream")
def stream_run(run_id: str):
    state = run_manager.get_state(run_id)
    if state is None:
        abort(404)

    def event_stream():
        while True:
            if state.done and state.queue.empty():
                break
            try:
                event = state.queue.get(timeout=1)
            except queue.Empty:
                continue
            yield f"data: {json.dumps(event)}\n\n"
        yield "event: end\ndata: {}\n\n"

    return Response(stream_with_context(event_stream()), mimetype="text/event-stream")


@app.route("/runs/<run_id>/result")
def run_result(run_id: str):
    state = run_manager.get_state(run_id)
    if state is None:
        abort(404)
    if not state.done:
        return "", 202
    if state.error:
        outputs: Dict[str, str] = {}
        if state.log_path:
            outputs["run_log"] = state.log_path.name
        return jsonify({"error": state.error, "outputs": outputs}), 400
    outputs = _write_outputs(state.result, state.log_path)
    return jsonify(_result_payload(state.result, state.log, outputs))


@app.route("/outputs/<path:filename>")
def serve_output(filename: str):
    return send_from_directory(SETTINGS.OUTPUT_DIR.resolve(), filename)


@app.route("/logs/<path:filename>")
def serve_log(filename: str):
    return send_from_directory(SETTINGS.LOG_DIR.resolve(), filename, as_attachment=True)


def _spec_to_dict(spec: PieceSpec) -> Dict[str, object]:
    return {
        "label": spec.label,
        "width": spec.width,
        "height": spec.height,
        "pattern": spec.pattern,
    }


def _parse_overrides(payload: Mapping[str, object]) -> Dict[str, object]:
    if not isinstance(payload, Mapping):
        raise ValueError("Request body must be a JSON object")
    overrides: Dict[str, object] = {}
    pieces = payload.get("pieces")
    if pieces is not None:
        if not isinstance(pieces, list):
            raise ValueError("pieces must be a list")
        specs: List[PieceSpec] = []
        for entry in pieces:
            if not isinstance(entry, dict):
                raise ValueError("Each piece must be an object")
            try:
                specs.append(
                    PieceSpec(
                        str(entry["label"]),
                        int(entry["width"]),
                        int(entry["height"]),
                        entry["pattern"],
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Malformed piece entry {entry!r}") from exc
        overrides["pieces"] = tuple(specs)
    for key in ("board_dim", "workers"):
        value = payload.get(key)
        if value is not None:
            try:
                overrides[key] = int(value)  # type: ignore[call-overload]
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{key} must be an integer") from exc
    for key in ("mode", "executor"):
        value = payload.get(key)
        if value is not None:
            overrides[key] = str(value)
    for key in ("stop_on_first", "allow_touching", "sort_by_shadow"):
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be true or false")
        overrides[key] = value
    limit = payload.get("time_limit_sec")
    if limit is not None:
        try:
            overrides["time_limit_sec"] = float(limit)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValueError("time_limit_sec must be a number") from exc
    return overrides


def _result_payload(
    result: Optional[SolveResult],
    log: Optional[RunLog],
    outputs: Dict[str, str],
) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "success": result is not None,
        "outputs": outputs,
        "error": None if result else "No solution found",
    }
    if log is not None:
        payload["order"] = log.order
        payload["elapsed"] = round(log.elapsed, 3)
        payload["nodes"] = log.stats.nodes
        payload["backtracks"] = log.stats.backtracks
    if result is not None:
        payload["rows"] = result.rows
        payload["placements"] = render_placements(result.chain)
    return payload


def _write_outputs(
    result: SolveResult | None,
    log_path: Optional[Path] = None,
) -> Dict[str, str]:
    SETTINGS.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    SETTINGS.LOG_DIR.mkdir(parents=True, exist_ok=True)
    outputs: Dict[str, str] = {}
    if result:
        solution_path = SETTINGS.OUTPUT_DIR / "solution.txt"
        placements_path = SETTINGS.OUTPUT_DIR / "placements.csv"
        write_solution(solution_path, result)
        write_placements(placements_path, result)
        outputs["solution"] = solution_path.name
        outputs["placements"] = placements_path.name
    if log_path is not None:
        outputs["run_log"] = log_path.name
    return outputs


def write_solution(path: Path, result: SolveResult) -> None:
    path.write_text("\n".join(result.rows) + "\n", encoding="utf-8")


def write_placements(path: Path, result: SolveResult) -> None:
    lines = ["Order,Symbol,Label,Orientation,Cells"]
    for entry in render_placements(result.chain):
        cells = " ".join(f"{x}:{y}" for x, y in entry["cells"])  # type: ignore[union-attr]
        lines.append(f"{entry['order']},{entry['symbol']},{entry['label']},{entry['orientation']},{cells}")
    path.write_text("\n".join(lines), encoding="utf-8")


if __name__ == "__main__":
    app.run(debug=True)
