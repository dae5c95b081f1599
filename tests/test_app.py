import json
import time
from pathlib import Path

import pytest

import app as app_module
from config import SETTINGS


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(SETTINGS, "OUTPUT_DIR", tmp_path / "outputs")
    monkeypatch.setattr(SETTINGS, "LOG_DIR", tmp_path / "logs")
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


SMALL_REQUEST = {
    "board_dim": 4,
    "pieces": [
        {"label": "dot", "width": 1, "height": 1, "pattern": "1"},
        {"label": "bar", "width": 1, "height": 2, "pattern": "11"},
    ],
}


def test_index_lists_catalogue(client) -> None:
    response = client.get("/")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["board_dim"] == SETTINGS.BOARD_DIM
    assert len(payload["pieces"]) == len(SETTINGS.PIECES)
    assert payload["pieces"][0]["label"] == SETTINGS.PIECES[0].label


def test_solve_returns_rows_and_writes_outputs(client, tmp_path: Path) -> None:
    response = client.post("/solve", json=SMALL_REQUEST)
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert len(payload["rows"]) == 4
    assert [entry["label"] for entry in payload["placements"]] == payload["order"]
    solution = (tmp_path / "outputs" / "solution.txt").read_text(encoding="utf-8")
    assert solution.splitlines() == payload["rows"]
    placements = (tmp_path / "outputs" / "placements.csv").read_text(encoding="utf-8")
    assert placements.startswith("Order,Symbol,Label,Orientation,Cells")
    assert (tmp_path / "logs" / "run_log.txt").exists()


def test_solve_without_solution(client) -> None:
    body = {
        "board_dim": 1,
        "pieces": [
            {"label": "a", "width": 1, "height": 1, "pattern": "1"},
            {"label": "b", "width": 1, "height": 1, "pattern": "1"},
        ],
    }
    response = client.post("/solve", json=body)
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is False
    assert "rows" not in payload


def test_solve_rejects_malformed_piece(client) -> None:
    body = {"board_dim": 3, "pieces": [{"label": "x", "width": 2, "height": 2, "pattern": "111"}]}
    response = client.post("/solve", json=body)
    assert response.status_code == 400
    assert "pattern" in response.get_json()["error"]


def test_solve_rejects_incomplete_piece_entry(client) -> None:
    response = client.post("/solve", json={"pieces": [{"label": "x"}]})
    assert response.status_code == 400


@pytest.mark.parametrize("value", ["false", 0, "yes"])
def test_solve_rejects_non_boolean_switches(client, value) -> None:
    response = client.post("/solve", json={**SMALL_REQUEST, "allow_touching": value})
    assert response.status_code == 400
    assert "allow_touching" in response.get_json()["error"]


def test_solve_accepts_boolean_switches(client) -> None:
    body = {**SMALL_REQUEST, "allow_touching": False, "sort_by_shadow": False}
    response = client.post("/solve", json=body)
    assert response.status_code == 200
    assert response.get_json()["success"] is True


def test_background_run_streams_events(client) -> None:
    response = client.post("/runs", json=SMALL_REQUEST)
    assert response.status_code == 202
    run_id = response.get_json()["run_id"]

    state = app_module.run_manager.get_state(run_id)
    assert state is not None
    state.thread.join(timeout=30)

    stream = client.get(f"/runs/{run_id}/stream")
    body = stream.get_data(as_text=True)
    events = [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ") and line != "data: {}"
    ]
    types = [event["type"] for event in events]
    assert types[0] == "run_started"
    assert types[-1] == "finished"
    assert "run_completed" in types

    result = client.get(f"/runs/{run_id}/result")
    assert result.status_code == 200
    assert result.get_json()["success"] is True


def test_unknown_run_is_404(client) -> None:
    assert client.get("/runs/missing/result").status_code == 404
    assert client.get("/runs/missing/stream").status_code == 404


def test_run_result_pending_returns_202(client, monkeypatch) -> None:
    def slow_solve(progress_callback=None, **overrides):
        time.sleep(0.5)
        return None, None

    monkeypatch.setattr(app_module.orchestrator, "solve", slow_solve)
    run_id = client.post("/runs", json={}).get_json()["run_id"]
    assert client.get(f"/runs/{run_id}/result").status_code == 202
    app_module.run_manager.get_state(run_id).thread.join(timeout=5)
