from pathlib import Path

import cli


def test_parse_commandline_defaults(tmp_path: Path) -> None:
    options = cli.parse_commandline(["-of", str(tmp_path)])
    assert options.mode == "linear"
    assert options.runfolder == str(tmp_path)
    assert options.collect_all is False
    assert options.log_level_int == 20


def test_parse_commandline_parallel_options(tmp_path: Path) -> None:
    options = cli.parse_commandline(
        ["-m", "parallel", "-x", "process", "-w", "4", "--collect-all", "-ll", "debug", "-of", str(tmp_path)]
    )
    assert options.mode == "parallel"
    assert options.executor == "process"
    assert options.workers == 4
    assert options.collect_all is True
    assert options.log_level_int == 10


def test_allow_touching_can_be_switched_off(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(cli.SETTINGS, "ALLOW_TOUCHING", True)
    assert cli.parse_commandline(["-of", str(tmp_path)]).allow_touching is True
    options = cli.parse_commandline(["--no-allow-touching", "-of", str(tmp_path)])
    assert options.allow_touching is False
    options = cli.parse_commandline(["--allow-touching", "-of", str(tmp_path)])
    assert options.allow_touching is True


def test_run_writes_solution(tmp_path: Path, monkeypatch, capsys) -> None:
    from config import SETTINGS, PieceSpec

    monkeypatch.setattr(SETTINGS, "BOARD_DIM", 4)
    monkeypatch.setattr(SETTINGS, "PIECES", (PieceSpec("dot", 1, 1, "1"), PieceSpec("bar", 1, 2, "11")))
    options = cli.parse_commandline(["-of", str(tmp_path)])

    assert cli.run(options) == 0
    rows = (tmp_path / "solution.txt").read_text(encoding="utf-8").splitlines()
    assert len(rows) == 4
    assert rows == capsys.readouterr().out.splitlines()


def test_run_reports_no_solution(tmp_path: Path, monkeypatch) -> None:
    from config import SETTINGS, PieceSpec

    monkeypatch.setattr(SETTINGS, "BOARD_DIM", 1)
    monkeypatch.setattr(SETTINGS, "PIECES", (PieceSpec("a", 1, 1, "1"), PieceSpec("b", 1, 1, "1")))
    options = cli.parse_commandline(["-of", str(tmp_path)])

    assert cli.run(options) == 1
    assert not (tmp_path / "solution.txt").exists()


def test_run_rejects_malformed_catalogue(tmp_path: Path, monkeypatch) -> None:
    from config import SETTINGS, PieceSpec

    monkeypatch.setattr(SETTINGS, "PIECES", (PieceSpec("bad", 2, 1, "1"),))
    options = cli.parse_commandline(["-of", str(tmp_path)])

    assert cli.run(options) == 2
