"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from wrought.action_log import ActionLog
from wrought.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def built(project_root: Path, runner: CliRunner) -> Path:
    """A project where gen.lua has written out.txt once."""
    (project_root / "gen.lua").write_text('write_file("out.txt", "hello")\nprint("built")\n')
    result = runner.invoke(cli, ["--project-root", str(project_root), "run-script", "gen.lua"])
    assert result.exit_code == 0, result.output
    return project_root


def _invoke(runner: CliRunner, root: Path, *args: str):
    return runner.invoke(cli, ["--project-root", str(root), *args])


def test_run_script_prints_output(built: Path, runner: CliRunner) -> None:
    (built / "named.lua").write_text('write_file(params.name, "x")\nprint("wrote " .. params.name)\n')
    result = _invoke(runner, built, "run-script", "named.lua", "-p", "name=notes.txt")
    assert result.exit_code == 0, result.output
    assert "wrote notes.txt" in result.stdout
    assert (built / "notes.txt").exists()


def test_run_script_rejects_bad_parameters(built: Path, runner: CliRunner) -> None:
    result = _invoke(runner, built, "run-script", "gen.lua", "-p", "novalue")
    assert result.exit_code == 1
    assert "key=value" in result.output


def test_status_json(built: Path, runner: CliRunner) -> None:
    (built / "out.txt").write_text("edited")
    result = _invoke(runner, built, "status", "--json")
    assert result.exit_code == 0, result.output

    payload = json.loads(result.stdout)
    by_path = {f["path"]: f for f in payload["files"]}
    assert by_path["out.txt"]["status"] == "dirty"
    assert by_path["gen.lua"]["status"] == "untracked"
    assert not any(p.startswith(".wrought") for p in by_path)
    assert payload["summary"]["dirty"] == 1


def test_file_status_json(built: Path, runner: CliRunner) -> None:
    result = _invoke(runner, built, "file-status", "out.txt", "--json")
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["status"] == "clean"
    assert payload["command"] == "gen.lua"


def test_history_json(built: Path, runner: CliRunner) -> None:
    result = _invoke(runner, built, "history", "out.txt", "--json")
    assert result.exit_code == 0, result.output
    entries = json.loads(result.stdout)
    assert [e["kind"] for e in entries] == ["written"]


def test_log_json(built: Path, runner: CliRunner) -> None:
    (built / "bad.lua").write_text('error("no")\n')
    failed = _invoke(runner, built, "run-script", "bad.lua")
    assert failed.exit_code == 1
    assert "aborted" in failed.output

    committed = json.loads(_invoke(runner, built, "log", "--json").stdout)
    assert [g["command"] for g in committed] == ["gen.lua"]

    everything = json.loads(_invoke(runner, built, "log", "--all", "--json").stdout)
    assert sorted(g["state"] for g in everything) == ["aborted", "committed"]


def test_content_show(built: Path, runner: CliRunner) -> None:
    entries = json.loads(_invoke(runner, built, "history", "out.txt", "--json").stdout)
    result = _invoke(runner, built, "content-show", entries[0]["hash"])
    assert result.exit_code == 0, result.output
    assert result.stdout_bytes == b"hello"


def test_content_show_rejects_garbage(built: Path, runner: CliRunner) -> None:
    result = _invoke(runner, built, "content-show", "not-a-hash")
    assert result.exit_code == 1
    assert "not a content hash" in result.output


def test_recover(project_root: Path, runner: CliRunner) -> None:
    log = ActionLog(project_root / ".wrought" / "wrought.db")
    handle = log.begin_group("crashed.lua")
    log.close()

    refused = _invoke(runner, project_root, "recover")
    assert refused.exit_code == 1
    assert f"open group {handle.group_id}" in refused.output

    done = _invoke(runner, project_root, "recover", "--yes")
    assert done.exit_code == 0, done.output

    log = ActionLog(project_root / ".wrought" / "wrought.db")
    try:
        assert log.open_group_ids() == []
        assert log.get_group(handle.group_id).state == "aborted"
    finally:
        log.close()


def test_init(tmp_path: Path, runner: CliRunner) -> None:
    result = runner.invoke(cli, ["init", str(tmp_path / "fresh")])
    assert result.exit_code == 0, result.output
    assert (tmp_path / "fresh" / ".wrought" / "packages").is_dir()


def test_outside_a_project(tmp_path: Path, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 1
    assert "No .wrought/ directory found" in result.output


def test_status_of_dot_at_project_root(built: Path, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    (built / "chapters").mkdir()
    (built / "chapters" / "one.md").write_text("draft")
    monkeypatch.chdir(built)

    result = runner.invoke(cli, ["status", ".", "--json"])
    assert result.exit_code == 0, result.output
    paths = {f["path"] for f in json.loads(result.stdout)["files"]}
    assert {"out.txt", "gen.lua", "chapters/one.md"} <= paths

    monkeypatch.chdir(built / "chapters")
    result = runner.invoke(cli, ["status", ".", "--json"])
    assert result.exit_code == 0, result.output
    assert [f["path"] for f in json.loads(result.stdout)["files"]] == ["chapters/one.md"]


def test_file_status_explains_dirty_and_stale(built: Path, runner: CliRunner) -> None:
    (built / "title.txt").write_text("Draft")
    (built / "cover.lua").write_text('write_file("cover.txt", read_file("title.txt"))\n')
    assert _invoke(runner, built, "run-script", "cover.lua").exit_code == 0

    (built / "title.txt").write_text("Final")
    (built / "cover.txt").write_text("hand edit")
    result = _invoke(runner, built, "file-status", "cover.txt")
    assert result.exit_code == 0, result.output
    assert "Dirty+Stale" in result.stdout
    assert "edited since the last write" in result.stdout
    assert "1 input(s) changed since the last write" in result.stdout
