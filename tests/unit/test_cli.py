"""CLI tests using click's CliRunner."""

import json

import pytest
from click.testing import CliRunner

from mohtawa.cli.main import cli

EDL_DOC = {
    "timeline": [
        {"clipUrl": "https://cdn.example.com/a.mp4", "inSec": 0, "outSec": 2, "startSec": 0},
        {"clipUrl": "https://cdn.example.com/b.mp4", "inSec": 0, "outSec": 1.5, "startSec": 2},
    ],
    "audio": {"voiceoverUrl": "local://vo.mp3"},
    "output": {"width": 1080, "height": 1920, "fps": 30},
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "blobs"))
    monkeypatch.setenv("JOB_DISPATCHER", "inprocess")
    return tmp_path


def test_help_lists_command_groups(runner):
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    for name in ("edl", "reviews", "runs", "serve", "worker"):
        assert name in result.output


def test_edl_validate_ok(runner, tmp_path):
    path = tmp_path / "edl.json"
    path.write_text(json.dumps(EDL_DOC))

    result = runner.invoke(cli, ["edl", "validate", str(path)])

    assert result.exit_code == 0, result.output
    assert "valid" in result.output
    assert "2 clips" in result.output


def test_edl_validate_invalid_exits_1(runner, tmp_path):
    path = tmp_path / "edl.json"
    path.write_text(json.dumps({"timeline": []}))

    result = runner.invoke(cli, ["edl", "validate", str(path)])

    assert result.exit_code == 1
    assert "invalid" in result.output


def test_edl_validate_rejects_non_json(runner, tmp_path):
    path = tmp_path / "edl.json"
    path.write_text("{")

    result = runner.invoke(cli, ["edl", "validate", str(path)])

    assert result.exit_code != 0
    assert "invalid JSON" in result.output


def test_edl_plan_is_deterministic_with_seed(runner, tmp_path):
    clips = tmp_path / "clips.json"
    clips.write_text(json.dumps([f"https://cdn.example.com/{n}.mp4" for n in "abcd"]))
    args = ["edl", "plan", "--clips", str(clips), "--voiceover-duration", "12", "--seed", "7"]

    first = runner.invoke(cli, args)
    second = runner.invoke(cli, args)

    assert first.exit_code == 0, first.output
    assert first.output == second.output
    planned = json.loads(first.output)
    assert planned["audio"]["voiceoverUrl"] == "local://voiceover.mp3"
    end = max(c["startSec"] + c["outSec"] - c["inSec"] for c in planned["timeline"])
    assert end == pytest.approx(12.0)


def test_edl_plan_requires_clips(runner, tmp_path):
    clips = tmp_path / "clips.json"
    clips.write_text(json.dumps([{"title": "no url"}]))

    result = runner.invoke(cli, ["edl", "plan", "--clips", str(clips), "--voiceover-duration", "5"])

    assert result.exit_code != 0
    assert "No clips" in result.output


def test_runs_start_executes_graph(runner, cli_env):
    graph = cli_env / "flow.json"
    graph.write_text(
        json.dumps(
            {
                "steps": [
                    {"id": "t", "category": "trigger", "type": "manual-trigger"},
                    {"id": "m", "category": "logic", "type": "merge"},
                ],
                "edges": [{"source": "t", "target": "m"}],
            }
        )
    )

    result = runner.invoke(cli, ["runs", "start", str(graph)])

    assert result.exit_code == 0, result.output
    assert "completed" in result.output


def test_runs_start_reports_cycles(runner, cli_env):
    graph = cli_env / "loop.json"
    graph.write_text(
        json.dumps(
            {
                "steps": [
                    {"id": "a", "category": "logic", "type": "merge"},
                    {"id": "b", "category": "logic", "type": "merge"},
                ],
                "edges": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
            }
        )
    )

    result = runner.invoke(cli, ["runs", "start", str(graph)])

    assert result.exit_code == 1
    assert "cycle" in result.output


def test_runs_status_unknown_run(runner, cli_env):
    result = runner.invoke(cli, ["runs", "status", "00000000-0000-0000-0000-000000000000"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_runs_status_rejects_bad_uuid(runner, cli_env):
    result = runner.invoke(cli, ["runs", "status", "nope"])

    assert result.exit_code == 2


def test_review_edit_requires_edl(runner, cli_env):
    result = runner.invoke(
        cli, ["runs", "review", "00000000-0000-0000-0000-000000000000", "gate", "--action", "edit"]
    )

    assert result.exit_code == 2
    assert "--edl" in result.output


def test_reviews_expire_with_nothing_pending(runner, cli_env):
    result = runner.invoke(cli, ["reviews", "expire"])

    assert result.exit_code == 0, result.output


def test_serve_uses_configured_host_and_port(runner, monkeypatch):
    import uvicorn

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setenv("API_PORT", "9123")

    result = runner.invoke(cli, ["serve", "--host", "0.0.0.0"])

    assert result.exit_code == 0, result.output
    app, kwargs = calls[0]
    assert app == "mohtawa.api.server:app"
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 9123
