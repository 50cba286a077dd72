from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from careerloop.core.progress_store import ProgressStore
from careerloop.daemon import cli
from careerloop.runtime.service import RuntimeService

NOW = datetime(2025, 1, 29, 6, 0, tzinfo=UTC)


def _runtime(tmp_path: Path) -> RuntimeService:
    return RuntimeService(
        store=ProgressStore(db_path=tmp_path / "careerloop.sqlite3"),
        config={"timezone": "Asia/Kolkata"},
        now=lambda: NOW,
    )


def _run(capsys: pytest.CaptureFixture[str], runtime: RuntimeService, *argv: str) -> tuple[int, dict]:
    rc = cli.main(list(argv), runtime=runtime)
    out = capsys.readouterr().out
    return rc, json.loads(out) if out.strip().startswith("{") else {"raw": out}


def test_weekly_commands_round_trip(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    runtime = _runtime(tmp_path)
    assert _run(capsys, runtime, "sync-catalog")[0] == 0
    assert _run(capsys, runtime, "add-profile", "u1", "--name", "Uma")[0] == 0

    rc, out = _run(capsys, runtime, "instantiate", "u1", "--mode", "reset", "--track", "job_hunting")
    assert rc == 0
    assert out["mode"] == "reset"
    task_id = next(task["user_task_id"] for task in out["user_tasks"] if task["task_code"] == "JH_APPLY_3")

    rc, out = _run(capsys, runtime, "submit-evidence", task_id, "url", "--url", "https://jobs.example.com/applied")
    assert rc == 0
    assert out["status"] == "SUBMITTED"

    for idx in range(3):
        rc, _ = _run(
            capsys,
            runtime,
            "record-signal",
            "u1",
            "APPLICATION_SUBMITTED",
            "--happened-at",
            f"2025-01-2{7 + idx}T10:00:00+05:30",
            "--metadata-json",
            json.dumps({"company": f"c{idx}"}),
        )
        assert rc == 0

    rc, out = _run(capsys, runtime, "verify", "u1")
    assert rc == 0
    apply_result = next(item for item in out["results"] if item["task_code"] == "JH_APPLY_3")
    assert apply_result["new_status"] == "VERIFIED"
    assert apply_result["new_points"] == 15

    rc, out = _run(capsys, runtime, "score", "u1")
    assert (rc, out["points_total"]) == (0, 15)
    rc, out = _run(capsys, runtime, "ledger", "u1", "--limit", "5")
    assert [entry["activity_type"] for entry in out["entries"]] == ["job_hunting_task_completion"]


def test_review_and_run_weekly(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    runtime = _runtime(tmp_path)
    _run(capsys, runtime, "sync-catalog")
    _run(capsys, runtime, "add-profile", "u1")

    rc, out = _run(capsys, runtime, "run-weekly", "--period", "2025-05")
    assert rc == 0
    assert out["verify"]["processed"][0]["user_id"] == "u1"

    task_id = runtime.list_user_tasks(user_id="u1")["user_tasks"][0]["user_task_id"]
    rc, out = _run(capsys, runtime, "review", task_id, "approve", "--reviewer", "coach")
    assert rc == 0
    assert out["user_task"]["status"] == "VERIFIED"


def test_domain_errors_return_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    runtime = _runtime(tmp_path)

    assert cli.main(["verify", "ghost"], runtime=runtime) == 1
    assert "does not exist" in capsys.readouterr().out

    assert cli.main(["instantiate", "--mode", "ensure"], runtime=runtime) == 2
    assert "user_id is required" in capsys.readouterr().out

    assert cli.main(["verify", "u1", "--period", "2025-99"], runtime=runtime) == 1
    assert "Invalid period key" in capsys.readouterr().out


def test_parser_requires_mode_for_instantiate():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["instantiate", "u1"])
