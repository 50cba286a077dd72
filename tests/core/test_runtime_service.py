from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from careerloop.core.catalog import DEFAULT_CATALOG
from careerloop.core.errors import UserNotFound
from careerloop.core.progress_store import ProgressStore
from careerloop.runtime.service import RuntimeService

NOW = datetime(2025, 1, 29, 6, 0, tzinfo=UTC)


def _runtime(tmp_path: Path) -> RuntimeService:
    return RuntimeService(
        store=ProgressStore(db_path=tmp_path / "careerloop.sqlite3"),
        config={"timezone": "Asia/Kolkata"},
        now=lambda: NOW,
    )


def _engage_task_id(runtime: RuntimeService, user_id: str = "u1") -> str:
    tasks = runtime.list_user_tasks(user_id=user_id)["user_tasks"]
    return next(task["user_task_id"] for task in tasks if task["task_code"] == "LI_ENGAGE_NETWORK")


def test_health_reports_current_period(tmp_path: Path):
    runtime = _runtime(tmp_path)
    runtime.sync_catalog()
    out = runtime.health()
    assert out["ok"] is True
    assert out["current_period"] == "2025-05"
    assert out["timezone"] == "Asia/Kolkata"
    assert out["active_task_definitions"] == len(DEFAULT_CATALOG)


def test_sync_catalog_from_explicit_path(tmp_path: Path):
    runtime = _runtime(tmp_path)
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps([{"code": "JH_APPLY_3", "track": "job_hunting", "base_points": 15, "day_offset": 2}]),
        encoding="utf-8",
    )
    assert runtime.sync_catalog(path=path)["upserted"] == 1
    assert [item.code for item in runtime.store.list_task_definitions()] == ["JH_APPLY_3"]


def test_profile_validation_and_lookup_errors(tmp_path: Path):
    runtime = _runtime(tmp_path)
    with pytest.raises(ValueError):
        runtime.upsert_profile(user_id=" ")
    with pytest.raises(UserNotFound):
        runtime.record_signal(user_id="ghost", kind="COMMENTED", happened_at=NOW)
    with pytest.raises(UserNotFound):
        runtime.get_score(user_id="ghost")
    with pytest.raises(ValueError, match="mode"):
        runtime.instantiate("ghost", mode="rebuild")


def test_end_to_end_week(tmp_path: Path):
    runtime = _runtime(tmp_path)
    runtime.sync_catalog()
    assert runtime.upsert_profile(user_id="u1", display_name="Uma")["profile"]["display_name"] == "Uma"

    out = runtime.instantiate("u1", mode="ensure", track="linkedin")
    assert out["period"] == "2025-05"
    assert out["created"] == sum(1 for entry in DEFAULT_CATALOG if entry["track"] == "linkedin")

    task_id = _engage_task_id(runtime)
    runtime.submit_evidence(user_task_id=task_id, kind="URL", payload={"url": "https://www.linkedin.com/feed/update/1"})
    for idx, actor in enumerate(["alice", "bob", "carol"]):
        recorded = runtime.record_signal(
            user_id="u1",
            kind="reacted",
            actor=actor,
            happened_at=NOW - timedelta(hours=idx),
            external_id=f"evt-{idx}",
        )
        assert recorded["recorded"] is True
    assert runtime.record_signal(user_id="u1", kind="REACTED", actor="alice", happened_at=NOW, external_id="evt-0")[
        "recorded"
    ] is False

    verified = runtime.verify(user_id="u1")
    by_code = {item["task_code"]: item for item in verified["results"]}
    assert by_code["LI_ENGAGE_NETWORK"]["new_status"] == "VERIFIED"
    assert by_code["LI_ENGAGE_NETWORK"]["new_points"] == 15

    score = runtime.get_score(user_id="u1")
    assert score["points_total"] == 15
    ledger = runtime.list_ledger(user_id="u1")
    assert [entry["activity_id"] for entry in ledger["entries"]] == ["linkedin_task:LI_ENGAGE_NETWORK:2025-05"]
    assert runtime.list_notifications(user_id="u1")["notifications"][0]["kind"] == "task_verified"


def test_run_weekly_ensures_then_verifies_active_users(tmp_path: Path):
    runtime = _runtime(tmp_path)
    runtime.sync_catalog()
    runtime.upsert_profile(user_id="u1")
    runtime.upsert_profile(user_id="u2")
    runtime.upsert_profile(user_id="paused", active=False)

    out = runtime.run_weekly()
    assert out["ok"] is True
    assert out["period"] == "2025-05"
    assert [item["user_id"] for item in out["instantiate"]["processed"]] == ["u1", "u2"]
    assert all(item["created"] == len(DEFAULT_CATALOG) for item in out["instantiate"]["processed"])
    assert [item["user_id"] for item in out["verify"]["processed"]] == ["u1", "u2"]

    again = runtime.run_weekly()
    assert all(item["created"] == 0 for item in again["instantiate"]["processed"])
    assert runtime.list_user_tasks(user_id="paused")["user_tasks"] == []


def test_reset_clears_score_from_previous_progress(tmp_path: Path):
    runtime = _runtime(tmp_path)
    runtime.sync_catalog()
    runtime.upsert_profile(user_id="u1")
    runtime.instantiate("u1", mode="reset", track="linkedin")

    task_id = _engage_task_id(runtime)
    runtime.submit_evidence(user_task_id=task_id, kind="URL", payload={"url": "https://www.linkedin.com/feed/update/1"})
    assert runtime.verify(user_id="u1")["total_points"] == 8
    assert runtime.get_score(user_id="u1")["points_total"] == 8

    runtime.instantiate("u1", mode="reset", track="linkedin")
    score = runtime.get_score(user_id="u1")
    assert score["points_total"] == 0
    assert score["breakdown"]["submitted_tasks"] == 0
