import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from careerloop.core.progress_store import ProgressStore
from careerloop.core.progress_types import Evidence, Signal, TaskDefinition


def _store(tmp_path) -> ProgressStore:
    return ProgressStore(db_path=tmp_path / "careerloop.sqlite3")


def _definition(code: str, *, track: str = "linkedin", day_offset: int = 1, base_points: int = 10) -> TaskDefinition:
    return TaskDefinition(
        code=code,
        track=track,  # type: ignore[arg-type]
        title=code.title(),
        base_points=base_points,
        day_offset=day_offset,
        evidence_kinds=["URL", "SCREENSHOT"],
    )


def test_upsert_profile_and_list_active(tmp_path):
    store = _store(tmp_path)
    assert store.upsert_profile(user_id="u1", display_name="First")["ok"] is True
    store.upsert_profile(user_id="u2", active=False)
    store.upsert_profile(user_id="u1")

    profile = store.get_profile("u1")
    assert profile is not None
    assert profile["display_name"] == "First"
    assert store.list_active_user_ids() == ["u1"]
    assert store.upsert_profile(user_id="  ")["ok"] is False


def test_sync_task_definitions_upserts_and_deactivates(tmp_path):
    store = _store(tmp_path)
    out = store.sync_task_definitions([_definition("A_ONE"), _definition("B_TWO", track="github", day_offset=2)])
    assert out == {"ok": True, "upserted": 2, "deactivated": 0}

    out = store.sync_task_definitions([_definition("A_ONE", base_points=12)], deactivate_missing=True)
    assert out["deactivated"] == 1

    active = store.list_task_definitions()
    assert [item.code for item in active] == ["A_ONE"]
    assert active[0].base_points == 12
    assert len(store.list_task_definitions(active_only=False)) == 2
    assert store.get_task_definition("B_TWO").active is False


def test_user_task_unique_per_user_code_period(tmp_path):
    store = _store(tmp_path)
    store.upsert_profile(user_id="u1")
    store.sync_task_definitions([_definition("A_ONE")])
    rows = [{"task_code": "A_ONE", "due_at": "2025-01-28T18:29:59.999000+00:00"}]

    first = store.insert_missing_user_tasks(user_id="u1", period_key="2025-05", rows=rows)
    second = store.insert_missing_user_tasks(user_id="u1", period_key="2025-05", rows=rows)

    assert first["created"] == 1
    assert second["created"] == 0
    tasks = store.list_user_tasks(user_id="u1", period_key="2025-05")
    assert len(tasks) == 1
    assert tasks[0]["status"] == "NOT_STARTED"
    assert tasks[0]["definition"]["code"] == "A_ONE"


def test_user_task_requires_profile(tmp_path):
    store = _store(tmp_path)
    store.sync_task_definitions([_definition("A_ONE")])
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_missing_user_tasks(
            user_id="ghost",
            period_key="2025-05",
            rows=[{"task_code": "A_ONE", "due_at": "2025-01-28T18:29:59.999000+00:00"}],
        )


def test_replace_user_tasks_drops_evidence(tmp_path):
    store = _store(tmp_path)
    store.upsert_profile(user_id="u1")
    store.sync_task_definitions([_definition("A_ONE")])
    rows = [{"task_code": "A_ONE", "due_at": "2025-01-28T18:29:59.999000+00:00"}]
    store.insert_missing_user_tasks(user_id="u1", period_key="2025-05", rows=rows)
    task = store.list_user_tasks(user_id="u1", period_key="2025-05")[0]
    store.add_evidence(Evidence(user_task_id=task["user_task_id"], kind="URL", url="https://www.linkedin.com/feed/"))

    out = store.replace_user_tasks(user_id="u1", period_key="2025-05", rows=rows)

    assert out["deleted_tasks"] == 1
    assert out["deleted_evidence"] == 1
    assert out["created"] == 1
    assert store.list_evidence(task["user_task_id"]) == []
    assert store.get_user_task(task["user_task_id"]) is None


def test_update_outcome_is_conditional_on_expected_status(tmp_path):
    store = _store(tmp_path)
    store.upsert_profile(user_id="u1")
    store.sync_task_definitions([_definition("A_ONE")])
    store.insert_missing_user_tasks(
        user_id="u1",
        period_key="2025-05",
        rows=[{"task_code": "A_ONE", "due_at": "2025-01-28T18:29:59.999000+00:00"}],
    )
    task_id = store.list_user_tasks(user_id="u1", period_key="2025-05")[0]["user_task_id"]

    assert store.mark_submitted(task_id) is True
    assert store.mark_submitted(task_id) is False
    assert store.update_user_task_outcome(
        user_task_id=task_id, expected_status="NOT_STARTED", status="VERIFIED", score_awarded=10, notes=[]
    ) is False
    assert store.update_user_task_outcome(
        user_task_id=task_id, expected_status="SUBMITTED", status="VERIFIED", score_awarded=10, notes=["ok"]
    ) is True

    task = store.get_user_task(task_id)
    assert task["status"] == "VERIFIED"
    assert task["score_awarded"] == 10
    assert task["verification_notes"] == ["ok"]


def test_signals_dedupe_on_external_id_and_filter_by_window(tmp_path):
    store = _store(tmp_path)
    store.upsert_profile(user_id="u1")
    base = datetime(2025, 1, 28, 12, tzinfo=UTC)

    first = store.record_signal(Signal(user_id="u1", kind="commented", happened_at=base, actor="a", external_id="evt-1"))
    again = store.record_signal(Signal(user_id="u1", kind="COMMENTED", happened_at=base, actor="a", external_id="evt-1"))
    store.record_signal(Signal(user_id="u1", kind="REACTED", happened_at=base + timedelta(days=10), actor="b"))
    store.record_signal(Signal(user_id="u1", kind="REACTED", happened_at=base, actor="c"))
    store.record_signal(Signal(user_id="u1", kind="REACTED", happened_at=base, actor="c"))

    assert first["recorded"] is True
    assert again["recorded"] is False
    in_window = store.list_signals(user_id="u1", start=base - timedelta(days=1), end=base + timedelta(days=1))
    assert len(in_window) == 3
    assert in_window[0]["kind"] in {"COMMENTED", "REACTED"}
    comments = store.list_signals(user_id="u1", kinds=["commented"])
    assert [item["external_id"] for item in comments] == ["evt-1"]


def test_ledger_insert_is_idempotent(tmp_path):
    store = _store(tmp_path)
    kwargs = {
        "user_id": "u1",
        "activity_id": "linkedin_task:A_ONE:2025-05",
        "activity_date": "2025-01-29",
        "activity_type": "linkedin_task_completion",
        "points_earned": 15,
    }
    assert store.insert_ledger_entry(**kwargs) is True
    assert store.insert_ledger_entry(**kwargs) is False
    assert store.insert_ledger_entry(**{**kwargs, "activity_date": "2025-01-30"}) is True
    assert store.count_ledger_entries(user_id="u1") == 2
    assert store.list_ledger_entries(user_id="u1")[0]["activity_date"] == "2025-01-30"


def test_score_summary_upsert_round_trip(tmp_path):
    store = _store(tmp_path)
    store.upsert_score_summary(user_id="u1", period_key="2025-05", points_total=10, breakdown={"total_tasks": 2})
    store.upsert_score_summary(user_id="u1", period_key="2025-05", points_total=25, breakdown={"total_tasks": 3})

    summary = store.get_score_summary(user_id="u1", period_key="2025-05")
    assert summary["points_total"] == 25
    assert summary["breakdown"] == {"total_tasks": 3}
    assert store.get_score_summary(user_id="u1", period_key="2025-06") is None


def test_set_evidence_review_only_pending(tmp_path):
    store = _store(tmp_path)
    store.upsert_profile(user_id="u1")
    store.sync_task_definitions([_definition("A_ONE")])
    store.insert_missing_user_tasks(
        user_id="u1",
        period_key="2025-05",
        rows=[{"task_code": "A_ONE", "due_at": "2025-01-28T18:29:59.999000+00:00"}],
    )
    task_id = store.list_user_tasks(user_id="u1", period_key="2025-05")[0]["user_task_id"]
    first = Evidence(user_task_id=task_id, kind="URL", url="https://example.com/a")
    second = Evidence(user_task_id=task_id, kind="TEXT", text="hello")
    store.add_evidence(first)
    store.add_evidence(second)

    assert store.set_evidence_review(evidence_id=first.evidence_id, status="rejected", reviewed_by="admin") == 1
    assert store.set_evidence_review(user_task_id=task_id, status="approved", only_pending=True) == 1

    statuses = {item["evidence_id"]: item["verification_status"] for item in store.list_evidence(task_id)}
    assert statuses == {first.evidence_id: "rejected", second.evidence_id: "approved"}
    with pytest.raises(ValueError):
        store.set_evidence_review(user_task_id=task_id, status="maybe")


def test_has_ledger_activity_ignores_date(tmp_path):
    store = _store(tmp_path)
    assert store.has_ledger_activity(user_id="u1", activity_id="linkedin_task:A_ONE:2025-05") is False
    store.insert_ledger_entry(
        user_id="u1",
        activity_id="linkedin_task:A_ONE:2025-05",
        activity_date="2025-01-29",
        activity_type="linkedin_task_completion",
        points_earned=15,
    )
    assert store.has_ledger_activity(user_id="u1", activity_id="linkedin_task:A_ONE:2025-05") is True
    assert store.has_ledger_activity(user_id="u2", activity_id="linkedin_task:A_ONE:2025-05") is False
