import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from careerloop.core.errors import (
    EvidenceKindNotAccepted,
    InvalidEvidence,
    InvalidReviewDecision,
    UserNotFound,
    UserTaskNotFound,
)
from careerloop.core.progress_store import ProgressStore
from careerloop.core.progress_types import Signal, TaskDefinition
from careerloop.core.rule_engine import RuleRegistry
from careerloop.core.rules import register_default_rules
from careerloop.core.task_instantiator import reset_period
from careerloop.core.verification_service import VerificationService

NOW = datetime(2025, 1, 29, 6, 0, tzinfo=UTC)
POST_URL = "https://www.linkedin.com/posts/u1_activity-1"


def _setup(tmp_path, users=("u1",)):
    store = ProgressStore(db_path=tmp_path / "careerloop.sqlite3")
    store.sync_task_definitions(
        [
            TaskDefinition(
                code="LI_ENGAGE_NETWORK",
                track="linkedin",
                title="Start a conversation",
                base_points=10,
                day_offset=3,
                evidence_kinds=["URL", "SCREENSHOT"],
            )
        ]
    )
    service = VerificationService(store, timezone_name="Asia/Kolkata", now=lambda: NOW)
    period = service.resolve_period()
    for user_id in users:
        store.upsert_profile(user_id=user_id)
        reset_period(store, user_id, period)
    return store, service, period


def _task_id(store: ProgressStore, user_id: str = "u1") -> str:
    return store.list_user_tasks(user_id=user_id, period_key="2025-05")[0]["user_task_id"]


def _engage(store: ProgressStore, actors, user_id: str = "u1") -> None:
    for idx, actor in enumerate(actors):
        store.record_signal(
            Signal(user_id=user_id, kind="COMMENTED", actor=actor, happened_at=NOW - timedelta(hours=idx + 1))
        )


def test_resolve_period_uses_injected_clock(tmp_path):
    _, service, period = _setup(tmp_path)
    assert period.key == "2025-05"
    assert service.resolve_period("2024-52").key == "2024-52"


def test_weekly_flow_from_not_started_to_verified(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)

    out = service.verify_user("u1")
    assert out["results"][0]["new_status"] == "NOT_STARTED"
    assert out["total_points"] == 0

    submitted = service.submit_evidence(task_id, "URL", {"url": POST_URL})
    assert submitted["status"] == "SUBMITTED"

    out = service.verify_user("u1")
    assert out["results"][0]["new_status"] == "SUBMITTED"
    assert out["results"][0]["new_points"] == 8
    assert out["total_points"] == 8

    _engage(store, ["alice", "bob", "carol"])
    out = service.verify_user("u1")
    entry = out["results"][0]
    assert entry["previous_status"] == "SUBMITTED"
    assert entry["new_status"] == "VERIFIED"
    assert entry["new_points"] == 15
    assert entry["ledger_awarded"] is True
    assert out["summary"]["breakdown"]["completed_tasks"] == 1

    ledger = store.list_ledger_entries(user_id="u1")
    assert len(ledger) == 1
    assert ledger[0]["activity_id"] == "linkedin_task:LI_ENGAGE_NETWORK:2025-05"
    assert ledger[0]["activity_date"] == "2025-01-29"
    assert ledger[0]["points_earned"] == 15
    assert [item["verification_status"] for item in store.list_evidence(task_id)] == ["approved"]
    assert [item["kind"] for item in store.list_notifications(user_id="u1")] == ["task_verified"]


def test_second_pass_changes_nothing(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    service.submit_evidence(task_id, "URL", {"url": POST_URL})
    _engage(store, ["alice", "bob", "carol"])

    first = service.verify_user("u1")
    second = service.verify_user("u1")

    assert first["results"][0]["changed"] is True
    assert second["results"][0]["changed"] is False
    assert second["results"][0]["ledger_awarded"] is False
    assert second["total_points"] == 15
    assert store.count_ledger_entries(user_id="u1") == 1
    assert len(store.list_notifications(user_id="u1")) == 1


def test_verified_task_never_downgrades(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    service.submit_evidence(task_id, "URL", {"url": POST_URL})
    _engage(store, ["alice", "bob", "carol"])
    service.verify_user("u1")

    store.sync_task_definitions(
        [TaskDefinition(code="LI_ENGAGE_NETWORK", track="linkedin", title="Start", base_points=5, day_offset=3)]
    )
    out = service.verify_user("u1")
    assert out["results"][0]["new_status"] == "VERIFIED"
    assert out["results"][0]["new_points"] == 15


def test_approved_task_keeps_status_when_engine_sees_less(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    service.submit_evidence(task_id, "URL", {"url": POST_URL})

    review = service.review_user_task(task_id, "approve", reviewer="coach", notes="Looks good")
    assert review["changed"] is True
    assert review["ledger_awarded"] is True
    assert review["user_task"]["status"] == "VERIFIED"
    assert review["user_task"]["score_awarded"] == 10

    out = service.verify_user("u1")
    entry = out["results"][0]
    assert entry["new_status"] == "VERIFIED"
    assert entry["new_points"] == 10
    assert "Already verified; keeping verified status and points." in entry["notes"]
    assert store.count_ledger_entries(user_id="u1") == 1


def test_reject_then_resubmit(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    service.submit_evidence(task_id, "URL", {"url": POST_URL})
    service.verify_user("u1")

    review = service.review_user_task(task_id, "reject", reviewer="coach", notes="Wrong post")
    assert review["user_task"]["status"] == "REJECTED"
    assert review["user_task"]["score_awarded"] == 0
    assert review["summary"]["points_total"] == 0
    assert [item["verification_status"] for item in store.list_evidence(task_id)] == ["rejected"]
    assert store.list_notifications(user_id="u1")[0]["kind"] == "task_rejected"

    skipped = service.verify_user("u1")
    assert skipped["results"][0]["new_status"] == "REJECTED"
    assert skipped["results"][0]["changed"] is False

    assert service.submit_evidence(task_id, "SCREENSHOT", {"file_key": "uploads/post.png"})["status"] == "SUBMITTED"
    assert service.verify_user("u1")["results"][0]["new_points"] == 9


def test_review_guards(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    with pytest.raises(InvalidReviewDecision):
        service.review_user_task(task_id, "maybe")
    with pytest.raises(UserTaskNotFound):
        service.review_user_task("utask_missing", "approve")

    service.review_user_task(task_id, "approve")
    with pytest.raises(InvalidReviewDecision, match="cannot be rejected"):
        service.review_user_task(task_id, "reject")

    again = service.review_user_task(task_id, "approve")
    assert again["changed"] is False
    assert store.count_ledger_entries(user_id="u1") == 1


def test_submit_evidence_validation(tmp_path):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)

    with pytest.raises(UserTaskNotFound):
        service.submit_evidence("utask_missing", "URL", {"url": POST_URL})
    with pytest.raises(EvidenceKindNotAccepted):
        service.submit_evidence(task_id, "TEXT", {"text": "I talked to people."})
    with pytest.raises(InvalidEvidence):
        service.submit_evidence(task_id, "URL", {"url": "not a url"})
    with pytest.raises(InvalidEvidence):
        service.submit_evidence(task_id, "PODCAST", {})

    assert store.list_evidence(task_id) == []
    assert store.get_user_task(task_id)["status"] == "NOT_STARTED"


def test_verify_unknown_user(tmp_path):
    _, service, _ = _setup(tmp_path)
    with pytest.raises(UserNotFound):
        service.verify_user("ghost")


def test_missing_definition_is_reported_per_task(tmp_path):
    store, service, period = _setup(tmp_path)
    store.insert_missing_user_tasks(
        user_id="u1",
        period_key=period.key,
        rows=[{"task_code": "RETIRED_TASK", "due_at": "2025-02-01T18:29:59.999000+00:00"}],
    )

    out = service.verify_user("u1")
    by_code = {item["task_code"]: item for item in out["results"]}
    assert "error" in by_code["RETIRED_TASK"]
    assert by_code["LI_ENGAGE_NETWORK"]["new_status"] == "NOT_STARTED"
    assert "error" not in by_code["LI_ENGAGE_NETWORK"]


def test_verify_all_continues_past_failing_user(tmp_path, monkeypatch):
    store, service, _ = _setup(tmp_path, users=("u1", "u2"))
    service.submit_evidence(_task_id(store, "u1"), "URL", {"url": POST_URL})

    original = store.list_user_tasks

    def flaky_list_user_tasks(*, user_id, period_key, track=None):
        if user_id == "u2":
            raise sqlite3.OperationalError("database is locked")
        return original(user_id=user_id, period_key=period_key, track=track)

    monkeypatch.setattr(store, "list_user_tasks", flaky_list_user_tasks)
    out = service.verify_all()

    assert out["ok"] is False
    assert out["period"] == "2025-05"
    assert [item["user_id"] for item in out["processed"]] == ["u1"]
    assert out["processed"][0]["total_points"] == 8
    assert out["failed"][0]["user_id"] == "u2"
    assert "locked" in out["failed"][0]["error"]


class _ExplodingRule:
    code = "CAREER_BROKEN"

    def evaluate(self, evidence, signals, window, *, base_points, bonus_rules=None):
        raise RuntimeError("rule exploded")


def _setup_with_broken_task(tmp_path, users=("u1", "u2")):
    store = ProgressStore(db_path=tmp_path / "careerloop.sqlite3")
    store.sync_task_definitions(
        [
            TaskDefinition(
                code="LI_ENGAGE_NETWORK",
                track="linkedin",
                title="Start a conversation",
                base_points=10,
                day_offset=3,
                evidence_kinds=["URL"],
            ),
            TaskDefinition(code="CAREER_BROKEN", track="career", title="Broken", base_points=10, day_offset=4),
        ]
    )
    registry = register_default_rules(RuleRegistry())
    registry.register(_ExplodingRule())
    service = VerificationService(store, timezone_name="Asia/Kolkata", registry=registry, now=lambda: NOW)
    period = service.resolve_period()
    for user_id in users:
        store.upsert_profile(user_id=user_id)
        reset_period(store, user_id, period)
    return store, service


def _task_id_for(store: ProgressStore, code: str, user_id: str = "u1") -> str:
    tasks = store.list_user_tasks(user_id=user_id, period_key="2025-05")
    return next(task["user_task_id"] for task in tasks if task["task_code"] == code)


def test_failing_rule_is_reported_and_batch_continues(tmp_path):
    store, service = _setup_with_broken_task(tmp_path)
    for user_id in ("u1", "u2"):
        service.submit_evidence(_task_id_for(store, "LI_ENGAGE_NETWORK", user_id), "URL", {"url": POST_URL})

    out = service.verify_all()
    assert out["ok"] is True
    assert out["failed"] == []
    assert [item["user_id"] for item in out["processed"]] == ["u1", "u2"]
    assert all(item["total_points"] == 8 for item in out["processed"])

    by_code = {item["task_code"]: item for item in service.verify_user("u1")["results"]}
    assert by_code["CAREER_BROKEN"]["error"] == "RuntimeError: rule exploded"
    assert by_code["CAREER_BROKEN"]["new_status"] == "NOT_STARTED"
    assert "error" not in by_code["LI_ENGAGE_NETWORK"]
    assert by_code["LI_ENGAGE_NETWORK"]["new_points"] == 8


def test_evidence_read_failure_only_affects_its_task(tmp_path, monkeypatch):
    store, service = _setup_with_broken_task(tmp_path, users=("u1",))
    engage_id = _task_id_for(store, "LI_ENGAGE_NETWORK")
    broken_id = _task_id_for(store, "CAREER_BROKEN")
    service.submit_evidence(engage_id, "URL", {"url": POST_URL})

    original = store.list_evidence

    def flaky_list_evidence(user_task_id):
        if user_task_id == engage_id:
            raise sqlite3.OperationalError("disk I/O error")
        return original(user_task_id)

    monkeypatch.setattr(store, "list_evidence", flaky_list_evidence)
    out = service.verify_user("u1")

    by_id = {item["task_id"]: item for item in out["results"]}
    assert len(by_id) == 2
    assert by_id[engage_id]["error"] == "storage error: disk I/O error"
    assert by_id[engage_id]["new_status"] == "SUBMITTED"
    assert by_id[broken_id]["error"] == "RuntimeError: rule exploded"
    assert out["ok"] is True
    assert out["total_points"] == 0


def test_ledger_failure_is_awarded_on_next_pass(tmp_path, monkeypatch):
    store, service, _ = _setup(tmp_path)
    task_id = _task_id(store)
    service.submit_evidence(task_id, "URL", {"url": POST_URL})
    _engage(store, ["alice", "bob", "carol"])

    def failing_insert(**_kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "insert_ledger_entry", failing_insert)
    first = service.verify_user("u1")["results"][0]
    assert "locked" in first["error"]
    assert store.get_user_task(task_id)["status"] == "VERIFIED"
    assert store.count_ledger_entries(user_id="u1") == 0

    monkeypatch.undo()
    retried = service.verify_user("u1")["results"][0]
    assert "error" not in retried
    assert retried["new_status"] == "VERIFIED"
    assert retried["changed"] is False
    assert retried["ledger_awarded"] is True
    assert store.count_ledger_entries(user_id="u1") == 1
    assert store.list_ledger_entries(user_id="u1")[0]["points_earned"] == 15
    assert [item["kind"] for item in store.list_notifications(user_id="u1")] == ["task_verified"]

    again = service.verify_user("u1")["results"][0]
    assert again["ledger_awarded"] is False
    assert store.count_ledger_entries(user_id="u1") == 1
