"""Verification orchestration: engine outcomes -> user tasks -> scores -> ledger."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from typing import Any, Callable

from .errors import (
    EvidenceKindNotAccepted,
    InvalidReviewDecision,
    TaskDefinitionNotFound,
    UserNotFound,
    UserTaskNotFound,
)
from .period import DEFAULT_PERIOD_TIMEZONE, Period, local_date, period_from_key, resolve_period
from .progress_store import ProgressStore
from .progress_types import Evidence
from .rule_engine import RuleRegistry, verify
from .scoring import award_points, ledger_activity_id, recompute_summary

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = ("approve", "reject")
ENGINE_REVIEWER = "engine"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class VerificationService:
    """Runs verification passes and reviews against one `ProgressStore`."""

    def __init__(
        self,
        store: ProgressStore,
        *,
        timezone_name: str = DEFAULT_PERIOD_TIMEZONE,
        registry: RuleRegistry | None = None,
        unknown_code_fraction: float = 0.5,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._timezone = timezone_name
        self._registry = registry
        self._unknown_code_fraction = unknown_code_fraction
        self._now = now or _utc_now

    @property
    def timezone_name(self) -> str:
        return self._timezone

    def resolve_period(self, period_key: str | None = None) -> Period:
        return resolve_period(period_key, now=self._now(), timezone_name=self._timezone)

    # Evidence

    def submit_evidence(self, user_task_id: str, kind: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        task = self._store.get_user_task(user_task_id)
        if task is None:
            raise UserTaskNotFound(user_task_id)
        definition = task["definition"]
        if definition is None:
            raise TaskDefinitionNotFound(task["task_code"])

        body = payload or {}
        evidence = Evidence(
            user_task_id=user_task_id,
            kind=kind,  # type: ignore[arg-type]
            url=body.get("url"),
            file_key=body.get("file_key"),
            parsed_json=body.get("parsed_json") if isinstance(body.get("parsed_json"), dict) else None,
            text=body.get("text"),
            created_at=self._now(),
        )
        accepted = list(definition.get("evidence_kinds") or [])
        if accepted and evidence.kind not in accepted:
            raise EvidenceKindNotAccepted(task["task_code"], evidence.kind, accepted)
        evidence.validate_payload()

        self._store.add_evidence(evidence)
        moved = self._store.mark_submitted(user_task_id)
        logger.info("Evidence %s (%s) submitted for %s", evidence.evidence_id, evidence.kind, user_task_id)
        return {
            "ok": True,
            "evidence_id": evidence.evidence_id,
            "user_task_id": user_task_id,
            "status": "SUBMITTED" if moved else task["status"],
        }

    # Verification

    def verify_user(self, user_id: str, period_key: str | None = None) -> dict[str, Any]:
        """Verify every user task for the period and return one entry per task."""
        period = self.resolve_period(period_key)
        if self._store.get_profile(user_id) is None:
            raise UserNotFound(user_id)

        tasks = self._store.list_user_tasks(user_id=user_id, period_key=period.key)
        signals = self._store.list_signals(user_id=user_id, start=period.start, end=period.end)
        results: list[dict[str, Any]] = []
        for task in tasks:
            try:
                results.append(self._verify_task(task, signals, period))
            except Exception as exc:
                logger.exception("Verification failed for task %s (%s)", task["user_task_id"], task["task_code"])
                kind = "storage error" if isinstance(exc, sqlite3.Error) else type(exc).__name__
                results.append(self._entry(task, error=f"{kind}: {exc}"))

        summary = recompute_summary(self._store, user_id, period)
        return {
            "ok": True,
            "user_id": user_id,
            "period": period.key,
            "results": results,
            "total_points": summary["points_total"],
            "summary": summary,
        }

    def verify_all(self, period_key: str | None = None) -> dict[str, Any]:
        """Verify every user holding tasks in the period; one failing user does not stop the batch."""
        period = self.resolve_period(period_key)
        processed: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for user_id in self._store.list_period_user_ids(period.key):
            try:
                out = self.verify_user(user_id, period.key)
            except Exception as exc:
                logger.exception("Verification failed for user %s in %s", user_id, period.key)
                failed.append({"user_id": user_id, "error": str(exc)})
                continue
            processed.append(
                {
                    "user_id": user_id,
                    "total_points": out["total_points"],
                    "changed": sum(1 for item in out["results"] if item["changed"]),
                    "ledger_awarded": sum(1 for item in out["results"] if item["ledger_awarded"]),
                }
            )
        logger.info("Verified %s users for %s (%s failed)", len(processed), period.key, len(failed))
        return {"ok": not failed, "period": period.key, "processed": processed, "failed": failed}

    @staticmethod
    def _entry(
        task: dict[str, Any],
        *,
        new_status: str | None = None,
        new_points: int | None = None,
        notes: list[str] | None = None,
        ledger_awarded: bool = False,
        error: str | None = None,
    ) -> dict[str, Any]:
        status = new_status if new_status is not None else task["status"]
        points = new_points if new_points is not None else task["score_awarded"]
        entry: dict[str, Any] = {
            "task_id": task["user_task_id"],
            "task_code": task["task_code"],
            "previous_status": task["status"],
            "new_status": status,
            "previous_points": task["score_awarded"],
            "new_points": points,
            "notes": list(notes or []),
            "changed": status != task["status"] or points != task["score_awarded"],
            "ledger_awarded": ledger_awarded,
        }
        if error is not None:
            entry["error"] = error
        return entry

    def _verify_task(self, task: dict[str, Any], signals: list[dict[str, Any]], period: Period) -> dict[str, Any]:
        definition = task["definition"]
        if definition is None:
            return self._entry(task, error=f"Task definition '{task['task_code']}' does not exist.")

        previous_status = task["status"]
        previous_points = int(task["score_awarded"])
        if previous_status == "REJECTED":
            return self._entry(task, notes=["Rejected by review; awaiting resubmission."])

        evidence = [
            item for item in self._store.list_evidence(task["user_task_id"]) if item["verification_status"] != "rejected"
        ]
        outcome = verify(
            task["task_code"],
            evidence,
            signals,
            period.start,
            period.end,
            base_points=int(definition["base_points"]),
            bonus_rules=definition.get("bonus_rules") or None,
            registry=self._registry,
            unknown_code_fraction=self._unknown_code_fraction,
        )
        new_status: str = outcome.status
        new_points = outcome.points
        notes = list(outcome.notes)

        if previous_status == "VERIFIED":
            if new_status != "VERIFIED":
                notes.append("Already verified; keeping verified status and points.")
            new_status = "VERIFIED"
            new_points = max(previous_points, new_points if outcome.status == "VERIFIED" else previous_points)

        changed = new_status != previous_status or new_points != previous_points
        newly_verified = new_status == "VERIFIED" and previous_status != "VERIFIED"
        # A verified task whose ledger write failed earlier is awarded on the next pass.
        award_missing = (
            previous_status == "VERIFIED"
            and not self._store.has_ledger_activity(
                user_id=task["user_id"],
                activity_id=ledger_activity_id(str(definition["track"]), task["task_code"], period.key),
            )
        )
        if not changed and notes == task["verification_notes"] and not award_missing:
            return self._entry(task, notes=notes)

        now = self._now()
        if changed or notes != task["verification_notes"]:
            written = self._store.update_user_task_outcome(
                user_task_id=task["user_task_id"],
                expected_status=previous_status,
                status=new_status,
                score_awarded=new_points,
                notes=notes,
                verified_at=now if newly_verified else None,
            )
            if not written:
                logger.warning("User task %s changed during verification; skipping", task["user_task_id"])
                return self._entry(task, notes=notes + ["Task changed during verification; skipped."])

        ledger_awarded = False
        if newly_verified or award_missing:
            if award_missing:
                logger.warning("User task %s is verified without a ledger entry; awarding now", task["user_task_id"])
            ledger_awarded = self._on_verified(task, definition, period, new_points, now, reviewer=ENGINE_REVIEWER)
        return self._entry(task, new_status=new_status, new_points=new_points, notes=notes, ledger_awarded=ledger_awarded)

    def _on_verified(
        self,
        task: dict[str, Any],
        definition: dict[str, Any],
        period: Period,
        points: int,
        now: datetime,
        *,
        reviewer: str,
    ) -> bool:
        award = award_points(
            self._store,
            user_id=task["user_id"],
            track=str(definition["track"]),
            task_code=task["task_code"],
            period_key=period.key,
            points=points,
            activity_date=local_date(now, self._timezone),
            description=str(definition.get("title") or task["task_code"]),
        )
        self._store.set_evidence_review(
            user_task_id=task["user_task_id"],
            status="approved",
            notes="Verified automatically." if reviewer == ENGINE_REVIEWER else "Approved by reviewer.",
            reviewed_by=reviewer,
            only_pending=True,
        )
        title = str(definition.get("title") or task["task_code"])
        self._store.enqueue_notification(
            user_id=task["user_id"],
            kind="task_verified",
            title=f"Task verified: {title}",
            message=f"You earned {points} points for '{title}' in {period.key}.",
            related_id=task["user_task_id"],
        )
        return bool(award["awarded"])

    # Review

    def review_user_task(
        self,
        user_task_id: str,
        decision: str,
        *,
        reviewer: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Apply an explicit approve/reject decision from a human reviewer."""
        clean_decision = str(decision or "").strip().lower()
        if clean_decision not in REVIEW_DECISIONS:
            raise InvalidReviewDecision(f"decision must be one of: {', '.join(REVIEW_DECISIONS)}.")
        task = self._store.get_user_task(user_task_id)
        if task is None:
            raise UserTaskNotFound(user_task_id)
        definition = task["definition"]
        if definition is None:
            raise TaskDefinitionNotFound(task["task_code"])

        period = period_from_key(task["period"], self._timezone)
        reviewer_name = (reviewer or "").strip() or "reviewer"
        review_note = f"{'Approved' if clean_decision == 'approve' else 'Rejected'} by {reviewer_name}"
        task_notes = list(task["verification_notes"]) + [f"{review_note}: {notes}" if notes else f"{review_note}."]
        previous_status = task["status"]
        now = self._now()
        ledger_awarded = False
        changed = False

        if clean_decision == "approve":
            if previous_status != "VERIFIED":
                points = int(definition["base_points"])
                changed = self._store.update_user_task_outcome(
                    user_task_id=user_task_id,
                    expected_status=previous_status,
                    status="VERIFIED",
                    score_awarded=points,
                    notes=task_notes,
                    verified_at=now,
                )
                if changed:
                    ledger_awarded = self._on_verified(task, definition, period, points, now, reviewer=reviewer_name)
        else:
            if previous_status == "VERIFIED":
                raise InvalidReviewDecision("A verified task cannot be rejected.")
            if previous_status != "REJECTED":
                changed = self._store.update_user_task_outcome(
                    user_task_id=user_task_id,
                    expected_status=previous_status,
                    status="REJECTED",
                    score_awarded=0,
                    notes=task_notes,
                )
                if changed:
                    self._store.set_evidence_review(
                        user_task_id=user_task_id,
                        status="rejected",
                        notes=notes,
                        reviewed_by=reviewer_name,
                        only_pending=True,
                    )
                    title = str(definition.get("title") or task["task_code"])
                    self._store.enqueue_notification(
                        user_id=task["user_id"],
                        kind="task_rejected",
                        title=f"Task needs another look: {title}",
                        message=notes or "Your evidence was rejected by a reviewer. Please resubmit.",
                        related_id=user_task_id,
                    )

        if changed:
            logger.info("Review %s applied to %s by %s", clean_decision, user_task_id, reviewer_name)
        summary = recompute_summary(self._store, task["user_id"], period)
        return {
            "ok": True,
            "decision": clean_decision,
            "changed": changed,
            "ledger_awarded": ledger_awarded,
            "user_task": self._store.get_user_task(user_task_id),
            "summary": summary,
        }
