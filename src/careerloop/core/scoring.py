"""Period score summaries and the idempotent point ledger."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from .period import Period
from .progress_store import ProgressStore

logger = logging.getLogger(__name__)


def ledger_activity_id(track: str, task_code: str, period_key: str) -> str:
    return f"{track}_task:{task_code}:{period_key}"


def recompute_summary(store: ProgressStore, user_id: str, period: Period) -> dict[str, Any]:
    """Rebuild the (user, period) summary from the current user tasks.

    Always a full recomputation, so a summary that drifted from its tasks is
    corrected on the next call. `streak_weeks` extends the previous period's
    streak when at least one task was completed.
    """
    stats = store.period_task_stats(user_id=user_id, period_key=period.key)
    previous = store.get_score_summary(user_id=user_id, period_key=period.previous().key)
    previous_streak = 0
    if previous is not None:
        try:
            previous_streak = max(0, int(previous["breakdown"].get("streak_weeks", 0)))
        except (TypeError, ValueError):
            previous_streak = 0
    streak_weeks = previous_streak + 1 if stats["completed_tasks"] > 0 else 0

    breakdown = {
        "total_tasks": stats["total_tasks"],
        "completed_tasks": stats["completed_tasks"],
        "partially_verified_tasks": stats["partially_verified_tasks"],
        "submitted_tasks": stats["submitted_tasks"],
        "rejected_tasks": stats["rejected_tasks"],
        "not_started_tasks": stats["not_started_tasks"],
        "points_possible": stats["points_possible"],
        "streak_weeks": streak_weeks,
    }
    store.upsert_score_summary(
        user_id=user_id,
        period_key=period.key,
        points_total=stats["points_total"],
        breakdown=breakdown,
    )
    return {
        "user_id": user_id,
        "period": period.key,
        "points_total": stats["points_total"],
        "breakdown": breakdown,
    }


def award_points(
    store: ProgressStore,
    *,
    user_id: str,
    track: str,
    task_code: str,
    period_key: str,
    points: int,
    activity_date: date,
    description: str | None = None,
) -> dict[str, Any]:
    """Insert one ledger row; an existing (user, activity, date) row is a no-op."""
    activity_id = ledger_activity_id(track, task_code, period_key)
    awarded = store.insert_ledger_entry(
        user_id=user_id,
        activity_id=activity_id,
        activity_date=activity_date.isoformat(),
        activity_type=f"{track}_task_completion",
        points_earned=max(0, int(points)),
        description=description,
    )
    if awarded:
        logger.info("Awarded %s points to %s for %s", points, user_id, activity_id)
    else:
        logger.info("Ledger entry %s for %s on %s already exists", activity_id, user_id, activity_date)
    return {"awarded": awarded, "activity_id": activity_id, "activity_date": activity_date.isoformat()}
