"""Materialize one user task per active catalog entry for a (user, period)."""

from __future__ import annotations

import logging
from datetime import UTC
from typing import Any

from .errors import UserNotFound
from .period import Period
from .progress_store import ProgressStore
from .progress_types import TaskDefinition
from .scoring import recompute_summary

logger = logging.getLogger(__name__)

INSTANTIATION_MODES = ("reset", "ensure")


def _task_rows(definitions: list[TaskDefinition], period: Period) -> list[dict[str, Any]]:
    return [
        {
            "task_code": definition.code,
            "due_at": period.day_end(definition.day_offset).astimezone(UTC).isoformat(timespec="microseconds"),
        }
        for definition in definitions
    ]


def _require_profile(store: ProgressStore, user_id: str) -> None:
    if store.get_profile(user_id) is None:
        raise UserNotFound(user_id)


def _result(
    *,
    mode: str,
    user_id: str,
    period: Period,
    track: str | None,
    user_tasks: list[dict[str, Any]],
    catalog_empty: bool,
    **counts: int,
) -> dict[str, Any]:
    return {
        "ok": True,
        "mode": mode,
        "user_id": user_id,
        **period.to_dict(),
        "track": track,
        "catalog_empty": catalog_empty,
        **counts,
        "user_tasks": user_tasks,
    }


def reset_period(
    store: ProgressStore,
    user_id: str,
    period: Period,
    *,
    track: str | None = None,
) -> dict[str, Any]:
    """Delete and recreate the user's tasks (and their evidence) for `period`.

    Destructive: progress recorded for the period is lost. With an empty catalog
    nothing is deleted and the result reports `catalog_empty`.
    """
    _require_profile(store, user_id)
    definitions = store.list_task_definitions(active_only=True, track=track)
    if not definitions:
        logger.warning("No active task definitions%s; skipping reset for %s", f" for track {track}" if track else "", user_id)
        return _result(
            mode="reset",
            user_id=user_id,
            period=period,
            track=track,
            user_tasks=[],
            catalog_empty=True,
            created=0,
            deleted_tasks=0,
            deleted_evidence=0,
        )

    out = store.replace_user_tasks(
        user_id=user_id,
        period_key=period.key,
        rows=_task_rows(definitions, period),
        track=track,
    )
    logger.info(
        "Reset period %s for %s: deleted %s tasks (%s evidence), created %s",
        period.key,
        user_id,
        out["deleted_tasks"],
        out["deleted_evidence"],
        out["created"],
    )
    recompute_summary(store, user_id, period)
    return _result(
        mode="reset",
        user_id=user_id,
        period=period,
        track=track,
        user_tasks=store.list_user_tasks(user_id=user_id, period_key=period.key, track=track),
        catalog_empty=False,
        created=int(out["created"]),
        deleted_tasks=int(out["deleted_tasks"]),
        deleted_evidence=int(out["deleted_evidence"]),
    )


def ensure_period(
    store: ProgressStore,
    user_id: str,
    period: Period,
    *,
    track: str | None = None,
) -> dict[str, Any]:
    """Insert only the missing user tasks for `period`; existing rows are untouched."""
    _require_profile(store, user_id)
    definitions = store.list_task_definitions(active_only=True, track=track)
    if not definitions:
        logger.warning("No active task definitions%s; nothing to ensure for %s", f" for track {track}" if track else "", user_id)
        return _result(
            mode="ensure",
            user_id=user_id,
            period=period,
            track=track,
            user_tasks=[],
            catalog_empty=True,
            created=0,
        )

    out = store.insert_missing_user_tasks(
        user_id=user_id,
        period_key=period.key,
        rows=_task_rows(definitions, period),
    )
    if out["created"]:
        logger.info("Ensured period %s for %s: created %s missing tasks", period.key, user_id, out["created"])
    recompute_summary(store, user_id, period)
    return _result(
        mode="ensure",
        user_id=user_id,
        period=period,
        track=track,
        user_tasks=store.list_user_tasks(user_id=user_id, period_key=period.key, track=track),
        catalog_empty=False,
        created=int(out["created"]),
    )


def instantiate_period(
    store: ProgressStore,
    user_id: str,
    period: Period,
    *,
    mode: str,
    track: str | None = None,
) -> dict[str, Any]:
    if mode == "reset":
        return reset_period(store, user_id, period, track=track)
    if mode == "ensure":
        return ensure_period(store, user_id, period, track=track)
    raise ValueError(f"mode must be one of: {', '.join(INSTANTIATION_MODES)}.")
