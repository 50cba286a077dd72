"""Shared runtime facade for CLI/app entrypoints."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Callable

from careerloop.core.catalog import load_catalog, load_catalog_file, sync_catalog
from careerloop.core.config_loader import (
    get_database_path,
    get_engine_config,
    get_timezone,
    load_config_or_empty,
)
from careerloop.core.errors import UserNotFound
from careerloop.core.period import Period
from careerloop.core.progress_store import ProgressStore
from careerloop.core.progress_types import Signal
from careerloop.core.scoring import recompute_summary
from careerloop.core.task_instantiator import INSTANTIATION_MODES, instantiate_period
from careerloop.core.verification_service import VerificationService

logger = logging.getLogger(__name__)


class RuntimeService:
    """Single authority for app-facing progress operations."""

    def __init__(
        self,
        *,
        store: ProgressStore | None = None,
        config: dict[str, Any] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._lock = RLock()
        self._config = config
        self._store = store
        self._verifier: VerificationService | None = None
        self._now = now

    def _config_payload(self) -> dict[str, Any]:
        return self._config if self._config is not None else load_config_or_empty()

    @property
    def store(self) -> ProgressStore:
        with self._lock:
            if self._store is None:
                self._store = ProgressStore(get_database_path(self._config_payload()))
            return self._store

    @property
    def verifier(self) -> VerificationService:
        with self._lock:
            if self._verifier is None:
                cfg = self._config_payload()
                self._verifier = VerificationService(
                    self.store,
                    timezone_name=get_timezone(cfg),
                    unknown_code_fraction=float(get_engine_config(cfg)["unknown_code_fraction"]),
                    now=self._now,
                )
            return self._verifier

    def _period(self, period_key: str | None) -> Period:
        return self.verifier.resolve_period(period_key)

    def _require_profile(self, user_id: str) -> None:
        if self.store.get_profile(user_id) is None:
            raise UserNotFound(user_id)

    def health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "service": "careerloop",
            "db_path": str(self.store.db_path),
            "timezone": self.verifier.timezone_name,
            "current_period": self._period(None).key,
            "active_task_definitions": len(self.store.list_task_definitions(active_only=True)),
        }

    # Catalog + profiles

    def sync_catalog(self, *, path: str | Path | None = None, deactivate_missing: bool = False) -> dict[str, Any]:
        definitions = load_catalog_file(path) if path is not None else load_catalog(self._config_payload())
        return sync_catalog(self.store, definitions, deactivate_missing=deactivate_missing)

    def upsert_profile(self, *, user_id: str, display_name: str | None = None, active: bool = True) -> dict[str, Any]:
        out = self.store.upsert_profile(user_id=user_id, display_name=display_name, active=active)
        if not out.get("ok"):
            raise ValueError(str(out.get("error") or "invalid profile"))
        return {"ok": True, "profile": self.store.get_profile(out["user_id"])}

    # Instantiation

    def instantiate(
        self,
        user_id: str,
        period_key: str | None = None,
        *,
        mode: str,
        track: str | None = None,
    ) -> dict[str, Any]:
        """Create the user's tasks for a period; `mode` is "reset" or "ensure"."""
        if mode not in INSTANTIATION_MODES:
            raise ValueError(f"mode must be one of: {', '.join(INSTANTIATION_MODES)}.")
        return instantiate_period(self.store, user_id, self._period(period_key), mode=mode, track=track)

    def instantiate_all(
        self,
        period_key: str | None = None,
        *,
        mode: str = "ensure",
        track: str | None = None,
    ) -> dict[str, Any]:
        """Instantiate the period for every active profile, continuing past failures."""
        period = self._period(period_key)
        processed: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []
        for user_id in self.store.list_active_user_ids():
            try:
                out = instantiate_period(self.store, user_id, period, mode=mode, track=track)
            except Exception as exc:
                logger.exception("Instantiation failed for user %s in %s", user_id, period.key)
                failed.append({"user_id": user_id, "error": str(exc)})
                continue
            processed.append({"user_id": user_id, "created": out["created"], "total_tasks": len(out["user_tasks"])})
        logger.info("Instantiated %s for %s users (%s failed, mode=%s)", period.key, len(processed), len(failed), mode)
        return {"ok": not failed, "mode": mode, "period": period.key, "processed": processed, "failed": failed}

    def list_user_tasks(
        self,
        *,
        user_id: str,
        period_key: str | None = None,
        track: str | None = None,
    ) -> dict[str, Any]:
        self._require_profile(user_id)
        period = self._period(period_key)
        tasks = self.store.list_user_tasks(user_id=user_id, period_key=period.key, track=track)
        return {"ok": True, "user_id": user_id, **period.to_dict(), "user_tasks": tasks}

    # Evidence + signals

    def submit_evidence(self, *, user_task_id: str, kind: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.verifier.submit_evidence(user_task_id, kind, payload)

    def record_signal(
        self,
        *,
        user_id: str,
        kind: str,
        happened_at: datetime | str,
        actor: str | None = None,
        metadata: dict[str, Any] | None = None,
        external_id: str | None = None,
    ) -> dict[str, Any]:
        self._require_profile(user_id)
        signal = Signal.from_dict(
            {
                "user_id": user_id,
                "kind": kind,
                "happened_at": happened_at,
                "actor": actor,
                "metadata": metadata or {},
                "external_id": external_id,
            }
        )
        return self.store.record_signal(signal)

    # Verification + review

    def verify(self, *, user_id: str, period_key: str | None = None) -> dict[str, Any]:
        return self.verifier.verify_user(user_id, period_key)

    def verify_all(self, *, period_key: str | None = None) -> dict[str, Any]:
        return self.verifier.verify_all(period_key)

    def review_user_task(
        self,
        *,
        user_task_id: str,
        decision: str,
        reviewer: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        return self.verifier.review_user_task(user_task_id, decision, reviewer=reviewer, notes=notes)

    def run_weekly(self, *, period_key: str | None = None) -> dict[str, Any]:
        """Scheduled pass: ensure every active user has this week's tasks, then verify."""
        instantiated = self.instantiate_all(period_key, mode="ensure")
        verified = self.verify_all(period_key=instantiated["period"])
        return {
            "ok": bool(instantiated["ok"]) and bool(verified["ok"]),
            "period": instantiated["period"],
            "instantiate": instantiated,
            "verify": verified,
        }

    # Scores + ledger

    def get_score(self, *, user_id: str, period_key: str | None = None) -> dict[str, Any]:
        self._require_profile(user_id)
        period = self._period(period_key)
        summary = self.store.get_score_summary(user_id=user_id, period_key=period.key)
        if summary is None:
            summary = recompute_summary(self.store, user_id, period)
        return {"ok": True, **summary}

    def list_ledger(self, *, user_id: str, limit: int = 100) -> dict[str, Any]:
        self._require_profile(user_id)
        entries = self.store.list_ledger_entries(user_id=user_id, limit=limit)
        return {
            "ok": True,
            "user_id": user_id,
            "entries": entries,
        }

    def list_notifications(self, *, user_id: str, limit: int = 50) -> dict[str, Any]:
        self._require_profile(user_id)
        return {"ok": True, "user_id": user_id, "notifications": self.store.list_notifications(user_id=user_id, limit=limit)}


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE