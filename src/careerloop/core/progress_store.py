"""SQLite-backed store for profiles, catalog, user tasks, evidence, signals and scores."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable
from uuid import uuid4

from .config_loader import get_database_path, resolve_repo_path
from .progress_types import Evidence, Signal, TaskDefinition

logger = logging.getLogger(__name__)

_USER_TASK_COLUMNS = """
    ut.user_task_id, ut.user_id, ut.task_code, ut.period, ut.due_at, ut.status,
    ut.score_awarded, ut.verification_notes_json, ut.created_at, ut.updated_at, ut.verified_at,
    td.code AS def_code, td.track AS def_track, td.title AS def_title,
    td.description AS def_description, td.evidence_kinds_json AS def_evidence_kinds_json,
    td.base_points AS def_base_points, td.bonus_rules_json AS def_bonus_rules_json,
    td.day_offset AS def_day_offset, td.active AS def_active
"""


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _iso(dt: datetime) -> str:
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def _json_list(raw: Any) -> list[Any]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return value if isinstance(value, list) else []


def _json_dict(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def _definition_from_row(row: sqlite3.Row, *, prefix: str = "") -> TaskDefinition:
    return TaskDefinition(
        code=str(row[f"{prefix}code"]),
        track=str(row[f"{prefix}track"]),  # type: ignore[arg-type]
        title=str(row[f"{prefix}title"]),
        description=str(row[f"{prefix}description"] or ""),
        evidence_kinds=_json_list(row[f"{prefix}evidence_kinds_json"]),
        base_points=int(row[f"{prefix}base_points"]),
        bonus_rules=_json_list(row[f"{prefix}bonus_rules_json"]),
        day_offset=int(row[f"{prefix}day_offset"]),
        active=bool(row[f"{prefix}active"]),
    )


def _user_task_from_row(row: sqlite3.Row) -> dict[str, Any]:
    definition = _definition_from_row(row, prefix="def_") if row["def_code"] is not None else None
    return {
        "user_task_id": row["user_task_id"],
        "user_id": row["user_id"],
        "task_code": row["task_code"],
        "period": row["period"],
        "due_at": row["due_at"],
        "status": row["status"],
        "score_awarded": int(row["score_awarded"]),
        "verification_notes": _json_list(row["verification_notes_json"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "verified_at": row["verified_at"],
        "definition": definition.to_dict() if definition is not None else None,
    }


def _evidence_from_row(row: sqlite3.Row) -> dict[str, Any]:
    parsed = _json_dict(row["parsed_json"]) if row["parsed_json"] else None
    return {
        "evidence_id": row["evidence_id"],
        "user_task_id": row["user_task_id"],
        "kind": row["kind"],
        "url": row["url"],
        "file_key": row["file_key"],
        "parsed_json": parsed,
        "text": row["text"],
        "verification_status": row["verification_status"],
        "verification_notes": row["verification_notes"],
        "reviewed_by": row["reviewed_by"],
        "verified_at": row["verified_at"],
        "created_at": row["created_at"],
    }


def _signal_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "signal_id": row["signal_id"],
        "user_id": row["user_id"],
        "kind": row["kind"],
        "actor": row["actor"],
        "happened_at": row["happened_at"],
        "metadata": _json_dict(row["metadata_json"]),
        "external_id": row["external_id"],
        "created_at": row["created_at"],
    }


class ProgressStore:
    """Persist and query periodic task progress state."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            self._db_path = get_database_path()
        else:
            self._db_path = resolve_repo_path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS user_profiles (
                    user_id TEXT PRIMARY KEY,
                    display_name TEXT,
                    active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS task_definitions (
                    code TEXT PRIMARY KEY,
                    track TEXT NOT NULL CHECK (track IN ('linkedin', 'github', 'career', 'job_hunting')),
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    evidence_kinds_json TEXT NOT NULL DEFAULT '[]',
                    base_points INTEGER NOT NULL CHECK (base_points >= 0),
                    bonus_rules_json TEXT NOT NULL DEFAULT '[]',
                    day_offset INTEGER NOT NULL CHECK (day_offset BETWEEN 1 AND 7),
                    active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS user_tasks (
                    user_task_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    task_code TEXT NOT NULL,
                    period TEXT NOT NULL,
                    due_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'NOT_STARTED'
                        CHECK (status IN ('NOT_STARTED', 'SUBMITTED', 'PARTIALLY_VERIFIED', 'VERIFIED', 'REJECTED')),
                    score_awarded INTEGER NOT NULL DEFAULT 0 CHECK (score_awarded >= 0),
                    verification_notes_json TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    verified_at TEXT,
                    FOREIGN KEY(user_id) REFERENCES user_profiles(user_id),
                    UNIQUE(user_id, task_code, period)
                );

                CREATE TABLE IF NOT EXISTS evidence (
                    evidence_id TEXT PRIMARY KEY,
                    user_task_id TEXT NOT NULL,
                    kind TEXT NOT NULL CHECK (kind IN ('URL', 'FILE', 'SCREENSHOT', 'DATA_EXPORT', 'TEXT')),
                    url TEXT,
                    file_key TEXT,
                    parsed_json TEXT,
                    text TEXT,
                    verification_status TEXT NOT NULL DEFAULT 'pending'
                        CHECK (verification_status IN ('pending', 'approved', 'rejected')),
                    verification_notes TEXT,
                    reviewed_by TEXT,
                    verified_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(user_task_id) REFERENCES user_tasks(user_task_id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS signals (
                    signal_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    actor TEXT,
                    happened_at TEXT NOT NULL,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    external_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS score_summaries (
                    user_id TEXT NOT NULL,
                    period TEXT NOT NULL,
                    points_total INTEGER NOT NULL DEFAULT 0 CHECK (points_total >= 0),
                    breakdown_json TEXT NOT NULL DEFAULT '{}',
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY(user_id, period)
                );

                CREATE TABLE IF NOT EXISTS point_ledger (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    activity_id TEXT NOT NULL,
                    activity_date TEXT NOT NULL,
                    activity_type TEXT NOT NULL,
                    points_earned INTEGER NOT NULL CHECK (points_earned >= 0),
                    description TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(user_id, activity_id, activity_date)
                );

                CREATE TABLE IF NOT EXISTS notification_outbox (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    related_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_task_definitions_active_track
                    ON task_definitions(active, track, day_offset, code);
                CREATE INDEX IF NOT EXISTS idx_user_tasks_user_period
                    ON user_tasks(user_id, period);
                CREATE INDEX IF NOT EXISTS idx_user_tasks_period
                    ON user_tasks(period, user_id);
                CREATE INDEX IF NOT EXISTS idx_evidence_user_task
                    ON evidence(user_task_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_signals_user_happened_at
                    ON signals(user_id, happened_at);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_signals_user_external_id
                    ON signals(user_id, external_id)
                    WHERE external_id IS NOT NULL;
                CREATE INDEX IF NOT EXISTS idx_point_ledger_user_date
                    ON point_ledger(user_id, activity_date);
                CREATE INDEX IF NOT EXISTS idx_notification_outbox_user_created
                    ON notification_outbox(user_id, created_at);
                """
            )

    # Profiles

    def upsert_profile(self, *, user_id: str, display_name: str | None = None, active: bool = True) -> dict[str, Any]:
        clean_user = str(user_id or "").strip()
        if not clean_user:
            return {"ok": False, "error": "user_id is required."}
        now = _iso(_utc_now())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_profiles(user_id, display_name, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    display_name = COALESCE(excluded.display_name, user_profiles.display_name),
                    active = excluded.active,
                    updated_at = excluded.updated_at;
                """,
                (clean_user, display_name, 1 if active else 0, now, now),
            )
        return {"ok": True, "user_id": clean_user}

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id, display_name, active, created_at, updated_at FROM user_profiles WHERE user_id = ?;",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "user_id": row["user_id"],
            "display_name": row["display_name"],
            "active": bool(row["active"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def list_active_user_ids(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM user_profiles WHERE active = 1 ORDER BY user_id ASC;"
            ).fetchall()
        return [str(row["user_id"]) for row in rows]

    # Catalog

    def sync_task_definitions(
        self,
        definitions: Iterable[TaskDefinition],
        *,
        deactivate_missing: bool = False,
    ) -> dict[str, Any]:
        now = _iso(_utc_now())
        upserted = 0
        deactivated = 0
        seen: list[str] = []
        with self._connect() as conn:
            for definition in definitions:
                conn.execute(
                    """
                    INSERT INTO task_definitions(
                        code, track, title, description, evidence_kinds_json, base_points,
                        bonus_rules_json, day_offset, active, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(code) DO UPDATE SET
                        track = excluded.track,
                        title = excluded.title,
                        description = excluded.description,
                        evidence_kinds_json = excluded.evidence_kinds_json,
                        base_points = excluded.base_points,
                        bonus_rules_json = excluded.bonus_rules_json,
                        day_offset = excluded.day_offset,
                        active = excluded.active,
                        updated_at = excluded.updated_at;
                    """,
                    (
                        definition.code,
                        definition.track,
                        definition.title,
                        definition.description,
                        json.dumps(definition.evidence_kinds),
                        definition.base_points,
                        json.dumps(definition.bonus_rules),
                        definition.day_offset,
                        1 if definition.active else 0,
                        now,
                        now,
                    ),
                )
                seen.append(definition.code)
                upserted += 1

            if deactivate_missing:
                placeholders = ", ".join("?" for _ in seen) or "''"
                res = conn.execute(
                    f"UPDATE task_definitions SET active = 0, updated_at = ? WHERE active = 1 AND code NOT IN ({placeholders});",
                    (now, *seen),
                )
                deactivated = int(res.rowcount or 0)
        return {"ok": True, "upserted": upserted, "deactivated": deactivated}

    def list_task_definitions(self, *, active_only: bool = True, track: str | None = None) -> list[TaskDefinition]:
        clauses: list[str] = []
        params: list[Any] = []
        if active_only:
            clauses.append("active = 1")
        if track:
            clauses.append("track = ?")
            params.append(track)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT code, track, title, description, evidence_kinds_json, base_points,
                       bonus_rules_json, day_offset, active
                FROM task_definitions
                {where}
                ORDER BY track ASC, day_offset ASC, code ASC;
                """,
                params,
            ).fetchall()
        return [_definition_from_row(row) for row in rows]

    def get_task_definition(self, code: str) -> TaskDefinition | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT code, track, title, description, evidence_kinds_json, base_points,
                       bonus_rules_json, day_offset, active
                FROM task_definitions WHERE code = ?;
                """,
                (code,),
            ).fetchone()
        return _definition_from_row(row) if row is not None else None

    # User tasks

    def _insert_user_tasks(
        self,
        conn: sqlite3.Connection,
        *,
        user_id: str,
        period_key: str,
        rows: list[dict[str, Any]],
        now: str,
    ) -> int:
        created = 0
        for item in rows:
            res = conn.execute(
                """
                INSERT INTO user_tasks(
                    user_task_id, user_id, task_code, period, due_at, status,
                    score_awarded, verification_notes_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'NOT_STARTED', 0, '[]', ?, ?)
                ON CONFLICT(user_id, task_code, period) DO NOTHING;
                """,
                (f"utask_{uuid4().hex}", user_id, str(item["task_code"]), period_key, str(item["due_at"]), now, now),
            )
            created += int(res.rowcount or 0)
        return created

    def replace_user_tasks(
        self,
        *,
        user_id: str,
        period_key: str,
        rows: list[dict[str, Any]],
        track: str | None = None,
    ) -> dict[str, Any]:
        """Delete the period's user tasks and evidence, then insert `rows`, in one transaction."""
        now = _iso(_utc_now())
        scope_sql = "user_id = ? AND period = ?"
        scope_params: list[Any] = [user_id, period_key]
        if track:
            scope_sql += " AND task_code IN (SELECT code FROM task_definitions WHERE track = ?)"
            scope_params.append(track)

        with self._connect() as conn:
            res_evidence = conn.execute(
                f"DELETE FROM evidence WHERE user_task_id IN (SELECT user_task_id FROM user_tasks WHERE {scope_sql});",
                scope_params,
            )
            res_tasks = conn.execute(f"DELETE FROM user_tasks WHERE {scope_sql};", scope_params)
            created = self._insert_user_tasks(conn, user_id=user_id, period_key=period_key, rows=rows, now=now)
        return {
            "ok": True,
            "deleted_tasks": int(res_tasks.rowcount or 0),
            "deleted_evidence": int(res_evidence.rowcount or 0),
            "created": created,
        }

    def insert_missing_user_tasks(self, *, user_id: str, period_key: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        now = _iso(_utc_now())
        with self._connect() as conn:
            created = self._insert_user_tasks(conn, user_id=user_id, period_key=period_key, rows=rows, now=now)
        return {"ok": True, "created": created}

    def list_user_tasks(self, *, user_id: str, period_key: str, track: str | None = None) -> list[dict[str, Any]]:
        params: list[Any] = [user_id, period_key]
        track_sql = ""
        if track:
            track_sql = "AND td.track = ?"
            params.append(track)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_USER_TASK_COLUMNS}
                FROM user_tasks ut
                LEFT JOIN task_definitions td ON td.code = ut.task_code
                WHERE ut.user_id = ? AND ut.period = ? {track_sql}
                ORDER BY ut.due_at ASC, ut.task_code ASC;
                """,
                params,
            ).fetchall()
        return [_user_task_from_row(row) for row in rows]

    def get_user_task(self, user_task_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_USER_TASK_COLUMNS}
                FROM user_tasks ut
                LEFT JOIN task_definitions td ON td.code = ut.task_code
                WHERE ut.user_task_id = ?;
                """,
                (user_task_id,),
            ).fetchone()
        return _user_task_from_row(row) if row is not None else None

    def list_period_user_ids(self, period_key: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM user_tasks WHERE period = ? ORDER BY user_id ASC;",
                (period_key,),
            ).fetchall()
        return [str(row["user_id"]) for row in rows]

    def update_user_task_outcome(
        self,
        *,
        user_task_id: str,
        expected_status: str,
        status: str,
        score_awarded: int,
        notes: list[str],
        verified_at: datetime | None = None,
    ) -> bool:
        """Write an outcome only if the task still holds `expected_status`."""
        now = _iso(_utc_now())
        with self._connect() as conn:
            res = conn.execute(
                """
                UPDATE user_tasks
                SET status = ?,
                    score_awarded = ?,
                    verification_notes_json = ?,
                    verified_at = COALESCE(?, verified_at),
                    updated_at = ?
                WHERE user_task_id = ? AND status = ?;
                """,
                (
                    status,
                    int(score_awarded),
                    json.dumps(list(notes)),
                    _iso(verified_at) if verified_at is not None else None,
                    now,
                    user_task_id,
                    expected_status,
                ),
            )
        return bool(res.rowcount)

    def mark_submitted(self, user_task_id: str) -> bool:
        """Move a task to SUBMITTED when it has not been worked on or was rejected."""
        now = _iso(_utc_now())
        with self._connect() as conn:
            res = conn.execute(
                """
                UPDATE user_tasks
                SET status = 'SUBMITTED', updated_at = ?
                WHERE user_task_id = ? AND status IN ('NOT_STARTED', 'REJECTED');
                """,
                (now, user_task_id),
            )
        return bool(res.rowcount)

    def set_user_task_score(self, *, user_task_id: str, score_awarded: int) -> bool:
        """Overwrite the awarded score directly (admin correction)."""
        now = _iso(_utc_now())
        with self._connect() as conn:
            res = conn.execute(
                "UPDATE user_tasks SET score_awarded = ?, updated_at = ? WHERE user_task_id = ?;",
                (int(score_awarded), now, user_task_id),
            )
        return bool(res.rowcount)

    def period_task_stats(self, *, user_id: str, period_key: str) -> dict[str, int]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_tasks,
                    COALESCE(SUM(ut.score_awarded), 0) AS points_total,
                    COALESCE(SUM(CASE WHEN ut.status = 'VERIFIED' THEN 1 ELSE 0 END), 0) AS completed_tasks,
                    COALESCE(SUM(CASE WHEN ut.status = 'PARTIALLY_VERIFIED' THEN 1 ELSE 0 END), 0) AS partially_verified_tasks,
                    COALESCE(SUM(CASE WHEN ut.status = 'SUBMITTED' THEN 1 ELSE 0 END), 0) AS submitted_tasks,
                    COALESCE(SUM(CASE WHEN ut.status = 'REJECTED' THEN 1 ELSE 0 END), 0) AS rejected_tasks,
                    COALESCE(SUM(CASE WHEN ut.status = 'NOT_STARTED' THEN 1 ELSE 0 END), 0) AS not_started_tasks,
                    COALESCE(SUM(td.base_points), 0) AS points_possible
                FROM user_tasks ut
                LEFT JOIN task_definitions td ON td.code = ut.task_code
                WHERE ut.user_id = ? AND ut.period = ?;
                """,
                (user_id, period_key),
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}

    # Evidence

    def add_evidence(self, evidence: Evidence) -> dict[str, Any]:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO evidence(
                    evidence_id, user_task_id, kind, url, file_key, parsed_json, text,
                    verification_status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    evidence.evidence_id,
                    evidence.user_task_id,
                    evidence.kind,
                    evidence.url,
                    evidence.file_key,
                    json.dumps(evidence.parsed_json) if evidence.parsed_json is not None else None,
                    evidence.text,
                    evidence.verification_status,
                    _iso(evidence.created_at),
                ),
            )
        return {"ok": True, "evidence_id": evidence.evidence_id}

    def list_evidence(self, user_task_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM evidence WHERE user_task_id = ? ORDER BY created_at ASC, evidence_id ASC;",
                (user_task_id,),
            ).fetchall()
        return [_evidence_from_row(row) for row in rows]

    def set_evidence_review(
        self,
        *,
        status: str,
        evidence_id: str | None = None,
        user_task_id: str | None = None,
        notes: str | None = None,
        reviewed_by: str | None = None,
        only_pending: bool = False,
    ) -> int:
        """Attach a review outcome to one evidence row or to every row of a user task."""
        if status not in {"pending", "approved", "rejected"}:
            raise ValueError("invalid evidence review status")
        if evidence_id is None and user_task_id is None:
            raise ValueError("evidence_id or user_task_id is required")
        now = _iso(_utc_now())
        target_sql = "evidence_id = ?" if evidence_id is not None else "user_task_id = ?"
        target = evidence_id if evidence_id is not None else user_task_id
        pending_sql = " AND verification_status = 'pending'" if only_pending else ""
        with self._connect() as conn:
            res = conn.execute(
                f"""
                UPDATE evidence
                SET verification_status = ?, verification_notes = ?, reviewed_by = ?, verified_at = ?
                WHERE {target_sql}{pending_sql};
                """,
                (status, notes, reviewed_by, now, target),
            )
        return int(res.rowcount or 0)

    # Signals

    def record_signal(self, signal: Signal) -> dict[str, Any]:
        now = _iso(_utc_now())
        with self._connect() as conn:
            res = conn.execute(
                """
                INSERT OR IGNORE INTO signals(
                    signal_id, user_id, kind, actor, happened_at, metadata_json, external_id, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    signal.signal_id,
                    signal.user_id,
                    signal.kind,
                    signal.actor,
                    _iso(signal.happened_at),
                    json.dumps(signal.metadata),
                    signal.external_id,
                    now,
                ),
            )
        recorded = bool(res.rowcount)
        if not recorded:
            logger.info("Ignored duplicate signal external_id=%s for user %s", signal.external_id, signal.user_id)
        return {"ok": True, "signal_id": signal.signal_id, "recorded": recorded}

    def list_signals(
        self,
        *,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        kinds: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if start is not None:
            clauses.append("happened_at >= ?")
            params.append(_iso(start))
        if end is not None:
            clauses.append("happened_at <= ?")
            params.append(_iso(end))
        kind_list = [str(kind).upper() for kind in kinds or []]
        if kind_list:
            clauses.append(f"kind IN ({', '.join('?' for _ in kind_list)})")
            params.extend(kind_list)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT signal_id, user_id, kind, actor, happened_at, metadata_json, external_id, created_at
                FROM signals
                WHERE {' AND '.join(clauses)}
                ORDER BY happened_at ASC, signal_id ASC;
                """,
                params,
            ).fetchall()
        return [_signal_from_row(row) for row in rows]

    # Score summaries

    def upsert_score_summary(
        self,
        *,
        user_id: str,
        period_key: str,
        points_total: int,
        breakdown: dict[str, Any],
    ) -> dict[str, Any]:
        now = _iso(_utc_now())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO score_summaries(user_id, period, points_total, breakdown_json, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, period) DO UPDATE SET
                    points_total = excluded.points_total,
                    breakdown_json = excluded.breakdown_json,
                    updated_at = excluded.updated_at;
                """,
                (user_id, period_key, int(points_total), json.dumps(breakdown), now),
            )
        return {"ok": True, "user_id": user_id, "period": period_key, "points_total": int(points_total)}

    def get_score_summary(self, *, user_id: str, period_key: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT user_id, period, points_total, breakdown_json, updated_at
                FROM score_summaries WHERE user_id = ? AND period = ?;
                """,
                (user_id, period_key),
            ).fetchone()
        if row is None:
            return None
        return {
            "user_id": row["user_id"],
            "period": row["period"],
            "points_total": int(row["points_total"]),
            "breakdown": _json_dict(row["breakdown_json"]),
            "updated_at": row["updated_at"],
        }

    # Point ledger

    def insert_ledger_entry(
        self,
        *,
        user_id: str,
        activity_id: str,
        activity_date: str,
        activity_type: str,
        points_earned: int,
        description: str | None = None,
    ) -> bool:
        """Insert one ledger row; returns False when the (user, activity, date) entry already exists."""
        now = _iso(_utc_now())
        with self._connect() as conn:
            res = conn.execute(
                """
                INSERT INTO point_ledger(
                    user_id, activity_id, activity_date, activity_type, points_earned, description, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, activity_id, activity_date) DO NOTHING;
                """,
                (user_id, activity_id, activity_date, activity_type, int(points_earned), description, now),
            )
        return bool(res.rowcount)

    def has_ledger_activity(self, *, user_id: str, activity_id: str) -> bool:
        """True when any ledger row exists for the activity, on any date."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM point_ledger WHERE user_id = ? AND activity_id = ? LIMIT 1;",
                (user_id, activity_id),
            ).fetchone()
        return row is not None

    def list_ledger_entries(self, *, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
        safe_limit = max(1, min(500, int(limit)))
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT entry_id, user_id, activity_id, activity_date, activity_type,
                       points_earned, description, created_at
                FROM point_ledger
                WHERE user_id = ?
                ORDER BY entry_id DESC
                LIMIT ?;
                """,
                (user_id, safe_limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def count_ledger_entries(self, *, user_id: str | None = None) -> int:
        with self._connect() as conn:
            if user_id is None:
                row = conn.execute("SELECT COUNT(*) AS c FROM point_ledger;").fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) AS c FROM point_ledger WHERE user_id = ?;", (user_id,)).fetchone()
        return int(row["c"])

    # Notification outbox

    def enqueue_notification(
        self,
        *,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> dict[str, Any]:
        notification_id = f"ntf_{uuid4().hex}"
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO notification_outbox(notification_id, user_id, kind, title, message, related_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (notification_id, user_id, kind, title, message, related_id, _iso(_utc_now())),
            )
        return {"ok": True, "notification_id": notification_id}

    def list_notifications(self, *, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        safe_limit = max(1, min(500, int(limit)))
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT notification_id, user_id, kind, title, message, related_id, created_at
                FROM notification_outbox
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ?;
                """,
                (user_id, safe_limit),
            ).fetchall()
        return [dict(row) for row in rows]
