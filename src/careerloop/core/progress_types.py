"""Core schemas for task assignment, evidence, signals and verification outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Mapping
from urllib.parse import urlparse
from uuid import uuid4

from .errors import InvalidEvidence

UserTaskStatus = Literal["NOT_STARTED", "SUBMITTED", "PARTIALLY_VERIFIED", "VERIFIED", "REJECTED"]
EvidenceKind = Literal["URL", "FILE", "SCREENSHOT", "DATA_EXPORT", "TEXT"]
Track = Literal["linkedin", "github", "career", "job_hunting"]

USER_TASK_STATUSES = ("NOT_STARTED", "SUBMITTED", "PARTIALLY_VERIFIED", "VERIFIED", "REJECTED")
EVIDENCE_KINDS = ("URL", "FILE", "SCREENSHOT", "DATA_EXPORT", "TEXT")
EVIDENCE_REVIEW_STATUSES = ("pending", "approved", "rejected")
TRACKS = ("linkedin", "github", "career", "job_hunting")

SIGNAL_MEASURES = ("count", "actors", "days")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError("Expected an ISO-8601 timestamp.")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


@dataclass(frozen=True, slots=True)
class BonusTier:
    """Additive bonus: `points` when `measure` over `kinds` reaches `at_least`."""

    measure: str
    kinds: tuple[str, ...]
    at_least: int
    points: int
    note: str = ""

    def __post_init__(self) -> None:
        if self.measure not in SIGNAL_MEASURES:
            raise ValueError(f"BonusTier.measure must be one of: {', '.join(SIGNAL_MEASURES)}.")
        if self.at_least < 1:
            raise ValueError("BonusTier.at_least must be >= 1.")
        if self.points < 0:
            raise ValueError("BonusTier.points must be non-negative.")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BonusTier":
        kinds = payload.get("kinds") or []
        if isinstance(kinds, str):
            kinds = [kinds]
        try:
            at_least = int(payload.get("at_least", 1))
            points = int(payload.get("points", 0))
        except (TypeError, ValueError) as exc:
            raise ValueError("BonusTier.at_least and points must be integers.") from exc
        return cls(
            measure=str(payload.get("measure") or "count"),
            kinds=tuple(str(kind).upper() for kind in kinds),
            at_least=at_least,
            points=points,
            note=str(payload.get("note") or ""),
        )


@dataclass(slots=True)
class TaskDefinition:
    """One catalog entry."""

    code: str
    track: Track
    title: str
    base_points: int
    day_offset: int
    description: str = ""
    evidence_kinds: list[str] = field(default_factory=list)
    bonus_rules: list[dict[str, Any]] = field(default_factory=list)
    active: bool = True

    def __post_init__(self) -> None:
        self.code = str(self.code or "").strip()
        if not self.code:
            raise ValueError("TaskDefinition.code must be non-empty.")
        if self.track not in TRACKS:
            raise ValueError(f"TaskDefinition.track must be one of: {', '.join(TRACKS)}.")
        if not isinstance(self.base_points, int) or self.base_points < 0:
            raise ValueError("TaskDefinition.base_points must be a non-negative integer.")
        if not isinstance(self.day_offset, int) or not 1 <= self.day_offset <= 7:
            raise ValueError("TaskDefinition.day_offset must be between 1 and 7.")
        kinds = [str(kind).strip().upper() for kind in self.evidence_kinds if str(kind).strip()]
        unknown = [kind for kind in kinds if kind not in EVIDENCE_KINDS]
        if unknown:
            raise ValueError(f"TaskDefinition.evidence_kinds has unknown kinds: {', '.join(unknown)}.")
        self.evidence_kinds = list(dict.fromkeys(kinds))
        for idx, tier in enumerate(self.bonus_rules):
            if not isinstance(tier, Mapping):
                raise ValueError(f"TaskDefinition.bonus_rules[{idx}] must be an object.")
            try:
                BonusTier.from_dict(tier)
            except ValueError as exc:
                raise ValueError(f"TaskDefinition.bonus_rules[{idx}]: {exc}") from exc

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TaskDefinition":
        bonus_rules = payload.get("bonus_rules")
        return cls(
            code=str(payload.get("code") or ""),
            track=str(payload.get("track") or ""),  # type: ignore[arg-type]
            title=str(payload.get("title") or payload.get("code") or ""),
            base_points=payload.get("base_points", 0),
            day_offset=payload.get("day_offset", 1),
            description=str(payload.get("description") or ""),
            evidence_kinds=list(payload.get("evidence_kinds") or []),
            bonus_rules=list(bonus_rules) if isinstance(bonus_rules, list) else [],
            active=bool(payload.get("active", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "track": self.track,
            "title": self.title,
            "description": self.description,
            "evidence_kinds": list(self.evidence_kinds),
            "base_points": self.base_points,
            "bonus_rules": list(self.bonus_rules),
            "day_offset": self.day_offset,
            "active": self.active,
        }


@dataclass(slots=True)
class Evidence:
    """User-submitted proof attached to one user task."""

    user_task_id: str
    kind: EvidenceKind
    url: str | None = None
    file_key: str | None = None
    parsed_json: dict[str, Any] | None = None
    text: str | None = None
    verification_status: str = "pending"
    evidence_id: str = field(default_factory=lambda: f"evd_{uuid4().hex}")
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        self.kind = str(self.kind or "").strip().upper()  # type: ignore[assignment]
        if self.kind not in EVIDENCE_KINDS:
            raise InvalidEvidence(f"Unknown evidence kind: {self.kind or '(empty)'}.")
        if self.verification_status not in EVIDENCE_REVIEW_STATUSES:
            raise InvalidEvidence("Evidence.verification_status is invalid.")
        self.created_at = _parse_instant(self.created_at)

    def validate_payload(self) -> None:
        """Check the kind-specific payload is present and well-formed."""
        if self.kind == "URL":
            if not isinstance(self.url, str) or not _is_http_url(self.url.strip()):
                raise InvalidEvidence("URL evidence requires an absolute http(s) url.")
        elif self.kind in {"FILE", "SCREENSHOT"}:
            if not isinstance(self.file_key, str) or not self.file_key.strip():
                raise InvalidEvidence(f"{self.kind} evidence requires a file_key.")
        elif self.kind == "DATA_EXPORT":
            has_json = isinstance(self.parsed_json, dict)
            has_file = isinstance(self.file_key, str) and bool(self.file_key.strip())
            if not has_json and not has_file:
                raise InvalidEvidence("DATA_EXPORT evidence requires parsed_json or a file_key.")
        elif self.kind == "TEXT":
            if not isinstance(self.text, str) or not self.text.strip():
                raise InvalidEvidence("TEXT evidence requires non-empty text.")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Evidence":
        parsed_json = payload.get("parsed_json")
        return cls(
            evidence_id=str(payload.get("evidence_id") or f"evd_{uuid4().hex}"),
            user_task_id=str(payload.get("user_task_id") or ""),
            kind=str(payload.get("kind") or ""),  # type: ignore[arg-type]
            url=payload.get("url"),
            file_key=payload.get("file_key"),
            parsed_json=parsed_json if isinstance(parsed_json, dict) else None,
            text=payload.get("text"),
            verification_status=str(payload.get("verification_status") or "pending"),
            created_at=payload.get("created_at") or _utc_now(),
        )


@dataclass(slots=True)
class Signal:
    """Externally observed event tied to a user."""

    user_id: str
    kind: str
    happened_at: datetime
    actor: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    external_id: str | None = None
    signal_id: str = field(default_factory=lambda: f"sig_{uuid4().hex}")

    def __post_init__(self) -> None:
        if not self.user_id.strip():
            raise ValueError("Signal.user_id must be non-empty.")
        self.kind = str(self.kind or "").strip().upper()
        if not self.kind:
            raise ValueError("Signal.kind must be non-empty.")
        self.happened_at = _parse_instant(self.happened_at)
        if isinstance(self.actor, str):
            self.actor = self.actor.strip() or None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Signal":
        metadata = payload.get("metadata")
        return cls(
            signal_id=str(payload.get("signal_id") or f"sig_{uuid4().hex}"),
            user_id=str(payload.get("user_id") or ""),
            kind=str(payload.get("kind") or ""),
            actor=payload.get("actor"),
            happened_at=payload.get("happened_at"),  # type: ignore[arg-type]
            metadata=metadata if isinstance(metadata, dict) else {},
            external_id=payload.get("external_id"),
        )


@dataclass(slots=True)
class VerificationOutcome:
    """Result of running one rule."""

    status: UserTaskStatus
    points: int
    notes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.status not in USER_TASK_STATUSES:
            raise ValueError("VerificationOutcome.status is invalid.")
        if not isinstance(self.points, int) or self.points < 0:
            raise ValueError("VerificationOutcome.points must be a non-negative integer.")

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "points": self.points, "notes": list(self.notes)}
