"""Career profile setup rules (resume, headline, GitHub presence)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from ..progress_types import VerificationOutcome
from ..rule_engine import (
    EvidenceOnlyRule,
    HeadlineRule,
    RuleRegistry,
    SignalThresholdRule,
    VerificationWindow,
    field_of,
    max_points,
    parse_bonus_tiers,
)
from .common import metadata_flag

GITHUB_PROFILE_RE = re.compile(r"github\.com/([A-Za-z0-9](?:[A-Za-z0-9-]{0,38}))/?$", re.IGNORECASE)
RESUME_MIN_WORDS = 350


def _is_github_profile_url(item: Any) -> bool:
    if str(field_of(item, "kind") or "").upper() != "URL":
        return True
    url = str(field_of(item, "url") or "").strip()
    return GITHUB_PROFILE_RE.search(url) is not None


@dataclass(slots=True)
class ResumeRule:
    """Resume file plus the analysis attached by the resume parser.

    The parser writes `{"has_email", "has_phone", "words"}` into the evidence's
    `parsed_json`; without it the upload only counts as submitted.
    """

    code: str
    min_words: int = RESUME_MIN_WORDS
    pending_fraction: float = 0.5
    incomplete_fraction: float = 0.7

    def evaluate(
        self,
        evidence: Sequence[Any],
        signals: Sequence[Any],
        window: VerificationWindow,
        *,
        base_points: int,
        bonus_rules: Sequence[Any] | None = None,
    ) -> VerificationOutcome:
        ceiling = max_points(base_points, parse_bonus_tiers(bonus_rules))
        if not evidence:
            return VerificationOutcome(status="NOT_STARTED", points=0, notes=["No evidence submitted."])

        uploads = [item for item in evidence if str(field_of(item, "kind") or "").upper() in {"FILE", "DATA_EXPORT"}]
        if not uploads:
            return VerificationOutcome(status="SUBMITTED", points=0, notes=["No resume file uploaded."])

        analysis = next(
            (field_of(item, "parsed_json") for item in reversed(uploads) if isinstance(field_of(item, "parsed_json"), dict)),
            None,
        )
        if analysis is None:
            points = min(ceiling, int(base_points * self.pending_fraction))
            return VerificationOutcome(status="SUBMITTED", points=points, notes=["Resume uploaded, analysis pending."])

        missing: list[str] = []
        if not analysis.get("has_email"):
            missing.append("email")
        if not analysis.get("has_phone"):
            missing.append("phone")
        try:
            words = int(analysis.get("words") or 0)
        except (TypeError, ValueError):
            words = 0
        if words < self.min_words:
            missing.append(f"at least {self.min_words} words")

        if not missing:
            return VerificationOutcome(status="VERIFIED", points=min(ceiling, base_points), notes=["Resume meets all requirements."])
        points = min(ceiling, int(base_points * self.incomplete_fraction))
        return VerificationOutcome(
            status="PARTIALLY_VERIFIED",
            points=points,
            notes=[f"Resume uploaded but missing: {', '.join(missing)}."],
        )


def build_career_rules() -> list:
    return [
        ResumeRule(code="RESUME_UPLOAD_PRIMARY"),
        HeadlineRule(code="LI_HEADLINE_70"),
        EvidenceOnlyRule(
            code="GH_USERNAME_SET",
            verifying_kinds=("URL",),
            evidence_predicate=_is_github_profile_url,
            predicate_note="Invalid GitHub profile URL format (expected https://github.com/<username>).",
        ),
        SignalThresholdRule(
            code="GH_PORTFOLIO_REPO",
            signal_kinds=("PROFILE_UPDATED",),
            required=1,
            evidence_fractions={"URL": 0.5, "SCREENSHOT": 0.5},
            signal_predicate=metadata_flag("has_portfolio_repo"),
            label="profile snapshots showing a portfolio repository",
        ),
        SignalThresholdRule(
            code="GH_COMMIT_3DAYS",
            signal_kinds=("COMMIT_PUSHED",),
            required=3,
            measure="days",
            evidence_fractions={"URL": 0.5, "SCREENSHOT": 0.6},
            label="distinct commit days",
        ),
    ]


def register_career_rules(registry: RuleRegistry) -> None:
    for rule in build_career_rules():
        registry.register(rule)
