"""LinkedIn weekly rules, corroborated by LinkedIn activity signals."""

from __future__ import annotations

from ..rule_engine import EvidenceOnlyRule, RuleRegistry, SignalThresholdRule
from .common import STANDARD_FILE_CHECKS, all_of, text_min_length, url_on_domains

ENGAGEMENT_SIGNALS = ("COMMENTED", "REACTED", "MENTIONED")
LINKEDIN_FRACTIONS = {"URL": 0.8, "SCREENSHOT": 0.9, "FILE": 0.9}

_linkedin_evidence = all_of(url_on_domains("linkedin.com", "lnkd.in"), STANDARD_FILE_CHECKS)
_linkedin_note = "Evidence URL must point to linkedin.com."


def build_linkedin_rules() -> list:
    return [
        SignalThresholdRule(
            code="LI_PROFILE_REFRESH",
            signal_kinds=("PROFILE_UPDATED",),
            required=1,
            evidence_fractions=LINKEDIN_FRACTIONS,
            evidence_predicate=_linkedin_evidence,
            predicate_note=_linkedin_note,
            label="profile updates",
        ),
        SignalThresholdRule(
            code="LI_CONNECT_5",
            signal_kinds=("INVITE_ACCEPTED",),
            required=5,
            measure="actors",
            evidence_fractions=LINKEDIN_FRACTIONS,
            default_bonus=(
                {
                    "measure": "actors",
                    "kinds": ["INVITE_ACCEPTED"],
                    "at_least": 10,
                    "points": 5,
                    "note": "+5 points for 10 new connections",
                },
            ),
            evidence_predicate=_linkedin_evidence,
            predicate_note=_linkedin_note,
            label="accepted invites",
        ),
        SignalThresholdRule(
            code="LI_COMMENT_3",
            signal_kinds=("COMMENTED",),
            required=3,
            evidence_fractions=LINKEDIN_FRACTIONS,
            evidence_predicate=_linkedin_evidence,
            predicate_note=_linkedin_note,
            label="comments",
        ),
        SignalThresholdRule(
            code="LI_POST_PUBLISH",
            signal_kinds=("POST_PUBLISHED",),
            required=1,
            evidence_fractions=LINKEDIN_FRACTIONS,
            default_bonus=(
                {
                    "measure": "actors",
                    "kinds": list(ENGAGEMENT_SIGNALS),
                    "at_least": 10,
                    "points": 5,
                    "note": "+5 points for 10 distinct people engaging with the post",
                },
            ),
            evidence_predicate=_linkedin_evidence,
            predicate_note=_linkedin_note,
            label="published posts",
        ),
        SignalThresholdRule(
            code="LI_ENGAGE_NETWORK",
            signal_kinds=ENGAGEMENT_SIGNALS,
            required=3,
            measure="actors",
            evidence_fractions=LINKEDIN_FRACTIONS,
            default_bonus=(
                {
                    "measure": "actors",
                    "kinds": list(ENGAGEMENT_SIGNALS),
                    "at_least": 3,
                    "points": 5,
                    "note": "+5 points for 3 distinct actors engaging",
                },
            ),
            evidence_predicate=_linkedin_evidence,
            predicate_note=_linkedin_note,
            label="distinct actors engaging",
        ),
        EvidenceOnlyRule(
            code="LI_WEEKLY_REVIEW",
            verifying_kinds=("TEXT",),
            evidence_fractions={"SCREENSHOT": 0.5},
            evidence_predicate=text_min_length(),
            predicate_note="Weekly review must be at least 50 characters.",
        ),
    ]


def register_linkedin_rules(registry: RuleRegistry) -> None:
    for rule in build_linkedin_rules():
        registry.register(rule)
