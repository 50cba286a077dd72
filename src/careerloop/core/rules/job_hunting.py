"""Job-hunting weekly rules."""

from __future__ import annotations

from ..rule_engine import EvidenceOnlyRule, RuleRegistry, SignalThresholdRule
from .common import STANDARD_FILE_CHECKS, all_of, text_min_length

# URL claims weigh less than a screenshot or an uploaded file.
JOB_HUNTING_FRACTIONS = {"URL": 0.8, "SCREENSHOT": 0.9, "FILE": 0.9, "DATA_EXPORT": 0.9}


def build_job_hunting_rules() -> list:
    return [
        SignalThresholdRule(
            code="JH_APPLY_3",
            signal_kinds=("APPLICATION_SUBMITTED",),
            required=3,
            evidence_fractions=JOB_HUNTING_FRACTIONS,
            default_bonus=(
                {
                    "measure": "count",
                    "kinds": ["APPLICATION_SUBMITTED"],
                    "at_least": 5,
                    "points": 5,
                    "note": "+5 points for 5 applications",
                },
            ),
            evidence_predicate=STANDARD_FILE_CHECKS,
            label="applications",
        ),
        SignalThresholdRule(
            code="JH_FOLLOW_UP",
            signal_kinds=("FOLLOW_UP_SENT",),
            required=2,
            evidence_fractions={"URL": 0.8, "SCREENSHOT": 0.9, "TEXT": 0.5},
            default_bonus=(
                {
                    "measure": "count",
                    "kinds": ["RECRUITER_REPLIED"],
                    "at_least": 1,
                    "points": 5,
                    "note": "+5 points for a recruiter reply",
                },
            ),
            evidence_predicate=all_of(text_min_length(), STANDARD_FILE_CHECKS),
            predicate_note="Follow-up notes must be at least 50 characters.",
            label="follow-ups",
        ),
        EvidenceOnlyRule(
            code="JH_TRACKER_LOG",
            verifying_kinds=("FILE", "DATA_EXPORT"),
            evidence_fractions={"URL": 0.8, "SCREENSHOT": 0.9},
            evidence_predicate=STANDARD_FILE_CHECKS,
            predicate_note="Tracker export must be a csv, json, txt or xlsx file.",
        ),
        EvidenceOnlyRule(
            code="JH_RESEARCH_COMPANY",
            verifying_kinds=("TEXT",),
            evidence_fractions={"URL": 0.8},
            evidence_predicate=text_min_length(),
            predicate_note="Company research notes must be at least 50 characters.",
        ),
    ]


def register_job_hunting_rules(registry: RuleRegistry) -> None:
    for rule in build_job_hunting_rules():
        registry.register(rule)
