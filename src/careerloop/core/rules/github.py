"""GitHub weekly rules, corroborated by repository webhook signals."""

from __future__ import annotations

from ..rule_engine import RuleRegistry, SignalThresholdRule
from .common import DEPLOYMENT_HOST_SUFFIXES, STANDARD_FILE_CHECKS, all_of, url_contains, url_on_domains

GITHUB_FRACTIONS = {"URL": 0.5, "SCREENSHOT": 0.6}

_github_url = all_of(url_on_domains("github.com"), STANDARD_FILE_CHECKS)
_github_note = "Evidence URL must point to github.com."


def build_github_rules() -> list:
    return [
        SignalThresholdRule(
            code="GHW_COMMIT_3DAYS",
            signal_kinds=("COMMIT_PUSHED",),
            required=3,
            measure="days",
            evidence_fractions=GITHUB_FRACTIONS,
            default_bonus=(
                {
                    "measure": "days",
                    "kinds": ["COMMIT_PUSHED"],
                    "at_least": 5,
                    "points": 5,
                    "note": "+5 consistency bonus for committing on 5 days",
                },
            ),
            evidence_predicate=_github_url,
            predicate_note=_github_note,
            label="distinct commit days",
        ),
        SignalThresholdRule(
            code="GHW_WEEKLY_CHANGELOG",
            signal_kinds=("RELEASE_PUBLISHED",),
            required=1,
            evidence_fractions={"URL": 0.7},
            evidence_predicate=url_contains("changelog", "releases"),
            predicate_note="Evidence URL must link to a changelog or release page.",
            label="published releases",
        ),
        SignalThresholdRule(
            code="GHW_MERGE_1PR",
            signal_kinds=("PR_MERGED",),
            required=1,
            evidence_fractions=GITHUB_FRACTIONS,
            default_bonus=(
                {
                    "measure": "count",
                    "kinds": ["PR_MERGED"],
                    "at_least": 3,
                    "points": 5,
                    "note": "+5 points for merging 3 pull requests",
                },
            ),
            evidence_predicate=_github_url,
            predicate_note=_github_note,
            fallback_signal_kinds=("PR_OPENED",),
            fallback_fraction=0.5,
            label="merged pull requests",
        ),
        SignalThresholdRule(
            code="GHW_CLOSE_2ISSUES",
            signal_kinds=("ISSUE_CLOSED",),
            required=2,
            evidence_fractions=GITHUB_FRACTIONS,
            evidence_predicate=_github_url,
            predicate_note=_github_note,
            label="closed issues",
        ),
        SignalThresholdRule(
            code="GHW_README_TWEAK",
            signal_kinds=("README_UPDATED",),
            required=1,
            evidence_fractions={"URL": 0.6, "SCREENSHOT": 0.6},
            evidence_predicate=url_contains("readme"),
            predicate_note="Evidence URL must link to a README.",
            label="README updates",
        ),
        SignalThresholdRule(
            code="GHW_CI_GREEN",
            signal_kinds=("ACTIONS_WORKFLOW_PASSED",),
            required=1,
            evidence_fractions=GITHUB_FRACTIONS,
            evidence_predicate=_github_url,
            predicate_note=_github_note,
            label="passing workflow runs",
        ),
        SignalThresholdRule(
            code="GHW_PAGES_DEPLOY",
            signal_kinds=("PAGES_DEPLOYED",),
            required=1,
            evidence_fractions={"URL": 0.67, "SCREENSHOT": 0.6},
            evidence_predicate=all_of(url_on_domains("github.com", *DEPLOYMENT_HOST_SUFFIXES), STANDARD_FILE_CHECKS),
            predicate_note="Evidence URL must point to a deployed site.",
            label="Pages deployments",
        ),
    ]


def register_github_rules(registry: RuleRegistry) -> None:
    for rule in build_github_rules():
        registry.register(rule)
