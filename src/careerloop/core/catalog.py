"""Task catalog: built-in defaults, JSON catalog files, and sync into the store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from .config_loader import get_catalog_path, resolve_repo_path
from .progress_store import ProgressStore
from .progress_types import TaskDefinition

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: list[dict[str, Any]] = [
    # linkedin
    {
        "code": "LI_PROFILE_REFRESH",
        "track": "linkedin",
        "title": "Refresh your LinkedIn profile",
        "description": "Update your About section or featured items and share the profile link.",
        "evidence_kinds": ["SCREENSHOT", "URL"],
        "base_points": 10,
        "day_offset": 1,
    },
    {
        "code": "LI_CONNECT_5",
        "track": "linkedin",
        "title": "Grow your network by 5",
        "description": "Send personalised invites and get at least 5 accepted this week.",
        "evidence_kinds": ["SCREENSHOT", "URL"],
        "base_points": 10,
        "day_offset": 2,
    },
    {
        "code": "LI_COMMENT_3",
        "track": "linkedin",
        "title": "Leave 3 thoughtful comments",
        "description": "Comment on three posts in your target industry.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 10,
        "day_offset": 3,
    },
    {
        "code": "LI_POST_PUBLISH",
        "track": "linkedin",
        "title": "Publish a post",
        "description": "Share a learning, project update or article with your network.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 15,
        "day_offset": 4,
    },
    {
        "code": "LI_ENGAGE_NETWORK",
        "track": "linkedin",
        "title": "Start a conversation",
        "description": "Get at least 3 different people to react, comment or mention you.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 10,
        "day_offset": 5,
    },
    {
        "code": "LI_WEEKLY_REVIEW",
        "track": "linkedin",
        "title": "Weekly LinkedIn review",
        "description": "Write a short reflection on what worked on LinkedIn this week.",
        "evidence_kinds": ["TEXT", "SCREENSHOT"],
        "base_points": 5,
        "day_offset": 7,
    },
    # github
    {
        "code": "GHW_COMMIT_3DAYS",
        "track": "github",
        "title": "Commit on 3 different days",
        "description": "Push commits to any public repository on at least three days.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 15,
        "day_offset": 1,
    },
    {
        "code": "GHW_MERGE_1PR",
        "track": "github",
        "title": "Merge a pull request",
        "description": "Open and merge at least one pull request.",
        "evidence_kinds": ["URL"],
        "base_points": 10,
        "day_offset": 2,
    },
    {
        "code": "GHW_CLOSE_2ISSUES",
        "track": "github",
        "title": "Close 2 issues",
        "description": "Triage and close two issues in your repositories.",
        "evidence_kinds": ["URL"],
        "base_points": 12,
        "day_offset": 3,
    },
    {
        "code": "GHW_README_TWEAK",
        "track": "github",
        "title": "Improve a README",
        "description": "Make your project README clearer for recruiters.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 8,
        "day_offset": 4,
    },
    {
        "code": "GHW_CI_GREEN",
        "track": "github",
        "title": "Get CI green",
        "description": "Have a GitHub Actions workflow pass on your default branch.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 10,
        "day_offset": 5,
    },
    {
        "code": "GHW_PAGES_DEPLOY",
        "track": "github",
        "title": "Deploy a project site",
        "description": "Deploy a portfolio or project page with GitHub Pages.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 15,
        "day_offset": 6,
    },
    {
        "code": "GHW_WEEKLY_CHANGELOG",
        "track": "github",
        "title": "Publish a weekly changelog",
        "description": "Cut a release or update CHANGELOG.md with this week's work.",
        "evidence_kinds": ["URL"],
        "base_points": 12,
        "day_offset": 7,
    },
    # career
    {
        "code": "RESUME_UPLOAD_PRIMARY",
        "track": "career",
        "title": "Upload your primary resume",
        "description": "Upload the resume you apply with so it can be analysed.",
        "evidence_kinds": ["FILE", "DATA_EXPORT"],
        "base_points": 10,
        "day_offset": 1,
    },
    {
        "code": "LI_HEADLINE_70",
        "track": "career",
        "title": "Write a 70-120 character headline",
        "description": "Submit your LinkedIn headline text and a screenshot of it live.",
        "evidence_kinds": ["TEXT", "SCREENSHOT"],
        "base_points": 10,
        "day_offset": 2,
    },
    {
        "code": "GH_USERNAME_SET",
        "track": "career",
        "title": "Link your GitHub profile",
        "description": "Share your GitHub profile URL.",
        "evidence_kinds": ["URL"],
        "base_points": 8,
        "day_offset": 3,
    },
    {
        "code": "GH_PORTFOLIO_REPO",
        "track": "career",
        "title": "Create a portfolio repository",
        "description": "Create a repository that showcases your best work.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 12,
        "day_offset": 4,
    },
    {
        "code": "GH_COMMIT_3DAYS",
        "track": "career",
        "title": "Build a commit habit",
        "description": "Commit on at least three days this week.",
        "evidence_kinds": ["URL", "SCREENSHOT"],
        "base_points": 15,
        "day_offset": 5,
    },
    # job_hunting
    {
        "code": "JH_APPLY_3",
        "track": "job_hunting",
        "title": "Apply to 3 roles",
        "description": "Submit at least three tailored applications.",
        "evidence_kinds": ["URL", "SCREENSHOT", "FILE"],
        "base_points": 15,
        "day_offset": 1,
    },
    {
        "code": "JH_RESEARCH_COMPANY",
        "track": "job_hunting",
        "title": "Research a target company",
        "description": "Write notes on a company you want to join: product, team and open roles.",
        "evidence_kinds": ["TEXT", "URL"],
        "base_points": 8,
        "day_offset": 2,
    },
    {
        "code": "JH_FOLLOW_UP",
        "track": "job_hunting",
        "title": "Follow up on 2 applications",
        "description": "Send follow-up messages to recruiters or hiring managers.",
        "evidence_kinds": ["TEXT", "SCREENSHOT", "URL"],
        "base_points": 10,
        "day_offset": 4,
    },
    {
        "code": "JH_TRACKER_LOG",
        "track": "job_hunting",
        "title": "Update your application tracker",
        "description": "Export your application tracker with this week's entries.",
        "evidence_kinds": ["DATA_EXPORT", "FILE", "SCREENSHOT", "URL"],
        "base_points": 10,
        "day_offset": 6,
    },
]


def _parse_definitions(entries: Iterable[Any], *, source: str) -> list[TaskDefinition]:
    definitions: list[TaskDefinition] = []
    seen: set[str] = set()
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"{source}: catalog entry #{idx} must be an object.")
        try:
            definition = TaskDefinition.from_dict(entry)
        except ValueError as exc:
            raise ValueError(f"{source}: catalog entry #{idx}: {exc}") from exc
        if definition.code in seen:
            raise ValueError(f"{source}: duplicate task code `{definition.code}`.")
        seen.add(definition.code)
        definitions.append(definition)
    return definitions


def default_definitions() -> list[TaskDefinition]:
    return _parse_definitions(DEFAULT_CATALOG, source="built-in catalog")


def load_catalog_file(path: str | Path) -> list[TaskDefinition]:
    """Read a catalog JSON file: either a list of entries or `{"tasks": [...]}`."""
    resolved = resolve_repo_path(path)
    if not resolved.exists():
        raise FileNotFoundError(f"Catalog file not found: {resolved}")
    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in catalog file: {resolved}") from exc

    entries = payload.get("tasks") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ValueError(f"Catalog root must be a list or an object with `tasks`: {resolved}")
    return _parse_definitions(entries, source=str(resolved))


def load_catalog(config: dict[str, Any] | None = None) -> list[TaskDefinition]:
    """Configured catalog file if set, else the built-in catalog."""
    path = get_catalog_path(config)
    if path is None:
        return default_definitions()
    return load_catalog_file(path)


def sync_catalog(
    store: ProgressStore,
    definitions: Iterable[TaskDefinition] | None = None,
    *,
    deactivate_missing: bool = False,
) -> dict[str, Any]:
    items = list(definitions) if definitions is not None else load_catalog()
    out = store.sync_task_definitions(items, deactivate_missing=deactivate_missing)
    logger.info(
        "Synced %s task definitions (%s deactivated)",
        out.get("upserted", 0),
        out.get("deactivated", 0),
    )
    return out
