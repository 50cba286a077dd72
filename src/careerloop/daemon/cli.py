"""Terminal entrypoint for catalog admin, weekly runs and manual verification."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import UTC, datetime
from typing import Any

from careerloop.core.config_loader import get_logging_config, load_config_or_empty
from careerloop.core.errors import CareerLoopError
from careerloop.core.progress_types import EVIDENCE_KINDS, TRACKS
from careerloop.runtime.service import RuntimeService, get_runtime_service

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_logging_config(load_config_or_empty())["level"]
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _safe_json_object(raw: str | None, *, label: str) -> dict[str, Any] | None:
    if raw is None or not raw.strip():
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"{label} must be a JSON object.")
    return parsed


def _emit(out: dict[str, Any]) -> int:
    print(json.dumps(out, ensure_ascii=True, indent=2, default=str))
    return 0 if bool(out.get("ok")) else 1


def _cmd_sync_catalog(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.sync_catalog(path=args.path, deactivate_missing=args.deactivate_missing)


def _cmd_add_profile(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.upsert_profile(user_id=args.user_id, display_name=args.name, active=not args.inactive)


def _cmd_instantiate(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    if args.all_users:
        return runtime.instantiate_all(args.period, mode=args.mode, track=args.track)
    if not args.user_id:
        raise ValueError("user_id is required unless --all is given.")
    return runtime.instantiate(args.user_id, args.period, mode=args.mode, track=args.track)


def _cmd_submit_evidence(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    payload = {
        "url": args.url,
        "file_key": args.file_key,
        "text": args.text,
        "parsed_json": _safe_json_object(args.parsed_json, label="--parsed-json"),
    }
    return runtime.submit_evidence(user_task_id=args.user_task_id, kind=args.kind, payload=payload)


def _cmd_record_signal(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.record_signal(
        user_id=args.user_id,
        kind=args.kind,
        actor=args.actor,
        happened_at=args.happened_at or datetime.now(tz=UTC),
        metadata=_safe_json_object(args.metadata_json, label="--metadata-json"),
        external_id=args.external_id,
    )


def _cmd_verify(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.verify(user_id=args.user_id, period_key=args.period)


def _cmd_verify_all(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.verify_all(period_key=args.period)


def _cmd_review(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.review_user_task(
        user_task_id=args.user_task_id,
        decision=args.decision,
        reviewer=args.reviewer,
        notes=args.notes,
    )


def _cmd_score(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.get_score(user_id=args.user_id, period_key=args.period)


def _cmd_ledger(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.list_ledger(user_id=args.user_id, limit=args.limit)


def _cmd_run_weekly(runtime: RuntimeService, args: argparse.Namespace) -> dict[str, Any]:
    return runtime.run_weekly(period_key=args.period)


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    logger.info("Starting HTTP app on %s:%s", args.host, args.port)
    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=False)
    return 0


_COMMANDS = {
    "sync-catalog": _cmd_sync_catalog,
    "add-profile": _cmd_add_profile,
    "instantiate": _cmd_instantiate,
    "submit-evidence": _cmd_submit_evidence,
    "record-signal": _cmd_record_signal,
    "verify": _cmd_verify,
    "verify-all": _cmd_verify_all,
    "review": _cmd_review,
    "score": _cmd_score,
    "ledger": _cmd_ledger,
    "run-weekly": _cmd_run_weekly,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage careerloop tasks, evidence and scores from the terminal.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync-catalog", help="Load the task catalog into the database.")
    sync.add_argument("--path", default=None, help="Catalog JSON file (default: configured catalog or built-in).")
    sync.add_argument(
        "--deactivate-missing",
        action="store_true",
        help="Deactivate stored definitions that are not in the catalog.",
    )

    profile = sub.add_parser("add-profile", help="Create or update a user profile.")
    profile.add_argument("user_id")
    profile.add_argument("--name", default=None, help="Display name.")
    profile.add_argument("--inactive", action="store_true", help="Exclude the user from weekly runs.")

    inst = sub.add_parser("instantiate", help="Create a user's tasks for a period.")
    inst.add_argument("user_id", nargs="?", default=None)
    inst.add_argument("--period", default=None, help="Period key YYYY-WW (default: current week).")
    inst.add_argument("--mode", choices=["reset", "ensure"], required=True)
    inst.add_argument("--track", choices=list(TRACKS), default=None)
    inst.add_argument("--all", dest="all_users", action="store_true", help="Instantiate for every active profile.")

    evidence = sub.add_parser("submit-evidence", help="Attach evidence to a user task.")
    evidence.add_argument("user_task_id")
    evidence.add_argument("kind", type=str.upper, choices=list(EVIDENCE_KINDS))
    evidence.add_argument("--url", default=None)
    evidence.add_argument("--file-key", default=None)
    evidence.add_argument("--text", default=None)
    evidence.add_argument("--parsed-json", default=None, help="JSON object for DATA_EXPORT evidence.")

    signal = sub.add_parser("record-signal", help="Append an observed external signal.")
    signal.add_argument("user_id")
    signal.add_argument("kind", help="Signal kind, for example COMMENTED or COMMIT_PUSHED.")
    signal.add_argument("--actor", default=None)
    signal.add_argument("--happened-at", default=None, help="ISO-8601 timestamp (default: now).")
    signal.add_argument("--metadata-json", default=None)
    signal.add_argument("--external-id", default=None, help="Source event id used to drop re-deliveries.")

    verify = sub.add_parser("verify", help="Verify one user's tasks for a period.")
    verify.add_argument("user_id")
    verify.add_argument("--period", default=None)

    verify_all = sub.add_parser("verify-all", help="Verify every user with tasks in a period.")
    verify_all.add_argument("--period", default=None)

    review = sub.add_parser("review", help="Approve or reject a user task.")
    review.add_argument("user_task_id")
    review.add_argument("decision", choices=["approve", "reject"])
    review.add_argument("--reviewer", default=None)
    review.add_argument("--notes", default=None)

    score = sub.add_parser("score", help="Show a user's period score summary.")
    score.add_argument("user_id")
    score.add_argument("--period", default=None)

    ledger = sub.add_parser("ledger", help="List a user's point ledger entries.")
    ledger.add_argument("user_id")
    ledger.add_argument("--limit", type=int, default=100)

    weekly = sub.add_parser("run-weekly", help="Ensure this week's tasks for all active users, then verify.")
    weekly.add_argument("--period", default=None)

    serve = sub.add_parser("serve", help="Run the HTTP app with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None, *, runtime: RuntimeService | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "serve":
        return _cmd_serve(args)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        return 2
    try:
        out = handler(runtime or get_runtime_service(), args)
    except CareerLoopError as exc:
        print(f"error: {exc}")
        return 1
    except ValueError as exc:
        print(f"error: {exc}")
        return 2
    return _emit(out)


if __name__ == "__main__":
    raise SystemExit(main())
