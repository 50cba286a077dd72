"""HTTP surface for task instantiation, evidence, signals, verification and scores."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from careerloop.core.config_loader import get_logging_config, load_config_or_empty
from careerloop.core.errors import CareerLoopError
from careerloop.runtime.service import get_runtime_service

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)

app = FastAPI(title="careerloop")


class ProfileUpsertRequest(BaseModel):
    user_id: str
    display_name: str | None = None
    active: bool = True


class PeriodRequest(BaseModel):
    user_id: str | None = None
    period: str | None = None
    track: Literal["linkedin", "github", "career", "job_hunting"] | None = None
    all_users: bool = False


class EvidenceRequest(BaseModel):
    kind: Literal["URL", "FILE", "SCREENSHOT", "DATA_EXPORT", "TEXT"]
    url: str | None = None
    file_key: str | None = None
    parsed_json: dict[str, Any] | None = None
    text: str | None = None


class ReviewRequest(BaseModel):
    decision: Literal["approve", "reject"]
    reviewer: str | None = None
    notes: str | None = None


class SignalRequest(BaseModel):
    user_id: str
    kind: str
    happened_at: datetime
    actor: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    external_id: str | None = None


class VerifyRequest(BaseModel):
    user_id: str
    period: str | None = None


class VerifyAllRequest(BaseModel):
    period: str | None = None


@app.exception_handler(CareerLoopError)
def _domain_error(_request: Request, exc: CareerLoopError) -> JSONResponse:
    status_code = 404 if isinstance(exc, LookupError) else 400
    return JSONResponse(status_code=status_code, content={"ok": False, "error": str(exc), "error_type": type(exc).__name__})


@app.exception_handler(ValueError)
def _value_error(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": str(exc), "error_type": type(exc).__name__})


@app.on_event("startup")
def _configure_logging() -> None:
    level = get_logging_config(load_config_or_empty())["level"]
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logger.info("careerloop app started")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.post("/api/profiles")
def upsert_profile(req: ProfileUpsertRequest) -> dict:
    return get_runtime_service().upsert_profile(user_id=req.user_id, display_name=req.display_name, active=req.active)


def _instantiate(req: PeriodRequest, mode: str) -> dict:
    runtime = get_runtime_service()
    if req.all_users:
        return runtime.instantiate_all(req.period, mode=mode, track=req.track)
    if not req.user_id:
        raise ValueError("user_id is required unless all_users is true.")
    return runtime.instantiate(req.user_id, req.period, mode=mode, track=req.track)


@app.post("/api/periods/reset")
def reset_period(req: PeriodRequest) -> dict:
    return _instantiate(req, "reset")


@app.post("/api/periods/ensure")
def ensure_period(req: PeriodRequest) -> dict:
    return _instantiate(req, "ensure")


@app.get("/api/users/{user_id}/tasks")
def list_user_tasks(user_id: str, period: str | None = None, track: str | None = None) -> dict:
    return get_runtime_service().list_user_tasks(user_id=user_id, period_key=period, track=track)


@app.post("/api/user-tasks/{user_task_id}/evidence")
def submit_evidence(user_task_id: str, req: EvidenceRequest) -> dict:
    payload = req.model_dump(exclude={"kind"})
    return get_runtime_service().submit_evidence(user_task_id=user_task_id, kind=req.kind, payload=payload)


@app.post("/api/user-tasks/{user_task_id}/review")
def review_user_task(user_task_id: str, req: ReviewRequest) -> dict:
    return get_runtime_service().review_user_task(
        user_task_id=user_task_id,
        decision=req.decision,
        reviewer=req.reviewer,
        notes=req.notes,
    )


@app.post("/api/signals")
def record_signal(req: SignalRequest) -> dict:
    return get_runtime_service().record_signal(
        user_id=req.user_id,
        kind=req.kind,
        happened_at=req.happened_at,
        actor=req.actor,
        metadata=req.metadata,
        external_id=req.external_id,
    )


@app.post("/api/verify")
def verify(req: VerifyRequest) -> dict:
    return get_runtime_service().verify(user_id=req.user_id, period_key=req.period)


@app.post("/api/verify-all")
def verify_all(req: VerifyAllRequest) -> dict:
    return get_runtime_service().verify_all(period_key=req.period)


@app.get("/api/users/{user_id}/score")
def get_score(user_id: str, period: str | None = None) -> dict:
    return get_runtime_service().get_score(user_id=user_id, period_key=period)


@app.get("/api/users/{user_id}/ledger")
def list_ledger(user_id: str, limit: int = 100) -> dict:
    safe_limit = max(1, min(500, int(limit)))
    return get_runtime_service().list_ledger(user_id=user_id, limit=safe_limit)


@app.get("/api/users/{user_id}/notifications")
def list_notifications(user_id: str, limit: int = 50) -> dict:
    safe_limit = max(1, min(500, int(limit)))
    return get_runtime_service().list_notifications(user_id=user_id, limit=safe_limit)
