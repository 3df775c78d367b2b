from __future__ import annotations

"""
API surface for the EVV integrity service.

Design intent:
- Keep API orchestration thin and typed.
- Delegate all lifecycle decisions to the verification engine.
- Return full visit records so callers can see flags and chain hashes.
"""

import logging
from datetime import datetime
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from evv.integrations.gateway import InMemoryCaregiverRegistry, InMemorySchedulingGateway
from evv.internal_core import load_config
from evv.internal_core.contracts import (
    AuditEvent,
    AuditExport,
    LocationFix,
    SweepResult,
    VisitFilter,
    VisitRecord,
)
from evv.internal_core.errors import (
    CollaboratorUnavailableError,
    ConcurrencyConflictError,
    EVVError,
    IntegrityMismatchError,
    InvalidInputError,
    InvalidTransitionError,
    VisitNotFoundError,
)
from evv.verification.engine import VisitVerificationEngine, build_engine


class LocationEventRequest(BaseModel):
    actor_id: str = Field(min_length=1, max_length=128)
    timestamp: datetime
    location: LocationFix | None = None


class StartServiceRequest(BaseModel):
    actor_id: str = Field(min_length=1, max_length=128)
    timestamp: datetime


class ResolveRequest(BaseModel):
    resolution_note: str = Field(min_length=1, max_length=2000)
    actor_id: str = Field(min_length=1, max_length=128)
    outcome: Literal["verified", "closed"] = "verified"


class AmendRequest(BaseModel):
    note: str = Field(min_length=1, max_length=2000)
    actor_id: str = Field(min_length=1, max_length=128)


class SweepRequest(BaseModel):
    filter: VisitFilter | None = None


class SweepResponse(BaseModel):
    results: list[SweepResult] = Field(default_factory=list)
    debug: dict[str, Any] = Field(default_factory=dict)


class AuditExportRequest(BaseModel):
    visit_ids: list[str] | None = None
    filter: VisitFilter | None = None


class AuditEventsResponse(BaseModel):
    visit_id: str
    events: list[AuditEvent] = Field(default_factory=list)


app = FastAPI(title="evv integrity service")
logger = logging.getLogger(__name__)


def _get_engine() -> VisitVerificationEngine:
    existing = getattr(app.state, "evv_engine", None)
    if isinstance(existing, VisitVerificationEngine):
        return existing
    cfg = load_config()
    logging.getLogger("evv").setLevel(cfg.EVV_LOG_LEVEL.upper())
    created = build_engine(
        config=cfg,
        scheduling=InMemorySchedulingGateway(),
        caregivers=InMemoryCaregiverRegistry(),
    )
    setattr(app.state, "evv_engine", created)
    return created


def _status_code_for(exc: EVVError) -> int:
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, VisitNotFoundError):
        return 404
    if isinstance(exc, (InvalidTransitionError, ConcurrencyConflictError)):
        return 409
    if isinstance(exc, CollaboratorUnavailableError):
        return 503
    if isinstance(exc, IntegrityMismatchError):
        return 500
    return 500


def _http_error(exc: EVVError) -> HTTPException:
    status_code = _status_code_for(exc)
    if status_code >= 500:
        logger.error("request_failed code=%s visit_id=%s detail=%s", exc.code, exc.visit_id, exc.message)
    return HTTPException(status_code=status_code, detail=exc.to_dict())


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/visits/{visit_id}/register", response_model=VisitRecord)
def register_visit(visit_id: str) -> VisitRecord:
    try:
        return _get_engine().register_visit(visit_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.get("/visits/{visit_id}", response_model=VisitRecord)
def get_visit(visit_id: str) -> VisitRecord:
    try:
        return _get_engine().get_visit(visit_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.get("/visits/{visit_id}/history", response_model=list[VisitRecord])
def visit_history(visit_id: str) -> list[VisitRecord]:
    try:
        return _get_engine().history(visit_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.get("/visits/{visit_id}/audit-events", response_model=AuditEventsResponse)
def visit_audit_events(visit_id: str) -> AuditEventsResponse:
    try:
        events = _get_engine().audit_events(visit_id)
    except EVVError as exc:
        raise _http_error(exc) from exc
    return AuditEventsResponse(visit_id=visit_id, events=events)


@app.post("/visits/{visit_id}/check-in", response_model=VisitRecord)
def check_in(visit_id: str, payload: LocationEventRequest) -> VisitRecord:
    try:
        return _get_engine().check_in(visit_id, payload.location, payload.timestamp, payload.actor_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/{visit_id}/start", response_model=VisitRecord)
def start_service(visit_id: str, payload: StartServiceRequest) -> VisitRecord:
    try:
        return _get_engine().start_service(visit_id, payload.timestamp, payload.actor_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/{visit_id}/check-out", response_model=VisitRecord)
def check_out(visit_id: str, payload: LocationEventRequest) -> VisitRecord:
    try:
        return _get_engine().check_out(visit_id, payload.location, payload.timestamp, payload.actor_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/{visit_id}/verify", response_model=VisitRecord)
def verify(visit_id: str) -> VisitRecord:
    try:
        return _get_engine().verify(visit_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/{visit_id}/resolve", response_model=VisitRecord)
def resolve(visit_id: str, payload: ResolveRequest) -> VisitRecord:
    try:
        return _get_engine().resolve(visit_id, payload.resolution_note, payload.actor_id, payload.outcome)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/{visit_id}/amend", response_model=VisitRecord)
def amend(visit_id: str, payload: AmendRequest) -> VisitRecord:
    try:
        return _get_engine().amend(visit_id, payload.note, payload.actor_id)
    except EVVError as exc:
        raise _http_error(exc) from exc


@app.post("/visits/sweep", response_model=SweepResponse)
def sweep(payload: SweepRequest) -> SweepResponse:
    results = _get_engine().sweep(payload.filter)
    status_counts: dict[str, int] = {}
    for item in results:
        key = item.status.value if item.status is not None else f"error:{item.error_code}"
        status_counts[key] = status_counts.get(key, 0) + 1
    return SweepResponse(
        results=results,
        debug={"candidates": len(results), "status_counts": status_counts},
    )


@app.post("/audit/export", response_model=AuditExport)
def audit_export(payload: AuditExportRequest) -> AuditExport:
    try:
        return _get_engine().export_audit(visit_ids=payload.visit_ids, visit_filter=payload.filter)
    except EVVError as exc:
        raise _http_error(exc) from exc
