"""Audit trail and electronic signature API router."""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import ValidationError

from clinica_gateway.audit.schemas import (
    AuditEventCreate,
    AuditQuery,
    ComplianceQuery,
    ExportQuery,
    SignatureCreate,
)
from clinica_gateway.common.http import unwrap
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.common.security import ActingUser, require_api_key, resolve_acting_user

router = APIRouter()

_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def _get_service():
    from clinica_gateway.deps import get_audit_service
    return get_audit_service()


def _audit_query(
    study_id: Optional[int] = Query(None, alias="studyId"),
    subject_id: Optional[int] = Query(None, alias="subjectId"),
    event_crf_id: Optional[int] = Query(None, alias="eventCrfId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    event_type_id: Optional[int] = Query(None, alias="eventTypeId"),
    audit_table: Optional[str] = Query(None, alias="auditTable"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
) -> AuditQuery:
    return AuditQuery(
        study_id=study_id, subject_id=subject_id, event_crf_id=event_crf_id,
        user_id=user_id, event_type_id=event_type_id, audit_table=audit_table,
        start_date=start_date, end_date=end_date, page=page, limit=limit,
    )


# ── Audit events ──

@router.post("/events", response_model=ApiResponse, status_code=201, response_model_exclude_none=True)
async def record_audit_event(body: AuditEventCreate, _=Depends(require_api_key)):
    return unwrap(await _get_service().record_audit_event(body))


@router.get("/logs", response_model=ApiResponse, response_model_exclude_none=True)
async def get_audit_logs(
    query: AuditQuery = Depends(_audit_query),
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().get_audit_logs(query, user.user_id, user.username))


@router.get("/subjects/{study_id}/{subject_id}", response_model=ApiResponse,
            response_model_exclude_none=True)
async def get_subject_audit_trail(
    study_id: int,
    subject_id: int,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().get_subject_audit_trail(
        study_id, subject_id, user.user_id, user.username,
    ))


@router.get("/forms/{event_crf_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_form_audit_trail(
    event_crf_id: int,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().get_form_audit_trail(
        event_crf_id, user.user_id, user.username,
    ))


@router.get("/event-types", response_model=ApiResponse, response_model_exclude_none=True)
async def get_audit_event_types(_=Depends(require_api_key)):
    return unwrap(await _get_service().get_audit_event_types())


@router.get("/stats", response_model=ApiResponse, response_model_exclude_none=True)
async def get_audit_stats(days: int = Query(30, ge=1, le=3650), _=Depends(require_api_key)):
    return unwrap(await _get_service().get_audit_stats(days))


def _export_query(
    study_id: Optional[int] = Query(None, alias="studyId"),
    subject_id: Optional[int] = Query(None, alias="subjectId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    event_type_id: Optional[int] = Query(None, alias="eventTypeId"),
    audit_table: Optional[str] = Query(None, alias="auditTable"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    fmt: Literal["csv", "json"] = Query("csv", alias="format"),
    limit: int = Query(10000, ge=1, le=100000),
) -> ExportQuery:
    return ExportQuery(
        study_id=study_id, subject_id=subject_id, user_id=user_id,
        event_type_id=event_type_id, audit_table=audit_table,
        start_date=start_date, end_date=end_date, format=fmt, limit=limit,
    )


@router.get("/export")
async def export_audit_logs(
    query: ExportQuery = Depends(_export_query),
    _=Depends(require_api_key),
):
    result = unwrap(await _get_service().export_audit_logs(query))
    return Response(
        content=result.data["content"],
        media_type=_MEDIA_TYPES[query.format],
        headers={"Content-Disposition": f'attachment; filename="{result.data["filename"]}"'},
    )


@router.get("/compliance", response_model=ApiResponse, response_model_exclude_none=True)
async def get_compliance_report(
    study_id: Optional[int] = Query(None, alias="studyId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    _=Depends(require_api_key),
):
    try:
        period = ComplianceQuery(study_id=study_id, start_date=start_date, end_date=end_date)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors()[0]["msg"])
    return unwrap(await _get_service().get_compliance_report(
        period.study_id, period.start_date, period.end_date,
    ))


# ── Electronic signatures ──

@router.post("/signatures", response_model=ApiResponse, status_code=201,
             response_model_exclude_none=True)
async def record_electronic_signature(
    body: SignatureCreate,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().record_electronic_signature(
        body.entity_type, body.entity_id, body.signature, user.user_id, user.username,
    ))


@router.get("/signatures/{entity_type}/{entity_id}", response_model=ApiResponse,
            response_model_exclude_none=True)
async def get_entity_signatures(entity_type: str, entity_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_entity_signatures(entity_type, entity_id))
