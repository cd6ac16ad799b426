"""Subject API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from clinica_gateway.common.http import unwrap
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.common.security import ActingUser, require_api_key, resolve_acting_user
from clinica_gateway.subjects.schemas import SubjectCreate, SubjectFilters

router = APIRouter()


def _get_service():
    from clinica_gateway.deps import get_subject_service
    return get_subject_service()


@router.post("", response_model=ApiResponse, status_code=201, response_model_exclude_none=True)
async def create_subject(
    body: SubjectCreate,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().create_subject(body, user.user_id, user.username))


@router.get("", response_model=ApiResponse, response_model_exclude_none=True)
async def list_subjects(
    study_id: int = Query(..., alias="studyId", ge=1),
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    filters = SubjectFilters(status=status, page=page, limit=limit)
    return unwrap(await _get_service().get_subject_list(
        study_id, filters, user.user_id, user.username,
    ))


@router.get("/{study_subject_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_subject(study_subject_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_subject_by_id(study_subject_id))


@router.get("/{study_subject_id}/progress", response_model=ApiResponse,
            response_model_exclude_none=True)
async def get_subject_progress(study_subject_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_subject_progress(study_subject_id))
