"""Study API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from clinica_gateway.common.http import unwrap
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.common.security import ActingUser, require_api_key, resolve_acting_user
from clinica_gateway.studies.schemas import StudyCreate, StudyFilters, StudyUpdate

router = APIRouter()


def _get_service():
    from clinica_gateway.deps import get_study_service
    return get_study_service()


@router.get("", response_model=ApiResponse, response_model_exclude_none=True)
async def list_studies(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    filters = StudyFilters(status=status, page=page, limit=limit)
    return unwrap(await _get_service().get_studies(user.user_id, filters, user.username))


@router.post("", response_model=ApiResponse, status_code=201, response_model_exclude_none=True)
async def create_study(
    body: StudyCreate,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().create_study(body, user.user_id))


@router.get("/{study_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_study(study_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_study_by_id(study_id))


@router.put("/{study_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def update_study(
    study_id: int,
    body: StudyUpdate,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().update_study(study_id, body, user.user_id))


@router.delete("/{study_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def delete_study(
    study_id: int,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().delete_study(study_id, user.user_id))


@router.get("/{study_id}/metadata", response_model=ApiResponse, response_model_exclude_none=True)
async def get_study_metadata(
    study_id: int,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().get_study_metadata(study_id, user.user_id, user.username))


@router.get("/{study_id}/sites", response_model=ApiResponse, response_model_exclude_none=True)
async def get_study_sites(study_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_study_sites(study_id))
