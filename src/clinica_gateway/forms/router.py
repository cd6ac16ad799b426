"""Form data API router."""

from fastapi import APIRouter, Depends

from clinica_gateway.common.http import unwrap
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.common.security import ActingUser, require_api_key, resolve_acting_user
from clinica_gateway.forms.schemas import FormDataSave

router = APIRouter()


def _get_service():
    from clinica_gateway.deps import get_form_service
    return get_form_service()


@router.post("/data", response_model=ApiResponse, status_code=201, response_model_exclude_none=True)
async def save_form_data(
    body: FormDataSave,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().save_form_data(body, user.user_id, user.username))


@router.get("/data/{event_crf_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_form_data(event_crf_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_form_data(event_crf_id))


@router.get("/status/{event_crf_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_form_status(event_crf_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_form_status(event_crf_id))


@router.get("/study/{study_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_study_forms(study_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_study_forms(study_id))


@router.get("/{crf_id}/metadata", response_model=ApiResponse, response_model_exclude_none=True)
async def get_form_metadata(crf_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_form_metadata(crf_id))


@router.delete("/{crf_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def delete_form(
    crf_id: int,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().delete_form(crf_id, user.user_id, user.username))
