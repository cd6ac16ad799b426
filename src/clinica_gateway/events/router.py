"""Study event API router."""

from fastapi import APIRouter, Depends

from clinica_gateway.common.http import unwrap
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.common.security import ActingUser, require_api_key, resolve_acting_user
from clinica_gateway.events.schemas import EventSchedule

router = APIRouter()


def _get_service():
    from clinica_gateway.deps import get_event_service
    return get_event_service()


@router.post("/schedule", response_model=ApiResponse, status_code=201,
             response_model_exclude_none=True)
async def schedule_subject_event(
    body: EventSchedule,
    user: ActingUser = Depends(resolve_acting_user),
    _=Depends(require_api_key),
):
    return unwrap(await _get_service().schedule_subject_event(body, user.user_id, user.username))


@router.get("/study/{study_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_study_events(study_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_study_events(study_id))


@router.get("/definitions/{definition_id}", response_model=ApiResponse,
            response_model_exclude_none=True)
async def get_study_event(definition_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_study_event_by_id(definition_id))


@router.get("/subject/{study_subject_id}", response_model=ApiResponse,
            response_model_exclude_none=True)
async def get_subject_events(study_subject_id: int, _=Depends(require_api_key)):
    return unwrap(await _get_service().get_subject_events(study_subject_id))
