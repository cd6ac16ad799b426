"""Event reconciliation: SOAP scheduling with a direct database fallback."""

import logging

from sqlalchemy.exc import SQLAlchemyError

from clinica_gateway.audit.models import AuditEventType
from clinica_gateway.audit.schemas import AuditEventCreate
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.models import today
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.events.schemas import EventSchedule
from clinica_gateway.events.store import EventStore
from clinica_gateway.hybrid.policy import DualPathPolicy
from clinica_gateway.soap.event import EventSoap
from clinica_gateway.soap.odm import event_oid, study_oid, study_subject_oid
from clinica_gateway.subjects.models import SubjectEventStatus

logger = logging.getLogger(__name__)

_SCHEDULED = ("study event scheduled", "%event%schedul%")


class HybridEventService:
    """SOAP-primary event scheduling; definitions and subject events from the database."""

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        soap: EventSoap,
        policy: DualPathPolicy,
        store: EventStore | None = None,
        audit_store: AuditStore | None = None,
    ):
        self.settings = settings
        self.db = db
        self.soap = soap
        self.policy = policy
        self.store = store or EventStore()
        self.audit_store = audit_store or AuditStore()

    # ── Write ──

    async def schedule_subject_event(
        self, request: EventSchedule | dict, user_id: int, username: str,
    ) -> ApiResponse:
        request = EventSchedule.model_validate(request)
        async with self.db.get_session() as session:
            study_subject = await self.store.get_study_subject(session, request.study_subject_id)
            if study_subject is None:
                return ApiResponse.fail("Subject not found")
            definition = await self.store.get_definition(session, request.study_event_definition_id)
            if definition is None:
                return ApiResponse.fail("Event definition not found")
            study = await self.store.get_study(session, study_subject.study_id)
            ordinal = 1
            if definition.repeating:
                ordinal = await self.store.next_sample_ordinal(
                    session, study_subject.study_subject_id, definition.study_event_definition_id,
                )
            s_oid = (study.oc_oid if study else None) or study_oid(study_subject.study_id)
            subject_key = study_subject.oc_oid or study_subject_oid(study_subject.label)
            e_oid = definition.oc_oid or event_oid(definition.study_event_definition_id)

        result = await self.policy.try_soap(
            "schedule_subject_event",
            f"{subject_key}/{e_oid}",
            lambda: self.soap.schedule_event(
                s_oid, subject_key, e_oid, user_id, username,
                start_date=request.start_date,
                end_date=request.end_date,
                location=request.location,
                repeat_key=ordinal,
            ),
            payload_required=False,
        )
        if result is not None:
            data = {
                **(result.data or {}),
                "studySubjectId": request.study_subject_id,
                "studyEventDefinitionId": request.study_event_definition_id,
                "source": "SOAP",
            }
            try:
                async with self.db.get_session() as session:
                    data["studyEventId"] = await self.store.latest_event_id(
                        session, request.study_subject_id, request.study_event_definition_id,
                    )
            except SQLAlchemyError as e:
                logger.warning(
                    "Event scheduled via SOAP but id lookup failed",
                    extra={"context": {"subject_key": subject_key, "error": str(e)}},
                )
            return ApiResponse.ok(data, message="Event scheduled successfully")

        return await self._schedule_direct(
            request, ordinal, e_oid, study_subject.label, user_id, username,
        )

    async def _schedule_direct(
        self,
        request: EventSchedule,
        ordinal: int,
        e_oid: str,
        label: str,
        user_id: int,
        username: str,
    ) -> ApiResponse:
        start_date = request.start_date or today()
        status = (SubjectEventStatus.NOT_SCHEDULED if request.is_unscheduled
                  else SubjectEventStatus.SCHEDULED)
        try:
            async with self.db.get_session() as session:
                event = await self.store.insert_event(
                    session,
                    request.study_subject_id,
                    request.study_event_definition_id,
                    ordinal,
                    start_date,
                    request.end_date,
                    request.location,
                    status,
                    user_id,
                )
                versions = await self.store.assigned_versions(
                    session, request.study_event_definition_id,
                )
                if not versions:
                    logger.warning(
                        "No CRFs assigned to event definition",
                        extra={"context": {"definition_id": request.study_event_definition_id}},
                    )
                form_count = await self.store.insert_event_crfs(session, event, versions, user_id)
                event_type = await self.audit_store.resolve_event_type(
                    session, _SCHEDULED, int(AuditEventType.STUDY_EVENT_SCHEDULED),
                )
                await self.audit_store.insert_event(session, AuditEventCreate(
                    audit_table="study_event",
                    entity_id=event.study_event_id,
                    entity_name="Event Scheduled",
                    user_id=user_id,
                    username=username,
                    event_type_id=event_type,
                    new_value=f"Scheduled event {e_oid} for subject {label}",
                    study_subject_id=request.study_subject_id,
                    study_event_id=event.study_event_id,
                ))
                scheduled = {
                    "studyEventId": event.study_event_id,
                    "studySubjectId": request.study_subject_id,
                    "studyEventDefinitionId": request.study_event_definition_id,
                    "sampleOrdinal": ordinal,
                    "startDate": start_date.isoformat(),
                    "location": request.location,
                    "formCount": form_count,
                    "source": "DATABASE",
                }
        except SQLAlchemyError as e:
            logger.error(
                "Direct event scheduling failed",
                extra={"context": {"subject_id": request.study_subject_id, "error": str(e)}},
            )
            return ApiResponse.fail(f"Failed to schedule event: {e}")

        logger.info("Event scheduled in database", extra={"context": scheduled})
        return ApiResponse.ok(scheduled, message="Event scheduled successfully")

    # ── Read ──

    async def get_study_events(self, study_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            if await self.store.get_study(session, study_id) is None:
                return ApiResponse.fail("Study not found")
            definitions = await self.store.study_events(session, study_id)
        return ApiResponse.ok(definitions)

    async def get_study_event_by_id(self, definition_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            detail = await self.store.definition_detail(session, definition_id)
        if detail is None:
            return ApiResponse.fail("Event definition not found")
        return ApiResponse.ok(detail)

    async def get_subject_events(self, study_subject_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            if await self.store.get_study_subject(session, study_subject_id) is None:
                return ApiResponse.fail("Subject not found")
            events = await self.store.subject_events(session, study_subject_id)
        return ApiResponse.ok(events)
