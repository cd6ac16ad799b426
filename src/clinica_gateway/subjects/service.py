"""Subject reconciliation: SOAP enrolment and listing with database fallback."""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from clinica_gateway.audit.models import AuditEventType
from clinica_gateway.audit.schemas import AuditEventCreate
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.schemas import ApiResponse, Pagination
from clinica_gateway.hybrid.policy import DualPathPolicy, paginate
from clinica_gateway.soap.odm import study_oid
from clinica_gateway.soap.subject import SubjectSoap
from clinica_gateway.subjects.schemas import SubjectCreate, SubjectFilters
from clinica_gateway.subjects.store import SubjectStore

logger = logging.getLogger(__name__)

DUPLICATE_LABEL = "Subject with this ID already exists"
_CREATED = ("subject created", "%creat%", "%insert%")


def merge_subject(soap_subject: dict[str, Any], stats: dict[str, Any] | None) -> dict[str, Any]:
    stats = stats or {}
    return {
        "study_subject_id": stats.get("study_subject_id"),
        "label": soap_subject.get("label"),
        "secondary_label": soap_subject.get("secondaryLabel"),
        "enrollment_date": soap_subject.get("enrollmentDate"),
        "status": stats.get("status"),
        "gender": soap_subject.get("gender"),
        "date_of_birth": soap_subject.get("dateOfBirth"),
        "total_events": stats.get("total_events", 0),
        "completed_forms": stats.get("completed_forms", 0),
        "source": "SOAP",
    }


class HybridSubjectService:
    """SOAP-primary enrolment and listing; detail and progress from the database."""

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        soap: SubjectSoap,
        policy: DualPathPolicy,
        store: SubjectStore | None = None,
        audit_store: AuditStore | None = None,
    ):
        self.settings = settings
        self.db = db
        self.soap = soap
        self.policy = policy
        self.store = store or SubjectStore()
        self.audit_store = audit_store or AuditStore()

    # ── Write ──

    async def create_subject(
        self, request: SubjectCreate | dict, user_id: int, username: str,
    ) -> ApiResponse:
        request = SubjectCreate.model_validate(request)
        async with self.db.get_session() as session:
            study = await self.store.get_study(session, request.study_id)
            if study is None:
                return ApiResponse.fail("Study not found")
            if await self.store.label_exists(session, request.study_id, request.study_subject_id):
                return ApiResponse.fail(DUPLICATE_LABEL)
            oid = study.oc_oid or study_oid(request.study_id)

        result = await self.policy.try_soap(
            "create_subject",
            f"{oid}/{request.study_subject_id}",
            lambda: self.soap.create_subject(
                oid, request.study_subject_id, user_id, username,
                enrollment_date=request.enrollment_date,
                secondary_label=request.secondary_id,
                gender=request.gender,
                date_of_birth=request.date_of_birth,
            ),
            payload_required=False,
        )
        if result is not None:
            data = {**(result.data or {}), "studyId": request.study_id, "source": "SOAP"}
            try:
                async with self.db.get_session() as session:
                    data["studySubjectId"] = await self.store.study_subject_id(
                        session, request.study_id, request.study_subject_id,
                    )
            except SQLAlchemyError as e:
                logger.warning(
                    "Subject created via SOAP but id lookup failed",
                    extra={"context": {"label": request.study_subject_id, "error": str(e)}},
                )
            return ApiResponse.ok(data, message="Subject created successfully")

        return await self._create_direct(request, user_id, username)

    async def _create_direct(self, request: SubjectCreate, user_id: int, username: str) -> ApiResponse:
        try:
            async with self.db.get_session() as session:
                study_subject = await self.store.insert_subject(session, request, user_id)
                event_type = await self.audit_store.resolve_event_type(
                    session, _CREATED, int(AuditEventType.SUBJECT_CREATED),
                )
                await self.audit_store.insert_event(session, AuditEventCreate(
                    audit_table="study_subject",
                    entity_id=study_subject.study_subject_id,
                    entity_name="Subject",
                    user_id=user_id,
                    username=username,
                    event_type_id=event_type,
                    new_value=request.study_subject_id,
                ))
                created = {
                    "subjectId": study_subject.subject_id,
                    "studySubjectId": study_subject.study_subject_id,
                    "label": study_subject.label,
                    "studyId": request.study_id,
                    "enrollmentDate": study_subject.enrollment_date.isoformat(),
                    "ocOid": study_subject.oc_oid,
                    "source": "DATABASE",
                }
        except SQLAlchemyError as e:
            logger.error(
                "Direct subject creation failed",
                extra={"context": {"label": request.study_subject_id, "error": str(e)}},
            )
            return ApiResponse.fail(f"Failed to create subject: {e}")

        logger.info("Subject created in database", extra={"context": created})
        return ApiResponse.ok(created, message="Subject created successfully")

    # ── Read ──

    async def get_subject_list(
        self,
        study_id: int,
        filters: SubjectFilters | dict | None = None,
        user_id: int | None = None,
        username: str = "",
    ) -> ApiResponse:
        filters = SubjectFilters.model_validate(filters or {})
        async with self.db.get_session() as session:
            study = await self.store.get_study(session, study_id)
        identifier = study.unique_identifier if study else study_oid(study_id)

        result = None
        if user_id is not None:
            result = await self.policy.try_soap(
                "get_subject_list",
                identifier,
                lambda: self.soap.list_subjects(identifier, user_id, username),
            )
        if result is not None:
            async with self.db.get_session() as session:
                stats = await self.store.stats_for_labels(
                    session, study_id, (s["label"] for s in result.data),
                )
            subjects = [merge_subject(s, stats.get(s["label"])) for s in result.data]
            if filters.status:
                wanted = filters.status.lower()
                subjects = [s for s in subjects if (s["status"] or "").lower() == wanted]
            page, pagination = paginate(subjects, filters.page, filters.limit)
            return ApiResponse.ok(page, pagination=pagination)

        async with self.db.get_session() as session:
            rows, total = await self.store.list_subjects(
                session, study_id, filters.status, filters.offset, filters.limit,
            )
        for row in rows:
            row["source"] = "DATABASE"
        return ApiResponse.ok(rows, pagination=Pagination.build(filters.page, filters.limit, total))

    async def get_subject_by_id(self, study_subject_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            detail = await self.store.get_subject_detail(session, study_subject_id)
        if detail is None:
            return ApiResponse.fail("Subject not found")
        return ApiResponse.ok(detail)

    async def get_subject_progress(self, study_subject_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            progress = await self.store.progress(session, study_subject_id)
        if progress is None:
            return ApiResponse.fail("Subject not found")
        return ApiResponse.ok(progress)
