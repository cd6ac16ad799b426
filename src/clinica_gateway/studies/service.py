"""Study reconciliation: SOAP study list and metadata, database writes."""

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from clinica_gateway.audit.models import AuditEventType
from clinica_gateway.audit.schemas import AuditEventCreate
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.database import DatabaseManager
from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status
from clinica_gateway.common.schemas import ApiResponse, Pagination
from clinica_gateway.hybrid.policy import DualPathPolicy, paginate
from clinica_gateway.soap.odm import study_oid
from clinica_gateway.soap.study import StudySoap
from clinica_gateway.studies.schemas import StudyCreate, StudyFilters, StudyUpdate
from clinica_gateway.studies.store import STAT_COLUMNS, StudyStore

logger = logging.getLogger(__name__)

DUPLICATE_IDENTIFIER = "Study with this identifier already exists"
HAS_SUBJECTS = (
    "Cannot delete study with enrolled subjects. "
    "Set status to locked or removed instead."
)

# Lookups against audit_log_event_type, most specific first
_CREATED = (("study created", "%study%creat%", "%creat%", "%insert%"), AuditEventType.STUDY_CREATED)
_UPDATED = (("study updated", "%study%updat%", "%updat%"), AuditEventType.STUDY_UPDATED)
_REMOVED = (("study removed", "%study%remov%", "%remov%", "%delet%"), AuditEventType.STUDY_REMOVED)


def build_enrichment_index(rows: list[dict[str, Any]]) -> tuple[dict, dict]:
    by_oid = {r["oc_oid"]: r for r in rows if r.get("oc_oid")}
    by_identifier = {r["unique_identifier"]: r for r in rows if r.get("unique_identifier")}
    return by_oid, by_identifier


def match_study(soap_study: dict[str, Any], by_oid: dict, by_identifier: dict) -> dict | None:
    """OID match wins over identifier match; either key may carry the other."""
    oid = soap_study.get("oid")
    identifier = soap_study.get("identifier")
    for index, key in ((by_oid, oid), (by_identifier, identifier),
                       (by_oid, identifier), (by_identifier, oid)):
        if key and key in index:
            return index[key]
    return None


def merge_study(soap_study: dict[str, Any], stats: dict[str, Any] | None) -> dict[str, Any]:
    merged = {
        "study_id": stats["study_id"] if stats else None,
        "oc_oid": soap_study.get("oid"),
        "unique_identifier": soap_study.get("identifier"),
        "name": soap_study.get("name"),
        "status": soap_study.get("status"),
        "parent_study_oid": soap_study.get("parentStudyOid"),
    }
    for column in STAT_COLUMNS:
        merged[column] = int(stats[column]) if stats else 0
    merged["source"] = "SOAP"
    return merged


class HybridStudyService:
    """SOAP-primary study reads, database-only study writes."""

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        soap: StudySoap,
        policy: DualPathPolicy,
        store: StudyStore | None = None,
        audit_store: AuditStore | None = None,
    ):
        self.settings = settings
        self.db = db
        self.soap = soap
        self.policy = policy
        self.store = store or StudyStore(
            settings.admin_user_type_ids, settings.admin_user_type_names,
        )
        self.audit_store = audit_store or AuditStore()

    # ── Read ──

    async def get_studies(
        self, user_id: int, filters: StudyFilters | dict | None = None, username: str = "",
    ) -> ApiResponse:
        filters = StudyFilters.model_validate(filters or {})
        result = await self.policy.try_soap(
            "get_studies",
            f"user:{user_id}",
            lambda: self.soap.list_studies(user_id, username),
        )
        if result is not None:
            studies = [s for s in result.data if s.get("isParent", True) and not s.get("isSite")]
            if filters.status:
                wanted = filters.status.lower()
                studies = [s for s in studies if (s.get("status") or "").lower() == wanted]
            merged = await self._enrich(studies)
            page, pagination = paginate(merged, filters.page, filters.limit)
            return ApiResponse.ok(page, pagination=pagination)

        async with self.db.get_session() as session:
            admin = await self.store.is_admin(session, user_id)
            rows, total = await self.store.list_studies(
                session, user_id, admin, filters.status, filters.offset, filters.limit,
            )
        for row in rows:
            row["source"] = "DATABASE"
        return ApiResponse.ok(rows, pagination=Pagination.build(filters.page, filters.limit, total))

    async def _enrich(self, studies: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach database statistics with one batched query; zeros when unmatched."""
        keys = {k for s in studies for k in (s.get("oid"), s.get("identifier")) if k}
        try:
            async with self.db.get_session() as session:
                rows = await self.store.stats_for_keys(session, keys)
        except SQLAlchemyError as e:
            logger.warning(
                "Study enrichment failed; statistics default to zero",
                extra={"context": {"operation": "get_studies", "studies": len(studies), "error": str(e)}},
            )
            rows = []
        by_oid, by_identifier = build_enrichment_index(rows)
        return [merge_study(s, match_study(s, by_oid, by_identifier)) for s in studies]

    async def get_study_by_id(self, study_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            detail = await self.store.get_study_detail(session, study_id)
        if detail is None:
            return ApiResponse.fail("Study not found")
        return ApiResponse.ok(detail)

    async def get_study_sites(self, study_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            if await self.store.get_study(session, study_id) is None:
                return ApiResponse.fail("Study not found")
            sites = await self.store.get_sites(session, study_id)
        return ApiResponse.ok(sites)

    async def get_study_metadata(self, study_id: int, user_id: int, username: str = "") -> ApiResponse:
        async with self.db.get_session() as session:
            study = await self.store.get_study(session, study_id)
            oid = (study.oc_oid or study_oid(study_id)) if study else None
        if study is None:
            return ApiResponse.fail("Study not found")

        result = await self.policy.try_soap(
            "get_study_metadata",
            oid,
            lambda: self.soap.get_study_metadata(oid, user_id, username),
        )
        if result is not None:
            return ApiResponse.ok({**result.data, "source": "SOAP"})

        async with self.db.get_session() as session:
            detail = await self.store.get_study_detail(session, study_id)
            events = await self.store.event_definitions(session, study_id)
            crfs = await self.store.study_crfs(session, study_id)
        return ApiResponse.ok({"study": detail, "events": events, "crfs": crfs, "source": "DATABASE"})

    # ── Write ──

    async def create_study(self, data: StudyCreate | dict, user_id: int) -> ApiResponse:
        """Study, default parameters, owner role, event definitions and audit
        row in one transaction."""
        data = StudyCreate.model_validate(data)
        try:
            async with self.db.get_session() as session:
                if await self.store.identifier_taken(session, data.unique_identifier):
                    return ApiResponse.fail(DUPLICATE_IDENTIFIER)

                study = await self.store.insert_study(session, data, user_id)
                owner_name = await self.store.user_name(session, user_id)
                if owner_name:
                    await self.store.assign_role(session, study.study_id, owner_name, "admin", user_id)
                await self.store.insert_default_parameters(session, study.study_id)
                event_ids = await self.store.insert_event_definitions(
                    session, study.study_id, data.event_definitions, user_id,
                )
                await self._audit(
                    session, study.study_id, data.name, user_id, owner_name,
                    _CREATED, new_value=json.dumps({"unique_identifier": data.unique_identifier,
                                                    "name": data.name}),
                )
                created = {
                    "study_id": study.study_id,
                    "oc_oid": study.oc_oid,
                    "unique_identifier": study.unique_identifier,
                    "event_definition_ids": event_ids,
                }
        except SQLAlchemyError as e:
            logger.exception("Study creation failed", extra={"context": {"identifier": data.unique_identifier}})
            return ApiResponse.fail(f"Failed to create study: {e}")

        logger.info("Study created", extra={"context": {**created, "user_id": user_id}})
        return ApiResponse.ok(created, message="Study created successfully")

    async def update_study(self, study_id: int, data: StudyUpdate | dict, user_id: int) -> ApiResponse:
        data = StudyUpdate.model_validate(data)
        changes = data.model_dump(exclude_unset=True)
        description = changes.pop("description", None)
        if "summary" not in changes and description is not None:
            changes["summary"] = description
        if not changes:
            return ApiResponse.fail("No fields to update")

        try:
            async with self.db.get_session() as session:
                study = await self.store.get_study(session, study_id)
                if study is None:
                    return ApiResponse.fail("Study not found")
                identifier = changes.get("unique_identifier")
                if identifier and await self.store.identifier_taken(session, identifier, study_id):
                    return ApiResponse.fail(DUPLICATE_IDENTIFIER)

                old = {k: getattr(study, k) for k in changes}
                for field, value in changes.items():
                    setattr(study, field, value)
                study.date_updated = today()
                study.update_id = user_id
                await session.flush()
                await self._audit(
                    session, study_id, study.name, user_id,
                    await self.store.user_name(session, user_id), _UPDATED,
                    old_value=json.dumps(old, default=str),
                    new_value=json.dumps(changes, default=str),
                )
        except SQLAlchemyError as e:
            logger.exception("Study update failed", extra={"context": {"study_id": study_id}})
            return ApiResponse.fail(f"Failed to update study: {e}")

        return ApiResponse.ok({"study_id": study_id, "updated": sorted(changes)},
                              message="Study updated successfully")

    async def delete_study(self, study_id: int, user_id: int) -> ApiResponse:
        """Soft delete to status removed; refused while subjects are enrolled."""
        try:
            async with self.db.get_session() as session:
                study = await self.store.get_study(session, study_id)
                if study is None:
                    return ApiResponse.fail("Study not found")
                if await self.store.has_subjects(session, study_id):
                    return ApiResponse.fail(HAS_SUBJECTS)

                previous = study.status_id
                study.status_id = Status.REMOVED
                study.date_updated = today()
                study.update_id = user_id
                await session.flush()
                await self._audit(
                    session, study_id, study.name, user_id,
                    await self.store.user_name(session, user_id), _REMOVED,
                    old_value=str(previous), new_value=str(int(Status.REMOVED)),
                )
        except SQLAlchemyError as e:
            logger.exception("Study deletion failed", extra={"context": {"study_id": study_id}})
            return ApiResponse.fail(f"Failed to delete study: {e}")

        return ApiResponse.ok({"study_id": study_id, "status_id": int(Status.REMOVED)},
                              message="Study removed successfully")

    async def _audit(
        self,
        session,
        study_id: int,
        name: str,
        user_id: int,
        username: str | None,
        lookup: tuple[tuple[str, ...], AuditEventType],
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> None:
        patterns, default = lookup
        event_type = await self.audit_store.resolve_event_type(session, patterns, int(default))
        await self.audit_store.insert_event(session, AuditEventCreate(
            audit_table="study",
            entity_id=study_id,
            entity_name=name,
            user_id=user_id,
            username=username or str(user_id),
            event_type_id=event_type,
            old_value=old_value,
            new_value=new_value,
        ))
