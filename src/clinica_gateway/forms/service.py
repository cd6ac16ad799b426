"""Form reconciliation: SOAP ODM import with direct item-data fallback."""

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
from clinica_gateway.common.schemas import ApiResponse
from clinica_gateway.forms.models import CompletionStatus, ItemDataModel
from clinica_gateway.forms.schemas import UNGROUPED, FormDataSave
from clinica_gateway.forms.store import FormStore
from clinica_gateway.hybrid.policy import DualPathPolicy
from clinica_gateway.soap.data import DataSoap
from clinica_gateway.soap.odm import event_oid, form_oid, study_oid, study_subject_oid

logger = logging.getLogger(__name__)

FORM_IN_USE = "Cannot delete form - it is being used by subjects"


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


class HybridFormService:
    """SOAP-primary data entry; form reads and template removal from the database."""

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        soap: DataSoap,
        policy: DualPathPolicy,
        store: FormStore | None = None,
        audit_store: AuditStore | None = None,
    ):
        self.settings = settings
        self.db = db
        self.soap = soap
        self.policy = policy
        self.store = store or FormStore()
        self.audit_store = audit_store or AuditStore()

    # ── Data entry ──

    async def save_form_data(
        self, request: FormDataSave | dict, user_id: int, username: str,
    ) -> ApiResponse:
        request = FormDataSave.model_validate(request)
        if not request.flat():
            return ApiResponse.fail("Form data is empty")

        async with self.db.get_session() as session:
            context = await self.store.entry_context(
                session, request.study_id, request.study_subject_id,
                request.study_event_definition_id, request.crf_id,
            )
        if context is None:
            return ApiResponse.fail("Subject, event or form not found")

        subject_key = context["subject_oid"] or study_subject_oid(context["label"])
        groups = {
            (f"IG_{request.crf_id}_{UNGROUPED}" if key == UNGROUPED else key): items
            for key, items in request.grouped().items()
        }
        result = await self.policy.try_soap(
            "save_form_data",
            f"{subject_key}/{request.crf_id}",
            lambda: self.soap.import_data(
                context["study_oid"] or study_oid(request.study_id),
                subject_key,
                context["event_oid"] or event_oid(request.study_event_definition_id),
                context["form_oid"] or form_oid(request.crf_id),
                groups,
                user_id,
                username,
            ),
            payload_required=False,
        )
        if result is not None:
            data = result.data or {}
            if data.get("validationErrors"):
                return ApiResponse.fail("Data import failed validation", data=data)
            return ApiResponse.ok({**data, "source": "SOAP"}, message="Form data saved successfully")

        return await self._save_direct(request, user_id, username)

    async def _save_direct(self, request: FormDataSave, user_id: int, username: str) -> ApiResponse:
        values = request.flat()
        try:
            async with self.db.get_session() as session:
                items = await self.store.resolve_items(session, values)
                unknown = sorted(set(values) - set(items))
                if unknown:
                    return ApiResponse.fail(f"Unknown form items: {', '.join(unknown)}")

                event_crf = await self.store.resolve_event_crf(
                    session, request.study_subject_id, request.study_event_definition_id,
                    request.crf_id, user_id,
                )
                if event_crf is None:
                    return ApiResponse.fail("Subject event not found for this form")

                current = await self.store.current_values(
                    session, event_crf.event_crf_id, (i.item_id for i in items.values()),
                )
                inserted, updated = await self._apply_values(
                    session, event_crf.event_crf_id, items, values, current, user_id, username,
                )
                if event_crf.completion_status_id == CompletionStatus.NOT_STARTED:
                    event_crf.completion_status_id = CompletionStatus.INITIAL_DATA_ENTRY
                event_crf.date_updated = today()
                event_crf.update_id = user_id
                await session.flush()
                saved = {
                    "eventCrfId": event_crf.event_crf_id,
                    "itemsInserted": inserted,
                    "itemsUpdated": updated,
                    "source": "DATABASE",
                }
        except SQLAlchemyError as e:
            logger.error(
                "Direct form save failed",
                extra={"context": {"study_subject_id": request.study_subject_id,
                                   "crf_id": request.crf_id, "error": str(e)}},
            )
            return ApiResponse.fail(f"Failed to save form data: {e}")

        logger.info("Form data saved in database", extra={"context": saved})
        return ApiResponse.ok(saved, message="Form data saved successfully")

    async def _apply_values(self, session, event_crf_id, items, values, current, user_id, username):
        """Insert or update item_data; one audit row per changed item."""
        inserted = updated = 0
        for key, raw in values.items():
            item = items[key]
            value = _as_text(raw)
            existing = current.get(item.item_id)
            if existing is not None and existing.value == value:
                continue
            if existing is None:
                row = ItemDataModel(
                    item_id=item.item_id, event_crf_id=event_crf_id, value=value,
                    status_id=Status.AVAILABLE, owner_id=user_id, date_created=today(),
                )
                session.add(row)
                await session.flush()
                current[item.item_id] = row
                old_value, event_type = None, AuditEventType.ITEM_DATA_INSERTED
                inserted += 1
            else:
                row = existing
                old_value, event_type = existing.value, AuditEventType.ITEM_DATA_UPDATED
                row.value = value
                row.update_id = user_id
                row.date_updated = today()
                updated += 1
            await self.audit_store.insert_event(session, AuditEventCreate(
                audit_table="item_data",
                entity_id=row.item_data_id,
                entity_name=item.name,
                user_id=user_id,
                username=username,
                event_type_id=int(event_type),
                old_value=old_value,
                new_value=value,
                event_crf_id=event_crf_id,
            ))
        return inserted, updated

    # ── Read ──

    async def get_form_data(self, event_crf_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            rows = await self.store.form_data(session, event_crf_id)
        return ApiResponse.ok(rows)

    async def get_form_status(self, event_crf_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            status = await self.store.form_status(session, event_crf_id)
        if status is None:
            return ApiResponse.fail("Form not found")
        return ApiResponse.ok(status)

    async def get_study_forms(self, study_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            forms = await self.store.study_forms(session, study_id)
        return ApiResponse.ok(forms)

    async def get_form_metadata(self, crf_id: int) -> ApiResponse:
        async with self.db.get_session() as session:
            metadata = await self.store.form_metadata(session, crf_id)
        if metadata is None:
            return ApiResponse.fail("Form not found")
        return ApiResponse.ok(metadata)

    # ── Templates ──

    async def delete_form(self, crf_id: int, user_id: int, username: str = "") -> ApiResponse:
        """Soft delete a form template that no subject has data on."""
        try:
            async with self.db.get_session() as session:
                crf = await self.store.get_crf(session, crf_id)
                if crf is None:
                    return ApiResponse.fail("Form not found")
                if await self.store.crf_in_use(session, crf_id):
                    return ApiResponse.fail(FORM_IN_USE)

                previous = crf.status_id
                crf.status_id = Status.REMOVED
                crf.date_updated = today()
                crf.update_id = user_id
                await session.flush()
                event_type = await self.audit_store.resolve_event_type(
                    session, ("crf removed", "%crf%remov%", "%remov%"),
                    int(AuditEventType.CRF_REMOVED),
                )
                await self.audit_store.insert_event(session, AuditEventCreate(
                    audit_table="crf",
                    entity_id=crf_id,
                    entity_name=crf.name,
                    user_id=user_id,
                    username=username or str(user_id),
                    event_type_id=event_type,
                    old_value=str(previous),
                    new_value=str(int(Status.REMOVED)),
                ))
        except SQLAlchemyError as e:
            logger.error("Form deletion failed", extra={"context": {"crf_id": crf_id, "error": str(e)}})
            return ApiResponse.fail(f"Failed to delete form: {e}")

        return ApiResponse.ok({"crf_id": crf_id, "status_id": int(Status.REMOVED)},
                              message="Form template deleted successfully")
