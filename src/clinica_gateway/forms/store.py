"""Direct-database access to forms, event CRFs and item data."""

from datetime import date
from typing import Any, Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status, StatusModel, UserAccountModel
from clinica_gateway.forms.models import (
    CompletionStatus,
    CompletionStatusModel,
    EventCrfModel,
    ItemDataModel,
    ItemFormMetadataModel,
    ItemModel,
)
from clinica_gateway.studies.models import (
    CrfModel,
    CrfVersionModel,
    EventDefinitionCrfModel,
    StudyEventDefinitionModel,
    StudyModel,
)
from clinica_gateway.subjects.models import StudyEventModel, StudySubjectModel


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class FormStore:
    """Parameterized form queries; callers own the session."""

    # ── Lookups ──

    async def entry_context(
        self,
        session: AsyncSession,
        study_id: int,
        study_subject_id: int,
        study_event_definition_id: int,
        crf_id: int,
    ) -> dict[str, Any] | None:
        """OIDs and ids needed to address one form of one subject event."""
        result = await session.execute(
            select(StudySubjectModel, StudyModel.oc_oid)
            .join(StudyModel, StudyModel.study_id == StudySubjectModel.study_id)
            .where(StudySubjectModel.study_subject_id == study_subject_id,
                   StudySubjectModel.study_id == study_id)
        )
        subject_row = result.first()
        if subject_row is None:
            return None
        study_subject, study_oid = subject_row

        event_def = await session.get(StudyEventDefinitionModel, study_event_definition_id)
        crf = await session.get(CrfModel, crf_id)
        if event_def is None or crf is None:
            return None
        return {
            "study_oid": study_oid,
            "label": study_subject.label,
            "subject_oid": study_subject.oc_oid,
            "event_oid": event_def.oc_oid,
            "form_oid": crf.oc_oid,
        }

    async def latest_version_id(self, session: AsyncSession, crf_id: int) -> int | None:
        result = await session.execute(
            select(CrfVersionModel.crf_version_id)
            .where(CrfVersionModel.crf_id == crf_id)
            .order_by(CrfVersionModel.crf_version_id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve_event_crf(
        self,
        session: AsyncSession,
        study_subject_id: int,
        study_event_definition_id: int,
        crf_id: int,
        user_id: int,
    ) -> EventCrfModel | None:
        """Existing event CRF for the subject event, or a new one on the latest
        form version. ``None`` when the subject has no such event."""
        event_result = await session.execute(
            select(StudyEventModel.study_event_id)
            .where(StudyEventModel.study_subject_id == study_subject_id,
                   StudyEventModel.study_event_definition_id == study_event_definition_id)
            .order_by(StudyEventModel.sample_ordinal.desc())
            .limit(1)
        )
        study_event_id = event_result.scalar_one_or_none()
        if study_event_id is None:
            return None

        existing = await session.execute(
            select(EventCrfModel)
            .join(CrfVersionModel, CrfVersionModel.crf_version_id == EventCrfModel.crf_version_id)
            .where(EventCrfModel.study_event_id == study_event_id, CrfVersionModel.crf_id == crf_id)
            .limit(1)
        )
        event_crf = existing.scalar_one_or_none()
        if event_crf is not None:
            return event_crf

        version_id = await self.latest_version_id(session, crf_id)
        if version_id is None:
            return None
        event_crf = EventCrfModel(
            study_event_id=study_event_id,
            crf_version_id=version_id,
            study_subject_id=study_subject_id,
            completion_status_id=CompletionStatus.INITIAL_DATA_ENTRY,
            status_id=Status.AVAILABLE,
            owner_id=user_id,
            date_created=today(),
        )
        session.add(event_crf)
        await session.flush()
        return event_crf

    async def resolve_items(
        self, session: AsyncSession, keys: Iterable[str],
    ) -> dict[str, ItemModel]:
        """One batched lookup by item OID or item name."""
        keys = sorted(set(keys))
        if not keys:
            return {}
        result = await session.execute(
            select(ItemModel).where(or_(ItemModel.oc_oid.in_(keys), ItemModel.name.in_(keys)))
        )
        found: dict[str, ItemModel] = {}
        for item in result.scalars().all():
            for key in (item.name, item.oc_oid):
                if key in keys:
                    found.setdefault(key, item)
        return found

    async def current_values(
        self, session: AsyncSession, event_crf_id: int, item_ids: Iterable[int],
    ) -> dict[int, ItemDataModel]:
        result = await session.execute(
            select(ItemDataModel).where(
                ItemDataModel.event_crf_id == event_crf_id,
                ItemDataModel.item_id.in_(list(item_ids)),
                ItemDataModel.deleted.is_(False),
            )
        )
        return {row.item_id: row for row in result.scalars().all()}

    async def crf_in_use(self, session: AsyncSession, crf_id: int) -> bool:
        result = await session.execute(
            select(EventCrfModel.event_crf_id)
            .join(CrfVersionModel, CrfVersionModel.crf_version_id == EventCrfModel.crf_version_id)
            .where(CrfVersionModel.crf_id == crf_id)
            .limit(1)
        )
        return result.first() is not None

    # ── Read ──

    async def form_data(self, session: AsyncSession, event_crf_id: int) -> list[dict[str, Any]]:
        result = await session.execute(
            select(ItemDataModel, ItemModel.name, ItemModel.oc_oid, UserAccountModel.user_name)
            .join(ItemModel, ItemModel.item_id == ItemDataModel.item_id)
            .outerjoin(UserAccountModel, UserAccountModel.user_id == ItemDataModel.owner_id)
            .where(ItemDataModel.event_crf_id == event_crf_id, ItemDataModel.deleted.is_(False))
            .order_by(ItemModel.name)
        )
        return [
            {
                "item_data_id": row.item_data_id,
                "item_name": name,
                "item_oid": oid,
                "value": row.value,
                "status_id": row.status_id,
                "date_created": _iso(row.date_created),
                "date_updated": _iso(row.date_updated),
                "entered_by": entered_by,
            }
            for row, name, oid, entered_by in result.all()
        ]

    async def form_status(self, session: AsyncSession, event_crf_id: int) -> dict[str, Any] | None:
        creator = aliased(UserAccountModel)
        updater = aliased(UserAccountModel)
        result = await session.execute(
            select(EventCrfModel, CompletionStatusModel.name, creator.user_name, updater.user_name)
            .outerjoin(CompletionStatusModel,
                       CompletionStatusModel.completion_status_id == EventCrfModel.completion_status_id)
            .outerjoin(creator, creator.user_id == EventCrfModel.owner_id)
            .outerjoin(updater, updater.user_id == EventCrfModel.update_id)
            .where(EventCrfModel.event_crf_id == event_crf_id)
        )
        row = result.first()
        if row is None:
            return None
        ec, completion, created_by, updated_by = row
        return {
            "event_crf_id": ec.event_crf_id,
            "completion_status_id": ec.completion_status_id,
            "completion_status": completion,
            "date_created": _iso(ec.date_created),
            "date_updated": _iso(ec.date_updated),
            "date_completed": _iso(ec.date_completed),
            "created_by": created_by,
            "updated_by": updated_by,
            "sdv_status": ec.sdv_status,
        }

    async def study_forms(self, session: AsyncSession, study_id: int) -> list[dict[str, Any]]:
        """Forms owned by the study or assigned to one of its event definitions."""
        version_count = (
            select(func.count(CrfVersionModel.crf_version_id))
            .where(CrfVersionModel.crf_id == CrfModel.crf_id)
            .scalar_subquery()
        )
        latest_version = (
            select(CrfVersionModel.name)
            .where(CrfVersionModel.crf_id == CrfModel.crf_id)
            .order_by(CrfVersionModel.crf_version_id.desc())
            .limit(1)
            .scalar_subquery()
        )
        assigned = select(EventDefinitionCrfModel.crf_id).where(
            EventDefinitionCrfModel.study_id == study_id,
            EventDefinitionCrfModel.status_id != Status.REMOVED,
        )
        result = await session.execute(
            select(CrfModel, StatusModel.name, version_count, latest_version)
            .outerjoin(StatusModel, StatusModel.status_id == CrfModel.status_id)
            .where(or_(CrfModel.source_study_id == study_id, CrfModel.crf_id.in_(assigned)),
                   CrfModel.status_id != Status.REMOVED)
            .order_by(CrfModel.name)
        )
        return [
            {
                "crf_id": crf.crf_id,
                "name": crf.name,
                "description": crf.description,
                "oc_oid": crf.oc_oid,
                "status_id": crf.status_id,
                "status": status_name,
                "date_created": _iso(crf.date_created),
                "date_updated": _iso(crf.date_updated),
                "version_count": int(versions or 0),
                "latest_version": latest,
            }
            for crf, status_name, versions, latest in result.all()
        ]

    async def get_crf(self, session: AsyncSession, crf_id: int) -> CrfModel | None:
        return await session.get(CrfModel, crf_id)

    async def form_metadata(self, session: AsyncSession, crf_id: int) -> dict[str, Any] | None:
        crf = await self.get_crf(session, crf_id)
        if crf is None:
            return None
        versions = await session.execute(
            select(CrfVersionModel)
            .where(CrfVersionModel.crf_id == crf_id)
            .order_by(CrfVersionModel.crf_version_id)
        )
        items = await session.execute(
            select(ItemModel, ItemFormMetadataModel)
            .join(ItemFormMetadataModel, ItemFormMetadataModel.item_id == ItemModel.item_id)
            .where(ItemFormMetadataModel.crf_version_id.in_(
                select(CrfVersionModel.crf_version_id).where(CrfVersionModel.crf_id == crf_id)
            ))
            .order_by(ItemFormMetadataModel.crf_version_id, ItemFormMetadataModel.ordinal)
        )
        return {
            "crf": {
                "crf_id": crf.crf_id,
                "name": crf.name,
                "description": crf.description,
                "oc_oid": crf.oc_oid,
                "status_id": crf.status_id,
            },
            "versions": [
                {"crf_version_id": v.crf_version_id, "name": v.name,
                 "oc_oid": v.oc_oid, "status_id": v.status_id}
                for v in versions.scalars().all()
            ],
            "items": [
                {"item_id": i.item_id, "crf_version_id": m.crf_version_id, "name": i.name,
                 "oc_oid": i.oc_oid, "label": m.left_item_text, "description": i.description,
                 "units": i.units, "required": m.required, "ordinal": m.ordinal}
                for i, m in items.all()
            ],
        }
