"""Direct-database access to event definitions and scheduled subject events."""

from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status, StatusModel
from clinica_gateway.forms.models import COMPLETED_FORM_STATUSES, CompletionStatus, EventCrfModel
from clinica_gateway.studies.models import (
    CrfVersionModel,
    EventDefinitionCrfModel,
    StudyEventDefinitionModel,
    StudyModel,
)
from clinica_gateway.subjects.models import (
    StudyEventModel,
    StudySubjectModel,
    SubjectEventStatusModel,
)

_HIDDEN = (Status.REMOVED, Status.AUTO_REMOVED)


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


class EventStore:
    """Parameterized event queries; callers own the session."""

    # ── Read ──

    async def get_study(self, session: AsyncSession, study_id: int) -> StudyModel | None:
        return await session.get(StudyModel, study_id)

    async def get_study_subject(
        self, session: AsyncSession, study_subject_id: int,
    ) -> StudySubjectModel | None:
        return await session.get(StudySubjectModel, study_subject_id)

    async def get_definition(
        self, session: AsyncSession, definition_id: int,
    ) -> StudyEventDefinitionModel | None:
        return await session.get(StudyEventDefinitionModel, definition_id)

    async def next_sample_ordinal(
        self, session: AsyncSession, study_subject_id: int, definition_id: int,
    ) -> int:
        result = await session.execute(
            select(func.coalesce(func.max(StudyEventModel.sample_ordinal), 0))
            .where(StudyEventModel.study_subject_id == study_subject_id,
                   StudyEventModel.study_event_definition_id == definition_id)
        )
        return int(result.scalar() or 0) + 1

    async def latest_event_id(
        self, session: AsyncSession, study_subject_id: int, definition_id: int,
    ) -> int | None:
        result = await session.execute(
            select(StudyEventModel.study_event_id)
            .where(StudyEventModel.study_subject_id == study_subject_id,
                   StudyEventModel.study_event_definition_id == definition_id)
            .order_by(StudyEventModel.sample_ordinal.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def assigned_versions(self, session: AsyncSession, definition_id: int) -> list[int]:
        """Latest available version of each CRF assigned to the definition."""
        latest = (
            select(func.max(CrfVersionModel.crf_version_id))
            .where(CrfVersionModel.crf_id == EventDefinitionCrfModel.crf_id,
                   CrfVersionModel.status_id == Status.AVAILABLE)
            .scalar_subquery()
        )
        result = await session.execute(
            select(EventDefinitionCrfModel.crf_id, latest)
            .where(EventDefinitionCrfModel.study_event_definition_id == definition_id,
                   EventDefinitionCrfModel.status_id == Status.AVAILABLE)
            .order_by(EventDefinitionCrfModel.ordinal)
        )
        return [version_id for _, version_id in result.all() if version_id is not None]

    async def study_events(self, session: AsyncSession, study_id: int) -> list[dict[str, Any]]:
        sed_id = StudyEventDefinitionModel.study_event_definition_id
        usage = (
            select(func.count(StudyEventModel.study_event_id))
            .where(StudyEventModel.study_event_definition_id == sed_id,
                   StudyEventModel.status_id.not_in(_HIDDEN))
            .scalar_subquery()
        )
        crfs = (
            select(func.count(EventDefinitionCrfModel.event_definition_crf_id))
            .where(EventDefinitionCrfModel.study_event_definition_id == sed_id,
                   EventDefinitionCrfModel.status_id.not_in(_HIDDEN))
            .scalar_subquery()
        )
        result = await session.execute(
            select(StudyEventDefinitionModel, StatusModel.name, usage, crfs)
            .outerjoin(StatusModel, StatusModel.status_id == StudyEventDefinitionModel.status_id)
            .where(StudyEventDefinitionModel.study_id == study_id,
                   StudyEventDefinitionModel.status_id.not_in(_HIDDEN))
            .order_by(StudyEventDefinitionModel.ordinal)
        )
        return [
            {**self._definition(sed, status), "usage_count": int(used or 0),
             "crf_count": int(count or 0)}
            for sed, status, used, count in result.all()
        ]

    async def definition_detail(
        self, session: AsyncSession, definition_id: int,
    ) -> dict[str, Any] | None:
        result = await session.execute(
            select(StudyEventDefinitionModel, StatusModel.name, StudyModel.name)
            .join(StudyModel, StudyModel.study_id == StudyEventDefinitionModel.study_id)
            .outerjoin(StatusModel, StatusModel.status_id == StudyEventDefinitionModel.status_id)
            .where(StudyEventDefinitionModel.study_event_definition_id == definition_id)
        )
        row = result.first()
        if row is None:
            return None
        sed, status, study_name = row
        return {**self._definition(sed, status), "study_name": study_name}

    async def subject_events(
        self, session: AsyncSession, study_subject_id: int,
    ) -> list[dict[str, Any]]:
        se_id = StudyEventModel.study_event_id
        total = (
            select(func.count(EventCrfModel.event_crf_id))
            .where(EventCrfModel.study_event_id == se_id)
            .scalar_subquery()
        )
        completed = (
            select(func.count(EventCrfModel.event_crf_id))
            .where(EventCrfModel.study_event_id == se_id,
                   EventCrfModel.completion_status_id.in_(COMPLETED_FORM_STATUSES))
            .scalar_subquery()
        )
        result = await session.execute(
            select(StudyEventModel, StudyEventDefinitionModel.name,
                   StudyEventDefinitionModel.ordinal, StudyEventDefinitionModel.type,
                   SubjectEventStatusModel.name, total, completed)
            .join(StudyEventDefinitionModel,
                  StudyEventDefinitionModel.study_event_definition_id
                  == StudyEventModel.study_event_definition_id)
            .outerjoin(SubjectEventStatusModel,
                       SubjectEventStatusModel.subject_event_status_id
                       == StudyEventModel.subject_event_status_id)
            .where(StudyEventModel.study_subject_id == study_subject_id)
            .order_by(func.coalesce(StudyEventModel.date_start, StudyEventModel.date_created),
                      StudyEventDefinitionModel.ordinal, StudyEventModel.sample_ordinal)
        )
        events = []
        for event, name, ordinal, event_type, status, forms, done in result.all():
            events.append({
                "study_event_id": event.study_event_id,
                "study_event_definition_id": event.study_event_definition_id,
                "study_subject_id": event.study_subject_id,
                "event_name": name,
                "ordinal": ordinal,
                "event_type": event_type,
                "subject_event_status_id": event.subject_event_status_id,
                "status_name": status,
                "date_start": _iso(event.date_start),
                "date_end": _iso(event.date_end),
                "sample_ordinal": event.sample_ordinal,
                "location": event.location or None,
                "crf_count": int(forms or 0),
                "completed_crf_count": int(done or 0),
            })
        return events

    # ── Write ──

    async def insert_event(
        self,
        session: AsyncSession,
        study_subject_id: int,
        definition_id: int,
        sample_ordinal: int,
        start_date: date,
        end_date: date | None,
        location: str | None,
        subject_event_status_id: int,
        owner_id: int,
    ) -> StudyEventModel:
        event = StudyEventModel(
            study_subject_id=study_subject_id,
            study_event_definition_id=definition_id,
            location=location or "",
            sample_ordinal=sample_ordinal,
            date_start=start_date,
            date_end=end_date,
            owner_id=owner_id,
            status_id=Status.AVAILABLE,
            date_created=today(),
            subject_event_status_id=subject_event_status_id,
        )
        session.add(event)
        await session.flush()
        return event

    async def insert_event_crfs(
        self,
        session: AsyncSession,
        event: StudyEventModel,
        version_ids: list[int],
        owner_id: int,
    ) -> int:
        for version_id in version_ids:
            session.add(EventCrfModel(
                study_event_id=event.study_event_id,
                crf_version_id=version_id,
                study_subject_id=event.study_subject_id,
                completion_status_id=CompletionStatus.NOT_STARTED,
                status_id=Status.AVAILABLE,
                owner_id=owner_id,
                date_created=today(),
            ))
        await session.flush()
        return len(version_ids)

    @staticmethod
    def _definition(sed: StudyEventDefinitionModel, status: str | None) -> dict[str, Any]:
        return {
            "study_event_definition_id": sed.study_event_definition_id,
            "study_id": sed.study_id,
            "name": sed.name,
            "description": sed.description,
            "ordinal": sed.ordinal,
            "type": sed.type,
            "repeating": sed.repeating,
            "category": sed.category,
            "status_name": status,
            "oc_oid": sed.oc_oid,
        }
