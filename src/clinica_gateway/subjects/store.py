"""Direct-database access to enrolled subjects and their progress."""

import re
from datetime import date
from typing import Any, Iterable

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status, StatusModel, UserAccountModel
from clinica_gateway.forms.models import COMPLETED_FORM_STATUSES, EventCrfModel
from clinica_gateway.studies.models import StudyEventDefinitionModel, StudyModel
from clinica_gateway.subjects.models import (
    COMPLETED_EVENT_STATUSES,
    StudyEventModel,
    StudySubjectModel,
    SubjectEventStatusModel,
    SubjectModel,
)
from clinica_gateway.subjects.schemas import SubjectCreate


def make_subject_oid(label: str) -> str:
    return ("SS_" + re.sub(r"[^A-Za-z0-9]", "", label))[:40]


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _progress_columns():
    ssid = StudySubjectModel.study_subject_id
    return (
        select(func.count(StudyEventModel.study_event_id))
        .where(StudyEventModel.study_subject_id == ssid)
        .scalar_subquery().label("total_events"),
        select(func.count(EventCrfModel.event_crf_id))
        .where(EventCrfModel.study_subject_id == ssid,
               EventCrfModel.completion_status_id.in_(COMPLETED_FORM_STATUSES))
        .scalar_subquery().label("completed_forms"),
    )


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


class SubjectStore:
    """Parameterized subject queries; callers own the session."""

    # ── Read ──

    async def get_study(self, session: AsyncSession, study_id: int) -> StudyModel | None:
        result = await session.execute(select(StudyModel).where(StudyModel.study_id == study_id))
        return result.scalar_one_or_none()

    async def label_exists(self, session: AsyncSession, study_id: int, label: str) -> bool:
        result = await session.execute(
            select(StudySubjectModel.study_subject_id)
            .where(StudySubjectModel.study_id == study_id, StudySubjectModel.label == label)
            .limit(1)
        )
        return result.first() is not None

    async def study_subject_id(self, session: AsyncSession, study_id: int, label: str) -> int | None:
        result = await session.execute(
            select(StudySubjectModel.study_subject_id)
            .where(StudySubjectModel.study_id == study_id, StudySubjectModel.label == label)
        )
        return result.scalars().first()

    async def stats_for_labels(
        self, session: AsyncSession, study_id: int, labels: Iterable[str],
    ) -> dict[str, dict[str, Any]]:
        """One batched lookup keyed by label."""
        labels = sorted({label for label in labels if label})
        if not labels:
            return {}
        result = await session.execute(
            select(StudySubjectModel.study_subject_id, StudySubjectModel.label,
                   StatusModel.name, *_progress_columns())
            .outerjoin(StatusModel, StatusModel.status_id == StudySubjectModel.status_id)
            .where(StudySubjectModel.study_id == study_id, StudySubjectModel.label.in_(labels))
        )
        return {
            label: {
                "study_subject_id": ssid,
                "status": status,
                "total_events": int(events or 0),
                "completed_forms": int(forms or 0),
            }
            for ssid, label, status, events, forms in result.all()
        }

    async def list_subjects(
        self,
        session: AsyncSession,
        study_id: int,
        status: str | None,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        conditions = [StudySubjectModel.study_id == study_id]
        if status:
            conditions.append(func.lower(StatusModel.name) == status.lower())

        count_result = await session.execute(
            select(func.count(StudySubjectModel.study_subject_id))
            .outerjoin(StatusModel, StatusModel.status_id == StudySubjectModel.status_id)
            .where(*conditions)
        )
        total = count_result.scalar() or 0

        result = await session.execute(
            select(StudySubjectModel, SubjectModel, StatusModel.name,
                   UserAccountModel.user_name, *_progress_columns())
            .join(SubjectModel, SubjectModel.subject_id == StudySubjectModel.subject_id)
            .outerjoin(StatusModel, StatusModel.status_id == StudySubjectModel.status_id)
            .outerjoin(UserAccountModel, UserAccountModel.user_id == StudySubjectModel.owner_id)
            .where(*conditions)
            .order_by(StudySubjectModel.enrollment_date.desc(), StudySubjectModel.study_subject_id.desc())
            .offset(offset)
            .limit(limit)
        )
        rows = []
        for ss, subject, status_name, created_by, events, forms in result.all():
            rows.append({
                "study_subject_id": ss.study_subject_id,
                "label": ss.label,
                "secondary_label": ss.secondary_label,
                "enrollment_date": _iso(ss.enrollment_date),
                "status": status_name,
                "gender": subject.gender,
                "date_of_birth": _iso(subject.date_of_birth),
                "date_created": _iso(ss.date_created),
                "created_by": created_by,
                "total_events": int(events or 0),
                "completed_forms": int(forms or 0),
            })
        return rows, total

    async def get_subject_detail(
        self, session: AsyncSession, study_subject_id: int,
    ) -> dict[str, Any] | None:
        result = await session.execute(
            select(StudySubjectModel, SubjectModel, StatusModel.name, UserAccountModel.user_name)
            .join(SubjectModel, SubjectModel.subject_id == StudySubjectModel.subject_id)
            .outerjoin(StatusModel, StatusModel.status_id == StudySubjectModel.status_id)
            .outerjoin(UserAccountModel, UserAccountModel.user_id == StudySubjectModel.owner_id)
            .where(StudySubjectModel.study_subject_id == study_subject_id)
        )
        row = result.first()
        if row is None:
            return None
        ss, subject, status_name, created_by = row

        total_forms = (
            select(func.count(EventCrfModel.event_crf_id))
            .where(EventCrfModel.study_event_id == StudyEventModel.study_event_id)
            .scalar_subquery()
        )
        completed_forms = (
            select(func.count(EventCrfModel.event_crf_id))
            .where(EventCrfModel.study_event_id == StudyEventModel.study_event_id,
                   EventCrfModel.completion_status_id.in_(COMPLETED_FORM_STATUSES))
            .scalar_subquery()
        )
        events_result = await session.execute(
            select(StudyEventModel, StudyEventDefinitionModel.name,
                   StudyEventDefinitionModel.repeating, SubjectEventStatusModel.name,
                   total_forms, completed_forms)
            .join(StudyEventDefinitionModel,
                  StudyEventDefinitionModel.study_event_definition_id
                  == StudyEventModel.study_event_definition_id)
            .outerjoin(SubjectEventStatusModel,
                       SubjectEventStatusModel.subject_event_status_id
                       == StudyEventModel.subject_event_status_id)
            .where(StudyEventModel.study_subject_id == study_subject_id)
            .order_by(StudyEventDefinitionModel.ordinal, StudyEventModel.sample_ordinal)
        )
        events = []
        for event, name, repeating, event_status, forms, done in events_result.all():
            events.append({
                "study_event_id": event.study_event_id,
                "study_event_definition_id": event.study_event_definition_id,
                "event_name": name,
                "repeating": repeating,
                "status": event_status,
                "sample_ordinal": event.sample_ordinal,
                "date_start": _iso(event.date_start),
                "date_end": _iso(event.date_end),
                "total_forms": int(forms or 0),
                "completed_forms": int(done or 0),
            })

        total = sum(e["total_forms"] for e in events)
        completed = sum(e["completed_forms"] for e in events)
        return {
            "study_subject_id": ss.study_subject_id,
            "study_id": ss.study_id,
            "label": ss.label,
            "secondary_label": ss.secondary_label,
            "enrollment_date": _iso(ss.enrollment_date),
            "status": status_name,
            "status_id": ss.status_id,
            "oc_oid": ss.oc_oid,
            "created_by": created_by,
            "subject": {
                "subject_id": subject.subject_id,
                "unique_identifier": subject.unique_identifier or ss.label,
                "gender": subject.gender,
                "date_of_birth": _iso(subject.date_of_birth),
                "status_id": subject.status_id,
                "date_created": _iso(subject.date_created),
            },
            "events": events,
            "completion_percentage": _percent(completed, total),
            "last_activity": _iso(ss.date_updated or ss.date_created),
        }

    async def progress(self, session: AsyncSession, study_subject_id: int) -> dict[str, int] | None:
        exists = await session.execute(
            select(StudySubjectModel.study_subject_id)
            .where(StudySubjectModel.study_subject_id == study_subject_id)
        )
        if exists.first() is None:
            return None

        events_result = await session.execute(
            select(
                func.count(distinct(StudyEventModel.study_event_id)),
                func.count(distinct(StudyEventModel.study_event_id)).filter(
                    StudyEventModel.subject_event_status_id.in_(COMPLETED_EVENT_STATUSES)
                ),
            ).where(StudyEventModel.study_subject_id == study_subject_id)
        )
        total_events, completed_events = events_result.one()
        forms_result = await session.execute(
            select(
                func.count(EventCrfModel.event_crf_id),
                func.count(EventCrfModel.event_crf_id).filter(
                    EventCrfModel.completion_status_id.in_(COMPLETED_FORM_STATUSES)
                ),
            ).where(EventCrfModel.study_subject_id == study_subject_id)
        )
        total_forms, completed_forms = forms_result.one()
        return {
            "total_events": int(total_events or 0),
            "completed_events": int(completed_events or 0),
            "event_completion_percentage": _percent(completed_events or 0, total_events or 0),
            "total_forms": int(total_forms or 0),
            "completed_forms": int(completed_forms or 0),
            "form_completion_percentage": _percent(completed_forms or 0, total_forms or 0),
        }

    # ── Write ──

    async def insert_subject(
        self, session: AsyncSession, data: SubjectCreate, owner_id: int,
    ) -> StudySubjectModel:
        subject = SubjectModel(
            date_of_birth=data.date_of_birth,
            gender=data.gender or "",
            unique_identifier=data.study_subject_id,
            owner_id=owner_id,
            dob_collected=data.date_of_birth is not None,
            status_id=Status.AVAILABLE,
            date_created=today(),
        )
        session.add(subject)
        await session.flush()

        study_subject = StudySubjectModel(
            label=data.study_subject_id,
            secondary_label=data.secondary_id or "",
            subject_id=subject.subject_id,
            study_id=data.study_id,
            status_id=Status.AVAILABLE,
            enrollment_date=data.enrollment_date or today(),
            date_created=today(),
            owner_id=owner_id,
            oc_oid=make_subject_oid(data.study_subject_id),
        )
        session.add(study_subject)
        await session.flush()
        return study_subject
