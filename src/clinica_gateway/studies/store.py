"""Direct-database access to studies, their statistics and configuration."""

import re
from typing import Any, Iterable

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status, StatusModel, UserAccountModel, UserTypeModel
from clinica_gateway.studies.models import (
    CrfModel,
    EventDefinitionCrfModel,
    StudyEventDefinitionModel,
    StudyModel,
    StudyParameterValueModel,
    StudyUserRoleModel,
)
from clinica_gateway.studies.schemas import EventDefinitionCreate, StudyCreate
from clinica_gateway.subjects.models import StudyEventModel, StudySubjectModel

# Seeded for every new study, matching LibreClinica's own defaults
DEFAULT_STUDY_PARAMETERS = (
    ("collectDob", "1"),
    ("genderRequired", "true"),
    ("subjectPersonIdRequired", "optional"),
    ("subjectIdGeneration", "manual"),
    ("subjectIdPrefixSuffix", ""),
    ("discrepancyManagement", "true"),
    ("interviewerNameRequired", "required"),
    ("interviewerNameDefault", "blank"),
    ("interviewerNameEditable", "true"),
    ("interviewDateRequired", "required"),
    ("interviewDateDefault", "eventDate"),
    ("interviewDateEditable", "true"),
    ("personIdShownOnCRF", "false"),
    ("secondaryLabelViewable", "false"),
    ("adminForcedReasonForChange", "true"),
    ("eventLocationRequired", "not_used"),
    ("participantPortal", "disabled"),
    ("randomization", "disabled"),
)

STAT_COLUMNS = ("enrolled_subjects", "active_subjects", "total_events", "total_forms", "total_sites")

_Child = StudyModel.__table__.alias("child_study")


def make_study_oid(identifier: str) -> str:
    return "S_" + re.sub(r"[^A-Za-z0-9]", "_", identifier).upper()[:38]


def make_event_oid(study_id: int, name: str) -> str:
    return f"SE_{study_id}_" + re.sub(r"[^A-Za-z0-9]", "_", name).upper()[:20]


def _stat_columns():
    sid = StudyModel.study_id
    return (
        select(func.count(StudySubjectModel.study_subject_id))
        .where(StudySubjectModel.study_id == sid)
        .scalar_subquery().label("enrolled_subjects"),
        select(func.count(StudySubjectModel.study_subject_id))
        .where(StudySubjectModel.study_id == sid,
               StudySubjectModel.status_id == Status.AVAILABLE)
        .scalar_subquery().label("active_subjects"),
        select(func.count(StudyEventModel.study_event_id))
        .select_from(StudyEventModel)
        .join(StudySubjectModel,
              StudySubjectModel.study_subject_id == StudyEventModel.study_subject_id)
        .where(StudySubjectModel.study_id == sid)
        .scalar_subquery().label("total_events"),
        select(func.count(distinct(EventDefinitionCrfModel.crf_id)))
        .where(EventDefinitionCrfModel.study_id == sid,
               EventDefinitionCrfModel.status_id != Status.REMOVED)
        .scalar_subquery().label("total_forms"),
        select(func.count(_Child.c.study_id))
        .where(_Child.c.parent_study_id == sid)
        .scalar_subquery().label("total_sites"),
    )


def _study_dict(study: StudyModel, status_name: str | None, stats: Iterable[int]) -> dict[str, Any]:
    row = {
        "study_id": study.study_id,
        "oc_oid": study.oc_oid,
        "unique_identifier": study.unique_identifier,
        "name": study.name,
        "summary": study.summary,
        "status": status_name,
        "status_id": study.status_id,
        "parent_study_id": study.parent_study_id,
        "protocol_type": study.protocol_type,
        "phase": study.phase,
        "principal_investigator": study.principal_investigator,
        "sponsor": study.sponsor,
        "expected_total_enrollment": study.expected_total_enrollment,
        "date_planned_start": study.date_planned_start.isoformat() if study.date_planned_start else None,
        "date_planned_end": study.date_planned_end.isoformat() if study.date_planned_end else None,
        "date_created": study.date_created.isoformat() if study.date_created else None,
        "owner_id": study.owner_id,
    }
    row.update(zip(STAT_COLUMNS, (int(s or 0) for s in stats)))
    return row


class StudyStore:
    """Parameterized study queries; callers own the session."""

    def __init__(self, admin_type_ids: Iterable[int] = (1, 4),
                 admin_type_names: Iterable[str] = ("admin", "sysadmin")):
        self.admin_type_ids = tuple(admin_type_ids)
        self.admin_type_names = tuple(n.lower() for n in admin_type_names)

    # ── Users ──

    async def is_admin(self, session: AsyncSession, user_id: int) -> bool:
        result = await session.execute(
            select(UserAccountModel.user_type_id, UserTypeModel.user_type)
            .outerjoin(UserTypeModel, UserTypeModel.user_type_id == UserAccountModel.user_type_id)
            .where(UserAccountModel.user_id == user_id)
        )
        row = result.first()
        if row is None:
            return False
        type_id, type_name = row
        return type_id in self.admin_type_ids or (type_name or "").lower() in self.admin_type_names

    async def user_name(self, session: AsyncSession, user_id: int) -> str | None:
        result = await session.execute(
            select(UserAccountModel.user_name).where(UserAccountModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    # ── Read ──

    async def list_studies(
        self,
        session: AsyncSession,
        user_id: int,
        admin: bool,
        status: str | None,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """Top-level studies visible to the user, newest first."""
        conditions = [StudyModel.parent_study_id.is_(None)]
        if not admin:
            own_name = select(UserAccountModel.user_name).where(
                UserAccountModel.user_id == user_id
            ).scalar_subquery()
            assigned = select(StudyUserRoleModel.study_id).where(
                StudyUserRoleModel.user_name == own_name,
                StudyUserRoleModel.status_id == Status.AVAILABLE,
            )
            conditions.append(or_(StudyModel.owner_id == user_id, StudyModel.study_id.in_(assigned)))
        if status:
            conditions.append(func.lower(StatusModel.name) == status.lower())

        base = (
            select(StudyModel)
            .outerjoin(StatusModel, StatusModel.status_id == StudyModel.status_id)
            .where(*conditions)
        )
        count_result = await session.execute(
            select(func.count()).select_from(base.subquery())
        )
        total = count_result.scalar() or 0

        result = await session.execute(
            select(StudyModel, StatusModel.name, *_stat_columns())
            .outerjoin(StatusModel, StatusModel.status_id == StudyModel.status_id)
            .where(*conditions)
            .order_by(StudyModel.date_created.desc(), StudyModel.study_id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_study_dict(s, n, stats) for s, n, *stats in result.all()], total

    async def stats_for_keys(
        self, session: AsyncSession, keys: Iterable[str],
    ) -> list[dict[str, Any]]:
        """One batched lookup of statistics by OID or unique identifier."""
        keys = sorted({k for k in keys if k})
        if not keys:
            return []
        result = await session.execute(
            select(StudyModel.study_id, StudyModel.oc_oid, StudyModel.unique_identifier,
                   *_stat_columns())
            .where(or_(StudyModel.oc_oid.in_(keys), StudyModel.unique_identifier.in_(keys)))
        )
        rows = []
        for study_id, oid, identifier, *stats in result.all():
            row = {"study_id": study_id, "oc_oid": oid, "unique_identifier": identifier}
            row.update(zip(STAT_COLUMNS, (int(s or 0) for s in stats)))
            rows.append(row)
        return rows

    async def get_study(self, session: AsyncSession, study_id: int) -> StudyModel | None:
        result = await session.execute(select(StudyModel).where(StudyModel.study_id == study_id))
        return result.scalar_one_or_none()

    async def get_study_detail(self, session: AsyncSession, study_id: int) -> dict[str, Any] | None:
        result = await session.execute(
            select(StudyModel, StatusModel.name, *_stat_columns())
            .outerjoin(StatusModel, StatusModel.status_id == StudyModel.status_id)
            .where(StudyModel.study_id == study_id)
        )
        row = result.first()
        if row is None:
            return None
        study, status_name, *stats = row
        detail = _study_dict(study, status_name, stats)
        params = await session.execute(
            select(StudyParameterValueModel.parameter, StudyParameterValueModel.value)
            .where(StudyParameterValueModel.study_id == study_id)
        )
        detail["parameters"] = dict(params.all())
        return detail

    async def get_sites(self, session: AsyncSession, study_id: int) -> list[dict[str, Any]]:
        result = await session.execute(
            select(StudyModel, StatusModel.name, *_stat_columns())
            .outerjoin(StatusModel, StatusModel.status_id == StudyModel.status_id)
            .where(StudyModel.parent_study_id == study_id)
            .order_by(StudyModel.name)
        )
        return [_study_dict(s, n, stats) for s, n, *stats in result.all()]

    async def event_definitions(self, session: AsyncSession, study_id: int) -> list[dict[str, Any]]:
        result = await session.execute(
            select(StudyEventDefinitionModel)
            .where(StudyEventDefinitionModel.study_id == study_id,
                   StudyEventDefinitionModel.status_id != Status.REMOVED)
            .order_by(StudyEventDefinitionModel.ordinal)
        )
        return [
            {
                "study_event_definition_id": e.study_event_definition_id,
                "study_id": e.study_id,
                "oc_oid": e.oc_oid,
                "name": e.name,
                "description": e.description,
                "repeating": e.repeating,
                "type": e.type,
                "category": e.category,
                "ordinal": e.ordinal,
            }
            for e in result.scalars().all()
        ]

    async def study_crfs(self, session: AsyncSession, study_id: int) -> list[dict[str, Any]]:
        result = await session.execute(
            select(CrfModel)
            .where(CrfModel.crf_id.in_(
                select(EventDefinitionCrfModel.crf_id).where(
                    EventDefinitionCrfModel.study_id == study_id,
                    EventDefinitionCrfModel.status_id != Status.REMOVED,
                )
            ))
            .order_by(CrfModel.name)
        )
        return [
            {
                "crf_id": c.crf_id,
                "study_id": study_id,
                "oc_oid": c.oc_oid,
                "name": c.name,
                "description": c.description,
                "status_id": c.status_id,
            }
            for c in result.scalars().all()
        ]

    async def identifier_taken(
        self, session: AsyncSession, identifier: str, exclude_study_id: int | None = None,
    ) -> bool:
        query = select(StudyModel.study_id).where(StudyModel.unique_identifier == identifier)
        if exclude_study_id is not None:
            query = query.where(StudyModel.study_id != exclude_study_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def has_subjects(self, session: AsyncSession, study_id: int) -> bool:
        result = await session.execute(
            select(StudySubjectModel.study_subject_id)
            .where(StudySubjectModel.study_id == study_id).limit(1)
        )
        return result.first() is not None

    # ── Write ──

    async def insert_study(
        self, session: AsyncSession, data: StudyCreate, owner_id: int,
    ) -> StudyModel:
        study = StudyModel(
            unique_identifier=data.unique_identifier,
            secondary_identifier=data.secondary_identifier,
            name=data.name,
            summary=data.summary if data.summary is not None else data.description,
            principal_investigator=data.principal_investigator,
            sponsor=data.sponsor,
            collaborators=data.collaborators,
            phase=data.phase,
            protocol_type=data.protocol_type or "interventional",
            protocol_description=data.protocol_description,
            expected_total_enrollment=data.expected_total_enrollment,
            date_planned_start=data.date_planned_start,
            date_planned_end=data.date_planned_end,
            facility_name=data.facility_name,
            facility_city=data.facility_city,
            facility_country=data.facility_country,
            owner_id=owner_id,
            status_id=Status.AVAILABLE,
            date_created=today(),
            oc_oid=make_study_oid(data.unique_identifier),
        )
        session.add(study)
        await session.flush()
        return study

    async def assign_role(
        self, session: AsyncSession, study_id: int, user_name: str, role: str, owner_id: int,
    ) -> None:
        session.add(StudyUserRoleModel(
            study_id=study_id, user_name=user_name, role_name=role,
            status_id=Status.AVAILABLE, owner_id=owner_id,
        ))
        await session.flush()

    async def insert_default_parameters(self, session: AsyncSession, study_id: int) -> int:
        session.add_all(
            StudyParameterValueModel(study_id=study_id, parameter=p, value=v)
            for p, v in DEFAULT_STUDY_PARAMETERS
        )
        await session.flush()
        return len(DEFAULT_STUDY_PARAMETERS)

    async def insert_event_definitions(
        self,
        session: AsyncSession,
        study_id: int,
        definitions: list[EventDefinitionCreate],
        owner_id: int,
    ) -> list[int]:
        ids = []
        for position, definition in enumerate(definitions, start=1):
            event = StudyEventDefinitionModel(
                study_id=study_id,
                name=definition.name,
                description=definition.description,
                repeating=definition.repeating,
                type=definition.type,
                category=definition.category,
                ordinal=definition.ordinal or position,
                owner_id=owner_id,
                status_id=Status.AVAILABLE,
                oc_oid=make_event_oid(study_id, definition.name),
            )
            session.add(event)
            await session.flush()
            for crf_position, crf in enumerate(definition.crf_assignments, start=1):
                session.add(EventDefinitionCrfModel(
                    study_event_definition_id=event.study_event_definition_id,
                    study_id=study_id,
                    crf_id=crf.crf_id,
                    required_crf=crf.required,
                    double_entry=crf.double_entry,
                    hide_crf=crf.hide_crf,
                    source_data_verification_code=crf.source_data_verification_code,
                    ordinal=crf.ordinal or crf_position,
                    owner_id=owner_id,
                    status_id=Status.AVAILABLE,
                ))
            ids.append(event.study_event_definition_id)
        await session.flush()
        return ids
