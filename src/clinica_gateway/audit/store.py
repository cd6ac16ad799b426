"""Direct-database access to audit_log_event and entity_signature."""

from datetime import datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinica_gateway.audit.models import (
    AuditEventType,
    AuditLogEventModel,
    AuditLogEventTypeModel,
    ElectronicSignatureModel,
)
from clinica_gateway.audit.schemas import AuditEventCreate, AuditQuery
from clinica_gateway.common.reference import Status, UserAccountModel
from clinica_gateway.subjects.models import StudySubjectModel

_ITEM_DATA_TYPES = (
    AuditEventType.ITEM_DATA_INSERTED,
    AuditEventType.ITEM_DATA_UPDATED,
    AuditEventType.ITEM_DATA_DELETED,
)


def _day_start(d) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _row(audit: AuditLogEventModel, user_name: str | None, type_name: str | None) -> dict[str, Any]:
    return {
        "audit_id": audit.audit_id,
        "audit_date": audit.audit_date.isoformat() if audit.audit_date else None,
        "audit_table": audit.audit_table,
        "entity_id": audit.entity_id,
        "entity_name": audit.entity_name,
        "user_id": audit.user_id,
        "user_name": user_name,
        "event_type_id": audit.audit_log_event_type_id,
        "event_type_name": type_name,
        "old_value": audit.old_value,
        "new_value": audit.new_value,
        "reason_for_change": audit.reason_for_change,
        "study_subject_id": audit.study_subject_id,
        "event_crf_id": audit.event_crf_id,
    }


class AuditStore:
    """Parameterized queries over the audit tables; callers own the session."""

    # ── Write ──

    async def insert_event(
        self, session: AsyncSession, record: AuditEventCreate,
    ) -> AuditLogEventModel:
        study_subject_id = record.study_subject_id
        event_crf_id = record.event_crf_id
        if study_subject_id is None and record.audit_table == "study_subject":
            study_subject_id = record.entity_id
        if event_crf_id is None and record.audit_table == "event_crf":
            event_crf_id = record.entity_id

        event = AuditLogEventModel(
            audit_log_event_type_id=record.event_type_id,
            user_id=record.user_id,
            audit_table=record.audit_table,
            entity_id=record.entity_id,
            entity_name=record.entity_name,
            old_value=record.old_value,
            new_value=record.new_value,
            reason_for_change=record.reason_for_change,
            study_subject_id=study_subject_id,
            event_crf_id=event_crf_id,
            study_event_id=record.study_event_id,
        )
        if record.audit_date is not None:
            event.audit_date = record.audit_date
        session.add(event)
        await session.flush()
        return event

    async def insert_signature(
        self, session: AsyncSession, **fields: Any,
    ) -> ElectronicSignatureModel:
        signature = ElectronicSignatureModel(**fields)
        session.add(signature)
        await session.flush()
        return signature

    # ── Read ──

    async def resolve_event_type(
        self, session: AsyncSession, patterns: tuple[str, ...], default: int,
    ) -> int:
        """First audit_log_event_type whose name matches a pattern, in order."""
        for pattern in patterns:
            result = await session.execute(
                select(AuditLogEventTypeModel.audit_log_event_type_id)
                .where(AuditLogEventTypeModel.name.ilike(pattern))
                .order_by(AuditLogEventTypeModel.audit_log_event_type_id)
                .limit(1)
            )
            found = result.scalar_one_or_none()
            if found is not None:
                return found
        return default

    def _joined(self):
        return (
            select(AuditLogEventModel, UserAccountModel.user_name, AuditLogEventTypeModel.name)
            .outerjoin(UserAccountModel, UserAccountModel.user_id == AuditLogEventModel.user_id)
            .outerjoin(
                AuditLogEventTypeModel,
                AuditLogEventTypeModel.audit_log_event_type_id
                == AuditLogEventModel.audit_log_event_type_id,
            )
        )

    def _filters(self, query: AuditQuery) -> list:
        conditions = []
        if query.study_id is not None:
            in_study = select(StudySubjectModel.study_subject_id).where(
                StudySubjectModel.study_id == query.study_id
            )
            conditions.append(or_(
                AuditLogEventModel.study_subject_id.in_(in_study),
                and_(AuditLogEventModel.audit_table == "study",
                     AuditLogEventModel.entity_id == query.study_id),
            ))
        if query.subject_id is not None:
            conditions.append(AuditLogEventModel.study_subject_id == query.subject_id)
        if query.event_crf_id is not None:
            conditions.append(AuditLogEventModel.event_crf_id == query.event_crf_id)
        if query.user_id is not None:
            conditions.append(AuditLogEventModel.user_id == query.user_id)
        if query.event_type_id is not None:
            conditions.append(AuditLogEventModel.audit_log_event_type_id == query.event_type_id)
        if query.audit_table:
            conditions.append(AuditLogEventModel.audit_table == query.audit_table)
        if query.start_date is not None:
            conditions.append(AuditLogEventModel.audit_date >= _day_start(query.start_date))
        if query.end_date is not None:
            conditions.append(
                AuditLogEventModel.audit_date < _day_start(query.end_date + timedelta(days=1))
            )
        return conditions

    async def query_events(
        self, session: AsyncSession, query: AuditQuery,
    ) -> tuple[list[dict[str, Any]], int]:
        """Filtered page of audit rows, newest first. Returns (rows, total)."""
        conditions = self._filters(query)
        count_result = await session.execute(
            select(func.count(AuditLogEventModel.audit_id)).where(*conditions)
        )
        total = count_result.scalar() or 0

        result = await session.execute(
            self._joined()
            .where(*conditions)
            .order_by(AuditLogEventModel.audit_date.desc(), AuditLogEventModel.audit_id.desc())
            .offset(query.offset)
            .limit(query.limit)
        )
        return [_row(a, u, t) for a, u, t in result.all()], total

    async def subject_trail(
        self, session: AsyncSession, study_subject_id: int,
    ) -> list[dict[str, Any]]:
        result = await session.execute(
            self._joined()
            .where(or_(
                AuditLogEventModel.study_subject_id == study_subject_id,
                and_(AuditLogEventModel.audit_table == "study_subject",
                     AuditLogEventModel.entity_id == study_subject_id),
            ))
            .order_by(AuditLogEventModel.audit_date.desc(), AuditLogEventModel.audit_id.desc())
        )
        return [_row(a, u, t) for a, u, t in result.all()]

    async def form_trail(
        self, session: AsyncSession, event_crf_id: int,
    ) -> list[dict[str, Any]]:
        result = await session.execute(
            self._joined()
            .where(or_(
                AuditLogEventModel.event_crf_id == event_crf_id,
                and_(AuditLogEventModel.audit_table == "event_crf",
                     AuditLogEventModel.entity_id == event_crf_id),
            ))
            .order_by(AuditLogEventModel.audit_date.desc(), AuditLogEventModel.audit_id.desc())
        )
        return [_row(a, u, t) for a, u, t in result.all()]

    async def count_events(self, session: AsyncSession, **filters: Any) -> int:
        query = select(func.count(AuditLogEventModel.audit_id))
        for column, value in filters.items():
            query = query.where(getattr(AuditLogEventModel, column) == value)
        result = await session.execute(query)
        return result.scalar() or 0

    async def event_types(self, session: AsyncSession) -> list[dict[str, Any]]:
        result = await session.execute(
            select(AuditLogEventTypeModel).order_by(AuditLogEventTypeModel.audit_log_event_type_id)
        )
        return [
            {"event_type_id": t.audit_log_event_type_id, "name": t.name}
            for t in result.scalars().all()
        ]

    async def signatures_for(
        self, session: AsyncSession, entity_type: str, entity_id: int,
    ) -> list[ElectronicSignatureModel]:
        result = await session.execute(
            select(ElectronicSignatureModel)
            .where(ElectronicSignatureModel.entity_type == entity_type,
                   ElectronicSignatureModel.entity_id == entity_id)
            .order_by(ElectronicSignatureModel.signed_at.desc())
        )
        return list(result.scalars().all())

    async def active_user(
        self, session: AsyncSession, username: str,
    ) -> UserAccountModel | None:
        result = await session.execute(
            select(UserAccountModel).where(
                UserAccountModel.user_name == username,
                UserAccountModel.status_id == Status.AVAILABLE,
            )
        )
        return result.scalar_one_or_none()

    # ── Aggregates ──

    async def statistics(self, session: AsyncSession, since: datetime) -> dict[str, Any]:
        window = AuditLogEventModel.audit_date >= since
        total = (await session.execute(
            select(func.count(AuditLogEventModel.audit_id)).where(window)
        )).scalar() or 0
        users = (await session.execute(
            select(func.count(func.distinct(AuditLogEventModel.user_id))).where(window)
        )).scalar() or 0

        by_type = await session.execute(
            select(AuditLogEventTypeModel.name, func.count(AuditLogEventModel.audit_id))
            .join(AuditLogEventTypeModel,
                  AuditLogEventTypeModel.audit_log_event_type_id
                  == AuditLogEventModel.audit_log_event_type_id)
            .where(window)
            .group_by(AuditLogEventTypeModel.name)
            .order_by(func.count(AuditLogEventModel.audit_id).desc())
        )
        day = func.date(AuditLogEventModel.audit_date)
        by_day = await session.execute(
            select(day, func.count(AuditLogEventModel.audit_id))
            .where(window).group_by(day).order_by(day)
        )
        top_users = await session.execute(
            select(UserAccountModel.user_name, func.count(AuditLogEventModel.audit_id))
            .join(UserAccountModel, UserAccountModel.user_id == AuditLogEventModel.user_id)
            .where(window)
            .group_by(UserAccountModel.user_name)
            .order_by(func.count(AuditLogEventModel.audit_id).desc())
            .limit(10)
        )
        return {
            "total_events": total,
            "unique_users": users,
            "events_by_type": [{"event_type": n, "count": c} for n, c in by_type.all()],
            "events_by_day": [{"date": str(d), "count": c} for d, c in by_day.all()],
            "top_users": [{"user_name": n, "count": c} for n, c in top_users.all()],
        }

    async def compliance(self, session: AsyncSession, query: AuditQuery) -> dict[str, Any]:
        conditions = self._filters(query)
        summary = (await session.execute(
            select(
                func.count(AuditLogEventModel.audit_id),
                func.count(func.distinct(AuditLogEventModel.user_id)),
                func.count(AuditLogEventModel.reason_for_change),
            ).where(*conditions)
        )).one()
        signatures = (await session.execute(
            select(func.count(AuditLogEventModel.audit_id)).where(
                *conditions,
                AuditLogEventModel.audit_log_event_type_id == AuditEventType.ESIGNATURE_ADDED,
            )
        )).scalar() or 0
        data_changes = (await session.execute(
            select(func.count(AuditLogEventModel.audit_id)).where(
                *conditions,
                AuditLogEventModel.audit_log_event_type_id.in_([int(t) for t in _ITEM_DATA_TYPES]),
            )
        )).scalar() or 0

        by_type = await session.execute(
            select(AuditLogEventModel.audit_log_event_type_id, AuditLogEventTypeModel.name,
                   func.count(AuditLogEventModel.audit_id))
            .outerjoin(AuditLogEventTypeModel,
                       AuditLogEventTypeModel.audit_log_event_type_id
                       == AuditLogEventModel.audit_log_event_type_id)
            .where(*conditions)
            .group_by(AuditLogEventModel.audit_log_event_type_id, AuditLogEventTypeModel.name)
            .order_by(AuditLogEventModel.audit_log_event_type_id)
        )
        activity = await session.execute(
            select(AuditLogEventModel.user_id, UserAccountModel.user_name,
                   func.count(AuditLogEventModel.audit_id),
                   func.max(AuditLogEventModel.audit_date))
            .outerjoin(UserAccountModel, UserAccountModel.user_id == AuditLogEventModel.user_id)
            .where(*conditions)
            .group_by(AuditLogEventModel.user_id, UserAccountModel.user_name)
            .order_by(func.count(AuditLogEventModel.audit_id).desc())
        )
        total, unique_users, with_reason = summary
        return {
            "summary": {
                "total_events": total,
                "unique_users": unique_users,
                "events_with_reason": with_reason,
                "electronic_signatures": signatures,
                "data_changes": data_changes,
            },
            "events_by_type": [
                {"event_type_id": i, "event_type": n, "count": c} for i, n, c in by_type.all()
            ],
            "user_activity": [
                {"user_id": u, "user_name": n, "event_count": c,
                 "last_activity": last.isoformat() if hasattr(last, "isoformat") else last}
                for u, n, c, last in activity.all()
            ],
        }
