"""Lookup tables shared across resource families, and their seed rows.

On a LibreClinica deployment these rows already exist; ``seed_reference_data``
fills an empty development or test database with the same vocabulary.
"""

import enum
from datetime import date

from sqlalchemy import Boolean, Date, Integer, String, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from clinica_gateway.common.models import Base, today


class Status(enum.IntEnum):
    AVAILABLE = 1
    UNAVAILABLE = 2
    PRIVATE = 3
    PENDING = 4
    REMOVED = 5
    LOCKED = 6
    AUTO_REMOVED = 7


class StatusModel(Base):
    __tablename__ = "status"

    status_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)


class UserTypeModel(Base):
    __tablename__ = "user_type"

    user_type_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_type: Mapped[str] = mapped_column(String(50), nullable=False)


class UserAccountModel(Base):
    __tablename__ = "user_account"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    passwd: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(120), nullable=True)
    active_study: Mapped[int | None] = mapped_column(Integer, nullable=True)
    institutional_affiliation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    user_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)


_STATUSES = {
    Status.AVAILABLE: "available",
    Status.UNAVAILABLE: "unavailable",
    Status.PRIVATE: "private",
    Status.PENDING: "pending",
    Status.REMOVED: "removed",
    Status.LOCKED: "locked",
    Status.AUTO_REMOVED: "auto-removed",
}

_USER_TYPES = {1: "admin", 2: "user", 3: "tech-admin", 4: "sysadmin"}


async def seed_reference_data(session: AsyncSession) -> int:
    """Insert any missing lookup rows. Returns the number of rows added."""
    from clinica_gateway.audit.models import AUDIT_EVENT_TYPE_NAMES, AuditLogEventTypeModel
    from clinica_gateway.forms.models import COMPLETION_STATUSES, CompletionStatusModel
    from clinica_gateway.subjects.models import SUBJECT_EVENT_STATUSES, SubjectEventStatusModel

    groups = [
        (StatusModel, "status_id", "name", _STATUSES),
        (UserTypeModel, "user_type_id", "user_type", _USER_TYPES),
        (AuditLogEventTypeModel, "audit_log_event_type_id", "name", AUDIT_EVENT_TYPE_NAMES),
        (CompletionStatusModel, "completion_status_id", "name", COMPLETION_STATUSES),
        (SubjectEventStatusModel, "subject_event_status_id", "name", SUBJECT_EVENT_STATUSES),
    ]
    added = 0
    for model, key, label, rows in groups:
        result = await session.execute(select(getattr(model, key)))
        existing = set(result.scalars().all())
        for row_id, name in rows.items():
            if int(row_id) in existing:
                continue
            session.add(model(**{key: int(row_id), label: name}))
            added += 1
    await session.flush()
    return added
