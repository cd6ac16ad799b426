"""SQLAlchemy models for the Part 11 audit trail and electronic signatures."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinica_gateway.common.models import Base, utcnow


class AuditEventType(enum.IntEnum):
    SUBJECT_CREATED = 1
    SUBJECT_UPDATED = 2
    SUBJECT_STATUS_CHANGED = 3
    SUBJECT_REASSIGNED = 4
    SUBJECT_REMOVED = 5
    STUDY_EVENT_SCHEDULED = 6
    STUDY_EVENT_STARTED = 7
    STUDY_EVENT_COMPLETED = 8
    STUDY_EVENT_SKIPPED = 9
    STUDY_EVENT_STOPPED = 10
    CRF_INITIAL_DATA_ENTRY = 11
    CRF_UPDATED = 12
    CRF_MARKED_COMPLETE = 13
    CRF_SDV_VERIFIED = 14
    CRF_LOCKED = 15
    CRF_SIGNED = 16
    ITEM_DATA_INSERTED = 17
    ITEM_DATA_UPDATED = 18
    ITEM_DATA_DELETED = 19
    QUERY_OPENED = 20
    QUERY_UPDATED = 21
    QUERY_RESOLVED = 22
    QUERY_CLOSED = 23
    ESIGNATURE_ADDED = 30
    ESIGNATURE_REMOVED = 31
    USER_LOGIN = 40
    USER_LOGOUT = 41
    LOGIN_FAILED = 42
    PASSWORD_CHANGED = 43
    ACCOUNT_LOCKED = 44
    STUDY_CREATED = 50
    STUDY_UPDATED = 51
    STUDY_REMOVED = 52
    CRF_REMOVED = 53


AUDIT_EVENT_TYPE_NAMES = {
    t: t.name.replace("ESIGNATURE", "electronic signature").replace("_", " ").capitalize()
    for t in AuditEventType
}


class AuditLogEventTypeModel(Base):
    __tablename__ = "audit_log_event_type"

    audit_log_event_type_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class AuditLogEventModel(Base):
    """One row per regulated mutation; rows are never updated or deleted."""

    __tablename__ = "audit_log_event"

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audit_log_event_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("audit_log_event_type.audit_log_event_type_id"), index=True
    )
    audit_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("user_account.user_id"), nullable=True)
    audit_table: Mapped[str] = mapped_column(String(500), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    entity_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reason_for_change: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    old_value: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    new_value: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    study_subject_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_crf_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    study_event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ElectronicSignatureModel(Base):
    """Gateway-owned signature ledger, immutable after insert."""

    __tablename__ = "entity_signature"

    signature_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    signer_username: Mapped[str] = mapped_column(String(64), nullable=False)
    meaning: Mapped[str] = mapped_column(String(255), nullable=False)
    reason_for_change: Mapped[str | None] = mapped_column(Text, nullable=True)
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    recorded_by: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(10), nullable=False)
    manifest_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    manifest_hmac: Mapped[str] = mapped_column(String(64), nullable=False)
