"""SQLAlchemy mappings for subjects, enrolments and scheduled events."""

import enum
from datetime import date

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clinica_gateway.common.models import Base, today
from clinica_gateway.common.reference import Status


class SubjectEventStatus(enum.IntEnum):
    SCHEDULED = 1
    NOT_SCHEDULED = 2
    DATA_ENTRY_STARTED = 3
    COMPLETED = 4
    STOPPED = 5
    SKIPPED = 6
    LOCKED = 7
    SIGNED = 8


SUBJECT_EVENT_STATUSES = {
    SubjectEventStatus.SCHEDULED: "scheduled",
    SubjectEventStatus.NOT_SCHEDULED: "not_scheduled",
    SubjectEventStatus.DATA_ENTRY_STARTED: "data_entry_started",
    SubjectEventStatus.COMPLETED: "completed",
    SubjectEventStatus.STOPPED: "stopped",
    SubjectEventStatus.SKIPPED: "skipped",
    SubjectEventStatus.LOCKED: "locked",
    SubjectEventStatus.SIGNED: "signed",
}

COMPLETED_EVENT_STATUSES = (SubjectEventStatus.COMPLETED, SubjectEventStatus.STOPPED)


class SubjectEventStatusModel(Base):
    __tablename__ = "subject_event_status"

    subject_event_status_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class SubjectModel(Base):
    __tablename__ = "subject"

    subject_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(1), nullable=True)
    unique_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    dob_collected: Mapped[bool] = mapped_column(Boolean, default=False)


class StudySubjectModel(Base):
    __tablename__ = "study_subject"

    study_subject_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    secondary_label: Mapped[str | None] = mapped_column(String(30), nullable=True)
    subject_id: Mapped[int] = mapped_column(Integer, ForeignKey("subject.subject_id"))
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("study.study_id"), index=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    enrollment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    date_updated: Mapped[date | None] = mapped_column(Date, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    update_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oc_oid: Mapped[str | None] = mapped_column(String(40), nullable=True)


class StudyEventModel(Base):
    __tablename__ = "study_event"

    study_event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_event_definition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_event_definition.study_event_definition_id")
    )
    study_subject_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_subject.study_subject_id"), index=True
    )
    location: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    sample_ordinal: Mapped[int] = mapped_column(Integer, default=1)
    date_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    subject_event_status_id: Mapped[int] = mapped_column(
        Integer, default=SubjectEventStatus.SCHEDULED
    )
