"""SQLAlchemy mappings for event CRFs and item data."""

import enum
from datetime import date

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clinica_gateway.common.models import Base, today
from clinica_gateway.common.reference import Status


class CompletionStatus(enum.IntEnum):
    NOT_STARTED = 1
    INITIAL_DATA_ENTRY = 2
    DATA_ENTRY_COMPLETE = 3
    DOUBLE_DATA_ENTRY = 4


COMPLETION_STATUSES = {
    CompletionStatus.NOT_STARTED: "not_started",
    CompletionStatus.INITIAL_DATA_ENTRY: "initial_data_entry",
    CompletionStatus.DATA_ENTRY_COMPLETE: "data_entry_complete",
    CompletionStatus.DOUBLE_DATA_ENTRY: "double_data_entry",
}

# Forms counted as complete in progress figures
COMPLETED_FORM_STATUSES = (CompletionStatus.DATA_ENTRY_COMPLETE, CompletionStatus.DOUBLE_DATA_ENTRY)


class CompletionStatusModel(Base):
    __tablename__ = "completion_status"

    completion_status_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class EventCrfModel(Base):
    __tablename__ = "event_crf"

    event_crf_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_event.study_event_id"), index=True
    )
    crf_version_id: Mapped[int] = mapped_column(Integer, ForeignKey("crf_version.crf_version_id"))
    study_subject_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_subject.study_subject_id"), index=True
    )
    date_interviewed: Mapped[date | None] = mapped_column(Date, nullable=True)
    interviewer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completion_status_id: Mapped[int] = mapped_column(
        Integer, default=CompletionStatus.NOT_STARTED
    )
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    date_updated: Mapped[date | None] = mapped_column(Date, nullable=True)
    update_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_completed: Mapped[date | None] = mapped_column(Date, nullable=True)
    sdv_status: Mapped[bool] = mapped_column(Boolean, default=False)


class ItemModel(Base):
    __tablename__ = "item"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    units: Mapped[str | None] = mapped_column(String(64), nullable=True)
    item_data_type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    oc_oid: Mapped[str] = mapped_column(String(40), nullable=False, index=True)


class ItemDataModel(Base):
    __tablename__ = "item_data"

    item_data_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, ForeignKey("item.item_id"))
    event_crf_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("event_crf.event_crf_id"), index=True
    )
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    value: Mapped[str] = mapped_column(String(4000), default="")
    ordinal: Mapped[int] = mapped_column(Integer, default=1)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    update_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    date_updated: Mapped[date | None] = mapped_column(Date, nullable=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)


class ItemFormMetadataModel(Base):
    __tablename__ = "item_form_metadata"

    item_form_metadata_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, ForeignKey("item.item_id"), index=True)
    crf_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("crf_version.crf_version_id"), index=True
    )
    ordinal: Mapped[int] = mapped_column(Integer, default=1)
    left_item_text: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, default=False)
    show_item: Mapped[bool] = mapped_column(Boolean, default=True)
