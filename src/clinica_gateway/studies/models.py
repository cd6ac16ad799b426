"""SQLAlchemy mappings for the LibreClinica study tables the gateway touches."""

from datetime import date

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clinica_gateway.common.models import Base, today
from clinica_gateway.common.reference import Status


class StudyModel(Base):
    __tablename__ = "study"

    study_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_study_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("study.study_id"), nullable=True, index=True
    )
    unique_identifier: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    secondary_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_planned_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_planned_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    date_updated: Mapped[date | None] = mapped_column(Date, nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("user_account.user_id"), nullable=True)
    update_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("status.status_id"), default=Status.AVAILABLE
    )
    principal_investigator: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sponsor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    collaborators: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    facility_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    facility_city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    facility_country: Mapped[str | None] = mapped_column(String(64), nullable=True)
    protocol_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    protocol_description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    phase: Mapped[str | None] = mapped_column(String(30), nullable=True)
    expected_total_enrollment: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oc_oid: Mapped[str | None] = mapped_column(String(40), nullable=True, index=True)


class StudyUserRoleModel(Base):
    __tablename__ = "study_user_role"

    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("study.study_id"), primary_key=True)
    user_name: Mapped[str] = mapped_column(String(40), primary_key=True)
    role_name: Mapped[str] = mapped_column(String(40), nullable=False)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)


class StudyParameterValueModel(Base):
    __tablename__ = "study_parameter_value"

    study_parameter_value_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("study.study_id"), index=True)
    parameter: Mapped[str] = mapped_column(String(50), nullable=False)
    value: Mapped[str] = mapped_column(String(50), nullable=False, default="")


class StudyEventDefinitionModel(Base):
    __tablename__ = "study_event_definition"

    study_event_definition_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("study.study_id"), index=True)
    name: Mapped[str] = mapped_column(String(2000), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    repeating: Mapped[bool] = mapped_column(Boolean, default=False)
    type: Mapped[str] = mapped_column(String(20), default="scheduled")
    category: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    ordinal: Mapped[int] = mapped_column(Integer, default=1)
    oc_oid: Mapped[str | None] = mapped_column(String(40), nullable=True)


class CrfModel(Base):
    __tablename__ = "crf"

    crf_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    date_updated: Mapped[date | None] = mapped_column(Date, nullable=True)
    update_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oc_oid: Mapped[str | None] = mapped_column(String(40), nullable=True)
    source_study_id: Mapped[int | None] = mapped_column(Integer, nullable=True)


class CrfVersionModel(Base):
    __tablename__ = "crf_version"

    crf_version_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    crf_id: Mapped[int] = mapped_column(Integer, ForeignKey("crf.crf_id"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    date_created: Mapped[date] = mapped_column(Date, default=today)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oc_oid: Mapped[str | None] = mapped_column(String(40), nullable=True)


class EventDefinitionCrfModel(Base):
    __tablename__ = "event_definition_crf"

    event_definition_crf_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    study_event_definition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("study_event_definition.study_event_definition_id"), index=True
    )
    study_id: Mapped[int] = mapped_column(Integer, ForeignKey("study.study_id"))
    crf_id: Mapped[int] = mapped_column(Integer, ForeignKey("crf.crf_id"))
    required_crf: Mapped[bool] = mapped_column(Boolean, default=True)
    double_entry: Mapped[bool] = mapped_column(Boolean, default=False)
    hide_crf: Mapped[bool] = mapped_column(Boolean, default=False)
    source_data_verification_code: Mapped[int] = mapped_column(Integer, default=3)
    ordinal: Mapped[int] = mapped_column(Integer, default=1)
    status_id: Mapped[int] = mapped_column(Integer, default=Status.AVAILABLE)
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    date_created: Mapped[date] = mapped_column(Date, default=today)
