"""Pydantic schemas for audit trail and electronic signature requests."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class AuditEventCreate(BaseModel):
    """One regulated mutation. Old/new value and reason are optional."""

    audit_table: str = Field(..., min_length=1, max_length=500)
    entity_id: int
    entity_name: str = Field(..., min_length=1)
    user_id: int
    username: str = Field(..., min_length=1)
    event_type_id: int
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    reason_for_change: Optional[str] = None
    audit_date: Optional[datetime] = None
    study_subject_id: Optional[int] = None
    event_crf_id: Optional[int] = None
    study_event_id: Optional[int] = None


class AuditQuery(BaseModel):
    study_id: Optional[int] = None
    subject_id: Optional[int] = None
    event_crf_id: Optional[int] = None
    user_id: Optional[int] = None
    event_type_id: Optional[int] = None
    audit_table: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=500)

    @property
    def has_date_range(self) -> bool:
        return self.start_date is not None or self.end_date is not None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class SignatureCredentials(BaseModel):
    """Signer identity and meaning: Data Entry, Review, Approval, or a
    free-form authorization phrase."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    meaning: str = Field(..., min_length=1, max_length=255)
    reason_for_change: Optional[str] = None


class SignatureCreate(BaseModel):
    entity_type: Literal["study", "subject", "event", "crf"]
    entity_id: int = Field(..., ge=1)
    signature: SignatureCredentials


class ExportQuery(AuditQuery):
    format: Literal["csv", "json"] = "csv"
    limit: int = Field(default=10000, ge=1, le=100000)


class ComplianceQuery(BaseModel):
    study_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _ordered(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self
