"""Pydantic schemas for subject enrolment requests."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubjectCreate(BaseModel):
    """Enrol one subject; ``study_subject_id`` is the study-visible label."""

    model_config = ConfigDict(populate_by_name=True)

    study_id: int = Field(..., ge=1, alias="studyId")
    study_subject_id: str = Field(..., min_length=1, max_length=30, alias="studySubjectId")
    secondary_id: Optional[str] = Field(default=None, max_length=30, alias="secondaryId")
    enrollment_date: Optional[date] = Field(default=None, alias="enrollmentDate")
    gender: Optional[str] = None
    date_of_birth: Optional[date] = Field(default=None, alias="dateOfBirth")

    @field_validator("gender")
    @classmethod
    def _normalize_gender(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        value = v.strip().lower()
        if value in ("m", "male"):
            return "m"
        if value in ("f", "female"):
            return "f"
        return ""


class SubjectFilters(BaseModel):
    status: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
