"""Pydantic schemas for study requests."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase used by API clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CrfAssignment(_CamelModel):
    crf_id: int
    required: bool = True
    double_entry: bool = False
    hide_crf: bool = False
    source_data_verification_code: int = 3
    ordinal: Optional[int] = None


class EventDefinitionCreate(_CamelModel):
    name: str = Field(..., min_length=1, max_length=2000)
    description: Optional[str] = None
    repeating: bool = False
    type: str = "scheduled"
    category: Optional[str] = None
    ordinal: Optional[int] = None
    crf_assignments: list[CrfAssignment] = []


class StudyCreate(_CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    unique_identifier: str = Field(..., min_length=1, max_length=30)
    summary: Optional[str] = None
    description: Optional[str] = None
    secondary_identifier: Optional[str] = None
    principal_investigator: Optional[str] = None
    sponsor: Optional[str] = None
    collaborators: Optional[str] = None
    phase: Optional[str] = None
    protocol_type: str = "interventional"
    protocol_description: Optional[str] = None
    expected_total_enrollment: Optional[int] = Field(default=None, ge=0)
    date_planned_start: Optional[date] = None
    date_planned_end: Optional[date] = None
    facility_name: Optional[str] = None
    facility_city: Optional[str] = None
    facility_country: Optional[str] = None
    event_definitions: list[EventDefinitionCreate] = []


class StudyUpdate(_CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    unique_identifier: Optional[str] = Field(default=None, min_length=1, max_length=30)
    summary: Optional[str] = None
    description: Optional[str] = None
    secondary_identifier: Optional[str] = None
    principal_investigator: Optional[str] = None
    sponsor: Optional[str] = None
    collaborators: Optional[str] = None
    phase: Optional[str] = None
    protocol_type: Optional[str] = None
    protocol_description: Optional[str] = None
    expected_total_enrollment: Optional[int] = Field(default=None, ge=0)
    date_planned_start: Optional[date] = None
    date_planned_end: Optional[date] = None
    facility_name: Optional[str] = None
    facility_city: Optional[str] = None
    facility_country: Optional[str] = None
    status_id: Optional[int] = None


class StudyFilters(BaseModel):
    status: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
