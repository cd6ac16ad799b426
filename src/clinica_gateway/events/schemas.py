"""Pydantic schemas for event scheduling requests."""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventSchedule(BaseModel):
    """Schedule one occurrence of an event definition for a subject.

    Unscheduled visits start as "not scheduled" until data entry begins.
    """

    model_config = ConfigDict(populate_by_name=True)

    study_subject_id: int = Field(..., ge=1, alias="studySubjectId")
    study_event_definition_id: int = Field(..., ge=1, alias="studyEventDefinitionId")
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    location: Optional[str] = Field(default=None, max_length=2000)
    is_unscheduled: bool = Field(default=False, alias="isUnscheduled")

    @model_validator(mode="after")
    def _ordered(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("endDate must not be before startDate")
        return self
