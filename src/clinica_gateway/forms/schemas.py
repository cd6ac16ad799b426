"""Pydantic schemas for form data entry."""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

UNGROUPED = "UNGROUPED"


class FormDataSave(BaseModel):
    """Item values for one form of one subject event.

    ``form_data`` is either flat (``{item: value}``) or grouped
    (``{item_group_oid: {item: value}}``); items are keyed by OID or name.
    """

    model_config = ConfigDict(populate_by_name=True)

    study_id: int = Field(..., ge=1, validation_alias=AliasChoices("study_id", "studyId"))
    study_subject_id: int = Field(
        ..., ge=1, validation_alias=AliasChoices("study_subject_id", "subjectId", "studySubjectId"),
    )
    study_event_definition_id: int = Field(
        ..., ge=1,
        validation_alias=AliasChoices("study_event_definition_id", "studyEventDefinitionId"),
    )
    crf_id: int = Field(..., ge=1, validation_alias=AliasChoices("crf_id", "crfId", "formId"))
    form_data: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("form_data", "formData", "data"),
    )

    @field_validator("form_data")
    @classmethod
    def _drop_blank_keys(cls, v: dict[str, Any]) -> dict[str, Any]:
        return {k: val for k, val in v.items() if k}

    def grouped(self) -> dict[str, dict[str, Any]]:
        groups: dict[str, dict[str, Any]] = {}
        for key, value in self.form_data.items():
            if isinstance(value, dict):
                groups.setdefault(key, {}).update(value)
            else:
                groups.setdefault(UNGROUPED, {})[key] = value
        return groups

    def flat(self) -> dict[str, Any]:
        items: dict[str, Any] = {}
        for values in self.grouped().values():
            items.update(values)
        return items
