"""Tests for event scheduling and event reads."""

from datetime import date
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from clinica_gateway.audit.models import AuditEventType
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.common.models import today
from clinica_gateway.common.reference import Status
from clinica_gateway.events.schemas import EventSchedule
from clinica_gateway.events.service import HybridEventService
from clinica_gateway.events.store import EventStore
from clinica_gateway.forms.models import CompletionStatus, EventCrfModel
from clinica_gateway.hybrid.policy import DualPathPolicy
from clinica_gateway.soap.client import SoapResult
from clinica_gateway.subjects.models import StudyEventModel, SubjectEventStatus


def make_settings(**overrides) -> GatewaySettings:
    defaults = {"hmac_key": "test-hmac-key-for-unit-tests", "db_url": "sqlite+aiosqlite://"}
    defaults.update(overrides)
    return GatewaySettings(**defaults)


@pytest.fixture
def soap():
    mock = AsyncMock()
    mock.schedule_event.return_value = SoapResult(False, message="down")
    return mock


@pytest.fixture
def svc(db, soap):
    return HybridEventService(make_settings(), db, soap, DualPathPolicy(True))


@pytest.fixture
async def trial(seed):
    """A study with one enrolled subject and a Baseline visit carrying one form."""
    study_id = await seed.study("S-001")
    subject_id = await seed.subject(study_id, "SUBJ-1")
    definition_id = await seed.event_definition(study_id, "Baseline")
    await seed.crf("Vitals", study_id, definition_id)
    return {"study_id": study_id, "subject_id": subject_id, "definition_id": definition_id}


def schedule(trial, **overrides) -> dict:
    body = {"studySubjectId": trial["subject_id"], "studyEventDefinitionId": trial["definition_id"]}
    body.update(overrides)
    return body


async def events_for(db, subject_id: int) -> list[StudyEventModel]:
    async with db.get_session() as session:
        result = await session.execute(
            select(StudyEventModel).where(StudyEventModel.study_subject_id == subject_id)
        )
        return list(result.scalars().all())


async def forms_for(db, study_event_id: int) -> list[EventCrfModel]:
    async with db.get_session() as session:
        result = await session.execute(
            select(EventCrfModel).where(EventCrfModel.study_event_id == study_event_id)
        )
        return list(result.scalars().all())


class TestSchema:
    def test_camel_case_aliases(self):
        req = EventSchedule.model_validate(
            {"studySubjectId": 1, "studyEventDefinitionId": 2, "startDate": "2026-03-01"}
        )
        assert req.study_event_definition_id == 2
        assert req.start_date == date(2026, 3, 1)
        assert req.is_unscheduled is False

    def test_end_before_start(self):
        with pytest.raises(ValueError):
            EventSchedule(study_subject_id=1, study_event_definition_id=1,
                          start_date=date(2026, 3, 2), end_date=date(2026, 3, 1))


class TestScheduleSubjectEvent:
    async def test_missing_subject(self, svc, soap, trial):
        resp = await svc.schedule_subject_event(schedule(trial, studySubjectId=999), 1, "root")
        assert resp.message == "Subject not found"
        soap.schedule_event.assert_not_awaited()

    async def test_missing_definition(self, svc, soap, trial):
        resp = await svc.schedule_subject_event(
            schedule(trial, studyEventDefinitionId=999), 1, "root",
        )
        assert resp.message == "Event definition not found"
        soap.schedule_event.assert_not_awaited()

    async def test_soap_path(self, svc, soap, db, trial):
        soap.schedule_event.return_value = SoapResult(
            True, {"subjectKey": "SS_SUBJ-1", "studyEventOid": "SE_BASELINE", "repeatKey": 1},
        )
        resp = await svc.schedule_subject_event(schedule(trial, location="Ward 3"), 1, "root")
        assert resp.success
        assert resp.data["source"] == "SOAP"
        assert resp.data["studyEventId"] is None
        args = soap.schedule_event.await_args
        assert args.args[:3] == ("S_S_001", "SS_SUBJ-1", "SE_BASELINE")
        assert args.kwargs["location"] == "Ward 3"
        assert await events_for(db, trial["subject_id"]) == []

    @pytest.mark.parametrize("failure", [
        {"return_value": SoapResult(False, message="down")},
        {"side_effect": ConnectionError("connection refused")},
    ])
    async def test_fallback_inserts_event_forms_and_audit(self, svc, soap, db, trial, failure):
        soap.schedule_event.configure_mock(**failure)
        resp = await svc.schedule_subject_event(
            schedule(trial, startDate="2026-03-01", location="Ward 3"), 5, "bob",
        )
        assert resp.success
        assert resp.message == "Event scheduled successfully"
        assert resp.data["source"] == "DATABASE"
        assert resp.data["startDate"] == "2026-03-01"
        assert resp.data["formCount"] == 1

        [event] = await events_for(db, trial["subject_id"])
        assert event.study_event_id == resp.data["studyEventId"]
        assert event.subject_event_status_id == SubjectEventStatus.SCHEDULED
        assert event.location == "Ward 3"
        assert event.owner_id == 5
        [form] = await forms_for(db, event.study_event_id)
        assert form.completion_status_id == CompletionStatus.NOT_STARTED

        async with db.get_session() as session:
            assert await AuditStore().count_events(
                session, audit_table="study_event", entity_id=event.study_event_id,
                audit_log_event_type_id=AuditEventType.STUDY_EVENT_SCHEDULED,
                study_subject_id=trial["subject_id"], user_id=5,
            ) == 1

    async def test_soap_disabled_goes_straight_to_database(self, db, soap, trial):
        svc = HybridEventService(make_settings(soap_enabled=False), db, soap, DualPathPolicy(False))
        resp = await svc.schedule_subject_event(schedule(trial), 1, "root")
        assert resp.data["source"] == "DATABASE"
        assert resp.data["startDate"] == today().isoformat()
        soap.schedule_event.assert_not_awaited()

    async def test_unscheduled_visit_status(self, svc, db, trial):
        await svc.schedule_subject_event(schedule(trial, isUnscheduled=True), 1, "root")
        [event] = await events_for(db, trial["subject_id"])
        assert event.subject_event_status_id == SubjectEventStatus.NOT_SCHEDULED

    async def test_repeating_event_ordinals(self, svc, soap, db, seed, trial):
        definition_id = await seed.event_definition(trial["study_id"], "Follow-up", 2, repeating=True)
        body = schedule(trial, studyEventDefinitionId=definition_id)
        first = await svc.schedule_subject_event(body, 1, "root")
        second = await svc.schedule_subject_event(body, 1, "root")
        assert [first.data["sampleOrdinal"], second.data["sampleOrdinal"]] == [1, 2]
        assert first.data["formCount"] == 0
        assert soap.schedule_event.await_args.kwargs["repeat_key"] == 2

    async def test_database_error_reported(self, db, soap, trial):
        store = EventStore()
        store.insert_event = AsyncMock(side_effect=SQLAlchemyError("disk full"))
        svc = HybridEventService(make_settings(), db, soap, DualPathPolicy(True), store=store)
        resp = await svc.schedule_subject_event(schedule(trial), 1, "root")
        assert not resp.success
        assert resp.message.startswith("Failed to schedule event")


class TestEventReads:
    async def test_study_events_with_counts(self, svc, seed, trial):
        await seed.event_definition(trial["study_id"], "Week 4", 2)
        await seed.event_definition(trial["study_id"], "Retired", 3, status_id=Status.REMOVED)
        await seed.study_event(trial["subject_id"], trial["definition_id"])

        resp = await svc.get_study_events(trial["study_id"])
        assert [d["name"] for d in resp.data] == ["Baseline", "Week 4"]
        assert resp.data[0]["usage_count"] == 1
        assert resp.data[0]["crf_count"] == 1
        assert resp.data[1]["usage_count"] == 0

    async def test_study_events_unknown_study(self, svc):
        assert (await svc.get_study_events(404)).message == "Study not found"

    async def test_definition_detail(self, svc, trial):
        resp = await svc.get_study_event_by_id(trial["definition_id"])
        assert resp.data["name"] == "Baseline"
        assert resp.data["study_name"] == "Study One"
        assert resp.data["oc_oid"] == "SE_BASELINE"
        assert (await svc.get_study_event_by_id(404)).message == "Event definition not found"

    async def test_subject_events_with_form_progress(self, svc, seed, trial):
        _, version_id = await seed.crf("Labs")
        event_id = await seed.study_event(trial["subject_id"], trial["definition_id"])
        await seed.event_crf(event_id, trial["subject_id"], version_id,
                             completion=CompletionStatus.DATA_ENTRY_COMPLETE)
        await seed.event_crf(event_id, trial["subject_id"], version_id)

        resp = await svc.get_subject_events(trial["subject_id"])
        [event] = resp.data
        assert event["event_name"] == "Baseline"
        assert event["crf_count"] == 2
        assert event["completed_crf_count"] == 1
        assert event["status_name"] == "scheduled"

    async def test_subject_events_unknown_subject(self, svc):
        assert (await svc.get_subject_events(404)).message == "Subject not found"
