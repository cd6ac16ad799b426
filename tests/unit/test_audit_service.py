"""Tests for audit recording, electronic signatures and audit reads."""

import csv
import io
import json
from datetime import date
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from clinica_gateway.audit.models import AuditEventType, ElectronicSignatureModel
from clinica_gateway.audit.schemas import (
    AuditEventCreate,
    AuditQuery,
    ExportQuery,
    SignatureCredentials,
)
from clinica_gateway.audit.service import EXPORT_COLUMNS, HybridAuditService
from clinica_gateway.audit.store import AuditStore
from clinica_gateway.common.config import GatewaySettings
from clinica_gateway.hybrid.policy import DualPathPolicy
from clinica_gateway.soap.client import SoapResult

HMAC_KEY = "test-hmac-key-for-unit-tests"
# Matches the accounts seeded by conftest
ROOT_PASSWORD = "root-password"
MONITOR_PASSWORD = "monitor-password"


def make_settings(**overrides) -> GatewaySettings:
    defaults = {"hmac_key": HMAC_KEY, "db_url": "sqlite+aiosqlite://", "soap_enabled": True}
    defaults.update(overrides)
    return GatewaySettings(**defaults)


@pytest.fixture
def soap():
    mock = AsyncMock()
    mock.record_audit_event.return_value = SoapResult(True, data={"auditId": 900})
    mock.record_electronic_signature.return_value = SoapResult(True, data={"signatureId": 4})
    mock.get_subject_audit_trail.return_value = SoapResult(False, message="down")
    mock.get_form_audit_trail.return_value = SoapResult(False, message="down")
    return mock


@pytest.fixture
def svc(db, soap):
    return HybridAuditService(make_settings(), db, soap, DualPathPolicy(True))


def event(**overrides) -> AuditEventCreate:
    fields = {
        "audit_table": "study_subject",
        "entity_id": 5,
        "entity_name": "Subject",
        "user_id": 1,
        "username": "root",
        "event_type_id": AuditEventType.SUBJECT_UPDATED,
        "old_value": "a",
        "new_value": "b",
    }
    fields.update(overrides)
    return AuditEventCreate(**fields)


async def count(db, **filters) -> int:
    async with db.get_session() as session:
        return await AuditStore().count_events(session, **filters)


async def signature_rows(db, entity_type: str, entity_id: int):
    async with db.get_session() as session:
        return await AuditStore().signatures_for(session, entity_type, entity_id)


class TestRecordAuditEvent:
    async def test_persisted_and_mirrored(self, svc, soap, db):
        resp = await svc.record_audit_event(event(reason_for_change="typo"))
        assert resp.success
        assert resp.data["auditId"] > 0
        assert await count(db, audit_table="study_subject", entity_id=5) == 1
        soap.record_audit_event.assert_awaited_once()
        args = soap.record_audit_event.await_args.args
        assert args[:3] == ("study_subject", 5, AuditEventType.SUBJECT_UPDATED)
        assert args[-1] == "typo"
        assert soap.record_audit_event.await_args.kwargs == {"entity_name": "Subject"}

    async def test_subject_link_derived_from_table(self, svc, db):
        await svc.record_audit_event(event())
        assert await count(db, study_subject_id=5) == 1

    async def test_mirror_failure_does_not_fail_write(self, svc, soap, db):
        soap.record_audit_event.side_effect = ConnectionError("refused")
        resp = await svc.record_audit_event(event())
        assert resp.success
        assert await count(db, entity_id=5) == 1

    async def test_unsuccessful_mirror_not_retried(self, svc, soap, db):
        soap.record_audit_event.return_value = SoapResult(False, message="fault")
        await svc.record_audit_event(event())
        assert soap.record_audit_event.await_count == 1
        assert await count(db, entity_id=5) == 1

    async def test_soap_disabled_skips_mirror(self, db, soap):
        svc = HybridAuditService(make_settings(soap_enabled=False), db, soap, DualPathPolicy(False))
        resp = await svc.record_audit_event(event())
        assert resp.success
        soap.record_audit_event.assert_not_awaited()

    async def test_database_error_propagates_without_mirror(self, db, soap):
        store = AuditStore()
        store.insert_event = AsyncMock(side_effect=SQLAlchemyError("disk full"))
        svc = HybridAuditService(make_settings(), db, soap, DualPathPolicy(True), store=store)
        with pytest.raises(SQLAlchemyError):
            await svc.record_audit_event(event())
        soap.record_audit_event.assert_not_awaited()


def verifying_service(db, soap) -> HybridAuditService:
    return HybridAuditService(
        make_settings(verify_signer_credentials=True), db, soap, DualPathPolicy(True),
    )


SOAP_OUTCOMES = {
    "soap_success": {"return_value": SoapResult(True, {"signatureId": 4})},
    "soap_rejected": {"return_value": SoapResult(False, message="down")},
    "soap_raises": {"side_effect": ConnectionError("connection refused")},
}


class TestElectronicSignature:
    async def test_soap_path_records_once(self, svc, soap, db):
        creds = SignatureCredentials(username="monitor", password="whatever", meaning="Review")
        resp = await svc.record_electronic_signature("crf", 9, creds, 1, "root")
        assert resp.success
        assert resp.data["source"] == "soap"
        assert resp.data["signatureId"] == 4
        assert len(await signature_rows(db, "crf", 9)) == 1
        assert await count(db, audit_log_event_type_id=AuditEventType.ESIGNATURE_ADDED) == 1
        assert await count(db, event_crf_id=9) == 1

    @pytest.mark.parametrize("outcome", list(SOAP_OUTCOMES))
    async def test_every_soap_outcome_leaves_one_signature(self, svc, soap, db, outcome):
        soap.record_electronic_signature.configure_mock(**SOAP_OUTCOMES[outcome])
        creds = SignatureCredentials(username="alice", password="x", meaning="Approval")
        resp = await svc.record_electronic_signature("subject", 42, creds, 7, "bob")
        assert resp.success
        assert resp.data["signatureId"] != 0
        rows = await signature_rows(db, "subject", 42)
        assert len(rows) == 1
        assert rows[0].signer_username == "alice"
        assert await count(db, audit_log_event_type_id=AuditEventType.ESIGNATURE_ADDED) == 1

    async def test_fallback_accepts_signer_unknown_to_database(self, svc, soap, db):
        soap.record_electronic_signature.return_value = SoapResult(False, message="down")
        creds = SignatureCredentials(username="alice", password="x", meaning="Approval")
        resp = await svc.record_electronic_signature("subject", 42, creds, 7, "bob")
        assert resp.success
        assert resp.data["signatureId"] == 42
        assert resp.data["source"] == "database"
        assert resp.message == "Electronic signature recorded (database)"
        assert len(await signature_rows(db, "subject", 42)) == 1
        assert await count(db, audit_table="study_subject", entity_id=42, user_id=7) == 1

    async def test_fallback_with_bcrypt_password(self, db, soap):
        soap.record_electronic_signature.side_effect = TimeoutError()
        svc = verifying_service(db, soap)
        creds = SignatureCredentials(username="root", password=ROOT_PASSWORD, meaning="Approval")
        resp = await svc.record_electronic_signature("subject", 5, creds, 1, "root")
        assert resp.success
        assert resp.data["source"] == "database"
        rows = await signature_rows(db, "subject", 5)
        assert len(rows) == 1
        assert rows[0].source == "database"
        assert await count(db, audit_table="study_subject", entity_id=5) == 1

    async def test_fallback_with_legacy_md5_password(self, db, soap):
        soap.record_electronic_signature.return_value = SoapResult(False, message="down")
        svc = verifying_service(db, soap)
        creds = SignatureCredentials(username="monitor", password=MONITOR_PASSWORD, meaning="Data Entry")
        resp = await svc.record_electronic_signature("event", 3, creds, 2, "monitor")
        assert resp.success

    async def test_verification_rejects_bad_password(self, db, soap):
        soap.record_electronic_signature.return_value = SoapResult(False, message="down")
        svc = verifying_service(db, soap)
        creds = SignatureCredentials(username="root", password="wrong", meaning="Approval")
        resp = await svc.record_electronic_signature("study", 1, creds, 1, "root")
        assert not resp.success
        assert resp.message == "Invalid electronic signature credentials"
        assert await signature_rows(db, "study", 1) == []
        assert await count(db, audit_log_event_type_id=AuditEventType.ESIGNATURE_ADDED) == 0

    async def test_verification_rejects_unknown_signer(self, db, soap):
        soap.record_electronic_signature.return_value = SoapResult(False, message="down")
        svc = verifying_service(db, soap)
        creds = SignatureCredentials(username="ghost", password="x", meaning="Approval")
        resp = await svc.record_electronic_signature("study", 1, creds, 1, "root")
        assert not resp.success
        assert await signature_rows(db, "study", 1) == []

    async def test_verification_skipped_on_soap_path(self, db, soap):
        svc = verifying_service(db, soap)
        creds = SignatureCredentials(username="ghost", password="x", meaning="Approval")
        resp = await svc.record_electronic_signature("study", 1, creds, 1, "root")
        assert resp.success
        assert resp.data["source"] == "soap"

    async def test_unsupported_entity_type(self, svc, soap):
        creds = SignatureCredentials(username="root", password=ROOT_PASSWORD, meaning="Review")
        resp = await svc.record_electronic_signature("site", 1, creds, 1, "root")
        assert not resp.success
        soap.record_electronic_signature.assert_not_awaited()

    async def test_seal_verifies_until_tampered(self, svc, db):
        creds = SignatureCredentials(username="monitor", password="x", meaning="Review")
        await svc.record_electronic_signature("crf", 9, creds, 1, "root")

        resp = await svc.get_entity_signatures("crf", 9)
        assert resp.data[0]["intact"] is True
        assert resp.data[0]["signer_username"] == "monitor"

        async with db.get_session() as session:
            await session.execute(update(ElectronicSignatureModel).values(meaning="Approval"))

        resp = await svc.get_entity_signatures("crf", 9)
        assert resp.data[0]["intact"] is False


class TestAuditLogs:
    async def test_subject_filter_uses_soap_trail(self, svc, soap):
        soap.get_subject_audit_trail.return_value = SoapResult(True, data=[
            {"auditId": 1, "auditDate": "2026-01-05T10:00:00", "eventTypeId": 2},
            {"auditId": 2, "auditDate": "2026-01-06T10:00:00", "eventTypeId": 17},
        ])
        resp = await svc.get_audit_logs(AuditQuery(study_id=1, subject_id=5, event_type_id=17))
        assert [r["auditId"] for r in resp.data] == [2]
        assert resp.pagination.total == 1

    async def test_empty_soap_trail_falls_back(self, svc, soap, seed):
        study_id = await seed.study()
        subject_id = await seed.subject(study_id, "SUBJ-1")
        soap.get_subject_audit_trail.return_value = SoapResult(True, data=[])
        await svc.record_audit_event(event(entity_id=subject_id))
        await svc.record_audit_event(event(entity_id=subject_id + 100))
        resp = await svc.get_audit_logs(AuditQuery(study_id=study_id, subject_id=subject_id))
        assert len(resp.data) == 1
        assert resp.data[0]["user_name"] == "root"
        assert resp.data[0]["event_type_name"] == "Subject updated"

    async def test_empty_soap_trail_with_date_range_is_an_answer(self, svc, soap):
        soap.get_subject_audit_trail.return_value = SoapResult(True, data=[])
        await svc.record_audit_event(event())
        resp = await svc.get_audit_logs(
            AuditQuery(study_id=1, subject_id=5, start_date=date(2026, 1, 1)),
        )
        assert resp.success
        assert resp.data == []
        assert resp.pagination.total == 0

    async def test_user_filter_is_database_only(self, svc, soap):
        await svc.record_audit_event(event())
        await svc.record_audit_event(event(user_id=2, username="monitor"))
        resp = await svc.get_audit_logs(AuditQuery(user_id=2))
        assert len(resp.data) == 1
        assert resp.data[0]["user_name"] == "monitor"
        soap.get_subject_audit_trail.assert_not_awaited()
        soap.get_form_audit_trail.assert_not_awaited()

    async def test_pagination(self, svc):
        for i in range(5):
            await svc.record_audit_event(event(entity_id=i + 1))
        resp = await svc.get_audit_logs(AuditQuery(page=2, limit=2))
        assert len(resp.data) == 2
        assert resp.pagination.total == 5
        assert resp.pagination.total_pages == 3

    async def test_form_trail_fallback(self, svc):
        await svc.record_audit_event(event(audit_table="event_crf", entity_id=7, entity_name="Form"))
        await svc.record_audit_event(event(audit_table="item_data", entity_id=3, event_crf_id=7))
        resp = await svc.get_form_audit_trail(7, 1, "root")
        assert len(resp.data) == 2

    async def test_subject_trail_prefers_soap(self, svc, soap):
        soap.get_subject_audit_trail.return_value = SoapResult(True, data=[{"auditId": 41}])
        resp = await svc.get_subject_audit_trail(1, 5, 1, "root")
        assert resp.data == [{"auditId": 41}]


class TestReports:
    async def test_event_types(self, svc):
        resp = await svc.get_audit_event_types()
        names = {t["event_type_id"]: t["name"] for t in resp.data}
        assert names[AuditEventType.ESIGNATURE_ADDED] == "Electronic signature added"

    async def test_stats(self, svc):
        await svc.record_audit_event(event())
        await svc.record_audit_event(event(user_id=2, username="monitor"))
        resp = await svc.get_audit_stats(days=7)
        assert resp.data["total_events"] == 2
        assert resp.data["unique_users"] == 2
        assert resp.data["period_days"] == 7

    async def test_export_csv(self, svc):
        await svc.record_audit_event(event(new_value="hello, world"))
        resp = await svc.export_audit_logs(ExportQuery())
        assert resp.data["filename"].endswith(".csv")
        rows = list(csv.reader(io.StringIO(resp.data["content"])))
        assert tuple(rows[0]) == EXPORT_COLUMNS
        assert rows[1][EXPORT_COLUMNS.index("new_value")] == "hello, world"

    async def test_export_json(self, svc):
        await svc.record_audit_event(event())
        resp = await svc.export_audit_logs(ExportQuery(format="json"))
        doc = json.loads(resp.data["content"])
        assert doc["total"] == 1
        assert doc["records"][0]["entity_id"] == 5

    async def test_compliance_counts(self, svc):
        await svc.record_audit_event(event(reason_for_change="correction"))
        await svc.record_audit_event(event(event_type_id=AuditEventType.ITEM_DATA_UPDATED))
        creds = SignatureCredentials(username="monitor", password="x", meaning="Review")
        await svc.record_electronic_signature("subject", 5, creds, 1, "root")

        resp = await svc.get_compliance_report()
        summary = resp.data["summary"]
        assert summary["total_events"] == 3
        assert summary["events_with_reason"] == 1
        assert summary["electronic_signatures"] == 1
        assert summary["data_changes"] == 1
        assert resp.data["mode"] == "soap_primary"
        assert resp.data["period"]["start_date"] is None

    async def test_service_status(self, svc):
        assert svc.get_service_status().mode == "soap_primary"
