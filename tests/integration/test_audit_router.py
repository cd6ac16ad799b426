"""Integration tests for the audit and electronic signature endpoints."""

from datetime import datetime, timezone

import pytest

ROOT_PASSWORD = "root-password"


def audit_body(**overrides):
    body = {
        "audit_table": "study_subject",
        "entity_id": 5,
        "entity_name": "Subject",
        "user_id": 1,
        "username": "root",
        "event_type_id": 2,
        "old_value": "SUBJ-1",
        "new_value": "SUBJ-01",
        "reason_for_change": "Label typo",
    }
    body.update(overrides)
    return body


class TestAuditEvents:
    async def test_record_event(self, client, headers):
        resp = await client.post("/audit/events", json=audit_body(), headers=headers)
        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["data"]["auditId"] >= 1

    async def test_requires_api_key(self, client):
        resp = await client.post("/audit/events", json=audit_body(),
                                 headers={"X-Clinica-Api-Key": "wrong"})
        assert resp.status_code == 403

    async def test_rejects_incomplete_event(self, client, headers):
        body = audit_body()
        del body["entity_name"]
        resp = await client.post("/audit/events", json=body, headers=headers)
        assert resp.status_code == 422

    async def test_logs_filtered_and_paginated(self, client, headers):
        for i in range(3):
            await client.post("/audit/events", json=audit_body(entity_id=i + 1), headers=headers)
        await client.post("/audit/events", json=audit_body(user_id=2, username="monitor"),
                          headers=headers)

        resp = await client.get("/audit/logs?userId=1&limit=2", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["totalPages"] == 2
        assert body["data"][0]["user_name"] == "root"

    async def test_logs_require_acting_user(self, client):
        resp = await client.get("/audit/logs", headers={"X-Clinica-Api-Key": "test-gateway-api-key"})
        assert resp.status_code == 422

    async def test_subject_trail(self, client, headers):
        await client.post("/audit/events", json=audit_body(entity_id=7), headers=headers)
        resp = await client.get("/audit/subjects/1/7", headers=headers)
        assert resp.status_code == 200
        assert [r["entity_id"] for r in resp.json()["data"]] == [7]

    async def test_form_trail(self, client, headers):
        await client.post("/audit/events", json=audit_body(audit_table="item_data", entity_id=3,
                                                           event_crf_id=11), headers=headers)
        resp = await client.get("/audit/forms/11", headers=headers)
        assert len(resp.json()["data"]) == 1

    async def test_event_types(self, client, headers):
        resp = await client.get("/audit/event-types", headers=headers)
        names = [t["name"] for t in resp.json()["data"]]
        assert "Subject created" in names
        assert "Electronic signature added" in names

    async def test_stats(self, client, headers):
        await client.post("/audit/events", json=audit_body(), headers=headers)
        resp = await client.get("/audit/stats?days=7", headers=headers)
        data = resp.json()["data"]
        assert data["total_events"] == 1
        assert data["period_days"] == 7


class TestAuditExport:
    async def test_csv(self, client, headers):
        await client.post("/audit/events", json=audit_body(), headers=headers)
        resp = await client.get("/audit/export?format=csv", headers=headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("audit_id,audit_date,audit_table")
        assert len(lines) == 2

    async def test_json(self, client, headers):
        await client.post("/audit/events", json=audit_body(), headers=headers)
        resp = await client.get("/audit/export?format=json", headers=headers)
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json()["total"] == 1

    async def test_limit_and_filters(self, client, headers):
        for entity_id in (1, 2, 3):
            await client.post("/audit/events", json=audit_body(entity_id=entity_id), headers=headers)
        resp = await client.get("/audit/export?format=json&limit=2", headers=headers)
        doc = resp.json()
        assert doc["total"] == 3
        assert len(doc["records"]) == 2

        resp = await client.get("/audit/export?format=json&userId=999", headers=headers)
        assert resp.json()["records"] == []

    async def test_limit_bounds(self, client, headers):
        resp = await client.get("/audit/export?limit=100001", headers=headers)
        assert resp.status_code == 422

    async def test_unknown_format(self, client, headers):
        resp = await client.get("/audit/export?format=xml", headers=headers)
        assert resp.status_code == 422


class TestCompliance:
    async def test_report(self, client, headers):
        await client.post("/audit/events", json=audit_body(), headers=headers)
        today = datetime.now(timezone.utc).date().isoformat()
        resp = await client.get(f"/audit/compliance?startDate={today}&endDate={today}",
                                headers=headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["summary"]["total_events"] == 1
        assert data["summary"]["events_with_reason"] == 1
        assert data["mode"] == "database_only"

    async def test_reversed_period(self, client, headers):
        resp = await client.get("/audit/compliance?startDate=2026-02-01&endDate=2026-01-01",
                                headers=headers)
        assert resp.status_code == 422


class TestSignatures:
    def _body(self, password=ROOT_PASSWORD, entity_type="subject"):
        return {
            "entity_type": entity_type,
            "entity_id": 5,
            "signature": {"username": "root", "password": password, "meaning": "Approval"},
        }

    async def test_database_signature(self, client, headers):
        resp = await client.post("/audit/signatures", json=self._body(), headers=headers)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["source"] == "database"

        listed = await client.get("/audit/signatures/subject/5", headers=headers)
        rows = listed.json()["data"]
        assert len(rows) == 1
        assert rows[0]["meaning"] == "Approval"
        assert rows[0]["intact"] is True

    async def test_signer_not_rechecked_by_default(self, client, headers):
        body = {
            "entity_type": "subject",
            "entity_id": 42,
            "signature": {"username": "alice", "password": "x", "meaning": "Approval"},
        }
        resp = await client.post("/audit/signatures", json=body,
                                 headers={**headers, "X-Clinica-User-Id": "7",
                                          "X-Clinica-Username": "bob"})
        assert resp.status_code == 201
        assert resp.json()["data"]["signatureId"] == 42

        listed = await client.get("/audit/signatures/subject/42", headers=headers)
        assert [r["signer_username"] for r in listed.json()["data"]] == ["alice"]

    @pytest.mark.parametrize("entity_type", ["site", "item"])
    async def test_unknown_entity_type(self, client, headers, entity_type):
        resp = await client.post("/audit/signatures", json=self._body(entity_type=entity_type),
                                 headers=headers)
        assert resp.status_code == 422
