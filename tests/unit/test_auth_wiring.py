"""Tests for auth wiring: resource endpoints require the API key and an acting user."""

import pytest
from httpx import ASGITransport, AsyncClient

from clinica_gateway.common.exceptions import NotFoundError, SoapFaultError


class TestEndpointsRequireAuth:
    async def test_list_studies_no_auth(self, client):
        resp = await client.get("/studies")
        assert resp.status_code == 422  # missing required header

    async def test_create_subject_wrong_auth(self, client):
        resp = await client.post(
            "/subjects",
            json={"studyId": 1, "studySubjectId": "X"},
            headers={
                "X-Clinica-Api-Key": "wrong-key",
                "X-Clinica-User-Id": "1",
                "X-Clinica-Username": "root",
            },
        )
        assert resp.status_code == 403

    async def test_form_status_no_auth(self, client):
        resp = await client.get("/forms/status/1")
        assert resp.status_code == 422

    async def test_audit_logs_wrong_auth(self, client):
        resp = await client.get("/audit/logs", headers={
            "X-Clinica-Api-Key": "wrong",
            "X-Clinica-User-Id": "1",
            "X-Clinica-Username": "root",
        })
        assert resp.status_code == 403

    async def test_schedule_event_wrong_auth(self, client):
        resp = await client.post(
            "/events/schedule",
            json={"studySubjectId": 1, "studyEventDefinitionId": 1},
            headers={
                "X-Clinica-Api-Key": "wrong-key",
                "X-Clinica-User-Id": "1",
                "X-Clinica-Username": "root",
            },
        )
        assert resp.status_code == 403

    async def test_writes_need_acting_user(self, client):
        resp = await client.post(
            "/studies",
            json={"name": "Demo", "uniqueIdentifier": "DEMO"},
            headers={"X-Clinica-Api-Key": "test-gateway-api-key"},
        )
        assert resp.status_code == 422


class TestPublicEndpointsWork:
    async def test_health_no_auth(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200

    async def test_service_status_no_auth(self, client):
        resp = await client.get("/service-status")
        assert resp.status_code == 200


class TestGatewayErrorHandler:
    @pytest.mark.parametrize("exc, status, code", [
        (NotFoundError("Study not found"), 404, "NOT_FOUND"),
        (SoapFaultError("Unknown study", fault_code="soap:Client"), 502, "SOAP_FAULT"),
    ])
    async def test_maps_error_codes(self, app, exc, status, code):
        @app.get("/boom")
        async def boom():
            raise exc

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/boom")
        assert resp.status_code == status
        body = resp.json()
        assert body["code"] == code
        assert body["detail"] == exc.message
        assert body["error"] == type(exc).__name__


class TestLibraryExports:
    def test_import_service_status(self):
        from clinica_gateway import service_status
        assert service_status(True).mode == "soap_primary"

    def test_import_policy(self):
        from clinica_gateway import DualPathPolicy
        assert DualPathPolicy(False).status().soap_enabled is False

    def test_import_api_response(self):
        from clinica_gateway import ApiResponse
        assert ApiResponse.fail("nope").success is False
