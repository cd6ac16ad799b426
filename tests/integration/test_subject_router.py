"""Integration tests for the subject endpoints."""

import pytest

from clinica_gateway.subjects.models import SubjectEventStatus


@pytest.fixture
async def study_id(api_seed):
    return await api_seed.study("S-001")


class TestSubjectEndpoints:
    async def test_enrol(self, client, headers, study_id):
        resp = await client.post("/subjects", json={
            "studyId": study_id, "studySubjectId": "SUBJ-001", "gender": "Male",
            "enrollmentDate": "2026-03-01",
        }, headers=headers)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["source"] == "DATABASE"
        assert data["label"] == "SUBJ-001"
        assert data["enrollmentDate"] == "2026-03-01"

    async def test_enrol_duplicate(self, client, headers, study_id):
        body = {"studyId": study_id, "studySubjectId": "SUBJ-001"}
        await client.post("/subjects", json=body, headers=headers)
        resp = await client.post("/subjects", json=body, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Subject with this ID already exists"

    async def test_enrol_unknown_study(self, client, headers):
        resp = await client.post("/subjects", json={"studyId": 99, "studySubjectId": "X"},
                                 headers=headers)
        assert resp.status_code == 404

    async def test_list(self, client, headers, study_id):
        for label in ("A-1", "A-2"):
            await client.post("/subjects", json={"studyId": study_id, "studySubjectId": label},
                              headers=headers)
        resp = await client.get(f"/subjects?studyId={study_id}", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert {s["label"] for s in body["data"]} == {"A-1", "A-2"}
        assert body["data"][0]["created_by"] == "root"
        assert body["pagination"]["total"] == 2

    async def test_list_requires_study(self, client, headers):
        resp = await client.get("/subjects", headers=headers)
        assert resp.status_code == 422

    async def test_detail_and_progress(self, client, headers, api_seed, study_id):
        created = (await client.post("/subjects", json={
            "studyId": study_id, "studySubjectId": "SUBJ-1",
        }, headers=headers)).json()["data"]
        ss = created["studySubjectId"]
        definition = await api_seed.event_definition(study_id)
        await api_seed.study_event(ss, definition, SubjectEventStatus.COMPLETED)

        detail = await client.get(f"/subjects/{ss}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["data"]["events"][0]["status"] == "completed"

        progress = await client.get(f"/subjects/{ss}/progress", headers=headers)
        assert progress.json()["data"]["event_completion_percentage"] == 100

    async def test_missing(self, client, headers):
        assert (await client.get("/subjects/404", headers=headers)).status_code == 404
        assert (await client.get("/subjects/404/progress", headers=headers)).status_code == 404
