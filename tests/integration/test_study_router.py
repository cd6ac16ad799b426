"""Integration tests for the study endpoints."""


class TestStudyEndpoints:
    async def _create(self, client, headers, identifier="DEMO-1", **extra):
        body = {"name": "Demo", "uniqueIdentifier": identifier, **extra}
        return await client.post("/studies", json=body, headers=headers)

    async def test_create(self, client, headers):
        resp = await self._create(client, headers, eventDefinitions=[{"name": "Baseline"}])
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Study created successfully"
        assert body["data"]["oc_oid"] == "S_DEMO_1"
        assert len(body["data"]["event_definition_ids"]) == 1

    async def test_create_duplicate(self, client, headers):
        await self._create(client, headers)
        resp = await self._create(client, headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Study with this identifier already exists"

    async def test_create_validation(self, client, headers):
        resp = await client.post("/studies", json={"name": "No identifier"}, headers=headers)
        assert resp.status_code == 422

    async def test_list_from_database(self, client, headers):
        await self._create(client, headers, "A-1")
        await self._create(client, headers, "B-1")
        resp = await client.get("/studies?limit=1", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 1
        assert body["data"][0]["source"] == "DATABASE"
        assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}

    async def test_list_for_plain_user(self, client, headers):
        await self._create(client, headers)
        monitor = {**headers, "X-Clinica-User-Id": "2", "X-Clinica-Username": "monitor"}
        resp = await client.get("/studies", headers=monitor)
        assert resp.json()["data"] == []

    async def test_get_with_parameters(self, client, headers):
        created = (await self._create(client, headers)).json()["data"]
        resp = await client.get(f"/studies/{created['study_id']}", headers=headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["unique_identifier"] == "DEMO-1"
        assert len(data["parameters"]) == 18

    async def test_get_missing(self, client, headers):
        resp = await client.get("/studies/999", headers=headers)
        assert resp.status_code == 404

    async def test_update(self, client, headers):
        created = (await self._create(client, headers)).json()["data"]
        resp = await client.put(f"/studies/{created['study_id']}",
                                json={"name": "Renamed", "phase": "III"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["updated"] == ["name", "phase"]

    async def test_update_empty(self, client, headers):
        created = (await self._create(client, headers)).json()["data"]
        resp = await client.put(f"/studies/{created['study_id']}", json={}, headers=headers)
        assert resp.status_code == 400

    async def test_delete(self, client, headers):
        created = (await self._create(client, headers)).json()["data"]
        resp = await client.delete(f"/studies/{created['study_id']}", headers=headers)
        assert resp.status_code == 200
        detail = (await client.get(f"/studies/{created['study_id']}", headers=headers)).json()
        assert detail["data"]["status"] == "removed"

    async def test_delete_with_subjects(self, client, headers):
        created = (await self._create(client, headers)).json()["data"]
        await client.post("/subjects", json={
            "studyId": created["study_id"], "studySubjectId": "SUBJ-1",
        }, headers=headers)
        resp = await client.delete(f"/studies/{created['study_id']}", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Cannot delete study with enrolled subjects")

    async def test_metadata(self, client, headers):
        created = (await self._create(
            client, headers, eventDefinitions=[{"name": "Baseline"}, {"name": "Week 4"}],
        )).json()["data"]
        resp = await client.get(f"/studies/{created['study_id']}/metadata", headers=headers)
        data = resp.json()["data"]
        assert data["source"] == "DATABASE"
        assert [e["name"] for e in data["events"]] == ["Baseline", "Week 4"]

    async def test_sites(self, client, headers, api_seed):
        created = (await self._create(client, headers)).json()["data"]
        await api_seed.study("DEMO-1-S1", "Site One", parent_study_id=created["study_id"])
        resp = await client.get(f"/studies/{created['study_id']}/sites", headers=headers)
        assert [s["name"] for s in resp.json()["data"]] == ["Site One"]
