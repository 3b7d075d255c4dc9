"""Tests for the FHIR R4 resource routes."""

import pytest

from app.routes.fhir import router


class TestCreateResource:
    """Tests for POST /fhir/R4/{resourceType}."""

    @pytest.mark.asyncio
    async def test_create_returns_201_with_document(self, client, auth_headers, patient_alice):
        response = await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)

        assert response.status_code == 201
        assert response.json() == patient_alice

    @pytest.mark.asyncio
    async def test_create_generates_id(self, client, auth_headers):
        response = await client.post(
            "/fhir/R4/Patient",
            json={"resourceType": "Patient", "name": "Alice"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert response.json()["id"]

    @pytest.mark.asyncio
    async def test_create_type_mismatch_is_400(self, client, auth_headers):
        response = await client.post(
            "/fhir/R4/Observation",
            json={"resourceType": "Patient"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "resourceType mismatch or missing"

    @pytest.mark.asyncio
    async def test_create_missing_type_is_400(self, client, auth_headers):
        response = await client.post("/fhir/R4/Patient", json={"id": "x"}, headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_create_invalid_json_is_400(self, client, auth_headers):
        response = await client.post(
            "/fhir/R4/Patient",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert "not valid JSON" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_create_non_object_is_400(self, client, auth_headers):
        response = await client.post("/fhir/R4/Patient", json=["Patient"], headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Request body must be a JSON object"

    @pytest.mark.asyncio
    async def test_create_duplicate_id_is_500(self, client, auth_headers, patient_alice):
        first = await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)
        second = await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)

        assert first.status_code == 201
        assert second.status_code == 500

    @pytest.mark.asyncio
    async def test_create_succeeds_when_indexing_fails(self, client, auth_headers, fake_index, patient_alice):
        fake_index.fail_index = True

        response = await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)

        assert response.status_code == 201
        assert response.json() == patient_alice


class TestReadResource:
    """Tests for GET /fhir/R4/{resourceType}/{id}."""

    @pytest.mark.asyncio
    async def test_read_returns_stored_content(self, client, auth_headers, pipeline, observation):
        created = await client.post("/fhir/R4/Observation", json=observation, headers=auth_headers)
        await pipeline.wait_idle()
        resource_id = created.json()["id"]

        response = await client.get(f"/fhir/R4/Observation/{resource_id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {**observation, "id": resource_id}

    @pytest.mark.asyncio
    async def test_read_unknown_is_404(self, client, auth_headers):
        response = await client.get("/fhir/R4/Patient/nonexistent", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"] == "Resource not found"

    @pytest.mark.asyncio
    async def test_read_wrong_type_is_404(self, client, auth_headers, pipeline, patient_alice):
        await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)
        await pipeline.wait_idle()

        response = await client.get("/fhir/R4/Observation/alice", headers=auth_headers)

        assert response.status_code == 404


class TestSearchResources:
    """Tests for GET /fhir/R4/{resourceType}?k=v."""

    @pytest.fixture
    async def seeded(self, client, auth_headers, pipeline, patient_alice, patient_bob):
        await client.post("/fhir/R4/Patient", json=patient_alice, headers=auth_headers)
        await client.post("/fhir/R4/Patient", json=patient_bob, headers=auth_headers)
        await pipeline.wait_idle()

    @pytest.mark.asyncio
    async def test_search_all(self, client, auth_headers, seeded):
        response = await client.get("/fhir/R4/Patient", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["resourceType"] == "Bundle"
        assert body["type"] == "searchset"
        assert body["total"] == 2
        assert {e["id"] for e in body["entry"]} == {"alice", "bob"}

    @pytest.mark.asyncio
    async def test_search_filter(self, client, auth_headers, seeded):
        response = await client.get("/fhir/R4/Patient?name=Alice", headers=auth_headers)

        body = response.json()
        assert body["total"] == 1
        assert body["entry"][0]["name"] == "Alice"

    @pytest.mark.asyncio
    async def test_search_unmatched_second_key(self, client, auth_headers, seeded):
        response = await client.get(
            "/fhir/R4/Patient", params={"name": "Alice", "city": "Nowhere"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["total"] == 0
        assert response.json()["entry"] == []

    @pytest.mark.asyncio
    async def test_repeated_key_first_value_wins(self, client, auth_headers, seeded, fake_index):
        response = await client.get(
            "/fhir/R4/Patient?name=Alice&name=Bob", headers=auth_headers
        )

        assert [e["id"] for e in response.json()["entry"]] == ["alice"]
        assert fake_index.queries[-1][1] == {"bool": {"filter": [{"term": {"name": "Alice"}}]}}

    @pytest.mark.asyncio
    async def test_search_backend_failure_is_500(self, client, auth_headers, fake_index):
        fake_index.fail_query = True

        response = await client.get("/fhir/R4/Patient", headers=auth_headers)

        assert response.status_code == 500


class TestAuthGate:
    """All FHIR routes sit behind the bearer gate."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/fhir/R4/Patient"),
            ("GET", "/fhir/R4/Patient/abc"),
            ("GET", "/fhir/R4/Patient"),
        ],
    )
    async def test_requires_auth(self, client, method, path):
        response = await client.request(method, path, json={"resourceType": "Patient"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Authorization header required"

    @pytest.mark.asyncio
    async def test_rejected_create_is_not_stored(self, client, auth_headers, patient_alice):
        await client.post("/fhir/R4/Patient", json=patient_alice)

        response = await client.get("/fhir/R4/Patient/alice", headers=auth_headers)

        assert response.status_code == 404


class TestFhirRouterStructure:
    """Tests for FHIR router structure."""

    def test_router_has_correct_prefix(self):
        assert router.prefix == "/fhir/R4"

    def test_router_has_correct_tags(self):
        assert "fhir" in router.tags

    def test_router_endpoints(self):
        routes = {(r.path, tuple(sorted(r.methods))) for r in router.routes}
        assert ("/fhir/R4/{resource_type}", ("POST",)) in routes
        assert ("/fhir/R4/{resource_type}", ("GET",)) in routes
        assert ("/fhir/R4/{resource_type}/{resource_id}", ("GET",)) in routes
