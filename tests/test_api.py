"""
Tests for the HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from api import app, get_orchestrator
from tests.conftest import END_TO_END_TEXT


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_and_identify(client, document_id="doc-api"):
    response = client.post("/documents", json={
        "document_id": document_id,
        "filename": "brief.docx",
        "content": [{"id": "p1", "text": END_TO_END_TEXT}],
    })
    assert response.status_code == 200
    response = client.post(f"/documents/{document_id}/identify", params={"method": "custom"})
    assert response.status_code == 200
    return response.json()


class TestDocuments:
    """Test document and identification endpoints."""

    def test_health(self, client):
        assert client.get("/").json() == {"status": "citecheck online"}

    def test_identify(self, client):
        body = create_and_identify(client)

        assert body["total_citations"] == 2
        assert [c["id"] for c in body["document"]["citations"]] == ["cit_001", "cit_002"]

    def test_context(self, client):
        create_and_identify(client)
        response = client.get("/documents/doc-api/citations/cit_002/context")

        assert response.status_code == 200
        assert "28 U.S.C. § 1332(a)" in response.json()["context"]

    def test_missing_document(self, client):
        assert client.get("/documents/nope").status_code == 404
        assert client.post("/documents/nope/identify").status_code == 404

    def test_missing_paragraph(self, client):
        create_and_identify(client)
        response = client.post("/documents/doc-api/paragraphs/p9/identify")
        assert response.status_code == 404

    def test_empty_content_rejected(self, client):
        response = client.post("/documents", json={"content": []})
        assert response.status_code == 422


class TestJobs:
    """Test validation, worker and status endpoints."""

    def test_validate_process_status(self, client):
        create_and_identify(client)

        started = client.post("/documents/doc-api/validate").json()
        assert started["status"] == "pending"
        assert started["tier2_total"] == 2

        batch = client.post("/worker/process-queue", params={"max_items": 5}).json()
        assert batch["processed"] == 2
        assert batch["has_more"] is False

        status = client.get(f"/jobs/{started['job_id']}").json()
        assert status["status"] == "completed"
        assert status["tier2"]["percentage"] == 100.0

    def test_active_job_conflict(self, client):
        create_and_identify(client)
        first = client.post("/documents/doc-api/validate").json()

        response = client.post("/documents/doc-api/validate")

        assert response.status_code == 409
        assert response.json()["detail"]["job_id"] == first["job_id"]

    def test_revalidate(self, client):
        create_and_identify(client)
        client.post("/documents/doc-api/validate")
        client.post("/worker/process-queue")

        response = client.post("/documents/doc-api/citations/cit_001/revalidate", params={"force_tier3": True})

        assert response.status_code == 200
        assert response.json()["tier2_total"] == 1

    def test_revalidate_unknown_citation(self, client):
        create_and_identify(client)
        response = client.post("/documents/doc-api/citations/cit_404/revalidate")
        assert response.status_code == 404

    def test_unknown_job(self, client):
        assert client.get("/jobs/missing").status_code == 404

    def test_run_full_pipeline(self, client):
        client.post("/documents", json={
            "document_id": "doc-api",
            "content": [{"id": "p1", "text": END_TO_END_TEXT}],
        })

        response = client.post("/documents/doc-api/run-full-pipeline", params={"method": "custom"})

        assert response.status_code == 200
        run = response.json()
        assert run["identified"] is True
        assert run["total_citations"] == 2
        assert run["status"] == "pending"

        client.post("/worker/process-queue")
        status = client.get(f"/jobs/{run['job_id']}").json()
        assert status["status"] == "completed"
        assert status["usage"]["total_tokens"] == 0

    def test_run_full_pipeline_conflict(self, client):
        create_and_identify(client)
        first = client.post("/documents/doc-api/validate").json()

        response = client.post("/documents/doc-api/run-full-pipeline")

        assert response.status_code == 409
        assert response.json()["detail"]["job_id"] == first["job_id"]

    def test_run_full_pipeline_unknown_document(self, client):
        assert client.post("/documents/nope/run-full-pipeline").status_code == 404
