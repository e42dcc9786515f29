"""
Unit Tests — Document processing API
═════════════════════════════════════

Runs the FastAPI app over ASGITransport with the store, pipeline and
publisher replaced through dependency_overrides (see conftest.py).

Coverage targets:
  ✅ POST /process             → 202 + task id, message published once
  ✅ POST /process unknown id  → 404 DOCUMENT_NOT_FOUND
  ✅ POST /process processing  → 409 ALREADY_PROCESSING, nothing published
  ✅ POST /process broker down → 503 QUEUE_ERROR
  ✅ POST /process?inline=true → 200 with per-stage diagnostics
  ✅ GET  /status              → status, confidences, quality, error message
  ✅ GET  /relationships       → stored links for the document
  ✅ Malformed id              → 422 VALIDATION_ERROR
  ✅ /health                   → liveness without external checks
  ✅ X-Request-ID              → echoed on every response
"""

from __future__ import annotations

import uuid

import pytest


# ─────────────────────────────────────────────────────────────────────────────
# POST /api/v1/documents/{id}/process
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.api
class TestProcessEndpoint:

    async def test_enqueue_returns_202(self, async_client, make_document, publisher):
        doc = make_document(name="sbi_statement.pdf")

        response = await async_client.post(f"/api/v1/documents/{doc.id}/process")

        assert response.status_code == 202
        body = response.json()
        assert body["document_id"] == str(doc.id)
        assert body["status"] == "queued"
        assert body["task_id"] == "task-123"
        assert response.headers["Location"] == f"/api/v1/documents/{doc.id}/status"
        assert "X-Request-ID" in response.headers
        publisher.assert_called_once_with(doc.id)

    async def test_unknown_document_returns_404(self, async_client, publisher):
        response = await async_client.post(f"/api/v1/documents/{uuid.uuid4()}/process")

        assert response.status_code == 404
        assert response.json()["error_code"] == "DOCUMENT_NOT_FOUND"
        publisher.assert_not_called()

    async def test_processing_document_returns_409(self, async_client, make_document, publisher):
        doc = make_document(status="processing")

        response = await async_client.post(f"/api/v1/documents/{doc.id}/process")

        assert response.status_code == 409
        assert response.json()["error_code"] == "ALREADY_PROCESSING"
        publisher.assert_not_called()

    async def test_broker_down_returns_503(self, async_client, make_document, publisher):
        publisher.side_effect = ConnectionError("redis unreachable")
        doc = make_document()

        response = await async_client.post(f"/api/v1/documents/{doc.id}/process")

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "QUEUE_ERROR"
        assert body["details"][0]["message"] == "redis unreachable"

    async def test_inline_run_returns_stage_report(self, async_client, store, make_document, publisher):
        doc = make_document(name="sbi_statement.pdf")

        response = await async_client.post(
            f"/api/v1/documents/{doc.id}/process", params={"inline": "true"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["final_status"] == "completed"
        assert body["skipped"] is False
        stages = {s["stage"]: s["status"] for s in body["stages"]}
        assert stages["extraction"] == "degraded"
        assert stages["classification"] == "ok"
        assert stages["embedding"] == "ok"
        assert store.documents[doc.id].status == "completed"
        publisher.assert_not_called()

    async def test_malformed_id_returns_422(self, async_client):
        response = await async_client.post("/api/v1/documents/not-a-uuid/process")

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


# ─────────────────────────────────────────────────────────────────────────────
# GET /api/v1/documents/{id}/status and /relationships
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.api
class TestReadEndpoints:

    async def test_status_of_completed_document(self, async_client, make_document):
        doc = make_document(
            status="completed",
            category="Identity",
            ocr_confidence=95.0,
            ai_confidence=92.0,
            language_detected="en",
            doc_metadata={"quality": "full"},
        )

        response = await async_client.get(f"/api/v1/documents/{doc.id}/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["category"] == "Identity"
        assert body["ocr_confidence"] == 95.0
        assert body["ai_confidence"] == 92.0
        assert body["quality"] == "full"
        assert body["error_message"] is None

    async def test_status_of_failed_document_carries_reason(self, async_client, make_document):
        doc = make_document(
            status="error",
            processing_error="Processing failed during classification: boom",
        )

        response = await async_client.get(f"/api/v1/documents/{doc.id}/status")

        assert response.json()["status"] == "error"
        assert response.json()["error_message"] == "Processing failed during classification: boom"

    async def test_status_unknown_document(self, async_client):
        response = await async_client.get(f"/api/v1/documents/{uuid.uuid4()}/status")
        assert response.status_code == 404

    async def test_relationships_after_processing(self, async_client, pipeline, make_document):
        first  = make_document(name="sbi_statement.pdf")
        second = make_document(name="sbi_statement_april.pdf")
        await pipeline.process(first.id)
        await pipeline.process(second.id)

        response = await async_client.get(f"/api/v1/documents/{first.id}/relationships")

        assert response.status_code == 200
        links = response.json()
        assert len(links) == 1
        assert links[0]["relationship_type"] == "duplicate"
        assert {links[0]["document_id_1"], links[0]["document_id_2"]} == {
            str(first.id), str(second.id),
        }

    async def test_relationships_empty(self, async_client, make_document):
        doc = make_document()
        response = await async_client.get(f"/api/v1/documents/{doc.id}/relationships")
        assert response.status_code == 200
        assert response.json() == []


@pytest.mark.unit
@pytest.mark.api
class TestOperations:

    async def test_health(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "docvault-api"}

    async def test_request_id_is_echoed(self, async_client):
        response = await async_client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
