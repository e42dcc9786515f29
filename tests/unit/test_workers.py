"""
Unit Tests — Celery tasks
══════════════════════════

The task bodies are exercised through their async helpers; Celery itself
runs on the in-memory broker and no message is actually delivered.

Coverage targets:
  ✅ process_document reports the pipeline outcome as a JSON-safe dict
  ✅ enqueue_processing publishes the id as a string kwarg
  ✅ Stale 'uploading' documents are re-enqueued, fresh ones are not
  ✅ health_check
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from docvault.workers import tasks


@pytest.mark.unit
@pytest.mark.workers
class TestProcessDocumentTask:

    async def test_outcome_is_reported(self, monkeypatch, pipeline, make_document):
        monkeypatch.setattr(tasks, "_pipeline", pipeline)
        doc = make_document(name="sbi_statement.pdf")

        result = await tasks._process_document_async(doc.id)

        assert result == {
            "document_id":  str(doc.id),
            "final_status": "completed",
            "skipped":      False,
            "reason":       None,
            "degraded":     ["extraction"],
            "failed":       [],
        }

    async def test_skipped_run_is_reported(self, monkeypatch, pipeline, make_document):
        monkeypatch.setattr(tasks, "_pipeline", pipeline)
        doc = make_document(status="processing")

        result = await tasks._process_document_async(doc.id)

        assert result["skipped"] is True
        assert result["final_status"] == "processing"

    def test_enqueue_processing_publishes_string_id(self, make_document):
        doc = make_document()
        with patch.object(tasks, "process_document") as task:
            task.apply_async.return_value = MagicMock(id="task-abc")
            task_id = tasks.enqueue_processing(doc.id)

        assert task_id == "task-abc"
        task.apply_async.assert_called_once_with(kwargs={"document_id": str(doc.id)})


@pytest.mark.unit
@pytest.mark.workers
class TestStaleUploadSweep:

    async def test_only_stale_uploads_are_requeued(self, store, make_document):
        old   = datetime.now(timezone.utc) - timedelta(minutes=30)
        stale = make_document(created_at=old)
        make_document()                                       # fresh upload
        make_document(created_at=old, status="completed")     # already done

        with patch.object(tasks, "process_document") as task:
            result = await tasks._requeue_stale_uploads_async(store=store)

        assert result == {"requeued": 1}
        task.apply_async.assert_called_once_with(
            kwargs={"document_id": str(stale.id)}, countdown=5,
        )

    async def test_nothing_to_requeue(self, store):
        with patch.object(tasks, "process_document") as task:
            result = await tasks._requeue_stale_uploads_async(store=store)

        assert result == {"requeued": 0}
        task.apply_async.assert_not_called()


@pytest.mark.unit
@pytest.mark.workers
class TestHealthCheck:

    def test_health_check(self):
        assert tasks.health_check() == {"status": "ok", "worker": "healthy"}
