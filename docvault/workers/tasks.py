"""
Celery Tasks — Document Pipeline

Task: process_document
  Runs DocumentPipeline.process for one document id. The pipeline owns every
  status transition (claim → processing → completed | error) and never
  raises, so the task itself never retries: a document that ends in 'error'
  is re-enqueued explicitly.

Task: requeue_stale_uploads
  Beat task — re-enqueues documents left in 'uploading' for longer than
  stale_after_minutes. Covers broker outages at upload time.

Task: health_check
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any

from celery import Task

from docvault.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_pipeline = None


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def get_pipeline():
    """Process-wide pipeline so per-document locks are shared across tasks."""
    global _pipeline
    if _pipeline is None:
        from docvault.pipeline.orchestrator import DocumentPipeline
        _pipeline = DocumentPipeline.from_settings()
    return _pipeline


def enqueue_processing(document_id: uuid.UUID | str) -> str:
    """Publish a process_document message; returns the Celery task id."""
    result = process_document.apply_async(kwargs={"document_id": str(document_id)})
    logger.info("Enqueued | doc=%s task_id=%s", document_id, result.id)
    return result.id


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docvault.workers.tasks.process_document",
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=170,
    time_limit=230,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    """Run the full pipeline for one document and report the outcome."""
    return run_async(_process_document_async(uuid.UUID(document_id)))


async def _process_document_async(document_id: uuid.UUID) -> dict[str, Any]:
    outcome = await get_pipeline().process(document_id)
    return {
        "document_id":  str(outcome.document_id),
        "final_status": outcome.final_status,
        "skipped":      outcome.skipped,
        "reason":       outcome.reason,
        "degraded":     outcome.diagnostics.degraded_stages,
        "failed":       outcome.diagnostics.failed_stages,
    }


# ---------------------------------------------------------------------------
# Stale upload sweep: runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docvault.workers.tasks.requeue_stale_uploads",
    bind=False,
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def requeue_stale_uploads() -> dict[str, int]:
    return run_async(_requeue_stale_uploads_async())


async def _requeue_stale_uploads_async(store=None) -> dict[str, int]:
    from docvault.core.config import settings
    from docvault.pipeline.store import SQLDocumentStore

    store = store or SQLDocumentStore()
    stale = await store.list_stale_documents(
        timedelta(minutes=settings.stale_after_minutes),
    )

    queued = 0
    for doc in stale:
        process_document.apply_async(
            kwargs={"document_id": str(doc.id)},
            countdown=5,
        )
        queued += 1
        logger.info("Re-queued stale upload | doc=%s user=%s", doc.id, doc.user_id)

    return {"requeued": queued}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="docvault.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
