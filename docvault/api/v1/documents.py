"""
Document Processing API Router

  POST /api/v1/documents/{id}/process         enqueue (202) or run inline (200)
  GET  /api/v1/documents/{id}/status          processing status + confidences
  GET  /api/v1/documents/{id}/relationships   stored duplicate / related links

Request lifecycle (POST /process):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Load document record (404 if missing)                │
  │ 2. Reject while status = processing (409)               │
  │ 3. inline=false → Celery message published → 202        │
  │    inline=true  → DocumentPipeline.process → 200        │
  │ 4. Broker unreachable → 503 QUEUE_ERROR                 │
  └─────────────────────────────────────────────────────────┘

The store, pipeline and publisher are FastAPI dependencies so they can be
replaced through app.dependency_overrides.
"""

from __future__ import annotations

import logging
from typing import Callable
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from docvault.pipeline.store import DocumentStore
from docvault.schemas.documents import (
    DocumentStatusResponse,
    ErrorResponse,
    PipelineErrors,
    ProcessAcceptedResponse,
    ProcessingStatus,
    ProcessResultResponse,
    RelationshipResponse,
    StageReport,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Processing"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_store() -> DocumentStore:
    from docvault.pipeline.store import SQLDocumentStore
    return SQLDocumentStore()


def get_pipeline():
    from docvault.workers.tasks import get_pipeline as _shared_pipeline
    return _shared_pipeline()


def get_publisher() -> Callable[[UUID], str]:
    from docvault.workers.tasks import enqueue_processing
    return enqueue_processing


def _error(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/process
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/process",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run the document pipeline",
    description=(
        "Enqueues the document for OCR, classification, embedding, relationship "
        "detection and insight generation. Returns 202 immediately; poll "
        "GET /documents/{id}/status. With inline=true the pipeline runs in the "
        "request and the per-stage diagnostics are returned."
    ),
    responses={
        200: {"model": ProcessResultResponse, "description": "Inline run finished"},
        202: {"model": ProcessAcceptedResponse, "description": "Queued for processing"},
        404: {"model": ErrorResponse, "description": "Unknown document"},
        409: {"model": ErrorResponse, "description": "Document is already processing"},
        503: {"model": ErrorResponse, "description": "Message broker unavailable"},
    },
)
async def process_document(
    document_id: UUID,
    inline:    bool          = Query(False, description="Run the pipeline inside this request"),
    store:     DocumentStore = Depends(get_store),
    pipeline                 = Depends(get_pipeline),
    publish:   Callable      = Depends(get_publisher),
) -> JSONResponse:
    doc = await store.get_document(document_id)
    if doc is None:
        return _error(status.HTTP_404_NOT_FOUND, PipelineErrors.document_not_found(document_id))

    if doc.status == ProcessingStatus.PROCESSING.value:
        return _error(status.HTTP_409_CONFLICT, PipelineErrors.already_processing(document_id))

    if inline:
        outcome = await pipeline.process(document_id)
        if outcome.skipped:
            return _error(status.HTTP_409_CONFLICT, PipelineErrors.already_processing(document_id))

        body = ProcessResultResponse(
            document_id=outcome.document_id,
            final_status=outcome.final_status,
            skipped=outcome.skipped,
            reason=outcome.reason,
            stages=[
                StageReport(stage=s.stage, status=s.status.value, detail=s.detail, error=s.error)
                for s in outcome.diagnostics.stages
            ],
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json"))

    try:
        task_id = publish(document_id)
    except Exception as exc:
        logger.error("Enqueue failed | doc=%s error=%s", document_id, exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, PipelineErrors.queue_error(str(exc)))

    body = ProcessAcceptedResponse(document_id=document_id, task_id=task_id)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={"Location": f"/api/v1/documents/{document_id}/status"},
    )


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll processing status",
    responses={
        200: {"model": DocumentStatusResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_document_status(
    document_id: UUID,
    store: DocumentStore = Depends(get_store),
):
    doc = await store.get_document(document_id)
    if doc is None:
        return _error(status.HTTP_404_NOT_FOUND, PipelineErrors.document_not_found(document_id))

    return DocumentStatusResponse(
        document_id=doc.id,
        status=ProcessingStatus(doc.status),
        category=doc.category,
        ocr_confidence=doc.ocr_confidence,
        ai_confidence=doc.ai_confidence,
        language_detected=doc.language_detected,
        quality=doc.doc_metadata.get("quality"),
        error_message=doc.processing_error,
        updated_at=doc.updated_at,
    )


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/relationships
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/relationships",
    response_model=list[RelationshipResponse],
    summary="List detected relationships for a document",
    responses={
        200: {"model": list[RelationshipResponse]},
        404: {"model": ErrorResponse},
    },
)
async def list_document_relationships(
    document_id: UUID,
    store: DocumentStore = Depends(get_store),
):
    doc = await store.get_document(document_id)
    if doc is None:
        return _error(status.HTTP_404_NOT_FOUND, PipelineErrors.document_not_found(document_id))

    relationships = await store.list_relationships(document_id)
    return [
        RelationshipResponse(
            document_id_1=r.document_id_1,
            document_id_2=r.document_id_2,
            relationship_type=r.relationship_type,
            confidence_score=r.confidence_score,
            ai_detected=r.ai_detected,
        )
        for r in relationships
    ]
