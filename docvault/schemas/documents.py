"""
Document Pipeline — Pydantic Schemas

Covers:
  - Processing status state machine shared by the store, worker and API
  - The pinned structured-output schema the LLM classifier must satisfy
  - API responses for process / status / relationship endpoints
  - Structured error bodies

Design decisions:
  - ClassificationPayload is strict: unknown categories, empty summaries and
    empty tag lists are schema violations, never "best effort" values.
  - All timestamps are timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to documents.status.
    Transitions: uploading → processing → completed | error
    """
    UPLOADING  = "uploading"    # record created by the upload collaborator
    PROCESSING = "processing"   # claimed by exactly one pipeline invocation
    COMPLETED  = "completed"    # terminal; possibly degraded (see doc_metadata.quality)
    ERROR      = "error"        # terminal but re-enqueueable


# Statuses a pipeline run may claim from; never 'processing'.
CLAIMABLE_STATUSES: frozenset[str] = frozenset(
    {ProcessingStatus.UPLOADING.value, ProcessingStatus.COMPLETED.value, ProcessingStatus.ERROR.value}
)


class DocumentCategory(str, Enum):
    IDENTITY  = "Identity"
    FINANCIAL = "Financial"
    INSURANCE = "Insurance"
    MEDICAL   = "Medical"
    LEGAL     = "Legal"
    PERSONAL  = "Personal"
    BUSINESS  = "Business"
    TAX       = "Tax"
    EDUCATION = "Education"


class RelationshipType(str, Enum):
    DUPLICATE = "duplicate"
    RELATED   = "related"


class Urgency(str, Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


# ---------------------------------------------------------------------------
# Structured completion schema (LLM classifier output)
# ---------------------------------------------------------------------------

class KeyFacts(BaseModel):
    """Structured facts pulled out of the document text."""
    model_config = ConfigDict(extra="ignore")

    dates:       list[str] = Field(default_factory=list)
    amounts:     list[str] = Field(default_factory=list)
    identifiers: list[str] = Field(default_factory=list, description="ID / account / policy numbers")
    names:       list[str] = Field(default_factory=list)
    addresses:   list[str] = Field(default_factory=list)
    other:       dict[str, Any] = Field(default_factory=dict)


class ExpiryInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    has_expiry:        bool = False
    expiry_date:       date | None = None
    days_until_expiry: int | None = None


class RiskAssessment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level:   Urgency = Urgency.LOW
    factors: list[str] = Field(default_factory=list)


class ClassificationPayload(BaseModel):
    """
    The JSON object the LLM must return. Any violation (unknown category,
    blank summary, no tags, wrong types) is a ClassificationParseFailure.
    """
    model_config = ConfigDict(extra="ignore")

    category:        DocumentCategory
    summary:         str = Field(..., min_length=1)
    key_facts:       KeyFacts = Field(default_factory=KeyFacts)
    tags:            list[str] = Field(..., min_length=1)
    expiry_info:     ExpiryInfo | None = None
    risk_assessment: RiskAssessment | None = None
    confidence:      float | None = Field(None, ge=0.0, le=100.0)

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("summary must not be blank")
        return v.strip()

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, v: list[str]) -> list[str]:
        tags = [t.strip().lower() for t in v if t and t.strip()]
        if not tags:
            raise ValueError("at least one non-empty tag is required")
        # preserve order, drop duplicates
        return list(dict.fromkeys(tags))


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------

class ProcessAcceptedResponse(BaseModel):
    """Returned by POST /documents/{id}/process (202)."""
    document_id: UUID
    status:      str = "queued"
    task_id:     str | None = None


class StageReport(BaseModel):
    stage:  str
    status: str
    detail: str | None = None
    error:  str | None = None


class ProcessResultResponse(BaseModel):
    """Returned by POST /documents/{id}/process?inline=true."""
    document_id:  UUID
    final_status: str
    skipped:      bool = False
    reason:       str | None = None
    stages:       list[StageReport] = Field(default_factory=list)


class DocumentStatusResponse(BaseModel):
    """Polled by clients to track processing progress."""
    document_id:       UUID
    status:            ProcessingStatus
    category:          str | None = None
    ocr_confidence:    float | None = None
    ai_confidence:     float | None = None
    language_detected: str | None = None
    quality:           str | None = None
    error_message:     str | None = None
    updated_at:        datetime | None = None


class RelationshipResponse(BaseModel):
    document_id_1:     UUID
    document_id_2:     UUID
    relationship_type: RelationshipType
    confidence_score:  float
    ai_detected:       bool = True


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    field:   str | None = None
    message: str
    code:    str


class ErrorResponse(BaseModel):
    """Uniform error envelope for all 4xx/5xx responses."""
    error_code: str = Field(..., description="Stable machine-readable code")
    message:    str = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None = None


class PipelineErrors:
    """Factories for every documented error case."""

    @staticmethod
    def document_not_found(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document {document_id} does not exist.",
        )

    @staticmethod
    def already_processing(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="ALREADY_PROCESSING",
            message=f"Document {document_id} is already being processed.",
        )

    @staticmethod
    def queue_error(detail: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="Failed to enqueue the document for processing.",
            details=[ErrorDetail(message=detail, code="QUEUE_ERROR")],
        )
