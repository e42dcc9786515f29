"""
SQLAlchemy ORM Models — Documents and Pipeline Outputs

These models map to the tables the upload collaborator and the pipeline share.
SQLAlchemy 2.x mapped classes for full async support.

Write ownership:
  documents               — created by the upload collaborator, mutated only
                            by the pipeline orchestrator
  document_embeddings     — embedding indexer (one row per document)
  document_relationships  — relationship detector (insert-only)
  ai_insights             — insight generator (insert-only; is_acknowledged
                            belongs to the UI)
  reminders               — reminder scheduler (insert-only)
  user_activity           — append-only activity log
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    Tracks a single uploaded file from upload → extraction → classification.

    State machine (status column):
        uploading  — record created, file stored, pipeline not yet started
        processing — claimed by one pipeline invocation
        completed  — terminal; doc_metadata.quality == "text_only" when the
                     OCR gate skipped classification
        error      — terminal, re-enqueueable (see processing_error)
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('uploading', 'processing', 'completed', 'error')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "ocr_confidence IS NULL OR (ocr_confidence >= 0 AND ocr_confidence <= 100)",
            name="documents_ocr_confidence_range",
        ),
        Index("idx_documents_user_id", "user_id"),
        Index("idx_documents_user_status", "user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # File reference: resolved through FileStorage before OCR
    name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Original filename; drives the deterministic fallback stubs",
    )
    storage_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Object key in the documents bucket, or an absolute URL",
    )
    file_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="uploading",
        server_default="uploading",
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Human-readable reason; populated only when status='error'",
    )

    # Extraction output
    extracted_text:    Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    ocr_confidence:    Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    language_detected: Mapped[Optional[str]]   = mapped_column(String(8), nullable=True)

    # Classification output
    category:      Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    ai_summary:    Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tags: Mapped[list[str]] = mapped_column(
        ARRAY(Text),
        nullable=False,
        default=list,
        server_default="{}",
    )
    key_facts: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    doc_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="quality marker, expiry_info, risk_assessment, classifier source",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} user={self.user_id} "
            f"status={self.status} name={self.name!r}>"
        )


# ---------------------------------------------------------------------------
# DocumentEmbedding model: document_embeddings
# ---------------------------------------------------------------------------

class DocumentEmbedding(Base):
    """
    One active embedding per document. content_hash is the SHA-256 of the
    truncated text that was embedded; an identical hash means no re-embed.
    """

    __tablename__ = "document_embeddings"
    __table_args__ = (
        UniqueConstraint("document_id", name="uq_document_embeddings_document"),
        Index("idx_document_embeddings_hash", "content_hash"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    vector:        Mapped[list[float]] = mapped_column(ARRAY(Float), nullable=False)
    content_hash:  Mapped[str] = mapped_column(String(64), nullable=False)
    model_version: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# DocumentRelationship model: document_relationships
# ---------------------------------------------------------------------------

class DocumentRelationship(Base):
    """
    Directed storage of an undirected link. The detector checks both
    orientations before inserting, so (A, B, t) and (B, A, t) never coexist.
    """

    __tablename__ = "document_relationships"
    __table_args__ = (
        CheckConstraint(
            "relationship_type IN ('duplicate', 'related')",
            name="document_relationships_type_check",
        ),
        UniqueConstraint(
            "document_id_1", "document_id_2", "relationship_type",
            name="uq_document_relationships_pair",
        ),
        Index("idx_document_relationships_doc1", "document_id_1"),
        Index("idx_document_relationships_doc2", "document_id_2"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id_1: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_id_2: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    relationship_type: Mapped[str]   = mapped_column(Text, nullable=False)
    confidence_score:  Mapped[float] = mapped_column(Float, nullable=False)
    ai_detected:       Mapped[bool]  = mapped_column(Boolean, nullable=False, default=True)
    rel_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# AIInsight model: ai_insights
# ---------------------------------------------------------------------------

class AIInsight(Base):
    """Advisory record generated from the user's category distribution."""

    __tablename__ = "ai_insights"
    __table_args__ = (
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="ai_insights_priority_check",
        ),
        Index("idx_ai_insights_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id:      Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    insight_type: Mapped[str] = mapped_column(Text, nullable=False)
    title:        Mapped[str] = mapped_column(Text, nullable=False)
    description:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority:     Mapped[str] = mapped_column(Text, nullable=False, default="medium")
    savings_potential: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_required:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    related_document_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)),
        nullable=False,
        default=list,
        server_default="{}",
    )
    is_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# Reminder model: reminders
# ---------------------------------------------------------------------------

class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        CheckConstraint(
            "urgency IN ('low', 'medium', 'high')",
            name="reminders_urgency_check",
        ),
        Index("idx_reminders_user_date", "user_id", "reminder_date"),
        Index("idx_reminders_document", "related_document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    related_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )
    title:         Mapped[str] = mapped_column(Text, nullable=False)
    description:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_date: Mapped[date]     = mapped_column(Date, nullable=False)
    category:      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    urgency:       Mapped[str] = mapped_column(Text, nullable=False, default="medium")
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_completed:      Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# ---------------------------------------------------------------------------
# ActivityLog model: user_activity
# ---------------------------------------------------------------------------

class ActivityLog(Base):
    """
    Append-only activity trail. The pipeline writes exactly one
    'document_processed' entry per completed run.
    """

    __tablename__ = "user_activity"
    __table_args__ = (
        Index("idx_user_activity_user_id", "user_id"),
        Index("idx_user_activity_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id:       Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    activity_type: Mapped[str] = mapped_column(Text, nullable=False)
    description:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    activity_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityLog id={self.id} user={self.user_id} "
            f"type={self.activity_type!r}>"
        )
