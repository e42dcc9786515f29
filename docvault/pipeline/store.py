"""
Document Store — Persistence Boundary of the Pipeline
═════════════════════════════════════════════════════

The pipeline never touches SQLAlchemy directly. Every read and write goes
through DocumentStore, which has two implementations:

  SQLDocumentStore   — production; SQLAlchemy async, one session per call
  FakeDocumentStore  — tests; in-memory dicts (tests/fakes/store.py)

Atomicity model
───────────────
  Every operation is atomic per row. The pipeline needs no cross-row
  transaction: the only synchronisation point is claim_for_processing(),
  a guarded UPDATE that succeeds for exactly one caller.

  Opening a fresh session per call keeps the three concurrent
  post-classification stages from sharing an AsyncSession.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update

from docvault.models.documents import (
    ActivityLog,
    AIInsight,
    Document,
    DocumentEmbedding,
    DocumentRelationship,
    Reminder,
)
from docvault.schemas.documents import CLAIMABLE_STATUSES, ProcessingStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records exchanged with the store
# ---------------------------------------------------------------------------

@dataclass
class DocumentRecord:
    """Snapshot of a documents row; never tied to a live session."""
    id:                UUID
    user_id:           UUID
    name:              str
    storage_path:      str
    status:            str
    file_type:         str | None = None
    extracted_text:    str | None = None
    ocr_confidence:    float | None = None
    language_detected: str | None = None
    category:          str | None = None
    ai_summary:        str | None = None
    ai_confidence:     float | None = None
    tags:              list[str] = field(default_factory=list)
    key_facts:         dict[str, Any] = field(default_factory=dict)
    doc_metadata:      dict[str, Any] = field(default_factory=dict)
    processing_error:  str | None = None
    created_at:        datetime | None = None
    updated_at:        datetime | None = None

    @classmethod
    def from_orm(cls, doc: Document) -> "DocumentRecord":
        return cls(
            id=doc.id,
            user_id=doc.user_id,
            name=doc.name,
            storage_path=doc.storage_path,
            status=doc.status,
            file_type=doc.file_type,
            extracted_text=doc.extracted_text,
            ocr_confidence=doc.ocr_confidence,
            language_detected=doc.language_detected,
            category=doc.category,
            ai_summary=doc.ai_summary,
            ai_confidence=doc.ai_confidence,
            tags=list(doc.tags or []),
            key_facts=dict(doc.key_facts or {}),
            doc_metadata=dict(doc.doc_metadata or {}),
            processing_error=doc.processing_error,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
        )


@dataclass
class EmbeddingRecord:
    document_id:   UUID
    vector:        list[float]
    content_hash:  str
    model_version: str
    id:            UUID = field(default_factory=uuid.uuid4)
    created_at:    datetime | None = None


@dataclass
class RelationshipRecord:
    document_id_1:     UUID
    document_id_2:     UUID
    relationship_type: str
    confidence_score:  float
    ai_detected:       bool = True
    metadata:          dict[str, Any] = field(default_factory=dict)
    id:                UUID | None = None


@dataclass
class InsightRecord:
    user_id:              UUID
    insight_type:         str
    title:                str
    description:          str
    priority:             str = "medium"
    savings_potential:    str | None = None
    action_required:      str | None = None
    related_document_ids: list[UUID] = field(default_factory=list)
    id:                   UUID | None = None


@dataclass
class ReminderRecord:
    user_id:             UUID
    title:               str
    description:         str
    reminder_date:       date
    urgency:             str = "medium"
    related_document_id: UUID | None = None
    category:            str | None = None
    is_auto_generated:   bool = True
    is_completed:        bool = False
    id:                  UUID | None = None


# Document columns the orchestrator is allowed to write.
UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "status",
    "processing_error",
    "extracted_text",
    "ocr_confidence",
    "language_detected",
    "category",
    "ai_summary",
    "ai_confidence",
    "tags",
    "key_facts",
    "doc_metadata",
})


def check_update_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update document fields: {sorted(unknown)}")


# ---------------------------------------------------------------------------
# Abstract store
# ---------------------------------------------------------------------------

class DocumentStore(ABC):
    """
    Everything the pipeline reads or writes.

    All implementations must be safe for concurrent use from several
    coroutines of the same event loop.
    """

    # -- documents ----------------------------------------------------------

    @abstractmethod
    async def get_document(self, document_id: UUID) -> DocumentRecord | None:
        """Return the document or None if it does not exist."""

    @abstractmethod
    async def claim_for_processing(self, document_id: UUID) -> bool:
        """
        Guarded transition to 'processing'.

        Equivalent to:
            UPDATE documents SET status='processing'
             WHERE id = :id AND status <> 'processing'

        Returns True for exactly one concurrent caller.
        """

    @abstractmethod
    async def update_document(self, document_id: UUID, **fields: Any) -> None:
        """Write a subset of UPDATABLE_FIELDS onto the document."""

    @abstractmethod
    async def list_documents(
        self,
        user_id:      UUID,
        *,
        status:       str | None = None,
        exclude_id:   UUID | None = None,
        require_text: bool = False,
    ) -> list[DocumentRecord]:
        """The user's documents, optionally filtered."""

    @abstractmethod
    async def list_stale_documents(
        self,
        older_than: timedelta,
        limit:      int = 50,
    ) -> list[DocumentRecord]:
        """Documents still 'uploading' after older_than (broker lost the task)."""

    # -- embeddings ---------------------------------------------------------

    @abstractmethod
    async def get_embedding(self, document_id: UUID) -> EmbeddingRecord | None:
        """The document's active embedding, if any."""

    @abstractmethod
    async def upsert_embedding(self, record: EmbeddingRecord) -> UUID:
        """Insert or replace the document's single embedding; returns its id."""

    # -- relationships ------------------------------------------------------

    @abstractmethod
    async def relationship_exists(
        self,
        document_a:        UUID,
        document_b:        UUID,
        relationship_type: str,
    ) -> bool:
        """True if the unordered pair is already linked with this type."""

    @abstractmethod
    async def insert_relationship(self, record: RelationshipRecord) -> UUID:
        ...

    @abstractmethod
    async def list_relationships(self, document_id: UUID) -> list[RelationshipRecord]:
        """Relationships in which the document appears on either side."""

    # -- insights & reminders -----------------------------------------------

    @abstractmethod
    async def has_open_insight(self, record: InsightRecord) -> bool:
        """
        True if an unacknowledged insight with the same user, type, title,
        description and related documents already exists.
        """

    @abstractmethod
    async def insert_insight(self, record: InsightRecord) -> UUID:
        ...

    @abstractmethod
    async def reminder_exists(
        self,
        related_document_id: UUID,
        reminder_date:       date,
    ) -> bool:
        ...

    @abstractmethod
    async def insert_reminder(self, record: ReminderRecord) -> UUID:
        ...

    # -- activity log -------------------------------------------------------

    @abstractmethod
    async def append_activity_log(
        self,
        user_id:       UUID,
        activity_type: str,
        description:   str,
        metadata:      dict[str, Any] | None = None,
    ) -> None:
        ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SQLDocumentStore(DocumentStore):
    """
    Production store over the async SQLAlchemy engine.

    Each method runs in its own short transaction (session_scope), so
    intermediate writes are durable as soon as the call returns.
    """

    def __init__(self, session_factory=None) -> None:
        from docvault.db.session import AsyncSessionLocal

        self._factory = session_factory or AsyncSessionLocal

    def _scope(self):
        from docvault.db.session import session_scope
        return session_scope(self._factory)

    # -- documents ----------------------------------------------------------

    async def get_document(self, document_id: UUID) -> DocumentRecord | None:
        async with self._scope() as db:
            doc = await db.get(Document, document_id)
            return DocumentRecord.from_orm(doc) if doc else None

    async def claim_for_processing(self, document_id: UUID) -> bool:
        async with self._scope() as db:
            result = await db.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status.in_(sorted(CLAIMABLE_STATUSES)),
                )
                .values(status=ProcessingStatus.PROCESSING.value, processing_error=None)
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1
        logger.debug("Store claim | doc=%s claimed=%s", document_id, claimed)
        return claimed

    async def update_document(self, document_id: UUID, **fields: Any) -> None:
        check_update_fields(fields)
        if not fields:
            return
        async with self._scope() as db:
            result = await db.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise LookupError(f"Document {document_id} not found")

    async def list_documents(
        self,
        user_id:      UUID,
        *,
        status:       str | None = None,
        exclude_id:   UUID | None = None,
        require_text: bool = False,
    ) -> list[DocumentRecord]:
        stmt = select(Document).where(Document.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Document.status == status)
        if exclude_id is not None:
            stmt = stmt.where(Document.id != exclude_id)
        if require_text:
            stmt = stmt.where(
                Document.extracted_text.is_not(None),
                func.length(func.trim(Document.extracted_text)) > 0,
            )
        stmt = stmt.order_by(Document.created_at)

        async with self._scope() as db:
            result = await db.execute(stmt)
            return [DocumentRecord.from_orm(d) for d in result.scalars().all()]

    async def list_stale_documents(
        self,
        older_than: timedelta,
        limit:      int = 50,
    ) -> list[DocumentRecord]:
        cutoff = datetime.now(timezone.utc) - older_than
        async with self._scope() as db:
            result = await db.execute(
                select(Document)
                .where(
                    and_(
                        Document.status == ProcessingStatus.UPLOADING.value,
                        Document.created_at < cutoff,
                    )
                )
                .order_by(Document.created_at)
                .limit(limit)
            )
            return [DocumentRecord.from_orm(d) for d in result.scalars().all()]

    # -- embeddings ---------------------------------------------------------

    async def get_embedding(self, document_id: UUID) -> EmbeddingRecord | None:
        async with self._scope() as db:
            result = await db.execute(
                select(DocumentEmbedding).where(DocumentEmbedding.document_id == document_id)
            )
            row = result.scalars().first()
            if row is None:
                return None
            return EmbeddingRecord(
                id=row.id,
                document_id=row.document_id,
                vector=list(row.vector),
                content_hash=row.content_hash,
                model_version=row.model_version,
                created_at=row.created_at,
            )

    async def upsert_embedding(self, record: EmbeddingRecord) -> UUID:
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        stmt = pg_insert(DocumentEmbedding).values(
            id=record.id,
            document_id=record.document_id,
            vector=record.vector,
            content_hash=record.content_hash,
            model_version=record.model_version,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_document_embeddings_document",
            set_={
                "vector":        stmt.excluded.vector,
                "content_hash":  stmt.excluded.content_hash,
                "model_version": stmt.excluded.model_version,
                "created_at":    func.now(),
            },
        ).returning(DocumentEmbedding.id)

        async with self._scope() as db:
            result = await db.execute(stmt)
            return result.scalar_one()

    # -- relationships ------------------------------------------------------

    async def relationship_exists(
        self,
        document_a:        UUID,
        document_b:        UUID,
        relationship_type: str,
    ) -> bool:
        async with self._scope() as db:
            result = await db.execute(
                select(DocumentRelationship.id)
                .where(
                    DocumentRelationship.relationship_type == relationship_type,
                    or_(
                        and_(
                            DocumentRelationship.document_id_1 == document_a,
                            DocumentRelationship.document_id_2 == document_b,
                        ),
                        and_(
                            DocumentRelationship.document_id_1 == document_b,
                            DocumentRelationship.document_id_2 == document_a,
                        ),
                    ),
                )
                .limit(1)
            )
            return result.first() is not None

    async def insert_relationship(self, record: RelationshipRecord) -> UUID:
        row = DocumentRelationship(
            document_id_1=record.document_id_1,
            document_id_2=record.document_id_2,
            relationship_type=record.relationship_type,
            confidence_score=record.confidence_score,
            ai_detected=record.ai_detected,
            rel_metadata=record.metadata,
        )
        async with self._scope() as db:
            db.add(row)
            await db.flush()
            return row.id

    async def list_relationships(self, document_id: UUID) -> list[RelationshipRecord]:
        async with self._scope() as db:
            result = await db.execute(
                select(DocumentRelationship)
                .where(
                    or_(
                        DocumentRelationship.document_id_1 == document_id,
                        DocumentRelationship.document_id_2 == document_id,
                    )
                )
                .order_by(DocumentRelationship.confidence_score.desc())
            )
            return [
                RelationshipRecord(
                    id=r.id,
                    document_id_1=r.document_id_1,
                    document_id_2=r.document_id_2,
                    relationship_type=r.relationship_type,
                    confidence_score=r.confidence_score,
                    ai_detected=r.ai_detected,
                    metadata=dict(r.rel_metadata or {}),
                )
                for r in result.scalars().all()
            ]

    # -- insights & reminders -----------------------------------------------

    async def has_open_insight(self, record: InsightRecord) -> bool:
        async with self._scope() as db:
            result = await db.execute(
                select(AIInsight.id)
                .where(
                    AIInsight.user_id == record.user_id,
                    AIInsight.insight_type == record.insight_type,
                    AIInsight.title == record.title,
                    AIInsight.description == record.description,
                    AIInsight.related_document_ids == sorted(record.related_document_ids),
                    AIInsight.is_acknowledged.is_(False),
                )
                .limit(1)
            )
            return result.first() is not None

    async def insert_insight(self, record: InsightRecord) -> UUID:
        row = AIInsight(
            user_id=record.user_id,
            insight_type=record.insight_type,
            title=record.title,
            description=record.description,
            priority=record.priority,
            savings_potential=record.savings_potential,
            action_required=record.action_required,
            related_document_ids=sorted(record.related_document_ids),
            is_acknowledged=False,
        )
        async with self._scope() as db:
            db.add(row)
            await db.flush()
            return row.id

    async def reminder_exists(
        self,
        related_document_id: UUID,
        reminder_date:       date,
    ) -> bool:
        async with self._scope() as db:
            result = await db.execute(
                select(Reminder.id)
                .where(
                    Reminder.related_document_id == related_document_id,
                    Reminder.reminder_date == reminder_date,
                )
                .limit(1)
            )
            return result.first() is not None

    async def insert_reminder(self, record: ReminderRecord) -> UUID:
        row = Reminder(
            user_id=record.user_id,
            related_document_id=record.related_document_id,
            title=record.title,
            description=record.description,
            reminder_date=record.reminder_date,
            category=record.category,
            urgency=record.urgency,
            is_auto_generated=record.is_auto_generated,
            is_completed=record.is_completed,
        )
        async with self._scope() as db:
            db.add(row)
            await db.flush()
            return row.id

    # -- activity log -------------------------------------------------------

    async def append_activity_log(
        self,
        user_id:       UUID,
        activity_type: str,
        description:   str,
        metadata:      dict[str, Any] | None = None,
    ) -> None:
        async with self._scope() as db:
            db.add(ActivityLog(
                user_id=user_id,
                activity_type=activity_type,
                description=description,
                activity_metadata=metadata or {},
            ))
