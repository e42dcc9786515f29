"""
Document Pipeline Orchestrator
══════════════════════════════

State machine per document:

    uploading ──► processing ──► completed
        ▲             │
        │             └────────► error   (terminal, re-enqueueable)
        └─ completed / error may be claimed again for explicit reprocessing

Run sequence (DocumentPipeline.process):

  ┌──────────────────────────────────────────────────────────────────────┐
  │ 1. Single-flight: per-id asyncio.Lock + store.claim_for_processing   │
  │ 2. TextExtractor.extract        → persist text / confidence / lang   │
  │ 3. confidence < gate (50)?                                           │
  │       YES → completed, doc_metadata.quality = "text_only"            │
  │ 4. ContentClassifier.classify   → persist category / summary / tags  │
  │    ReminderScheduler.schedule   → expiry + tax-deadline reminders    │
  │ 5. asyncio.gather(                                                   │
  │        EmbeddingIndexer.index,                                       │
  │        RelationshipDetector.detect,                                  │
  │        InsightGenerator.generate)  → failures recorded, not raised   │
  │ 6. completed + processing_error cleared + one activity-log entry     │
  │ 7. Anything uncaught → error + human-readable processing_error       │
  └──────────────────────────────────────────────────────────────────────┘

process() never raises. Every stage leaves a StageResult in the returned
PipelineDiagnostics so callers (and tests) can see exactly what degraded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from docvault.observability.tracing import traced
from docvault.pipeline.errors import (
    EmbeddingFailure,
    InsightGenerationFailure,
    OrchestratorFailure,
    PipelineDiagnostics,
    PipelineError,
    RelationshipDetectionFailure,
    StageResult,
)
from docvault.pipeline.store import DocumentRecord, DocumentStore
from docvault.processing.classifier import ClassificationResult, ContentClassifier
from docvault.processing.embeddings import EmbeddingIndexer
from docvault.processing.extractor import ExtractionResult, TextExtractor
from docvault.processing.insights import InsightGenerator, NewDocument
from docvault.processing.relationships import RelationshipDetector
from docvault.processing.reminders import ReminderScheduler
from docvault.schemas.documents import ProcessingStatus

logger = logging.getLogger(__name__)

QUALITY_FULL      = "full"
QUALITY_TEXT_ONLY = "text_only"

ACTIVITY_DOCUMENT_PROCESSED = "document_processed"

# doc_metadata keys written by ClassificationResult.metadata_fields()
CLASSIFICATION_METADATA_KEYS = ("expiry_info", "risk_assessment", "classification_source")

# Stage names used in diagnostics
STAGE_EXTRACTION     = "extraction"
STAGE_CLASSIFICATION = "classification"
STAGE_REMINDERS      = "reminders"
STAGE_EMBEDDING      = "embedding"
STAGE_RELATIONSHIPS  = "relationships"
STAGE_INSIGHTS       = "insights"
STAGE_ACTIVITY_LOG   = "activity_log"
STAGE_ORCHESTRATOR   = "orchestrator"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclass
class PipelineOutcome:
    """
    final_status : "completed" | "error", or the observed status when skipped
    skipped      : True when another invocation already holds the document
    reason       : processing_error written on failure, or why it was skipped
    """
    document_id:  UUID
    final_status: str
    diagnostics:  PipelineDiagnostics = field(default_factory=PipelineDiagnostics)
    skipped:      bool = False
    reason:       str | None = None

    @property
    def succeeded(self) -> bool:
        return self.final_status == ProcessingStatus.COMPLETED.value


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class DocumentPipeline:
    """
    Sequences the processing stages for one document at a time per id.

    All collaborators are injected; from_settings() wires the production
    ones. A single instance is meant to be shared by every invocation in a
    process so the per-document locks are shared too.
    """

    def __init__(
        self,
        store:           DocumentStore,
        extractor:       TextExtractor,
        classifier:      ContentClassifier,
        indexer:         EmbeddingIndexer,
        detector:        RelationshipDetector,
        insights:        InsightGenerator,
        reminders:       ReminderScheduler,
        confidence_gate: float | None = None,
    ) -> None:
        from docvault.core.config import settings

        self._store      = store
        self._extractor  = extractor
        self._classifier = classifier
        self._indexer    = indexer
        self._detector   = detector
        self._insights   = insights
        self._reminders  = reminders
        self._gate       = settings.ocr_confidence_gate if confidence_gate is None else confidence_gate
        self._locks: dict[UUID, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, store: DocumentStore | None = None) -> "DocumentPipeline":
        from docvault.pipeline.store import SQLDocumentStore
        from docvault.storage.files import FileStorage

        store = store or SQLDocumentStore()
        return cls(
            store=store,
            extractor=TextExtractor.from_settings(storage=FileStorage()),
            classifier=ContentClassifier(),
            indexer=EmbeddingIndexer(store),
            detector=RelationshipDetector(store),
            insights=InsightGenerator(store),
            reminders=ReminderScheduler(store),
        )

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process(self, document_id: UUID) -> PipelineOutcome:
        """Run the full state machine for one document. Never raises."""
        diagnostics = PipelineDiagnostics()

        lock = self._locks.setdefault(document_id, asyncio.Lock())
        if lock.locked():
            logger.info("Pipeline | doc=%s already in flight in this process, skipping", document_id)
            return PipelineOutcome(
                document_id=document_id,
                final_status=ProcessingStatus.PROCESSING.value,
                diagnostics=diagnostics,
                skipped=True,
                reason="Document is already being processed",
            )

        async with lock:
            try:
                return await self._process(document_id, diagnostics)
            finally:
                self._locks.pop(document_id, None)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _process(self, document_id: UUID, diagnostics: PipelineDiagnostics) -> PipelineOutcome:
        # ── Load + claim ─────────────────────────────────────────────────
        try:
            doc = await self._store.get_document(document_id)
        except Exception as exc:
            return self._failed_before_claim(
                document_id, diagnostics,
                OrchestratorFailure(f"Document store unavailable: {type(exc).__name__}: {exc}"),
            )
        if doc is None:
            return self._failed_before_claim(
                document_id, diagnostics,
                OrchestratorFailure(f"Document {document_id} not found"),
            )

        try:
            claimed = await self._store.claim_for_processing(document_id)
        except Exception as exc:
            return self._failed_before_claim(
                document_id, diagnostics,
                OrchestratorFailure(f"Could not claim document: {type(exc).__name__}: {exc}"),
            )
        if not claimed:
            current = await self._current_status(document_id, doc.status)
            logger.info("Pipeline | doc=%s claim lost (status=%s), skipping", document_id, current)
            return PipelineOutcome(
                document_id=document_id,
                final_status=current,
                diagnostics=diagnostics,
                skipped=True,
                reason=f"Document is already {current}",
            )

        logger.info("Pipeline start | doc=%s user=%s file=%s", doc.id, doc.user_id, doc.name)

        phase = STAGE_EXTRACTION
        try:
            metadata: dict[str, Any] = dict(doc.doc_metadata)
            metadata["processing_started_at"] = _utcnow_iso()

            # ── Extraction ───────────────────────────────────────────────
            extraction = await self._extract(doc)
            diagnostics.record(
                StageResult.degraded(STAGE_EXTRACTION, extraction.strategy_used, extraction.error)
                if extraction.degraded
                else StageResult.ok(STAGE_EXTRACTION, extraction.strategy_used)
            )
            metadata["extraction_strategy"] = extraction.strategy_used
            await self._store.update_document(
                document_id,
                extracted_text=extraction.text,
                ocr_confidence=extraction.confidence,
                language_detected=extraction.language,
            )

            # ── Confidence gate ──────────────────────────────────────────
            if extraction.confidence < self._gate:
                phase = "finalisation"
                detail = f"ocr_confidence {extraction.confidence:.1f} below gate {self._gate:.1f}"
                for stage in (STAGE_CLASSIFICATION, STAGE_EMBEDDING, STAGE_RELATIONSHIPS, STAGE_INSIGHTS):
                    diagnostics.record(StageResult.skipped(stage, detail))
                logger.warning("Pipeline | doc=%s %s, storing text only", document_id, detail)

                # Drop classification left by an earlier full run
                metadata["quality"] = QUALITY_TEXT_ONLY
                for key in CLASSIFICATION_METADATA_KEYS:
                    metadata.pop(key, None)
                await self._store.update_document(
                    document_id,
                    category=None,
                    ai_summary=None,
                    ai_confidence=None,
                    tags=[],
                    key_facts={},
                )
                return await self._complete(doc, metadata, diagnostics, category=None, extraction=extraction)

            # ── Classification ───────────────────────────────────────────
            phase = STAGE_CLASSIFICATION
            classification = await self._classify(doc, extraction.text)
            diagnostics.record(
                StageResult.degraded(STAGE_CLASSIFICATION, classification.source, classification.error)
                if classification.degraded
                else StageResult.ok(STAGE_CLASSIFICATION, classification.source)
            )
            metadata.update(classification.metadata_fields())
            metadata["quality"] = QUALITY_FULL
            await self._store.update_document(document_id, **classification.document_fields())

            new_doc = NewDocument(
                id=doc.id,
                user_id=doc.user_id,
                name=doc.name,
                category=classification.category,
                tags=tuple(classification.tags),
            )
            diagnostics.record(await self._schedule_reminders(new_doc, classification))

            # ── Fan-out ──────────────────────────────────────────────────
            phase = "fan-out"
            results = await asyncio.gather(
                self._embed(doc.id, extraction.text),
                self._relate(doc.id, doc.user_id, extraction.text),
                self._generate_insights(new_doc),
                return_exceptions=True,
            )
            for stage, result in zip((STAGE_EMBEDDING, STAGE_RELATIONSHIPS, STAGE_INSIGHTS), results):
                if isinstance(result, BaseException):
                    logger.error("Pipeline | doc=%s stage=%s crashed: %s", document_id, stage, result)
                    result = StageResult.failed(stage, result)
                diagnostics.record(result)

            phase = "finalisation"
            return await self._complete(
                doc, metadata, diagnostics,
                category=classification.category, extraction=extraction,
                classification=classification,
            )

        except Exception as exc:
            failure = exc if isinstance(exc, PipelineError) else OrchestratorFailure(
                f"{type(exc).__name__}: {exc}", document_id=document_id,
            )
            reason = f"Processing failed during {phase}: {failure}"
            logger.exception("Pipeline | doc=%s %s", document_id, reason)
            diagnostics.record(StageResult.failed(STAGE_ORCHESTRATOR, reason))
            await self._mark_error(document_id, reason)
            return PipelineOutcome(
                document_id=document_id,
                final_status=ProcessingStatus.ERROR.value,
                diagnostics=diagnostics,
                reason=reason,
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @traced("pipeline.extract")
    async def _extract(self, doc: DocumentRecord) -> ExtractionResult:
        hint = doc.doc_metadata.get("language_hint", "auto")
        return await self._extractor.extract(doc.storage_path, doc.name, hint)

    @traced("pipeline.classify")
    async def _classify(self, doc: DocumentRecord, text: str) -> ClassificationResult:
        return await self._classifier.classify(text, doc.name)

    async def _schedule_reminders(
        self,
        document:       NewDocument,
        classification: ClassificationResult,
    ) -> StageResult:
        try:
            created = await self._reminders.schedule(document, classification.expiry_info)
        except Exception as exc:
            logger.error("Pipeline | doc=%s reminders failed: %s", document.id, exc)
            return StageResult.failed(STAGE_REMINDERS, exc)
        return StageResult.ok(STAGE_REMINDERS, f"created={len(created)}")

    @traced("pipeline.embed")
    async def _embed(self, document_id: UUID, text: str) -> StageResult:
        try:
            result = await self._indexer.index(document_id, text)
        except EmbeddingFailure as exc:
            logger.error("Pipeline | doc=%s embedding failed: %s", document_id, exc)
            return StageResult.failed(STAGE_EMBEDDING, exc)
        if result.skipped:
            return StageResult.skipped(STAGE_EMBEDDING, "content hash unchanged")
        return StageResult.ok(STAGE_EMBEDDING, f"embedding_id={result.embedding_id}")

    @traced("pipeline.relationships")
    async def _relate(self, document_id: UUID, user_id: UUID, text: str) -> StageResult:
        try:
            created = await self._detector.detect(document_id, user_id, text)
        except RelationshipDetectionFailure as exc:
            logger.error("Pipeline | doc=%s relationship detection failed: %s", document_id, exc)
            return StageResult.failed(STAGE_RELATIONSHIPS, exc)
        return StageResult.ok(STAGE_RELATIONSHIPS, f"created={len(created)}")

    @traced("pipeline.insights")
    async def _generate_insights(self, document: NewDocument) -> StageResult:
        try:
            created = await self._insights.generate(
                document.user_id, document.id, document.category, document.name,
            )
        except InsightGenerationFailure as exc:
            logger.error("Pipeline | doc=%s insight generation failed: %s", document.id, exc)
            return StageResult.failed(STAGE_INSIGHTS, exc)
        return StageResult.ok(STAGE_INSIGHTS, f"created={len(created)}")

    # ------------------------------------------------------------------
    # Terminal writes
    # ------------------------------------------------------------------

    async def _complete(
        self,
        doc:            DocumentRecord,
        metadata:       dict[str, Any],
        diagnostics:    PipelineDiagnostics,
        category:       str | None,
        extraction:     ExtractionResult,
        classification: ClassificationResult | None = None,
    ) -> PipelineOutcome:
        metadata["processing_completed_at"] = _utcnow_iso()
        metadata["degraded_stages"] = diagnostics.degraded_stages
        metadata["failed_stages"]   = diagnostics.failed_stages

        await self._store.update_document(
            doc.id,
            status=ProcessingStatus.COMPLETED.value,
            processing_error=None,
            doc_metadata=metadata,
        )

        try:
            await self._store.append_activity_log(
                doc.user_id,
                ACTIVITY_DOCUMENT_PROCESSED,
                f"Processed document {doc.name}",
                {
                    "document_id":    str(doc.id),
                    "category":       category,
                    "quality":        metadata.get("quality"),
                    "ocr_confidence": extraction.confidence,
                    "ai_confidence":  classification.confidence if classification else None,
                    "language":       extraction.language,
                    "degraded":       diagnostics.degraded_stages,
                    "failed":         diagnostics.failed_stages,
                },
            )
            diagnostics.record(StageResult.ok(STAGE_ACTIVITY_LOG))
        except Exception as exc:
            logger.error("Pipeline | doc=%s activity log write failed: %s", doc.id, exc)
            diagnostics.record(StageResult.failed(STAGE_ACTIVITY_LOG, exc))

        logger.info(
            "Pipeline complete | doc=%s category=%s quality=%s degraded=%s failed=%s",
            doc.id, category, metadata.get("quality"),
            diagnostics.degraded_stages, diagnostics.failed_stages,
        )
        return PipelineOutcome(
            document_id=doc.id,
            final_status=ProcessingStatus.COMPLETED.value,
            diagnostics=diagnostics,
        )

    async def _mark_error(self, document_id: UUID, reason: str) -> None:
        try:
            await self._store.update_document(
                document_id,
                status=ProcessingStatus.ERROR.value,
                processing_error=reason,
            )
        except Exception as exc:
            # Left in 'processing' for the external sweep.
            logger.critical(
                "Pipeline | doc=%s could not record error status: %s (original: %s)",
                document_id, exc, reason,
            )

    async def _current_status(self, document_id: UUID, fallback: str) -> str:
        try:
            current = await self._store.get_document(document_id)
        except Exception as exc:
            logger.warning("Pipeline | doc=%s status re-read failed: %s", document_id, exc)
            return fallback
        return current.status if current else fallback

    @staticmethod
    def _failed_before_claim(
        document_id: UUID,
        diagnostics: PipelineDiagnostics,
        failure:     OrchestratorFailure,
    ) -> PipelineOutcome:
        logger.error("Pipeline | doc=%s %s", document_id, failure)
        diagnostics.record(StageResult.failed(STAGE_ORCHESTRATOR, failure))
        return PipelineOutcome(
            document_id=document_id,
            final_status=ProcessingStatus.ERROR.value,
            diagnostics=diagnostics,
            reason=str(failure),
        )
