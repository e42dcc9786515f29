"""
Pipeline Error Taxonomy & Per-Stage Results

Every stage reports a StageResult; the orchestrator aggregates them in
PipelineDiagnostics and returns them with the terminal status.

  ExtractionFailure            → recovered locally (fallback stub)
  ClassificationParseFailure   → recovered locally (rule-based classifier)
  EmbeddingFailure             ┐
  RelationshipDetectionFailure ├ logged, stage marked failed, document completes
  InsightGenerationFailure     ┘
  OrchestratorFailure          → document forced to 'error', reason persisted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base class for every error raised inside the document pipeline."""

    stage: str = "pipeline"

    def __init__(self, message: str, *, document_id: object | None = None) -> None:
        super().__init__(message)
        self.message     = message
        self.document_id = document_id

    def __str__(self) -> str:
        return self.message


class ExtractionFailure(PipelineError):
    """OCR service unreachable, erroring, timed out, or returned no text."""
    stage = "extraction"


class ClassificationParseFailure(PipelineError):
    """LLM reply was missing, malformed JSON, or violated the payload schema."""
    stage = "classification"


class EmbeddingFailure(PipelineError):
    stage = "embedding"


class RelationshipDetectionFailure(PipelineError):
    stage = "relationships"


class InsightGenerationFailure(PipelineError):
    stage = "insights"


class OrchestratorFailure(PipelineError):
    """Store unreachable, document missing, or any unexpected failure."""
    stage = "orchestrator"


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------

class StageStatus(str, Enum):
    OK       = "ok"
    DEGRADED = "degraded"    # stage succeeded through its fallback path
    SKIPPED  = "skipped"     # not run (confidence gate, idempotent no-op)
    FAILED   = "failed"      # stage raised; pipeline continued without it


@dataclass
class StageResult:
    stage:  str
    status: StageStatus
    detail: str | None = None
    error:  str | None = None

    @classmethod
    def ok(cls, stage: str, detail: str | None = None) -> "StageResult":
        return cls(stage=stage, status=StageStatus.OK, detail=detail)

    @classmethod
    def degraded(cls, stage: str, detail: str | None = None, error: str | None = None) -> "StageResult":
        return cls(stage=stage, status=StageStatus.DEGRADED, detail=detail, error=error)

    @classmethod
    def skipped(cls, stage: str, detail: str | None = None) -> "StageResult":
        return cls(stage=stage, status=StageStatus.SKIPPED, detail=detail)

    @classmethod
    def failed(cls, stage: str, error: BaseException | str) -> "StageResult":
        return cls(stage=stage, status=StageStatus.FAILED, error=str(error))


@dataclass
class PipelineDiagnostics:
    """Ordered per-stage record for one pipeline invocation."""
    stages: list[StageResult] = field(default_factory=list)

    def record(self, result: StageResult) -> StageResult:
        self.stages.append(result)
        return result

    def get(self, stage: str) -> StageResult | None:
        for result in reversed(self.stages):
            if result.stage == stage:
                return result
        return None

    def status_of(self, stage: str) -> StageStatus | None:
        result = self.get(stage)
        return result.status if result else None

    def ran(self, stage: str) -> bool:
        """True if the stage was attempted (any status except skipped)."""
        status = self.status_of(stage)
        return status is not None and status is not StageStatus.SKIPPED

    @property
    def degraded_stages(self) -> list[str]:
        return [r.stage for r in self.stages if r.status is StageStatus.DEGRADED]

    @property
    def failed_stages(self) -> list[str]:
        return [r.stage for r in self.stages if r.status is StageStatus.FAILED]
