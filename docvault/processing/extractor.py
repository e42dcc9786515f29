"""
Text Extraction Orchestrator
════════════════════════════

Owns the OCR strategy cascade for one document:

  1.  Resolve the stored file reference to a URI (FileStorage)
  2.  Live OCR strategy (Google Vision) under a hard timeout
  3.  On ExtractionFailure, timeout or empty text → deterministic fallback
  4.  Return ExtractionResult with the strategy used and the recovered error

This is the only place that knows about the cascade. The orchestrator sees
ExtractionResult and nothing else; extraction never fails a document.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from docvault.pipeline.errors import ExtractionFailure
from docvault.processing.ocr import (
    BaseOcrStrategy,
    FallbackOcr,
    GoogleVisionOcr,
    OcrResult,
    language_hints,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    text          : extracted (or stubbed) text
    confidence    : 0–100
    language      : ISO-639-1 code
    strategy_used : "google_vision" | "fallback_stub" | …
    degraded      : True when the fallback produced the text
    error         : the recovered ExtractionFailure message, if any
    elapsed_ms    : total extraction wall time
    """
    text:          str
    confidence:    float
    language:      str
    strategy_used: str
    degraded:      bool = False
    error:         str | None = None
    elapsed_ms:    float = 0.0


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Stateless cascade over (primary, fallback) OCR strategies.

    Usage:
        extractor = TextExtractor.from_settings(storage)
        result    = await extractor.extract(doc.storage_path, doc.name)
    """

    def __init__(
        self,
        primary:  BaseOcrStrategy,
        fallback: BaseOcrStrategy | None = None,
        storage=None,                       # FileStorage; None → refs used as-is
        timeout:  float = 30.0,
    ) -> None:
        self._primary  = primary
        self._fallback = fallback or FallbackOcr()
        self._storage  = storage
        self._timeout  = timeout

    @classmethod
    def from_settings(cls, storage=None, client=None) -> "TextExtractor":
        from docvault.core.config import settings

        primary = GoogleVisionOcr(
            api_key=settings.google_vision_api_key,
            endpoint=settings.ocr_endpoint,
            timeout=settings.ocr_timeout_seconds,
            client=client,
        )
        return cls(
            primary=primary,
            storage=storage,
            timeout=settings.ocr_timeout_seconds,
        )

    async def extract(
        self,
        file_ref:      str,
        filename:      str,
        language_hint: str | None = "auto",
    ) -> ExtractionResult:
        """
        Run the cascade and return a unified ExtractionResult.

        ┌──────────────────────────────────────────────────────────────┐
        │  resolve(file_ref) ──► primary.extract(uri)                  │
        │        │                    │                                │
        │        │ failure            ├── text  → done ✓ (live)        │
        │        ▼                    └── ExtractionFailure / timeout  │
        │  fallback.extract(filename) ◄───────────┘                    │
        │        └── deterministic stub → done ✓ (degraded)            │
        └──────────────────────────────────────────────────────────────┘
        """
        t0    = time.monotonic()
        hints = language_hints(language_hint)

        try:
            uri    = await self._resolve(file_ref)
            result = await asyncio.wait_for(
                self._primary.extract(uri, filename, hints),
                timeout=self._timeout,
            )
            if not result.text.strip():
                raise ExtractionFailure("OCR returned empty text")
            return self._build_result(result, t0)

        except asyncio.TimeoutError:
            error = f"OCR timed out after {self._timeout}s"
        except ExtractionFailure as exc:
            error = str(exc)
        except Exception as exc:
            # Storage and unexpected strategy errors degrade the same way.
            error = f"{type(exc).__name__}: {exc}"

        logger.warning(
            "Extraction | file=%s strategy=%s failed, using fallback | error=%s",
            filename, self._primary.strategy_name, error,
        )
        stub = await self._fallback.extract(file_ref, filename, hints)
        return self._build_result(stub, t0, degraded=True, error=error)

    async def _resolve(self, file_ref: str) -> str:
        if self._storage is None:
            return file_ref
        return await self._storage.resolve(file_ref)

    @staticmethod
    def _build_result(
        result:   OcrResult,
        t0:       float,
        degraded: bool = False,
        error:    str | None = None,
    ) -> ExtractionResult:
        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | strategy=%s chars=%d confidence=%.1f language=%s "
            "degraded=%s elapsed_ms=%.0f",
            result.strategy_name, len(result.text), result.confidence,
            result.language, degraded, elapsed_ms,
        )
        return ExtractionResult(
            text=result.text,
            confidence=result.confidence,
            language=result.language,
            strategy_used=result.strategy_name,
            degraded=degraded,
            error=error,
            elapsed_ms=elapsed_ms,
        )
