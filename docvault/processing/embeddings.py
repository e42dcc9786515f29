"""
Embedding Indexer  —  One Idempotent Embedding per Document
══════════════════════════════════════════════════════════════

Design goals:
  • Cost control: text is truncated to EMBEDDING_MAX_CHARS before the call
  • Idempotency: SHA-256 of the truncated text is the content hash; if the
    stored embedding already carries it, no API call is made
  • Bounded latency: one attempt under asyncio.wait_for, no in-pipeline
    retry; a failed document is re-embedded on its next reprocess
  • Upsert: the store keeps exactly one row per document

OpenAI embedding model selection:
  text-embedding-3-small  → 1536 dims, ~$0.00002/1K tokens  (default)
  text-embedding-3-large  → 3072 dims, ~$0.00013/1K tokens  (higher accuracy)
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from uuid import UUID

from docvault.pipeline.errors import EmbeddingFailure
from docvault.pipeline.store import DocumentStore, EmbeddingRecord

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

EMBEDDING_MAX_CHARS = 8000

# Approximate tokens per character for cost estimation
CHARS_PER_TOKEN_EST = 4


def truncate_for_embedding(text: str, max_chars: int = EMBEDDING_MAX_CHARS) -> str:
    return text[:max_chars]


def content_hash(text: str) -> str:
    """Hex SHA-256 of the UTF-8 text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class IndexResult:
    """
    embedding_id  : id of the stored embedding (existing one when skipped)
    skipped       : True when no API call was made
    content_hash  : hash of the truncated text
    model_version : model that produced the stored vector
    tokens_est    : estimated tokens sent (0 when skipped)
    elapsed_ms    : wall time of the index call
    """
    embedding_id:  UUID | None
    skipped:       bool
    content_hash:  str
    model_version: str | None = None
    tokens_est:    int = 0
    elapsed_ms:    float = 0.0


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------

class EmbeddingIndexer:
    """
    Usage:
        indexer = EmbeddingIndexer(store)
        result  = await indexer.index(doc.id, doc.extracted_text)

    Pass `client` to inject an AsyncOpenAI-compatible object (tests use an
    AsyncMock on `client.embeddings.create`).
    """

    def __init__(
        self,
        store:     DocumentStore,
        client=None,
        model:     str | None = None,
        max_chars: int | None = None,
        timeout:   float | None = None,
    ) -> None:
        from docvault.core.config import settings

        self._store     = store
        self._client    = client
        self._model     = model or settings.embedding_model
        self._max_chars = max_chars or settings.embedding_max_chars
        self._timeout   = timeout or settings.embedding_timeout_seconds
        self._api_key   = settings.openai_api_key

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def index(self, document_id: UUID, text: str) -> IndexResult:
        """
        Embed the document's text unless the same content is already stored.

        Raises:
            EmbeddingFailure on empty text, timeout, provider error or a
            malformed response. The store is untouched in every failure case.
        """
        t0        = time.monotonic()
        truncated = truncate_for_embedding(text or "", self._max_chars)
        if not truncated.strip():
            raise EmbeddingFailure("No text to embed", document_id=document_id)

        digest   = content_hash(truncated)
        existing = await self._store.get_embedding(document_id)

        if existing is not None and existing.content_hash == digest:
            logger.info(
                "EmbeddingIndexer | doc=%s skipped (hash unchanged) hash=%s",
                document_id, digest[:12],
            )
            return IndexResult(
                embedding_id=existing.id,
                skipped=True,
                content_hash=digest,
                model_version=existing.model_version,
                elapsed_ms=(time.monotonic() - t0) * 1000,
            )

        vector = await self._embed(document_id, truncated)

        embedding_id = await self._store.upsert_embedding(
            EmbeddingRecord(
                document_id=document_id,
                vector=vector,
                content_hash=digest,
                model_version=self._model,
            )
        )

        tokens_est = max(1, len(truncated) // CHARS_PER_TOKEN_EST)
        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "EmbeddingIndexer done | doc=%s model=%s dims=%d chars=%d "
            "tokens_est=%d elapsed_ms=%.0f",
            document_id, self._model, len(vector), len(truncated), tokens_est, elapsed_ms,
        )
        return IndexResult(
            embedding_id=embedding_id,
            skipped=False,
            content_hash=digest,
            model_version=self._model,
            tokens_est=tokens_est,
            elapsed_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Single OpenAI call
    # ------------------------------------------------------------------

    async def _embed(self, document_id: UUID, text: str) -> list[float]:
        try:
            client   = self._get_client()
            response = await asyncio.wait_for(
                client.embeddings.create(model=self._model, input=[text]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingFailure(
                f"Embedding call timed out after {self._timeout}s", document_id=document_id,
            ) from exc
        except Exception as exc:
            raise EmbeddingFailure(
                f"Embedding call failed: {type(exc).__name__}: {exc}", document_id=document_id,
            ) from exc

        try:
            vector = list(response.data[0].embedding)
        except (AttributeError, IndexError, TypeError) as exc:
            raise EmbeddingFailure(
                "Embedding response contained no vector", document_id=document_id,
            ) from exc

        if not vector:
            raise EmbeddingFailure("Embedding vector is empty", document_id=document_id)
        return vector
