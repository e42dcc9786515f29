"""
Relationship Detector — lexical duplicate / related links between documents.

For a newly processed document, every other completed document of the same
user with non-empty text is scored with token-set Jaccard similarity:

    |tokens(A) ∩ tokens(B)| / |tokens(A) ∪ tokens(B)|

on lower-cased, whitespace-split text.

    score > duplicate_threshold (0.8)          → duplicate
    related_threshold (0.5) < score ≤ 0.8      → related
    otherwise                                  → nothing recorded

Scaling limit: O(n) full-text comparisons per document against the user's
corpus, re-tokenising every candidate. Fine for a personal vault; a larger
corpus needs length/shingle bucketing or a nearest-neighbour query over the
stored embeddings instead.
"""

from __future__ import annotations

import logging
from uuid import UUID

from docvault.pipeline.errors import RelationshipDetectionFailure
from docvault.pipeline.store import DocumentStore, RelationshipRecord
from docvault.schemas.documents import ProcessingStatus, RelationshipType

logger = logging.getLogger(__name__)

SIMILARITY_METHOD = "jaccard_token_set"


def tokenize(text: str) -> frozenset[str]:
    return frozenset(text.lower().split())


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """Symmetric by construction; two empty sets score 0.0."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def text_similarity(text_a: str, text_b: str) -> float:
    return jaccard(tokenize(text_a), tokenize(text_b))


class RelationshipDetector:

    def __init__(
        self,
        store:               DocumentStore,
        duplicate_threshold: float | None = None,
        related_threshold:   float | None = None,
    ) -> None:
        from docvault.core.config import settings

        self._store     = store
        self._duplicate = settings.duplicate_threshold if duplicate_threshold is None else duplicate_threshold
        self._related   = settings.related_threshold if related_threshold is None else related_threshold

    def classify_score(self, score: float) -> RelationshipType | None:
        if score > self._duplicate:
            return RelationshipType.DUPLICATE
        if score > self._related:
            return RelationshipType.RELATED
        return None

    async def detect(
        self,
        document_id: UUID,
        user_id:     UUID,
        text:        str,
    ) -> list[RelationshipRecord]:
        """
        Score the document against the user's corpus and record new links.

        Returns the relationships inserted by this call. Pairs already linked
        with the same type, in either direction, are left alone.
        """
        try:
            return await self._detect(document_id, user_id, text)
        except RelationshipDetectionFailure:
            raise
        except Exception as exc:
            raise RelationshipDetectionFailure(
                f"Relationship detection failed: {type(exc).__name__}: {exc}",
                document_id=document_id,
            ) from exc

    async def _detect(
        self,
        document_id: UUID,
        user_id:     UUID,
        text:        str,
    ) -> list[RelationshipRecord]:
        tokens = tokenize(text or "")
        if not tokens:
            logger.info("Relationships | doc=%s no tokens, nothing to compare", document_id)
            return []

        candidates = await self._store.list_documents(
            user_id,
            status=ProcessingStatus.COMPLETED.value,
            exclude_id=document_id,
            require_text=True,
        )

        created: list[RelationshipRecord] = []
        for candidate in candidates:
            score = jaccard(tokens, tokenize(candidate.extracted_text or ""))
            rel_type = self.classify_score(score)
            if rel_type is None:
                continue

            if await self._store.relationship_exists(document_id, candidate.id, rel_type.value):
                logger.debug(
                    "Relationships | pair already linked doc=%s other=%s type=%s",
                    document_id, candidate.id, rel_type.value,
                )
                continue

            record = RelationshipRecord(
                document_id_1=document_id,
                document_id_2=candidate.id,
                relationship_type=rel_type.value,
                confidence_score=round(score * 100, 2),
                ai_detected=True,
                metadata={"similarity": round(score, 4), "method": SIMILARITY_METHOD},
            )
            record.id = await self._store.insert_relationship(record)
            created.append(record)

        logger.info(
            "Relationships | doc=%s candidates=%d created=%d",
            document_id, len(candidates), len(created),
        )
        return created
