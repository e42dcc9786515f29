"""
Insight Generator  —  Advisory Records from the User's Category Mix
═════════════════════════════════════════════════════════════════════

Rules
─────
Each rule is a pure function

    (histogram: Counter[str], document: NewDocument) -> list[InsightDraft]

kept in the ordered INSIGHT_RULES tuple. The generator runs every rule,
concatenates the drafts and persists them. New rules are appended; no rule
sees or alters another rule's output.

  1. missing_important_categories  → compliance insight naming the
                                     absent Identity / Financial /
                                     Insurance / Medical categories
  2. insurance_review              → opportunity insight for a new
                                     Insurance document
  3. tax_deduction_review          → opportunity insight for a new Tax
                                     document

Persistence
───────────
Additive only. A draft identical to an unacknowledged insight of the same
user (type, title, description, related documents) is not inserted again,
so reprocessing a document does not pile up copies.

The histogram counts the user's completed documents plus the document being
processed, which is still 'processing' while insights are generated.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Sequence
from uuid import UUID

from docvault.pipeline.errors import InsightGenerationFailure
from docvault.pipeline.store import DocumentStore, InsightRecord
from docvault.schemas.documents import DocumentCategory, ProcessingStatus, Urgency

logger = logging.getLogger(__name__)

IMPORTANT_CATEGORIES: tuple[str, ...] = (
    DocumentCategory.IDENTITY.value,
    DocumentCategory.FINANCIAL.value,
    DocumentCategory.INSURANCE.value,
    DocumentCategory.MEDICAL.value,
)

INSURANCE_SAVINGS_POTENTIAL = "₹7,500"
TAX_SAVINGS_POTENTIAL       = "₹46,800"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NewDocument:
    """The document whose processing triggered generation."""
    id:       UUID
    user_id:  UUID
    name:     str
    category: str | None
    tags:     tuple[str, ...] = ()


@dataclass
class InsightDraft:
    insight_type:         str
    title:                str
    description:          str
    priority:             Urgency = Urgency.MEDIUM
    savings_potential:    str | None = None
    action_required:      str | None = None
    related_document_ids: list[UUID] = field(default_factory=list)

    def to_record(self, user_id: UUID) -> InsightRecord:
        return InsightRecord(
            user_id=user_id,
            insight_type=self.insight_type,
            title=self.title,
            description=self.description,
            priority=self.priority.value,
            savings_potential=self.savings_potential,
            action_required=self.action_required,
            related_document_ids=sorted(self.related_document_ids, key=str),
        )


InsightRule = Callable[[Counter, NewDocument], list[InsightDraft]]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def missing_important_categories(histogram: Counter, document: NewDocument) -> list[InsightDraft]:
    missing = [c for c in IMPORTANT_CATEGORIES if histogram.get(c, 0) == 0]
    if not missing:
        return []
    return [
        InsightDraft(
            insight_type="compliance",
            title="Missing Important Documents",
            description=(
                f"Consider uploading {', '.join(missing)} documents for complete protection."
            ),
            priority=Urgency.MEDIUM,
            action_required="Upload missing documents",
        )
    ]


def insurance_review(histogram: Counter, document: NewDocument) -> list[InsightDraft]:
    if document.category != DocumentCategory.INSURANCE.value:
        return []
    return [
        InsightDraft(
            insight_type="opportunity",
            title="Insurance Premium Review",
            description=(
                f"Review the coverage in {document.name}: comparing premiums at renewal "
                f"and claiming the Section 80D deduction can reduce your costs."
            ),
            priority=Urgency.MEDIUM,
            savings_potential=INSURANCE_SAVINGS_POTENTIAL,
            action_required="Compare insurance rates before renewal",
            related_document_ids=[document.id],
        )
    ]


def tax_deduction_review(histogram: Counter, document: NewDocument) -> list[InsightDraft]:
    if document.category != DocumentCategory.TAX.value:
        return []
    return [
        InsightDraft(
            insight_type="opportunity",
            title="Tax Savings Opportunity",
            description=(
                f"Based on {document.name}, review Section 80C investments such as ELSS "
                f"funds to reduce your tax liability."
            ),
            priority=Urgency.HIGH,
            savings_potential=TAX_SAVINGS_POTENTIAL,
            action_required="Review tax deductions before March 31st",
            related_document_ids=[document.id],
        )
    ]


INSIGHT_RULES: tuple[InsightRule, ...] = (
    missing_important_categories,
    insurance_review,
    tax_deduction_review,
)


def build_histogram(categories: Sequence[str | None]) -> Counter:
    return Counter(c for c in categories if c)


def evaluate_rules(
    histogram: Counter,
    document:  NewDocument,
    rules:     Sequence[InsightRule] = INSIGHT_RULES,
) -> list[InsightDraft]:
    drafts: list[InsightDraft] = []
    for rule in rules:
        drafts.extend(rule(histogram, document))
    return drafts


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class InsightGenerator:
    """
    Usage:
        generator = InsightGenerator(store)
        created   = await generator.generate(user_id, doc.id, "Insurance")
    """

    def __init__(
        self,
        store: DocumentStore,
        rules: Sequence[InsightRule] = INSIGHT_RULES,
    ) -> None:
        self._store = store
        self._rules = tuple(rules)

    async def generate(
        self,
        user_id:         UUID,
        new_document_id: UUID,
        category:        str | None,
        document_name:   str = "",
    ) -> list[InsightRecord]:
        """
        Evaluate every rule and insert the drafts not already open.

        Returns the insights inserted by this call.
        """
        try:
            return await self._generate(user_id, new_document_id, category, document_name)
        except InsightGenerationFailure:
            raise
        except Exception as exc:
            raise InsightGenerationFailure(
                f"Insight generation failed: {type(exc).__name__}: {exc}",
                document_id=new_document_id,
            ) from exc

    async def _generate(
        self,
        user_id:         UUID,
        new_document_id: UUID,
        category:        str | None,
        document_name:   str,
    ) -> list[InsightRecord]:
        completed = await self._store.list_documents(
            user_id,
            status=ProcessingStatus.COMPLETED.value,
            exclude_id=new_document_id,
        )
        histogram = build_histogram([d.category for d in completed] + [category])
        document  = NewDocument(
            id=new_document_id,
            user_id=user_id,
            name=document_name or str(new_document_id),
            category=category,
        )

        drafts  = evaluate_rules(histogram, document, self._rules)
        created: list[InsightRecord] = []
        for draft in drafts:
            record = draft.to_record(user_id)
            if await self._store.has_open_insight(record):
                logger.debug(
                    "Insights | user=%s skipping open duplicate title=%r", user_id, record.title,
                )
                continue
            record.id = await self._store.insert_insight(record)
            created.append(record)

        logger.info(
            "Insights | user=%s doc=%s histogram=%s drafts=%d created=%d",
            user_id, new_document_id, dict(histogram), len(drafts), len(created),
        )
        return created
