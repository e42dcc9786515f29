"""
Document Processing Package
════════════════════════════

The per-stage building blocks the pipeline orchestrator sequences:

  Text Extraction → Classification → (Embedding ∥ Relationships ∥ Insights)

Modules
───────
  ocr.py            OCR strategies (Google Vision → deterministic stub table)
  extractor.py      Cascade that always yields text + confidence + language
  classifier.py     Structured LLM classification with a rule-based fallback
  embeddings.py     Idempotent single-vector embedding per document
  relationships.py  Jaccard duplicate / related detection
  insights.py       Ordered pure-rule insight generation
  reminders.py      Expiry and tax-deadline reminder scheduling

Design principles
─────────────────
  • Every component is stateless apart from its injected store / client.
  • External calls carry a timeout and degrade instead of retrying.
  • Every step emits `Stage | key=value` log lines.
"""

from docvault.processing.classifier import ClassificationResult, ContentClassifier, RuleBasedClassifier
from docvault.processing.embeddings import EmbeddingIndexer, IndexResult
from docvault.processing.extractor import ExtractionResult, TextExtractor
from docvault.processing.insights import InsightGenerator, NewDocument
from docvault.processing.relationships import RelationshipDetector
from docvault.processing.reminders import ReminderScheduler

__all__ = [
    "ClassificationResult",
    "ContentClassifier",
    "RuleBasedClassifier",
    "EmbeddingIndexer",
    "IndexResult",
    "ExtractionResult",
    "TextExtractor",
    "InsightGenerator",
    "NewDocument",
    "RelationshipDetector",
    "ReminderScheduler",
]
