"""
Content Classifier  —  Structured LLM Completion with Rule-Based Fallback
═════════════════════════════════════════════════════════════════════════

Flow
────
  1. LLMGateway.complete_json(SYSTEM_PROMPT, text[:4000], filename)
  2. parse_completion() → ClassificationPayload (strict pydantic schema)
  3. On LLMGatewayError or ClassificationParseFailure:
       RuleBasedClassifier.classify(text, filename)

Nothing from a rejected completion survives: a payload either validates
completely or is discarded in favour of the rule-based result.

Confidence
──────────
  live parse  → model-reported confidence clamped to [90, 98], default 95
  rule-based  → RULE_BASED_CONFIDENCE (85)

Rule table
──────────
RuleBasedClassifier is driven by CLASSIFICATION_RULES, an ordered tuple of
CategoryRule rows. A rule is chosen by filename first; otherwise by the
number of keyword hits in the text (ties go to the earlier row). Adding a
document type means appending a row.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Sequence

from pydantic import ValidationError

from docvault.llm.gateway import LLMGateway, LLMGatewayError
from docvault.pipeline.errors import ClassificationParseFailure
from docvault.schemas.documents import (
    ClassificationPayload,
    DocumentCategory,
    ExpiryInfo,
    KeyFacts,
    RiskAssessment,
    Urgency,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

LIVE_CONFIDENCE_MIN     = 90.0
LIVE_CONFIDENCE_MAX     = 98.0
LIVE_CONFIDENCE_DEFAULT = 95.0
RULE_BASED_CONFIDENCE   = 85.0

SYSTEM_PROMPT = """You are a document analysis assistant for a personal document vault.
Analyse the document and reply with ONE JSON object and nothing else, using exactly this shape:

{
  "category": one of "Identity", "Financial", "Insurance", "Medical", "Legal",
              "Personal", "Business", "Tax", "Education",
  "summary": "one or two plain sentences describing the document",
  "key_facts": {
    "dates": ["..."],
    "amounts": ["..."],
    "identifiers": ["ID, account, policy or registration numbers"],
    "names": ["..."],
    "addresses": ["..."],
    "other": {}
  },
  "tags": ["3 to 6 short lower-case tags"],
  "expiry_info": {"has_expiry": true|false, "expiry_date": "YYYY-MM-DD" or null,
                  "days_until_expiry": integer or null},
  "risk_assessment": {"level": "low"|"medium"|"high", "factors": ["..."]},
  "confidence": number between 0 and 100
}

Rules:
- Use only information present in the document.
- Dates in expiry_info must be ISO formatted (YYYY-MM-DD).
- If the document does not expire, set has_expiry to false and expiry_date to null."""


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ClassificationResult:
    """
    category        : DocumentCategory value
    summary         : one-sentence (rules) or model-written summary
    key_facts       : structured facts
    tags            : ≥1 lower-case tags
    expiry_info     : present when the document carries an expiry
    risk_assessment : optional risk level + factors
    confidence      : 0–100
    source          : "llm" | "rules"
    error           : reason the live path was abandoned (rules only)
    """
    category:        str
    summary:         str
    key_facts:       KeyFacts
    tags:            list[str]
    confidence:      float
    source:          str
    expiry_info:     ExpiryInfo | None = None
    risk_assessment: RiskAssessment | None = None
    error:           str | None = None

    @property
    def degraded(self) -> bool:
        return self.source != "llm"

    def document_fields(self) -> dict[str, Any]:
        """Columns written back onto the document (metadata merged by caller)."""
        return {
            "category":      self.category,
            "ai_summary":    self.summary,
            "ai_confidence": self.confidence,
            "tags":          list(self.tags),
            "key_facts":     self.key_facts.model_dump(mode="json"),
        }

    def metadata_fields(self) -> dict[str, Any]:
        return {
            "expiry_info": (
                self.expiry_info.model_dump(mode="json") if self.expiry_info else None
            ),
            "risk_assessment": (
                self.risk_assessment.model_dump(mode="json") if self.risk_assessment else None
            ),
            "classification_source": self.source,
        }


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


def parse_completion(content: str) -> ClassificationPayload:
    """
    Strictly parse a completion into ClassificationPayload.

    Raises:
        ClassificationParseFailure for malformed JSON, a non-object payload
        or any schema violation.
    """
    fenced = _FENCE_RE.match(content or "")
    raw    = fenced.group(1) if fenced else (content or "")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ClassificationParseFailure(f"Completion is not valid JSON: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise ClassificationParseFailure(
            f"Completion must be a JSON object, got {type(data).__name__}"
        )

    try:
        return ClassificationPayload.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
        raise ClassificationParseFailure(f"Completion violates schema at: {fields}") from exc


def clamp_confidence(value: float | None) -> float:
    if value is None:
        return LIVE_CONFIDENCE_DEFAULT
    return max(LIVE_CONFIDENCE_MIN, min(LIVE_CONFIDENCE_MAX, float(value)))


def days_until(expiry: date, today: date | None = None) -> int:
    return (expiry - (today or date.today())).days


def assess_expiry_risk(days: int) -> RiskAssessment:
    if days < 0:
        return RiskAssessment(level=Urgency.HIGH, factors=["Document has expired"])
    if days <= 30:
        return RiskAssessment(level=Urgency.HIGH, factors=[f"Expires in {days} days"])
    if days <= 90:
        return RiskAssessment(level=Urgency.MEDIUM, factors=[f"Expires in {days} days"])
    return RiskAssessment(level=Urgency.LOW, factors=[])


# ---------------------------------------------------------------------------
# Regex extraction (rule-based path)
# ---------------------------------------------------------------------------

_MONTHS = "jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec"

_DATE_PATTERN = (
    r"\d{1,2}[/-]\d{1,2}[/-]\d{4}"
    rf"|\d{{1,2}}[- ](?:{_MONTHS})[a-z]*[- ]\d{{4}}"
    r"|\d{4}-\d{2}-\d{2}"
)
DATE_RE = re.compile(rf"\b(?:{_DATE_PATTERN})\b", re.IGNORECASE)

EXPIRY_RE = re.compile(
    r"(?:date of expiry|expiry date|expires on|valid till|valid upto|valid until"
    r"|policy end date|renewal date)\s*[:\-]?\s*"
    rf"((?:{_DATE_PATTERN}))",
    re.IGNORECASE,
)

AMOUNT_RE = re.compile(r"(?:₹|rs\.?|inr)\s?\d[\d,]*(?:\.\d{1,2})?", re.IGNORECASE)

CLOSING_BALANCE_RE = re.compile(
    r"closing balance\s*[:\-]?\s*((?:₹|rs\.?|inr)?\s?\d[\d,]*(?:\.\d{1,2})?)",
    re.IGNORECASE,
)

IDENTIFIER_RES: tuple[re.Pattern, ...] = (
    re.compile(r"\b\d{4}\s\d{4}\s\d{4}\b"),                  # Aadhaar
    re.compile(r"\b[A-Z]{5}\d{4}[A-Z]\b"),                   # PAN
    re.compile(r"\b[A-Z]\d{7}\b"),                            # passport
    re.compile(
        r"(?:account|policy|licence|license|passport|certificate)\s*"
        r"(?:no\.?|number)\s*[:\-]?\s*([A-Z0-9][A-Z0-9/\-]{4,}(?: [A-Z0-9]{5,})?)",
        re.IGNORECASE,
    ),
)

NAME_RE = re.compile(
    r"^\s*(?:name|father's name|policy holder|account holder|nominee|patient name)\s*:\s*(.+?)\s*$",
    re.IGNORECASE | re.MULTILINE,
)

ADDRESS_RE = re.compile(r"^\s*address\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)

_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d-%b-%Y", "%d %b %Y", "%d-%B-%Y", "%d %B %Y", "%Y-%m-%d")


def parse_date(value: str) -> date | None:
    cleaned = value.strip().replace("Sept", "Sep").replace("sept", "sep")
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def _unique(values: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(v.strip() for v in values if v and v.strip()))


def extract_key_facts(text: str) -> KeyFacts:
    identifiers: list[str] = []
    for pattern in IDENTIFIER_RES:
        for match in pattern.finditer(text):
            identifiers.append(match.group(1) if match.groups() else match.group(0))

    other: dict[str, Any] = {}
    closing = CLOSING_BALANCE_RE.search(text)
    if closing:
        other["closing_balance"] = closing.group(1).strip()

    return KeyFacts(
        dates=_unique(DATE_RE.findall(text)),
        amounts=_unique(AMOUNT_RE.findall(text)),
        identifiers=_unique(identifiers),
        names=_unique(NAME_RE.findall(text)),
        addresses=_unique(ADDRESS_RE.findall(text)),
        other=other,
    )


def extract_expiry(text: str) -> date | None:
    match = EXPIRY_RE.search(text)
    return parse_date(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CategoryRule:
    """
    filename : regex searched in the lower-cased filename
    keywords : lower-case substrings counted in the lower-cased text
    """
    document_type: str
    category:      DocumentCategory
    summary:       str
    tags:          tuple[str, ...]
    filename:      re.Pattern | None = None
    keywords:      tuple[str, ...] = ()

    def matches_filename(self, filename: str) -> bool:
        return bool(self.filename and self.filename.search(filename.lower()))

    def keyword_hits(self, lowered_text: str) -> int:
        return sum(1 for kw in self.keywords if kw in lowered_text)


CLASSIFICATION_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        document_type="Aadhaar Card",
        category=DocumentCategory.IDENTITY,
        summary="Aadhaar card issued by the Unique Identification Authority of India",
        tags=("identity", "government", "aadhaar", "address-proof"),
        filename=re.compile(r"aadhaa?r"),
        keywords=("aadhaar", "unique identification authority"),
    ),
    CategoryRule(
        document_type="PAN Card",
        category=DocumentCategory.IDENTITY,
        summary="PAN card issued by the Income Tax Department",
        tags=("identity", "tax", "pan", "government"),
        filename=re.compile(r"(?:^|[^a-z])pan(?:card)?(?:[^a-z]|$)"),
        keywords=("permanent account number",),
    ),
    CategoryRule(
        document_type="Passport",
        category=DocumentCategory.IDENTITY,
        summary="Passport issued by the Republic of India",
        tags=("identity", "travel", "passport", "government"),
        filename=re.compile(r"passport"),
        keywords=("passport", "nationality", "place of birth"),
    ),
    CategoryRule(
        document_type="Driving Licence",
        category=DocumentCategory.IDENTITY,
        summary="Driving licence authorising the holder to drive listed vehicle classes",
        tags=("identity", "driving", "licence", "government"),
        filename=re.compile(r"driving|licen[cs]e"),
        keywords=("driving licence", "driving license", "class of vehicle"),
    ),
    CategoryRule(
        document_type="Bank Statement",
        category=DocumentCategory.FINANCIAL,
        summary="Bank account statement",
        tags=("financial", "bank", "statement"),
        filename=re.compile(r"statement|bank|passbook"),
        keywords=("account statement", "closing balance", "opening balance", "ifsc", "bank"),
    ),
    CategoryRule(
        document_type="Insurance Policy",
        category=DocumentCategory.INSURANCE,
        summary="Insurance policy document with coverage and premium details",
        tags=("insurance", "policy", "coverage", "premium"),
        filename=re.compile(r"insurance|policy|mediclaim"),
        keywords=("insurance", "policy number", "sum insured", "premium", "nominee"),
    ),
    CategoryRule(
        document_type="Income Tax Document",
        category=DocumentCategory.TAX,
        summary="Income tax document for the stated assessment year",
        tags=("tax", "income-tax"),
        filename=re.compile(r"(?:^|[^a-z])itr|form[-_ ]?16|tax"),
        keywords=("income tax return", "assessment year", "form 16", "tds", "taxable income"),
    ),
    CategoryRule(
        document_type="Medical Record",
        category=DocumentCategory.MEDICAL,
        summary="Medical record with patient and treatment details",
        tags=("medical", "health"),
        filename=re.compile(r"prescription|medical|hospital|discharge|lab[-_ ]?report"),
        keywords=("diagnosis", "prescription", "patient", "hospital", "dosage"),
    ),
    CategoryRule(
        document_type="Legal Agreement",
        category=DocumentCategory.LEGAL,
        summary="Legal agreement setting out obligations between the parties",
        tags=("legal", "agreement"),
        filename=re.compile(r"agreement|contract|deed|affidavit"),
        keywords=("agreement", "hereinafter", "witness", "deed", "jurisdiction"),
    ),
    CategoryRule(
        document_type="Education Certificate",
        category=DocumentCategory.EDUCATION,
        summary="Education record issued by an academic institution",
        tags=("education", "certificate"),
        filename=re.compile(r"marksheet|degree|transcript|diploma"),
        keywords=("university", "semester", "marks obtained", "grade", "degree"),
    ),
    CategoryRule(
        document_type="Business Document",
        category=DocumentCategory.BUSINESS,
        summary="Business document such as an invoice or registration",
        tags=("business", "invoice"),
        filename=re.compile(r"invoice|gst|business"),
        keywords=("gstin", "invoice", "tax invoice", "company"),
    ),
)

GENERIC_RULE = CategoryRule(
    document_type="General Document",
    category=DocumentCategory.PERSONAL,
    summary="General personal document",
    tags=("document", "personal"),
)


# ---------------------------------------------------------------------------
# Rule-based classifier
# ---------------------------------------------------------------------------

class RuleBasedClassifier:
    """
    Deterministic classifier used when the live path fails.

    Always returns a category, a one-sentence summary and at least one tag.
    """

    def __init__(
        self,
        rules:   Sequence[CategoryRule] = CLASSIFICATION_RULES,
        generic: CategoryRule = GENERIC_RULE,
    ) -> None:
        self._rules   = tuple(rules)
        self._generic = generic

    def select_rule(self, text: str, filename: str) -> CategoryRule:
        for rule in self._rules:
            if rule.matches_filename(filename):
                return rule

        lowered = text.lower()
        best, best_hits = self._generic, 0
        for rule in self._rules:
            hits = rule.keyword_hits(lowered)
            if hits > best_hits:
                best, best_hits = rule, hits
        return best

    def classify(
        self,
        text:     str,
        filename: str,
        error:    str | None = None,
        today:    date | None = None,
    ) -> ClassificationResult:
        rule      = self.select_rule(text, filename)
        key_facts = extract_key_facts(text)
        key_facts.other.setdefault("document_type", rule.document_type)

        expiry_info: ExpiryInfo | None = None
        risk: RiskAssessment | None = None
        expiry = extract_expiry(text)
        if expiry is not None:
            days        = days_until(expiry, today)
            expiry_info = ExpiryInfo(has_expiry=True, expiry_date=expiry, days_until_expiry=days)
            risk        = assess_expiry_risk(days)

        summary = self._summarise(rule, key_facts, expiry)

        logger.info(
            "RuleBasedClassifier | file=%s rule=%s category=%s expiry=%s",
            filename, rule.document_type, rule.category.value, expiry,
        )
        return ClassificationResult(
            category=rule.category.value,
            summary=summary,
            key_facts=key_facts,
            tags=list(rule.tags),
            confidence=RULE_BASED_CONFIDENCE,
            source="rules",
            expiry_info=expiry_info,
            risk_assessment=risk,
            error=error,
        )

    @staticmethod
    def _summarise(rule: CategoryRule, facts: KeyFacts, expiry: date | None) -> str:
        parts = [rule.summary]
        if facts.names:
            parts.append(f"for {facts.names[0]}")
        closing = facts.other.get("closing_balance")
        if closing:
            parts.append(f"with a closing balance of {closing}")
        if expiry is not None:
            parts.append(f"valid until {expiry.strftime('%d %b %Y')}")
        return " ".join(parts) + "."


# ---------------------------------------------------------------------------
# Content classifier (live + fallback)
# ---------------------------------------------------------------------------

class ContentClassifier:
    """
    Usage:
        classifier = ContentClassifier(gateway=LLMGateway())
        result     = await classifier.classify(text, "sbi_march.pdf")
    """

    def __init__(
        self,
        gateway:       LLMGateway | None = None,
        fallback:      RuleBasedClassifier | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._gateway       = gateway or LLMGateway()
        self._fallback      = fallback or RuleBasedClassifier()
        self._system_prompt = system_prompt

    async def classify(self, text: str, filename: str) -> ClassificationResult:
        try:
            response = await self._gateway.complete_json(self._system_prompt, text, filename)
            payload  = parse_completion(response.content)
        except (LLMGatewayError, ClassificationParseFailure) as exc:
            logger.warning(
                "Classification | file=%s live path failed, using rules | error=%s",
                filename, exc,
            )
            return self._fallback.classify(text, filename, error=str(exc))

        return self._from_payload(payload, filename)

    @staticmethod
    def _from_payload(payload: ClassificationPayload, filename: str) -> ClassificationResult:
        expiry_info = payload.expiry_info
        if expiry_info is not None and expiry_info.has_expiry and expiry_info.expiry_date:
            if expiry_info.days_until_expiry is None:
                expiry_info = expiry_info.model_copy(
                    update={"days_until_expiry": days_until(expiry_info.expiry_date)}
                )

        confidence = clamp_confidence(payload.confidence)
        logger.info(
            "Classification | file=%s source=llm category=%s confidence=%.1f tags=%d",
            filename, payload.category.value, confidence, len(payload.tags),
        )
        return ClassificationResult(
            category=payload.category.value,
            summary=payload.summary,
            key_facts=payload.key_facts,
            tags=list(payload.tags),
            confidence=confidence,
            source="llm",
            expiry_info=expiry_info,
            risk_assessment=payload.risk_assessment,
        )
