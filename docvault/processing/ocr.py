"""
OCR Strategy Pattern  —  Text Extraction from Uploaded Documents
════════════════════════════════════════════════════════════════

Design: Strategy + Matcher Table
────────────────────────────────
Two strategies, tried in order by TextExtractor (extractor.py):

  Strategy 1: Google Vision  (GoogleVisionOcr)
    - REST call to images:annotate with DOCUMENT_TEXT_DETECTION
    - Multi-language hints (Latin + Indic scripts)
    - Confidence LIVE_OCR_CONFIDENCE on success
    - Raises ExtractionFailure on non-2xx, transport error, API error
      object or empty text

  Strategy 2: Deterministic stub  (FallbackOcr)
    - No I/O; picks a template from FALLBACK_MATCHERS by filename
    - Same filename → same text, so downstream stages always have
      something to work on
    - Confidence FALLBACK_OCR_CONFIDENCE

New document types are added by appending a FallbackMatcher to the table,
never by branching in pipeline code.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

import httpx

from docvault.pipeline.errors import ExtractionFailure

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

LIVE_OCR_CONFIDENCE     = 95.0
FALLBACK_OCR_CONFIDENCE = 85.0

# "auto" expands to these Vision languageHints
AUTO_LANGUAGE_HINTS: tuple[str, ...] = ("en", "hi", "ta", "te", "bn")

VISION_FEATURES = (
    {"type": "DOCUMENT_TEXT_DETECTION"},
    {"type": "TEXT_DETECTION"},
)

# Unicode blocks → ISO-639-1 code
_SCRIPT_RANGES: tuple[tuple[str, int, int], ...] = (
    ("hi", 0x0900, 0x097F),   # Devanagari
    ("bn", 0x0980, 0x09FF),   # Bengali
    ("ta", 0x0B80, 0x0BFF),   # Tamil
    ("te", 0x0C00, 0x0C7F),   # Telugu
)


def language_hints(hint: str | None) -> list[str]:
    """Expand the caller's hint into the list sent to the OCR service."""
    if not hint or hint.strip().lower() == "auto":
        return list(AUTO_LANGUAGE_HINTS)
    return [hint.strip().lower()]


def detect_language(text: str) -> str:
    """
    Script-based language guess: the Indic script with the most characters
    wins; text with no Indic characters is 'en'.
    """
    counts: dict[str, int] = {}
    for ch in text:
        cp = ord(ch)
        if cp < 0x0900:
            continue
        for lang, lo, hi in _SCRIPT_RANGES:
            if lo <= cp <= hi:
                counts[lang] = counts.get(lang, 0) + 1
                break
    if not counts:
        return "en"
    return max(counts.items(), key=lambda kv: kv[1])[0]


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class OcrResult:
    """
    Output of a single strategy run.

    text          : extracted text (never empty on success)
    confidence    : 0–100
    language      : ISO-639-1 code
    strategy_name : "google_vision" | "fallback_stub" | …
    elapsed_ms    : wall-clock time for the strategy
    """
    text:          str
    confidence:    float
    language:      str
    strategy_name: str
    elapsed_ms:    float = 0.0


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class BaseOcrStrategy(ABC):
    """
    Abstract base for OCR strategies.

    Implementations are safe for concurrent use (no per-call mutable state)
    and raise ExtractionFailure rather than returning empty text.
    """

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Unique name for logging and diagnostics."""

    @abstractmethod
    async def extract(
        self,
        uri:            str,
        filename:       str,
        language_hints: Sequence[str],
    ) -> OcrResult:
        """Extract text from the document at `uri`."""


# ---------------------------------------------------------------------------
# Strategy 1: Google Vision
# ---------------------------------------------------------------------------

class GoogleVisionOcr(BaseOcrStrategy):
    """
    Google Cloud Vision `images:annotate` over httpx.

    The client may be injected (tests pass one built on httpx.MockTransport);
    otherwise a short-lived AsyncClient is opened per call.
    """

    def __init__(
        self,
        api_key:  str,
        endpoint: str = "https://vision.googleapis.com/v1/images:annotate",
        timeout:  float = 30.0,
        client:   httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key  = api_key
        self._endpoint = endpoint
        self._timeout  = timeout
        self._client   = client

    @property
    def strategy_name(self) -> str:
        return "google_vision"

    def build_request(self, uri: str, hints: Sequence[str]) -> dict[str, Any]:
        return {
            "requests": [
                {
                    "image":        {"source": {"imageUri": uri}},
                    "features":     [dict(f) for f in VISION_FEATURES],
                    "imageContext": {"languageHints": list(hints)},
                }
            ]
        }

    async def extract(
        self,
        uri:            str,
        filename:       str,
        language_hints: Sequence[str],
    ) -> OcrResult:
        if not self._api_key:
            raise ExtractionFailure("OCR service is not configured (no API key)")

        t0   = time.monotonic()
        body = self.build_request(uri, language_hints)

        try:
            if self._client is not None:
                response = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await self._post(client, body)
        except httpx.TimeoutException as exc:
            raise ExtractionFailure(f"OCR request timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExtractionFailure(f"OCR transport error: {type(exc).__name__}: {exc}") from exc

        if response.status_code // 100 != 2:
            raise ExtractionFailure(f"OCR service returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExtractionFailure("OCR service returned a non-JSON body") from exc

        text, language = self.parse_response(payload)
        elapsed_ms = (time.monotonic() - t0) * 1000

        logger.info(
            "GoogleVision | file=%s chars=%d language=%s elapsed_ms=%.0f",
            filename, len(text), language, elapsed_ms,
        )
        return OcrResult(
            text=text,
            confidence=LIVE_OCR_CONFIDENCE,
            language=language,
            strategy_name=self.strategy_name,
            elapsed_ms=elapsed_ms,
        )

    async def _post(self, client: httpx.AsyncClient, body: dict[str, Any]) -> httpx.Response:
        return await client.post(
            self._endpoint,
            params={"key": self._api_key},
            json=body,
            timeout=self._timeout,
        )

    @staticmethod
    def parse_response(payload: dict[str, Any]) -> tuple[str, str]:
        """
        Pull (text, language) out of an annotate response.

        Text comes from fullTextAnnotation, else the first textAnnotation.
        Language is the first page's first detected language, else a
        script-based guess on the text.
        """
        responses = payload.get("responses") or []
        if not responses:
            raise ExtractionFailure("OCR response contained no results")

        first = responses[0] or {}
        if first.get("error"):
            message = first["error"].get("message", "unknown error")
            raise ExtractionFailure(f"OCR service error: {message}")

        full  = first.get("fullTextAnnotation") or {}
        text  = full.get("text") or ""
        if not text.strip():
            annotations = first.get("textAnnotations") or []
            text = (annotations[0].get("description") if annotations else "") or ""
        if not text.strip():
            raise ExtractionFailure("OCR service returned no text")

        language = None
        pages = full.get("pages") or []
        if pages:
            detected = (pages[0].get("property") or {}).get("detectedLanguages") or []
            if detected:
                language = detected[0].get("languageCode")

        return text.strip(), (language or detect_language(text))


# ---------------------------------------------------------------------------
# Strategy 2: deterministic fallback stub
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FallbackMatcher:
    """
    One row of the fallback table.

    pattern  : matched against the lower-cased filename
    template : stub text; may reference {filename} and {stem}
    language : language reported for the stub
    """
    name:     str
    pattern:  re.Pattern
    template: str
    language: str = "en"

    def matches(self, filename: str) -> bool:
        return bool(self.pattern.search(filename.lower()))


def _word(*alternatives: str) -> re.Pattern:
    """Match any alternative as a whole token (separators: non-letters)."""
    joined = "|".join(re.escape(a) for a in alternatives)
    return re.compile(rf"(?:^|[^a-z])(?:{joined})(?:[^a-z]|$)")


FALLBACK_MATCHERS: tuple[FallbackMatcher, ...] = (
    FallbackMatcher(
        name="aadhaar",
        pattern=re.compile(r"aadhaa?r"),
        language="hi",
        template=(
            "भारत सरकार GOVERNMENT OF INDIA\n"
            "Unique Identification Authority of India\n"
            "आधार AADHAAR\n"
            "Name: JOHN DOE\n"
            "DOB: 15/06/1990\n"
            "Gender: MALE / पुरुष\n"
            "Address: 123 Main Street, Mumbai, Maharashtra - 400001\n"
            "Aadhaar Number: 1234 5678 9012"
        ),
    ),
    FallbackMatcher(
        name="pan",
        pattern=_word("pan", "pancard", "pan_card"),
        template=(
            "INCOME TAX DEPARTMENT\n"
            "GOVT. OF INDIA\n"
            "PERMANENT ACCOUNT NUMBER CARD\n"
            "Name: JOHN DOE\n"
            "Father's Name: RICHARD DOE\n"
            "Date of Birth: 15/06/1990\n"
            "PAN: ABCDE1234F"
        ),
    ),
    FallbackMatcher(
        name="passport",
        pattern=re.compile(r"passport"),
        template=(
            "REPUBLIC OF INDIA\n"
            "PASSPORT\n"
            "Type: P Country Code: IND\n"
            "Passport No.: A1234567\n"
            "Surname: DOE\n"
            "Given Name(s): JOHN\n"
            "Nationality: INDIAN\n"
            "Date of Birth: 15/06/1990\n"
            "Place of Birth: MUMBAI\n"
            "Date of Issue: 01/01/2020\n"
            "Date of Expiry: 31/12/2029"
        ),
    ),
    FallbackMatcher(
        name="driving_licence",
        pattern=re.compile(r"driving|licen[cs]e|(?:^|[^a-z])dl(?:[^a-z]|$)"),
        template=(
            "UNION OF INDIA\n"
            "DRIVING LICENCE\n"
            "Licence No.: MH02 20150012345\n"
            "Name: JOHN DOE\n"
            "Date of Birth: 15/06/1990\n"
            "Date of Issue: 10/08/2015\n"
            "Valid Till: 09/08/2035\n"
            "Class of Vehicle: LMV, MCWG"
        ),
    ),
    FallbackMatcher(
        name="insurance",
        pattern=re.compile(r"insurance|policy|mediclaim"),
        template=(
            "HEALTH INSURANCE POLICY SCHEDULE\n"
            "Policy Number: HIP/2024/0098765\n"
            "Policy Holder: JOHN DOE\n"
            "Sum Insured: ₹5,00,000\n"
            "Annual Premium: ₹18,500\n"
            "Policy Start Date: 01/04/2024\n"
            "Policy End Date: 31/03/2025\n"
            "Nominee: JANE DOE"
        ),
    ),
    FallbackMatcher(
        name="bank_statement",
        pattern=re.compile(r"statement|bank|passbook"),
        template=(
            "STATE BANK OF INDIA\n"
            "Account Statement\n"
            "Account Number: 12345678901\n"
            "Statement Period: 01-Mar-2024 to 31-Mar-2024\n"
            "Opening Balance: ₹67,340\n"
            "Salary Credit: ₹75,000\n"
            "Electricity Bill: ₹2,400\n"
            "Internet Bill: ₹1,200\n"
            "Closing Balance: ₹1,25,340"
        ),
    ),
)

GENERIC_TEMPLATE = (
    "Document: {filename}\n"
    "This is a sample document with extracted text content.\n"
    "Content includes important information that can be analyzed by AI.\n"
    "Key details and data points are available for processing."
)


class FallbackOcr(BaseOcrStrategy):
    """Local stub used when the live service is unavailable. Never raises."""

    def __init__(
        self,
        matchers:         Sequence[FallbackMatcher] = FALLBACK_MATCHERS,
        generic_template: str = GENERIC_TEMPLATE,
        confidence:       float = FALLBACK_OCR_CONFIDENCE,
    ) -> None:
        self._matchers         = tuple(matchers)
        self._generic_template = generic_template
        self._confidence       = confidence

    @property
    def strategy_name(self) -> str:
        return "fallback_stub"

    def match(self, filename: str) -> FallbackMatcher | None:
        for matcher in self._matchers:
            if matcher.matches(filename):
                return matcher
        return None

    async def extract(
        self,
        uri:            str,
        filename:       str,
        language_hints: Sequence[str] = (),
    ) -> OcrResult:
        matcher = self.match(filename)
        stem    = filename.rsplit(".", 1)[0]

        if matcher is None:
            text     = self._generic_template.format(filename=filename, stem=stem)
            language = "en"
            name     = "generic"
        else:
            text     = matcher.template.format(filename=filename, stem=stem)
            language = matcher.language
            name     = matcher.name

        logger.info("FallbackOcr | file=%s matcher=%s chars=%d", filename, name, len(text))
        return OcrResult(
            text=text,
            confidence=self._confidence,
            language=language,
            strategy_name=self.strategy_name,
        )
