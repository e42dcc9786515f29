"""
Unit Tests — OCR strategies and the TextExtractor cascade
══════════════════════════════════════════════════════════

Coverage targets:
  ✅ Google Vision success → text, confidence 95, detected language
  ✅ Request carries the API key, DOCUMENT_TEXT_DETECTION and language hints
  ✅ HTTP 500 / missing key / API error object → ExtractionFailure
  ✅ Fallback stub is deterministic per filename and never raises
  ✅ Cascade: live failure or timeout → fallback text, degraded=True
  ✅ Storage resolution feeds the URI sent to the OCR service
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from docvault.pipeline.errors import ExtractionFailure
from docvault.processing.extractor import TextExtractor
from docvault.processing.ocr import (
    AUTO_LANGUAGE_HINTS,
    FALLBACK_OCR_CONFIDENCE,
    LIVE_OCR_CONFIDENCE,
    BaseOcrStrategy,
    FallbackOcr,
    GoogleVisionOcr,
    OcrResult,
    detect_language,
    language_hints,
)
from tests.conftest import vision_client


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _vision_payload(text: str, language: str | None = "en") -> dict:
    page = {"property": {"detectedLanguages": [{"languageCode": language}]}} if language else {}
    return {
        "responses": [
            {
                "fullTextAnnotation": {"text": text, "pages": [page]},
                "textAnnotations":    [{"description": text}],
            }
        ]
    }


class _SlowStrategy(BaseOcrStrategy):
    """Primary strategy that never answers within the extractor timeout."""

    @property
    def strategy_name(self) -> str:
        return "slow"

    async def extract(self, uri, filename, language_hints):
        await asyncio.sleep(5)
        return OcrResult(text="late", confidence=99.0, language="en", strategy_name="slow")


class _LowConfidenceStrategy(BaseOcrStrategy):

    @property
    def strategy_name(self) -> str:
        return "low_confidence"

    async def extract(self, uri, filename, language_hints):
        return OcrResult(text="smudged scan", confidence=32.0, language="en",
                         strategy_name=self.strategy_name)


# ─────────────────────────────────────────────────────────────────────────────
# Language helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestLanguageHelpers:

    def test_auto_hint_expands_to_indic_set(self):
        assert language_hints("auto") == list(AUTO_LANGUAGE_HINTS)
        assert language_hints(None) == list(AUTO_LANGUAGE_HINTS)

    def test_explicit_hint_is_passed_through(self):
        assert language_hints(" TA ") == ["ta"]

    def test_devanagari_text_is_hindi(self):
        assert detect_language("आधार कार्ड Aadhaar") == "hi"

    def test_latin_text_is_english(self):
        assert detect_language("PERMANENT ACCOUNT NUMBER") == "en"

    def test_dominant_script_wins(self):
        assert detect_language("தமிழ்நாடு அரசு हि") == "ta"


# ─────────────────────────────────────────────────────────────────────────────
# Google Vision strategy
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestGoogleVisionOcr:

    async def test_success_returns_text_with_live_confidence(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"]  = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_vision_payload("PASSPORT\nDate of Expiry: 31/12/2029"))

        ocr = GoogleVisionOcr(api_key="k-123", client=vision_client(handler))
        result = await ocr.extract("https://files.example.com/p.pdf", "p.pdf", ["en", "hi"])

        assert result.text.startswith("PASSPORT")
        assert result.confidence == LIVE_OCR_CONFIDENCE
        assert result.language == "en"
        assert result.strategy_name == "google_vision"

        assert seen["url"].params["key"] == "k-123"
        request = seen["body"]["requests"][0]
        assert request["image"]["source"]["imageUri"] == "https://files.example.com/p.pdf"
        assert {"type": "DOCUMENT_TEXT_DETECTION"} in request["features"]
        assert request["imageContext"]["languageHints"] == ["en", "hi"]

    async def test_http_500_raises_extraction_failure(self, failing_vision_client):
        ocr = GoogleVisionOcr(api_key="k", client=failing_vision_client)
        with pytest.raises(ExtractionFailure, match="HTTP 500"):
            await ocr.extract("https://x/y.pdf", "y.pdf", ["en"])

    async def test_missing_api_key_raises_without_request(self):
        handler = MagicMock(side_effect=AssertionError("no request expected"))
        ocr = GoogleVisionOcr(api_key="", client=vision_client(handler))
        with pytest.raises(ExtractionFailure, match="not configured"):
            await ocr.extract("https://x/y.pdf", "y.pdf", ["en"])
        handler.assert_not_called()

    async def test_transport_error_raises_extraction_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        ocr = GoogleVisionOcr(api_key="k", client=vision_client(handler))
        with pytest.raises(ExtractionFailure, match="transport error"):
            await ocr.extract("https://x/y.pdf", "y.pdf", ["en"])

    def test_parse_falls_back_to_text_annotations(self):
        payload = {"responses": [{"textAnnotations": [{"description": "PAN: ABCDE1234F"}]}]}
        text, language = GoogleVisionOcr.parse_response(payload)
        assert text == "PAN: ABCDE1234F"
        assert language == "en"

    def test_parse_api_error_object_raises(self):
        payload = {"responses": [{"error": {"message": "quota exceeded"}}]}
        with pytest.raises(ExtractionFailure, match="quota exceeded"):
            GoogleVisionOcr.parse_response(payload)

    def test_parse_empty_text_raises(self):
        with pytest.raises(ExtractionFailure, match="no text"):
            GoogleVisionOcr.parse_response({"responses": [{"fullTextAnnotation": {"text": "  "}}]})


# ─────────────────────────────────────────────────────────────────────────────
# Fallback stub
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestFallbackOcr:

    async def test_passport_template_selected_by_filename(self):
        result = await FallbackOcr().extract("", "My_Passport_2020.pdf")
        assert "Date of Expiry: 31/12/2029" in result.text
        assert result.confidence == FALLBACK_OCR_CONFIDENCE
        assert result.strategy_name == "fallback_stub"

    async def test_aadhaar_template_reports_hindi(self):
        result = await FallbackOcr().extract("", "aadhar_front.jpg")
        assert "AADHAAR" in result.text
        assert result.language == "hi"

    async def test_bank_statement_template_has_closing_balance(self):
        result = await FallbackOcr().extract("", "sbi_statement_march.pdf")
        assert "Closing Balance: ₹1,25,340" in result.text

    async def test_pan_requires_whole_token(self):
        stub = FallbackOcr()
        assert stub.match("pan_card.png").name == "pan"
        assert stub.match("company_plan.pdf") is None

    async def test_unknown_filename_uses_generic_template(self):
        result = await FallbackOcr().extract("", "holiday_notes.txt")
        assert "Document: holiday_notes.txt" in result.text
        assert result.language == "en"

    async def test_same_filename_same_text(self):
        stub = FallbackOcr()
        first  = await stub.extract("", "insurance_policy.pdf")
        second = await stub.extract("", "insurance_policy.pdf")
        assert first.text == second.text


# ─────────────────────────────────────────────────────────────────────────────
# TextExtractor cascade
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.extraction
class TestTextExtractor:

    async def test_live_success_is_not_degraded(self):
        client = vision_client(lambda r: httpx.Response(200, json=_vision_payload("hello world")))
        extractor = TextExtractor(primary=GoogleVisionOcr(api_key="k", client=client))

        result = await extractor.extract("https://x/doc.pdf", "doc.pdf")

        assert result.text == "hello world"
        assert result.strategy_used == "google_vision"
        assert result.degraded is False
        assert result.error is None

    async def test_http_500_falls_back_to_stub(self, failing_vision_client):
        extractor = TextExtractor(primary=GoogleVisionOcr(api_key="k", client=failing_vision_client))

        result = await extractor.extract("https://x/passport.pdf", "passport.pdf")

        assert result.degraded is True
        assert result.strategy_used == "fallback_stub"
        assert result.confidence == FALLBACK_OCR_CONFIDENCE
        assert "HTTP 500" in result.error
        assert "Date of Expiry" in result.text

    async def test_timeout_falls_back_to_stub(self):
        extractor = TextExtractor(primary=_SlowStrategy(), timeout=0.05)

        result = await extractor.extract("https://x/bank.pdf", "bank_statement.pdf")

        assert result.degraded is True
        assert "timed out" in result.error
        assert "Closing Balance" in result.text

    async def test_empty_live_text_falls_back(self):
        primary = MagicMock(spec=BaseOcrStrategy)
        primary.strategy_name = "empty"
        primary.extract = AsyncMock(return_value=OcrResult(
            text="   ", confidence=95.0, language="en", strategy_name="empty",
        ))
        extractor = TextExtractor(primary=primary)

        result = await extractor.extract("https://x/a.pdf", "a.pdf")

        assert result.degraded is True
        assert result.error == "OCR returned empty text"

    async def test_storage_failure_falls_back(self):
        storage = MagicMock()
        storage.resolve = AsyncMock(side_effect=RuntimeError("no credentials"))
        primary = MagicMock(spec=BaseOcrStrategy)
        primary.strategy_name = "google_vision"
        primary.extract = AsyncMock()
        extractor = TextExtractor(primary=primary, storage=storage)

        result = await extractor.extract("s3://bucket/key.pdf", "key.pdf")

        assert result.degraded is True
        assert "no credentials" in result.error
        primary.extract.assert_not_called()

    async def test_resolved_uri_is_sent_to_ocr(self):
        seen: dict = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_vision_payload("text"))

        storage = MagicMock()
        storage.resolve = AsyncMock(return_value="https://signed.example.com/key.pdf?sig=1")
        extractor = TextExtractor(
            primary=GoogleVisionOcr(api_key="k", client=vision_client(handler)),
            storage=storage,
        )

        await extractor.extract("s3://bucket/key.pdf", "key.pdf", language_hint="te")

        storage.resolve.assert_awaited_once_with("s3://bucket/key.pdf")
        request = seen["body"]["requests"][0]
        assert request["image"]["source"]["imageUri"] == "https://signed.example.com/key.pdf?sig=1"
        assert request["imageContext"]["languageHints"] == ["te"]

    async def test_low_confidence_result_is_returned_as_is(self):
        extractor = TextExtractor(primary=_LowConfidenceStrategy())
        result = await extractor.extract("https://x/a.pdf", "a.pdf")
        assert result.confidence == 32.0
        assert result.degraded is False
