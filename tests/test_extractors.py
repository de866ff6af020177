"""Tests for the extractors module.

This module contains tests for native PDF text reading, image
normalisation, the OCR providers, and the claim suggester including
parsing of the model answer.
"""

import io
import json
from unittest.mock import Mock, patch

import httpx
import openai
import pytest
from PIL import Image

from evidence_pipeline.exceptions import (
    AuthError,
    ParseError,
    RateLimitError,
    ResourceError,
    TransientProviderError
)
from evidence_pipeline.extractors import (
    ClaimSuggester,
    ClaimType,
    OpenAIVisionOcrProvider,
    TesseractOcrProvider,
    TextExtractor,
    create_ocr_provider,
    parse_suggestions
)
from evidence_pipeline.extractors.ocr_provider import average_confidence
from evidence_pipeline.validators import EvidenceValidator, FileKind


def _png_bytes(width: int = 40, height: int = 20, mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color=0).save(buffer, format="PNG")
    return buffer.getvalue()


def _mock_pdf(pages):
    mock_pdf = Mock()
    mock_pdf.pages = pages
    mock_pdf.__enter__ = Mock(return_value=mock_pdf)
    mock_pdf.__exit__ = Mock(return_value=None)
    return mock_pdf


def _rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.RateLimitError("Too many requests", response=httpx.Response(429, request=request), body=None)


def _auth_error() -> openai.AuthenticationError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.AuthenticationError("Invalid key", response=httpx.Response(401, request=request), body=None)


class TestTextExtractor:
    """Test cases for TextExtractor class."""

    def test_read_pages(self, sample_pdf_bytes):
        """Test native text reading from a multi-page PDF."""
        with patch("evidence_pipeline.extractors.text_extractor.pdfplumber") as mock_pdfplumber:
            mock_page1 = Mock()
            mock_page1.extract_text.return_value = "  Page 1 content  "
            mock_page2 = Mock()
            mock_page2.extract_text.return_value = None
            mock_pdfplumber.open.return_value = _mock_pdf([mock_page1, mock_page2])

            native = TextExtractor().read_pages(sample_pdf_bytes)

        assert native.page_count == 2
        assert [(p.page_number, p.text) for p in native.pages] == [(1, "Page 1 content"), (2, "")]

    def test_read_pages_page_failure(self, sample_pdf_bytes):
        """Test that a failing page yields empty text and the rest continues."""
        with patch("evidence_pipeline.extractors.text_extractor.pdfplumber") as mock_pdfplumber:
            mock_page1 = Mock()
            mock_page1.extract_text.side_effect = Exception("Page extraction failed")
            mock_page2 = Mock()
            mock_page2.extract_text.return_value = "Page 2 content"
            mock_pdfplumber.open.return_value = _mock_pdf([mock_page1, mock_page2])

            native = TextExtractor().read_pages(sample_pdf_bytes)

        assert [p.text for p in native.pages] == ["", "Page 2 content"]

    def test_read_pages_unreadable_document(self, sample_pdf_bytes):
        with patch("evidence_pipeline.extractors.text_extractor.pdfplumber") as mock_pdfplumber:
            mock_pdfplumber.open.side_effect = Exception("Broken xref")
            native = TextExtractor().read_pages(sample_pdf_bytes)

        assert native.page_count == 0
        assert native.pages == []

    def test_render_page(self, sample_pdf_bytes):
        """Test that a page is rendered at the configured resolution."""
        with patch("evidence_pipeline.extractors.text_extractor.pdfplumber") as mock_pdfplumber:
            mock_page = Mock()
            mock_page.to_image.return_value.original = Image.new("L", (30, 10))
            mock_pdfplumber.open.return_value = _mock_pdf([mock_page])

            png = TextExtractor(resolution=144).render_page(sample_pdf_bytes, 1)

        mock_page.to_image.assert_called_once_with(resolution=144)
        with Image.open(io.BytesIO(png)) as image:
            assert image.mode == "RGB"
            assert image.size == (30, 10)

    def test_render_page_out_of_range(self, sample_pdf_bytes):
        with patch("evidence_pipeline.extractors.text_extractor.pdfplumber") as mock_pdfplumber:
            mock_pdfplumber.open.return_value = _mock_pdf([Mock()])
            with pytest.raises(ParseError, match="out of range"):
                TextExtractor().render_page(sample_pdf_bytes, 2)

    def test_normalize_image_bytes_downscales(self):
        png = TextExtractor(max_width=20).normalize_image_bytes(_png_bytes(40, 20, "L"))

        with Image.open(io.BytesIO(png)) as image:
            assert image.size == (20, 10)
            assert image.mode == "RGB"

    def test_normalize_image_bytes_invalid(self):
        with pytest.raises(ParseError, match="Image decoding error"):
            TextExtractor().normalize_image_bytes(b"not an image")


class TestEvidenceValidator:
    """Test cases for EvidenceValidator class."""

    def test_detect_kind_by_mime(self):
        validator = EvidenceValidator()
        assert validator.detect_kind("application/pdf") is FileKind.PDF
        assert validator.detect_kind("image/jpeg") is FileKind.IMAGE
        assert validator.detect_kind("text/plain", "notes.pdf") is FileKind.UNSUPPORTED

    def test_detect_kind_generic_mime(self):
        """Test that extension and magic bytes decide for generic mime types."""
        validator = EvidenceValidator()
        assert validator.detect_kind("application/octet-stream", "scan.PDF") is FileKind.PDF
        assert validator.detect_kind(None, "upload", b"%PDF-1.7") is FileKind.PDF
        assert validator.detect_kind("", "upload", b"\x89PNG\r\n\x1a\n") is FileKind.IMAGE
        assert validator.detect_kind("", "photo.heic") is FileKind.IMAGE
        assert validator.detect_kind("", "archive.zip", b"PK\x03\x04") is FileKind.UNSUPPORTED

    def test_validate_size(self):
        validator = EvidenceValidator(max_file_mb=1)
        validator.validate_size(1024 * 1024)
        with pytest.raises(ResourceError, match=r"File too large for OCR \(2.0 MB > 1 MB\)"):
            validator.validate_size(2 * 1024 * 1024)


class TestOcrProviders:
    """Test cases for the OCR providers."""

    def test_average_confidence(self):
        assert average_confidence([90.0, 80.0, -1.0]) == 85
        assert average_confidence([-1.0]) is None

    def test_tesseract_detect_text(self):
        """Test that text and confidence come from a single Tesseract pass."""
        with patch("evidence_pipeline.extractors.ocr_provider.pytesseract") as mock_tesseract:
            mock_tesseract.image_to_data.return_value = {
                "text": ["", "Hello", "world", "Second", "line"],
                "conf": ["-1", "91", "83", "88", "86"],
                "block_num": [1, 1, 1, 1, 1],
                "par_num": [1, 1, 1, 1, 1],
                "line_num": [0, 1, 1, 2, 2],
            }

            result = TesseractOcrProvider().detect_text(_png_bytes())

        assert result.text == "Hello world\nSecond line"
        assert result.confidence == 87
        mock_tesseract.image_to_data.assert_called_once()
        mock_tesseract.image_to_string.assert_not_called()

    def test_tesseract_without_layout_keys(self):
        with patch("evidence_pipeline.extractors.ocr_provider.pytesseract") as mock_tesseract:
            mock_tesseract.image_to_data.return_value = {"text": ["Hello", "world"], "conf": ["90", "80"]}

            result = TesseractOcrProvider().detect_text(_png_bytes())

        assert result.text == "Hello world"
        assert result.confidence == 85

    def test_tesseract_missing_binary(self):
        with patch("evidence_pipeline.extractors.ocr_provider.pytesseract") as mock_tesseract:
            mock_tesseract.TesseractNotFoundError = type("TesseractNotFoundError", (Exception,), {})
            mock_tesseract.TesseractError = type("TesseractError", (Exception,), {})
            mock_tesseract.image_to_data.side_effect = mock_tesseract.TesseractNotFoundError()

            with pytest.raises(TransientProviderError, match="Tesseract binary not found"):
                TesseractOcrProvider().detect_text(_png_bytes())

    def test_tesseract_invalid_image(self):
        with pytest.raises(ParseError):
            TesseractOcrProvider().detect_text(b"not an image")

    def test_openai_vision_detect_text(self):
        client = Mock()
        client.chat.completions.create.return_value.choices = [Mock(message=Mock(content=" Receipt total $40 "))]

        result = OpenAIVisionOcrProvider(api_key="", client=client).detect_text(_png_bytes())

        assert result.text == "Receipt total $40"
        assert result.confidence is None
        content = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_openai_vision_rate_limit(self):
        client = Mock()
        client.chat.completions.create.side_effect = _rate_limit_error()

        with pytest.raises(RateLimitError):
            OpenAIVisionOcrProvider(api_key="", client=client).detect_text(_png_bytes())

    def test_openai_vision_requires_key(self):
        with pytest.raises(AuthError):
            OpenAIVisionOcrProvider(api_key="")

    def test_create_ocr_provider(self):
        assert isinstance(create_ocr_provider("tesseract"), TesseractOcrProvider)
        assert isinstance(create_ocr_provider("openai_vision", api_key="sk-test"), OpenAIVisionOcrProvider)
        assert create_ocr_provider("openai_vision", api_key="") is None
        assert create_ocr_provider("none") is None
        assert create_ocr_provider("abbyy") is None


class TestParseSuggestions:
    """Test cases for parse_suggestions."""

    def test_bare_array(self):
        raw = json.dumps([{"claimText": "The lease began in May.", "claimType": "financial",
                           "tags": ["lease", 3], "citation": {"quote": "lease began", "pageNumber": "2"}}])

        claims = parse_suggestions(raw)

        assert len(claims) == 1
        assert claims[0].claim_type is ClaimType.FINANCIAL
        assert claims[0].tags == ["lease"]
        assert claims[0].citation.quote == "lease began"
        assert claims[0].citation.page_number == 2

    def test_wrapped_object(self):
        raw = json.dumps({"suggestions": [{"claimText": "A", "claimType": "unknown-type"}]})

        claims = parse_suggestions(raw)

        assert claims[0].claim_type is ClaimType.FACT
        assert claims[0].citation is None

    def test_object_without_claims(self):
        assert parse_suggestions(json.dumps({"note": "nothing found"})) == []

    def test_malformed_items_become_empty_claims(self):
        claims = parse_suggestions(json.dumps({"claims": ["just a string", {"claimText": "Real claim."}]}))
        assert [c.claim_text for c in claims] == ["", "Real claim."]

    def test_blank_quote_drops_citation(self):
        claims = parse_suggestions(json.dumps([{"claimText": "A", "citation": {"quote": "  "}}]))
        assert claims[0].citation is None

    def test_max_claims(self):
        raw = json.dumps([{"claimText": f"Claim {i}"} for i in range(15)])
        assert len(parse_suggestions(raw, max_claims=10)) == 10

    def test_invalid_json(self):
        with pytest.raises(ParseError, match="JSON parsing error"):
            parse_suggestions("not json")

    def test_invalid_shape(self):
        with pytest.raises(ParseError, match="invalid data format"):
            parse_suggestions('"a string"')


class TestClaimSuggester:
    """Test cases for ClaimSuggester class."""

    def test_requires_key(self):
        with pytest.raises(AuthError, match="Missing OpenAI API key"):
            ClaimSuggester(api_key="")

    def test_suggest_claims(self, mock_openai_client):
        """Test a successful suggestion call and its request parameters."""
        suggester = ClaimSuggester(api_key="", client=mock_openai_client)

        claims = suggester.suggest_claims("The hearing was held on May 2 in the county court.")

        assert len(claims) == 1
        assert claims[0].claim_text == "The hearing was held on May 2."
        assert claims[0].claim_type is ClaimType.PROCEDURAL
        assert claims[0].citation.page_number == 3

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == suggester.model
        assert kwargs["temperature"] == 0.2
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_text_is_truncated(self, mock_openai_client):
        suggester = ClaimSuggester(api_key="", client=mock_openai_client, max_text_chars=10)

        suggester.suggest_claims("x" * 50)

        user_message = mock_openai_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert user_message.endswith("x" * 10)
        assert "x" * 11 not in user_message

    def test_empty_text_skips_call(self, mock_openai_client):
        suggester = ClaimSuggester(api_key="", client=mock_openai_client)
        assert suggester.suggest_claims("   ") == []
        mock_openai_client.chat.completions.create.assert_not_called()

    def test_unparseable_answer(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value.choices[0].message.content = "Sorry, no."
        suggester = ClaimSuggester(api_key="", client=mock_openai_client)

        assert suggester.suggest_claims("Some evidence text") == []

    def test_rate_limit_is_mapped(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = _rate_limit_error()
        suggester = ClaimSuggester(api_key="", client=mock_openai_client)

        with pytest.raises(RateLimitError) as exc_info:
            suggester.suggest_claims("Some evidence text")
        assert exc_info.value.status_code == 429

    def test_auth_error_is_mapped(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = _auth_error()
        suggester = ClaimSuggester(api_key="", client=mock_openai_client)

        with pytest.raises(AuthError):
            suggester.suggest_claims("Some evidence text")
