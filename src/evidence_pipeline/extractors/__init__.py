"""Extractors module for the evidence pipeline.

This module contains the native PDF text reader, the OCR providers and
the LLM claim suggester.
"""

from .text_extractor import TextExtractor, NativePage, NativePdf
from .ocr_provider import (
    OcrResult,
    OcrProvider,
    TesseractOcrProvider,
    OpenAIVisionOcrProvider,
    create_ocr_provider
)
from .claim_suggester import (
    ClaimType,
    SuggestedCitation,
    SuggestedClaim,
    ClaimSuggester,
    parse_suggestions
)

__all__ = [
    "TextExtractor",
    "NativePage",
    "NativePdf",
    "OcrResult",
    "OcrProvider",
    "TesseractOcrProvider",
    "OpenAIVisionOcrProvider",
    "create_ocr_provider",
    "ClaimType",
    "SuggestedCitation",
    "SuggestedClaim",
    "ClaimSuggester",
    "parse_suggestions"
]
