"""Dual-provider text engine for the evidence pipeline.

This module contains the DualProviderTextEngine class which produces the
best available text for every page of an evidence file, choosing between
native embedded PDF text and OCR, scoring their agreement and flagging
pages that need human review.
"""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from langfuse import observe

from ..config import Config
from ..exceptions import ResourceError
from ..extractors import NativePage, OcrProvider, TextExtractor
from ..validators import EvidenceValidator, FileKind
from .concurrency import ConcurrencyLimiter

__all__ = [
    "DualProviderTextEngine",
    "PageResult",
    "ExtractionOutcome",
    "PageCallback",
    "jaccard_similarity",
    "needs_review",
    "NO_OCR_PROVIDER_REASON",
    "page_separator",
    "content_length",
]

logger = logging.getLogger(__name__)

NATIVE_PROVIDER = "pdf_text"
NO_OCR_PROVIDER_REASON = "OCR skipped: no OCR provider configured"
_SEPARATOR_LINE = re.compile(r"^----- Page \d+ -----\n?", re.MULTILINE)


def page_separator(page_number: Optional[int]) -> str:
    return f"----- Page {page_number} -----"


def content_length(text: str) -> int:
    """Length of aggregated text with page separator lines removed."""
    return len(_SEPARATOR_LINE.sub("", text or "").strip())


def jaccard_similarity(text_a: str, text_b: str) -> int:
    """Token-set Jaccard similarity of two texts, scaled to 0-100.

    Texts are lower-cased and split on whitespace. Two empty texts are
    identical (100); one empty text shares nothing with the other (0).
    """
    tokens_a: Set[str] = set(text_a.lower().split())
    tokens_b: Set[str] = set(text_b.lower().split())
    if not tokens_a and not tokens_b:
        return 100
    if not tokens_a or not tokens_b:
        return 0
    intersection = len(tokens_a & tokens_b)
    union = len(tokens_a | tokens_b)
    return round(intersection / union * 100)


def needs_review(text: str, diff_score: Optional[int], confidence: Optional[int],
                 min_text_length: int = Config.REVIEW_MIN_TEXT_LENGTH,
                 min_diff_score: int = Config.REVIEW_MIN_DIFF_SCORE,
                 min_confidence: int = Config.REVIEW_MIN_CONFIDENCE) -> bool:
    """Decide whether a page's text should be checked by a human.

    Args:
        text: Chosen page text
        diff_score: Provider agreement 0-100, or None if one provider ran
        confidence: OCR confidence 0-100, or None if unknown

    Returns:
        True when the text is short, the providers disagree, or OCR
        confidence is low
    """
    if len(text.strip()) < min_text_length:
        return True
    if diff_score is not None and diff_score < min_diff_score:
        return True
    if confidence is not None and confidence < min_confidence:
        return True
    return False


@dataclass
class PageResult:
    """Extraction result of one page, in the shape stored as an OCR row.

    ``page_number`` is None for a single non-paged image.
    """
    page_number: Optional[int]
    provider_primary: str
    text_primary: str
    provider_secondary: Optional[str] = None
    text_secondary: Optional[str] = None
    confidence_primary: Optional[int] = None
    confidence_secondary: Optional[int] = None
    diff_score: Optional[int] = None
    needs_review: bool = False
    ocr_failed: bool = False

    @property
    def text(self) -> str:
        return self.text_primary

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload.pop("page_number")
        payload.pop("ocr_failed")
        return payload


@dataclass
class ExtractionOutcome:
    """Aggregated text and metadata of a whole evidence file."""
    text: str
    metadata: Dict[str, Any]
    pages: List[PageResult] = field(default_factory=list)


PageCallback = Callable[[PageResult, int, int], Awaitable[None]]


class DualProviderTextEngine:
    """Extracts text from PDFs and images page by page.

    For each PDF page the native text layer is tried first. When it is
    long enough and dual mode is off, it is accepted at confidence 100
    with no OCR call. Otherwise the page is rendered and OCRed; if some
    native text exists, both are kept and their similarity is recorded.
    A failing page never aborts the document.

    Attributes:
        text_extractor: Native text reader and page renderer
        ocr_provider: OCR implementation, or None when OCR is disabled
        validator: File-kind detection and size gate
        mode: native_first | dual
        max_pages: Pages beyond this are skipped and reported
        page_concurrency: Pages OCRed at once
        native_min_chars: Native text length accepted without OCR
        ocr_failed_text: Text recorded for a page with no usable result
    """

    def __init__(
        self,
        ocr_provider: Optional[OcrProvider] = None,
        text_extractor: Optional[TextExtractor] = None,
        validator: Optional[EvidenceValidator] = None,
        mode: str = Config.OCR_PROVIDER_MODE,
        max_pages: int = Config.OCR_MAX_PAGES,
        page_concurrency: int = Config.OCR_PAGE_CONCURRENCY,
        native_min_chars: int = Config.NATIVE_TEXT_MIN_CHARS,
        ocr_failed_text: str = Config.OCR_FAILED_TEXT
    ) -> None:
        self.ocr_provider: Optional[OcrProvider] = ocr_provider
        self.text_extractor: TextExtractor = text_extractor or TextExtractor()
        self.validator: EvidenceValidator = validator or EvidenceValidator()
        self.mode: str = mode
        self.max_pages: int = max_pages
        self.page_concurrency: int = page_concurrency
        self.native_min_chars: int = native_min_chars
        self.ocr_failed_text: str = ocr_failed_text

    @observe(name="extract_evidence_text")
    async def extract(self, data: bytes, mime_type: Optional[str], filename: str = "",
                      on_page: Optional[PageCallback] = None) -> ExtractionOutcome:
        """Extract text from an evidence file.

        Args:
            data: File content
            mime_type: Declared content type
            filename: Original file name, used for type detection
            on_page: Awaited after each page with (page, processed, total)

        Returns:
            ExtractionOutcome with the aggregated text, metadata and pages
        """
        kind = self.validator.detect_kind(mime_type, filename, data[:16])

        if kind is FileKind.UNSUPPORTED:
            return ExtractionOutcome(
                text="",
                metadata={"fileType": "unsupported", "reason": f"Unsupported file type: {mime_type}"}
            )

        try:
            self.validator.validate_size(len(data))
        except ResourceError as e:
            logger.info("Skipping extraction of %s: %s", filename or "evidence", e)
            return ExtractionOutcome(
                text="",
                metadata={"fileType": kind.value, "pagesProcessed": 0, "reason": str(e)}
            )

        if kind is FileKind.IMAGE:
            return await self._extract_image(data, on_page)
        return await self._extract_pdf(data, on_page)

    async def _extract_pdf(self, data: bytes, on_page: Optional[PageCallback]) -> ExtractionOutcome:
        native = await asyncio.to_thread(self.text_extractor.read_pages, data)
        total_pages = native.page_count
        pages_to_process = min(total_pages, self.max_pages)
        capped = total_pages > self.max_pages
        metadata: Dict[str, Any] = {
            "fileType": "pdf",
            "totalPages": total_pages,
            "capped": capped,
            "pagesSkipped": total_pages - pages_to_process if capped else 0,
        }
        if capped:
            logger.info("PDF has %d pages, processing the first %d", total_pages, pages_to_process)
        if total_pages == 0:
            metadata["reason"] = "PDF has no readable pages"

        limiter = ConcurrencyLimiter(self.page_concurrency)
        processed = 0

        async def handle(page: NativePage) -> PageResult:
            nonlocal processed
            result = await self._process_pdf_page(data, page)
            processed += 1
            if on_page is not None:
                await on_page(result, processed, pages_to_process)
            return result

        tasks = [limiter.submit(lambda p=page: handle(p)) for page in native.pages[:pages_to_process]]
        results: List[PageResult] = list(await asyncio.gather(*tasks)) if tasks else []

        metadata["pagesProcessed"] = len(results)
        metadata["usedNativeText"] = any(
            r.provider_primary == NATIVE_PROVIDER or r.provider_secondary == NATIVE_PROVIDER
            for r in results
        )
        metadata["usedOcr"] = any(
            r.provider_primary != NATIVE_PROVIDER or r.ocr_failed for r in results
        )
        if self.ocr_provider is None and any(len(p.text) < self.native_min_chars for p in native.pages[:pages_to_process]):
            metadata["reason"] = NO_OCR_PROVIDER_REASON
        if any(r.needs_review for r in results):
            metadata["pagesNeedingReview"] = [r.page_number for r in results if r.needs_review]

        text = "\n\n".join(
            f"{page_separator(r.page_number)}\n{r.text}" for r in results
        )
        return ExtractionOutcome(text=text, metadata=metadata, pages=results)

    async def _process_pdf_page(self, data: bytes, page: NativePage) -> PageResult:
        native_text = page.text.strip()
        force_ocr = self.mode == "dual"

        if self.ocr_provider is None or (len(native_text) >= self.native_min_chars and not force_ocr):
            return PageResult(
                page_number=page.page_number,
                provider_primary=NATIVE_PROVIDER,
                text_primary=native_text,
                confidence_primary=100 if native_text else 0,
                needs_review=needs_review(native_text, None, None)
            )

        try:
            image = await asyncio.to_thread(self.text_extractor.render_page, data, page.page_number)
            ocr = await asyncio.to_thread(self.ocr_provider.detect_text, image)
        except Exception as e:
            logger.warning("OCR failed on page %d: %s", page.page_number, e)
            return self._failed_page(page.page_number, native_text)

        diff_score = (
            jaccard_similarity(native_text, ocr.text)
            if native_text and ocr.text else None
        )
        return PageResult(
            page_number=page.page_number,
            provider_primary=self.ocr_provider.name,
            text_primary=ocr.text,
            provider_secondary=NATIVE_PROVIDER if native_text else None,
            text_secondary=native_text or None,
            confidence_primary=ocr.confidence,
            confidence_secondary=100 if native_text else None,
            diff_score=diff_score,
            needs_review=needs_review(ocr.text, diff_score, ocr.confidence)
        )

    def _failed_page(self, page_number: Optional[int], native_text: str) -> PageResult:
        return PageResult(
            page_number=page_number,
            provider_primary=NATIVE_PROVIDER,
            text_primary=native_text or self.ocr_failed_text,
            confidence_primary=80 if native_text else 0,
            needs_review=True,
            ocr_failed=True
        )

    async def _extract_image(self, data: bytes, on_page: Optional[PageCallback]) -> ExtractionOutcome:
        metadata: Dict[str, Any] = {"fileType": "image", "usedNativeText": False}
        if self.ocr_provider is None:
            metadata.update({"usedOcr": False, "pagesProcessed": 0, "reason": NO_OCR_PROVIDER_REASON})
            return ExtractionOutcome(text="", metadata=metadata)

        try:
            image = await asyncio.to_thread(self.text_extractor.normalize_image_bytes, data)
            ocr = await asyncio.to_thread(self.ocr_provider.detect_text, image)
            result = PageResult(
                page_number=None,
                provider_primary=self.ocr_provider.name,
                text_primary=ocr.text,
                confidence_primary=ocr.confidence,
                needs_review=needs_review(ocr.text, None, ocr.confidence)
            )
        except Exception as e:
            logger.warning("OCR failed on image: %s", e)
            result = PageResult(
                page_number=None,
                provider_primary=self.ocr_provider.name,
                text_primary=self.ocr_failed_text,
                confidence_primary=0,
                needs_review=True,
                ocr_failed=True
            )

        if on_page is not None:
            await on_page(result, 1, 1)

        metadata.update({"usedOcr": True, "pagesProcessed": 1, "totalPages": 1})
        if result.needs_review:
            metadata["needsReview"] = True
        return ExtractionOutcome(text=result.text, metadata=metadata, pages=[result])
