"""Pytest configuration and fixtures for the evidence pipeline test suite.

This module provides shared fixtures and test doubles for all test modules.
"""

import os

os.environ.setdefault("LANGFUSE_TRACING_ENABLED", "false")

from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional
from unittest.mock import Mock

import pytest

from evidence_pipeline import (
    ActivityRepository,
    ClaimRepository,
    DatabaseManager,
    EvidenceRepository,
    ExtractionRepository,
    LocalObjectStorage
)
from evidence_pipeline.exceptions import TransientProviderError
from evidence_pipeline.extractors import (
    ClaimSuggester,
    ClaimType,
    NativePage,
    NativePdf,
    OcrProvider,
    OcrResult,
    SuggestedCitation,
    SuggestedClaim,
    TextExtractor
)

CASE_ID = "case-1"


class FakeTextExtractor(TextExtractor):
    """Text extractor serving canned native page texts.

    Rendered pages are the bytes ``b"page-N"`` so the fake OCR provider
    can tell which page it is reading.
    """

    def __init__(self, page_texts: Iterable[str]) -> None:
        super().__init__()
        self.page_texts: List[str] = list(page_texts)
        self.rendered: List[int] = []

    def read_pages(self, pdf_bytes: bytes) -> NativePdf:
        pages = [NativePage(page_number=i + 1, text=t) for i, t in enumerate(self.page_texts)]
        return NativePdf(page_count=len(pages), pages=pages)

    def render_page(self, pdf_bytes: bytes, page_number: int) -> bytes:
        self.rendered.append(page_number)
        return f"page-{page_number}".encode()

    def normalize_image_bytes(self, image_bytes: bytes) -> bytes:
        return image_bytes


class FakeOcrProvider(OcrProvider):
    """OCR provider returning scripted results per rendered page."""

    name = "fake_ocr"

    def __init__(self, text: str = "", confidence: Optional[int] = 90,
                 page_texts: Optional[Dict[int, str]] = None,
                 failing_pages: Iterable[int] = (), fail_all: bool = False) -> None:
        self.text: str = text
        self.confidence: Optional[int] = confidence
        self.page_texts: Dict[int, str] = page_texts or {}
        self.failing_pages = set(failing_pages)
        self.fail_all: bool = fail_all
        self.calls: List[bytes] = []

    def detect_text(self, image_bytes: bytes) -> OcrResult:
        self.calls.append(image_bytes)
        page = None
        if image_bytes.startswith(b"page-"):
            page = int(image_bytes[len(b"page-"):])
        if self.fail_all or page in self.failing_pages:
            raise TransientProviderError("OCR service unavailable")
        return OcrResult(text=self.page_texts.get(page, self.text), confidence=self.confidence)


def make_suggestion(text: str, quote: Optional[str] = "quoted text", page: Optional[int] = 1,
                    claim_type: str = "fact", tags: Optional[List[str]] = None) -> SuggestedClaim:
    citation = SuggestedCitation(quote=quote, page_number=page) if quote else None
    return SuggestedClaim(
        claim_text=text,
        claim_type=ClaimType.coerce(claim_type),
        tags=tags or [],
        citation=citation
    )


@pytest.fixture
def temp_db_path(tmp_path: Path) -> str:
    """Database URL of a temporary SQLite file."""
    return f"sqlite:///{tmp_path / 'evidence_test.db'}"


@pytest.fixture
def test_db_manager(temp_db_path: str) -> Generator[DatabaseManager, None, None]:
    """Create a DatabaseManager instance with a temporary database."""
    manager = DatabaseManager(database_url=temp_db_path)
    yield manager
    manager.dispose()


@pytest.fixture
def evidence_repository(test_db_manager: DatabaseManager) -> EvidenceRepository:
    return EvidenceRepository(test_db_manager)


@pytest.fixture
def extraction_repository(test_db_manager: DatabaseManager) -> ExtractionRepository:
    return ExtractionRepository(test_db_manager)


@pytest.fixture
def claim_repository(test_db_manager: DatabaseManager) -> ClaimRepository:
    return ClaimRepository(test_db_manager)


@pytest.fixture
def activity_repository(test_db_manager: DatabaseManager) -> ActivityRepository:
    return ActivityRepository(test_db_manager)


@pytest.fixture
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "store")


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Bytes carrying a PDF signature; page content comes from FakeTextExtractor."""
    return b"%PDF-1.4\n% evidence test document\n%%EOF"


@pytest.fixture
def evidence_file(evidence_repository: EvidenceRepository, storage: LocalObjectStorage,
                  sample_pdf_bytes: bytes):
    """A stored PDF evidence file in the test case."""
    key = storage.store_bytes(sample_pdf_bytes, "police_report.pdf")
    return evidence_repository.create_evidence(CASE_ID, "application/pdf", key, "police_report.pdf")


@pytest.fixture
def mock_suggester() -> Mock:
    """ClaimSuggester double returning no claims unless configured."""
    suggester = Mock(spec=ClaimSuggester)
    suggester.suggest_claims.return_value = []
    return suggester


@pytest.fixture
def mock_openai_client() -> Mock:
    """Mock OpenAI client answering with one claim object."""
    mock_client = Mock()
    mock_response = Mock()
    mock_choice = Mock()
    mock_message = Mock()
    mock_message.content = (
        '{"claims": [{"claimText": "The hearing was held on May 2.", "claimType": "procedural",'
        ' "tags": ["hearing"], "missingInfoFlag": false,'
        ' "citation": {"quote": "hearing held May 2", "pageNumber": 3}}]}'
    )
    mock_choice.message = mock_message
    mock_response.choices = [mock_choice]
    mock_client.chat.completions.create.return_value = mock_response
    return mock_client
