"""Configuration module for the evidence pipeline.

This module contains all configuration parameters including provider
settings, page and size limits, scheduler caps, review thresholds and
the heuristic weights used when ranking citations.
"""

import logging
import os
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

__all__ = ["Config", "configure_logging"]


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    """Configuration class containing pipeline settings and constants.

    Values an operator is expected to tune are read from the environment
    (a local ``.env`` file is honoured); everything else is a fixed constant.
    Components take these as constructor defaults so tests can build
    isolated instances with their own values.
    """

    # Record store
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///evidence_pipeline.db")

    # OpenAI configuration
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")

    # OCR providers
    OCR_PROVIDER: str = os.getenv("OCR_PROVIDER", "tesseract")  # tesseract | openai_vision | none
    OCR_PROVIDER_MODE: str = os.getenv("OCR_PROVIDER_MODE", "native_first")  # native_first | dual
    OCR_MAX_PAGES: int = _env_int("OCR_MAX_PAGES", 50)
    OCR_MAX_FILE_MB: int = _env_int("OCR_MAX_FILE_MB", 25)
    OCR_PAGE_CONCURRENCY: int = _env_int("OCR_PAGE_CONCURRENCY", 2)
    OCR_RENDER_RESOLUTION: int = 144
    IMAGE_MAX_WIDTH: int = 2000

    # Native text vs OCR
    NATIVE_TEXT_MIN_CHARS: int = 50
    REVIEW_MIN_TEXT_LENGTH: int = 20
    REVIEW_MIN_DIFF_SCORE: int = 75
    REVIEW_MIN_CONFIDENCE: int = 70
    OCR_FAILED_TEXT: str = "[OCR failed]"

    # Schedulers
    EXTRACTION_CONCURRENCY: int = _env_int("EXTRACTION_CONCURRENCY", 2)
    CLAIMS_CONCURRENCY: int = _env_int("CLAIMS_CONCURRENCY", 2)
    STALE_THRESHOLD_MINUTES: int = _env_int("STALE_THRESHOLD_MINUTES", 15)
    CLAIMS_DEBOUNCE_SECONDS: float = float(_env_int("CLAIMS_DEBOUNCE_SECONDS", 60))
    CLAIMS_RETRY_DELAY_SECONDS: float = float(_env_int("CLAIMS_RETRY_DELAY_SECONDS", 30))

    # Claim suggestion
    CLAIMS_MIN_TEXT_LENGTH: int = 300
    CLAIMS_MAX_TEXT_SLICE: int = 20_000
    CLAIMS_MAX_PER_RUN: int = 10
    CLAIMS_BOOTSTRAP_MIN_CREATED: int = 3
    CITATION_QUOTE_MAX_CHARS: int = 500
    CITATION_EXCERPT_MAX_CHARS: int = 200
    AI_CITATION_CONFIDENCE: float = 0.8

    # Citation ranking weights
    RANK_PREFERRED_EVIDENCE_WEIGHT: int = 50
    RANK_KEYWORD_WEIGHT: int = 5
    RANK_LOCATION_WEIGHT: int = 3
    RANK_EXCERPT_LENGTH_WEIGHT: int = 2
    RANK_EXCERPT_MIN_CHARS: int = 20
    RANK_EXCERPT_MAX_CHARS: int = 350
    RANK_KEYWORD_MIN_LENGTH: int = 4

    # Compiled documents
    TRACE_SNIPPET_MAX_CHARS: int = 140
    PREFLIGHT_SNIPPET_MAX_CHARS: int = 100

    # Pending extracted facts appendix, in rendering order
    FACT_TYPE_ORDER: List[str] = [
        "date", "event", "communication", "financial",
        "medical", "custody", "procedural", "other",
    ]

    SUPPORTED_IMAGE_TYPES: List[str] = [
        "image/png", "image/jpeg", "image/jpg", "image/webp",
        "image/heic", "image/gif", "image/tiff", "image/bmp",
    ]

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    ISSUE_TYPE_LABELS: Dict[str, str] = {
        "fact": "Key Facts",
        "procedural": "Procedural History",
        "context": "Background Context",
        "communication": "Communications",
        "financial": "Financial Matters",
        "medical": "Medical Records",
        "school": "School Records",
        "custody": "Custody Matters",
    }


def configure_logging(level: str = Config.LOG_LEVEL) -> None:
    """Apply a basic logging configuration for the pipeline process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
