"""Database module for the evidence pipeline.

This module contains the database manager and the repositories that
stand in for the record store collaborator: evidence files, extraction
records and OCR pages, claims and citations, and the activity log.
"""

from .database_manager import DatabaseManager
from .evidence_repository import EvidenceRepository
from .extraction_repository import ExtractionRepository
from .claim_repository import ClaimRepository, normalize_claim_text
from .activity_repository import ActivityRepository

__all__ = [
    "DatabaseManager",
    "EvidenceRepository",
    "ExtractionRepository",
    "ClaimRepository",
    "ActivityRepository",
    "normalize_claim_text"
]
