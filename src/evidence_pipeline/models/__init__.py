"""Database models for the evidence pipeline.

This module contains SQLAlchemy model definitions for evidence files,
extraction jobs and records, per-page OCR results, citation pointers,
case claims and the bookkeeping tables around them.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

__all__ = [
    "Base",
    "utcnow",
    "new_id",
    "EvidenceFile",
    "ExtractionJob",
    "OcrPage",
    "Extraction",
    "CitationPointer",
    "CaseClaim",
    "ClaimCitation",
    "ActivityLog",
    "IssueGrouping",
    "IssueClaim",
    "EvidenceFact",
    "JOB_STATUSES",
    "EXTRACTION_STATUSES",
    "CLAIM_STATUSES",
    "CLAIM_ORIGINS",
]

Base = declarative_base()

JOB_STATUSES = ("queued", "processing", "done", "error")
EXTRACTION_STATUSES = ("queued", "processing", "complete", "failed")
CLAIM_STATUSES = ("suggested", "accepted", "rejected")
CLAIM_ORIGINS = ("manual", "ai_suggested", "ai_extracted", "evidence_fact")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (the stored form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class EvidenceFile(Base):
    """An uploaded file belonging to a case.

    Attributes:
        id: Primary key
        case_id: Owning case
        mime_type: Declared content type
        storage_key: Key understood by the object storage collaborator
        original_name: File name as uploaded
        created_at: Upload time
    """
    __tablename__ = "evidence_files"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    mime_type: str = Column(String(128), nullable=False)
    storage_key: str = Column(String(512), nullable=False)
    original_name: str = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ExtractionJob(Base):
    """Transient work descriptor, one per evidence file."""
    __tablename__ = "extraction_jobs"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    evidence_id: str = Column(String(36), ForeignKey("evidence_files.id"), nullable=False, unique=True)
    status: str = Column(String(20), nullable=False, default="queued")  # queued | processing | done | error
    progress: int = Column(Integer, nullable=False, default=0)
    error: str = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class OcrPage(Base):
    """Text extraction result for one physical page.

    Single images are stored with ``page_number`` NULL. Rows are upserted
    by (evidence_id, page_number).
    """
    __tablename__ = "ocr_pages"
    __table_args__ = (UniqueConstraint("evidence_id", "page_number", name="uq_ocr_page"),)

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    evidence_id: str = Column(String(36), ForeignKey("evidence_files.id"), nullable=False, index=True)
    page_number: int = Column(Integer, nullable=True)
    provider_primary: str = Column(String(32), nullable=False)
    provider_secondary: str = Column(String(32), nullable=True)
    text_primary: str = Column(Text, nullable=False, default="")
    text_secondary: str = Column(Text, nullable=True)
    confidence_primary: int = Column(Integer, nullable=True)
    confidence_secondary: int = Column(Integer, nullable=True)
    diff_score: int = Column(Integer, nullable=True)
    needs_review: bool = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Extraction(Base):
    """Durable, user-facing extraction record for one evidence file.

    Attributes:
        status: queued | processing | complete | failed
        extracted_text: Aggregated text of every processed page
        metadata_json: pagesProcessed, totalPages, usedNativeText, usedOcr,
            capped, pagesSkipped, fileType and an optional reason
        error: Human-readable failure message
    """
    __tablename__ = "extractions"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    evidence_id: str = Column(String(36), ForeignKey("evidence_files.id"), nullable=False, unique=True)
    mime_type: str = Column(String(128), nullable=True)
    status: str = Column(String(20), nullable=False, default="queued")
    extracted_text: str = Column(Text, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    error: str = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class CitationPointer(Base):
    """Immutable pointer into one evidence file."""
    __tablename__ = "citation_pointers"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    evidence_file_id: str = Column(String(36), ForeignKey("evidence_files.id"), nullable=False, index=True)
    quote: str = Column(Text, nullable=False, default="")
    excerpt: str = Column(Text, nullable=True)
    page_number: int = Column(Integer, nullable=True)
    timestamp_seconds: float = Column(Float, nullable=True)
    start_offset: int = Column(Integer, nullable=True)
    end_offset: int = Column(Integer, nullable=True)
    confidence: float = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CaseClaim(Base):
    """A neutral factual statement about the case."""
    __tablename__ = "case_claims"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    claim_text: str = Column(Text, nullable=False)
    claim_type: str = Column(String(32), nullable=False, default="fact")
    tags = Column(JSON, nullable=False, default=list)
    missing_info_flag: bool = Column(Boolean, nullable=False, default=False)
    created_from: str = Column(String(32), nullable=False, default="manual")
    status: str = Column(String(20), nullable=False, default="suggested")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ClaimCitation(Base):
    """Many-to-many link between claims and citation pointers."""
    __tablename__ = "claim_citations"
    __table_args__ = (UniqueConstraint("claim_id", "citation_id", name="uq_claim_citation"),)

    id: str = Column(String(36), primary_key=True, default=new_id)
    claim_id: str = Column(String(36), ForeignKey("case_claims.id"), nullable=False, index=True)
    citation_id: str = Column(String(36), ForeignKey("citation_pointers.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=True, index=True)
    event_type: str = Column(String(64), nullable=False)
    message: str = Column(Text, nullable=False, default="")
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class IssueGrouping(Base):
    """Named thematic group of claims within a case."""
    __tablename__ = "issue_groupings"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    title: str = Column(String(255), nullable=False)
    description: str = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class IssueClaim(Base):
    __tablename__ = "issue_claims"
    __table_args__ = (UniqueConstraint("issue_id", "claim_id", name="uq_issue_claim"),)

    id: str = Column(String(36), primary_key=True, default=new_id)
    issue_id: str = Column(String(36), ForeignKey("issue_groupings.id"), nullable=False, index=True)
    claim_id: str = Column(String(36), ForeignKey("case_claims.id"), nullable=False)


class EvidenceFact(Base):
    """A fact extracted from evidence that may later be promoted to a claim."""
    __tablename__ = "evidence_facts"

    id: str = Column(String(36), primary_key=True, default=new_id)
    case_id: str = Column(String(64), nullable=False, index=True)
    evidence_id: str = Column(String(36), ForeignKey("evidence_files.id"), nullable=False)
    fact_text: str = Column(Text, nullable=False)
    fact_type: str = Column(String(32), nullable=False, default="other")
    confidence: int = Column(Integer, nullable=True)
    promoted_to_claim: bool = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
