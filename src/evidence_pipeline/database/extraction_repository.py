"""Extraction repository for the evidence pipeline.

This module contains the ExtractionRepository class for the durable
extraction record, the transient extraction job and the per-page OCR
rows. Every write is a single-row upsert keyed by evidence id (and page
number for OCR rows).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..models import Extraction, ExtractionJob, OcrPage, utcnow
from .base_repository import BaseRepository

__all__ = ["ExtractionRepository"]

_OCR_PAGE_FIELDS = (
    "provider_primary",
    "provider_secondary",
    "text_primary",
    "text_secondary",
    "confidence_primary",
    "confidence_secondary",
    "diff_score",
    "needs_review",
)


class ExtractionRepository(BaseRepository):
    """Repository for Extraction, ExtractionJob and OcrPage records."""

    # Extraction records

    def get_extraction(self, evidence_id: str) -> Optional[Extraction]:
        """Return the extraction record for an evidence file, if any."""
        with self._session("read") as session:
            return (
                session.query(Extraction)
                .filter(Extraction.evidence_id == evidence_id)
                .one_or_none()
            )

    def get_or_create_extraction(self, case_id: str, evidence_id: str,
                                 mime_type: Optional[str] = None) -> Extraction:
        """Return the extraction record, creating it in ``queued`` state.

        Args:
            case_id: Owning case
            evidence_id: Evidence file the record describes
            mime_type: Content type recorded on creation

        Returns:
            Existing or newly created Extraction

        Raises:
            DatabaseError: If persistence operation fails
        """
        with self._session("save") as session:
            record = (
                session.query(Extraction)
                .filter(Extraction.evidence_id == evidence_id)
                .one_or_none()
            )
            if record is None:
                record = Extraction(
                    case_id=case_id,
                    evidence_id=evidence_id,
                    mime_type=mime_type,
                    status="queued"
                )
                session.add(record)
                session.flush()
            return record

    def update_extraction(self, evidence_id: str, **fields: Any) -> Optional[Extraction]:
        """Apply field changes to the extraction record and bump ``updated_at``.

        Returns:
            The updated record, or None if no record exists
        """
        with self._session("update") as session:
            record = (
                session.query(Extraction)
                .filter(Extraction.evidence_id == evidence_id)
                .one_or_none()
            )
            if record is None:
                return None
            for key, value in fields.items():
                setattr(record, key, value)
            record.updated_at = utcnow()
            session.flush()
            return record

    def claim_for_processing(self, evidence_id: str, stale_before: datetime,
                             force: bool = False) -> bool:
        """Move the extraction record to ``processing`` unless a live job holds it.

        A record already in ``processing`` whose ``updated_at`` is newer
        than ``stale_before`` belongs to a live job and is left alone.
        Older ``processing`` records are considered abandoned and taken
        over. ``force`` skips the freshness check entirely.

        Args:
            evidence_id: Evidence file to claim
            stale_before: Cut-off separating live from abandoned jobs
            force: Take the record regardless of its current state

        Returns:
            True if the caller now owns the record, False otherwise
        """
        with self._session("update") as session:
            record = (
                session.query(Extraction)
                .filter(Extraction.evidence_id == evidence_id)
                .one_or_none()
            )
            if record is None:
                return False
            if (not force and record.status == "processing"
                    and record.updated_at is not None
                    and record.updated_at >= stale_before):
                return False
            record.status = "processing"
            record.error = None
            record.updated_at = utcnow()
            return True

    def list_stale_extractions(self, stale_before: datetime) -> List[Extraction]:
        """Return records stuck in ``processing`` since before the cut-off."""
        with self._session("read") as session:
            return (
                session.query(Extraction)
                .filter(Extraction.status == "processing")
                .filter(Extraction.updated_at < stale_before)
                .order_by(Extraction.updated_at)
                .all()
            )

    def reset_stale_to_queued(self, evidence_id: str, stale_before: datetime) -> bool:
        """Reset one stale ``processing`` record to ``queued``.

        The update only applies while the record is still stale, so a job
        that finished in the meantime keeps its final status.

        Returns:
            True if the record was reset
        """
        with self._session("update") as session:
            updated = (
                session.query(Extraction)
                .filter(Extraction.evidence_id == evidence_id)
                .filter(Extraction.status == "processing")
                .filter(Extraction.updated_at < stale_before)
                .update(
                    {Extraction.status: "queued", Extraction.updated_at: utcnow()},
                    synchronize_session=False
                )
            )
            return updated > 0

    def count_by_status(self, case_id: str) -> Dict[str, int]:
        """Return extraction counts per status for one case."""
        counts: Dict[str, int] = {"queued": 0, "processing": 0, "complete": 0, "failed": 0}
        with self._session("read") as session:
            rows = (
                session.query(Extraction.status, func.count(Extraction.id))
                .filter(Extraction.case_id == case_id)
                .group_by(Extraction.status)
                .all()
            )
        for status, count in rows:
            counts[status] = count
        return counts

    # Extraction jobs

    def upsert_job(self, case_id: str, evidence_id: str, **fields: Any) -> ExtractionJob:
        """Create or update the single job descriptor of an evidence file."""
        with self._session("save") as session:
            job = (
                session.query(ExtractionJob)
                .filter(ExtractionJob.evidence_id == evidence_id)
                .one_or_none()
            )
            if job is None:
                job = ExtractionJob(case_id=case_id, evidence_id=evidence_id)
                session.add(job)
            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = utcnow()
            session.flush()
            return job

    def get_job(self, evidence_id: str) -> Optional[ExtractionJob]:
        with self._session("read") as session:
            return (
                session.query(ExtractionJob)
                .filter(ExtractionJob.evidence_id == evidence_id)
                .one_or_none()
            )

    # OCR pages

    def upsert_ocr_page(self, case_id: str, evidence_id: str,
                        page_number: Optional[int], payload: Dict[str, Any]) -> OcrPage:
        """Insert or update the OCR row for (evidence_id, page_number).

        ``page_number`` None addresses the single row of a non-paged image.

        Args:
            case_id: Owning case
            evidence_id: Evidence file the page belongs to
            page_number: 1-based page number or None
            payload: Column values; unknown keys are ignored

        Returns:
            The stored OcrPage row

        Raises:
            DatabaseError: If persistence operation fails
        """
        with self._session("save") as session:
            query = session.query(OcrPage).filter(OcrPage.evidence_id == evidence_id)
            if page_number is None:
                query = query.filter(OcrPage.page_number.is_(None))
            else:
                query = query.filter(OcrPage.page_number == page_number)
            page = query.one_or_none()
            if page is None:
                page = OcrPage(case_id=case_id, evidence_id=evidence_id, page_number=page_number)
                session.add(page)
            for key in _OCR_PAGE_FIELDS:
                if key in payload:
                    setattr(page, key, payload[key])
            page.updated_at = utcnow()
            session.flush()
            return page

    def list_ocr_pages(self, evidence_id: str) -> List[OcrPage]:
        with self._session("read") as session:
            return (
                session.query(OcrPage)
                .filter(OcrPage.evidence_id == evidence_id)
                .order_by(OcrPage.page_number)
                .all()
            )
