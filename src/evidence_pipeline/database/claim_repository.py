"""Claim repository for the evidence pipeline.

This module contains the ClaimRepository class covering case claims,
citation pointers, the claim-citation join, issue groupings and
extracted evidence facts.
"""

from typing import Dict, Iterable, List, Optional, Set

from ..exceptions import ValidationError
from ..models import (
    CaseClaim,
    CitationPointer,
    ClaimCitation,
    EvidenceFact,
    IssueClaim,
    IssueGrouping,
    utcnow,
)
from .base_repository import BaseRepository

__all__ = ["ClaimRepository", "normalize_claim_text", "ALLOWED_TRANSITIONS"]

# Claims created by AI or a user only move between these states afterwards.
ALLOWED_TRANSITIONS: Dict[str, Set[str]] = {
    "suggested": {"accepted", "rejected"},
    "rejected": {"suggested"},
    "accepted": set(),
}

_LIVE_STATUSES = ("suggested", "accepted")


def normalize_claim_text(text: str) -> str:
    """Lower-case claim text and collapse whitespace for duplicate detection."""
    return " ".join((text or "").lower().split())


class ClaimRepository(BaseRepository):
    """Repository for claims, citations and their groupings."""

    # Citations

    def create_citation(self, case_id: str, evidence_file_id: str, quote: str,
                        page_number: Optional[int] = None,
                        timestamp_seconds: Optional[float] = None,
                        start_offset: Optional[int] = None,
                        end_offset: Optional[int] = None,
                        excerpt: Optional[str] = None,
                        confidence: Optional[float] = None) -> CitationPointer:
        """Create an immutable citation pointer into one evidence file.

        Raises:
            DatabaseError: If persistence operation fails
        """
        with self._session("save") as session:
            citation = CitationPointer(
                case_id=case_id,
                evidence_file_id=evidence_file_id,
                quote=quote or "",
                page_number=page_number,
                timestamp_seconds=timestamp_seconds,
                start_offset=start_offset,
                end_offset=end_offset,
                excerpt=excerpt,
                confidence=confidence
            )
            session.add(citation)
            session.flush()
            return citation

    def list_case_citations(self, case_id: str) -> List[CitationPointer]:
        with self._session("read") as session:
            return (
                session.query(CitationPointer)
                .filter(CitationPointer.case_id == case_id)
                .order_by(CitationPointer.created_at, CitationPointer.id)
                .all()
            )

    def list_claim_citations(self, claim_id: str) -> List[CitationPointer]:
        """Return citations attached to a claim in attachment order."""
        with self._session("read") as session:
            return (
                session.query(CitationPointer)
                .join(ClaimCitation, ClaimCitation.citation_id == CitationPointer.id)
                .filter(ClaimCitation.claim_id == claim_id)
                .order_by(ClaimCitation.created_at, CitationPointer.id)
                .all()
            )

    def attach_citation(self, claim_id: str, citation_id: str) -> bool:
        """Link a citation to a claim.

        Attaching an already attached citation is a successful no-op.

        Returns:
            True if a new link was created, False if it already existed
        """
        with self._session("save") as session:
            existing = (
                session.query(ClaimCitation)
                .filter(ClaimCitation.claim_id == claim_id)
                .filter(ClaimCitation.citation_id == citation_id)
                .one_or_none()
            )
            if existing is not None:
                return False
            session.add(ClaimCitation(claim_id=claim_id, citation_id=citation_id))
            return True

    # Claims

    def create_claim(self, case_id: str, claim_text: str, claim_type: str = "fact",
                     tags: Optional[Iterable[str]] = None, missing_info_flag: bool = False,
                     created_from: str = "manual", status: str = "suggested") -> CaseClaim:
        """Create a claim, refusing duplicates of live claims in the case.

        Args:
            case_id: Owning case
            claim_text: Neutral factual statement
            claim_type: Claim category
            tags: Free-form tags
            missing_info_flag: Whether the claim lacks a date, place or similar detail
            created_from: manual | ai_suggested | ai_extracted | evidence_fact
            status: Initial status

        Returns:
            The created CaseClaim

        Raises:
            ValidationError: If a suggested/accepted claim with the same
                normalized text already exists in the case
            DatabaseError: If persistence operation fails
        """
        text = (claim_text or "").strip()
        if not text:
            raise ValidationError("Claim text must not be empty")

        with self._session("save") as session:
            if status in _LIVE_STATUSES:
                self._ensure_unique(session, case_id, text)
            claim = CaseClaim(
                case_id=case_id,
                claim_text=text,
                claim_type=claim_type,
                tags=list(tags or []),
                missing_info_flag=missing_info_flag,
                created_from=created_from,
                status=status
            )
            session.add(claim)
            session.flush()
            return claim

    def get_claim(self, claim_id: str) -> Optional[CaseClaim]:
        with self._session("read") as session:
            return session.get(CaseClaim, claim_id)

    def list_claims(self, case_id: str, status: Optional[str] = None,
                    evidence_file_id: Optional[str] = None) -> List[CaseClaim]:
        """List claims of a case in creation order.

        Args:
            case_id: Owning case
            status: Only claims with this status
            evidence_file_id: Only claims citing this evidence file
        """
        with self._session("read") as session:
            query = session.query(CaseClaim).filter(CaseClaim.case_id == case_id)
            if status is not None:
                query = query.filter(CaseClaim.status == status)
            if evidence_file_id is not None:
                cited = (
                    session.query(ClaimCitation.claim_id)
                    .join(CitationPointer, CitationPointer.id == ClaimCitation.citation_id)
                    .filter(CitationPointer.evidence_file_id == evidence_file_id)
                )
                query = query.filter(CaseClaim.id.in_(cited))
            return query.order_by(CaseClaim.created_at, CaseClaim.id).all()

    def normalized_live_texts(self, case_id: str) -> Set[str]:
        """Return normalized texts of all suggested/accepted claims in a case."""
        with self._session("read") as session:
            rows = (
                session.query(CaseClaim.claim_text)
                .filter(CaseClaim.case_id == case_id)
                .filter(CaseClaim.status.in_(_LIVE_STATUSES))
                .all()
            )
        return {normalize_claim_text(text) for (text,) in rows}

    def set_claim_status(self, claim_id: str, status: str) -> CaseClaim:
        """Transition a claim to a new status.

        Raises:
            ValidationError: If the claim is unknown, the transition is not
                allowed, or restoring it would duplicate a live claim
        """
        with self._session("update") as session:
            claim = session.get(CaseClaim, claim_id)
            if claim is None:
                raise ValidationError(f"Claim {claim_id} not found")
            if status == claim.status:
                return claim
            if status not in ALLOWED_TRANSITIONS.get(claim.status, set()):
                raise ValidationError(
                    f"Cannot move claim from '{claim.status}' to '{status}'"
                )
            if status in _LIVE_STATUSES and claim.status not in _LIVE_STATUSES:
                self._ensure_unique(session, claim.case_id, claim.claim_text, exclude_id=claim.id)
            claim.status = status
            claim.updated_at = utcnow()
            session.flush()
            return claim

    def _ensure_unique(self, session, case_id: str, text: str,
                       exclude_id: Optional[str] = None) -> None:
        normalized = normalize_claim_text(text)
        query = (
            session.query(CaseClaim.id, CaseClaim.claim_text)
            .filter(CaseClaim.case_id == case_id)
            .filter(CaseClaim.status.in_(_LIVE_STATUSES))
        )
        for claim_id, existing_text in query.all():
            if claim_id != exclude_id and normalize_claim_text(existing_text) == normalized:
                raise ValidationError(f"Duplicate claim text in case {case_id}")

    # Issue groupings

    def list_issue_groupings(self, case_id: str) -> List[IssueGrouping]:
        with self._session("read") as session:
            return (
                session.query(IssueGrouping)
                .filter(IssueGrouping.case_id == case_id)
                .order_by(IssueGrouping.created_at, IssueGrouping.id)
                .all()
            )

    def create_issue_grouping(self, case_id: str, title: str, description: str,
                              tags: Iterable[str]) -> IssueGrouping:
        with self._session("save") as session:
            issue = IssueGrouping(case_id=case_id, title=title,
                                  description=description, tags=list(tags))
            session.add(issue)
            session.flush()
            return issue

    def add_claim_to_issue(self, issue_id: str, claim_id: str) -> bool:
        with self._session("save") as session:
            existing = (
                session.query(IssueClaim)
                .filter(IssueClaim.issue_id == issue_id)
                .filter(IssueClaim.claim_id == claim_id)
                .one_or_none()
            )
            if existing is not None:
                return False
            session.add(IssueClaim(issue_id=issue_id, claim_id=claim_id))
            return True

    def list_issue_claim_ids(self, issue_id: str) -> List[str]:
        with self._session("read") as session:
            rows = session.query(IssueClaim.claim_id).filter(IssueClaim.issue_id == issue_id).all()
        return [claim_id for (claim_id,) in rows]

    # Evidence facts

    def create_evidence_fact(self, case_id: str, evidence_id: str, fact_text: str,
                             fact_type: str = "other", confidence: Optional[int] = None,
                             promoted_to_claim: bool = False) -> EvidenceFact:
        with self._session("save") as session:
            fact = EvidenceFact(
                case_id=case_id,
                evidence_id=evidence_id,
                fact_text=fact_text,
                fact_type=fact_type,
                confidence=confidence,
                promoted_to_claim=promoted_to_claim
            )
            session.add(fact)
            session.flush()
            return fact

    def list_evidence_facts(self, case_id: str) -> List[EvidenceFact]:
        with self._session("read") as session:
            return (
                session.query(EvidenceFact)
                .filter(EvidenceFact.case_id == case_id)
                .order_by(EvidenceFact.created_at, EvidenceFact.id)
                .all()
            )
