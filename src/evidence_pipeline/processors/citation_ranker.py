"""Citation auto-attach ranker for the evidence pipeline.

This module contains the CitationAutoAttachRanker class which fills
citation gaps on a claim from citations already present in the case,
without another LLM call.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from ..config import Config
from ..database import ActivityRepository, ClaimRepository
from ..exceptions import ValidationError
from ..models import CitationPointer

__all__ = ["CitationAutoAttachRanker", "AutoAttachResult", "ScoredCitation", "claim_keywords"]

logger = logging.getLogger(__name__)

_TOKEN_SPLIT = re.compile(r"[^\w']+")


def claim_keywords(claim_text: str, min_length: int = Config.RANK_KEYWORD_MIN_LENGTH) -> List[str]:
    """Lower-cased distinct tokens of a claim long enough to be meaningful."""
    seen: Set[str] = set()
    keywords: List[str] = []
    for token in _TOKEN_SPLIT.split(claim_text.lower()):
        token = token.strip("'")
        if len(token) >= min_length and token not in seen:
            seen.add(token)
            keywords.append(token)
    return keywords


@dataclass
class ScoredCitation:
    citation: CitationPointer
    score: int


@dataclass
class AutoAttachResult:
    """Outcome of one auto-attach call."""
    attached: int = 0
    citation_ids: List[str] = field(default_factory=list)


class CitationAutoAttachRanker:
    """Scores existing case citations against a claim and attaches the best.

    Scoring favours, in decreasing weight: citations from a preferred
    evidence file, keyword overlap with the claim, a known page or
    timestamp, and an excerpt of reasonable length.

    Attributes:
        claim_repository: Claims and citations
        activity_repository: Optional audit trail
    """

    def __init__(
        self,
        claim_repository: ClaimRepository,
        activity_repository: Optional[ActivityRepository] = None,
        preferred_weight: int = Config.RANK_PREFERRED_EVIDENCE_WEIGHT,
        keyword_weight: int = Config.RANK_KEYWORD_WEIGHT,
        location_weight: int = Config.RANK_LOCATION_WEIGHT,
        excerpt_weight: int = Config.RANK_EXCERPT_LENGTH_WEIGHT,
        excerpt_min_chars: int = Config.RANK_EXCERPT_MIN_CHARS,
        excerpt_max_chars: int = Config.RANK_EXCERPT_MAX_CHARS,
        keyword_min_length: int = Config.RANK_KEYWORD_MIN_LENGTH
    ) -> None:
        self.claim_repository: ClaimRepository = claim_repository
        self.activity_repository: Optional[ActivityRepository] = activity_repository
        self.preferred_weight: int = preferred_weight
        self.keyword_weight: int = keyword_weight
        self.location_weight: int = location_weight
        self.excerpt_weight: int = excerpt_weight
        self.excerpt_min_chars: int = excerpt_min_chars
        self.excerpt_max_chars: int = excerpt_max_chars
        self.keyword_min_length: int = keyword_min_length

    def score_citation(self, citation: CitationPointer, keywords: Iterable[str],
                       preferred_evidence_ids: Optional[Set[str]] = None) -> int:
        """Heuristic relevance score of one citation for a claim.

        Args:
            citation: Candidate citation
            keywords: Claim keywords from ``claim_keywords``
            preferred_evidence_ids: Evidence files the caller favours

        Returns:
            Non-negative score, higher is better
        """
        score = 0
        if preferred_evidence_ids and citation.evidence_file_id in preferred_evidence_ids:
            score += self.preferred_weight

        quote = (citation.quote or "").lower()
        score += self.keyword_weight * sum(1 for keyword in keywords if keyword in quote)

        if citation.page_number is not None or citation.timestamp_seconds is not None:
            score += self.location_weight

        if self.excerpt_min_chars <= len(citation.quote or "") <= self.excerpt_max_chars:
            score += self.excerpt_weight
        return score

    def rank(self, claim_text: str, candidates: List[CitationPointer],
             preferred_evidence_ids: Optional[Set[str]] = None) -> List[ScoredCitation]:
        """Sort candidates by descending score; ties keep candidate order."""
        keywords = claim_keywords(claim_text, self.keyword_min_length)
        scored = [
            ScoredCitation(citation=c, score=self.score_citation(c, keywords, preferred_evidence_ids))
            for c in candidates
        ]
        return sorted(scored, key=lambda s: -s.score)

    def auto_attach(self, case_id: str, claim_id: str, max_attach: int = 1,
                    preferred_evidence_ids: Optional[Iterable[str]] = None) -> AutoAttachResult:
        """Attach the best existing citations until the claim has ``max_attach``.

        Args:
            case_id: Owning case
            claim_id: Claim to fill
            max_attach: Target citation count for the claim
            preferred_evidence_ids: Evidence files to favour

        Returns:
            AutoAttachResult with the number attached and the citation ids

        Raises:
            ValidationError: If the claim does not exist in the case
        """
        claim = self.claim_repository.get_claim(claim_id)
        if claim is None or claim.case_id != case_id:
            raise ValidationError(f"Claim {claim_id} not found in case {case_id}")

        existing = self.claim_repository.list_claim_citations(claim_id)
        needed = max(0, max_attach - len(existing))
        result = AutoAttachResult()
        if needed == 0:
            return result

        attached_ids = {c.id for c in existing}
        candidates = [
            c for c in self.claim_repository.list_case_citations(case_id)
            if c.id not in attached_ids
        ]
        if not candidates:
            logger.info("No candidate citations for claim %s", claim_id)
            return result

        preferred = set(preferred_evidence_ids or [])
        for scored in self.rank(claim.claim_text, candidates, preferred)[:needed]:
            self.claim_repository.attach_citation(claim_id, scored.citation.id)
            result.attached += 1
            result.citation_ids.append(scored.citation.id)

        if self.activity_repository is not None and result.attached:
            self.activity_repository.record_activity(
                case_id, "citations_auto_attached",
                f"Attached {result.attached} citation(s) to claim",
                {"claimId": claim_id, "citationIds": result.citation_ids}
            )
        return result
