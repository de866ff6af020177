"""Issue grouping bootstrap for the evidence pipeline.

Buckets a case's claims into a few thematic groups the first time enough
claims exist. Best-effort: failures are logged, never raised.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

from ..config import Config
from ..database import ClaimRepository
from ..exceptions import DatabaseError

__all__ = ["bootstrap_issue_groupings", "plan_issue_groupings", "IssuePlan"]

logger = logging.getLogger(__name__)

MAX_TYPE_GROUPS = 4
MAX_TAG_GROUPS = 3
MAX_GROUPS = 6
MIN_TAG_LENGTH = 3


@dataclass
class IssuePlan:
    title: str
    description: str
    tags: List[str] = field(default_factory=list)


def _top(counter: Counter, limit: int) -> List[str]:
    # Ties keep first-seen order.
    return [key for key, _ in sorted(counter.items(), key=lambda kv: -kv[1])[:limit]]


def plan_issue_groupings(claims: List, type_labels: Dict[str, str] = Config.ISSUE_TYPE_LABELS) -> List[IssuePlan]:
    """Derive issue groups from the most frequent claim types and tags.

    Args:
        claims: CaseClaim records of the case
        type_labels: Display titles per claim type

    Returns:
        At most six planned groups, type groups first
    """
    type_counts: Counter = Counter()
    tag_counts: Counter = Counter()
    for claim in claims:
        type_counts[claim.claim_type] += 1
        for tag in claim.tags or []:
            tag_counts[tag.lower()] += 1

    top_types = _top(type_counts, MAX_TYPE_GROUPS)
    top_tags = _top(Counter({t: c for t, c in tag_counts.items() if len(t) >= MIN_TAG_LENGTH}), MAX_TAG_GROUPS)

    plans: List[IssuePlan] = [
        IssuePlan(
            title=type_labels.get(claim_type, f"{claim_type[:1].upper()}{claim_type[1:]} Evidence"),
            description=f"Claims related to {claim_type} from case evidence",
            tags=[claim_type]
        )
        for claim_type in top_types
    ]
    for tag in top_tags:
        if tag not in top_types:
            plans.append(IssuePlan(
                title=f"{tag[:1].upper()}{tag[1:]} Issues",
                description=f'Claims tagged with "{tag}"',
                tags=[tag]
            ))
    return plans[:MAX_GROUPS]


def bootstrap_issue_groupings(claim_repository: ClaimRepository, case_id: str,
                              min_claims: int = Config.CLAIMS_BOOTSTRAP_MIN_CREATED) -> List[str]:
    """Create initial issue groupings for a case that has none.

    A no-op when the case already has groupings or fewer than
    ``min_claims`` claims.

    Returns:
        Ids of the created groupings
    """
    try:
        if claim_repository.list_issue_groupings(case_id):
            logger.debug("Issue groupings already exist for case %s", case_id)
            return []
        claims = claim_repository.list_claims(case_id)
        if len(claims) < min_claims:
            return []

        created: List[str] = []
        for plan in plan_issue_groupings(claims):
            issue = claim_repository.create_issue_grouping(case_id, plan.title, plan.description, plan.tags)
            created.append(issue.id)
            for claim in claims:
                claim_tags = [t.lower() for t in claim.tags or []]
                if any(t in claim_tags or t == claim.claim_type for t in plan.tags):
                    claim_repository.add_claim_to_issue(issue.id, claim.id)
        logger.info("Bootstrapped %d issue groupings for case %s", len(created), case_id)
        return created
    except DatabaseError as e:
        logger.error("Failed to bootstrap issue groupings for case %s: %s", case_id, e)
        return []
