"""Claims auto-suggestion scheduler for the evidence pipeline.

This module contains the ClaimsAutoSuggestionScheduler class which, once
an evidence file has extracted text, asks the LLM for suggested claims.
Triggers are debounced per case, each evidence file is processed at
most once per process lifetime, and proposed claims are deduplicated
against the case before insertion.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..config import Config
from ..database import ActivityRepository, ClaimRepository, ExtractionRepository, normalize_claim_text
from ..exceptions import AuthError, RateLimitError, ValidationError, humanize_error
from ..extractors import ClaimSuggester, SuggestedClaim
from .concurrency import ConcurrencyLimiter
from .issue_groupings import bootstrap_issue_groupings
from .text_engine import content_length

__all__ = ["ClaimsAutoSuggestionScheduler", "AutoSuggestResult"]

logger = logging.getLogger(__name__)


@dataclass
class AutoSuggestResult:
    """Outcome of one suggestion run for one evidence file."""
    created: int = 0
    skipped: int = 0
    error: Optional[str] = None


class ClaimsAutoSuggestionScheduler:
    """Debounced, deduplicated background claim generation.

    Attributes:
        claim_repository: Claims, citations and issue groupings
        extraction_repository: Source of extracted text
        activity_repository: Audit trail
        suggester: LLM claim suggester, None when no API key is configured
        debounce_seconds: Quiet period per case before a pass fires
        retry_delay_seconds: Back-off before the single rate-limit retry
        min_text_length: Texts shorter than this are not worth a call
    """

    def __init__(
        self,
        claim_repository: ClaimRepository,
        extraction_repository: ExtractionRepository,
        activity_repository: ActivityRepository,
        suggester: Optional[ClaimSuggester],
        max_concurrent: int = Config.CLAIMS_CONCURRENCY,
        debounce_seconds: float = Config.CLAIMS_DEBOUNCE_SECONDS,
        retry_delay_seconds: float = Config.CLAIMS_RETRY_DELAY_SECONDS,
        min_text_length: int = Config.CLAIMS_MIN_TEXT_LENGTH,
        max_text_chars: int = Config.CLAIMS_MAX_TEXT_SLICE,
        bootstrap_min_created: int = Config.CLAIMS_BOOTSTRAP_MIN_CREATED,
        quote_max_chars: int = Config.CITATION_QUOTE_MAX_CHARS,
        excerpt_max_chars: int = Config.CITATION_EXCERPT_MAX_CHARS,
        citation_confidence: float = Config.AI_CITATION_CONFIDENCE
    ) -> None:
        self.claim_repository: ClaimRepository = claim_repository
        self.extraction_repository: ExtractionRepository = extraction_repository
        self.activity_repository: ActivityRepository = activity_repository
        self.suggester: Optional[ClaimSuggester] = suggester
        self.debounce_seconds: float = debounce_seconds
        self.retry_delay_seconds: float = retry_delay_seconds
        self.min_text_length: int = min_text_length
        self.max_text_chars: int = max_text_chars
        self.bootstrap_min_created: int = bootstrap_min_created
        self.quote_max_chars: int = quote_max_chars
        self.excerpt_max_chars: int = excerpt_max_chars
        self.citation_confidence: float = citation_confidence
        self._limiter: ConcurrencyLimiter = ConcurrencyLimiter(max_concurrent)
        self._processed: Set[str] = set()
        self._timers: Dict[str, "asyncio.Task[None]"] = {}
        self._pending_evidence: Dict[str, List[str]] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def _track(self, task: "asyncio.Task[Any]") -> "asyncio.Task[Any]":
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def trigger(self, case_id: str, evidence_id: str, text: str) -> bool:
        """Schedule a debounced suggestion pass for new evidence text.

        Must be called from a running event loop. A new trigger for a case
        restarts its quiet period; evidence ids triggered meanwhile are all
        handled by the pass that finally fires.

        Args:
            case_id: Owning case
            evidence_id: Evidence file whose extraction just completed
            text: Extracted text

        Returns:
            True if a pass is now scheduled for the evidence
        """
        length = content_length(text)
        if length < self.min_text_length:
            logger.info("Skipped evidence %s: text too short (%d chars)", evidence_id, length)
            return False
        if evidence_id in self._processed:
            logger.info("Skipped evidence %s: already processed", evidence_id)
            return False

        existing = self._timers.pop(case_id, None)
        if existing is not None:
            existing.cancel()

        pending = self._pending_evidence.setdefault(case_id, [])
        if evidence_id not in pending:
            pending.append(evidence_id)

        self._timers[case_id] = self._track(asyncio.ensure_future(self._debounce(case_id)))
        logger.info("Scheduled claim suggestion for evidence %s (debounced %ss)", evidence_id, self.debounce_seconds)
        return True

    async def _debounce(self, case_id: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._timers.pop(case_id, None)
        evidence_ids = self._pending_evidence.pop(case_id, [])
        for evidence_id in evidence_ids:
            self._track(self._limiter.submit(
                lambda e=evidence_id: self._run_for_evidence(case_id, e)
            ))

    def cancel(self, case_id: str) -> bool:
        """Drop a pending debounced pass for a case.

        Returns:
            True if a pass was pending
        """
        timer = self._timers.pop(case_id, None)
        self._pending_evidence.pop(case_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def is_pending(self, case_id: str) -> bool:
        return case_id in self._timers

    def has_run(self, evidence_id: str) -> bool:
        return evidence_id in self._processed

    async def rerun(self, case_id: str, evidence_id: str) -> AutoSuggestResult:
        """Run suggestion again for one evidence file on explicit user request.

        Clears the processed mark and skips the debounce, but still goes
        through the concurrency cap.
        """
        self._processed.discard(evidence_id)
        return await self._limiter.run(lambda: self._run_for_evidence(case_id, evidence_id))

    async def _run_for_evidence(self, case_id: str, evidence_id: str) -> AutoSuggestResult:
        self._processed.add(evidence_id)
        try:
            await self._activity(case_id, "claims_suggesting", "Background: generating suggested claims...",
                                 {"evidenceId": evidence_id, "status": "started"})

            extraction = await asyncio.to_thread(self.extraction_repository.get_extraction, evidence_id)
            if extraction is None or extraction.status != "complete" or not (extraction.extracted_text or "").strip():
                logger.info("Skipped evidence %s: extraction not complete", evidence_id)
                return AutoSuggestResult(error="extraction_not_complete")

            existing = await asyncio.to_thread(
                self.claim_repository.list_claims, case_id, None, evidence_id
            )
            if existing:
                logger.info("Skipped evidence %s: claims already exist (%d)", evidence_id, len(existing))
                return AutoSuggestResult(error="claims_exist")

            if self.suggester is None:
                await self._activity(case_id, "claims_suggesting", "Background claims failed: invalid API key",
                                     {"evidenceId": evidence_id, "status": "blocked_invalid_key"})
                logger.error("No OpenAI API key configured, cannot suggest claims")
                return AutoSuggestResult(error="no_api_key")

            text = extraction.extracted_text[:self.max_text_chars]
            result = await self._suggest_with_retry(case_id, evidence_id, text)

            await self._activity(case_id, "claims_suggested", f"Generated {result.created} suggested claims",
                                 {"evidenceId": evidence_id, "created": result.created,
                                  "skipped": result.skipped, "status": "completed"})

            if result.created >= self.bootstrap_min_created:
                created = await asyncio.to_thread(bootstrap_issue_groupings, self.claim_repository, case_id)
                if created:
                    await self._activity(case_id, "issue_groupings_bootstrapped",
                                         f"Created {len(created)} issue groupings", {"issueIds": created})

            logger.info("Claim suggestion complete for evidence %s: created=%d, skipped=%d",
                        evidence_id, result.created, result.skipped)
            return result

        except AuthError as e:
            logger.error("Claim suggestion blocked for evidence %s: invalid OpenAI credentials", evidence_id)
            return AutoSuggestResult(error=humanize_error(e))
        except Exception as e:
            message = humanize_error(e)
            logger.error("Claim suggestion failed for evidence %s: %s", evidence_id, message)
            await self._activity(case_id, "claims_suggesting", f"Background claims failed: {message}",
                                 {"evidenceId": evidence_id, "status": "failed", "error": message})
            return AutoSuggestResult(error=message)

    async def _suggest_with_retry(self, case_id: str, evidence_id: str, text: str) -> AutoSuggestResult:
        """Call the LLM, retrying exactly once after a rate limit."""
        attempt = 0
        while True:
            try:
                suggestions = await asyncio.to_thread(self.suggester.suggest_claims, text)
                return await self._insert_suggestions(case_id, evidence_id, suggestions)
            except RateLimitError:
                if attempt < 1:
                    attempt += 1
                    logger.warning("Rate limited, retrying in %ss", self.retry_delay_seconds)
                    await asyncio.sleep(self.retry_delay_seconds)
                    continue
                await self._activity(case_id, "claims_suggesting", "Rate limited by OpenAI",
                                     {"evidenceId": evidence_id, "status": "rate_limited"})
                raise
            except AuthError:
                await self._activity(case_id, "claims_suggesting", "Blocked: invalid OpenAI key",
                                     {"evidenceId": evidence_id, "status": "blocked_invalid_key"})
                raise

    async def _insert_suggestions(self, case_id: str, evidence_id: str,
                                  suggestions: List[SuggestedClaim]) -> AutoSuggestResult:
        """Store suggested claims that are not already in the case.

        Each claim gets its citation created first, then the claim, then
        the link between them.
        """
        seen = await asyncio.to_thread(self.claim_repository.normalized_live_texts, case_id)
        result = AutoSuggestResult()

        for suggestion in suggestions:
            text = suggestion.claim_text.strip()
            normalized = normalize_claim_text(text)
            if not normalized or normalized in seen:
                result.skipped += 1
                continue
            seen.add(normalized)

            citation = suggestion.citation
            pointer = None
            if citation is not None:
                pointer = await asyncio.to_thread(
                    self.claim_repository.create_citation,
                    case_id,
                    evidence_id,
                    citation.quote[:self.quote_max_chars],
                    citation.page_number,
                    citation.timestamp_seconds,
                    citation.start_offset,
                    citation.end_offset,
                    citation.quote[:self.excerpt_max_chars],
                    self.citation_confidence
                )
            try:
                claim = await asyncio.to_thread(
                    self.claim_repository.create_claim,
                    case_id,
                    text,
                    suggestion.claim_type.value,
                    suggestion.tags,
                    suggestion.missing_info_flag,
                    "ai_suggested",
                    "suggested"
                )
            except ValidationError:
                result.skipped += 1
                continue
            if pointer is not None:
                await asyncio.to_thread(self.claim_repository.attach_citation, claim.id, pointer.id)
            result.created += 1

        return result

    async def _activity(self, case_id: str, event_type: str, message: str, metadata: Dict[str, Any]) -> None:
        await asyncio.to_thread(self.activity_repository.record_activity, case_id, event_type, message, metadata)

    def get_stats(self) -> Dict[str, int]:
        return {
            "active": self._limiter.active,
            "queued": self._limiter.pending,
            "pending": len(self._timers),
            "processed": len(self._processed),
        }

    async def wait_idle(self) -> None:
        """Wait for pending debounce timers and running suggestion passes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel debounce timers and wait for running passes."""
        for case_id in list(self._timers):
            self.cancel(case_id)
        await self.wait_idle()
