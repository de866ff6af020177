"""Tests for the ClaimsAutoSuggestionScheduler.

This module covers debouncing, the once-per-evidence guarantee,
deduplicated insertion of suggested claims with their citations,
the single rate-limit retry and issue grouping bootstrap.
"""

import pytest

from evidence_pipeline.exceptions import AuthError, RateLimitError
from evidence_pipeline.processors import ClaimsAutoSuggestionScheduler

from tests.conftest import CASE_ID, make_suggestion

EVIDENCE_TEXT = "The parties met at the school on March 3 to exchange the children. " * 10


@pytest.fixture
def scheduler(claim_repository, extraction_repository, activity_repository, mock_suggester):
    return ClaimsAutoSuggestionScheduler(
        claim_repository,
        extraction_repository,
        activity_repository,
        mock_suggester,
        max_concurrent=2,
        debounce_seconds=0.05,
        retry_delay_seconds=0
    )


@pytest.fixture
def extracted_evidence(evidence_file, extraction_repository):
    """Evidence file whose extraction completed with enough text."""
    extraction_repository.get_or_create_extraction(CASE_ID, evidence_file.id, "application/pdf")
    extraction_repository.update_extraction(evidence_file.id, status="complete", extracted_text=EVIDENCE_TEXT)
    return evidence_file


def _statuses(activity_repository) -> list:
    return [a.metadata_json.get("status") for a in activity_repository.list_activity(CASE_ID, "claims_suggesting")]


class TestTrigger:
    """Test cases for triggering and debouncing."""

    @pytest.mark.asyncio
    async def test_short_text_is_skipped(self, scheduler, extracted_evidence, mock_suggester):
        assert scheduler.trigger(CASE_ID, extracted_evidence.id, "too short") is False
        assert not scheduler.is_pending(CASE_ID)
        mock_suggester.suggest_claims.assert_not_called()

    @pytest.mark.asyncio
    async def test_page_separators_do_not_count(self, scheduler, extracted_evidence):
        """Test that page headers of a mostly empty document do not reach the length gate."""
        text = "\n\n".join(f"----- Page {n} -----\nSigned." for n in range(1, 21))
        assert len(text) > 300

        assert scheduler.trigger(CASE_ID, extracted_evidence.id, text) is False
        assert not scheduler.is_pending(CASE_ID)

    @pytest.mark.asyncio
    async def test_debounced_run(self, scheduler, extracted_evidence, mock_suggester, claim_repository):
        """Test that a trigger leads to one suggestion pass after the quiet period."""
        mock_suggester.suggest_claims.return_value = [make_suggestion("The parties met at the school.")]

        assert scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT) is True
        assert scheduler.is_pending(CASE_ID)
        mock_suggester.suggest_claims.assert_not_called()

        await scheduler.wait_idle()

        mock_suggester.suggest_claims.assert_called_once_with(EVIDENCE_TEXT)
        assert [c.claim_text for c in claim_repository.list_claims(CASE_ID)] == ["The parties met at the school."]
        assert scheduler.has_run(extracted_evidence.id)
        assert not scheduler.is_pending(CASE_ID)

    @pytest.mark.asyncio
    async def test_retrigger_restarts_quiet_period(self, scheduler, extracted_evidence, mock_suggester,
                                                   evidence_repository, extraction_repository):
        """Test that triggers within the quiet period collapse into one pass per evidence."""
        other = evidence_repository.create_evidence(CASE_ID, "application/pdf", "k2", "second.pdf")
        extraction_repository.get_or_create_extraction(CASE_ID, other.id, "application/pdf")
        extraction_repository.update_extraction(other.id, status="complete", extracted_text=EVIDENCE_TEXT)

        scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT)
        scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT)
        scheduler.trigger(CASE_ID, other.id, EVIDENCE_TEXT)
        assert scheduler.get_stats()["pending"] == 1

        await scheduler.wait_idle()

        assert mock_suggester.suggest_claims.call_count == 2
        assert scheduler.has_run(extracted_evidence.id)
        assert scheduler.has_run(other.id)

    @pytest.mark.asyncio
    async def test_processed_evidence_not_retriggered(self, scheduler, extracted_evidence, mock_suggester):
        scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT)
        await scheduler.wait_idle()

        assert scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT) is False
        await scheduler.wait_idle()
        assert mock_suggester.suggest_claims.call_count == 1

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler, extracted_evidence, mock_suggester):
        scheduler.trigger(CASE_ID, extracted_evidence.id, EVIDENCE_TEXT)

        assert scheduler.cancel(CASE_ID) is True
        assert scheduler.cancel(CASE_ID) is False
        await scheduler.wait_idle()

        mock_suggester.suggest_claims.assert_not_called()
        assert not scheduler.has_run(extracted_evidence.id)


class TestSuggestionRun:
    """Test cases for one suggestion pass."""

    @pytest.mark.asyncio
    async def test_duplicates_are_skipped(self, scheduler, extracted_evidence, mock_suggester,
                                          claim_repository, activity_repository):
        """Test one new claim created and one duplicate of an existing claim skipped."""
        claim_repository.create_claim(CASE_ID, "The car was red.")
        mock_suggester.suggest_claims.return_value = [
            make_suggestion("the car  was RED."),
            make_suggestion("The hearing was postponed."),
        ]

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.created == 1
        assert result.skipped == 1
        assert result.error is None
        texts = sorted(c.claim_text for c in claim_repository.list_claims(CASE_ID))
        assert texts == ["The car was red.", "The hearing was postponed."]
        suggested = activity_repository.list_activity(CASE_ID, "claims_suggested")
        assert suggested[0].metadata_json["created"] == 1
        assert _statuses(activity_repository) == ["started"]

    @pytest.mark.asyncio
    async def test_duplicates_within_one_answer(self, scheduler, extracted_evidence, mock_suggester):
        mock_suggester.suggest_claims.return_value = [
            make_suggestion("Same claim."),
            make_suggestion("same   claim."),
            make_suggestion("   "),
        ]

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.created == 1
        assert result.skipped == 2

    @pytest.mark.asyncio
    async def test_citation_created_and_attached(self, scheduler, extracted_evidence, mock_suggester,
                                                 claim_repository):
        """Test the stored citation pointer of a suggested claim."""
        long_quote = "q" * 600
        mock_suggester.suggest_claims.return_value = [make_suggestion("Quoted claim.", quote=long_quote, page=4)]

        await scheduler.rerun(CASE_ID, extracted_evidence.id)

        claim = claim_repository.list_claims(CASE_ID)[0]
        assert claim.created_from == "ai_suggested"
        assert claim.status == "suggested"
        citations = claim_repository.list_claim_citations(claim.id)
        assert len(citations) == 1
        citation = citations[0]
        assert citation.evidence_file_id == extracted_evidence.id
        assert len(citation.quote) == 500
        assert len(citation.excerpt) == 200
        assert citation.page_number == 4
        assert citation.confidence == 0.8

    @pytest.mark.asyncio
    async def test_claim_without_citation(self, scheduler, extracted_evidence, mock_suggester, claim_repository):
        mock_suggester.suggest_claims.return_value = [make_suggestion("Uncited claim.", quote=None)]

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.created == 1
        claim = claim_repository.list_claims(CASE_ID)[0]
        assert claim_repository.list_claim_citations(claim.id) == []
        assert claim_repository.list_case_citations(CASE_ID) == []

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once(self, scheduler, extracted_evidence, mock_suggester):
        mock_suggester.suggest_claims.side_effect = [RateLimitError(), [make_suggestion("After retry.")]]

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.created == 1
        assert mock_suggester.suggest_claims.call_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_twice_gives_up(self, scheduler, extracted_evidence, mock_suggester,
                                             activity_repository):
        mock_suggester.suggest_claims.side_effect = RateLimitError()

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.error == "Rate limited - too many requests"
        assert mock_suggester.suggest_claims.call_count == 2
        assert "rate_limited" in _statuses(activity_repository)

    @pytest.mark.asyncio
    async def test_auth_error_blocks(self, scheduler, extracted_evidence, mock_suggester, activity_repository):
        mock_suggester.suggest_claims.side_effect = AuthError("bad key")

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.error == "Authentication error"
        assert mock_suggester.suggest_claims.call_count == 1
        assert "blocked_invalid_key" in _statuses(activity_repository)

    @pytest.mark.asyncio
    async def test_missing_suggester(self, claim_repository, extraction_repository, activity_repository,
                                     extracted_evidence):
        scheduler = ClaimsAutoSuggestionScheduler(
            claim_repository, extraction_repository, activity_repository, None, debounce_seconds=0
        )

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.error == "no_api_key"
        assert "blocked_invalid_key" in _statuses(activity_repository)

    @pytest.mark.asyncio
    async def test_extraction_not_complete(self, scheduler, evidence_file, extraction_repository, mock_suggester):
        extraction_repository.get_or_create_extraction(CASE_ID, evidence_file.id, "application/pdf")

        result = await scheduler.rerun(CASE_ID, evidence_file.id)

        assert result.error == "extraction_not_complete"
        mock_suggester.suggest_claims.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_claims_for_evidence(self, scheduler, extracted_evidence, mock_suggester,
                                                claim_repository):
        """Test that evidence already cited by a claim is not suggested again."""
        claim = claim_repository.create_claim(CASE_ID, "Existing claim.")
        citation = claim_repository.create_citation(CASE_ID, extracted_evidence.id, "quote")
        claim_repository.attach_citation(claim.id, citation.id)

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.error == "claims_exist"
        mock_suggester.suggest_claims.assert_not_called()

    @pytest.mark.asyncio
    async def test_issue_groupings_bootstrapped(self, scheduler, extracted_evidence, mock_suggester,
                                                claim_repository, activity_repository):
        mock_suggester.suggest_claims.return_value = [
            make_suggestion("Claim one.", tags=["school"]),
            make_suggestion("Claim two.", tags=["school"]),
            make_suggestion("Claim three.", claim_type="custody"),
        ]

        result = await scheduler.rerun(CASE_ID, extracted_evidence.id)

        assert result.created == 3
        titles = [i.title for i in claim_repository.list_issue_groupings(CASE_ID)]
        assert titles == ["Key Facts", "Custody Matters", "School Issues"]
        assert len(activity_repository.list_activity(CASE_ID, "issue_groupings_bootstrapped")) == 1
