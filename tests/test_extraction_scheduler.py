"""Tests for the ExtractionScheduler.

This module covers the job lifecycle, duplicate suppression, failure
recording, temp file cleanup and the stale-job sweep.
"""

from unittest.mock import Mock, patch

import pytest

from evidence_pipeline.processors import DualProviderTextEngine, ExtractionScheduler

from tests.conftest import CASE_ID, FakeOcrProvider, FakeTextExtractor

NATIVE_PAGE = "Incident report filed by the officer on duty at the north precinct."
OCR_TEXT = "Handwritten note scanned from the second page of the report"


@pytest.fixture
def engine() -> DualProviderTextEngine:
    return DualProviderTextEngine(
        ocr_provider=FakeOcrProvider(text=OCR_TEXT, confidence=90),
        text_extractor=FakeTextExtractor([NATIVE_PAGE, ""]),
        mode="native_first"
    )


@pytest.fixture
def claims_trigger() -> Mock:
    trigger = Mock()
    trigger.trigger.return_value = True
    return trigger


@pytest.fixture
def scheduler(extraction_repository, activity_repository, storage, engine, claims_trigger) -> ExtractionScheduler:
    return ExtractionScheduler(
        extraction_repository,
        activity_repository,
        storage,
        engine,
        claims_trigger=claims_trigger,
        max_concurrent=2,
        stale_threshold_minutes=15
    )


def _track_downloads(scheduler: ExtractionScheduler) -> list:
    paths = []
    original = scheduler._download

    def tracking(evidence):
        path = original(evidence)
        paths.append(path)
        return path

    scheduler._download = tracking
    return paths


class TestExtractionScheduler:
    """Test cases for ExtractionScheduler class."""

    @pytest.mark.asyncio
    async def test_successful_extraction(self, scheduler, evidence_file, extraction_repository,
                                         activity_repository, claims_trigger):
        """Test that a job completes, stores pages and hands text downstream."""
        downloads = _track_downloads(scheduler)

        assert await scheduler.enqueue(evidence_file) is True
        await scheduler.wait_idle()

        record = extraction_repository.get_extraction(evidence_file.id)
        assert record.status == "complete"
        assert NATIVE_PAGE in record.extracted_text
        assert OCR_TEXT in record.extracted_text
        assert record.metadata_json["pagesProcessed"] == 2
        assert record.error is None

        job = extraction_repository.get_job(evidence_file.id)
        assert job.status == "done"
        assert job.progress == 100

        pages = extraction_repository.list_ocr_pages(evidence_file.id)
        assert [p.provider_primary for p in pages] == ["pdf_text", "fake_ocr"]

        assert len(activity_repository.list_activity(CASE_ID, "extraction_complete")) == 1
        claims_trigger.trigger.assert_called_once_with(CASE_ID, evidence_file.id, record.extracted_text)

        assert len(downloads) == 1
        assert not downloads[0].exists()
        assert scheduler.get_stats()["active_jobs"] == []
        assert scheduler.get_stats()["locked"] == []

    @pytest.mark.asyncio
    async def test_duplicate_enqueue_is_ignored(self, scheduler, evidence_file, engine):
        """Test that a second enqueue while a job is in flight is a no-op."""
        with patch.object(engine, "extract", wraps=engine.extract) as spy:
            first = await scheduler.enqueue(evidence_file)
            second = await scheduler.enqueue(evidence_file)
            await scheduler.wait_idle()

        assert first is True
        assert second is False
        assert spy.call_count == 1

    @pytest.mark.asyncio
    async def test_completed_extraction_not_rerun(self, scheduler, evidence_file, engine):
        await scheduler.enqueue(evidence_file)
        await scheduler.wait_idle()

        with patch.object(engine, "extract", wraps=engine.extract) as spy:
            assert await scheduler.enqueue(evidence_file) is False
            assert await scheduler.retry(evidence_file) is True
            await scheduler.wait_idle()

        assert spy.call_count == 1

    @pytest.mark.asyncio
    async def test_live_processing_record_is_not_taken(self, scheduler, evidence_file,
                                                       extraction_repository, engine):
        """Test that a record freshly held by another worker is skipped."""
        extraction_repository.get_or_create_extraction(CASE_ID, evidence_file.id, "application/pdf")
        extraction_repository.update_extraction(evidence_file.id, status="processing")
        extraction_repository.upsert_job(CASE_ID, evidence_file.id, status="processing", progress=40)

        with patch.object(engine, "extract", wraps=engine.extract) as spy:
            await scheduler.enqueue(evidence_file)
            await scheduler.wait_idle()

        assert spy.call_count == 0
        assert extraction_repository.get_extraction(evidence_file.id).status == "processing"
        assert not scheduler.is_active(evidence_file.id)

        job = extraction_repository.get_job(evidence_file.id)
        assert job.status == "processing"
        assert job.progress == 40

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, scheduler, evidence_repository, extraction_repository,
                                       activity_repository, claims_trigger):
        """Test that a failing job marks the record failed with a message."""
        evidence = evidence_repository.create_evidence(CASE_ID, "application/pdf", "missing_key.pdf", "lost.pdf")

        await scheduler.enqueue(evidence)
        await scheduler.wait_idle()

        record = extraction_repository.get_extraction(evidence.id)
        assert record.status == "failed"
        assert record.error
        assert extraction_repository.get_job(evidence.id).status == "error"
        assert len(activity_repository.list_activity(CASE_ID, "extraction_failed")) == 1
        claims_trigger.trigger.assert_not_called()
        assert not scheduler.is_active(evidence.id)

    @pytest.mark.asyncio
    async def test_engine_failure_cleans_temp_file(self, scheduler, evidence_file, engine, extraction_repository):
        downloads = _track_downloads(scheduler)

        with patch.object(engine, "extract", side_effect=RuntimeError("renderer crashed")):
            await scheduler.enqueue(evidence_file)
            await scheduler.wait_idle()

        assert extraction_repository.get_extraction(evidence_file.id).status == "failed"
        assert len(downloads) == 1
        assert not downloads[0].exists()

    @pytest.mark.asyncio
    async def test_trigger_failure_does_not_fail_extraction(self, scheduler, evidence_file,
                                                            claims_trigger, extraction_repository):
        claims_trigger.trigger.side_effect = RuntimeError("no loop")

        await scheduler.enqueue(evidence_file)
        await scheduler.wait_idle()

        assert extraction_repository.get_extraction(evidence_file.id).status == "complete"

    @pytest.mark.asyncio
    async def test_sweep_requeues_stale_records(self, extraction_repository, activity_repository, storage,
                                                engine, evidence_file, evidence_repository):
        """Test that an abandoned processing record is reset and re-run."""
        scheduler = ExtractionScheduler(
            extraction_repository, activity_repository, storage, engine, stale_threshold_minutes=0
        )
        extraction_repository.get_or_create_extraction(CASE_ID, evidence_file.id, "application/pdf")
        extraction_repository.update_extraction(evidence_file.id, status="processing")

        requeued = await scheduler.sweep_stale(evidence_repository.get_evidence)
        await scheduler.wait_idle()

        assert requeued == [evidence_file.id]
        assert extraction_repository.get_extraction(evidence_file.id).status == "complete"

    @pytest.mark.asyncio
    async def test_sweep_skips_fresh_records(self, scheduler, extraction_repository, evidence_file,
                                             evidence_repository):
        extraction_repository.get_or_create_extraction(CASE_ID, evidence_file.id, "application/pdf")
        extraction_repository.update_extraction(evidence_file.id, status="processing")

        assert await scheduler.sweep_stale(evidence_repository.get_evidence) == []
        assert extraction_repository.get_extraction(evidence_file.id).status == "processing"

    @pytest.mark.asyncio
    async def test_sweeper_start_and_stop(self, scheduler, evidence_repository):
        scheduler.start_sweeper(evidence_repository.get_evidence, interval_seconds=60)
        assert scheduler._sweeper is not None

        await scheduler.stop_sweeper()
        assert scheduler._sweeper is None

    def test_stats_when_idle(self, scheduler):
        stats = scheduler.get_stats()
        assert stats["active"] == 0
        assert stats["queued"] == 0
        assert stats["max_concurrent"] == 2
