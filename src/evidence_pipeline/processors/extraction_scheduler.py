"""Extraction scheduler for the evidence pipeline.

This module contains the ExtractionScheduler class which runs at most
one text extraction job per evidence file, bounded by a shared
concurrency cap, and recovers jobs abandoned by a crashed worker.
"""

import asyncio
import logging
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from ..config import Config
from ..database import ActivityRepository, ExtractionRepository
from ..exceptions import humanize_error
from ..models import EvidenceFile, utcnow
from ..storage import ObjectStorage
from .concurrency import ConcurrencyLimiter
from .text_engine import DualProviderTextEngine, PageResult

__all__ = ["ExtractionScheduler", "ClaimsTrigger"]

logger = logging.getLogger(__name__)

EvidenceLoader = Callable[[str], Optional[EvidenceFile]]


class ClaimsTrigger(Protocol):
    """Protocol for the downstream claim suggestion hook."""
    def trigger(self, case_id: str, evidence_id: str, text: str) -> bool:
        """Schedule claim suggestion for freshly extracted text."""
        ...


class ExtractionScheduler:
    """Schedules text extraction jobs with per-evidence exclusivity.

    State per evidence file: queued -> processing -> complete | failed.
    An in-memory set of active evidence ids keeps duplicate enqueues out
    of the limiter, and an in-memory lock set arbitrates between a live
    job and the stale-job sweep. Both are process-local.

    Attributes:
        extraction_repository: Extraction records, jobs and OCR pages
        activity_repository: Audit trail
        storage: Object storage the evidence bytes are fetched from
        engine: Text engine used for each file
        claims_trigger: Optional claim suggestion hook called on success
        stale_threshold: Age after which a processing record is abandoned
    """

    def __init__(
        self,
        extraction_repository: ExtractionRepository,
        activity_repository: ActivityRepository,
        storage: ObjectStorage,
        engine: DualProviderTextEngine,
        claims_trigger: Optional[ClaimsTrigger] = None,
        max_concurrent: int = Config.EXTRACTION_CONCURRENCY,
        stale_threshold_minutes: float = Config.STALE_THRESHOLD_MINUTES
    ) -> None:
        self.extraction_repository: ExtractionRepository = extraction_repository
        self.activity_repository: ActivityRepository = activity_repository
        self.storage: ObjectStorage = storage
        self.engine: DualProviderTextEngine = engine
        self.claims_trigger: Optional[ClaimsTrigger] = claims_trigger
        self.stale_threshold: timedelta = timedelta(minutes=stale_threshold_minutes)
        self._limiter: ConcurrencyLimiter = ConcurrencyLimiter(max_concurrent)
        self._active_jobs: Set[str] = set()
        self._processing_locks: Set[str] = set()
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._sweeper: Optional["asyncio.Task[None]"] = None

    def _stale_before(self) -> datetime:
        return utcnow() - self.stale_threshold

    def _track(self, task: "asyncio.Task[Any]") -> "asyncio.Task[Any]":
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def enqueue(self, evidence: EvidenceFile, force: bool = False) -> bool:
        """Queue extraction of an evidence file.

        Enqueueing is a no-op while a job for the same evidence is in
        flight, or when its extraction already completed (unless
        ``force`` is set).

        Args:
            evidence: Evidence file to extract
            force: Re-run a completed extraction and ignore the staleness window

        Returns:
            True if a job was submitted
        """
        if evidence.id in self._active_jobs:
            logger.debug("Extraction for %s already in flight", evidence.id)
            return False

        record = await asyncio.to_thread(
            self.extraction_repository.get_or_create_extraction,
            evidence.case_id, evidence.id, evidence.mime_type
        )
        if record.status == "complete" and not force:
            logger.debug("Extraction for %s already complete", evidence.id)
            return False

        self._active_jobs.add(evidence.id)
        if record.status != "processing":
            await asyncio.to_thread(
                self.extraction_repository.update_extraction, evidence.id, status="queued"
            )
        # The job row is owned by whichever worker claims the record in _run.
        self._track(self._limiter.submit(lambda: self._run(evidence, force)))
        logger.info("Queued extraction for evidence %s", evidence.id)
        return True

    async def retry(self, evidence: EvidenceFile) -> bool:
        """Re-run extraction on explicit user request.

        Bypasses both the completed check and the staleness window.
        """
        return await self.enqueue(evidence, force=True)

    async def _run(self, evidence: EvidenceFile, force: bool = False) -> None:
        evidence_id = evidence.id
        if evidence_id in self._processing_locks:
            logger.info("Extraction for %s is locked by another job, skipping", evidence_id)
            self._active_jobs.discard(evidence_id)
            return

        self._processing_locks.add(evidence_id)
        temp_path: Optional[Path] = None
        try:
            claimed = await asyncio.to_thread(
                self.extraction_repository.claim_for_processing,
                evidence_id, self._stale_before(), force
            )
            if not claimed:
                logger.info("Extraction for %s is being processed elsewhere, skipping duplicate", evidence_id)
                return

            await asyncio.to_thread(
                self.extraction_repository.upsert_job,
                evidence.case_id, evidence_id, status="processing", progress=0, error=None
            )

            temp_path = await asyncio.to_thread(self._download, evidence)
            data = await asyncio.to_thread(temp_path.read_bytes)

            async def on_page(page: PageResult, processed: int, total: int) -> None:
                await asyncio.to_thread(
                    self.extraction_repository.upsert_ocr_page,
                    evidence.case_id, evidence_id, page.page_number, page.to_payload()
                )
                progress = round(processed / total * 100) if total else 100
                await asyncio.to_thread(
                    self.extraction_repository.upsert_job,
                    evidence.case_id, evidence_id, progress=min(progress, 99)
                )

            outcome = await self.engine.extract(data, evidence.mime_type, evidence.original_name, on_page)

            await asyncio.to_thread(
                self.extraction_repository.update_extraction,
                evidence_id,
                status="complete",
                extracted_text=outcome.text,
                metadata_json=outcome.metadata,
                error=None
            )
            await asyncio.to_thread(
                self.extraction_repository.upsert_job,
                evidence.case_id, evidence_id, status="done", progress=100, error=None
            )
            logger.info("Extraction complete for %s (%d chars)", evidence_id, len(outcome.text))
            await asyncio.to_thread(
                self.activity_repository.record_activity,
                evidence.case_id,
                "extraction_complete",
                f"Extracted text from {evidence.original_name}",
                {"evidenceId": evidence_id, "chars": len(outcome.text), **outcome.metadata}
            )

            if self.claims_trigger is not None:
                try:
                    self.claims_trigger.trigger(evidence.case_id, evidence_id, outcome.text)
                except Exception as e:
                    logger.error("Claim suggestion trigger failed for %s: %s", evidence_id, e)

        except Exception as e:
            message = humanize_error(e)
            logger.error("Extraction failed for %s: %s", evidence_id, message)
            await asyncio.to_thread(
                self.extraction_repository.update_extraction,
                evidence_id, status="failed", error=message
            )
            await asyncio.to_thread(
                self.extraction_repository.upsert_job,
                evidence.case_id, evidence_id, status="error", error=message
            )
            await asyncio.to_thread(
                self.activity_repository.record_activity,
                evidence.case_id,
                "extraction_failed",
                f"Extraction failed for {evidence.original_name}: {message}",
                {"evidenceId": evidence_id}
            )
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            self._processing_locks.discard(evidence_id)
            self._active_jobs.discard(evidence_id)

    def _download(self, evidence: EvidenceFile) -> Path:
        """Fetch evidence bytes into a local temp file."""
        data = self.storage.fetch_bytes(evidence.storage_key)
        suffix = Path(evidence.original_name).suffix
        fd, name = tempfile.mkstemp(prefix="evidence_", suffix=suffix)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except Exception:
            path.unlink(missing_ok=True)
            raise
        return path

    async def sweep_stale(self, load_evidence: EvidenceLoader) -> List[str]:
        """Requeue extractions stuck in processing past the staleness threshold.

        Records currently held by a live job in this process are left
        alone. Each reset is conditional on the record still being stale,
        so a job finishing during the sweep keeps its final status.

        Args:
            load_evidence: Callable returning the EvidenceFile for an id

        Returns:
            Evidence ids that were requeued
        """
        stale_before = self._stale_before()
        stale = await asyncio.to_thread(self.extraction_repository.list_stale_extractions, stale_before)
        requeued: List[str] = []
        for record in stale:
            evidence_id = record.evidence_id
            if evidence_id in self._processing_locks or evidence_id in self._active_jobs:
                continue
            reset = await asyncio.to_thread(
                self.extraction_repository.reset_stale_to_queued, evidence_id, stale_before
            )
            if not reset:
                continue
            evidence = await asyncio.to_thread(load_evidence, evidence_id)
            if evidence is None:
                logger.warning("Stale extraction %s has no evidence file", evidence_id)
                continue
            logger.info("Requeueing stale extraction for evidence %s", evidence_id)
            if await self.enqueue(evidence):
                requeued.append(evidence_id)
        return requeued

    def start_sweeper(self, load_evidence: EvidenceLoader, interval_seconds: float = 300.0) -> None:
        """Run ``sweep_stale`` periodically until ``stop_sweeper`` is called."""
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def loop() -> None:
            while True:
                try:
                    await self.sweep_stale(load_evidence)
                except Exception as e:
                    logger.error("Stale extraction sweep failed: %s", e)
                await asyncio.sleep(interval_seconds)

        self._sweeper = asyncio.ensure_future(loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    def is_active(self, evidence_id: str) -> bool:
        return evidence_id in self._active_jobs

    def get_stats(self) -> Dict[str, Any]:
        """Return in-flight counters of this scheduler."""
        return {
            "active": self._limiter.active,
            "queued": self._limiter.pending,
            "active_jobs": sorted(self._active_jobs),
            "locked": sorted(self._processing_locks),
            "max_concurrent": self._limiter.max_concurrent,
        }

    async def wait_idle(self) -> None:
        """Wait until every submitted extraction job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
