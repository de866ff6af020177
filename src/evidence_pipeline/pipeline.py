"""Evidence pipeline service for the evidence-to-document workflow.

This module contains the EvidencePipeline class that wires configuration,
the record store, object storage, providers and both schedulers, and
exposes the operations an enclosing service layer calls: upload, text
extraction, claim review, citation auto-attach, preflight and compile.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from .config import Config
from .database import (
    ActivityRepository,
    ClaimRepository,
    DatabaseManager,
    EvidenceRepository,
    ExtractionRepository
)
from .exceptions import ValidationError
from .extractors import ClaimSuggester, OcrProvider, create_ocr_provider
from .models import CaseClaim, EvidenceFile
from .processors import (
    AutoAttachResult,
    AutoSuggestResult,
    CitationAutoAttachRanker,
    ClaimsAutoSuggestionScheduler,
    CompileOptions,
    CompileResult,
    DualProviderTextEngine,
    ExtractionScheduler,
    PreflightResult,
    TemplateCompiler
)
from .storage import LocalObjectStorage, ObjectStorage

__all__ = ["EvidencePipeline"]

logger = logging.getLogger(__name__)


class EvidencePipeline:
    """Main service class for the evidence pipeline.

    Every collaborator can be injected; anything omitted is built from
    ``Config``. Scheduler state lives on this instance, so independent
    pipelines never share in-memory locks or processed sets.

    Attributes:
        db_manager: Record store connection
        storage: Object storage holding evidence bytes
        evidence_repository: Evidence file records
        extraction_repository: Extraction records, jobs and OCR pages
        claim_repository: Claims, citations and groupings
        activity_repository: Audit trail
        engine: Dual-provider text engine
        claims_scheduler: Debounced claim suggestion
        extraction_scheduler: Extraction job scheduling
        ranker: Citation auto-attach ranker
        compiler: Template compiler
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        storage: Optional[ObjectStorage] = None,
        ocr_provider: Optional[OcrProvider] = None,
        suggester: Optional[ClaimSuggester] = None,
        engine: Optional[DualProviderTextEngine] = None,
        extraction_options: Optional[Dict[str, Any]] = None,
        claims_options: Optional[Dict[str, Any]] = None
    ) -> None:
        """Initialize the pipeline.

        Args:
            db_manager: Database manager, defaults to ``Config.DATABASE_URL``
            storage: Object storage, defaults to a local ``evidence_store`` directory
            ocr_provider: OCR provider used by the default text engine
            suggester: Claim suggester; None blocks claim suggestion
            engine: Pre-built text engine, overrides ``ocr_provider``
            extraction_options: Extra ExtractionScheduler keyword arguments
            claims_options: Extra ClaimsAutoSuggestionScheduler keyword arguments
        """
        self.db_manager: DatabaseManager = db_manager or DatabaseManager()
        self.storage: ObjectStorage = storage or LocalObjectStorage("evidence_store")

        self.evidence_repository: EvidenceRepository = EvidenceRepository(self.db_manager)
        self.extraction_repository: ExtractionRepository = ExtractionRepository(self.db_manager)
        self.claim_repository: ClaimRepository = ClaimRepository(self.db_manager)
        self.activity_repository: ActivityRepository = ActivityRepository(self.db_manager)

        self.engine: DualProviderTextEngine = engine or DualProviderTextEngine(ocr_provider=ocr_provider)
        self.claims_scheduler: ClaimsAutoSuggestionScheduler = ClaimsAutoSuggestionScheduler(
            self.claim_repository,
            self.extraction_repository,
            self.activity_repository,
            suggester,
            **(claims_options or {})
        )
        self.extraction_scheduler: ExtractionScheduler = ExtractionScheduler(
            self.extraction_repository,
            self.activity_repository,
            self.storage,
            self.engine,
            claims_trigger=self.claims_scheduler,
            **(extraction_options or {})
        )
        self.ranker: CitationAutoAttachRanker = CitationAutoAttachRanker(
            self.claim_repository, self.activity_repository
        )
        self.compiler: TemplateCompiler = TemplateCompiler(self.claim_repository, self.evidence_repository)

    @classmethod
    def from_config(cls, storage_dir: str = "evidence_store") -> "EvidencePipeline":
        """Build a pipeline from environment configuration."""
        suggester = ClaimSuggester(api_key=Config.OPENAI_API_KEY) if Config.OPENAI_API_KEY else None
        if suggester is None:
            logger.warning("OPENAI_API_KEY is not set; claim suggestion is disabled")
        return cls(
            db_manager=DatabaseManager(Config.DATABASE_URL),
            storage=LocalObjectStorage(storage_dir),
            ocr_provider=create_ocr_provider(),
            suggester=suggester
        )

    # Evidence and extraction

    async def register_evidence(self, case_id: str, data: bytes, filename: str,
                                mime_type: str) -> EvidenceFile:
        """Store uploaded bytes and create the evidence and extraction records.

        Raises:
            StorageError: If the bytes cannot be stored
            DatabaseError: If persistence operation fails
        """
        key = await asyncio.to_thread(self.storage.store_bytes, data, filename)
        evidence = await asyncio.to_thread(
            self.evidence_repository.create_evidence, case_id, mime_type, key, filename
        )
        await asyncio.to_thread(
            self.extraction_repository.get_or_create_extraction, case_id, evidence.id, mime_type
        )
        logger.info("Registered evidence %s (%s) for case %s", evidence.id, filename, case_id)
        return evidence

    async def _load_evidence(self, evidence_id: str) -> EvidenceFile:
        evidence = await asyncio.to_thread(self.evidence_repository.get_evidence, evidence_id)
        if evidence is None:
            raise ValidationError(f"Evidence {evidence_id} not found")
        return evidence

    async def process_evidence(self, evidence_id: str) -> bool:
        """Queue text extraction of an evidence file."""
        return await self.extraction_scheduler.enqueue(await self._load_evidence(evidence_id))

    async def retry_extraction(self, evidence_id: str) -> bool:
        """Re-run extraction on explicit user request."""
        return await self.extraction_scheduler.retry(await self._load_evidence(evidence_id))

    async def sweep_stale(self) -> List[str]:
        return await self.extraction_scheduler.sweep_stale(self.evidence_repository.get_evidence)

    def start_sweeper(self, interval_seconds: float = 300.0) -> None:
        self.extraction_scheduler.start_sweeper(self.evidence_repository.get_evidence, interval_seconds)

    def get_extraction_status(self, evidence_id: str) -> Dict[str, Any]:
        """Return status, progress and error of an evidence file's extraction."""
        record = self.extraction_repository.get_extraction(evidence_id)
        job = self.extraction_repository.get_job(evidence_id)
        return {
            "status": record.status if record else None,
            "progress": job.progress if job else 0,
            "error": record.error if record else None,
            "metadata": record.metadata_json if record else None,
        }

    async def suggest_claims(self, case_id: str, evidence_id: str) -> AutoSuggestResult:
        """Run claim suggestion again for one evidence file, skipping the debounce."""
        return await self.claims_scheduler.rerun(case_id, evidence_id)

    # Claim review

    def _transition(self, claim_id: str, status: str, event: str) -> CaseClaim:
        claim = self.claim_repository.set_claim_status(claim_id, status)
        self.activity_repository.record_activity(
            claim.case_id, event, f"Claim {status}", {"claimId": claim_id}
        )
        return claim

    def accept_claim(self, claim_id: str) -> CaseClaim:
        return self._transition(claim_id, "accepted", "claim_accepted")

    def reject_claim(self, claim_id: str) -> CaseClaim:
        return self._transition(claim_id, "rejected", "claim_rejected")

    def restore_claim(self, claim_id: str) -> CaseClaim:
        """Undo a rejection, putting the claim back to suggested."""
        return self._transition(claim_id, "suggested", "claim_restored")

    def auto_attach_citations(self, case_id: str, claim_id: str, max_attach: int = 1,
                              preferred_evidence_ids: Optional[Iterable[str]] = None) -> AutoAttachResult:
        return self.ranker.auto_attach(case_id, claim_id, max_attach, preferred_evidence_ids)

    # Documents

    def preflight(self, case_id: str, template_key: str) -> PreflightResult:
        return self.compiler.run_preflight(case_id, template_key)

    def compile(self, case_id: str, template_key: str, title: Optional[str] = None,
                options: Optional[CompileOptions] = None) -> CompileResult:
        return self.compiler.compile(case_id, template_key, title, options)

    # Lifecycle

    async def wait_idle(self) -> None:
        """Wait for running extractions and pending claim suggestion passes."""
        await self.extraction_scheduler.wait_idle()
        await self.claims_scheduler.wait_idle()

    async def shutdown(self) -> None:
        """Stop the sweeper, drop pending debounces and release connections."""
        await self.extraction_scheduler.stop_sweeper()
        await self.extraction_scheduler.wait_idle()
        await self.claims_scheduler.shutdown()
        self.db_manager.dispose()
