"""Evidence Pipeline - evidence-to-document toolkit for legal matters.

This package turns uploaded documents and images into citation-traced
factual claims and compiles accepted claims into structured documents.

The package is organized into the following modules:
- config: Pipeline configuration and settings
- exceptions: Error taxonomy and user-facing error messages
- models: Database models for evidence, extractions, claims and citations
- database: Database management and repositories
- storage: Object storage interface for evidence bytes
- validators: Evidence file classification and size checks
- extractors: Native PDF text, OCR providers and the LLM claim suggester
- templates: Static document template registry
- processors: Text engine, schedulers, citation ranker and template compiler
- pipeline: Service wiring all of the above
"""

__version__ = "1.0.0"
__author__ = "Evidence Pipeline Team"
__description__ = "Evidence extraction, claim suggestion and citation-traced document compilation"

from .config import Config, configure_logging
from .exceptions import (
    PipelineError,
    TransientProviderError,
    RateLimitError,
    AuthError,
    ParseError,
    ValidationError,
    ResourceError,
    DatabaseError,
    StorageError,
    humanize_error
)
from .models import (
    Base,
    EvidenceFile,
    ExtractionJob,
    OcrPage,
    Extraction,
    CitationPointer,
    CaseClaim,
    ClaimCitation
)
from .database import (
    DatabaseManager,
    EvidenceRepository,
    ExtractionRepository,
    ClaimRepository,
    ActivityRepository
)
from .storage import ObjectStorage, LocalObjectStorage
from .validators import EvidenceValidator
from .extractors import (
    TextExtractor,
    OcrProvider,
    TesseractOcrProvider,
    OpenAIVisionOcrProvider,
    ClaimSuggester
)
from .templates import TemplateDefinition, SectionBlueprint, get_template, list_templates
from .processors import (
    ConcurrencyLimiter,
    DualProviderTextEngine,
    ExtractionScheduler,
    ClaimsAutoSuggestionScheduler,
    CitationAutoAttachRanker,
    TemplateCompiler,
    CompileOptions,
    CompileResult,
    PreflightResult
)
from .pipeline import EvidencePipeline

__all__ = [
    # Configuration
    "Config",
    "configure_logging",
    # Exceptions
    "PipelineError",
    "TransientProviderError",
    "RateLimitError",
    "AuthError",
    "ParseError",
    "ValidationError",
    "ResourceError",
    "DatabaseError",
    "StorageError",
    "humanize_error",
    # Models
    "Base",
    "EvidenceFile",
    "ExtractionJob",
    "OcrPage",
    "Extraction",
    "CitationPointer",
    "CaseClaim",
    "ClaimCitation",
    # Database
    "DatabaseManager",
    "EvidenceRepository",
    "ExtractionRepository",
    "ClaimRepository",
    "ActivityRepository",
    # Storage and validation
    "ObjectStorage",
    "LocalObjectStorage",
    "EvidenceValidator",
    # Extractors
    "TextExtractor",
    "OcrProvider",
    "TesseractOcrProvider",
    "OpenAIVisionOcrProvider",
    "ClaimSuggester",
    # Templates
    "TemplateDefinition",
    "SectionBlueprint",
    "get_template",
    "list_templates",
    # Processors
    "ConcurrencyLimiter",
    "DualProviderTextEngine",
    "ExtractionScheduler",
    "ClaimsAutoSuggestionScheduler",
    "CitationAutoAttachRanker",
    "TemplateCompiler",
    "CompileOptions",
    "CompileResult",
    "PreflightResult",
    # Service
    "EvidencePipeline"
]
