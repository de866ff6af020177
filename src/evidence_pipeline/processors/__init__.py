"""Processors module for the evidence pipeline.

This module contains the concurrency limiter, the dual-provider text
engine, the extraction and claim suggestion schedulers, the citation
ranker and the template compiler.
"""

from .concurrency import ConcurrencyLimiter
from .text_engine import (
    DualProviderTextEngine,
    ExtractionOutcome,
    PageResult,
    jaccard_similarity,
    needs_review,
    content_length
)
from .extraction_scheduler import ExtractionScheduler
from .claims_scheduler import ClaimsAutoSuggestionScheduler, AutoSuggestResult
from .issue_groupings import bootstrap_issue_groupings
from .citation_ranker import CitationAutoAttachRanker, AutoAttachResult
from .template_compiler import (
    TemplateCompiler,
    CompileOptions,
    CompileResult,
    PreflightResult,
    TracedSentence,
    exhibit_label
)

__all__ = [
    "ConcurrencyLimiter",
    "DualProviderTextEngine",
    "ExtractionOutcome",
    "PageResult",
    "jaccard_similarity",
    "needs_review",
    "content_length",
    "ExtractionScheduler",
    "ClaimsAutoSuggestionScheduler",
    "AutoSuggestResult",
    "bootstrap_issue_groupings",
    "CitationAutoAttachRanker",
    "AutoAttachResult",
    "TemplateCompiler",
    "CompileOptions",
    "CompileResult",
    "PreflightResult",
    "TracedSentence",
    "exhibit_label"
]
