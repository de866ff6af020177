"""Template compiler for the evidence pipeline.

This module contains the TemplateCompiler class which turns a case's
accepted claims into a markdown document for a registered template,
tracing every numbered paragraph back to its claim and citations, and
the read-only preflight check that tells a user what blocks compilation.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from langfuse import observe

from ..config import Config
from ..database import ClaimRepository, EvidenceRepository
from ..models import CaseClaim, CitationPointer, EvidenceFile
from ..templates import FRAMING_SECTION_KEYS, SectionBlueprint, TemplateDefinition, get_template

__all__ = [
    "TemplateCompiler",
    "CompileOptions",
    "CompileResult",
    "CompileStats",
    "PreflightResult",
    "ClaimSnippet",
    "TracedSentence",
    "CitationDetail",
    "SourceEntry",
    "exhibit_label",
]

logger = logging.getLogger(__name__)

EDUCATIONAL_BANNER = "> **EDUCATIONAL / ORGANIZATIONAL USE ONLY**"


def exhibit_label(index: int) -> str:
    """Alphabetic label for a 1-based exhibit index: 1 -> A, 26 -> Z, 27 -> AA."""
    if index < 1:
        raise ValueError("Exhibit index starts at 1")
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


@dataclass
class ClaimSnippet:
    id: str
    text: str


@dataclass
class PreflightResult:
    """Read-only readiness report of a case for one template."""
    template_ready: bool
    accepted_claims_count: int = 0
    included_claims_count: int = 0
    uncited_included_claims_count: int = 0
    uncited_claims: List[ClaimSnippet] = field(default_factory=list)
    missing_info_included_claims_count: int = 0
    missing_info_claims: List[ClaimSnippet] = field(default_factory=list)
    extraction_coverage_percent: int = 0
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CompileOptions:
    include_timeline: bool = False
    include_pinned_trial_prep: bool = False
    include_evidence_facts: bool = False


@dataclass
class CitationDetail:
    citation_id: str
    evidence_file_id: str
    file_name: str
    page_number: Optional[int]
    timestamp_seconds: Optional[float]
    quote_snippet: str


@dataclass
class TracedSentence:
    """One numbered paragraph of a compiled document and its provenance."""
    sentence_id: str
    section_key: str
    section_title: str
    paragraph_number: int
    text: str
    claim_id: str
    citation_ids: List[str]
    evidence_file_ids: List[str]
    citation_details: List[CitationDetail] = field(default_factory=list)


@dataclass
class SourceEntry:
    evidence_file_id: str
    file_name: str
    exhibit_label: str
    pages_referenced: List[int] = field(default_factory=list)


@dataclass
class CompileStats:
    total_claims_included: int = 0
    total_citations: int = 0
    sections_generated: int = 0


@dataclass
class CompileResult:
    """Derived compile output, regenerated on every call."""
    ok: bool
    markdown: str = ""
    sources: List[SourceEntry] = field(default_factory=list)
    traced_sentences: List[TracedSentence] = field(default_factory=list)
    stats: CompileStats = field(default_factory=CompileStats)
    errors: List[str] = field(default_factory=list)
    violating_claim_ids: List[str] = field(default_factory=list)


@dataclass
class _IncludedClaim:
    claim: CaseClaim
    citations: List[CitationPointer]


def _matches_tags(claim: CaseClaim, tags: tuple) -> bool:
    claim_tags = claim.tags if isinstance(claim.tags, list) else []
    return any(tag in claim_tags for tag in tags)


class TemplateCompiler:
    """Deterministic assembly of accepted, cited claims into a document.

    Attributes:
        claim_repository: Claims, citations and evidence facts
        evidence_repository: Evidence file names for labels and sources
    """

    def __init__(self, claim_repository: ClaimRepository, evidence_repository: EvidenceRepository,
                 snippet_chars: int = Config.PREFLIGHT_SNIPPET_MAX_CHARS,
                 trace_snippet_chars: int = Config.TRACE_SNIPPET_MAX_CHARS) -> None:
        self.claim_repository: ClaimRepository = claim_repository
        self.evidence_repository: EvidenceRepository = evidence_repository
        self.snippet_chars: int = snippet_chars
        self.trace_snippet_chars: int = trace_snippet_chars

    @staticmethod
    def filter_claims(claims: List[CaseClaim], template: TemplateDefinition) -> List[CaseClaim]:
        """Keep claims matching the template's required types and tags."""
        filtered = list(claims)
        if template.required_claim_types:
            filtered = [c for c in filtered if c.claim_type in template.required_claim_types]
        if template.required_claim_tags:
            filtered = [c for c in filtered if _matches_tags(c, template.required_claim_tags)]
        return filtered

    def run_preflight(self, case_id: str, template_key: str) -> PreflightResult:
        """Check whether a case currently satisfies a template's requirements.

        Has no side effects and may be called repeatedly.

        Args:
            case_id: Case to check
            template_key: Registered template key

        Returns:
            PreflightResult listing the exact claims that block compilation
        """
        template = get_template(template_key)
        if template is None:
            return PreflightResult(template_ready=False, reasons=["Template not found"])

        accepted = self.claim_repository.list_claims(case_id, status="accepted")
        included = self.filter_claims(accepted, template)

        uncited: List[ClaimSnippet] = []
        missing_info: List[ClaimSnippet] = []
        cited_count = 0
        for claim in included:
            citations = self.claim_repository.list_claim_citations(claim.id)
            snippet = ClaimSnippet(id=claim.id, text=claim.claim_text[:self.snippet_chars])
            if len(citations) < max(1, template.required_citation_count):
                uncited.append(snippet)
            if citations:
                cited_count += 1
            if claim.missing_info_flag:
                missing_info.append(snippet)

        reasons: List[str] = []
        warnings: List[str] = []
        if not included:
            reasons.append("No accepted claims match this template's requirements")
        if template.required_citation_count > 0 and uncited:
            reasons.append(f"{len(uncited)} claim(s) missing required citations")
        if missing_info and not template.allow_missing_info_claims:
            reasons.append(f"{len(missing_info)} claim(s) flagged as needing more info")
        elif missing_info:
            warnings.append(
                f"{len(missing_info)} claim(s) flagged as needing more info (allowed but review recommended)"
            )

        coverage = round(cited_count / len(included) * 100) if included else 0
        return PreflightResult(
            template_ready=not reasons and bool(included),
            accepted_claims_count=len(accepted),
            included_claims_count=len(included),
            uncited_included_claims_count=len(uncited),
            uncited_claims=uncited,
            missing_info_included_claims_count=len(missing_info),
            missing_info_claims=missing_info,
            extraction_coverage_percent=coverage,
            reasons=reasons,
            warnings=warnings
        )

    @observe(name="compile_template")
    def compile(self, case_id: str, template_key: str, title: Optional[str] = None,
                options: Optional[CompileOptions] = None) -> CompileResult:
        """Compile a case's accepted claims into a citation-traced document.

        When the template requires citations and any included claim falls
        short (or carries a disallowed missing-info flag), nothing is
        rendered and the offending claims are returned instead.

        Args:
            case_id: Case to compile
            template_key: Registered template key
            title: Document title, defaults to the template display name
            options: Placeholder and appendix switches

        Returns:
            CompileResult; ``ok`` is False when compilation was refused
        """
        options = options or CompileOptions()
        template = get_template(template_key)
        if template is None:
            return CompileResult(ok=False, errors=["Template not found"])

        accepted = self.claim_repository.list_claims(case_id, status="accepted")
        evidence_map: Dict[str, EvidenceFile] = {
            e.id: e for e in self.evidence_repository.list_evidence(case_id)
        }

        included: List[_IncludedClaim] = []
        errors: List[str] = []
        violating: List[str] = []
        required = template.required_citation_count
        for claim in self.filter_claims(accepted, template):
            citations = self.claim_repository.list_claim_citations(claim.id)
            if required > 0 and len(citations) < required:
                errors.append(
                    f'Claim {claim.id} "{claim.claim_text[:50]}..." has {len(citations)} '
                    f"citation(s) (requires {required})"
                )
                violating.append(claim.id)
                continue
            if claim.missing_info_flag and not template.allow_missing_info_claims:
                errors.append(f'Claim {claim.id} "{claim.claim_text[:50]}..." is flagged as missing info')
                violating.append(claim.id)
                continue
            included.append(_IncludedClaim(claim=claim, citations=citations))

        if errors and required > 0:
            logger.info("Compile of %s for case %s refused: %d violation(s)", template_key, case_id, len(errors))
            return CompileResult(ok=False, errors=errors, violating_claim_ids=violating)

        if not included and "claims" in template.allowed_sources:
            return CompileResult(ok=False, errors=["No claims available to compile"])

        labels: Dict[str, str] = {}

        def label_for(evidence_id: str) -> str:
            if evidence_id not in labels:
                labels[evidence_id] = f"Exhibit {exhibit_label(len(labels) + 1)}"
            return labels[evidence_id]

        parts: List[str] = [f"# {title or template.display_name}\n\n"]
        if template.educational_only:
            parts.append(f"{EDUCATIONAL_BANNER}\n\n")
        if template.intro_template:
            parts.append(f"{template.intro_template}\n\n")

        traced: List[TracedSentence] = []
        sections_generated = 0
        paragraph = 0
        for section in template.sections:
            if section.key in FRAMING_SECTION_KEYS:
                continue

            section_claims = self._section_claims(section, included)
            if not section_claims:
                placeholder = self._placeholder(section, options)
                if placeholder:
                    parts.append(f"## {section.title}\n\n{placeholder}\n\n")
                    sections_generated += 1
                continue

            parts.append(f"## {section.title}\n\n")
            sections_generated += 1
            for item in section_claims:
                paragraph += 1
                refs = [self._format_citation(c, label_for(c.evidence_file_id)) for c in item.citations]
                line = f"{paragraph}. {item.claim.claim_text}"
                if refs:
                    line += " " + " ".join(refs)
                parts.append(line + "\n\n")
                traced.append(self._trace(section, paragraph, item, evidence_map))

        if options.include_evidence_facts:
            parts.append(self._facts_appendix(case_id, evidence_map))

        if template.footer_template:
            parts.append(f"---\n\n{template.footer_template}\n\n")

        sources = self._sources(labels, included, evidence_map)
        if sources:
            parts.append("## Sources\n\n")
            for source in sources:
                pages = f" (pp. {', '.join(str(p) for p in source.pages_referenced)})" if source.pages_referenced else ""
                parts.append(f"- **{source.exhibit_label}**: {source.file_name}{pages}\n")

        stats = CompileStats(
            total_claims_included=len(included),
            total_citations=sum(len(i.citations) for i in included),
            sections_generated=sections_generated
        )
        logger.info("Compiled %s for case %s: %d claims, %d sections",
                    template_key, case_id, stats.total_claims_included, sections_generated)
        return CompileResult(
            ok=True,
            markdown="".join(parts),
            sources=sources,
            traced_sentences=traced,
            stats=stats,
            errors=errors
        )

    @staticmethod
    def _section_claims(section: SectionBlueprint, included: List[_IncludedClaim]) -> List[_IncludedClaim]:
        """Route claims by section type filter, then tag filter, else take all."""
        if section.claim_types:
            return [i for i in included if i.claim.claim_type in section.claim_types]
        if section.claim_tags:
            return [i for i in included if _matches_tags(i.claim, section.claim_tags)]
        return list(included)

    @staticmethod
    def _placeholder(section: SectionBlueprint, options: CompileOptions) -> Optional[str]:
        if section.optional:
            return None
        if section.source_type == "timeline" and options.include_timeline:
            return "*Timeline events would be included here*"
        if section.source_type == "trialPrep" and options.include_pinned_trial_prep:
            return "*Trial prep items would be included here*"
        return None

    @staticmethod
    def _format_citation(citation: CitationPointer, label: str) -> str:
        if citation.page_number is not None:
            location = f"p.{citation.page_number}"
        elif citation.timestamp_seconds is not None:
            location = f"t={citation.timestamp_seconds:g}s"
        else:
            location = "verify location"
        return f"[Source: {label}, {location}]"

    def _trace(self, section: SectionBlueprint, paragraph: int, item: _IncludedClaim,
               evidence_map: Dict[str, EvidenceFile]) -> TracedSentence:
        evidence_ids: List[str] = []
        for citation in item.citations:
            if citation.evidence_file_id not in evidence_ids:
                evidence_ids.append(citation.evidence_file_id)
        return TracedSentence(
            sentence_id=f"{section.key}-{paragraph}",
            section_key=section.key,
            section_title=section.title,
            paragraph_number=paragraph,
            text=item.claim.claim_text,
            claim_id=item.claim.id,
            citation_ids=[c.id for c in item.citations],
            evidence_file_ids=evidence_ids,
            citation_details=[
                CitationDetail(
                    citation_id=c.id,
                    evidence_file_id=c.evidence_file_id,
                    file_name=evidence_map[c.evidence_file_id].original_name
                    if c.evidence_file_id in evidence_map else "Unknown",
                    page_number=c.page_number,
                    timestamp_seconds=c.timestamp_seconds,
                    quote_snippet=(c.quote or "")[:self.trace_snippet_chars]
                )
                for c in item.citations
            ]
        )

    @staticmethod
    def _sources(labels: Dict[str, str], included: List[_IncludedClaim],
                 evidence_map: Dict[str, EvidenceFile]) -> List[SourceEntry]:
        sources: List[SourceEntry] = []
        for evidence_id, label in labels.items():
            evidence = evidence_map.get(evidence_id)
            if evidence is None:
                continue
            pages = sorted({
                c.page_number
                for i in included for c in i.citations
                if c.evidence_file_id == evidence_id and c.page_number is not None
            })
            sources.append(SourceEntry(
                evidence_file_id=evidence_id,
                file_name=evidence.original_name,
                exhibit_label=label,
                pages_referenced=pages
            ))
        return sources

    def _facts_appendix(self, case_id: str, evidence_map: Dict[str, EvidenceFile]) -> str:
        """Render pending extracted facts grouped by type; not subject to gating."""
        pending = [f for f in self.claim_repository.list_evidence_facts(case_id) if not f.promoted_to_claim]
        if not pending:
            return ""

        by_type: Dict[str, list] = {}
        for fact in pending:
            fact_type = fact.fact_type if fact.fact_type in Config.FACT_TYPE_ORDER else "other"
            by_type.setdefault(fact_type, []).append(fact)

        lines = [
            "## Extracted Facts Summary\n\n",
            "*The following facts were automatically extracted from evidence files and have not "
            "yet been promoted to claims. Review for accuracy.*\n\n",
        ]
        for fact_type in Config.FACT_TYPE_ORDER:
            facts = by_type.get(fact_type)
            if not facts:
                continue
            lines.append(f"### {fact_type.capitalize()} Facts\n\n")
            for fact in facts:
                confidence = f" ({fact.confidence}% confidence)" if fact.confidence is not None else ""
                evidence = evidence_map.get(fact.evidence_id)
                source = f" [Source: {evidence.original_name}]" if evidence else ""
                lines.append(f"- {fact.fact_text}{confidence}{source}\n")
            lines.append("\n")
        return "".join(lines)
