"""Template registry for the evidence pipeline.

Templates are immutable configuration. Each one declares which accepted
claims it takes, how many citations every included claim needs, whether
claims flagged as missing information may appear, and an ordered list
of sections.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

__all__ = [
    "SectionBlueprint",
    "TemplateDefinition",
    "TEMPLATE_REGISTRY",
    "FRAMING_SECTION_KEYS",
    "get_template",
    "list_templates",
]

# Sections carrying intro/footer framing only; they never receive claims.
FRAMING_SECTION_KEYS: Tuple[str, ...] = ("intro", "conclusion", "cover")

_DECLARATION_FOOTER = (
    "I declare under penalty of perjury under the laws of the State of [STATE] "
    "that the foregoing is true and correct.\n\n"
    "Executed on [DATE] at [CITY], [STATE].\n\n"
    "_________________________\n[DECLARANT NAME]"
)


@dataclass(frozen=True)
class SectionBlueprint:
    """One section of a template.

    Attributes:
        key: Stable section identifier
        title: Heading rendered in the document
        description: What the section is for
        claim_types: Claim types routed to the section
        claim_tags: Claim tags routed to the section, used when no types are set
        source_type: claims | timeline | snippets | trialPrep; an empty timeline or
            trialPrep section can render a placeholder instead of claims
        optional: Omit the section when no claim lands in it
    """
    key: str
    title: str
    description: str = ""
    claim_types: Tuple[str, ...] = ()
    claim_tags: Tuple[str, ...] = ()
    source_type: str = "claims"
    optional: bool = False


@dataclass(frozen=True)
class TemplateDefinition:
    """Static, versioned document template."""
    template_key: str
    display_name: str
    category: str
    description: str
    sections: Tuple[SectionBlueprint, ...]
    educational_only: bool = False
    allowed_sources: Tuple[str, ...] = ("claims",)
    required_claim_types: Tuple[str, ...] = ()
    required_claim_tags: Tuple[str, ...] = ()
    required_citation_count: int = 1
    allow_missing_info_claims: bool = False
    intro_template: str = ""
    footer_template: str = ""
    version: int = 1


TEMPLATE_REGISTRY: List[TemplateDefinition] = [
    TemplateDefinition(
        template_key="declaration_facts_only",
        display_name="Declaration (Facts Only)",
        category="declarations",
        description="A sworn statement presenting factual claims with evidence citations.",
        sections=(
            SectionBlueprint("intro", "Introduction", "Declarant identification"),
            SectionBlueprint("facts", "Statement of Facts", "Numbered factual claims",
                             claim_types=("fact", "procedural", "context")),
            SectionBlueprint("communications", "Communications", "Documented communications",
                             claim_types=("communication",), optional=True),
            SectionBlueprint("financial", "Financial Matters", "Financial evidence",
                             claim_types=("financial",), optional=True),
            SectionBlueprint("conclusion", "Declaration", "Standard declaration language"),
        ),
        intro_template=(
            "I, [DECLARANT NAME], declare under penalty of perjury under the laws of [STATE] "
            "that the following is true and correct:"
        ),
        footer_template=_DECLARATION_FOOTER,
    ),
    TemplateDefinition(
        template_key="declaration_custody",
        display_name="Declaration - Custody/Parenting Time Facts",
        category="declarations",
        description="A sworn statement focusing on custody and parenting time facts.",
        required_claim_types=("custody", "fact"),
        sections=(
            SectionBlueprint("intro", "Introduction", "Declarant identification"),
            SectionBlueprint("custody", "Custody Arrangements", "Facts about custody",
                             claim_types=("custody",)),
            SectionBlueprint("parenting", "Parenting Time", "Facts about parenting time",
                             claim_types=("custody", "fact")),
            SectionBlueprint("children", "Children's Needs", "Facts about children",
                             claim_types=("medical", "school")),
            SectionBlueprint("conclusion", "Declaration", "Standard declaration language"),
        ),
        intro_template=(
            "I, [DECLARANT NAME], declare under penalty of perjury under the laws of [STATE] "
            "that the following is true and correct regarding custody and parenting time:"
        ),
        footer_template=_DECLARATION_FOOTER,
    ),
    TemplateDefinition(
        template_key="affidavit_general",
        display_name="Affidavit (General)",
        category="declarations",
        description="A general sworn affidavit presenting facts under oath with evidence citations.",
        sections=(
            SectionBlueprint("identity", "Identity and Competence",
                             "Affiant identification and basis for knowledge", claim_types=("context",)),
            SectionBlueprint("sworn_facts", "Sworn Facts", "Numbered factual statements under oath",
                             claim_types=("fact", "procedural", "custody", "financial")),
            SectionBlueprint("communications", "Communications", "Documented communications",
                             claim_types=("communication",), optional=True),
            SectionBlueprint("conclusion", "Jurat", "Standard affidavit oath language"),
        ),
        intro_template=(
            "AFFIDAVIT OF [AFFIANT NAME]\n\nSTATE OF [STATE]\nCOUNTY OF [COUNTY]\n\n"
            "Before me, the undersigned notary public, personally appeared [AFFIANT NAME], "
            "who being duly sworn, deposes and says:"
        ),
        footer_template=(
            "Further affiant sayeth naught.\n\n_________________________\n[AFFIANT NAME]\n\n"
            "SWORN TO AND SUBSCRIBED before me this ___ day of __________, 20___."
        ),
    ),
    TemplateDefinition(
        template_key="statement_of_facts_chronological",
        display_name="Statement of Facts (Chronological)",
        category="declarations",
        description="A neutral chronological narrative of events with evidence citations.",
        allowed_sources=("claims", "timeline"),
        sections=(
            SectionBlueprint("background", "Background", "Context and party information",
                             claim_types=("context", "procedural")),
            SectionBlueprint("chronology", "Chronology of Events", "Facts in chronological order",
                             claim_types=("fact", "communication", "financial", "medical", "school", "custody")),
            SectionBlueprint("current", "Current Status", "Present circumstances",
                             claim_types=("procedural",), optional=True),
        ),
        intro_template=(
            "The following statement of facts is presented for the Court's consideration "
            "in the above-captioned matter:"
        ),
        footer_template="The foregoing facts are supported by the exhibits referenced herein.",
    ),
    TemplateDefinition(
        template_key="case_status_summary",
        display_name="Case Status Summary",
        category="procedural",
        description="A summary of case status for your own preparation. NOT a court filing.",
        educational_only=True,
        allowed_sources=("claims", "timeline"),
        required_citation_count=0,
        allow_missing_info_claims=True,
        sections=(
            SectionBlueprint("overview", "Case Overview", "Basic case information"),
            SectionBlueprint("parties", "Parties", "Party information", claim_types=("context",), optional=True),
            SectionBlueprint("pending", "Pending Matters", "Open issues", claim_types=("procedural",), optional=True),
            SectionBlueprint("timeline", "Key Dates", "Important dates", source_type="timeline"),
        ),
        intro_template="Case Status Summary prepared for personal reference:",
        footer_template="This summary is for organizational purposes only and is not a court filing.",
    ),
    TemplateDefinition(
        template_key="chronological_timeline_summary",
        display_name="Chronological Timeline Summary",
        category="procedural",
        description="A chronological summary of events for court review with evidence citations.",
        allowed_sources=("claims", "timeline"),
        allow_missing_info_claims=True,
        sections=(
            SectionBlueprint("background", "Background", "Case context and parties",
                             claim_types=("context",), optional=True),
            SectionBlueprint("timeline", "Chronological Timeline", "Events in date order", source_type="timeline"),
            SectionBlueprint("key_events", "Key Events", "Most significant events",
                             claim_types=("fact", "custody", "communication")),
        ),
        intro_template=(
            "CHRONOLOGICAL TIMELINE SUMMARY\n\nThe following timeline presents events in "
            "chronological order as documented in the evidence:"
        ),
        footer_template=(
            "All events listed above are supported by the evidence cited. "
            "Dates are as documented in the source materials."
        ),
    ),
    TemplateDefinition(
        template_key="exhibit_index",
        display_name="Exhibit Index",
        category="evidence",
        description="A master list of all exhibits with descriptions for court filing.",
        allowed_sources=("claims", "snippets"),
        allow_missing_info_claims=True,
        sections=(
            SectionBlueprint("exhibits", "Exhibit List", "Numbered exhibits with descriptions"),
        ),
        intro_template="The following exhibits are submitted in support of [PARTY]'s [MOTION/DECLARATION]:",
    ),
    TemplateDefinition(
        template_key="trial_binder_dividers",
        display_name="Trial Binder Section Divider Pages",
        category="evidence",
        description="Section heading pages for trial binder organization.",
        educational_only=True,
        allowed_sources=("trialPrep",),
        required_citation_count=0,
        allow_missing_info_claims=True,
        sections=(
            SectionBlueprint("dividers", "Divider Pages", "Section headings", source_type="trialPrep"),
        ),
    ),
    TemplateDefinition(
        template_key="incident_log",
        display_name="Incident Log",
        category="communications",
        description="One entry per accepted claim tagged as 'incident' with citations.",
        educational_only=True,
        required_claim_tags=("incident",),
        sections=(
            SectionBlueprint("incidents", "Incidents", "Incident entries", claim_tags=("incident",)),
        ),
        intro_template="Incident Log:",
        footer_template="This log is for organizational purposes only. Each incident is supported by cited evidence.",
    ),
]

_BY_KEY: Dict[str, TemplateDefinition] = {t.template_key: t for t in TEMPLATE_REGISTRY}


def get_template(template_key: str) -> Optional[TemplateDefinition]:
    return _BY_KEY.get(template_key)


def list_templates(category: Optional[str] = None) -> List[TemplateDefinition]:
    """Return registered templates, optionally limited to one category."""
    if category is None:
        return list(TEMPLATE_REGISTRY)
    return [t for t in TEMPLATE_REGISTRY if t.category == category]
