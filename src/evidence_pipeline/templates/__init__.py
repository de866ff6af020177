"""Templates module for the evidence pipeline.

This module contains the static registry of document templates the
template compiler assembles claims into.
"""

from .registry import (
    SectionBlueprint,
    TemplateDefinition,
    TEMPLATE_REGISTRY,
    FRAMING_SECTION_KEYS,
    get_template,
    list_templates
)

__all__ = [
    "SectionBlueprint",
    "TemplateDefinition",
    "TEMPLATE_REGISTRY",
    "FRAMING_SECTION_KEYS",
    "get_template",
    "list_templates"
]
