"""Claim suggester for the evidence pipeline.

This module contains the ClaimSuggester class which asks an OpenAI chat
model for neutral factual claims in extracted evidence text, and the
typed parsing of its JSON answer.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import openai
from langfuse import observe
from openai import OpenAI

from ..config import Config
from ..exceptions import AuthError, ParseError, RateLimitError, TransientProviderError

__all__ = [
    "ClaimType",
    "SuggestedCitation",
    "SuggestedClaim",
    "ClaimSuggester",
    "parse_suggestions",
]

logger = logging.getLogger(__name__)


class ClaimType(Enum):
    """Fixed set of claim categories."""
    FACT = "fact"
    PROCEDURAL = "procedural"
    CONTEXT = "context"
    COMMUNICATION = "communication"
    FINANCIAL = "financial"
    MEDICAL = "medical"
    SCHOOL = "school"
    CUSTODY = "custody"

    @classmethod
    def coerce(cls, value: Any) -> "ClaimType":
        """Map any value to a ClaimType, falling back to FACT."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.FACT


@dataclass
class SuggestedCitation:
    """Location of the quote backing a suggested claim."""
    quote: str
    page_number: Optional[int] = None
    timestamp_seconds: Optional[float] = None
    start_offset: Optional[int] = None
    end_offset: Optional[int] = None


@dataclass
class SuggestedClaim:
    """One claim proposed by the model."""
    claim_text: str
    claim_type: ClaimType = ClaimType.FACT
    tags: List[str] = field(default_factory=list)
    missing_info_flag: bool = False
    citation: Optional[SuggestedCitation] = None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _parse_citation(raw: Any) -> Optional[SuggestedCitation]:
    if not isinstance(raw, dict):
        return None
    quote = raw.get("quote")
    if not isinstance(quote, str) or not quote.strip():
        return None
    return SuggestedCitation(
        quote=quote.strip(),
        page_number=_as_int(raw.get("pageNumber")),
        timestamp_seconds=_as_float(raw.get("timestampSeconds")),
        start_offset=_as_int(raw.get("startOffset")),
        end_offset=_as_int(raw.get("endOffset"))
    )


def _parse_claim(raw: Any) -> Optional[SuggestedClaim]:
    if not isinstance(raw, dict):
        return None
    text = raw.get("claimText")
    if not isinstance(text, str):
        return None
    tags = raw.get("tags")
    return SuggestedClaim(
        claim_text=text.strip(),
        claim_type=ClaimType.coerce(raw.get("claimType")),
        tags=[t.strip() for t in tags if isinstance(t, str) and t.strip()] if isinstance(tags, list) else [],
        missing_info_flag=raw.get("missingInfoFlag") is True,
        citation=_parse_citation(raw.get("citation"))
    )


def parse_suggestions(raw_response: str, max_claims: int = Config.CLAIMS_MAX_PER_RUN) -> List[SuggestedClaim]:
    """Parse the model answer into suggested claims.

    Accepts a bare JSON array, or an object wrapping the array under
    ``claims`` or ``suggestions``. Items that are not claim objects
    become empty claims so the caller can count them as skipped.

    Args:
        raw_response: Model output
        max_claims: Maximum number of claims returned

    Returns:
        Parsed claims, at most ``max_claims``

    Raises:
        ParseError: If the answer is not JSON or has no claim list
    """
    try:
        parsed: Any = json.loads(raw_response)
    except (TypeError, json.JSONDecodeError) as e:
        raise ParseError(f"JSON parsing error from AI response: {str(e)}")

    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        items = parsed.get("claims")
        if items is None:
            items = parsed.get("suggestions")
        if items is None:
            items = []
    else:
        raise ParseError("AI returned invalid data format")

    if not isinstance(items, list):
        raise ParseError("AI returned invalid data format")

    claims: List[SuggestedClaim] = []
    for item in items[:max_claims]:
        claim = _parse_claim(item)
        claims.append(claim if claim is not None else SuggestedClaim(claim_text=""))
    return claims


class ClaimSuggester:
    """AI claim suggester using OpenAI GPT models.

    Attributes:
        cli: OpenAI client instance for API communication
        model: Chat model name
        max_claims: Maximum claims requested and returned per call
        max_text_chars: Evidence text sent to the model is cut to this length
    """

    def __init__(self, api_key: str, model: str = Config.OPENAI_MODEL,
                 max_claims: int = Config.CLAIMS_MAX_PER_RUN,
                 max_text_chars: int = Config.CLAIMS_MAX_TEXT_SLICE,
                 client: Optional[OpenAI] = None) -> None:
        """Initialize claim suggester with OpenAI API key.

        Args:
            api_key: OpenAI API key for authentication
            model: Chat model name
            max_claims: Maximum claims per call
            max_text_chars: Input text limit
            client: Pre-built client, mainly for tests

        Raises:
            AuthError: If API key is missing and no client is given
        """
        if client is None and not api_key:
            raise AuthError("Missing OpenAI API key")

        self.cli: OpenAI = client or OpenAI(api_key=api_key)
        self.model: str = model
        self.max_claims: int = max_claims
        self.max_text_chars: int = max_text_chars

    @observe(name="openai_chat_completion", as_type="generation")
    def _chat(self, messages: List[Dict[str, str]], **kwargs: Any) -> str:
        """Execute OpenAI chat completion request.

        Args:
            messages: List of message dictionaries for the conversation
            **kwargs: Additional parameters for the API call

        Returns:
            Generated response content, "[]" when the model returns nothing

        Raises:
            RateLimitError: If OpenAI answers 429
            AuthError: If OpenAI rejects the API key
            TransientProviderError: On timeouts, connection and other API errors
        """
        try:
            response = self.cli.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.2,
                **kwargs
            )
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {str(e)}")
        except openai.AuthenticationError as e:
            raise AuthError(f"OpenAI authentication failed: {str(e)}")
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise TransientProviderError(f"OpenAI connection error: {str(e)}")
        except openai.OpenAIError as e:
            raise TransientProviderError(f"OpenAI API error: {str(e)}")

        if not response.choices or not response.choices[0].message.content:
            return "[]"
        return response.choices[0].message.content.strip()

    @observe(name="suggest_claims")
    def suggest_claims(self, text: str) -> List[SuggestedClaim]:
        """Ask the model for factual claims found in evidence text.

        A malformed answer degrades to an empty list; provider failures
        propagate so the caller can decide about retrying.

        Args:
            text: Extracted evidence text

        Returns:
            Suggested claims, at most ``max_claims``

        Raises:
            RateLimitError: If OpenAI answers 429
            AuthError: If OpenAI rejects the API key
            TransientProviderError: On other provider failures
        """
        if not text or not text.strip():
            return []

        raw_response: str = self._chat(
            [
                {"role": "system", "content": self._build_system_prompt()},
                {"role": "user", "content": "Extract factual claims from this evidence:\n\n" + text[:self.max_text_chars]},
            ],
            max_tokens=4000,
            response_format={"type": "json_object"},
        )

        try:
            return parse_suggestions(raw_response, self.max_claims)
        except ParseError as e:
            logger.warning("Discarding unparseable claim suggestions: %s", e)
            return []

    def _build_system_prompt(self) -> str:
        types = "|".join(f'"{t.value}"' for t in ClaimType)
        return (
            "You are a legal document analyst extracting factual claims from evidence. "
            "Identify NEUTRAL, FACTUAL statements that can be verified from the text.\n\n"
            "RULES:\n"
            "- Claims must be neutral factual statements only\n"
            "- DO NOT infer dates, motives, diagnoses, or intent\n"
            "- If date/location is unclear, set missingInfoFlag=true and do NOT invent\n"
            "- citation.quote must be a short direct excerpt present in the text\n"
            "- Keep claims objective and traceable\n\n"
            "Return ONLY valid JSON (no markdown) as an object {\"claims\": [...]} where each item is:\n"
            "{\n"
            '  "claimText": "Factual statement here",\n'
            f'  "claimType": {types},\n'
            '  "tags": ["relevant", "tags"],\n'
            '  "missingInfoFlag": false,\n'
            '  "citation": {"quote": "exact short quote from text", "pageNumber": null, '
            '"timestampSeconds": null, "startOffset": null, "endOffset": null}\n'
            "}\n\n"
            f"Limit to {self.max_claims} most important claims."
        )
