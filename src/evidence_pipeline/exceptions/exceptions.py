"""Custom exceptions for the evidence pipeline.

This module contains the error taxonomy shared by the extraction,
claim suggestion and compilation components, plus a helper that turns
raw error text into a short message safe to show to a user.
"""

import re
from typing import Optional

__all__ = [
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
]


class PipelineError(Exception):
    """Base class for every error raised by the evidence pipeline."""
    pass


class TransientProviderError(PipelineError):
    """Exception raised when an OCR or LLM provider fails transiently.

    Covers timeouts, connection resets and rate limiting. Claim suggestion
    retries rate limits once; everything else is surfaced to the caller.

    Attributes:
        status_code: HTTP status reported by the provider, when known
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code: Optional[int] = status_code


class RateLimitError(TransientProviderError):
    """Exception raised when a provider answers 429 Too Many Requests."""

    def __init__(self, message: str = "Provider rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class AuthError(PipelineError):
    """Exception raised when provider credentials are missing or rejected.

    This is a configuration problem, never retried.
    """
    pass


class ParseError(PipelineError):
    """Exception raised when provider output or a document cannot be parsed."""
    pass


class ValidationError(PipelineError):
    """Exception raised when a record change would break a data invariant.

    Used for illegal claim status transitions and duplicate claim text.
    Compile-time gating does not raise this; it is reported as data.
    """
    pass


class ResourceError(PipelineError):
    """Exception raised when a file exceeds a size or page limit."""
    pass


class DatabaseError(PipelineError):
    """Exception raised during record store operations.

    This exception is raised when there are issues with database
    connectivity, queries, or data persistence.
    """
    pass


class StorageError(PipelineError):
    """Exception raised when object storage cannot return or store bytes."""
    pass


_SECRET_PATTERNS = [
    (re.compile(r"sk-[a-zA-Z0-9_-]{20,}"), "sk-***"),
    (re.compile(r"key\s*[:=]\s*[\"']?[a-zA-Z0-9_-]{20,}[\"']?", re.I), "key=***"),
    (re.compile(r"Bearer\s+[a-zA-Z0-9_.-]{20,}", re.I), "Bearer ***"),
]


def humanize_error(error: object, max_length: int = 200) -> str:
    """Convert an exception or raw error text into a short user-facing message.

    API keys and bearer tokens are redacted. Rate limit, authentication,
    timeout and network failures collapse into fixed phrases so operators
    can tell broken configuration apart from a flaky network.

    Args:
        error: Exception instance or error text
        max_length: Maximum length of the returned message

    Returns:
        Redacted, human-readable error message
    """
    if error is None:
        return "Unknown error"

    if isinstance(error, RateLimitError):
        return "Rate limited - too many requests"
    if isinstance(error, AuthError):
        return "Authentication error"

    text = str(error) or error.__class__.__name__
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)

    lowered = text.lower()
    if "rate limit" in lowered or "429" in text:
        return "Rate limited - too many requests"
    if "401" in text or "unauthorized" in lowered:
        return "Authentication error"
    if "timeout" in lowered or "timed out" in lowered:
        return "Request timed out"
    if "econnreset" in lowered or "connection reset" in lowered:
        return "Network error"

    if len(text) > max_length:
        return text[:max_length] + "..."
    return text
