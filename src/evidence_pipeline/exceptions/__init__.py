"""Custom exceptions for the evidence pipeline.

This module re-exports the error taxonomy used throughout text
extraction, claim suggestion, citation ranking and compilation.
"""

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
    "humanize_error"
]
