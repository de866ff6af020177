"""Storage module for the evidence pipeline.

This module contains the object storage interface consumed by the
extraction scheduler and a local directory implementation.
"""

from .object_storage import ObjectStorage, LocalObjectStorage

__all__ = ["ObjectStorage", "LocalObjectStorage"]
