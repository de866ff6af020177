"""Validators module for the evidence pipeline.

This module contains the evidence file checks run before extraction:
file-kind detection and the size gate.
"""

from .validators import EvidenceValidator, FileKind

__all__ = ["EvidenceValidator", "FileKind"]
