"""Validators module for the evidence pipeline.

This module contains the EvidenceValidator class which decides how an
evidence file is extracted (PDF, image or unsupported) and whether it
fits within the configured size limit.
"""

from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..config import Config
from ..exceptions import ResourceError

__all__ = ["EvidenceValidator", "FileKind"]


class FileKind(Enum):
    """How an evidence file is routed through text extraction."""
    PDF = "pdf"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp", ".heic", ".gif", ".tif", ".tiff", ".bmp")

_IMAGE_SIGNATURES = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"GIF87a",
    b"GIF89a",
    b"II*\x00",
    b"MM\x00*",
    b"BM",
)


class EvidenceValidator:
    """Classifies evidence files and applies the size gate.

    Oversized files are not rejected with an exception: the caller gets a
    reason string and records it as extraction metadata, since a partial
    or skipped extraction is still a useful, visible outcome.

    Attributes:
        max_file_mb: Size limit in megabytes
        image_types: Mime types treated as images
    """

    def __init__(self, max_file_mb: int = Config.OCR_MAX_FILE_MB,
                 image_types: Optional[List[str]] = None) -> None:
        self.max_file_mb: int = max_file_mb
        self.image_types: List[str] = list(image_types or Config.SUPPORTED_IMAGE_TYPES)

    def detect_kind(self, mime_type: Optional[str], filename: str = "",
                    data: bytes = b"") -> FileKind:
        """Determine the extraction route for a file.

        The declared mime type wins; the extension and the leading magic
        bytes are used when the mime type is missing or generic.

        Args:
            mime_type: Declared content type
            filename: Original file name
            data: File content, only the first bytes are inspected

        Returns:
            FileKind of the file
        """
        mime = (mime_type or "").lower().strip()
        if mime == "application/pdf":
            return FileKind.PDF
        if mime in self.image_types:
            return FileKind.IMAGE
        if mime and mime not in ("application/octet-stream", "binary/octet-stream"):
            return FileKind.UNSUPPORTED

        suffix = Path(filename).suffix.lower()
        if suffix == ".pdf" or data.startswith(b"%PDF"):
            return FileKind.PDF
        if suffix in _IMAGE_EXTENSIONS or data.startswith(_IMAGE_SIGNATURES):
            return FileKind.IMAGE
        if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return FileKind.IMAGE
        return FileKind.UNSUPPORTED

    def validate_size(self, size_bytes: int) -> None:
        """Check a file against the size limit.

        Args:
            size_bytes: File size in bytes

        Raises:
            ResourceError: If the file exceeds the limit
        """
        if size_bytes > self.max_file_mb * 1024 * 1024:
            size_mb = size_bytes / (1024 * 1024)
            raise ResourceError(f"File too large for OCR ({size_mb:.1f} MB > {self.max_file_mb} MB)")
