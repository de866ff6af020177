"""Text extractor for the evidence pipeline.

This module contains the TextExtractor class for reading native
embedded text from PDF pages and rendering pages to raster images
using the pdfplumber library, plus Pillow image normalisation.
"""

import io
import logging
from dataclasses import dataclass, field
from typing import List

import pdfplumber
from PIL import Image

from ..config import Config
from ..exceptions import ParseError

__all__ = ["TextExtractor", "NativePage", "NativePdf"]

logger = logging.getLogger(__name__)


@dataclass
class NativePage:
    """Embedded text of one PDF page."""
    page_number: int
    text: str


@dataclass
class NativePdf:
    """Result of reading embedded text from a PDF."""
    page_count: int
    pages: List[NativePage] = field(default_factory=list)


class TextExtractor:
    """Reads native PDF text and renders pages for OCR.

    Attributes:
        resolution: Rendering resolution in dpi
        max_width: Maximum width of normalised images in pixels
    """

    def __init__(self, resolution: int = Config.OCR_RENDER_RESOLUTION,
                 max_width: int = Config.IMAGE_MAX_WIDTH) -> None:
        self.resolution: int = resolution
        self.max_width: int = max_width

    def read_pages(self, pdf_bytes: bytes) -> NativePdf:
        """Extract embedded text from every page of a PDF.

        Processes all pages and continues past individual page failures,
        which yield empty text for that page. A document that cannot be
        opened at all is treated as having no native text, so every page
        falls through to OCR.

        Args:
            pdf_bytes: Raw PDF file content as bytes

        Returns:
            NativePdf with the page count and per-page text
        """
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                pages: List[NativePage] = []
                for i, page in enumerate(pdf.pages):
                    try:
                        page_text = page.extract_text() or ""
                    except Exception as e:
                        logger.warning("Failed to read text of page %d: %s", i + 1, e)
                        page_text = ""
                    pages.append(NativePage(page_number=i + 1, text=page_text.strip()))
                return NativePdf(page_count=len(pages), pages=pages)
        except Exception as e:
            logger.warning("PDF text layer unreadable, treating as empty: %s", e)
            return NativePdf(page_count=0, pages=[])

    def render_page(self, pdf_bytes: bytes, page_number: int) -> bytes:
        """Render one PDF page to a normalised PNG image.

        Args:
            pdf_bytes: Raw PDF file content as bytes
            page_number: 1-based page number

        Returns:
            PNG image bytes

        Raises:
            ParseError: If the page cannot be rendered
        """
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                if page_number < 1 or page_number > len(pdf.pages):
                    raise ParseError(f"Page {page_number} out of range")
                page_image = pdf.pages[page_number - 1].to_image(resolution=self.resolution)
                return self.normalize_image(page_image.original)
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Page {page_number} rendering error: {str(e)}")

    def normalize_image(self, image: Image.Image) -> bytes:
        """Convert an image to RGB PNG no wider than ``max_width``."""
        if image.mode != "RGB":
            image = image.convert("RGB")
        if image.width > self.max_width:
            height = max(1, round(image.height * self.max_width / image.width))
            image = image.resize((self.max_width, height))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()

    def normalize_image_bytes(self, image_bytes: bytes) -> bytes:
        """Decode raw image bytes and normalise them.

        Raises:
            ParseError: If the bytes are not a readable image
        """
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                image.load()
                return self.normalize_image(image)
        except Exception as e:
            raise ParseError(f"Image decoding error: {str(e)}")
