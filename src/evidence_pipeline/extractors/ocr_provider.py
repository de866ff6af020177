"""OCR providers for the evidence pipeline.

This module contains the abstract OcrProvider base class and the
Tesseract and OpenAI vision implementations used to read text from
rendered pages and uploaded images.
"""

import base64
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import openai
import pytesseract
from langfuse import observe
from openai import OpenAI
from PIL import Image

from ..config import Config
from ..exceptions import AuthError, ParseError, RateLimitError, TransientProviderError

__all__ = [
    "OcrResult",
    "OcrProvider",
    "TesseractOcrProvider",
    "OpenAIVisionOcrProvider",
    "create_ocr_provider",
]

logger = logging.getLogger(__name__)


@dataclass
class OcrResult:
    """Text read from one image.

    Attributes:
        text: Recognised text
        confidence: Average confidence 0-100, or None if the provider has none
    """
    text: str
    confidence: Optional[int] = None


class OcrProvider(ABC):
    """Abstract base class for OCR implementations.

    Concrete providers are interchangeable: the text engine only relies
    on ``detect_text`` and the provider ``name`` recorded on OCR rows.
    """

    name: str = "ocr"

    @abstractmethod
    def detect_text(self, image_bytes: bytes) -> OcrResult:
        """Read text from an image.

        Args:
            image_bytes: Encoded image (PNG, JPEG, ...)

        Returns:
            OcrResult with the text and an optional confidence

        Raises:
            ParseError: If the image cannot be decoded
            TransientProviderError: If the provider fails transiently
            AuthError: If the provider rejects the credentials
        """
        pass


def average_confidence(confidences: List[float]) -> Optional[int]:
    """Average per-region confidences (0-100) into one page score."""
    valid = [c for c in confidences if c >= 0]
    if not valid:
        return None
    return round(sum(valid) / len(valid))


class TesseractOcrProvider(OcrProvider):
    """OCR through the local Tesseract binary via pytesseract.

    Attributes:
        lang: Tesseract language code
        config: Extra Tesseract command line options
    """

    name = "tesseract"

    def __init__(self, lang: str = "eng", config: str = "--psm 6") -> None:
        self.lang: str = lang
        self.config: str = config

    @observe(name="tesseract_detect_text")
    def detect_text(self, image_bytes: bytes) -> OcrResult:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except Exception as e:
            raise ParseError(f"Image decoding error: {str(e)}")

        try:
            data = pytesseract.image_to_data(
                image, lang=self.lang, config=self.config,
                output_type=pytesseract.Output.DICT
            )
        except pytesseract.TesseractNotFoundError as e:
            raise TransientProviderError(f"Tesseract binary not found: {str(e)}")
        except pytesseract.TesseractError as e:
            raise TransientProviderError(f"Tesseract error: {str(e)}")

        words = data.get("text", [])
        no_layout = [0] * len(words)
        blocks, paragraphs, line_nums = (data.get(k, no_layout) for k in ("block_num", "par_num", "line_num"))

        # Words keep their reading order; a new Tesseract line starts a new text line.
        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences: List[float] = []
        for i, word in enumerate(words):
            if not word or not word.strip():
                continue
            lines.setdefault((blocks[i], paragraphs[i], line_nums[i]), []).append(word.strip())
            try:
                confidences.append(float(data.get("conf", [])[i]))
            except (IndexError, TypeError, ValueError):
                continue

        text = "\n".join(" ".join(line) for line in lines.values())
        return OcrResult(text=text, confidence=average_confidence(confidences))


class OpenAIVisionOcrProvider(OcrProvider):
    """OCR through an OpenAI vision-capable chat model.

    The model returns plain text only, so no confidence is available.

    Attributes:
        cli: OpenAI client instance for API communication
        model: Chat model name
    """

    name = "openai_vision"

    def __init__(self, api_key: str, model: str = Config.OPENAI_MODEL,
                 client: Optional[OpenAI] = None) -> None:
        """Initialize the provider.

        Args:
            api_key: OpenAI API key
            model: Vision-capable chat model
            client: Pre-built client, mainly for tests

        Raises:
            AuthError: If no API key and no client is given
        """
        if client is None and not api_key:
            raise AuthError("Missing OpenAI API key")
        self.cli: OpenAI = client or OpenAI(api_key=api_key)
        self.model: str = model

    @observe(name="openai_vision_ocr", as_type="generation")
    def detect_text(self, image_bytes: bytes) -> OcrResult:
        image_b64 = base64.b64encode(image_bytes).decode()
        try:
            response = self.cli.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": "You transcribe documents. Return only the text visible in the image, preserving line breaks. Do not summarise or add commentary."
                    },
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "Transcribe all text in this image."},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/png;base64,{image_b64}"}
                            },
                        ]
                    },
                ],
                temperature=0,
                max_tokens=4000,
            )
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {str(e)}")
        except openai.AuthenticationError as e:
            raise AuthError(f"OpenAI authentication failed: {str(e)}")
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise TransientProviderError(f"OpenAI connection error: {str(e)}")
        except openai.OpenAIError as e:
            raise TransientProviderError(f"OpenAI API error: {str(e)}")

        content = response.choices[0].message.content if response.choices else None
        return OcrResult(text=(content or "").strip(), confidence=None)


def create_ocr_provider(name: str = Config.OCR_PROVIDER,
                        api_key: str = Config.OPENAI_API_KEY) -> Optional[OcrProvider]:
    """Build the configured OCR provider.

    Args:
        name: tesseract | openai_vision | none
        api_key: OpenAI key for the vision provider

    Returns:
        An OcrProvider, or None when OCR is disabled or unavailable
    """
    key = (name or "none").lower()
    if key == "tesseract":
        return TesseractOcrProvider()
    if key == "openai_vision":
        if not api_key:
            logger.warning("OCR provider openai_vision configured without OPENAI_API_KEY; OCR disabled")
            return None
        return OpenAIVisionOcrProvider(api_key=api_key)
    if key != "none":
        logger.warning("Unknown OCR provider '%s'; OCR disabled", name)
    return None
