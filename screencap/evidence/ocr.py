"""
LLM-based OCR for Screenshots

Uses OpenAI's vision API to read the text on a screenshot. Results are
cached per image content so re-reading an identical frame is free.

Failures are raised as typed service errors so callers can decide whether
to carry on without OCR:
- TransientServiceError: rate limit, network, timeout, 5xx
- PermanentServiceError: missing/oversized image, rejected request
"""

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import tiktoken
from openai import OpenAI, OpenAIError

from screencap.core.errors import PermanentServiceError, TransientServiceError
from screencap.core.paths import ensure_daily_dirs
from screencap.core.retry import is_retryable_openai_error

logger = logging.getLogger(__name__)

DEFAULT_OCR_MODEL = "gpt-4o-mini"
DEFAULT_ENCODING = "cl100k_base"

OCR_SYSTEM_PROMPT = """You are an OCR assistant that extracts text from screenshots.

Extract ALL visible text in reading order (top to bottom, left to right).
Keep paragraph structure with blank lines between separate regions of the screen
(sidebar, editor, terminal, page body...). Preserve indentation for code.
Ignore decorative elements and icons without labels.

Output ONLY the extracted text."""

MAX_IMAGE_SIZE = 20 * 1024 * 1024

_MIME_TYPES = {".webp": "image/webp", ".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


@dataclass
class OCRResult:
    """Text read from one screenshot."""

    text: str
    regions: list[str] = field(default_factory=list)
    token_count: int = 0
    model: str | None = None
    cached: bool = False
    image_hash: str | None = None


def split_regions(text: str) -> list[str]:
    """Split OCR output into blank-line separated regions."""
    regions = []
    for block in text.split("\n\n"):
        block = block.strip()
        if block:
            regions.append(block)
    return regions


class OCRExtractor:
    """
    Extracts text from screenshots with a vision model.

    The OpenAI client is created on first use so the extractor can be
    constructed without an API key.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OCR_MODEL,
        cache_results: bool = True,
        timeout: float = 60,
    ):
        self.model = model
        self.cache_results = cache_results
        self.timeout = timeout
        self._api_key = api_key
        self._client: OpenAI | None = None

        try:
            self._encoding = tiktoken.get_encoding(DEFAULT_ENCODING)
        except Exception:
            logger.warning("Failed to load tiktoken encoding")
            self._encoding = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key, timeout=self.timeout)
        return self._client

    def recognize(self, image_path: Path | str) -> OCRResult:
        """
        Read the text on a screenshot.

        Args:
            image_path: Path to the screenshot image

        Returns:
            OCRResult with the full text and its regions

        Raises:
            TransientServiceError: the OCR backend is temporarily unavailable
            PermanentServiceError: the image cannot be processed
        """
        image_path = Path(image_path)
        if not image_path.exists():
            raise PermanentServiceError(f"Image not found: {image_path}", service="ocr")
        if image_path.stat().st_size > MAX_IMAGE_SIZE:
            raise PermanentServiceError(f"Image too large for OCR: {image_path}", service="ocr")

        image_bytes = image_path.read_bytes()
        image_hash = hashlib.sha256(image_bytes).hexdigest()[:16]

        if self.cache_results:
            cached = self._load_from_cache(image_hash)
            if cached is not None:
                logger.debug(f"OCR cache hit for {image_path.name}")
                return OCRResult(
                    text=cached["text"],
                    regions=split_regions(cached["text"]),
                    token_count=cached.get("token_count", 0),
                    model=cached.get("model"),
                    cached=True,
                    image_hash=image_hash,
                )

        mime = _MIME_TYPES.get(image_path.suffix.lower(), "image/webp")
        image_data = base64.b64encode(image_bytes).decode("utf-8")

        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": OCR_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime};base64,{image_data}", "detail": "high"},
                            },
                            {"type": "text", "text": "Extract all visible text from this screenshot."},
                        ],
                    },
                ],
                max_completion_tokens=4096,
            )
        except OpenAIError as e:
            if is_retryable_openai_error(e):
                raise TransientServiceError(f"OCR request failed: {e}", service="ocr") from e
            raise PermanentServiceError(f"OCR request rejected: {e}", service="ocr") from e

        text = (response.choices[0].message.content or "").strip()
        result = OCRResult(
            text=text,
            regions=split_regions(text),
            token_count=self._count_tokens(text),
            model=self.model,
            cached=False,
            image_hash=image_hash,
        )

        if self.cache_results:
            self._save_to_cache(image_hash, result)

        logger.debug(f"OCR read {result.token_count} tokens from {image_path.name}")
        return result

    def _count_tokens(self, text: str) -> int:
        if self._encoding:
            return len(self._encoding.encode(text))
        return len(text) // 4

    def _get_cache_path(self, image_hash: str) -> Path:
        return ensure_daily_dirs()["ocr"] / f"{image_hash}.json"

    def _load_from_cache(self, image_hash: str) -> dict | None:
        cache_path = self._get_cache_path(image_hash)
        if not cache_path.exists():
            return None
        try:
            with open(cache_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load OCR cache: {e}")
            return None

    def _save_to_cache(self, image_hash: str, result: OCRResult) -> None:
        cache_path = self._get_cache_path(image_hash)
        try:
            with open(cache_path, "w", encoding="utf-8") as f:
                json.dump(
                    {"text": result.text, "token_count": result.token_count, "model": result.model},
                    f,
                )
        except OSError as e:
            logger.warning(f"Failed to save OCR cache: {e}")


if __name__ == "__main__":
    import fire

    def extract(image_path: str):
        """Extract text from a screenshot."""
        result = OCRExtractor().recognize(image_path)
        return {
            "token_count": result.token_count,
            "regions": len(result.regions),
            "cached": result.cached,
            "text_preview": result.text[:500],
        }

    fire.Fire({"extract": extract})
