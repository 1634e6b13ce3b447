"""Evidence gathering: OCR of screenshot text."""

from .ocr import OCRExtractor, OCRResult

__all__ = ["OCRExtractor", "OCRResult"]
