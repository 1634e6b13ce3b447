"""
Screenshot Fingerprinting for Screencap

Two digests per screenshot:

- stable hash: 8x8 difference hash of a blurred grayscale copy with the
  top-right corner masked out, so a ticking menu-bar clock or status icons
  do not make an otherwise unchanged screen look new
- detail hash: SHA-256 over the decoded pixels and dimensions, equal only
  for pixel-identical captures

Both are hex strings and fully deterministic.
"""

import hashlib
import io
import logging
from dataclasses import dataclass
from pathlib import Path

import imagehash
from PIL import Image, ImageDraw, ImageFilter, UnidentifiedImageError

from screencap.core.errors import ValidationError

logger = logging.getLogger(__name__)

STABLE_HASH_SIZE = 8
STABLE_BLUR_RADIUS = 1.2

# Fraction of the frame masked before stable hashing (menu-bar clock area)
MASK_TOP_FRACTION = 0.20
MASK_RIGHT_FRACTION = 0.25

# Maximum stable-hash distance still treated as the same screen
DEFAULT_STABLE_TOLERANCE = 4


@dataclass(frozen=True)
class Fingerprint:
    """Stable and detail digests of one screenshot."""

    stable_hash: str
    detail_hash: str


def _load_image(source: bytes | Image.Image | Path | str) -> Image.Image:
    if isinstance(source, Image.Image):
        return source

    try:
        if isinstance(source, bytes | bytearray):
            if not source:
                raise ValidationError("Empty image data")
            image = Image.open(io.BytesIO(source))
        else:
            image = Image.open(source)
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError(f"Cannot decode image: {e}") from e

    return image


def _mask_top_right(image: Image.Image) -> Image.Image:
    width, height = image.size
    mask_w = int(round(width * MASK_RIGHT_FRACTION))
    mask_h = int(round(height * MASK_TOP_FRACTION))
    if mask_w <= 0 or mask_h <= 0:
        return image

    masked = image.copy()
    ImageDraw.Draw(masked).rectangle(
        [width - mask_w, 0, width - 1, mask_h - 1],
        fill=0,
    )
    return masked


def compute_stable_hash(image: Image.Image) -> str:
    """Coarse perceptual hash tolerant to small visual changes."""
    gray = image.convert("L")
    gray = _mask_top_right(gray)
    gray = gray.filter(ImageFilter.GaussianBlur(radius=STABLE_BLUR_RADIUS))
    return str(imagehash.dhash(gray, hash_size=STABLE_HASH_SIZE))


def compute_detail_hash(image: Image.Image) -> str:
    """Exact content digest of the RGB pixels."""
    rgb = image.convert("RGB")
    digest = hashlib.sha256()
    digest.update(f"{rgb.width}x{rgb.height}:".encode())
    digest.update(rgb.tobytes())
    return digest.hexdigest()


def compute_fingerprint(source: bytes | Image.Image | Path | str) -> Fingerprint:
    """
    Fingerprint a screenshot.

    Args:
        source: Encoded image bytes, a file path, or a PIL image

    Returns:
        Fingerprint with stable and detail hashes

    Raises:
        ValidationError: if the data cannot be decoded as an image
    """
    image = _load_image(source)
    if image.width == 0 or image.height == 0:
        raise ValidationError("Image has no pixels")

    return Fingerprint(
        stable_hash=compute_stable_hash(image),
        detail_hash=compute_detail_hash(image),
    )


def hamming_distance(hash1: str | None, hash2: str | None) -> int | None:
    """
    Number of differing bits between two hex hashes.

    Returns:
        The distance, or None when either hash is missing, malformed, or
        the two have different lengths
    """
    if not hash1 or not hash2 or len(hash1) != len(hash2):
        return None
    try:
        return imagehash.hex_to_hash(hash1) - imagehash.hex_to_hash(hash2)
    except (ValueError, TypeError):
        return None


def is_similar(
    hash1: str | None,
    hash2: str | None,
    tolerance: int = DEFAULT_STABLE_TOLERANCE,
) -> bool:
    """True when two stable hashes are within ``tolerance`` bits."""
    distance = hamming_distance(hash1, hash2)
    return distance is not None and distance <= tolerance


if __name__ == "__main__":
    import fire

    def fingerprint(image_path: str):
        """Fingerprint an image file."""
        fp = compute_fingerprint(Path(image_path))
        return {"stable_hash": fp.stable_hash, "detail_hash": fp.detail_hash}

    def compare(image1: str, image2: str):
        """Compare two image files."""
        fp1 = compute_fingerprint(Path(image1))
        fp2 = compute_fingerprint(Path(image2))
        return {
            "stable_distance": hamming_distance(fp1.stable_hash, fp2.stable_hash),
            "exact_match": fp1.detail_hash == fp2.detail_hash,
        }

    fire.Fire({"fingerprint": fingerprint, "compare": compare})
