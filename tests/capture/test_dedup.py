"""Tests for screenshot fingerprinting."""

import io

import pytest
from PIL import Image, ImageDraw

from screencap.capture.dedup import (
    compute_fingerprint,
    hamming_distance,
    is_similar,
)
from screencap.core.errors import ValidationError


def _gradient(reverse: bool = False, size: tuple[int, int] = (320, 200)) -> Image.Image:
    width, height = size
    image = Image.new("L", size)
    for x in range(width):
        value = int(255 * x / (width - 1))
        if reverse:
            value = 255 - value
        ImageDraw.Draw(image).line([(x, 0), (x, height - 1)], fill=value)
    return image.convert("RGB")


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, "PNG")
    return buffer.getvalue()


class TestFingerprint:
    """Test stable and detail hash computation."""

    def test_identical_images_have_identical_fingerprints(self, image_factory):
        a = compute_fingerprint(image_factory(3))
        b = compute_fingerprint(image_factory(3))

        assert a == b
        assert len(a.stable_hash) == 16
        assert len(a.detail_hash) == 64

    def test_accepts_encoded_bytes_and_paths(self, image_factory, tmp_path):
        image = image_factory(5)
        path = tmp_path / "shot.png"
        image.save(path)

        from_image = compute_fingerprint(image)
        assert compute_fingerprint(_png_bytes(image)) == from_image
        assert compute_fingerprint(path) == from_image

    def test_menu_bar_corner_is_ignored_by_stable_hash(self, image_factory):
        base = image_factory(7)
        clock_changed = base.copy()
        width, _ = clock_changed.size
        # Top-right corner only, where the menu-bar clock lives
        ImageDraw.Draw(clock_changed).rectangle([width - 40, 0, width - 1, 20], fill=(0, 0, 0))

        a = compute_fingerprint(base)
        b = compute_fingerprint(clock_changed)

        assert a.stable_hash == b.stable_hash
        assert a.detail_hash != b.detail_hash

    def test_different_screens_are_far_apart(self):
        a = compute_fingerprint(_gradient())
        b = compute_fingerprint(_gradient(reverse=True))

        assert hamming_distance(a.stable_hash, b.stable_hash) > 4

    def test_empty_bytes_rejected(self):
        with pytest.raises(ValidationError):
            compute_fingerprint(b"")

    def test_undecodable_bytes_rejected(self):
        with pytest.raises(ValidationError):
            compute_fingerprint(b"definitely not an image")


class TestHammingDistance:
    """Test hash comparison helpers."""

    def test_distance_between_hex_hashes(self):
        assert hamming_distance("0000000000000000", "0000000000000000") == 0
        assert hamming_distance("0000000000000000", "000000000000000f") == 4
        assert hamming_distance("ffffffffffffffff", "0000000000000000") == 64

    def test_missing_or_mismatched_hashes(self):
        assert hamming_distance(None, "00") is None
        assert hamming_distance("00", "") is None
        assert hamming_distance("0000", "000000") is None

    def test_is_similar_respects_tolerance(self):
        assert is_similar("0000000000000000", "000000000000000f", tolerance=4)
        assert not is_similar("0000000000000000", "000000000000001f", tolerance=4)
        assert not is_similar(None, "0000000000000000")
