"""Shared fixtures for the Screencap test suite."""

import uuid
from pathlib import Path

import pytest
from PIL import Image, ImageDraw

from screencap.capture.dedup import compute_fingerprint
from screencap.capture.screenshots import Capture
from screencap.db.store import EventStore


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_image(seed: int = 0, size: tuple[int, int] = (320, 200)) -> Image.Image:
    """A deterministic picture whose layout depends on ``seed``."""
    width, height = size
    image = Image.new("RGB", size, (240, 240, 240))
    draw = ImageDraw.Draw(image)
    for i in range(6):
        x = (seed * 37 + i * 53) % (width - 60)
        y = height // 4 + (seed * 23 + i * 29) % (height // 2)
        shade = (seed * 41 + i * 67) % 200
        draw.rectangle([x, y, x + 60, y + 30], fill=(shade, 30, 255 - shade))
    return image


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> EventStore:
    return EventStore(tmp_path / "db" / "screencap.sqlite")


@pytest.fixture
def capture_factory(tmp_path: Path):
    """Build Capture objects backed by real image files under tmp_path."""
    image_dir = tmp_path / "originals"
    image_dir.mkdir()

    def factory(
        image: Image.Image,
        timestamp: float,
        display_id: str | None = "1",
        is_primary: bool = True,
    ) -> Capture:
        capture_id = str(uuid.uuid4())
        path = image_dir / f"{capture_id}.png"
        image.save(path, "PNG")
        fingerprint = compute_fingerprint(image)
        return Capture(
            id=capture_id,
            display_id=display_id,
            timestamp=timestamp,
            width=image.width,
            height=image.height,
            path=path,
            stable_hash=fingerprint.stable_hash,
            detail_hash=fingerprint.detail_hash,
            is_primary=is_primary,
        )

    return factory


@pytest.fixture
def image_factory():
    return make_image
