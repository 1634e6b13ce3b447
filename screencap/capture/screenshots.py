"""
Multi-display Screenshot Capture

Grabs each display with Quartz, downscales to at most 1080p, fingerprints
the frame and writes it as WebP under screenshots/originals/YYYYMMDD/.

macOS only; on other platforms no displays are reported.
"""

import logging
import sys
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from PIL import Image

from screencap.capture.dedup import compute_fingerprint
from screencap.core.paths import ensure_daily_dirs

logger = logging.getLogger(__name__)

MAX_HEIGHT = 1080
MAX_WIDTH = 1920
WEBP_QUALITY = 80


@dataclass
class DisplayInfo:
    """A connected display."""

    display_id: str
    width: int
    height: int
    is_main: bool = False


@dataclass
class Capture:
    """One saved, fingerprinted screenshot waiting for a merge decision."""

    id: str
    display_id: str | None
    timestamp: float
    width: int
    height: int
    path: Path
    stable_hash: str
    detail_hash: str
    is_primary: bool = True


def get_displays() -> list[DisplayInfo]:
    """List active displays, main display first."""
    if sys.platform != "darwin":
        return []

    try:
        from Quartz import CGDisplayBounds, CGGetActiveDisplayList, CGMainDisplayID
    except ImportError:
        logger.error("Quartz framework not available")
        return []

    error, active, count = CGGetActiveDisplayList(16, None, None)
    if error != 0:
        logger.error(f"CGGetActiveDisplayList returned error: {error}")
        return []

    main_id = CGMainDisplayID()
    displays = []
    for display_id in list(active or [])[:count]:
        bounds = CGDisplayBounds(display_id)
        displays.append(
            DisplayInfo(
                display_id=str(display_id),
                width=int(bounds.size.width),
                height=int(bounds.size.height),
                is_main=display_id == main_id,
            )
        )
    displays.sort(key=lambda d: not d.is_main)
    return displays


def _grab_display(display_id: str) -> Image.Image | None:
    from Quartz import (
        CGDataProviderCopyData,
        CGDisplayCreateImage,
        CGImageGetBytesPerRow,
        CGImageGetDataProvider,
        CGImageGetHeight,
        CGImageGetWidth,
    )

    cg_image = CGDisplayCreateImage(int(display_id))
    if cg_image is None:
        # Screen Recording permission missing or display asleep
        logger.warning(f"Failed to capture display {display_id}")
        return None

    width = CGImageGetWidth(cg_image)
    height = CGImageGetHeight(cg_image)
    data = CGDataProviderCopyData(CGImageGetDataProvider(cg_image))
    return Image.frombytes(
        "RGBA", (width, height), bytes(data), "raw", "BGRA", CGImageGetBytesPerRow(cg_image)
    )


def downscale(image: Image.Image) -> Image.Image:
    """Fit within MAX_WIDTH x MAX_HEIGHT keeping the aspect ratio."""
    width, height = image.size
    if width <= MAX_WIDTH and height <= MAX_HEIGHT:
        return image
    scale = min(MAX_WIDTH / width, MAX_HEIGHT / height)
    return image.resize((int(width * scale), int(height * scale)), Image.Resampling.LANCZOS)


def save_capture(
    image: Image.Image,
    display_id: str | None,
    timestamp: float | None = None,
    is_primary: bool = True,
) -> Capture:
    """Fingerprint an image and store it as a WebP original."""
    timestamp = timestamp if timestamp is not None else time.time()
    image = downscale(image).convert("RGB")
    fingerprint = compute_fingerprint(image)

    capture_id = str(uuid.uuid4())
    output_dir = ensure_daily_dirs(datetime.fromtimestamp(timestamp))["originals"]
    path = output_dir / f"{capture_id}.webp"
    image.save(path, "WEBP", quality=WEBP_QUALITY, method=4)

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


class ScreenCapturer:
    """Captures the primary display, or every display when configured to."""

    def __init__(self, all_displays: bool = False):
        self.all_displays = all_displays

    def capture(
        self, timestamp: float | None = None, primary_display_id: str | None = None
    ) -> list[Capture]:
        """
        Capture displays.

        Args:
            timestamp: Capture time (defaults to now)
            primary_display_id: Display holding the focused window, if known

        Returns:
            Captures with the primary display first (empty if nothing could be grabbed)
        """
        timestamp = timestamp if timestamp is not None else time.time()
        displays = get_displays()
        if not displays:
            logger.warning("No displays available for capture")
            return []

        primary_id = primary_display_id or displays[0].display_id
        if primary_id not in {d.display_id for d in displays}:
            primary_id = displays[0].display_id
        displays.sort(key=lambda d: d.display_id != primary_id)
        if not self.all_displays:
            displays = displays[:1]

        captures = []
        for display in displays:
            try:
                image = _grab_display(display.display_id)
            except Exception as e:
                logger.error(f"Failed to capture display {display.display_id}: {e}")
                continue
            if image is None:
                continue
            captures.append(
                save_capture(
                    image,
                    display.display_id,
                    timestamp,
                    is_primary=display.display_id == primary_id,
                )
            )
        return captures


def discard_capture_file(path: Path | str | None) -> None:
    """Delete a capture's image file if present."""
    if not path:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete {path}: {e}")


if __name__ == "__main__":
    import fire

    def displays():
        """List connected displays."""
        return [d.__dict__ for d in get_displays()]

    def capture(all_displays: bool = False):
        """Capture displays now and print where they were saved."""
        return [
            {"display_id": c.display_id, "path": str(c.path), "stable_hash": c.stable_hash}
            for c in ScreenCapturer(all_displays=all_displays).capture()
        ]

    fire.Fire({"displays": displays, "capture": capture})
