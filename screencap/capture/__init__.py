"""
Screencap Capture Module

Everything between the screen and the event store:
- Screen capture and fingerprinting (stable + detail hashes)
- Foreground app/window/browser snapshot
- Activity context keys and classification evidence
- Merge-or-create decisions
- Capture scheduler
"""

from screencap.capture.context import ActivityContext, ContextExtractor, Evidence
from screencap.capture.daemon import CaptureScheduler
from screencap.capture.dedup import Fingerprint, compute_fingerprint, hamming_distance
from screencap.capture.events import MergeAction, MergeEngine, MergeResult
from screencap.capture.foreground import ForegroundSnapshot, capture_foreground
from screencap.capture.screenshots import Capture, ScreenCapturer

__all__ = [
    "ActivityContext",
    "Capture",
    "CaptureScheduler",
    "ContextExtractor",
    "Evidence",
    "Fingerprint",
    "ForegroundSnapshot",
    "MergeAction",
    "MergeEngine",
    "MergeResult",
    "ScreenCapturer",
    "capture_foreground",
    "compute_fingerprint",
    "hamming_distance",
]
