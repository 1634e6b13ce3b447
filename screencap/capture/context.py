"""
Activity Context Extraction

Turns a foreground snapshot into an ActivityContext with a canonical key
that identifies *what* is on screen independently of pixels:

    content:<kind>:<id>                  recognized media (0.9)
    url:<canonical url>                  any other web page (0.8)
    app:<bundle id>:<normalized title>   app window (0.6)
    app:<bundle id>                      app only (0.4)

Two captures can only merge into one event when their keys agree.

Also gathers classification evidence for an event, calling OCR only when
the context suggests there is text worth reading.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from screencap.capture.foreground import ForegroundSnapshot
from screencap.core.errors import ScreencapError
from screencap.db.models import Event

logger = logging.getLogger(__name__)

CONFIDENCE_CONTENT = 0.9
CONFIDENCE_URL = 0.8
CONFIDENCE_WINDOW = 0.6
CONFIDENCE_APP = 0.4

MAX_TITLE_KEY_LENGTH = 120

# Query parameters that never change what a page shows
TRACKING_PARAMS = frozenset(
    {"fbclid", "gclid", "dclid", "msclkid", "mc_cid", "mc_eid", "ref", "ref_src", "si", "feature"}
)

# Content kinds specific enough to key on their own
MEDIA_CONTENT_KINDS = frozenset(
    {"youtube_video", "youtube_short", "netflix_title", "twitch_stream", "twitch_vod"}
)

TEXT_HEAVY_BUNDLE_PREFIXES = (
    "com.microsoft.VSCode",
    "com.todesktop.230313mzl4w4u92",  # Cursor
    "com.jetbrains.",
    "com.apple.dt.Xcode",
    "com.sublimetext.",
    "dev.zed.Zed",
    "com.apple.Terminal",
    "com.googlecode.iterm2",
    "dev.warp.Warp",
    "com.mitchellh.ghostty",
    "com.apple.TextEdit",
    "com.apple.Notes",
    "com.apple.Preview",
    "com.apple.iWork.",
    "com.microsoft.Word",
    "com.microsoft.Excel",
    "com.microsoft.Powerpoint",
    "md.obsidian",
    "notion.id",
)

_TWITCH_RESERVED = frozenset(
    {"directory", "downloads", "settings", "subscriptions", "inventory", "search", "p", "jobs"}
)

_UNREAD_PREFIX = re.compile(r"^\(\d+\+?\)\s*")
_MODIFIED_MARKERS = re.compile(r"[●•◦*]+")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class UrlMetadata:
    url_canonical: str
    host: str
    title: str | None = None


@dataclass
class ContentDescriptor:
    kind: str
    id: str
    title: str | None
    url_canonical: str


@dataclass
class ActivityContext:
    """What the user was doing at capture time."""

    captured_at: float
    app_bundle_id: str | None
    app_name: str | None
    window_title: str | None
    display_id: str | None
    is_fullscreen: bool
    url: UrlMetadata | None
    content: ContentDescriptor | None
    provider: str
    confidence: float
    key: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Evidence:
    """Everything the classifier gets to see for one event."""

    event_id: str
    image_path: Path | None
    context: dict[str, Any] | None
    app_name: str | None = None
    window_title: str | None = None
    url: str | None = None
    content_title: str | None = None
    ocr_text: str | None = None
    ocr_regions: list[str] = field(default_factory=list)
    ocr_failed: bool = False
    confidence_ceiling: float | None = None


class TextRecognizer(Protocol):
    def recognize(self, image_path: Path | str) -> Any: ...


# ----------------------------------------------------------------------
# URLs and content
# ----------------------------------------------------------------------


def canonicalize_url(raw: str | None) -> UrlMetadata | None:
    """
    Normalize an http(s) URL for comparison.

    Lowercases scheme and host, drops ``www.``, the fragment, default ports
    and tracking parameters, sorts the query and trims a trailing slash.
    """
    if not raw:
        return None
    try:
        parts = urlsplit(raw.strip())
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return None

    host = parts.hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    netloc = host if port in (None, 80, 443) else f"{host}:{port}"

    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in TRACKING_PARAMS and not k.startswith("utm_")
    ]
    query.sort()

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/")

    return UrlMetadata(
        url_canonical=urlunsplit(("https", netloc, path, urlencode(query), "")),
        host=host,
    )


def resolve_content(url: UrlMetadata, title: str | None = None) -> ContentDescriptor:
    """Identify well-known media on a page, falling back to a generic web page."""
    parts = urlsplit(url.url_canonical)
    host = url.host
    segments = [s for s in parts.path.split("/") if s]
    query = dict(parse_qsl(parts.query))

    if host in ("youtube.com", "m.youtube.com", "music.youtube.com"):
        if segments[:1] == ["watch"] and query.get("v"):
            video_id = query["v"]
            return ContentDescriptor(
                "youtube_video", video_id, title, f"https://youtube.com/watch?v={video_id}"
            )
        if len(segments) >= 2 and segments[0] == "shorts":
            return ContentDescriptor(
                "youtube_short", segments[1], title, f"https://youtube.com/shorts/{segments[1]}"
            )
    if host == "youtu.be" and segments:
        return ContentDescriptor(
            "youtube_video", segments[0], title, f"https://youtube.com/watch?v={segments[0]}"
        )

    if host == "netflix.com" and len(segments) >= 2 and segments[0] in ("watch", "title"):
        return ContentDescriptor(
            "netflix_title", segments[1], title, f"https://netflix.com/title/{segments[1]}"
        )

    if host in ("twitch.tv", "m.twitch.tv") and segments:
        if segments[0] == "videos" and len(segments) >= 2:
            return ContentDescriptor(
                "twitch_vod", segments[1], title, f"https://twitch.tv/videos/{segments[1]}"
            )
        if segments[0].lower() not in _TWITCH_RESERVED:
            channel = segments[0].lower()
            return ContentDescriptor(
                "twitch_stream", channel, title, f"https://twitch.tv/{channel}"
            )

    return ContentDescriptor("web_page", url.url_canonical, title, url.url_canonical)


def normalize_title(title: str | None, app_name: str | None = None) -> str | None:
    """Reduce a window title to a stable key fragment."""
    if not title:
        return None
    text = _UNREAD_PREFIX.sub("", title.strip())
    text = _MODIFIED_MARKERS.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip().lower()

    if app_name:
        suffix = app_name.strip().lower()
        for sep in (" - ", " — ", " – ", " | "):
            if text.endswith(f"{sep}{suffix}"):
                text = text[: -len(sep) - len(suffix)].strip()
                break

    return text[:MAX_TITLE_KEY_LENGTH] or None


def build_context_key(
    bundle_id: str | None,
    title_key: str | None,
    url: UrlMetadata | None,
    content: ContentDescriptor | None,
) -> tuple[str, float] | None:
    """Pick the most specific key available with its confidence."""
    if content is not None and content.kind in MEDIA_CONTENT_KINDS:
        return f"content:{content.kind}:{content.id}", CONFIDENCE_CONTENT
    if url is not None:
        return f"url:{url.url_canonical}", CONFIDENCE_URL
    if bundle_id and title_key:
        return f"app:{bundle_id}:{title_key}", CONFIDENCE_WINDOW
    if bundle_id:
        return f"app:{bundle_id}", CONFIDENCE_APP
    return None


def context_keys_match(a: str | None, b: str | None) -> bool:
    """Keys match when equal; two missing keys also match."""
    return a == b


def is_text_heavy(
    app_bundle_id: str | None,
    url_canonical: str | None = None,
    content_kind: str | None = None,
) -> bool:
    """True when the screen is likely to carry text the classifier should read."""
    if content_kind in MEDIA_CONTENT_KINDS:
        return False
    if url_canonical:
        return True
    if not app_bundle_id:
        return False
    return app_bundle_id.startswith(TEXT_HEAVY_BUNDLE_PREFIXES)


# ----------------------------------------------------------------------
# Extractor
# ----------------------------------------------------------------------


class ContextExtractor:
    """Builds activity contexts and classification evidence."""

    def __init__(
        self,
        ocr: TextRecognizer | None = None,
        ocr_failure_confidence_ceiling: float = 0.6,
    ):
        self.ocr = ocr
        self.ocr_failure_confidence_ceiling = ocr_failure_confidence_ceiling

    def extract(self, snapshot: ForegroundSnapshot | None) -> ActivityContext | None:
        """
        Derive the activity context from a foreground snapshot.

        Returns:
            ActivityContext, or None when nothing identifies the activity
        """
        if snapshot is None:
            return None

        url = canonicalize_url(snapshot.url)
        content = None
        if url is not None:
            url.title = snapshot.page_title
            content = resolve_content(url, snapshot.page_title)

        title = snapshot.page_title if url is not None and snapshot.page_title else snapshot.window_title
        keyed = build_context_key(
            snapshot.bundle_id,
            normalize_title(title, snapshot.app_name),
            url,
            content,
        )
        if keyed is None:
            return None
        key, confidence = keyed

        return ActivityContext(
            captured_at=snapshot.captured_at,
            app_bundle_id=snapshot.bundle_id,
            app_name=snapshot.app_name,
            window_title=snapshot.window_title,
            display_id=snapshot.display_id,
            is_fullscreen=snapshot.is_fullscreen,
            url=url,
            content=content,
            provider=snapshot.url_source if url is not None and snapshot.url_source else "foreground",
            confidence=confidence,
            key=key,
        )

    def gather_evidence(self, event: Event, screenshot_path: Path | str | None) -> Evidence:
        """
        Collect context and, when useful, OCR text for an event.

        OCR problems never fail the event; the evidence just carries a lower
        confidence ceiling.
        """
        image_path = Path(screenshot_path) if screenshot_path else None
        evidence = Evidence(
            event_id=event.id,
            image_path=image_path,
            context=event.context_json,
            app_name=event.app_name,
            window_title=event.window_title,
            url=event.url_canonical,
            content_title=event.content_title,
        )

        wants_ocr = event.context_key is None or is_text_heavy(
            event.app_bundle_id, event.url_canonical, event.content_kind
        )
        if not wants_ocr or self.ocr is None or image_path is None:
            return evidence

        try:
            result = self.ocr.recognize(image_path)
        except ScreencapError as e:
            logger.warning(f"OCR failed for event {event.id}, continuing without it: {e}")
            evidence.ocr_failed = True
            evidence.confidence_ceiling = self.ocr_failure_confidence_ceiling
            return evidence
        except Exception as e:
            logger.warning(
                f"OCR raised {type(e).__name__} for event {event.id}, continuing without it: {e}"
            )
            evidence.ocr_failed = True
            evidence.confidence_ceiling = self.ocr_failure_confidence_ceiling
            return evidence

        evidence.ocr_text = result.text or None
        evidence.ocr_regions = list(result.regions or [])
        return evidence
