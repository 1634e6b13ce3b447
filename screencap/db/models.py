"""
Domain records stored in the Screencap database.

Lists and the context payload are plain Python containers here. JSON
encoding happens only in the row conversion helpers at the bottom.
"""

import json
import sqlite3
from dataclasses import asdict, dataclass, field, fields
from typing import Any

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

EVENT_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

EVIDENCE_MANUAL = "manual"
EVIDENCE_LLM = "llm"

_JSON_LIST_COLUMNS = ("subcategories", "tags")
_JSON_DICT_COLUMNS = ("context_json",)
_BOOL_COLUMNS = ("dismissed", "project_progress", "is_primary", "caption_manual", "project_manual")


@dataclass
class Event:
    """A time-bounded span of activity built from one or more screenshots."""

    id: str
    start_at: float
    end_at: float
    display_id: str | None = None
    stable_hash: str | None = None
    detail_hash: str | None = None
    merged_count: int = 1
    status: str = STATUS_PENDING
    dismissed: bool = False

    category: str | None = None
    subcategories: list[str] = field(default_factory=list)
    caption: str | None = None
    tags: list[str] = field(default_factory=list)
    confidence: float | None = None
    user_label: str | None = None

    tracked_addiction: str | None = None
    addiction_candidate: str | None = None
    addiction_confidence: float | None = None
    addiction_prompt: str | None = None

    project: str | None = None
    project_progress: bool = False
    project_progress_confidence: float | None = None
    project_progress_evidence: str | None = None

    app_bundle_id: str | None = None
    app_name: str | None = None
    window_title: str | None = None
    url_host: str | None = None
    url_canonical: str | None = None
    content_kind: str | None = None
    content_id: str | None = None
    content_title: str | None = None
    context_provider: str | None = None
    context_confidence: float | None = None
    context_key: str | None = None
    context_json: dict[str, Any] | None = None

    original_path: str | None = None

    # Set by user edits; reclassification keeps these values
    caption_manual: bool = False
    project_manual: bool = False

    @property
    def is_manual_progress(self) -> bool:
        return self.project_progress_evidence == EVIDENCE_MANUAL

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Screenshot:
    """One capture belonging to exactly one event."""

    id: str
    event_id: str
    width: int
    height: int
    timestamp: float
    display_id: str | None = None
    is_primary: bool = True
    stable_hash: str | None = None
    detail_hash: str | None = None
    path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QueueEntry:
    """Pending classification work for one event."""

    id: str
    event_id: str
    attempts: int
    created_at: float
    next_attempt_at: float
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


EVENT_COLUMNS = tuple(f.name for f in fields(Event))
SCREENSHOT_COLUMNS = tuple(f.name for f in fields(Screenshot))
QUEUE_COLUMNS = tuple(f.name for f in fields(QueueEntry))


def _load_json(raw: str | None, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return default


def encode_column(name: str, value: Any) -> Any:
    """Convert a domain value to its SQLite representation."""
    if name in _JSON_LIST_COLUMNS:
        return json.dumps(list(value or []))
    if name in _JSON_DICT_COLUMNS:
        return json.dumps(value) if value is not None else None
    if name in _BOOL_COLUMNS:
        return 1 if value else 0
    return value


def _decode_row(row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
    keys = row.keys()
    data: dict[str, Any] = {}
    for name in columns:
        if name not in keys:
            continue
        value = row[name]
        if name in _JSON_LIST_COLUMNS:
            value = _load_json(value, [])
            if not isinstance(value, list):
                value = []
        elif name in _JSON_DICT_COLUMNS:
            value = _load_json(value, None)
        elif name in _BOOL_COLUMNS:
            value = bool(value)
        data[name] = value
    return data


def event_from_row(row: sqlite3.Row) -> Event:
    return Event(**_decode_row(row, EVENT_COLUMNS))


def screenshot_from_row(row: sqlite3.Row) -> Screenshot:
    return Screenshot(**_decode_row(row, SCREENSHOT_COLUMNS))


def queue_entry_from_row(row: sqlite3.Row) -> QueueEntry:
    return QueueEntry(**_decode_row(row, QUEUE_COLUMNS))
