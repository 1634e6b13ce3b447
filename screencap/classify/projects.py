"""
Project Name Canonicalization

The classifier names projects freely, so the same project shows up as
"Screencap", "screencap app" and "ScreenCap Settings". Names are grouped by a
case- and punctuation-insensitive key, trailing filler words are dropped,
and each group is rewritten to one canonical spelling:

1. a configured (user-declared) project name, if one is in the group
2. otherwise the most frequent spelling, then the shortest, then alphabetical

Normalizing the database is idempotent.
"""

import logging
import re
import threading
import time
import unicodedata
from dataclasses import dataclass, field

from screencap.core.notifications import NotificationBus
from screencap.db.store import EventStore

logger = logging.getLogger(__name__)

TAIL_STOPWORDS = frozenset(
    {
        "app",
        "application",
        "config",
        "configuration",
        "dashboard",
        "home",
        "launch",
        "open",
        "opened",
        "opening",
        "preferences",
        "settings",
        "setup",
        "start",
        "startup",
    }
)

# Seconds a computed canonical index stays valid
INDEX_TTL_SECONDS = 300

_QUOTES = ('"', "'", "`")
_BULLETS = re.compile(r"[·•]")
_SEPARATORS = re.compile(r"[_/\\|]+")
_BRACKETS = re.compile(r"[()\[\]{}<>]+")
_PUNCTUATION = re.compile(r"[.,:;!?]+")
_NON_KEY = re.compile(r"[^a-z0-9]+")


def _strip_outer_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1].strip()
    return value


def _base_tokens(raw: str) -> list[str]:
    cleaned = _strip_outer_quotes(raw)
    cleaned = _BULLETS.sub(" ", cleaned)
    cleaned = _SEPARATORS.sub(" ", cleaned)
    cleaned = _BRACKETS.sub(" ", cleaned)
    cleaned = _PUNCTUATION.sub(" ", cleaned)
    tokens = cleaned.split()

    while len(tokens) > 1 and tokens[-1].lower() in TAIL_STOPWORDS:
        tokens.pop()
    return tokens


def normalize_project_base(raw: str | None) -> str | None:
    """
    Clean display form of a project name.

    Drops quotes, separators and trailing filler words; capitalizes the first
    letter only when the name has no uppercase at all.
    """
    if not raw:
        return None
    joined = " ".join(_base_tokens(raw)).strip()
    if not joined:
        return None
    if not any(ch.isupper() for ch in joined):
        joined = joined[0].upper() + joined[1:]
    return joined


def project_key(base: str | None) -> str | None:
    """Grouping key: lowercase ASCII letters and digits only."""
    if not base:
        return None
    text = unicodedata.normalize("NFKD", " ".join(_base_tokens(base))).lower()
    key = _NON_KEY.sub("", text)
    return key or None


@dataclass
class ProjectGroup:
    configured: str | None = None
    raw_variants: dict[str, int] = field(default_factory=dict)
    base_counts: dict[str, int] = field(default_factory=dict)


def choose_canonical(group: ProjectGroup) -> str | None:
    """Configured name, else most frequent, then shortest, then alphabetical."""
    if group.configured:
        return group.configured
    if not group.base_counts:
        return None
    return min(
        group.base_counts.items(),
        key=lambda item: (-item[1], len(item[0].strip()), item[0].strip().casefold(), item[0]),
    )[0]


def build_groups(
    project_counts: dict[str, int], configured: list[str] | None = None
) -> dict[str, ProjectGroup]:
    """Group stored project spellings (and configured names) by key."""
    groups: dict[str, ProjectGroup] = {}

    for name in configured or []:
        base = normalize_project_base(name)
        key = project_key(base)
        if not base or not key:
            continue
        group = groups.setdefault(key, ProjectGroup())
        if group.configured is None:
            group.configured = base

    for raw, count in project_counts.items():
        base = normalize_project_base(raw)
        key = project_key(base)
        if not base or not key:
            continue
        group = groups.setdefault(key, ProjectGroup())
        group.raw_variants[raw] = group.raw_variants.get(raw, 0) + count
        group.base_counts[base] = group.base_counts.get(base, 0) + count

    return groups


def canonicalize_project(
    raw: str | None,
    project_counts: dict[str, int] | None = None,
    configured: list[str] | None = None,
) -> str | None:
    """Canonical spelling of ``raw`` given existing spellings and configured names."""
    base = normalize_project_base(raw)
    key = project_key(base)
    if not base or not key:
        return None
    group = build_groups(project_counts or {}, configured).get(key)
    return (choose_canonical(group) if group else None) or base


@dataclass
class NormalizationResult:
    updated_rows: int
    groups: int


class ProjectNormalizer:
    """Canonicalizes project names against the store's current spellings."""

    def __init__(
        self,
        store: EventStore,
        known_projects: list[str] | None = None,
        notifications: NotificationBus | None = None,
    ):
        self.store = store
        self.known_projects = list(known_projects or [])
        self.notifications = notifications
        self._index: dict[str, str] | None = None
        self._index_at = 0.0
        self._lock = threading.Lock()

    def _canonical_index(self) -> dict[str, str]:
        with self._lock:
            if self._index is not None and time.monotonic() - self._index_at < INDEX_TTL_SECONDS:
                return self._index

            groups = build_groups(self.store.project_counts(), self.known_projects)
            index = {}
            for key, group in groups.items():
                chosen = choose_canonical(group)
                if chosen:
                    index[key] = chosen
            self._index = index
            self._index_at = time.monotonic()
            return index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None

    def canonicalize(self, raw: str | None) -> str | None:
        """Map a project name to the canonical spelling of its group."""
        base = normalize_project_base(raw)
        key = project_key(base)
        if not base or not key:
            return None
        return self._canonical_index().get(key, base)

    def known_names(self) -> list[str]:
        """Canonical names to offer the classifier."""
        return sorted(set(self._canonical_index().values()), key=str.casefold)

    def normalize(self) -> NormalizationResult:
        """
        Rewrite every variant spelling to its group's canonical name.

        Runs in one transaction and publishes ``projects.normalized``.
        """
        with self.store.transaction():
            groups = build_groups(self.store.project_counts(), self.known_projects)
            renames = {}
            for group in groups.values():
                canonical = choose_canonical(group)
                if not canonical:
                    continue
                for raw in group.raw_variants:
                    if raw != canonical:
                        renames[raw] = canonical
            updated_rows = self.store.rename_projects(renames)

        self.invalidate()
        result = NormalizationResult(updated_rows=updated_rows, groups=len(groups))

        if updated_rows:
            logger.info(f"Normalized projects: {updated_rows} row(s) across {len(groups)} group(s)")
        if self.notifications is not None:
            self.notifications.projects_normalized(result.updated_rows, result.groups)
        return result


def normalize_projects(
    store: EventStore,
    known_projects: list[str] | None = None,
    notifications: NotificationBus | None = None,
) -> NormalizationResult:
    """One-shot database normalization."""
    return ProjectNormalizer(store, known_projects, notifications).normalize()
