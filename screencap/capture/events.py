"""
Capture Merging for Screencap

Decides for each capture whether it continues an existing event or starts
a new one:

1. Exact repeat: the newest screenshot of the latest event on the display
   has the same detail hash. A screenshot row pointing at the previous file
   is added and the new file is dropped. Nothing is reclassified.
2. Merge: stable hashes are within tolerance AND the context keys agree.
   The screenshot is appended. A completed event with low or missing
   confidence goes back to pending for another classification.
3. Otherwise a new pending event is created and queued for classification.

Only events that ended within the lookback window are merge targets, and the
whole decision is one store transaction.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from screencap.capture.context import ActivityContext, context_keys_match
from screencap.capture.dedup import hamming_distance
from screencap.capture.screenshots import Capture, discard_capture_file
from screencap.core.config import PipelineConfig
from screencap.core.errors import StorageError, ValidationError
from screencap.core.notifications import NotificationBus
from screencap.db.models import (
    EVIDENCE_MANUAL,
    STATUS_COMPLETED,
    STATUS_PENDING,
    Event,
    Screenshot,
)
from screencap.db.store import EventStore

logger = logging.getLogger(__name__)


class MergeAction(str, Enum):
    """Outcome of a merge decision."""

    EXACT_DUPLICATE = "exact_duplicate"
    MERGED = "merged"
    CREATED = "created"


@dataclass
class MergeResult:
    action: MergeAction
    event_id: str
    requeued: bool = False
    discarded_files: list[str] = field(default_factory=list)


def _screenshot_row(capture: Capture, event_id: str, path: str | None, is_primary: bool) -> Screenshot:
    return Screenshot(
        id=capture.id,
        event_id=event_id,
        display_id=capture.display_id,
        is_primary=is_primary,
        stable_hash=capture.stable_hash,
        detail_hash=capture.detail_hash,
        width=capture.width,
        height=capture.height,
        timestamp=capture.timestamp,
        path=path,
    )


class MergeEngine:
    """Applies merge-or-create decisions to the event store."""

    def __init__(
        self,
        store: EventStore,
        config: PipelineConfig | None = None,
        notifications: NotificationBus | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or PipelineConfig()
        self.notifications = notifications
        self.clock = clock

    def process_capture(
        self,
        capture: Capture,
        context: ActivityContext | None = None,
        manual_progress: bool = False,
    ) -> MergeResult:
        """Merge a single capture (see process_capture_group)."""
        return self.process_capture_group([capture], context, manual_progress)

    def process_capture_group(
        self,
        captures: list[Capture],
        context: ActivityContext | None = None,
        manual_progress: bool = False,
    ) -> MergeResult:
        """
        Merge or create for the captures of one trigger.

        The primary display's capture drives the decision. Secondary displays
        are stored as non-primary screenshots of a new event and discarded
        when the group merges.

        Args:
            captures: Captures taken at the same instant
            context: Foreground context at capture time
            manual_progress: Project-progress capture requested by the user;
                never merged

        Returns:
            MergeResult naming the affected event

        Raises:
            ValidationError: no captures, or the primary capture has no hashes
            StorageError: the transaction failed; the capture files are deleted
        """
        if not captures:
            raise ValidationError("No captures to process")

        primary = next((c for c in captures if c.is_primary), captures[0])
        if not primary.stable_hash or not primary.detail_hash:
            for capture in captures:
                discard_capture_file(capture.path)
            raise ValidationError(f"Capture {primary.id} has no fingerprint")

        # Context is only trusted for the display the focused window is on
        if context is not None and context.display_id not in (None, primary.display_id):
            context = None
        context_key = context.key if context else None

        try:
            with self.store.transaction():
                result = None
                if not manual_progress:
                    result = self._try_merge(primary, captures, context_key)
                if result is None:
                    result = self._create(primary, captures, context, manual_progress)
        except StorageError:
            # Rolled back, so no row references these files
            for capture in captures:
                discard_capture_file(capture.path)
            raise

        for path in result.discarded_files:
            discard_capture_file(path)

        if self.notifications is not None:
            if result.action is MergeAction.CREATED:
                self.notifications.event_created(result.event_id)
            else:
                self.notifications.event_updated(result.event_id)

        return result

    def _try_merge(
        self, primary: Capture, captures: list[Capture], context_key: str | None
    ) -> MergeResult | None:
        since = primary.timestamp - self.config.merge_lookback_seconds
        candidate = self.store.find_merge_candidate(primary.display_id, since)
        if candidate is None:
            return None

        discarded = [str(c.path) for c in captures if c is not primary]
        latest = self.store.latest_screenshot(candidate.id)

        if latest is not None and latest.detail_hash == primary.detail_hash:
            previous_path = latest.path or candidate.original_path
            self.store.insert_screenshot(_screenshot_row(primary, candidate.id, previous_path, True))
            self.store.extend_event(candidate.id, primary.timestamp)
            if str(primary.path) != previous_path:
                discarded.append(str(primary.path))
            logger.debug(f"Exact repeat merged into event {candidate.id}")
            return MergeResult(MergeAction.EXACT_DUPLICATE, candidate.id, discarded_files=discarded)

        if not context_keys_match(candidate.context_key, context_key):
            logger.debug(
                f"Context changed ({candidate.context_key} -> {context_key}), not merging"
            )
            return None

        reference_hash = latest.stable_hash if latest is not None else candidate.stable_hash
        distance = hamming_distance(reference_hash, primary.stable_hash)
        if distance is None or distance > self.config.stable_hash_tolerance:
            return None

        self.store.insert_screenshot(_screenshot_row(primary, candidate.id, str(primary.path), True))
        self.store.extend_event(candidate.id, primary.timestamp)

        requeued = False
        if candidate.status == STATUS_COMPLETED and (
            candidate.confidence is None
            or candidate.confidence < self.config.requeue_confidence_below
        ):
            self.store.update_event(candidate.id, status=STATUS_PENDING)
            self.store.enqueue(candidate.id, self.clock())
            requeued = True
            logger.info(
                f"Requeued low-confidence event {candidate.id} (confidence={candidate.confidence})"
            )

        logger.debug(f"Merged capture into event {candidate.id} (distance={distance})")
        return MergeResult(MergeAction.MERGED, candidate.id, requeued=requeued, discarded_files=discarded)

    def _create(
        self,
        primary: Capture,
        captures: list[Capture],
        context: ActivityContext | None,
        manual_progress: bool,
    ) -> MergeResult:
        event = Event(
            id=primary.id,
            start_at=primary.timestamp,
            end_at=primary.timestamp,
            display_id=primary.display_id,
            stable_hash=primary.stable_hash,
            detail_hash=primary.detail_hash,
            merged_count=1,
            status=STATUS_PENDING,
            project_progress=manual_progress,
            project_progress_evidence=EVIDENCE_MANUAL if manual_progress else None,
            original_path=str(primary.path),
        )
        if context is not None:
            event.app_bundle_id = context.app_bundle_id
            event.app_name = context.app_name
            event.window_title = context.window_title
            event.context_provider = context.provider
            event.context_confidence = context.confidence
            event.context_key = context.key
            event.context_json = context.to_dict()
            if context.url is not None:
                event.url_host = context.url.host
                event.url_canonical = context.url.url_canonical
            if context.content is not None:
                event.content_kind = context.content.kind
                event.content_id = context.content.id
                event.content_title = context.content.title

        self.store.insert_event(event)
        for capture in captures:
            is_primary = capture is primary
            self.store.insert_screenshot(_screenshot_row(capture, event.id, str(capture.path), is_primary))
        self.store.enqueue(event.id, self.clock())

        logger.debug(
            f"Created event {event.id} (display={primary.display_id}, key={event.context_key})"
        )
        return MergeResult(MergeAction.CREATED, event.id)
