"""Tests for merge-or-create decisions."""

import sqlite3
from pathlib import Path
from unittest import mock

import pytest
from PIL import ImageDraw

from screencap.capture.context import ContextExtractor
from screencap.capture.events import MergeAction, MergeEngine
from screencap.capture.foreground import ForegroundSnapshot
from screencap.core.config import PipelineConfig
from screencap.core.errors import StorageError, ValidationError
from screencap.core.notifications import ALL_EVENTS, NotificationBus
from screencap.db.models import EVIDENCE_MANUAL, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING


def _context(window_title: str = "main.py", display_id: str | None = "1"):
    snapshot = ForegroundSnapshot(
        captured_at=0.0,
        bundle_id="com.microsoft.VSCode",
        app_name="Code",
        window_title=window_title,
        display_id=display_id,
    )
    return ContextExtractor().extract(snapshot)


def _clock_tick(image):
    """Same screen with the menu-bar clock changed."""
    changed = image.copy()
    width, _ = changed.size
    ImageDraw.Draw(changed).rectangle([width - 30, 0, width - 1, 15], fill=(10, 10, 10))
    return changed


@pytest.fixture
def engine(store, clock):
    return MergeEngine(store, PipelineConfig(), clock=clock)


class TestCreate:
    """Test event creation."""

    def test_first_capture_creates_pending_event(self, engine, store, capture_factory, image_factory):
        capture = capture_factory(image_factory(1), timestamp=1000.0)

        result = engine.process_capture(capture, _context())

        assert result.action is MergeAction.CREATED
        event = store.get_event(result.event_id)
        assert event.status == STATUS_PENDING
        assert event.merged_count == 1
        assert event.start_at == event.end_at == 1000.0
        assert event.context_key == "app:com.microsoft.VSCode:main.py"
        assert event.context_json["app_name"] == "Code"
        assert event.original_path == str(capture.path)
        assert store.count_screenshots(event.id) == 1
        assert store.get_queue_entry(event.id).attempts == 0

    def test_capture_without_fingerprint_is_dropped(self, engine, capture_factory, image_factory):
        capture = capture_factory(image_factory(1), timestamp=1000.0)
        capture.stable_hash = ""

        with pytest.raises(ValidationError):
            engine.process_capture(capture)
        assert not Path(capture.path).exists()

    def test_empty_group_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.process_capture_group([])

    def test_manual_progress_never_merges(self, engine, store, capture_factory, image_factory):
        image = image_factory(1)
        first = engine.process_capture(capture_factory(image, 1000.0), _context())

        result = engine.process_capture(
            capture_factory(image, 1010.0), _context(), manual_progress=True
        )

        assert result.action is MergeAction.CREATED
        assert result.event_id != first.event_id
        event = store.get_event(result.event_id)
        assert event.project_progress is True
        assert event.project_progress_evidence == EVIDENCE_MANUAL
        assert store.get_queue_entry(event.id) is not None


class TestMerge:
    """Test exact-repeat and similar-screen merging."""

    def test_exact_repeat_reuses_previous_file(self, engine, store, capture_factory, image_factory):
        image = image_factory(2)
        first = capture_factory(image, 1000.0)
        created = engine.process_capture(first, _context())
        repeat = capture_factory(image, 1300.0)

        result = engine.process_capture(repeat, _context())

        assert result.action is MergeAction.EXACT_DUPLICATE
        assert result.event_id == created.event_id
        assert not Path(repeat.path).exists()
        event = store.get_event(created.event_id)
        assert event.merged_count == 2
        assert event.end_at == 1300.0
        assert event.status == STATUS_PENDING
        assert [s.path for s in store.get_screenshots(event.id)] == [str(first.path)] * 2

    def test_similar_screen_with_same_context_merges(
        self, engine, store, capture_factory, image_factory
    ):
        image = image_factory(3)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        similar = capture_factory(_clock_tick(image), 1300.0)

        result = engine.process_capture(similar, _context())

        assert result.action is MergeAction.MERGED
        assert result.event_id == created.event_id
        assert Path(similar.path).exists()
        event = store.get_event(created.event_id)
        assert event.merged_count == 2
        assert store.count_screenshots(event.id) == 2

    def test_context_change_creates_new_event(self, engine, capture_factory, image_factory):
        image = image_factory(3)
        created = engine.process_capture(capture_factory(image, 1000.0), _context("main.py"))

        result = engine.process_capture(
            capture_factory(_clock_tick(image), 1300.0), _context("README.md")
        )

        assert result.action is MergeAction.CREATED
        assert result.event_id != created.event_id

    def test_gap_beyond_lookback_creates_new_event(self, engine, capture_factory, image_factory):
        image = image_factory(4)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        lookback = PipelineConfig().merge_lookback_seconds

        result = engine.process_capture(capture_factory(image, 1000.0 + lookback + 1), _context())

        assert result.action is MergeAction.CREATED
        assert result.event_id != created.event_id

    def test_dismissed_events_are_not_merge_targets(
        self, engine, store, capture_factory, image_factory
    ):
        image = image_factory(5)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        store.dismiss_events([created.event_id])

        result = engine.process_capture(capture_factory(image, 1100.0), _context())

        assert result.action is MergeAction.CREATED

    def test_low_confidence_completed_event_is_requeued(
        self, engine, store, capture_factory, image_factory
    ):
        image = image_factory(6)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        store.update_event(created.event_id, status=STATUS_COMPLETED, confidence=0.3)
        store.remove_queue_entry(created.event_id)

        result = engine.process_capture(capture_factory(_clock_tick(image), 1300.0), _context())

        assert result.action is MergeAction.MERGED
        assert result.requeued
        assert store.get_event(created.event_id).status == STATUS_PENDING
        assert store.get_queue_entry(created.event_id) is not None

    def test_confident_completed_event_keeps_classification(
        self, engine, store, capture_factory, image_factory
    ):
        image = image_factory(6)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        store.update_event(
            created.event_id, status=STATUS_COMPLETED, confidence=0.9, category="Work"
        )
        store.remove_queue_entry(created.event_id)

        result = engine.process_capture(capture_factory(_clock_tick(image), 1300.0), _context())

        assert not result.requeued
        event = store.get_event(created.event_id)
        assert event.status == STATUS_COMPLETED
        assert event.category == "Work"
        assert store.get_queue_entry(created.event_id) is None

    def test_failed_event_is_extended_but_not_requeued(
        self, engine, store, capture_factory, image_factory
    ):
        image = image_factory(6)
        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        store.update_event(created.event_id, status=STATUS_FAILED)
        store.remove_queue_entry(created.event_id)

        result = engine.process_capture(capture_factory(_clock_tick(image), 1300.0), _context())

        assert result.action is MergeAction.MERGED
        assert result.event_id == created.event_id
        assert not result.requeued
        event = store.get_event(created.event_id)
        assert event.merged_count == 2
        assert event.end_at == 1300.0
        assert event.status == STATUS_FAILED
        assert store.get_queue_entry(created.event_id) is None


class TestCaptureGroups:
    """Test multi-display captures."""

    def test_secondary_displays_stored_on_create(
        self, engine, store, capture_factory, image_factory
    ):
        primary = capture_factory(image_factory(7), 1000.0, display_id="1")
        secondary = capture_factory(image_factory(8), 1000.0, display_id="2", is_primary=False)

        result = engine.process_capture_group([primary, secondary], _context())

        screenshots = store.get_screenshots(result.event_id)
        assert {(s.display_id, s.is_primary) for s in screenshots} == {("1", True), ("2", False)}
        assert store.get_event(result.event_id).merged_count == 1

    def test_secondary_displays_discarded_on_merge(self, engine, capture_factory, image_factory):
        image = image_factory(7)
        engine.process_capture(capture_factory(image, 1000.0, display_id="1"), _context())
        primary = capture_factory(image, 1300.0, display_id="1")
        secondary = capture_factory(image_factory(8), 1300.0, display_id="2", is_primary=False)

        result = engine.process_capture_group([primary, secondary], _context())

        assert result.action is MergeAction.EXACT_DUPLICATE
        assert not Path(secondary.path).exists()

    def test_context_from_another_display_is_ignored(self, engine, store, capture_factory, image_factory):
        result = engine.process_capture(
            capture_factory(image_factory(9), 1000.0, display_id="1"), _context(display_id="2")
        )

        assert store.get_event(result.event_id).context_key is None

    def test_storage_failure_deletes_capture_files(
        self, engine, store, capture_factory, image_factory
    ):
        primary = capture_factory(image_factory(10), 1000.0, display_id="1")
        secondary = capture_factory(image_factory(11), 1000.0, display_id="2", is_primary=False)

        with mock.patch.object(
            store, "insert_screenshot", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(StorageError):
                engine.process_capture_group([primary, secondary], _context())

        assert not Path(primary.path).exists()
        assert not Path(secondary.path).exists()
        assert store.list_events() == []


class TestNotifications:
    def test_created_and_updated_published(self, store, clock, capture_factory, image_factory):
        bus = NotificationBus()
        received = []
        bus.subscribe(ALL_EVENTS, lambda name, data: received.append((name, data["event_id"])))
        engine = MergeEngine(store, PipelineConfig(), bus, clock=clock)
        image = image_factory(10)

        created = engine.process_capture(capture_factory(image, 1000.0), _context())
        engine.process_capture(capture_factory(image, 1100.0), _context())

        assert received == [
            ("event.created", created.event_id),
            ("event.updated", created.event_id),
        ]
