"""Tests for the capture scheduler."""

import dataclasses
from unittest import mock

import pytest

from screencap.capture.context import ContextExtractor
from screencap.capture.daemon import MIN_CAPTURE_INTERVAL, CaptureScheduler
from screencap.capture.events import MergeAction, MergeEngine
from screencap.capture.screenshots import ScreenCapturer
from screencap.core.config import PipelineConfig
from screencap.core.errors import StorageError
from screencap.db.models import EVIDENCE_MANUAL


@pytest.fixture
def capturer():
    return mock.Mock(spec=ScreenCapturer)


@pytest.fixture
def scheduler(store, clock, capturer):
    engine = MergeEngine(store, PipelineConfig(), clock=clock)
    return CaptureScheduler(
        engine,
        ContextExtractor(),
        capturer=capturer,
        foreground=lambda now: None,
        clock=clock,
    )


class TestTriggerCapture:
    """Test manual and scheduled captures."""

    def test_creates_then_deduplicates(self, scheduler, capturer, capture_factory, image_factory, clock):
        capturer.capture.side_effect = lambda **kwargs: [capture_factory(image_factory(3), clock())]

        first = scheduler.trigger_capture()
        clock.advance(60)
        second = scheduler.trigger_capture()

        assert first.action is MergeAction.CREATED
        assert second.action is MergeAction.EXACT_DUPLICATE
        assert second.event_id == first.event_id
        capturer.capture.assert_called_with(timestamp=clock(), primary_display_id=None)

        state = scheduler.get_state()
        assert state["stats"]["captures_total"] == 2
        assert state["stats"]["events_created"] == 1
        assert state["stats"]["exact_duplicates"] == 1
        assert state["last_capture_at"] == clock()

    def test_project_progress_capture(self, scheduler, capturer, capture_factory, image_factory, clock, store):
        capturer.capture.return_value = [capture_factory(image_factory(4), clock())]

        result = scheduler.trigger_capture(manual=True, project_progress=True)

        event = store.get_event(result.event_id)
        assert event.project_progress
        assert event.project_progress_evidence == EVIDENCE_MANUAL

    def test_scheduled_tick_skips_when_busy(self, scheduler, capturer):
        scheduler._capture_lock.acquire()
        try:
            assert scheduler.trigger_capture(manual=False) is None
        finally:
            scheduler._capture_lock.release()

        capturer.capture.assert_not_called()
        assert scheduler.get_state()["stats"]["skipped_busy"] == 1

    def test_nothing_captured(self, scheduler, capturer):
        capturer.capture.return_value = []

        assert scheduler.trigger_capture() is None

    def test_unfingerprinted_capture_is_dropped(self, scheduler, capturer, capture_factory, image_factory, clock):
        capture = dataclasses.replace(capture_factory(image_factory(5), clock()), stable_hash=None)
        capturer.capture.return_value = [capture]

        assert scheduler.trigger_capture() is None
        assert scheduler.get_state()["stats"]["dropped"] == 1
        assert not capture.path.exists()

    def test_storage_error(self, clock, capturer, capture_factory, image_factory):
        engine = mock.Mock(spec=MergeEngine)
        engine.process_capture_group.side_effect = StorageError("disk I/O error")
        capturer.capture.return_value = [capture_factory(image_factory(6), clock())]
        scheduler = CaptureScheduler(
            engine, ContextExtractor(), capturer=capturer, foreground=lambda now: None, clock=clock
        )

        assert scheduler.trigger_capture(manual=False) is None
        with pytest.raises(StorageError):
            scheduler.trigger_capture(manual=True)
        assert scheduler.get_state()["stats"]["errors"] == 2
        assert not scheduler._capture_lock.locked()


class TestSchedulerControl:
    def test_interval_is_clamped(self, scheduler):
        assert scheduler.set_interval(1) == MIN_CAPTURE_INTERVAL
        assert scheduler.get_state()["interval_seconds"] == MIN_CAPTURE_INTERVAL

    def test_paused_scheduler_ignores_ticks(self, scheduler, capturer):
        scheduler.pause()
        scheduler._scheduled_tick()

        capturer.capture.assert_not_called()
        assert scheduler.get_state()["paused"]

    def test_start_pause_resume_stop(self, scheduler):
        scheduler.start()
        try:
            assert scheduler.is_running()
            assert scheduler.get_next_run_time() is not None

            scheduler.pause()
            assert scheduler.get_next_run_time() is None

            scheduler.resume()
            assert scheduler.get_next_run_time() is not None
            assert scheduler.get_state()["next_capture_at"] is not None
        finally:
            scheduler.stop()

        assert not scheduler.is_running()
        assert scheduler.get_state()["next_capture_at"] is None
