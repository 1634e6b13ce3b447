"""
Capture Scheduler for Screencap

Takes a screenshot every ``capture.interval_seconds`` and on demand, then
hands it to the merge engine:

    foreground snapshot -> activity context -> screen capture -> merge/create

Only one capture runs at a time. A scheduled tick that finds a capture in
flight is skipped; a manual trigger waits for it to finish.
"""

import logging
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from screencap.capture.context import ContextExtractor
from screencap.capture.events import MergeAction, MergeEngine, MergeResult
from screencap.capture.foreground import ForegroundSnapshot, capture_foreground
from screencap.capture.screenshots import ScreenCapturer
from screencap.core.errors import StorageError, ValidationError
from screencap.core.logging import LogContext, OperationTimer, log_exception

logger = logging.getLogger(__name__)

CAPTURE_JOB_ID = "screen_capture"

MIN_CAPTURE_INTERVAL = 5


@dataclass
class CaptureStats:
    """Counters for scheduler activity since start."""

    captures_total: int = 0
    events_created: int = 0
    events_merged: int = 0
    exact_duplicates: int = 0
    skipped_busy: int = 0
    dropped: int = 0
    errors: int = 0
    last_capture_at: float | None = None
    start_time: datetime | None = None


class CaptureScheduler:
    """Periodic and manual capture trigger with a single in-flight capture."""

    def __init__(
        self,
        merge_engine: MergeEngine,
        extractor: ContextExtractor,
        capturer: ScreenCapturer | None = None,
        foreground: Callable[[float], ForegroundSnapshot | None] = capture_foreground,
        interval_seconds: int = 300,
        paused: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.merge_engine = merge_engine
        self.extractor = extractor
        self.capturer = capturer or ScreenCapturer()
        self.foreground = foreground
        self.interval_seconds = max(MIN_CAPTURE_INTERVAL, int(interval_seconds))
        self.clock = clock

        self.scheduler: BackgroundScheduler | None = None
        self._capture_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = False
        self._paused = paused
        self._stats = CaptureStats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._state_lock:
            if self._running:
                logger.warning("Capture scheduler already running")
                return

            self.scheduler = BackgroundScheduler()
            self.scheduler.add_job(
                self._scheduled_tick,
                trigger=IntervalTrigger(seconds=self.interval_seconds),
                id=CAPTURE_JOB_ID,
                name="Screen Capture",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            if self._paused:
                self.scheduler.pause_job(CAPTURE_JOB_ID)
            self.scheduler.start()

            self._running = True
            self._stats = CaptureStats(start_time=datetime.now())
            logger.info(
                f"Capture scheduler started (interval: {self.interval_seconds}s, "
                f"paused: {self._paused})"
            )

    def stop(self) -> None:
        """Stop scheduling; a capture already in flight finishes first."""
        with self._state_lock:
            if not self._running or self.scheduler is None:
                return
            self.scheduler.shutdown(wait=True)
            self.scheduler = None
            self._running = False
            logger.info("Capture scheduler stopped")

    def pause(self) -> None:
        with self._state_lock:
            self._paused = True
            if self.scheduler is not None:
                self.scheduler.pause_job(CAPTURE_JOB_ID)
        logger.info("Capture paused")

    def resume(self) -> None:
        with self._state_lock:
            self._paused = False
            if self.scheduler is not None:
                self.scheduler.resume_job(CAPTURE_JOB_ID)
        logger.info("Capture resumed")

    def set_interval(self, seconds: int) -> int:
        """
        Change the capture interval.

        Args:
            seconds: New interval, clamped to MIN_CAPTURE_INTERVAL

        Returns:
            The interval actually applied
        """
        seconds = max(MIN_CAPTURE_INTERVAL, int(seconds))
        with self._state_lock:
            self.interval_seconds = seconds
            if self.scheduler is not None:
                self.scheduler.reschedule_job(
                    CAPTURE_JOB_ID, trigger=IntervalTrigger(seconds=seconds)
                )
                if self._paused:
                    self.scheduler.pause_job(CAPTURE_JOB_ID)
        logger.info(f"Capture interval set to {seconds}s")
        return seconds

    def is_running(self) -> bool:
        return self._running

    def get_next_run_time(self) -> datetime | None:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(CAPTURE_JOB_ID)
        return job.next_run_time if job else None

    def get_state(self) -> dict:
        next_run = self.get_next_run_time()
        stats = self._stats
        return {
            "running": self._running,
            "paused": self._paused,
            "interval_seconds": self.interval_seconds,
            "capturing": self._capture_lock.locked(),
            "next_capture_at": next_run.isoformat() if next_run else None,
            "last_capture_at": stats.last_capture_at,
            "stats": {
                "captures_total": stats.captures_total,
                "events_created": stats.events_created,
                "events_merged": stats.events_merged,
                "exact_duplicates": stats.exact_duplicates,
                "skipped_busy": stats.skipped_busy,
                "dropped": stats.dropped,
                "errors": stats.errors,
            },
        }

    # ------------------------------------------------------------------
    # Capturing
    # ------------------------------------------------------------------

    def _scheduled_tick(self) -> None:
        if self._paused:
            return
        self.trigger_capture(manual=False)

    def trigger_capture(
        self, manual: bool = True, project_progress: bool = False
    ) -> MergeResult | None:
        """
        Capture the screen now.

        Args:
            manual: Wait for an in-flight capture instead of skipping
            project_progress: Record the capture as user-declared project progress

        Returns:
            MergeResult, or None when skipped, nothing was captured, or the
            capture was dropped
        """
        if not self._capture_lock.acquire(blocking=manual):
            self._stats.skipped_busy += 1
            logger.debug("Capture already in progress, skipping tick")
            return None

        trigger = "manual" if manual else "scheduled"
        try:
            with LogContext(trigger=trigger), OperationTimer(logger, "capture"):
                return self._capture(project_progress and manual)
        except ValidationError as e:
            self._stats.dropped += 1
            logger.warning(f"Capture dropped: {e}")
            return None
        except StorageError as e:
            self._stats.errors += 1
            log_exception(logger, "Could not record capture", e)
            if manual:
                raise
            return None
        finally:
            self._capture_lock.release()

    def _capture(self, project_progress: bool) -> MergeResult | None:
        now = self.clock()
        snapshot = self.foreground(now)
        context = self.extractor.extract(snapshot)

        captures = self.capturer.capture(
            timestamp=now,
            primary_display_id=snapshot.display_id if snapshot else None,
        )
        self._stats.captures_total += 1
        self._stats.last_capture_at = now
        if not captures:
            logger.warning("Nothing was captured")
            return None

        result = self.merge_engine.process_capture_group(
            captures, context, manual_progress=project_progress
        )

        if result.action == MergeAction.CREATED:
            self._stats.events_created += 1
        elif result.action == MergeAction.MERGED:
            self._stats.events_merged += 1
        else:
            self._stats.exact_duplicates += 1

        logger.debug(
            f"Capture {result.action.value} -> {result.event_id} "
            f"({context.key if context else 'no context'})"
        )
        return result


def run_scheduler(interval: int = 300) -> None:
    """Run the capture scheduler in the foreground until interrupted."""
    from screencap.core.services import ServiceManager

    manager = ServiceManager()
    manager.capture_scheduler.set_interval(interval)
    stopped = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stopped.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    manager.start_all()
    try:
        stopped.wait()
    finally:
        manager.stop_all()


if __name__ == "__main__":
    import fire

    from screencap.core.logging import setup_logging

    setup_logging()

    def start(interval: int = 300):
        """Start capturing and classifying."""
        run_scheduler(interval)

    def once(project_progress: bool = False):
        """Capture once and print the merge decision."""
        from screencap.core.services import ServiceManager

        result = ServiceManager().capture_scheduler.trigger_capture(
            manual=True, project_progress=project_progress
        )
        return {"action": result.action.value, "event_id": result.event_id} if result else None

    fire.Fire({"start": start, "once": once})
