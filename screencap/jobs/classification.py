"""
Classification Queue and Worker

Durable retry queue for event classification plus the worker that drains it.

Queue rules:
- one entry per event, created with attempts=0 and due immediately
- a transient failure bumps attempts and schedules the next try
  ``min(backoff_base * 2**attempts, backoff_max)`` seconds later
- reaching max_attempts, or any permanent failure, marks the event failed
  and removes the entry
- success removes the entry

The worker claims due entries with a conditional pending -> processing
update, so an event is never classified twice at once, and classifies up to
``classify_concurrency`` events in parallel. Next-attempt times live in the
database, so a restart simply picks the queue back up.

Uses APScheduler for the polling loop.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from screencap.capture.context import ContextExtractor
from screencap.classify.confidence import ConfidenceOutcome, ConfidenceThresholds, evaluate
from screencap.classify.gateway import ClassifierGateway
from screencap.classify.projects import ProjectNormalizer
from screencap.classify.schemas import ClassificationResult
from screencap.core.config import PipelineConfig
from screencap.core.errors import PermanentServiceError, StorageError, TransientServiceError
from screencap.core.logging import log_exception
from screencap.core.notifications import NotificationBus
from screencap.core.retry import RetryConfig
from screencap.db.models import (
    EVIDENCE_MANUAL,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    Event,
    QueueEntry,
)
from screencap.db.store import EventStore

logger = logging.getLogger(__name__)

WORKER_JOB_ID = "classification_worker"
NORMALIZE_JOB_ID = "project_normalization"

MAX_ERROR_LENGTH = 500


@dataclass
class FailureOutcome:
    """What record_failure decided."""

    event_id: str
    attempts: int
    failed: bool
    next_attempt_at: float | None = None


@dataclass
class WorkerRunResult:
    """Summary of one worker pass."""

    claimed: int = 0
    completed: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)

    @property
    def changed(self) -> list[str]:
        return self.completed + self.retried + self.failed


@dataclass
class RecoveryResult:
    reset_to_pending: int = 0
    requeued: int = 0
    failed_missing_file: int = 0
    purged: int = 0


class RetryQueue:
    """Durable queue of classification work backed by the event store."""

    def __init__(
        self,
        store: EventStore,
        retry_config: RetryConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.retry_config = retry_config or RetryConfig()
        self.clock = clock

    @classmethod
    def from_config(
        cls, store: EventStore, config: PipelineConfig, clock: Callable[[], float] = time.time
    ) -> "RetryQueue":
        retry_config = RetryConfig(
            max_attempts=config.max_attempts,
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
        )
        return cls(store, retry_config, clock)

    def enqueue(self, event_id: str, now: float | None = None) -> bool:
        """Queue an event unless it already has an entry."""
        return self.store.enqueue(event_id, self.clock() if now is None else now)

    def due(self, now: float | None = None, limit: int = 10) -> list[QueueEntry]:
        """Due entries of pending events, oldest first."""
        return self.store.due_entries(self.clock() if now is None else now, limit)

    def compute_backoff(self, attempts: int) -> float:
        """Seconds to wait after ``attempts`` failures."""
        return self.retry_config.calculate_delay(attempts)

    def record_failure(
        self, event_id: str, error: Exception | str, now: float | None = None
    ) -> FailureOutcome:
        """
        Count a transient failure and reschedule, or give up at the ceiling.

        Returns:
            FailureOutcome describing the new state
        """
        now = self.clock() if now is None else now
        message = str(error)[:MAX_ERROR_LENGTH]

        with self.store.transaction():
            entry = self.store.get_queue_entry(event_id)
            attempts = (entry.attempts if entry else 0) + 1

            if self.retry_config.exhausted(attempts):
                self.store.update_event(event_id, status=STATUS_FAILED)
                self.store.remove_queue_entry(event_id)
                logger.warning(
                    f"Classification of {event_id} failed after {attempts} attempt(s): {message}",
                    extra={"event_id": event_id, "attempts": attempts},
                )
                return FailureOutcome(event_id, attempts, failed=True)

            next_attempt_at = now + self.compute_backoff(attempts)
            if entry is None:
                self.store.enqueue(event_id, next_attempt_at)
            self.store.update_queue_entry(event_id, attempts, next_attempt_at, message)
            self.store.update_event(event_id, status=STATUS_PENDING)

        logger.info(
            f"Classification of {event_id} will retry in {next_attempt_at - now:.0f}s "
            f"(attempt {attempts}/{self.retry_config.max_attempts}): {message}",
            extra={"event_id": event_id, "attempts": attempts},
        )
        return FailureOutcome(event_id, attempts, failed=False, next_attempt_at=next_attempt_at)

    def record_permanent_failure(self, event_id: str, error: Exception | str) -> None:
        """Fail the event without retrying."""
        with self.store.transaction():
            self.store.update_event(event_id, status=STATUS_FAILED)
            self.store.remove_queue_entry(event_id)
        logger.warning(f"Classification of {event_id} failed permanently: {error}")

    def complete(self, event_id: str) -> None:
        self.store.remove_queue_entry(event_id)

    def recover(self, now: float | None = None) -> RecoveryResult:
        """
        Repair queue state after a restart.

        Interrupted ``processing`` events go back to ``pending`` with their
        existing next-attempt time, pending events that lost their entry are
        queued again (or failed when their image is gone) and entries of
        completed events are dropped.
        """
        now = self.clock() if now is None else now
        result = RecoveryResult()

        with self.store.transaction():
            result.reset_to_pending = len(self.store.reset_processing())

            for event in self.store.pending_without_queue():
                if not event.original_path or not Path(event.original_path).exists():
                    self.store.update_event(event.id, status=STATUS_FAILED)
                    result.failed_missing_file += 1
                    continue
                if self.store.enqueue(event.id, now):
                    result.requeued += 1

            result.purged = self.store.purge_completed_queue_entries()

        if result.reset_to_pending or result.requeued or result.failed_missing_file or result.purged:
            logger.info(
                f"Queue recovery: {result.reset_to_pending} resumed, {result.requeued} requeued, "
                f"{result.failed_missing_file} failed (missing file), {result.purged} purged"
            )
        return result

    def stats(self) -> dict:
        return self.store.queue_stats()


def _outcome_from_cached(cached: Event) -> ConfidenceOutcome:
    return ConfidenceOutcome(
        confidence=cached.confidence,
        tracked_addiction=cached.tracked_addiction,
        addiction_candidate=cached.addiction_candidate,
        addiction_confidence=cached.addiction_confidence,
        addiction_prompt=cached.addiction_prompt,
        project_progress=cached.project_progress and cached.project_progress_evidence != EVIDENCE_MANUAL,
        project_progress_confidence=cached.project_progress_confidence,
        project_progress_evidence=(
            cached.project_progress_evidence
            if cached.project_progress and cached.project_progress_evidence != EVIDENCE_MANUAL
            else None
        ),
    )


def _result_from_cached(cached: Event) -> ClassificationResult:
    return ClassificationResult(
        category=cached.category or "Unknown",
        subcategories=list(cached.subcategories),
        caption=cached.caption,
        tags=list(cached.tags),
        confidence=cached.confidence,
        project=cached.project,
        evidence={"cached_from": cached.id},
    )


class ClassificationWorker:
    """Drains the retry queue through the classifier."""

    def __init__(
        self,
        store: EventStore,
        queue: RetryQueue,
        extractor: ContextExtractor,
        gateway: ClassifierGateway,
        normalizer: ProjectNormalizer | None = None,
        notifications: NotificationBus | None = None,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.queue = queue
        self.extractor = extractor
        self.gateway = gateway
        self.normalizer = normalizer or ProjectNormalizer(store)
        self.notifications = notifications
        self.config = config or PipelineConfig()
        self.thresholds = ConfidenceThresholds.from_config(self.config)
        self.clock = clock

        self.scheduler: BackgroundScheduler | None = None
        self._running = False
        self._warned_unconfigured = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Recover the queue and start polling."""
        with self._lock:
            if self._running:
                logger.warning("Classification worker is already running")
                return

            self.queue.recover()

            self.scheduler = BackgroundScheduler()
            self.scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(seconds=self.config.queue_poll_interval_seconds),
                id=WORKER_JOB_ID,
                name="Classification Worker",
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(),
                replace_existing=True,
            )
            self.scheduler.add_job(
                self._normalize_projects,
                trigger=IntervalTrigger(minutes=self.config.project_normalize_interval_minutes),
                id=NORMALIZE_JOB_ID,
                name="Project Normalization",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self.scheduler.start()
            self._running = True
            logger.info("Classification worker started")

    def stop(self) -> None:
        """Stop polling; classifications already in flight are allowed to finish."""
        with self._lock:
            if not self._running or self.scheduler is None:
                return
            self.scheduler.shutdown(wait=True)
            self.scheduler = None
            self._running = False
            logger.info("Classification worker stopped")

    def is_running(self) -> bool:
        return self._running

    def _tick(self) -> None:
        try:
            self.run_once()
        except StorageError as e:
            log_exception(logger, "Classification pass aborted", e)

    def _normalize_projects(self) -> None:
        try:
            self.normalizer.normalize()
        except StorageError as e:
            log_exception(logger, "Project normalization failed", e)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def run_once(self, now: float | None = None) -> WorkerRunResult:
        """
        Claim due entries and classify them.

        Returns:
            WorkerRunResult listing what happened to each claimed event
        """
        result = WorkerRunResult()
        if not self.gateway.is_configured():
            if not self._warned_unconfigured:
                logger.warning("Classifier is not configured (no API key); queue is paused")
                self._warned_unconfigured = True
            return result
        self._warned_unconfigured = False

        now = self.clock() if now is None else now
        entries = self.queue.due(now, limit=self.config.queue_batch_size)
        claimed = [entry for entry in entries if self.store.claim_event(entry.event_id)]
        result.claimed = len(claimed)
        if not claimed:
            return result

        workers = max(1, min(self.config.classify_concurrency, len(claimed)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify") as pool:
            outcomes = list(pool.map(self.process_entry, claimed))

        project_written = False
        for entry, (outcome, wrote_project) in zip(claimed, outcomes, strict=True):
            getattr(result, outcome).append(entry.event_id)
            project_written = project_written or wrote_project

        if project_written:
            try:
                self.normalizer.normalize()
            except StorageError as e:
                log_exception(logger, "Project normalization failed", e)

        changed = result.changed + result.cached
        if self.notifications is not None and changed:
            for event_id in changed:
                self.notifications.event_updated(event_id)
            self.notifications.events_changed(changed)

        logger.debug(
            f"Worker pass: {result.claimed} claimed, {len(result.completed)} classified, "
            f"{len(result.cached)} from cache, {len(result.retried)} retrying, "
            f"{len(result.failed)} failed"
        )
        return result

    def process_entry(self, entry: QueueEntry) -> tuple[str, bool]:
        """
        Classify one claimed event and record the outcome.

        Returns:
            (outcome name, whether a project was written)
        """
        event_id = entry.event_id
        try:
            event = self.store.get_event(event_id)
            if event is None:
                self.queue.complete(event_id)
                return "abandoned", False

            if event.stable_hash and event.context_key:
                cached = self.store.find_cached_classification(
                    event.stable_hash, event.context_key, exclude_id=event.id
                )
                if cached is not None:
                    wrote = self._apply(event_id, _result_from_cached(cached), _outcome_from_cached(cached))
                    logger.debug(f"Reused classification of {cached.id} for {event_id}")
                    return "cached", wrote

            screenshot = self.store.latest_screenshot(event_id)
            image_path = (screenshot.path if screenshot else None) or event.original_path
            evidence = self.extractor.gather_evidence(event, image_path)

            try:
                classification = self.gateway.classify(
                    evidence,
                    projects=self.normalizer.known_names(),
                    selected_project=(
                        self.normalizer.canonicalize(event.project) if event.project_manual else None
                    ),
                )
            except TransientServiceError as e:
                outcome = self.queue.record_failure(event_id, e)
                return ("failed" if outcome.failed else "retried"), False
            except PermanentServiceError as e:
                self.queue.record_permanent_failure(event_id, e)
                return "failed", False
            except Exception as e:
                log_exception(logger, f"Unexpected classifier error for {event_id}", e)
                outcome = self.queue.record_failure(event_id, e)
                return ("failed" if outcome.failed else "retried"), False

            wrote = self._apply(event_id, classification, evaluate(classification, self.thresholds))
            return "completed", wrote

        except StorageError as e:
            # Left in processing; recovery on next start puts it back to pending
            log_exception(logger, f"Storage error while classifying {event_id}", e)
            return "abandoned", False

    def _apply(
        self, event_id: str, result: ClassificationResult, outcome: ConfidenceOutcome
    ) -> bool:
        """Write a classification, keeping user-provided caption, project and progress."""
        with self.store.transaction():
            latest = self.store.get_event(event_id)
            if latest is None or latest.status != STATUS_PROCESSING:
                self.store.remove_queue_entry(event_id)
                return False

            keep_caption = latest.caption_manual and (latest.caption or "").strip()
            project = None
            if latest.project_manual:
                project = self.normalizer.canonicalize(latest.project)
            if project is None:
                project = self.normalizer.canonicalize(result.project)

            changes = {
                "status": STATUS_COMPLETED,
                "category": result.category,
                "subcategories": result.subcategories,
                "caption": latest.caption if keep_caption else result.caption,
                "tags": result.tags,
                "confidence": 1.0 if latest.user_label else outcome.confidence,
                "tracked_addiction": outcome.tracked_addiction,
                "addiction_candidate": outcome.addiction_candidate,
                "addiction_confidence": outcome.addiction_confidence,
                "addiction_prompt": outcome.addiction_prompt,
                "project": project,
            }

            if latest.is_manual_progress:
                changes["project_progress"] = True
            elif project and outcome.project_progress:
                changes["project_progress"] = True
                changes["project_progress_confidence"] = outcome.project_progress_confidence
                changes["project_progress_evidence"] = outcome.project_progress_evidence
            else:
                changes["project_progress"] = False
                changes["project_progress_confidence"] = None
                changes["project_progress_evidence"] = None

            self.store.update_event(event_id, **changes)
            self.store.remove_queue_entry(event_id)

        logger.info(
            f"Classified {event_id}: {result.category} ({outcome.confidence})",
            extra={"event_id": event_id, "category": result.category},
        )
        return project is not None


if __name__ == "__main__":
    import fire

    def stats(db_path: str | None = None):
        """Show queue statistics."""
        return RetryQueue(EventStore(db_path)).stats()

    def recover(db_path: str | None = None):
        """Repair queue state."""
        return RetryQueue(EventStore(db_path)).recover().__dict__

    fire.Fire({"stats": stats, "recover": recover})
