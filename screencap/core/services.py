"""
Service Manager for Screencap

Builds every pipeline component once and wires them together by reference:

- Event store, change notification bus
- Context extractor (with OCR), classifier gateway, project normalizer
- Merge engine and capture scheduler
- Retry queue and classification worker

and manages the lifecycle of the two background services:

- capture: periodic screen capture
- worker: classification queue polling and project normalization

A health monitor restarts a service that stopped unexpectedly, up to
MAX_RESTART_ATTEMPTS times, and raises a desktop notification on failure.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from screencap.capture.context import ContextExtractor
from screencap.capture.daemon import CaptureScheduler
from screencap.capture.events import MergeEngine
from screencap.capture.screenshots import ScreenCapturer
from screencap.classify.gateway import ClassifierGateway
from screencap.classify.projects import ProjectNormalizer
from screencap.core.config import PipelineConfig, get_api_key, load_config
from screencap.core.notifications import NotificationBus, send_desktop_notification
from screencap.core.paths import DB_PATH, ensure_data_directories
from screencap.db.store import EventStore
from screencap.evidence.ocr import OCRExtractor
from screencap.jobs.classification import ClassificationWorker, RetryQueue

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """State of a service."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    RESTARTING = "restarting"


@dataclass
class ServiceStatus:
    """Status information for a service."""

    name: str
    state: ServiceState
    start_time: datetime | None = None
    restart_count: int = 0
    last_error: str | None = None
    details: dict = field(default_factory=dict)


class ServiceManager:
    """Owns the pipeline components and the lifecycle of background services."""

    MAX_RESTART_ATTEMPTS = 3

    HEALTH_CHECK_INTERVAL = 60

    def __init__(
        self,
        db_path: Path | str | None = None,
        config: dict[str, Any] | None = None,
        api_key: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Build all components.

        Args:
            db_path: Path to SQLite database (default under the data root)
            config: Loaded configuration dict (read from config.json if None)
            api_key: OpenAI API key (read from the environment if None)
            clock: Time source in epoch seconds
        """
        ensure_data_directories()

        self.db_path = Path(db_path) if db_path else DB_PATH
        self.raw_config = config if config is not None else load_config()
        self.config = PipelineConfig.from_config(self.raw_config)
        self.api_key = api_key or get_api_key()
        classifier_settings = self.raw_config.get("classifier", {})
        known_projects = list(classifier_settings.get("known_projects", []))

        self.store = EventStore(self.db_path)
        self.notifications = NotificationBus()

        self.ocr = OCRExtractor(
            api_key=self.api_key,
            model=self.config.ocr_model,
            timeout=self.config.classifier_timeout_seconds,
        )
        self.extractor = ContextExtractor(
            ocr=self.ocr,
            ocr_failure_confidence_ceiling=self.config.ocr_failure_confidence_ceiling,
        )
        self.gateway = ClassifierGateway(
            api_key=self.api_key,
            model=self.config.classifier_model,
            timeout=self.config.classifier_timeout_seconds,
            projects=known_projects,
            tracked_addictions=list(classifier_settings.get("tracked_addictions", [])),
        )
        self.normalizer = ProjectNormalizer(self.store, known_projects, self.notifications)

        self.merge_engine = MergeEngine(self.store, self.config, self.notifications, clock)
        self.capture_scheduler = CaptureScheduler(
            self.merge_engine,
            self.extractor,
            capturer=ScreenCapturer(all_displays=self.config.capture_all_displays),
            interval_seconds=self.config.capture_interval_seconds,
            paused=bool(self.raw_config.get("capture", {}).get("paused", False)),
            clock=clock,
        )

        self.queue = RetryQueue.from_config(self.store, self.config, clock)
        self.worker = ClassificationWorker(
            self.store,
            self.queue,
            self.extractor,
            self.gateway,
            normalizer=self.normalizer,
            notifications=self.notifications,
            config=self.config,
            clock=clock,
        )

        self._services: dict[str, ServiceStatus] = {
            "capture": ServiceStatus(name="capture", state=ServiceState.STOPPED),
            "worker": ServiceStatus(name="worker", state=ServiceState.STOPPED),
        }
        self._starters: dict[str, Callable[[], None]] = {
            "capture": self.capture_scheduler.start,
            "worker": self.worker.start,
        }
        self._stoppers: dict[str, Callable[[], None]] = {
            "capture": self.capture_scheduler.stop,
            "worker": self.worker.stop,
        }
        self._checks: dict[str, Callable[[], bool]] = {
            "capture": self.capture_scheduler.is_running,
            "worker": self.worker.is_running,
        }

        self._health_thread: threading.Thread | None = None
        self._health_stop = threading.Event()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_all(self, notify: bool = True, capture: bool = True) -> dict[str, bool]:
        """
        Start background services.

        Args:
            notify: Send desktop notifications for problems
            capture: Also start the capture scheduler (False runs only the worker)

        Returns:
            Dictionary mapping service names to success status
        """
        logger.info("Starting services...")

        if not self.gateway.is_configured():
            logger.warning("OPENAI_API_KEY not set - events will queue until a key is configured")
            if notify:
                send_desktop_notification(
                    "API Key Missing", "Set OPENAI_API_KEY to classify captured activity"
                )

        results = {"worker": self._start_service("worker")}
        if capture:
            results["capture"] = self._start_service("capture")

        self._start_health_monitor()

        failed = [name for name, ok in results.items() if not ok]
        if failed and notify:
            send_desktop_notification(f"Failed to start: {', '.join(failed)}", "Check logs for details")

        logger.info(f"Service startup complete: {results}")
        return results

    def stop_all(self) -> None:
        """Stop services; in-flight captures and classifications finish first."""
        logger.info("Stopping all services...")

        self._health_stop.set()
        if self._health_thread and self._health_thread.is_alive():
            self._health_thread.join(timeout=5)
        self._health_thread = None

        self._stop_service("capture")
        self._stop_service("worker")
        logger.info("All services stopped")

    def restart_service(self, name: str) -> bool:
        if name not in self._services:
            logger.error(f"Unknown service: {name}")
            return False

        logger.info(f"Restarting service: {name}")
        with self._lock:
            self._services[name].state = ServiceState.RESTARTING
        self._stop_service(name)
        return self._start_service(name)

    def _start_service(self, name: str) -> bool:
        with self._lock:
            self._services[name].state = ServiceState.STARTING
        try:
            self._starters[name]()
        except Exception as e:
            logger.error(f"Failed to start {name}: {e}")
            with self._lock:
                self._services[name].state = ServiceState.FAILED
                self._services[name].last_error = str(e)
            return False

        with self._lock:
            status = self._services[name]
            status.state = ServiceState.RUNNING
            status.start_time = datetime.now()
            status.last_error = None
        return True

    def _stop_service(self, name: str) -> None:
        try:
            self._stoppers[name]()
        except Exception as e:
            logger.error(f"Error stopping {name}: {e}")
        with self._lock:
            self._services[name].state = ServiceState.STOPPED

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _start_health_monitor(self) -> None:
        if self._health_thread and self._health_thread.is_alive():
            return
        self._health_stop.clear()
        self._health_thread = threading.Thread(
            target=self._health_check_loop,
            daemon=True,
            name="health-monitor",
        )
        self._health_thread.start()

    def _health_check_loop(self) -> None:
        while not self._health_stop.wait(self.HEALTH_CHECK_INTERVAL):
            try:
                self.perform_health_check()
            except Exception as e:
                logger.error(f"Health check error: {e}")

    def perform_health_check(self) -> None:
        """Restart services that should be running but are not."""
        for name, status in self._services.items():
            if status.state in (ServiceState.STOPPED, ServiceState.FAILED):
                continue
            if self._checks[name]():
                continue

            logger.warning(f"Service {name} is not running (state: {status.state.value})")
            if status.restart_count >= self.MAX_RESTART_ATTEMPTS:
                with self._lock:
                    status.state = ServiceState.FAILED
                send_desktop_notification(
                    f"{name.title()} Service Failed",
                    f"Max restart attempts ({self.MAX_RESTART_ATTEMPTS}) exceeded",
                    sound=True,
                )
                continue

            status.restart_count += 1
            logger.info(
                f"Restarting {name} (attempt {status.restart_count}/{self.MAX_RESTART_ATTEMPTS})"
            )
            if not self.restart_service(name):
                send_desktop_notification(
                    f"Failed to restart {name}", f"Attempt {status.restart_count}"
                )

    def get_status(self) -> dict:
        """
        Status of services, capture scheduler and classification queue.

        Returns:
            Dictionary suitable for JSON output
        """
        with self._lock:
            services = {
                name: {
                    "state": status.state.value,
                    "running": self._checks[name](),
                    "start_time": status.start_time.isoformat() if status.start_time else None,
                    "restart_count": status.restart_count,
                    "last_error": status.last_error,
                }
                for name, status in self._services.items()
            }

        healthy = all(
            info["running"] or info["state"] == ServiceState.STOPPED.value
            for info in services.values()
        )
        return {
            "healthy": healthy,
            "services": services,
            "capture": self.capture_scheduler.get_state(),
            "queue": self.queue.stats(),
            "classifier_configured": self.gateway.is_configured(),
        }


if __name__ == "__main__":
    import fire

    def status(db_path: str | None = None):
        """Show pipeline status (without starting services)."""
        return ServiceManager(db_path=db_path).get_status()

    fire.Fire({"status": status})
