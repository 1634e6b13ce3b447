"""Command-line interface for Screencap."""

import logging
import signal
import threading

import fire

from screencap.core.config import load_environment
from screencap.core.logging import setup_logging

logger = logging.getLogger(__name__)


def _wait_for_signal() -> None:
    """Block the main thread until SIGINT or SIGTERM."""
    stopped = threading.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        stopped.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    stopped.wait()


class ScreencapCLI:
    """Screencap CLI commands."""

    def __init__(self, verbose: bool = False):
        load_environment()
        self._verbose = verbose

    def _logging(self, structured: bool = True) -> None:
        setup_logging(
            console_level=logging.DEBUG if self._verbose else logging.INFO,
            structured_file="screencap.jsonl" if structured else None,
        )

    def serve(self) -> None:
        """Start the IPC server (JSON lines over stdin/stdout) with all services."""
        from screencap.ipc.server import run_server

        self._logging()
        run_server()

    def run(self) -> None:
        """Run capture and classification in the foreground until interrupted."""
        from screencap.core.services import ServiceManager

        self._logging()
        manager = ServiceManager()
        results = manager.start_all(notify=True)
        logger.info(f"Services running: {results}. Press Ctrl+C to stop.")
        try:
            _wait_for_signal()
        finally:
            manager.stop_all()

    def capture(self, project_progress: bool = False) -> dict | None:
        """Capture the screen once and report the merge decision.

        Args:
            project_progress: Record the capture as project progress
        """
        from screencap.core.services import ServiceManager

        self._logging()
        result = ServiceManager().capture_scheduler.trigger_capture(
            manual=True, project_progress=project_progress
        )
        if result is None:
            return None
        return {"action": result.action.value, "event_id": result.event_id, "requeued": result.requeued}

    def worker(self, once: bool = False) -> dict | None:
        """Run only the classification worker.

        Args:
            once: Recover the queue, process one batch and exit
        """
        from screencap.core.services import ServiceManager

        self._logging()
        manager = ServiceManager()
        if once:
            manager.queue.recover()
            result = manager.worker.run_once()
            return {
                "claimed": result.claimed,
                "completed": result.completed,
                "cached": result.cached,
                "retried": result.retried,
                "failed": result.failed,
                "abandoned": result.abandoned,
            }

        manager.start_all(notify=False, capture=False)
        try:
            _wait_for_signal()
        finally:
            manager.stop_all()
        return None

    def status(self) -> dict:
        """Show service, capture and queue status."""
        from screencap.core.services import ServiceManager

        return ServiceManager().get_status()

    def normalize_projects(self) -> dict:
        """Merge spelling variants of project names."""
        from screencap.core.services import ServiceManager

        self._logging(structured=False)
        result = ServiceManager().normalizer.normalize()
        return {"updated_rows": result.updated_rows, "groups": result.groups}

    def test_connection(self) -> dict:
        """Check that the classifier backend is reachable with the configured key."""
        from screencap.core.services import ServiceManager

        return ServiceManager().gateway.test_connection()

    def migrate(self, db_path: str | None = None) -> dict:
        """Apply pending database migrations."""
        from screencap.db.migrations import MigrationRunner, init_database

        self._logging(structured=False)
        applied = init_database(db_path)
        runner = MigrationRunner(db_path)
        return {"applied": applied, **runner.get_status()}


def main() -> None:
    """Main entry point for the Screencap CLI."""
    fire.Fire(ScreencapCLI)


if __name__ == "__main__":
    main()
