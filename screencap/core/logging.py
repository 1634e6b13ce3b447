"""
Logging infrastructure for Screencap.

Console output for humans, a rotating text log, and a JSON-lines log
that carries the structured ``extra`` fields (event ids, attempts, timings)
attached by the pipeline.
"""

import json
import logging
import sys
import threading
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from screencap.core.paths import LOG_DIR

CONSOLE_FORMAT = "%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

MAX_LOG_SIZE_MB = 10
MAX_LOG_FILES = 5

# Attributes every LogRecord has; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


class StructuredLogFormatter(logging.Formatter):
    """
    One JSON object per record.

    Pipeline fields (``event_id``, ``trigger``, ``operation``...) attached via
    ``extra`` or LogContext land under ``"extra"`` so the log can be filtered
    per event with jq.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": record.created,
            "time": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            extra[key] = value

        if extra:
            entry["extra"] = extra

        return json.dumps(entry, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_colors: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        original_levelname = record.levelname
        record.levelname = f"{self.COLORS.get(record.levelno, '')}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
        backupCount=MAX_LOG_FILES,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    console_level: int | str = DEFAULT_CONSOLE_LEVEL,
    file_level: int | str = DEFAULT_FILE_LEVEL,
    log_dir: Path | str | None = None,
    log_file: str = "screencap.log",
    structured_file: str | None = "screencap.jsonl",
    use_colors: bool = True,
) -> logging.Logger:
    """
    Set up logging for the Screencap process.

    Args:
        console_level: Log level for console output
        file_level: Log level for file output
        log_dir: Directory for log files
        log_file: Name of the main log file
        structured_file: Name of the JSON log file (None to disable)
        use_colors: Use colored output in console

    Returns:
        Root logger instance
    """
    if isinstance(console_level, str):
        console_level = getattr(logging, console_level.upper())
    if isinstance(file_level, str):
        file_level = getattr(logging, file_level.upper())

    log_dir = LOG_DIR if log_dir is None else Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        ColoredConsoleFormatter(fmt=CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT, use_colors=use_colors)
    )
    root_logger.addHandler(console_handler)

    root_logger.addHandler(
        _rotating_handler(
            log_dir / log_file,
            file_level,
            logging.Formatter(fmt=FILE_FORMAT, datefmt=FILE_DATE_FORMAT),
        )
    )

    if structured_file:
        root_logger.addHandler(
            _rotating_handler(log_dir / structured_file, file_level, StructuredLogFormatter())
        )

    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.captureWarnings(True)

    root_logger.info(
        f"Logging initialized (console: {logging.getLevelName(console_level)}, "
        f"file: {logging.getLevelName(file_level)})"
    )
    return root_logger


_context = threading.local()
_factory_lock = threading.Lock()
_factory_installed = False


def _context_stack() -> list[dict[str, Any]]:
    stack = getattr(_context, "stack", None)
    if stack is None:
        stack = _context.stack = []
    return stack


def _install_record_factory() -> None:
    """Wrap the record factory once; it reads fields from the calling thread's stack."""
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        base_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = base_factory(*args, **kwargs)
            for fields in _context_stack():
                for key, value in fields.items():
                    setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


class LogContext:
    """
    Context manager that stamps extra fields onto every record the current
    thread creates inside it. Capture and classification threads log
    concurrently, so fields never leak between threads.

    Usage:
        with LogContext(trigger="manual"):
            logger.info("Capturing...")
    """

    def __init__(self, **context: Any):
        self.context = context

    def __enter__(self) -> "LogContext":
        _install_record_factory()
        _context_stack().append(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        stack = _context_stack()
        if stack and stack[-1] is self.context:
            stack.pop()


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: Exception,
    level: int = logging.ERROR,
    **extra: Any,
) -> None:
    """Log an exception with its type name and any structured context."""
    logger.log(
        level,
        f"{message}: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra=extra,
    )


class OperationTimer:
    """
    Context manager for timing operations and logging the result.

    Usage:
        with OperationTimer(logger, "classify_event", event_id=event.id):
            ...
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
        **extra: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.extra = extra
        self.start_time: float | None = None
        self.duration: float | None = None

    def __enter__(self) -> "OperationTimer":
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        self.duration = time.monotonic() - self.start_time
        extra = {"operation": self.operation, "duration_seconds": self.duration, **self.extra}

        if exc_type is None:
            if self.duration < 1:
                duration_str = f"{self.duration * 1000:.1f}ms"
            else:
                duration_str = f"{self.duration:.2f}s"
            self.logger.log(self.level, f"{self.operation} completed in {duration_str}", extra=extra)
        else:
            self.logger.log(
                logging.WARNING,
                f"{self.operation} failed after {self.duration:.2f}s: {exc_val}",
                extra=extra,
            )
