"""
Error taxonomy for the Screencap pipeline.

Each class maps to one recovery policy:

- ValidationError: the capture is dropped and no event is created
- TransientServiceError: the classification is retried with backoff
- PermanentServiceError: the event is marked failed immediately
- StorageError: propagated to the caller, the work item is abandoned
"""

import sqlite3


class ScreencapError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ScreencapError):
    """Input that can never be processed (undecodable image, bad payload)."""


class ServiceError(ScreencapError):
    """Failure reported by an external service (OCR or classifier)."""

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service


class TransientServiceError(ServiceError):
    """Network, timeout, rate limit or 5xx failure. Safe to retry later."""


class PermanentServiceError(ServiceError):
    """Rejected request or unusable response. Retrying would not help."""


class StorageError(ScreencapError):
    """Database failure wrapping the underlying ``sqlite3.Error``."""

    def __init__(self, message: str, cause: sqlite3.Error | None = None):
        super().__init__(message)
        self.cause = cause
