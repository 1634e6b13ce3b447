"""Background jobs: the classification retry queue and worker."""

from .classification import ClassificationWorker, RetryQueue

__all__ = ["ClassificationWorker", "RetryQueue"]
