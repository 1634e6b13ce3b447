"""
Retry and backoff helpers for Screencap.

Classification retries are durable: the queue stores the next attempt time
instead of sleeping in-process, so only the delay calculation and the error
classification live here.
"""

import logging
import random
from dataclasses import dataclass

from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 15.0
DEFAULT_MAX_DELAY = 900.0
DEFAULT_EXPONENTIAL_BASE = 2.0

# HTTP statuses that are worth trying again later
RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    exponential_base: float = DEFAULT_EXPONENTIAL_BASE
    jitter_factor: float = 0.0

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate the delay before the next try using exponential backoff.

        With no jitter the result is monotone non-decreasing in ``attempt``
        and never exceeds ``max_delay``.

        Args:
            attempt: Number of failed attempts so far

        Returns:
            Delay in seconds
        """
        attempt = max(0, attempt)
        try:
            delay = self.base_delay * (self.exponential_base**attempt)
        except OverflowError:
            delay = self.max_delay

        if self.jitter_factor:
            delay += delay * self.jitter_factor * (2 * random.random() - 1)

        return max(0.0, min(delay, self.max_delay))

    def exhausted(self, attempts: int) -> bool:
        """True once ``attempts`` failures reach the retry ceiling."""
        return attempts >= self.max_attempts


def is_retryable_openai_error(e: Exception) -> bool:
    """
    Check if an OpenAI API error is retryable.

    Args:
        e: The exception to check

    Returns:
        True if the error is transient (rate limit, network, timeout, 5xx)
    """
    if isinstance(e, RateLimitError | APIConnectionError | APITimeoutError):
        return True

    if isinstance(e, APIStatusError):
        return e.status_code in RETRYABLE_STATUS_CODES

    if isinstance(e, ConnectionError | TimeoutError):
        return True

    return False
