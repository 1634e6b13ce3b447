"""Tests for backoff calculation and error classification."""

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, BadRequestError, RateLimitError

from screencap.core.retry import RetryConfig, is_retryable_openai_error

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("error", response=httpx.Response(status, request=_REQUEST), body=None)


class TestBackoff:
    """Test exponential backoff."""

    def test_doubles_from_base(self):
        config = RetryConfig(base_delay=15.0, max_delay=900.0)

        assert [config.calculate_delay(n) for n in range(4)] == [15.0, 30.0, 60.0, 120.0]

    def test_monotone_and_capped(self):
        config = RetryConfig(base_delay=15.0, max_delay=900.0)
        delays = [config.calculate_delay(n) for n in range(50)]

        assert delays == sorted(delays)
        assert max(delays) == 900.0

    def test_huge_attempt_counts_do_not_overflow(self):
        assert RetryConfig(max_delay=900.0).calculate_delay(10_000) == 900.0

    def test_negative_attempts_treated_as_zero(self):
        assert RetryConfig(base_delay=15.0).calculate_delay(-3) == 15.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=100.0, max_delay=1000.0, jitter_factor=0.1)

        for _ in range(20):
            assert 90.0 <= config.calculate_delay(0) <= 110.0

    def test_exhausted_at_ceiling(self):
        config = RetryConfig(max_attempts=3)

        assert not config.exhausted(2)
        assert config.exhausted(3)


class TestRetryableErrors:
    """Test classification of OpenAI errors."""

    def test_transient_errors(self):
        assert is_retryable_openai_error(APIConnectionError(request=_REQUEST))
        assert is_retryable_openai_error(_status_error(RateLimitError, 429))
        assert is_retryable_openai_error(_status_error(APIStatusError, 503))
        assert is_retryable_openai_error(TimeoutError())

    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    def test_client_errors_are_permanent(self, status):
        assert not is_retryable_openai_error(_status_error(APIStatusError, status))

    def test_bad_request_is_permanent(self):
        assert not is_retryable_openai_error(_status_error(BadRequestError, 400))
