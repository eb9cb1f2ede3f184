"""
Tests for retry logic.
"""

import pytest
from reposcheduler.retry import (
    exponential_backoff,
    should_retry_http_status,
    RetryError,
)


def _no_sleep(delay):
    pass


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1, sleep=_no_sleep)
        def succeeds():
            call_count[0] += 1
            return "success"

        assert succeeds() == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01, sleep=_no_sleep)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        assert fails_twice() == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01, sleep=_no_sleep)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError):
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(max_retries=3, exceptions=(ConnectionError,), sleep=_no_sleep)
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1

    def test_delays_grow_and_cap(self):
        """Delays double each attempt and never exceed max_delay."""
        slept = []

        @exponential_backoff(max_retries=4, base_delay=1.0, max_delay=3.0, sleep=slept.append)
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        assert slept == [1.0, 2.0, 3.0, 3.0]

    def test_on_retry_callback(self):
        seen = []

        @exponential_backoff(
            max_retries=2,
            base_delay=0.5,
            on_retry=lambda attempt, exc, delay: seen.append((attempt, str(exc), delay)),
            sleep=_no_sleep,
        )
        def always_fails():
            raise ConnectionError("nope")

        with pytest.raises(RetryError):
            always_fails()

        assert seen == [(1, "nope", 0.5), (2, "nope", 1.0)]


class TestHttpStatus:
    """Retryable status codes."""

    def test_http_status_retry_logic(self):
        assert should_retry_http_status(408)
        assert should_retry_http_status(429)
        assert should_retry_http_status(500)
        assert should_retry_http_status(503)

        assert not should_retry_http_status(200)
        assert not should_retry_http_status(401)
        assert not should_retry_http_status(404)
        assert not should_retry_http_status(422)
