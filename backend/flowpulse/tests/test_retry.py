"""Tests for the exponential backoff retry policy."""

import pytest

from flowpulse.core.retry import RetryExhaustedError, RetryPolicy, call_with_retry


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy:
    """Tests for delay computation."""

    def test_base_delays_double_until_cap(self):
        policy = RetryPolicy()
        assert [policy.base_delay(attempt) for attempt in range(1, 7)] == [1, 2, 4, 8, 16, 20]

    def test_jitter_bounds(self):
        policy = RetryPolicy()
        assert policy.delay(3, rng=lambda low, high: low) == pytest.approx(4 * 0.85)
        assert policy.delay(3, rng=lambda low, high: high) == pytest.approx(4 * 1.15)

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(jitter=1.5)


class TestCallWithRetry:
    """Tests for the retry loop."""

    @pytest.mark.parametrize("failures", [0, 1, 2, 3, 4])
    def test_k_failures_mean_k_plus_one_calls(self, failures):
        fn = Flaky(failures)
        sleeps = []

        result = call_with_retry(fn, RetryPolicy(), sleep=sleeps.append)

        assert result == "ok"
        assert fn.calls == failures + 1
        assert len(sleeps) == failures
        expected = sum(1.0 * 2 ** (attempt - 1) for attempt in range(1, failures + 1))
        assert expected * 0.85 <= sum(sleeps) <= expected * 1.15

    def test_exhausted(self):
        fn = Flaky(10)
        sleeps = []

        with pytest.raises(RetryExhaustedError) as exc_info:
            call_with_retry(fn, RetryPolicy(max_attempts=3), sleep=sleeps.append)

        assert fn.calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ConnectionError)
        assert len(sleeps) == 2

    def test_non_retryable_error_propagates(self):
        fn = Flaky(1, error=KeyError)

        with pytest.raises(KeyError):
            call_with_retry(fn, RetryPolicy(), retry_on=(ConnectionError,), sleep=lambda _: None)

        assert fn.calls == 1

    def test_on_retry_hook(self):
        seen = []
        call_with_retry(
            Flaky(2),
            RetryPolicy(),
            on_retry=lambda attempt, error, delay: seen.append(attempt),
            sleep=lambda _: None,
        )
        assert seen == [1, 2]
