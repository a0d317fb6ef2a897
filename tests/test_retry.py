"""
Retry policy tests: attempt bound, backoff schedule, error typing and cancellation.
"""

import threading
import time

import pytest

from k2p.cancellation import CancellationToken
from k2p.errors import (
    CaptureError,
    ForegroundLostError,
    OperationCancelled,
    RetryExhaustedError,
)
from k2p.pipeline.retry import RetryConfig, backoff_delays, run_with_retry


class Flaky:
    """Callable failing ``failures`` times before returning ``value``."""

    def __init__(self, failures, error=CaptureError, value="ok"):
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.value


class TestRunWithRetry:
    def test_first_success_is_returned(self, fast_retry):
        fn = Flaky(0)
        assert run_with_retry(fn, fast_retry) == "ok"
        assert fn.calls == 1

    def test_recovers_after_transient_failures(self, fast_retry):
        fn = Flaky(2)
        assert run_with_retry(fn, fast_retry) == "ok"
        assert fn.calls == 3

    @pytest.mark.parametrize("attempts", [1, 3, 5])
    def test_always_failing_fn_is_called_exactly_max_attempts(self, attempts):
        fn = Flaky(100)
        config = RetryConfig(max_attempts=attempts, initial_delay=0.0, max_delay=0.0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            run_with_retry(fn, config, operation="capture page 1")

        assert fn.calls == attempts
        err = exc_info.value
        assert err.attempts == attempts
        assert err.operation == "capture page 1"
        assert isinstance(err.last_error, CaptureError)
        assert err.__cause__ is err.last_error
        assert f"after {attempts} attempts" in str(err)

    def test_non_retryable_error_propagates_immediately(self, fast_retry):
        fn = Flaky(100, error=ValueError)
        with pytest.raises(ValueError):
            run_with_retry(fn, fast_retry)
        assert fn.calls == 1

    def test_foreground_loss_is_not_retried(self, fast_retry):
        fn = Flaky(100, error=ForegroundLostError)
        with pytest.raises(ForegroundLostError):
            run_with_retry(fn, fast_retry)
        assert fn.calls == 1

    def test_custom_retry_on(self, fast_retry):
        fn = Flaky(1, error=KeyError)
        assert run_with_retry(fn, fast_retry, retry_on=(KeyError,)) == "ok"

    def test_on_retry_sees_every_failure(self):
        seen = []
        config = RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0)
        with pytest.raises(RetryExhaustedError):
            run_with_retry(Flaky(100), config, on_retry=seen.append)

        assert [a.attempt_number for a in seen] == [1, 2, 3]
        assert [a.next_delay for a in seen] == [0.0, 0.0, None]
        assert all(isinstance(a.last_error, CaptureError) for a in seen)

    def test_backoff_delays_are_slept(self):
        seen = []
        config = RetryConfig(max_attempts=3, initial_delay=0.01, max_delay=0.02, multiplier=4.0)
        started = time.monotonic()
        run_with_retry(Flaky(2), config, on_retry=seen.append)
        assert [a.next_delay for a in seen] == [0.01, 0.02]
        assert time.monotonic() - started >= 0.03


class TestBackoff:
    def test_exponential_and_capped(self):
        config = RetryConfig(max_attempts=6, initial_delay=0.5, max_delay=2.0, multiplier=2.0)
        assert list(backoff_delays(config)) == [0.5, 1.0, 2.0, 2.0, 2.0]

    def test_defaults(self):
        assert list(backoff_delays(RetryConfig())) == [0.1, 0.2]

    def test_single_attempt_never_sleeps(self):
        assert list(backoff_delays(RetryConfig(max_attempts=1))) == []


class TestRetryCancellation:
    def test_cancelled_token_prevents_any_attempt(self, fast_retry):
        token = CancellationToken()
        token.cancel("user")
        fn = Flaky(0)

        with pytest.raises(OperationCancelled):
            run_with_retry(fn, fast_retry, token=token)
        assert fn.calls == 0

    def test_cancel_during_backoff_returns_promptly(self):
        token = CancellationToken()
        config = RetryConfig(max_attempts=3, initial_delay=10.0, max_delay=10.0)
        fn = Flaky(100)
        timer = threading.Timer(0.1, token.cancel)
        timer.start()

        started = time.monotonic()
        try:
            with pytest.raises(OperationCancelled) as exc_info:
                run_with_retry(fn, config, token=token)
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5.0
        assert fn.calls == 1
        assert isinstance(exc_info.value.__cause__, CaptureError)
