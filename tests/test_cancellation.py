"""
Cancellation token and signal handler tests.
"""

import signal
import threading
import time

import pytest

from k2p.cancellation import CancellationToken, install_signal_handlers
from k2p.errors import OperationCancelled


class TestCancellationToken:
    def test_starts_uncancelled(self):
        token = CancellationToken()
        assert not token.is_cancelled
        assert token.reason is None
        assert token.wait(0) is False

    def test_cancel_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.is_cancelled
        assert token.reason == "first"

    def test_wait_returns_true_when_cancelled(self):
        token = CancellationToken()
        token.cancel()
        started = time.monotonic()
        assert token.wait(10.0) is True
        assert time.monotonic() - started < 1.0

    def test_wait_times_out(self):
        assert CancellationToken().wait(0.01) is False

    def test_cancel_from_another_thread_wakes_sleeper(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel, args=("timer",))
        timer.start()
        started = time.monotonic()
        with pytest.raises(OperationCancelled, match="timer"):
            token.sleep(10.0, operation="page delay")
        assert time.monotonic() - started < 5.0

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled("capture")


class TestSignalHandlers:
    def test_sigint_cancels_token_and_restore_reinstates_handler(self):
        before = signal.getsignal(signal.SIGINT)
        token = CancellationToken()
        restore = install_signal_handlers(token)
        try:
            handler = signal.getsignal(signal.SIGINT)
            handler(signal.SIGINT, None)
            assert token.is_cancelled
            assert "SIGINT" in token.reason
        finally:
            restore()
        assert signal.getsignal(signal.SIGINT) == before
