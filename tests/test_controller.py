"""
Capture loop tests.

Runs complete sessions against FakeBook:
- End-of-book detection and removal of the trailing end screens
- Probed and configured page-turn direction
- Page ceiling
- Cancellation during the inter-page delay
- Fatal capture and focus failures
"""

import threading
import time

import cv2
import numpy as np
import pytest

from k2p.automation.base import Direction
from k2p.cancellation import CancellationToken
from k2p.errors import (
    DirectionUndetectableError,
    ForegroundLostError,
    OperationCancelled,
    RetryExhaustedError,
)
from k2p.pipeline import CaptureLoop, TrimMargins

from conftest import FakeBook, block_page, noise_page


def loop_for(book, session, retry, **kwargs):
    kwargs.setdefault("page_delay", 0.0)
    return CaptureLoop(book, book, session, retry=retry, **kwargs)


def read_pages(paths):
    return [cv2.imread(str(p), cv2.IMREAD_COLOR) for p in paths]


class TestEndOfBook:
    """Three content pages, then an end screen that repeats."""

    def test_probed_direction(self, book, book_pages, session, fast_retry):
        result = loop_for(book, session, fast_retry).run()

        assert result.state == "end_detected"
        assert result.direction is Direction.FORWARD
        assert result.page_count == 3
        for captured, expected in zip(read_pages(result.page_paths), book_pages[:3]):
            assert np.array_equal(captured, expected)

    def test_configured_direction(self, book, book_pages, session, fast_retry):
        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD).run()

        assert result.state == "end_detected"
        assert result.page_count == 3
        # Three content pages plus five end screens.
        assert book.capture_calls == 8
        assert book.activations == 1

    def test_reverse_book(self, book_pages, session, fast_retry):
        book = FakeBook(book_pages, forward=Direction.REVERSE)

        result = loop_for(book, session, fast_retry).run()

        assert result.direction is Direction.REVERSE
        assert result.page_count == 3
        assert set(book.presses[3:]) == {Direction.REVERSE}

    def test_dropped_pages_are_deleted(self, book, session, fast_retry):
        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD).run()

        on_disk = sorted(p.name for p in session.temp_dir.iterdir())
        assert on_disk == sorted(p.name for p in result.page_paths)

    def test_shorter_end_window(self, book, session_factory, fast_retry):
        session = session_factory(tail_size=2)
        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD, end_window=2).run()

        assert result.page_count == 3
        assert result.state == "end_detected"

    def test_end_window_must_match_session_tail(self, book, session, fast_retry):
        with pytest.raises(ValueError):
            loop_for(book, session, fast_retry, end_window=3)

    def test_detect_mode_collects_margins(self, book, session, fast_retry):
        result = loop_for(book, session, fast_retry, analyze_margins=True).run()

        assert len(result.margins) == 3
        assert set(result.margins) == {TrimMargins(top=20, bottom=20, left=15, right=15)}


class TestPageLimit:
    def test_stops_at_max_pages_with_warning(self, session, fast_retry):
        book = FakeBook([noise_page(i) for i in range(10)])

        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD, max_pages=4).run()

        assert result.state == "page_limit_reached"
        assert result.page_count == 4
        assert len(result.warnings) == 1
        assert "maximum page limit (4)" in result.warnings[0]

    def test_single_page_ceiling_with_fixed_direction(self, book, session, fast_retry):
        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD, max_pages=1).run()

        assert result.state == "page_limit_reached"
        assert result.page_count == 1

    def test_single_page_ceiling_cannot_hold_probe_pages(self, book, session, fast_retry):
        with pytest.raises(ValueError):
            loop_for(book, session, fast_retry, max_pages=1)
        assert book.capture_calls == 0

    def test_probe_pages_count_towards_limit(self, session, fast_retry):
        book = FakeBook([noise_page(i) for i in range(10)])

        result = loop_for(book, session, fast_retry, max_pages=2).run()

        assert result.state == "page_limit_reached"
        assert result.page_count == 2


class TestCancellation:
    def test_cancel_during_page_delay_returns_promptly(self, book, session, fast_retry):
        token = CancellationToken()
        loop = loop_for(book, session, fast_retry, token=token, direction=Direction.FORWARD, page_delay=10.0)
        timer = threading.Timer(0.2, token.cancel, args=("test",))
        timer.start()

        started = time.monotonic()
        try:
            with pytest.raises(OperationCancelled):
                loop.run()
        finally:
            timer.cancel()

        assert time.monotonic() - started < 5.0
        assert loop.current_state() == "aborted"
        assert session.page_count == 1

    def test_cancelled_before_start(self, book, session, fast_retry):
        token = CancellationToken()
        token.cancel()
        loop = loop_for(book, session, fast_retry, token=token, direction=Direction.FORWARD)

        with pytest.raises(OperationCancelled):
            loop.run()
        assert book.capture_calls == 0


class TestFailures:
    def test_transient_capture_failure_is_retried(self, book, session, fast_retry):
        book.capture_failures = 2

        result = loop_for(book, session, fast_retry, direction=Direction.FORWARD).run()

        assert result.page_count == 3

    def test_persistent_capture_failure_is_fatal(self, book, session, fast_retry):
        book.capture_failures = 100
        loop = loop_for(book, session, fast_retry, direction=Direction.FORWARD)

        with pytest.raises(RetryExhaustedError):
            loop.run()

        assert loop.current_state() == "aborted"
        assert book.capture_calls == fast_retry.max_attempts

    def test_foreground_loss_is_not_retried(self, book, session, fast_retry):
        calls = []

        def advance_page(direction):
            calls.append(direction)
            raise ForegroundLostError("another application is frontmost")

        book.advance_page = advance_page
        loop = loop_for(book, session, fast_retry, direction=Direction.FORWARD)

        with pytest.raises(ForegroundLostError):
            loop.run()

        assert len(calls) == 1
        assert loop.current_state() == "aborted"

    def test_undetectable_direction_is_fatal(self, session, fast_retry):
        book = FakeBook([block_page(0)])
        loop = loop_for(book, session, fast_retry)

        with pytest.raises(DirectionUndetectableError):
            loop.run()

        assert loop.current_state() == "aborted"
