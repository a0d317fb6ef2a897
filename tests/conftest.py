"""
Shared fixtures for pipeline tests.

Pages are small synthetic numpy images written with OpenCV. The reader
application is replaced by FakeBook, which implements both the
automation driver and the capturer over an in-memory list of pages.
No screen, keyboard or macOS access is needed.
"""

from pathlib import Path

import cv2
import numpy as np
import pytest

from k2p.automation.base import AutomationDriver, Direction
from k2p.capture.base import Capturer
from k2p.errors import CaptureError, ForegroundLostError
from k2p.pipeline import CaptureSession, RetryConfig

PAGE_HEIGHT = 80
PAGE_WIDTH = 60


def block_page(level, height=PAGE_HEIGHT, width=PAGE_WIDTH, block=(20, 60, 15, 45)):
    """White page with a solid ``level`` gray text block (rows top:bottom, cols left:right)."""
    img = np.full((height, width, 3), 255, dtype=np.uint8)
    top, bottom, left, right = block
    img[top:bottom, left:right] = level
    return img


def noise_page(seed, height=PAGE_HEIGHT, width=PAGE_WIDTH):
    """Random page; two different seeds are practically never similar."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def write_image(path, img):
    path = Path(path)
    assert cv2.imwrite(str(path), img)
    return path


class FakeBook(AutomationDriver, Capturer):
    """
    In-memory reader showing one page of ``pages`` at a time.

    ``forward`` is the input that moves towards the end of the book; the
    other one moves back. Both stop at the first and last page, so the
    last page repeats like a reader's end-of-book screen.
    """

    def __init__(self, pages, forward=Direction.FORWARD):
        self.pages = list(pages)
        self.forward = forward
        self.position = 0

        self.running = True
        self.content_open = True
        self.foreground = True

        self.capture_failures = 0      # next N captures raise CaptureError
        self.capture_calls = 0
        self.activations = 0
        self.presses = []

    # AutomationDriver

    def is_target_running(self):
        return self.running

    def is_content_open(self):
        return self.content_open

    def is_target_foreground(self):
        return self.foreground

    def activate(self):
        self.activations += 1
        self.foreground = True

    def advance_page(self, direction):
        self.presses.append(direction)
        if not self.foreground:
            raise ForegroundLostError("reader is not frontmost")
        step = 1 if direction is self.forward else -1
        self.position = min(max(self.position + step, 0), len(self.pages) - 1)

    # Capturer

    def capture(self, path):
        self.capture_calls += 1
        if not self.foreground:
            raise ForegroundLostError("reader is not frontmost")
        if self.capture_failures > 0:
            self.capture_failures -= 1
            raise CaptureError("simulated capture failure")
        return write_image(path, self.pages[self.position])

    def capture_with_activation(self, path):
        self.activate()
        return self.capture(path)


class RecordingAssembler:
    """Stands in for PDFAssembler; remembers the shape of every page it was given."""

    def __init__(self):
        self.calls = []

    def create(self, image_paths, output_path, quality=None):
        shapes = [cv2.imread(str(p), cv2.IMREAD_COLOR).shape for p in image_paths]
        self.calls.append({"shapes": shapes, "output_path": Path(output_path), "quality": quality})
        Path(output_path).write_bytes(b"%PDF-1.4\n% recorded\n")
        return Path(output_path)


class RecordingPlayer:
    def __init__(self):
        self.played = []

    def play_success(self):
        self.played.append("success")

    def play_error(self):
        self.played.append("error")


@pytest.fixture
def fast_retry():
    """Retry policy without backoff sleeps."""
    return RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0, multiplier=2.0)


@pytest.fixture
def book_pages():
    """Three distinct pages followed by an end-of-book screen."""
    return [block_page(0), block_page(60), block_page(120), block_page(180)]


@pytest.fixture
def book(book_pages):
    return FakeBook(book_pages)


@pytest.fixture
def session(tmp_path):
    root = tmp_path / "sessions"
    root.mkdir()
    s = CaptureSession(tail_size=5, temp_root=str(root))
    yield s
    s.close()


@pytest.fixture
def session_factory(tmp_path):
    """Build sessions with a custom tail size; all are closed after the test."""
    root = tmp_path / "sessions"
    root.mkdir(exist_ok=True)
    created = []

    def make(tail_size=5):
        s = CaptureSession(tail_size=tail_size, temp_root=str(root))
        created.append(s)
        return s

    yield make
    for s in created:
        s.close()
