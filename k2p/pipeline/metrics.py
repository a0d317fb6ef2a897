import math
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

import cv2
import numpy as np

from k2p.errors import ImageLoadError

# Per-channel difference (0-255) under which two pixels count as equal.
CHANNEL_TOLERANCE = 30

# Number of grid samples similarity() aims for, independent of resolution.
TARGET_SAMPLES = 10_000

# Corner classification thresholds for border detection.
BLACK_MAX = 50
WHITE_MIN = 200

# Share of a row/column that must be border colored for it to be removable.
REMOVABLE_RATIO = 0.95

# Longest run of noisy rows/columns (scrollbars, hairlines) bridged while scanning.
MAX_GAP = 5


@dataclass(frozen=True)
class PageImage:
    """A decoded screenshot (BGR, alpha dropped) and the file it came from."""

    path: Path
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]


class SimilarityResult(NamedTuple):
    """
    Outcome of comparing two images.

    ``comparable`` is False when the images have different dimensions; the
    score is then 0.0 and must not be read as "very different content".
    """

    score: float
    comparable: bool = True


class Rect(NamedTuple):
    """Pixel rectangle, right/bottom exclusive."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top


def load_page(path) -> PageImage:
    path = Path(path)
    pixels = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if pixels is None:
        raise ImageLoadError(f"Failed to read image: {path}")
    return PageImage(path=path, pixels=pixels)


def _pixels(image) -> np.ndarray:
    arr = image.pixels if isinstance(image, PageImage) else image
    if arr is None or arr.size == 0:
        raise ImageLoadError("Empty image")
    if arr.ndim == 2:
        arr = arr[:, :, np.newaxis]
    # Drop alpha; only color channels take part in comparisons.
    return arr[:, :, :3]


def sample_stride(height: int, width: int, target_samples: int = TARGET_SAMPLES) -> int:
    """Grid stride giving roughly ``target_samples`` sampled pixels."""
    return max(1, int(math.sqrt((height * width) / max(1, target_samples))))


# ----------------------------------------------------------------------
# SIMILARITY
# ----------------------------------------------------------------------

def similarity(a, b, tolerance: int = CHANNEL_TOLERANCE, target_samples: int = TARGET_SAMPLES) -> SimilarityResult:
    """
    Share of sampled pixels whose every color channel differs by at most
    ``tolerance``.

    Accepts PageImage instances or raw arrays. Symmetric and deterministic.
    """
    pa = _pixels(a)
    pb = _pixels(b)

    if pa.shape != pb.shape:
        return SimilarityResult(0.0, comparable=False)

    h, w = pa.shape[:2]
    stride = sample_stride(h, w, target_samples)

    sa = pa[::stride, ::stride].astype(np.int16)
    sb = pb[::stride, ::stride].astype(np.int16)

    matching = np.all(np.abs(sa - sb) <= tolerance, axis=2)
    return SimilarityResult(float(matching.mean()))


# ----------------------------------------------------------------------
# BORDER ANALYSIS
# ----------------------------------------------------------------------

def border_mode(image):
    """
    Classify the four corners and return "black", "white" or None.

    At least three corners must agree; anything else means there is no
    uniform border to remove.
    """
    px = _pixels(image)
    h, w = px.shape[:2]
    corners = [px[0, 0], px[0, w - 1], px[h - 1, 0], px[h - 1, w - 1]]

    black = sum(1 for c in corners if np.all(c < BLACK_MAX))
    white = sum(1 for c in corners if np.all(c > WHITE_MIN))

    if black >= 3:
        return "black"
    if white >= 3:
        return "white"
    return None


def _border_mask(px: np.ndarray, mode: str) -> np.ndarray:
    if mode == "black":
        return np.all(px < BLACK_MAX, axis=2)
    return np.all(px > WHITE_MIN, axis=2)


def _scan(removable: np.ndarray, max_gap: int) -> int:
    """
    Count leading removable lines, bridging short noisy runs.

    A run of at most ``max_gap`` non-removable lines is skipped when the
    ``max_gap`` lines right behind it are all removable.
    """
    n = len(removable)
    i = 0
    while i < n:
        if removable[i]:
            i += 1
            continue

        bridged = False
        for gap in range(1, max_gap + 1):
            start = i + gap
            end = start + max_gap
            if end > n:
                break
            if removable[start:end].all():
                i = start
                bridged = True
                break

        if not bridged:
            break
    return i


def content_bounds(image, ratio: float = REMOVABLE_RATIO, max_gap: int = MAX_GAP) -> Rect:
    """
    Tightest rectangle that excludes a uniform black or white border.

    Returns the full image bounds when there is no clear border color or
    when the border would swallow the whole image. Each margin is kept
    below half the shorter image side.
    """
    px = _pixels(image)
    h, w = px.shape[:2]
    full = Rect(0, 0, w, h)

    mode = border_mode(px)
    if mode is None:
        return full

    mask = _border_mask(px, mode)
    rows = mask.mean(axis=1) >= ratio
    cols = mask.mean(axis=0) >= ratio

    top = _scan(rows, max_gap)
    bottom = h - _scan(rows[::-1], max_gap)
    left = _scan(cols, max_gap)
    right = w - _scan(cols[::-1], max_gap)

    if top >= bottom or left >= right:
        return full

    limit = (min(h, w) - 1) // 2
    return Rect(
        left=min(left, limit),
        top=min(top, limit),
        right=max(right, w - limit),
        bottom=max(bottom, h - limit),
    )
