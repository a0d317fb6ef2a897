from pathlib import Path

import cv2
import numpy as np

from k2p.errors import ImageLoadError
from k2p.pipeline.margins import TrimMargins
from k2p.pipeline.metrics import Rect, content_bounds


class Trimmer:
    """
    Removes page borders from captured screenshots.

    Works either with fixed margins (from detect mode or the command line)
    or, when no margins are configured, with the per-page border detection
    of ``content_bounds``.
    """

    def __init__(self, margins: TrimMargins = None):
        self.margins = margins or TrimMargins()

    def update_margins(self, margins: TrimMargins):
        """Allows dynamic runtime reconfiguration."""
        self.margins = margins

    def crop(self, frame: np.ndarray) -> np.ndarray:
        """
        Crop the frame by the configured margins.
        If the margins do not fit the frame, returns the original frame.
        """
        if frame is None or frame.size == 0:
            return frame

        if self.margins.is_zero():
            return frame

        h, w = frame.shape[:2]
        if not self.margins.fits(w, h):
            return frame

        m = self.margins
        return frame[m.top:h - m.bottom, m.left:w - m.right]

    def crop_to(self, frame: np.ndarray, rect: Rect) -> np.ndarray:
        """Crop the frame to ``rect``, clamped to the frame."""
        if frame is None or frame.size == 0:
            return frame

        h, w = frame.shape[:2]
        x1 = max(0, rect.left)
        y1 = max(0, rect.top)
        x2 = min(w, rect.right)
        y2 = min(h, rect.bottom)

        if x1 >= x2 or y1 >= y2:
            return frame

        return frame[y1:y2, x1:x2]

    def trim_auto(self, frame: np.ndarray) -> np.ndarray:
        return self.crop_to(frame, content_bounds(frame))

    def trim_file(self, src, dst, auto: bool = False) -> Path:
        """
        Write a trimmed copy of ``src`` to ``dst``.

        :param auto: detect the border per page instead of using fixed margins.
        :raises ImageLoadError: the source cannot be read or the result cannot be written.
        """
        src, dst = Path(src), Path(dst)
        frame = cv2.imread(str(src), cv2.IMREAD_COLOR)
        if frame is None:
            raise ImageLoadError(f"Failed to read image: {src}")

        trimmed = self.trim_auto(frame) if auto else self.crop(frame)

        if not cv2.imwrite(str(dst), trimmed):
            raise ImageLoadError(f"Failed to write trimmed image: {dst}")
        return dst

