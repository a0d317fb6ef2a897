from abc import ABC, abstractmethod


class Capturer(ABC):
    """
    Writes a full-screen raster image to a path.

    Failures of the grab itself raise CaptureError (transient); a reader
    that lost the foreground raises ForegroundLostError.
    """

    @abstractmethod
    def capture(self, path):
        """Fast path: assumes the reader already holds the foreground."""

    @abstractmethod
    def capture_with_activation(self, path):
        """Slow path: bring the reader to the front first. Used once per session."""
