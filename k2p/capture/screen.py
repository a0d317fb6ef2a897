"""Full-screen capture with mss.

The Kindle reader is expected to run full screen, so the whole primary
monitor is grabbed and stored as PNG. Cropping to the page happens later
(trim margins), never at capture time, so end-of-book detection always
compares complete screens.
"""

from pathlib import Path

import mss
from mss.exception import ScreenShotError
from loguru import logger
from PIL import Image

from k2p.automation.base import AutomationDriver
from k2p.cancellation import CancellationToken
from k2p.capture.base import Capturer
from k2p.errors import CaptureError, ForegroundLostError


class ScreenCapturer(Capturer):
    def __init__(
        self,
        driver: AutomationDriver,
        monitor: int = 1,
        activation_wait: float = 2.0,
        token: CancellationToken = None,
    ):
        """
        :param driver: used to verify (and on the slow path, obtain) the foreground.
        :param monitor: mss monitor index; 1 is the primary display, 0 all displays.
        :param activation_wait: seconds to let a full-screen Space switch finish.
        :param token: cancels the activation wait.
        """
        self.driver = driver
        self.monitor = monitor
        self.activation_wait = activation_wait
        self.token = token or CancellationToken()

    def _ensure_foreground(self):
        if not self.driver.is_target_foreground():
            raise ForegroundLostError("Kindle is not in the foreground. Please keep Kindle active during conversion")

    def _grab(self, path):
        path = Path(path)
        try:
            with mss.mss() as sct:
                shot = sct.grab(sct.monitors[self.monitor])
                img = Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
            img.save(path, format="PNG", compress_level=1)
        except (ScreenShotError, OSError, IndexError) as e:
            raise CaptureError(f"Failed to capture screenshot to {path}: {e}") from e
        logger.debug(f"Saved screenshot {path.name} ({img.width}x{img.height})")
        return path

    def capture(self, path):
        self._ensure_foreground()
        return self._grab(path)

    def capture_with_activation(self, path):
        logger.info("Activating Kindle and waiting for it to come to front...")
        self.driver.activate()
        self.token.sleep(self.activation_wait, operation="Kindle activation")
        self._ensure_foreground()
        return self._grab(path)
