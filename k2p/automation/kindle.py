"""Amazon Kindle for macOS driver.

Application state is queried through AppleScript (``osascript``), page
turns are sent as arrow key presses with pyautogui. Requires the
Accessibility permission for the terminal running k2p.

Dependencies (optional at import time): pyautogui
"""

import subprocess
from typing import Dict

from loguru import logger

try:
    import pyautogui
except Exception:
    # pyautogui needs a display at import time; tests and headless hosts run without one.
    pyautogui = None

from k2p.automation.base import AutomationDriver, Direction
from k2p.errors import AutomationError, ForegroundLostError, PreconditionError

PROCESS_NAME = "Kindle"
APPLICATION_NAME = "Amazon Kindle"

# Right arrow turns forward in left-to-right books; vertical / RTL books flip it.
DEFAULT_KEYS: Dict[Direction, str] = {
    Direction.FORWARD: "right",
    Direction.REVERSE: "left",
}

_IS_RUNNING = f"""
tell application "System Events"
    return exists application process "{PROCESS_NAME}"
end tell
"""

_HAS_WINDOW = f"""
tell application "System Events"
    if exists application process "{PROCESS_NAME}" then
        tell process "{PROCESS_NAME}"
            return (count of windows) > 0
        end tell
    else
        return false
    end if
end tell
"""

_IS_FRONTMOST = f"""
tell application "System Events"
    set frontApp to name of first application process whose frontmost is true
    return frontApp is "{PROCESS_NAME}"
end tell
"""

_ACTIVATE = f"""
tell application "{APPLICATION_NAME}"
    activate
end tell
"""


class KindleDriver(AutomationDriver):
    def __init__(self, keys: Dict[Direction, str] = None, timeout: float = 10.0):
        self.keys = dict(keys or DEFAULT_KEYS)
        self.timeout = timeout

    # -------------------- AppleScript bridge --------------------

    def _osascript(self, script: str) -> str:
        try:
            proc = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise AutomationError("osascript not found (k2p drives the macOS Kindle app)") from e
        except subprocess.TimeoutExpired as e:
            raise AutomationError(f"AppleScript timed out after {self.timeout}s") from e

        if proc.returncode != 0:
            raise AutomationError(f"AppleScript error (exit {proc.returncode}): {proc.stderr.strip()}")
        return proc.stdout.strip()

    def _query(self, script: str) -> bool:
        return self._osascript(script) == "true"

    # -------------------- AutomationDriver --------------------

    def is_target_running(self) -> bool:
        return self._query(_IS_RUNNING)

    def is_content_open(self) -> bool:
        return self._query(_HAS_WINDOW)

    def is_target_foreground(self) -> bool:
        return self._query(_IS_FRONTMOST)

    def activate(self):
        logger.debug(f"Activating {APPLICATION_NAME}")
        self._osascript(_ACTIVATE)

    def advance_page(self, direction: Direction):
        if pyautogui is None:
            raise PreconditionError(
                "pyautogui is not available: install it and grant Accessibility permission to this terminal"
            )

        # Never send keys unless Kindle is frontmost; they would hit another app.
        if not self.is_target_foreground():
            raise ForegroundLostError(
                "Kindle is not in the foreground - stopping to avoid sending keys to another application"
            )

        key = self.keys[direction]
        logger.debug(f"Pressing '{key}' ({direction.value})")
        try:
            pyautogui.press(key)
        except pyautogui.FailSafeException as e:
            raise ForegroundLostError("pyautogui fail-safe triggered (mouse moved to a screen corner)") from e
        except Exception as e:
            raise AutomationError(f"Failed to press '{key}': {e}") from e
