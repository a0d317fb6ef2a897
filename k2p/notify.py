import subprocess

from loguru import logger

SUCCESS_SOUND = "/System/Library/Sounds/Glass.aiff"
ERROR_SOUND = "/System/Library/Sounds/Basso.aiff"


class SoundPlayer:
    """
    Plays macOS system sounds with ``afplay``.

    Playback is fire-and-forget: the process is started and never waited
    for, and a missing player only produces a debug message.
    """

    def __init__(self, command: str = "afplay"):
        self.command = command

    def _play(self, sound: str):
        try:
            subprocess.Popen(
                [self.command, sound],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Could not play {sound}: {e}")

    def play_success(self):
        self._play(SUCCESS_SOUND)

    def play_error(self):
        self._play(ERROR_SOUND)


class SilentPlayer:
    """Sound player that does nothing (sound disabled, tests)."""

    def play_success(self):
        pass

    def play_error(self):
        pass
