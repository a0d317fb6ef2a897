import logging
import signal
import threading
from typing import Callable, Optional

from k2p.errors import OperationCancelled


class CancellationToken:
    """
    Cooperative cancellation signal shared by one conversion session.

    Every blocking point of the pipeline (external calls, retry backoff,
    page delays) checks the token, so a cancel() from a signal handler or
    another thread stops the session within one wait tick.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled"):
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """
        Sleep for up to ``timeout`` seconds.

        :return: True if the token was cancelled before or during the wait.
        """
        if timeout <= 0:
            return self._event.is_set()
        return self._event.wait(timeout)

    def sleep(self, timeout: float, operation: str = "wait"):
        """Like wait(), but raises OperationCancelled instead of returning True."""
        if self.wait(timeout):
            raise OperationCancelled(f"{operation} interrupted: {self.reason}")

    def raise_if_cancelled(self, operation: str = "operation"):
        if self._event.is_set():
            raise OperationCancelled(f"{operation} not started: {self.reason}")


def install_signal_handlers(token: CancellationToken) -> Callable[[], None]:
    """
    Route SIGINT / SIGTERM to ``token.cancel``.

    Must be called from the main thread.

    :return: a function restoring the previous handlers.
    """
    log = logging.getLogger("Cancellation")
    previous = {}

    def _handler(signum, frame):
        name = signal.Signals(signum).name
        log.warning(f"Received {name}, stopping after the current step...")
        token.cancel(f"received {name}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)

    def restore():
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return restore
