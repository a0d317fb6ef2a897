import logging
from dataclasses import dataclass, field
from typing import List, Optional

from k2p.automation.base import AutomationDriver, Direction
from k2p.cancellation import CancellationToken
from k2p.capture.base import Capturer
from k2p.errors import DirectionUndetectableError, K2PError
from k2p.fsm import DirectionFSM
from k2p.pipeline.metrics import PageImage, load_page, similarity
from k2p.pipeline.retry import RetryConfig, run_with_retry
from k2p.pipeline.session import CaptureSession


@dataclass
class ProbeResult:
    direction: Direction
    pages: List[PageImage] = field(default_factory=list)  # baseline + the first changed capture
    captures: int = 0                                      # captures taken after the baseline


class DirectionProbe:
    """
    Finds out which input actually turns pages forward.

    Takes a baseline screenshot, then presses "forward" up to ``presses``
    times, capturing after each press. The first capture that differs from
    its predecessor confirms the direction. If forward never changes the
    screen, the same is tried with "reverse". If neither does, the reader
    is not reacting to simulated input at all and the session cannot
    continue.

    Captures identical to the baseline are deleted; the baseline and the
    changed capture are returned so the session can keep them as its first
    two pages.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        capturer: Capturer,
        session: CaptureSession,
        token: Optional[CancellationToken] = None,
        retry: RetryConfig = RetryConfig(),
        presses: int = 3,
        threshold: float = 0.90,
        page_delay: float = 0.5,
    ):
        self.log = logging.getLogger("DirectionProbe")

        self.driver = driver
        self.capturer = capturer
        self.session = session
        self.token = token or CancellationToken()
        self.retry = retry
        self.presses = presses
        self.threshold = threshold
        self.page_delay = page_delay

        self.baseline: Optional[PageImage] = None
        self.result: Optional[ProbeResult] = None
        self.error: Optional[BaseException] = None
        self.captures = 0

        self.fsm = DirectionFSM(callbacks={
            "on_enter_probing_forward": self._on_enter_probing_forward,
            "on_enter_probing_reverse": self._on_enter_probing_reverse,
            "on_enter_confirmed": self._on_enter_confirmed,
            "on_enter_failed": self._on_enter_failed,
        })

    # ----------------------------------------------------------------------
    # EXTERNAL CALLS (retry-protected)
    # ----------------------------------------------------------------------

    def _capture(self, prefix: str, activate: bool = False) -> PageImage:
        path = self.session.new_page_path(prefix)
        grab = self.capturer.capture_with_activation if activate else self.capturer.capture
        run_with_retry(lambda: grab(path), self.retry, self.token, operation=f"capture {path.name}")
        return load_page(path)

    def _press(self, direction: Direction):
        run_with_retry(
            lambda: self.driver.advance_page(direction),
            self.retry,
            self.token,
            operation=f"{direction.value} page turn",
        )

    # ----------------------------------------------------------------------
    # PROBING
    # ----------------------------------------------------------------------

    def _try_direction(self, direction: Direction) -> Optional[PageImage]:
        """
        Press ``direction`` until the screen changes.

        :return: the first changed capture, or None if nothing changed.
        """
        previous = self.baseline
        for press in range(1, self.presses + 1):
            self._press(direction)
            self.token.sleep(self.page_delay, operation="direction probe")

            current = self._capture(f"detect_{direction.value}")
            self.captures += 1

            result = similarity(previous, current)
            if not result.comparable:
                self.log.warning(f"{direction.value} {press}: screen size changed, treating as a page turn")
            self.log.info(f"{direction.value} {press}/{self.presses}: {result.score:.2%} similar to previous")

            if result.score < self.threshold:
                return current

            self.session.discard(current.path)
            previous = current
        return None

    def _probe(self, direction: Direction):
        try:
            changed = self._try_direction(direction)
        except K2PError as e:
            self.error = e
            self.fsm.abort()
            return

        if changed is not None:
            self.result = ProbeResult(direction=direction, pages=[self.baseline, changed], captures=self.captures)
            self.fsm.changed()
        else:
            self.log.info(f"{direction.value} input did not change the page")
            self.fsm.unchanged()

    def _on_enter_probing_forward(self):
        self._probe(Direction.FORWARD)

    def _on_enter_probing_reverse(self):
        self._probe(Direction.REVERSE)

    def _on_enter_confirmed(self):
        self.log.info(f"Direction detected: {self.result.direction.value} (after {self.result.captures} captures)")

    def _on_enter_failed(self):
        if self.error is None:
            self.error = DirectionUndetectableError(
                "Could not detect page turn direction: neither forward nor reverse input changed the page. "
                "Is the book open and does the reader accept keyboard input?"
            )
        self.session.discard(self.baseline.path)
        self.log.error(f"Direction probe failed: {self.error}")

    # ----------------------------------------------------------------------
    # PUBLIC API
    # ----------------------------------------------------------------------

    def run(self) -> ProbeResult:
        """
        Run the probe once.

        :raises DirectionUndetectableError: neither direction turned the page.
        :raises RetryExhaustedError, PreconditionError, OperationCancelled:
            an external call failed or the session was cancelled.
        """
        self.log.info("Auto-detecting page turn direction...")
        # The baseline is the one capture that brings the reader to the front.
        self.baseline = self._capture("detect_baseline", activate=True)

        self.fsm.start()

        if self.fsm.state == "confirmed":
            return self.result
        raise self.error
