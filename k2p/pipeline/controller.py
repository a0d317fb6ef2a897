import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from k2p.automation.base import AutomationDriver, Direction
from k2p.cancellation import CancellationToken
from k2p.capture.base import Capturer
from k2p.errors import K2PError, OperationCancelled
from k2p.fsm import SessionFSM
from k2p.pipeline.direction import DirectionProbe
from k2p.pipeline.margins import MarginAnalyzer, TrimMargins
from k2p.pipeline.metrics import PageImage, load_page, similarity
from k2p.pipeline.retry import RetryConfig, run_with_retry
from k2p.pipeline.session import CaptureSession


@dataclass
class CaptureResult:
    state: str                                   # end_detected | page_limit_reached
    direction: Direction
    page_paths: List[Path] = field(default_factory=list)
    margins: List[TrimMargins] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.page_paths)


class CaptureLoop:
    """
    Drives one capture session:
    - Resolves the page-turn direction (probe or configuration)
    - Captures the displayed page
    - Detects the end of the book on the tail window
    - Turns the page and waits for the reader to render it
    - Stops at the end of the book, at the page ceiling, or on failure

    Each step is an on_enter callback of SessionFSM (see fsm/states.yaml).
    """

    def __init__(
        self,
        driver: AutomationDriver,
        capturer: Capturer,
        session: CaptureSession,
        token: CancellationToken = None,
        direction: Optional[Direction] = None,
        page_delay: float = 0.5,
        max_pages: int = 1000,
        end_window: int = 5,
        end_threshold: float = 0.995,
        direction_threshold: float = 0.90,
        probe_presses: int = 3,
        retry: RetryConfig = RetryConfig(),
        analyze_margins: bool = False,
    ):
        """
        :param direction: fixed page-turn direction; None runs the direction probe.
        :param end_window: number of identical trailing pages that mark the end of the book.
        :param analyze_margins: compute per-page trim margins while capturing (detect mode).
        """
        self.log = logging.getLogger("CaptureLoop")

        self.driver = driver
        self.capturer = capturer
        self.session = session
        self.token = token or CancellationToken()

        # Configuration
        self.fixed_direction = direction
        self.page_delay = page_delay
        self.end_window = end_window
        self.end_threshold = end_threshold
        self.direction_threshold = direction_threshold
        self.probe_presses = probe_presses
        self.retry = retry
        self.analyze_margins = analyze_margins

        self.analyzer = MarginAnalyzer()
        self.error: Optional[BaseException] = None
        self._activated = False

        if session.tail.maxlen != end_window:
            raise ValueError(f"session tail holds {session.tail.maxlen} pages, end_window is {end_window}")
        if direction is None and max_pages < 2:
            raise ValueError(f"direction probe keeps two pages, max_pages is {max_pages}")

        # --- FSM ---
        self.fsm = SessionFSM(callbacks=self._fsm_callbacks(), max_pages=max_pages)

    # ----------------------------------------------------------------------
    # FSM CALLBACKS
    # ----------------------------------------------------------------------

    def _fsm_callbacks(self):
        return {
            "on_enter_probing": self._on_enter_probing,
            "on_enter_capturing": self._on_enter_capturing,
            "on_enter_evaluating": self._on_enter_evaluating,
            "on_enter_advancing": self._on_enter_advancing,
            "on_enter_waiting": self._on_enter_waiting,
            "on_enter_end_detected": self._on_enter_end_detected,
            "on_enter_page_limit_reached": self._on_enter_page_limit_reached,
            "on_enter_aborted": self._on_enter_aborted,
        }

    def _fail(self, error: BaseException):
        self.error = error
        self.fsm.abort()

    def _add_page(self, page: PageImage):
        self.session.add_page(page)
        self.fsm.page_count = self.session.page_count

        if self.analyze_margins:
            try:
                margins = self.analyzer.page_margins(page)
            except K2PError as e:
                self.session.warn(f"Failed to calculate margins for page {self.session.page_count}: {e}")
                margins = TrimMargins()
            self.session.margins.append(margins)

    # ----------------------------------------------------------------------
    # ENGINE CALLS FOR EACH STATE
    # ----------------------------------------------------------------------

    def _on_enter_probing(self):
        if self.fixed_direction is not None:
            self.log.info(f"Using configured direction: {self.fixed_direction.value}")
            self.session.set_direction(self.fixed_direction)
            self.fsm.begin_capture()
            return

        probe = DirectionProbe(
            self.driver,
            self.capturer,
            self.session,
            token=self.token,
            retry=self.retry,
            presses=self.probe_presses,
            threshold=self.direction_threshold,
            page_delay=self.page_delay,
        )
        try:
            result = probe.run()
        except K2PError as e:
            self._fail(e)
            return

        self._activated = True
        self.session.set_direction(result.direction)
        for page in result.pages:
            self._add_page(page)
        self.fsm.probe_done()

    def _on_enter_capturing(self):
        number = self.session.page_count + 1
        self.log.info(f"Capturing page {number}...")

        path = self.session.new_page_path()
        # The first capture of a session without probe brings the reader to the front.
        grab = self.capturer.capture if self._activated else self.capturer.capture_with_activation

        try:
            run_with_retry(lambda: grab(path), self.retry, self.token, operation=f"capture page {number}")
            page = load_page(path)
        except K2PError as e:
            self.log.error(f"Failed to capture page {number}: {e}")
            self._fail(e)
            return

        self._activated = True
        self._add_page(page)
        self.fsm.capture_done()

    def _on_enter_evaluating(self):
        if self._is_end_of_book():
            self.log.info(f"Reached end of book (last {self.end_window} pages are identical)")
            dropped = self.session.drop_last(self.end_window)
            self.log.info(f"Removed {len(dropped)} trailing pages (end-of-book screens)")
            self.fsm.end_reached()
        else:
            self.fsm.more_pages()

    def _on_enter_advancing(self):
        direction = self.session.direction
        try:
            run_with_retry(
                lambda: self.driver.advance_page(direction),
                self.retry,
                self.token,
                operation=f"turn page after page {self.session.page_count}",
            )
        except K2PError as e:
            # We cannot know whether the page moved, so the session cannot continue.
            self.log.error(f"Failed to turn page: {e}")
            self._fail(e)
            return

        self.fsm.advance_done()

    def _on_enter_waiting(self):
        if self.token.wait(self.page_delay):
            self._fail(OperationCancelled(f"Capture cancelled after {self.session.page_count} pages"))
            return
        self.fsm.next_page()

    def _on_enter_end_detected(self):
        self.log.info(f"Capture finished: {self.session.page_count} pages")

    def _on_enter_page_limit_reached(self):
        self.session.warn(
            f"Reached maximum page limit ({self.fsm.max_pages}) without detecting the end of the book; "
            "output contains the pages captured so far"
        )

    def _on_enter_aborted(self):
        if isinstance(self.error, OperationCancelled):
            self.log.warning(f"Capture cancelled: {self.error}")
        else:
            self.log.error(f"Capture aborted: {self.error}")

    # ----------------------------------------------------------------------
    # END DETECTION
    # ----------------------------------------------------------------------

    def _is_end_of_book(self) -> bool:
        """All adjacent pairs of a full tail window are near-identical."""
        tail = list(self.session.tail)
        if len(tail) < self.end_window:
            return False

        for prev, curr in zip(tail, tail[1:]):
            result = similarity(prev, curr)
            self.log.debug(f"End check {prev.path.name} vs {curr.path.name}: {result.score:.2%}")
            if not result.comparable or result.score <= self.end_threshold:
                return False
        return True

    # ----------------------------------------------------------------------
    # PUBLIC API
    # ----------------------------------------------------------------------

    def run(self) -> CaptureResult:
        """
        Run the session to a terminal state.

        :raises OperationCancelled: the token fired; pages stay in the session for cleanup.
        :raises K2PError: a fatal precondition, retry or detection error.
        """
        self.fsm.start()

        if self.fsm.state == "aborted":
            raise self.error

        return CaptureResult(
            state=self.fsm.state,
            direction=self.session.direction,
            page_paths=list(self.session.pages),
            margins=list(self.session.margins),
            warnings=list(self.session.warnings),
        )

    def current_state(self):
        return self.fsm.state
