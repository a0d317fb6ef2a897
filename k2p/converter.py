import logging
import math
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from k2p.automation.base import AutomationDriver, Direction
from k2p.cancellation import CancellationToken
from k2p.capture.base import Capturer
from k2p.config import ConversionOptions
from k2p.errors import K2PError, OperationCancelled, PreconditionError, ResourceError
from k2p.notify import SilentPlayer
from k2p.pdf import PDFAssembler, PDFQuality
from k2p.pipeline import CaptureLoop, CaptureSession, Trimmer, TrimMargins, aggregate_margins
from k2p.pipeline.retry import run_with_retry

MB = 1024 * 1024


@dataclass
class ConversionResult:
    page_count: int
    direction: Direction
    state: str
    output_path: Optional[Path] = None                          # None in detect mode
    margins: Optional[TrimMargins] = None                       # detect mode only
    per_page_margins: List[TrimMargins] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    duration: float = 0.0
    file_size: int = 0


class Converter:
    """
    Runs a whole conversion: checks, capture session, trimming, PDF.

    Everything that can be checked before touching the reader (options,
    output location, disk space, reader state) is checked first, so a bad
    setup never wastes a capture run. The session's screenshots are
    removed on every exit path.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        capturer: Capturer,
        assembler: PDFAssembler = None,
        player=None,
        temp_root: Optional[str] = None,
    ):
        self.log = logging.getLogger("Converter")
        self.driver = driver
        self.capturer = capturer
        self.assembler = assembler or PDFAssembler()
        self.player = player or SilentPlayer()
        self.temp_root = temp_root

    # ----------------------------------------------------------------------
    # CHECKS
    # ----------------------------------------------------------------------

    def validate_target(self, options: ConversionOptions, token: CancellationToken):
        """Fail with an actionable message unless Kindle is running, has a book open and is frontmost."""
        self.log.info("Checking Kindle app state...")

        def query(fn, what):
            return run_with_retry(fn, options.retry, token, operation=f"check {what}")

        if not query(self.driver.is_target_running, "Kindle running"):
            raise PreconditionError("Kindle app is not running. Please start Kindle and open a book")
        if not query(self.driver.is_content_open, "book open"):
            raise PreconditionError("No book is currently open in Kindle. Please open a book and try again")
        if not query(self.driver.is_target_foreground, "Kindle foreground"):
            raise PreconditionError(
                "Kindle app is not in the foreground. Please bring Kindle to the front and try again"
            )
        self.log.info("Kindle app is ready")

    def _check_free_space(self, directory: Path, options: ConversionOptions):
        needed = options.min_free_mb * MB
        try:
            free = shutil.disk_usage(directory).free
        except OSError as e:
            raise ResourceError(f"Failed to get filesystem stats for {directory}: {e}") from e
        if free < needed:
            raise ResourceError(
                f"Insufficient disk space in {directory}: need {needed // MB} MB, only {free // MB} MB available"
            )

    def prepare_output(self, options: ConversionOptions) -> Path:
        """Resolve, create and check the output directory; return the PDF path to write."""
        out_dir = Path(options.output_dir or os.getcwd()).expanduser()
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Failed to create output directory {out_dir}: {e}") from e

        if not out_dir.is_dir():
            raise ResourceError(f"Output path is not a directory: {out_dir}")
        if not os.access(out_dir, os.W_OK):
            raise ResourceError(f"No write permission for directory: {out_dir}")

        self._check_free_space(out_dir, options)

        output_path = out_dir / f"kindle_book_{time.strftime('%Y%m%d-%H%M%S')}.pdf"
        if output_path.exists() and not options.overwrite:
            raise ResourceError(f"File already exists: {output_path} (use --yes to overwrite)")
        return output_path

    # ----------------------------------------------------------------------
    # STEPS
    # ----------------------------------------------------------------------

    def _startup_delay(self, options: ConversionOptions, token: CancellationToken):
        if options.startup_delay <= 0:
            return
        if not options.show_countdown:
            token.sleep(options.startup_delay, operation="startup delay")
            return

        print("Starting in ", end="", flush=True)
        remaining = options.startup_delay
        while remaining > 0:
            print(f"{math.ceil(remaining)}...", end="", flush=True)
            tick = min(1.0, remaining)
            token.sleep(tick, operation="startup delay")
            remaining -= tick
        print("Go!")

    def _trim_pages(self, pages: List[Path], options: ConversionOptions, session: CaptureSession) -> List[Path]:
        if options.has_custom_trim:
            self.log.info(f"Applying custom trimming to {len(pages)} pages ({options.trim})")
            trimmer, auto = Trimmer(options.trim), False
        elif options.auto_trim:
            self.log.info(f"Trimming borders of {len(pages)} pages")
            trimmer, auto = Trimmer(), True
        else:
            return pages

        trimmed = []
        for number, page in enumerate(pages, start=1):
            try:
                trimmed.append(trimmer.trim_file(page, session.new_page_path("trimmed"), auto=auto))
            except K2PError as e:
                session.warn(f"Failed to trim page {number}, using original: {e}")
                trimmed.append(page)
        return trimmed

    # ----------------------------------------------------------------------
    # PUBLIC API
    # ----------------------------------------------------------------------

    def convert(self, options: ConversionOptions, token: CancellationToken = None) -> ConversionResult:
        """
        Convert the book currently open in Kindle.

        :raises OperationCancelled: the token fired; nothing is left on disk.
        :raises K2PError: precondition, resource, capture or assembly failure.
        """
        token = token or CancellationToken()
        options.validate()
        started = time.monotonic()

        output_path = self.prepare_output(options) if options.mode == "generate" else None
        self._check_free_space(Path(self.temp_root or tempfile.gettempdir()), options)

        try:
            self._startup_delay(options, token)
            self.validate_target(options, token)

            with CaptureSession(tail_size=options.end_window, temp_root=self.temp_root) as session:
                loop = CaptureLoop(
                    self.driver,
                    self.capturer,
                    session,
                    token=token,
                    direction=None if options.direction == "auto" else Direction(options.direction),
                    page_delay=options.page_delay,
                    max_pages=options.max_pages,
                    end_window=options.end_window,
                    end_threshold=options.end_threshold,
                    direction_threshold=options.direction_threshold,
                    probe_presses=options.probe_presses,
                    retry=options.retry,
                    analyze_margins=options.mode == "detect",
                )
                capture = loop.run()
                self.log.info(f"Captured {capture.page_count} pages")

                result = ConversionResult(
                    page_count=capture.page_count,
                    direction=capture.direction,
                    state=capture.state,
                )

                if options.mode == "detect":
                    result.per_page_margins = capture.margins
                    result.margins = aggregate_margins(capture.margins)
                else:
                    pages = self._trim_pages(capture.page_paths, options, session)
                    result.output_path = self.assembler.create(pages, output_path, PDFQuality(options.pdf_quality))
                    result.file_size = result.output_path.stat().st_size

                result.warnings = list(session.warnings)
        except OperationCancelled:
            self.log.warning("Conversion cancelled, temporary files removed")
            raise
        except K2PError:
            self.player.play_error()
            raise

        result.duration = time.monotonic() - started
        self.player.play_success()
        return result
