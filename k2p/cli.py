"""Command line entry point.

Usage:
    k2p                                  # capture the open book into kindle_book_<timestamp>.pdf
    k2p --mode detect                    # report safe trim margins, no PDF
    k2p --trim-top 40 --trim-bottom 40   # generate with fixed margins
    k2p --config ~/.k2p.yaml --log-level debug

Before running: start Kindle, open the book on the first page to capture,
and keep Kindle in the foreground (full screen works best).
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from loguru import logger

from k2p.automation import KindleDriver
from k2p.cancellation import CancellationToken, install_signal_handlers
from k2p.capture import ScreenCapturer
from k2p.config import DEFAULT_CONFIG_PATH, DIRECTIONS, MODES, PDF_QUALITIES, load_config, merge_options
from k2p.converter import ConversionResult, Converter
from k2p.errors import K2PError, OperationCancelled
from k2p.notify import SilentPlayer, SoundPlayer

LOGGER = logging.getLogger("k2p")
LOG_LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="k2p",
        description="Capture the book open in Kindle for macOS into a PDF",
    )
    parser.add_argument("--config", help=f"YAML config file (default: {DEFAULT_CONFIG_PATH} if present)")
    parser.add_argument("-o", "--output-dir", help="Directory for the PDF (default: current directory)")
    parser.add_argument("--mode", choices=MODES, help="generate a PDF, or detect safe trim margins")
    parser.add_argument("--pdf-quality", choices=PDF_QUALITIES, help="PDF image quality")
    parser.add_argument("--page-delay", type=float, help="Seconds to wait after each page turn")
    parser.add_argument("--startup-delay", type=float, help="Seconds to wait before starting")
    parser.add_argument("--no-countdown", dest="show_countdown", action="store_false", default=None,
                        help="Do not print a countdown during the startup delay")
    parser.add_argument("--direction", choices=DIRECTIONS, help="Page turn direction (auto = detect)")
    parser.add_argument("--trim-top", type=int, help="Pixels to trim from the top (generate mode)")
    parser.add_argument("--trim-bottom", type=int, help="Pixels to trim from the bottom (generate mode)")
    parser.add_argument("--trim-left", type=int, help="Pixels to trim from the left (generate mode)")
    parser.add_argument("--trim-right", type=int, help="Pixels to trim from the right (generate mode)")
    parser.add_argument("--auto-trim", action="store_true", default=None,
                        help="Detect and remove uniform borders on every page")
    parser.add_argument("--max-pages", type=int, help="Safety ceiling for captured pages")
    parser.add_argument("--end-window", type=int, help="Identical trailing pages that mark the end of the book")
    parser.add_argument("--end-threshold", type=float, help="Similarity above which two pages count as identical")
    parser.add_argument("-y", "--yes", dest="overwrite", action="store_true", default=None,
                        help="Overwrite an existing output file")
    parser.add_argument("--no-sound", dest="sound", action="store_false", default=None,
                        help="Do not play a sound when finished")
    parser.add_argument("--log-level", choices=LOG_LEVELS.keys(), default="info", help="Logging verbosity")
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Option overrides for every flag given on the command line."""
    overrides = {
        "output_dir": args.output_dir,
        "mode": args.mode,
        "pdf_quality": args.pdf_quality,
        "page_delay": args.page_delay,
        "startup_delay": args.startup_delay,
        "show_countdown": args.show_countdown,
        "direction": args.direction,
        "auto_trim": args.auto_trim,
        "max_pages": args.max_pages,
        "end_window": args.end_window,
        "end_threshold": args.end_threshold,
        "overwrite": args.overwrite,
        "sound": args.sound,
    }
    trim = {
        "top": args.trim_top,
        "bottom": args.trim_bottom,
        "left": args.trim_left,
        "right": args.trim_right,
    }
    if any(v is not None for v in trim.values()):
        overrides["trim"] = trim
    return overrides


def configure_logging(level: str):
    logging.basicConfig(
        level=LOG_LEVELS[level],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def print_summary(result: ConversionResult, mode: str):
    if mode == "detect":
        m = result.margins
        print("\n=== Margin Analysis Complete ===")
        print(f"Analyzed {result.page_count} pages")
        if LOGGER.isEnabledFor(logging.DEBUG):
            for i, pm in enumerate(result.per_page_margins, start=1):
                print(f"  Page {i:3d}: Top={pm.top:3d} Bottom={pm.bottom:3d} Left={pm.left:3d} Right={pm.right:3d}")
        print("\nMinimum removable margins (safe for all pages):")
        print(f"  Top:    {m.top} pixels")
        print(f"  Bottom: {m.bottom} pixels")
        print(f"  Left:   {m.left} pixels")
        print(f"  Right:  {m.right} pixels")
        print("\nTo generate a PDF with these margins, run:")
        print(f"  k2p --mode generate --trim-top {m.top} --trim-bottom {m.bottom} "
              f"--trim-left {m.left} --trim-right {m.right}")
    else:
        print("\n=== Conversion Complete ===")
        print(f"Output: {result.output_path}")
        print(f"Pages: {result.page_count}")
        print(f"Size: {result.file_size / (1024 * 1024):.2f} MB")

    print(f"Direction: {result.direction.value}")
    print(f"Duration: {result.duration:.0f}s")
    for warning in result.warnings:
        print(f"Warning: {warning}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config_path = args.config
        if config_path is None and DEFAULT_CONFIG_PATH.expanduser().is_file():
            config_path = DEFAULT_CONFIG_PATH
        file_options = load_config(config_path) if config_path else None
        options = merge_options(file_options, overrides_from_args(args))
    except K2PError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    print("=== Kindle to PDF ===")
    print("Please ensure Kindle is running, a book is open on the first page, and Kindle is in the foreground.")

    token = CancellationToken()
    driver = KindleDriver()
    converter = Converter(
        driver,
        ScreenCapturer(driver, token=token),
        player=SoundPlayer() if options.sound else SilentPlayer(),
    )

    restore = install_signal_handlers(token)
    try:
        result = converter.convert(options, token)
    except OperationCancelled:
        print("\nCancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except K2PError as e:
        LOGGER.debug("Conversion failed", exc_info=True)
        print(f"\nError: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        restore()

    print_summary(result, options.mode)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
