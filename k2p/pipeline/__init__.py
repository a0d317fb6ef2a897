"""
Capture pipeline.

This package contains the components responsible for:
- Comparing screenshots and finding page borders (metrics)
- Retrying flaky external calls with backoff (retry)
- Computing trim margins for a set of pages (margins) and cropping them (crop)
- Owning a session's temporary screenshots (session)
- Detecting which input turns pages forward (direction)
- Managing the capture / end-detection / page-turn loop (controller)
"""

from .metrics import PageImage, Rect, SimilarityResult, content_bounds, load_page, similarity
from .retry import RetryAttempt, RetryConfig, run_with_retry
from .margins import MarginAnalyzer, MarginReport, TrimMargins, aggregate_margins
from .crop import Trimmer
from .session import CaptureSession
from .direction import DirectionProbe, ProbeResult
from .controller import CaptureLoop, CaptureResult


__all__ = [
    "PageImage",
    "Rect",
    "SimilarityResult",
    "content_bounds",
    "load_page",
    "similarity",
    "RetryAttempt",
    "RetryConfig",
    "run_with_retry",
    "MarginAnalyzer",
    "MarginReport",
    "TrimMargins",
    "aggregate_margins",
    "Trimmer",
    "CaptureSession",
    "DirectionProbe",
    "ProbeResult",
    "CaptureLoop",
    "CaptureResult",
]
