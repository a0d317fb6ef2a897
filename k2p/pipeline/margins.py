import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from k2p.errors import K2PError
from k2p.pipeline.metrics import Rect, content_bounds, load_page


@dataclass(frozen=True)
class TrimMargins:
    """Removable border width per edge, in pixels."""

    top: int = 0
    bottom: int = 0
    left: int = 0
    right: int = 0

    @classmethod
    def from_bounds(cls, bounds: Rect, width: int, height: int) -> "TrimMargins":
        """Distance from each image edge to the matching edge of ``bounds``."""
        return cls(
            top=max(0, bounds.top),
            bottom=max(0, height - bounds.bottom),
            left=max(0, bounds.left),
            right=max(0, width - bounds.right),
        )

    def is_zero(self) -> bool:
        return self.top == 0 and self.bottom == 0 and self.left == 0 and self.right == 0

    def fits(self, width: int, height: int) -> bool:
        """True when cropping with these margins leaves a non-empty image."""
        return self.top + self.bottom < height and self.left + self.right < width

    def __str__(self):
        return f"top={self.top} bottom={self.bottom} left={self.left} right={self.right}"


def aggregate_margins(margins: Iterable[TrimMargins]) -> TrimMargins:
    """
    Per-edge minimum across pages.

    The minimum is the only aggregate that never cuts into content on any
    page. No margins at all means no trimming.
    """
    margins = list(margins)
    if not margins:
        return TrimMargins()
    return TrimMargins(
        top=min(m.top for m in margins),
        bottom=min(m.bottom for m in margins),
        left=min(m.left for m in margins),
        right=min(m.right for m in margins),
    )


@dataclass
class MarginReport:
    aggregate: TrimMargins
    per_page: List[TrimMargins] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class MarginAnalyzer:
    """
    Computes the trim margins that are safe for a whole set of pages.
    Used by detect mode, which reports margins instead of building a PDF.
    """

    def __init__(self):
        self.log = logging.getLogger("MarginAnalyzer")

    def page_margins(self, page) -> TrimMargins:
        """Margins of a single page (PageImage or image path)."""
        if not hasattr(page, "pixels"):
            page = load_page(page)
        bounds = content_bounds(page)
        return TrimMargins.from_bounds(bounds, page.width, page.height)

    def analyze(self, pages: Sequence) -> MarginReport:
        per_page: List[TrimMargins] = []
        warnings: List[str] = []

        for index, page in enumerate(pages, start=1):
            try:
                margins = self.page_margins(page)
            except K2PError as e:
                # Zero margins keep the aggregate conservative for this page.
                msg = f"Failed to calculate margins for page {index}: {e}"
                self.log.warning(msg)
                warnings.append(msg)
                margins = TrimMargins()
            per_page.append(margins)

        aggregate = aggregate_margins(per_page)
        self.log.info(f"Analyzed {len(per_page)} pages, minimum margins: {aggregate}")
        return MarginReport(aggregate=aggregate, per_page=per_page, warnings=warnings)
