import logging
import shutil
import tempfile
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from k2p.automation.base import Direction
from k2p.pipeline.margins import TrimMargins
from k2p.pipeline.metrics import PageImage


class CaptureSession:
    """
    Everything one conversion owns while it runs.

    The session creates a private temp directory for screenshots and is
    the only party allowed to delete them: dropped trailing pages are
    removed as they are dropped, and close() removes the whole directory
    on success, failure or cancellation alike. Use it as a context manager.

    Only the tail window keeps decoded pixels; the page sequence holds
    file paths so long books do not stay in memory.
    """

    def __init__(self, tail_size: int = 5, temp_root: Optional[str] = None):
        self.log = logging.getLogger("CaptureSession")
        self.temp_dir = Path(tempfile.mkdtemp(prefix="k2p-", dir=temp_root))
        self.pages: List[Path] = []
        self.tail: Deque[PageImage] = deque(maxlen=tail_size)
        self.margins: List[TrimMargins] = []
        self.warnings: List[str] = []
        self.direction: Optional[Direction] = None
        self._counter = 0
        self.log.debug(f"Session directory: {self.temp_dir}")

    # -------------------- Pages --------------------

    def new_page_path(self, prefix: str = "page") -> Path:
        """Unique file path inside the session directory."""
        self._counter += 1
        return self.temp_dir / f"{prefix}_{self._counter:04d}.png"

    def add_page(self, page: PageImage):
        self.pages.append(page.path)
        self.tail.append(page)

    def set_direction(self, direction: Direction):
        if self.direction is not None and self.direction is not direction:
            raise ValueError(f"Direction already resolved as {self.direction.value}")
        self.direction = direction

    def drop_last(self, count: int) -> List[Path]:
        """Remove the newest ``count`` pages from the output and delete their files."""
        count = min(count, len(self.pages))
        if count <= 0:
            return []

        dropped = self.pages[-count:]
        del self.pages[-count:]
        if len(self.margins) > len(self.pages):
            del self.margins[len(self.pages):]
        self.tail.clear()

        for path in dropped:
            path.unlink(missing_ok=True)
        return dropped

    def discard(self, path: Path):
        """Delete a scratch capture that never became a page."""
        Path(path).unlink(missing_ok=True)

    def warn(self, message: str):
        self.log.warning(message)
        self.warnings.append(message)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    # -------------------- Lifetime --------------------

    def close(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            self.log.debug(f"Removed session directory {self.temp_dir}")
        self.tail.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
