from abc import ABC, abstractmethod
from enum import Enum


class Direction(Enum):
    """Simulated input that turns pages; which one moves forward is detected per session."""

    FORWARD = "forward"
    REVERSE = "reverse"


class AutomationDriver(ABC):
    """
    Narrow interface to the reader application.

    Queries raise AutomationError (transient) when the platform bridge
    itself fails. advance_page() must raise ForegroundLostError when the
    reader is not frontmost instead of sending input anyway.
    """

    @abstractmethod
    def is_target_running(self) -> bool:
        ...

    @abstractmethod
    def is_content_open(self) -> bool:
        ...

    @abstractmethod
    def is_target_foreground(self) -> bool:
        ...

    @abstractmethod
    def activate(self):
        """Bring the reader to the front."""

    @abstractmethod
    def advance_page(self, direction: Direction):
        """Send one page-turn input in ``direction``."""
