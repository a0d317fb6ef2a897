"""
Error taxonomy shared by the capture pipeline and its collaborators.

Collaborators raise typed errors; the pipeline decides what to retry by
type alone:

- PreconditionError: the reader is not in a state we may drive. Fatal.
- TransientError: a single capture or input call failed. Retried.
- RetryExhaustedError: a transient failure outlived its retry budget. Fatal.
- DirectionUndetectableError: neither input direction turns pages. Fatal.
- ResourceError: disk space or output path problems. Fatal, checked early.
- OperationCancelled: the user asked us to stop. Not a failure.
"""

from typing import Optional


class K2PError(Exception):
    """Base class for every error raised by k2p."""


class ConfigError(K2PError, ValueError):
    """Invalid configuration value or unreadable config file."""


class PreconditionError(K2PError):
    """The target application is not ready to be automated."""


class ForegroundLostError(PreconditionError):
    """The reader is no longer the frontmost application.

    Input must never be sent in this state, it would land in whatever
    application took focus.
    """


class TransientError(K2PError):
    """A single external call failed and may succeed if repeated."""


class CaptureError(TransientError):
    """Taking or writing a screenshot failed."""


class AutomationError(TransientError):
    """Querying or driving the reader application failed."""


class ImageLoadError(K2PError):
    """An image file could not be decoded."""


class RetryExhaustedError(K2PError):
    """An operation kept failing after every allowed attempt."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


class DirectionUndetectableError(K2PError):
    """Neither forward nor reverse input changed the displayed page."""


class ResourceError(K2PError):
    """Output location or disk space is unusable."""


class AssemblyError(K2PError):
    """Building the PDF from captured pages failed."""


class OperationCancelled(K2PError):
    """The session was cancelled through its cancellation token."""
