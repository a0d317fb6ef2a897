import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from k2p.cancellation import CancellationToken
from k2p.errors import OperationCancelled, RetryExhaustedError, TransientError

T = TypeVar("T")

log = logging.getLogger("RetryPolicy")


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 0.1   # seconds
    max_delay: float = 2.0       # seconds
    multiplier: float = 2.0


@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt, as reported to ``on_retry`` hooks."""

    attempt_number: int
    last_error: BaseException
    next_delay: Optional[float]  # None after the final attempt


def backoff_delays(config: RetryConfig):
    """Yield the sleep before attempt 2, 3, ... capped at ``max_delay``."""
    delay = config.initial_delay
    for _ in range(config.max_attempts - 1):
        yield min(delay, config.max_delay)
        delay = min(delay * config.multiplier, config.max_delay)


def run_with_retry(
    fn: Callable[[], T],
    config: RetryConfig = RetryConfig(),
    token: Optional[CancellationToken] = None,
    operation: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    on_retry: Optional[Callable[[RetryAttempt], None]] = None,
) -> T:
    """
    Call ``fn`` until it succeeds, at most ``config.max_attempts`` times.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates unchanged on the first occurrence. Cancellation is checked
    before every attempt and during every backoff sleep.

    :raises OperationCancelled: the token fired.
    :raises RetryExhaustedError: every attempt failed with a retryable error.
    """
    token = token or CancellationToken()
    delays = backoff_delays(config)
    last_error: Optional[BaseException] = None

    for attempt in range(1, config.max_attempts + 1):
        token.raise_if_cancelled(operation)

        try:
            return fn()
        except retry_on as e:
            last_error = e

        next_delay = next(delays, None)
        record = RetryAttempt(attempt_number=attempt, last_error=last_error, next_delay=next_delay)
        if on_retry is not None:
            on_retry(record)

        if next_delay is None:
            break

        log.warning(
            f"{operation} failed (attempt {attempt}/{config.max_attempts}): {last_error}; "
            f"retrying in {next_delay:.2f}s"
        )
        if token.wait(next_delay):
            raise OperationCancelled(f"{operation} cancelled while waiting to retry") from last_error

    raise RetryExhaustedError(operation, config.max_attempts, last_error) from last_error
