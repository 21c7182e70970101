"""
Capped exponential backoff shared by every retry loop in the agent.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

T = TypeVar('T')


class BackoffExhausted(Exception):
    """Raised when the next delay would exceed the cap."""

    def __init__(self, last_error: Exception, attempts: int):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class BackoffCancelled(Exception):
    """Raised when the stop event is set while waiting for the next attempt."""

    pass


@dataclass
class Backoff:
    """
    Delay schedule: initial, initial*multiplier, ... while the delay stays
    at or below the cap.

    With the defaults the schedule is 2, 4, 8, ..., 2048; the attempt that
    would wait 4096 seconds is abandoned instead.
    """

    initial: float = 2.0
    multiplier: float = 2.0
    cap: float = 3600.0

    def delays(self) -> Iterator[float]:
        """Yield every delay of one retry chain, in order."""
        delay = self.initial
        while delay <= self.cap:
            yield delay
            delay *= self.multiplier

    def retry(
        self,
        operation: Callable[[], T],
        description: str,
        stop_event: Optional[threading.Event] = None,
        should_retry: Callable[[Exception], bool] = lambda exc: True,
        logger: Optional[logging.Logger] = None,
    ) -> T:
        """
        Call operation until it succeeds, sleeping between failures.

        Args:
            operation: Zero-argument callable to run
            description: Human readable name used in log lines
            stop_event: Event whose wait() is used for sleeping; setting it cancels the chain
            should_retry: Predicate deciding whether an exception is retryable
            logger: Logger for retry lines

        Returns:
            Whatever operation returns on its first success

        Raises:
            BackoffExhausted: when the schedule runs out
            BackoffCancelled: when stop_event is set during a wait
        """
        logger = logger or logging.getLogger('Backoff')
        stop_event = stop_event or threading.Event()
        attempts = 0
        schedule = self.delays()

        while True:
            attempts += 1
            try:
                return operation()
            except Exception as e:
                if not should_retry(e):
                    raise
                delay = next(schedule, None)
                if delay is None:
                    raise BackoffExhausted(e, attempts) from e
                logger.warning(f"Failed to {description} ({e}), retrying in {delay:g}s")
                if stop_event.wait(delay):
                    raise BackoffCancelled(description) from e
