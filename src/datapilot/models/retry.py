"""Fixed-delay retry policy and cooperative cancellation shared by every call site."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import OperationCancelledError

__all__ = ["CancellationToken", "RetryPolicy", "raise_if_cancelled"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Boolean-settable cancellation handle passed through public entry points."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True when woken by a cancellation."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


def raise_if_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise ``OperationCancelledError`` when ``token`` has been cancelled."""
    if token is not None:
        token.raise_if_cancelled()


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry a single provider request a fixed number of times with a fixed delay."""

    max_attempts: int = 2
    delay: float = 0.5
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must not be negative")

    def run(
        self,
        operation: Callable[[], T],
        *,
        cancel: Optional[CancellationToken] = None,
        label: str = "request",
    ) -> T:
        """Invoke ``operation`` until it succeeds or the attempt ceiling is hit.

        Cancellation is checked before each attempt and before each backoff
        delay; a cancelled delay raises immediately instead of sleeping out.
        The final failure is re-raised unchanged.
        """
        for attempt in range(1, self.max_attempts + 1):
            raise_if_cancelled(cancel)
            try:
                return operation()
            except OperationCancelledError:
                raise
            except self.retry_on as error:
                if cancel is not None and cancel.cancelled:
                    raise OperationCancelledError() from error
                if attempt >= self.max_attempts:
                    raise
                LOGGER.warning(
                    "%s failed, retrying (%d/%d): %s",
                    label,
                    attempt,
                    self.max_attempts,
                    error,
                )
                raise_if_cancelled(cancel)
                if cancel is not None:
                    if cancel.wait(self.delay):
                        raise OperationCancelledError() from error
                elif self.delay:
                    time.sleep(self.delay)
        raise AssertionError("unreachable")  # pragma: no cover
