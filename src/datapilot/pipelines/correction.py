"""Generate, verify, re-prompt with the failure: an explicit state machine.

Each attempt asks the provider for a candidate, verifies it (typically by
executing generated code against a sample) and on failure embeds the error
text into the next request. The loop ends in ``SUCCEEDED`` or ``EXHAUSTED``;
cancellation is checked before every attempt and propagates untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, List, Optional, Tuple, Type, TypeVar

from ..errors import DatapilotError, GenerationFailedError
from ..models.retry import CancellationToken, raise_if_cancelled

__all__ = ["AttemptRecord", "CorrectionResult", "CorrectionState", "SelfCorrectingGenerator"]

LOGGER = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")


class CorrectionState(str, Enum):
    ATTEMPTING = "attempting"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class AttemptRecord:
    """Outcome of one attempt; ``error`` is the text fed into the next prompt."""

    attempt: int
    outcome: CorrectionState
    error: Optional[str] = None


@dataclass(slots=True)
class CorrectionResult(Generic[T]):
    value: T
    attempts: int
    history: List[AttemptRecord] = field(default_factory=list)


class SelfCorrectingGenerator(Generic[C, T]):
    """Drive ``generate`` and ``verify`` until success or the attempt ceiling.

    ``generate(feedback)`` receives ``None`` on the first attempt and the
    previous failure, rendered by ``describe_error``, afterwards.
    ``verify(candidate)`` returns the accepted value or raises one of
    ``retry_on``.
    """

    def __init__(
        self,
        name: str,
        *,
        generate: Callable[[Optional[str]], C],
        verify: Callable[[C], T],
        max_attempts: int,
        retry_on: Tuple[Type[Exception], ...] = (DatapilotError,),
        describe_error: Callable[[Exception], str] = str,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.name = name
        self._generate = generate
        self._verify = verify
        self.max_attempts = max_attempts
        self._retry_on = retry_on
        self._describe_error = describe_error
        self.state = CorrectionState.ATTEMPTING
        self.history: List[AttemptRecord] = []

    def run(self, cancel: Optional[CancellationToken] = None) -> CorrectionResult[T]:
        self.state = CorrectionState.ATTEMPTING
        self.history = []
        attempt = 0
        feedback: Optional[str] = None
        candidate: Optional[C] = None
        value: Optional[T] = None
        last_error: Optional[Exception] = None

        while True:
            if self.state is CorrectionState.ATTEMPTING:
                raise_if_cancelled(cancel)
                attempt += 1
                LOGGER.debug("%s: attempt %d/%d", self.name, attempt, self.max_attempts)
                try:
                    candidate = self._generate(feedback)
                except self._retry_on as error:
                    last_error = error
                    self._transition_after_failure(attempt, error)
                else:
                    self.state = CorrectionState.VERIFYING

            elif self.state is CorrectionState.VERIFYING:
                try:
                    value = self._verify(candidate)  # type: ignore[arg-type]
                except self._retry_on as error:
                    last_error = error
                    self._transition_after_failure(attempt, error)
                else:
                    self.history.append(AttemptRecord(attempt, CorrectionState.SUCCEEDED))
                    self.state = CorrectionState.SUCCEEDED

            elif self.state is CorrectionState.RETRYING:
                feedback = self._describe_error(last_error)  # type: ignore[arg-type]
                self.state = CorrectionState.ATTEMPTING

            elif self.state is CorrectionState.SUCCEEDED:
                LOGGER.debug("%s: succeeded after %d attempt(s)", self.name, attempt)
                return CorrectionResult(value=value, attempts=attempt, history=list(self.history))  # type: ignore[arg-type]

            else:
                message = f"{self.name} failed after {attempt} attempt(s). Last error: {last_error}"
                raise GenerationFailedError(message, attempts=attempt, last_error=last_error) from last_error

    def _transition_after_failure(self, attempt: int, error: Exception) -> None:
        exhausted = attempt >= self.max_attempts
        outcome = CorrectionState.EXHAUSTED if exhausted else CorrectionState.RETRYING
        self.history.append(AttemptRecord(attempt, outcome, str(error)))
        LOGGER.warning(
            "%s attempt %d/%d failed%s: %s",
            self.name,
            attempt,
            self.max_attempts,
            "" if exhausted else ", re-prompting with the error",
            error,
        )
        self.state = outcome
