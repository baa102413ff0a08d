"""Provider-neutral client base class shared by all language-model integrations."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Optional, Tuple

from ..errors import DatapilotError
from ..schema.dialects import SchemaDefinition, SchemaDialect
from ..transcripts import TranscriptWriter
from .retry import CancellationToken, RetryPolicy, raise_if_cancelled
from .usage import LLMUsage

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMCompletion",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "Transport",
    "resolve_timeout",
]

LOGGER = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any]], str]
UsageCallback = Callable[[LLMUsage], None]


def resolve_timeout(timeout: float) -> float:
    """Return the ``DATAPILOT_TIMEOUT`` override when set to a positive number."""
    override = os.getenv("DATAPILOT_TIMEOUT")
    if override:
        try:
            parsed = float(override)
        except ValueError:
            LOGGER.warning("Ignoring non-numeric DATAPILOT_TIMEOUT=%r", override)
        else:
            if parsed > 0:
                return parsed
    return timeout


class LLMClientError(DatapilotError):
    """Base error raised for provider failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the provider answers successfully but with no usable text."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting the retry ceiling for a single request."""


@dataclass(slots=True)
class LLMRequest:
    """Provider-neutral request; each client renders its own wire payload."""

    prompt: str
    system_prompt: Optional[str] = None
    schema: Optional[SchemaDefinition] = None
    json_mode: bool = False
    operation: str = "request"
    temperature: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LLMCompletion:
    """Raw provider text plus the usage the provider reported."""

    text: str
    usage: Optional[LLMUsage] = None
    attempts: int = 1


class LLMClient:
    """Send requests with fixed-delay retries, cancellation and transcripts.

    Subclasses implement ``build_payload`` and ``_raw_invoke``; the base class
    owns the retry loop so every call site shares one policy object.
    """

    provider: ClassVar[str] = "generic"
    dialect: ClassVar[SchemaDialect] = SchemaDialect.JSON_SCHEMA

    def __init__(
        self,
        model: str,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        transcripts: Optional[TranscriptWriter] = None,
        on_usage: Optional[UsageCallback] = None,
    ) -> None:
        self._model = model
        self._retry_policy = retry_policy or RetryPolicy()
        self._transcripts = transcripts
        self._on_usage = on_usage

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def complete(self, request: LLMRequest, *, cancel: Optional[CancellationToken] = None) -> LLMCompletion:
        """Send ``request`` and return the raw completion text.

        Transport failures and empty responses are retried per the policy;
        exhausting it raises ``LLMRetryError`` chained to the last failure.
        """
        raise_if_cancelled(cancel)
        payload = self.build_payload(request)
        attempts = 0

        def _attempt() -> LLMCompletion:
            nonlocal attempts
            attempts += 1
            raise_if_cancelled(cancel)
            if self._transcripts is not None:
                self._transcripts.write_input(request.operation, payload, attempt=attempts)
            raw: Optional[str] = None
            try:
                raw, usage = self._raw_invoke(payload)
                if not raw or not raw.strip():
                    raise LLMResponseFormatError(f"{self.provider} returned an empty response.")
            except LLMClientError as error:
                if self._transcripts is not None:
                    self._transcripts.write_output(request.operation, raw, attempt=attempts, error=error)
                raise
            if self._transcripts is not None:
                self._transcripts.write_output(request.operation, raw, attempt=attempts)
            if usage is not None:
                usage.operation = request.operation
            return LLMCompletion(text=raw.strip(), usage=usage, attempts=attempts)

        retrying = RetryPolicy(
            max_attempts=self._retry_policy.max_attempts,
            delay=self._retry_policy.delay,
            retry_on=(LLMClientError,),
        )
        try:
            completion = retrying.run(_attempt, cancel=cancel, label=f"{self.provider}:{request.operation}")
        except LLMClientError as error:
            raise LLMRetryError(
                f"{self.provider} request '{request.operation}' failed after {attempts} attempt(s) "
                f"for model {self._model}: {error}"
            ) from error

        if completion.usage is not None and self._on_usage is not None:
            self._on_usage(completion.usage)
        LOGGER.debug(
            "%s request '%s' succeeded after %d attempt(s)",
            self.provider,
            request.operation,
            completion.attempts,
        )
        return completion

    def response_schema(self, request: LLMRequest) -> Optional[Dict[str, Any]]:
        """Return the compiled schema for this client's dialect, if any."""
        if request.schema is None:
            return None
        return request.schema.compile(self.dialect)

    def build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        """Render a transport-ready payload. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement build_payload().")

    def _raw_invoke(self, payload: Dict[str, Any]) -> Tuple[str, Optional[LLMUsage]]:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _decode_json(raw_response: str) -> Any:
        """Decode a provider envelope, returning ``None`` when it is not JSON."""
        try:
            return json.loads(raw_response)
        except json.JSONDecodeError:
            return None
