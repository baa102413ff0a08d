from __future__ import annotations

import threading

import pytest

from datapilot.errors import DatapilotError, OperationCancelledError
from datapilot.models.retry import CancellationToken, RetryPolicy
from datapilot.models.usage import LLMUsage, estimate_cost_usd


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise DatapilotError(f"failure {self.calls}")
        return "ok"


def test_retry_policy_defaults() -> None:
    policy = RetryPolicy()
    assert policy.max_attempts == 2
    assert policy.delay == 0.5


def test_retry_policy_recovers_within_ceiling() -> None:
    operation = Flaky(failures=2)
    assert RetryPolicy(max_attempts=3, delay=0).run(operation) == "ok"
    assert operation.calls == 3


def test_retry_policy_reraises_last_failure() -> None:
    operation = Flaky(failures=5)
    with pytest.raises(DatapilotError, match="failure 2"):
        RetryPolicy(max_attempts=2, delay=0).run(operation)
    assert operation.calls == 2


def test_retry_policy_does_not_retry_foreign_errors() -> None:
    calls = []

    def boom() -> None:
        calls.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        RetryPolicy(max_attempts=3, delay=0, retry_on=(DatapilotError,)).run(boom)
    assert len(calls) == 1


def test_cancelled_token_prevents_any_attempt() -> None:
    token = CancellationToken()
    token.cancel()
    operation = Flaky(failures=0)

    with pytest.raises(OperationCancelledError):
        RetryPolicy(max_attempts=3, delay=0).run(operation, cancel=token)
    assert operation.calls == 0


def test_cancellation_during_backoff_stops_without_consuming_attempts() -> None:
    token = CancellationToken()
    operation = Flaky(failures=5)
    timer = threading.Timer(0.05, token.cancel)
    timer.start()
    try:
        with pytest.raises(OperationCancelledError):
            RetryPolicy(max_attempts=5, delay=5.0).run(operation, cancel=token)
    finally:
        timer.cancel()
    assert operation.calls == 1


def test_cancellation_is_never_treated_as_retryable() -> None:
    calls = []

    def cancelled() -> None:
        calls.append(1)
        raise OperationCancelledError()

    with pytest.raises(OperationCancelledError):
        RetryPolicy(max_attempts=3, delay=0).run(cancelled)
    assert len(calls) == 1


def test_invalid_policy_values_are_rejected() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(delay=-1)


def test_usage_parsing_and_cost_estimation() -> None:
    openai = LLMUsage.from_openai("gpt-4o-mini", {"input_tokens": 1_000_000, "output_tokens": 500_000})
    assert openai.prompt_tokens == 1_000_000
    assert estimate_cost_usd(openai) == pytest.approx(0.45)

    gemini = LLMUsage.from_gemini(
        "gemini-1.5-flash", {"promptTokenCount": 2_000_000, "candidatesTokenCount": 0, "totalTokenCount": 2_000_000}
    )
    assert gemini.total_tokens == 2_000_000
    assert estimate_cost_usd(gemini) == pytest.approx(0.7)


def test_cost_is_unknown_without_tokens_or_provider() -> None:
    assert estimate_cost_usd(LLMUsage.from_openai("gpt-4o", None)) is None
    assert estimate_cost_usd(LLMUsage(provider="other", model="x", prompt_tokens=10)) is None
