"""Convenience exports for datapilot LLM client implementations."""

from .gemini import GeminiClient
from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMCompletion,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
)
from .openai import OpenAIClient
from .retry import CancellationToken, RetryPolicy, raise_if_cancelled
from .usage import LLMUsage, estimate_cost_usd

__all__ = [
    "CancellationToken",
    "GeminiClient",
    "LLMClient",
    "LLMClientError",
    "LLMCompletion",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "LLMUsage",
    "OpenAIClient",
    "RetryPolicy",
    "estimate_cost_usd",
    "raise_if_cancelled",
]
