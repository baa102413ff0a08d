"""Token usage records and rough cost estimation per provider/model."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

__all__ = ["LLMUsage", "PricingTier", "estimate_cost_usd"]


@dataclass(frozen=True, slots=True)
class PricingTier:
    """USD price per million prompt/completion tokens."""

    prompt_per_million: float
    completion_per_million: float


@dataclass(slots=True)
class LLMUsage:
    """Usage metrics reported by a single provider response."""

    provider: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    operation: Optional[str] = None

    @classmethod
    def from_openai(cls, model: str, usage: Mapping[str, Any] | None) -> "LLMUsage":
        usage = usage or {}
        return cls(
            provider="openai",
            model=model,
            prompt_tokens=_as_int(usage.get("input_tokens", usage.get("prompt_tokens"))),
            completion_tokens=_as_int(usage.get("output_tokens", usage.get("completion_tokens"))),
            total_tokens=_as_int(usage.get("total_tokens")),
        )

    @classmethod
    def from_gemini(cls, model: str, usage: Mapping[str, Any] | None) -> "LLMUsage":
        usage = usage or {}
        return cls(
            provider="gemini",
            model=model,
            prompt_tokens=_as_int(usage.get("promptTokenCount")),
            completion_tokens=_as_int(usage.get("candidatesTokenCount")),
            total_tokens=_as_int(usage.get("totalTokenCount")),
        )


_MODEL_PRICING: list[tuple[str, re.Pattern[str], PricingTier]] = [
    ("openai", re.compile(r"gpt-4o-?mini-?audio", re.IGNORECASE), PricingTier(0.3, 1.2)),
    ("openai", re.compile(r"gpt-4o-mini", re.IGNORECASE), PricingTier(0.15, 0.6)),
    ("openai", re.compile(r"gpt-4o", re.IGNORECASE), PricingTier(5.0, 15.0)),
    ("openai", re.compile(r"gpt-4-turbo", re.IGNORECASE), PricingTier(10.0, 30.0)),
    ("openai", re.compile(r"gpt-3\.5-turbo", re.IGNORECASE), PricingTier(0.5, 1.5)),
    ("gemini", re.compile(r"gemini-1\.5-pro", re.IGNORECASE), PricingTier(7.0, 21.0)),
    ("gemini", re.compile(r"gemini-1\.5-flash", re.IGNORECASE), PricingTier(0.35, 1.05)),
    ("gemini", re.compile(r"gemini-1\.(0|1)-pro", re.IGNORECASE), PricingTier(3.5, 10.5)),
]

_PROVIDER_DEFAULT: dict[str, PricingTier] = {
    "openai": PricingTier(5.0, 15.0),
    "gemini": PricingTier(3.5, 10.5),
}


def _find_tier(provider: str, model: str) -> Optional[PricingTier]:
    for entry_provider, pattern, tier in _MODEL_PRICING:
        if entry_provider == provider and pattern.search(model):
            return tier
    return _PROVIDER_DEFAULT.get(provider)


def estimate_cost_usd(usage: LLMUsage) -> Optional[float]:
    """Return the estimated USD cost of ``usage`` or ``None`` when unknown."""
    if usage.prompt_tokens is None and usage.completion_tokens is None:
        return None
    tier = _find_tier(usage.provider, usage.model)
    if tier is None:
        return None
    prompt_cost = (usage.prompt_tokens or 0) / 1_000_000 * tier.prompt_per_million
    completion_cost = (usage.completion_tokens or 0) / 1_000_000 * tier.completion_per_million
    total = prompt_cost + completion_cost
    if not math.isfinite(total) or total == 0:
        return None
    return round(total, 6)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
