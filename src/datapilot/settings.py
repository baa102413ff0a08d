"""YAML configuration merged over defaults, with environment fallbacks."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DatapilotError
from .models.gemini import GeminiClient
from .models.llm_client import LLMClient, Transport
from .models.openai import OpenAIClient
from .models.retry import RetryPolicy
from .models.usage import LLMUsage
from .transcripts import TranscriptWriter

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ConfigError",
    "Settings",
    "build_client",
    "load_settings",
    "settings_from_mapping",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "datapilot.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "provider": "openai",
    "models": {
        "openai": "gpt-4o-mini",
        "gemini": "gemini-2.5-flash",
        "timeout": 60.0,
    },
    "retry": {
        "max_attempts": 2,
        "delay": 0.5,
    },
    "plans": {
        "candidate_count": 12,
        "floor": 4,
        "ceiling": 12,
        "review_sample_rows": 20,
    },
    "paths": {
        "logs": "",
    },
}


class ConfigError(DatapilotError):
    """Configuration file is missing, unreadable or invalid."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ModelSettings(_Section):
    openai: str = "gpt-4o-mini"
    gemini: str = "gemini-2.5-flash"
    timeout: float = Field(default=60.0, gt=0)
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None


class RetrySettings(_Section):
    max_attempts: int = Field(default=2, ge=1)
    delay: float = Field(default=0.5, ge=0)

    def policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts, delay=self.delay)


class PlanSettings(_Section):
    candidate_count: int = Field(default=12, ge=1)
    floor: int = Field(default=4, ge=0)
    ceiling: int = Field(default=12, ge=1)
    review_sample_rows: int = Field(default=20, ge=1)


class PathSettings(_Section):
    logs: str = ""


class Settings(_Section):
    """Read-only configuration shared by every pipeline."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: Literal["openai", "gemini"] = "openai"
    models: ModelSettings = Field(default_factory=ModelSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    plans: PlanSettings = Field(default_factory=PlanSettings)
    paths: PathSettings = Field(default_factory=PathSettings)

    def logs_dir(self, base: Optional[Path] = None) -> Optional[Path]:
        if not self.paths.logs.strip():
            return None
        path = Path(self.paths.logs.strip())
        if not path.is_absolute() and base is not None:
            path = base / path
        return path


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    models = data.setdefault("models", {})
    if not models.get("openai_api_key") and os.getenv("OPENAI_API_KEY"):
        models["openai_api_key"] = os.getenv("OPENAI_API_KEY")
    gemini_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not models.get("gemini_api_key") and gemini_key:
        models["gemini_api_key"] = gemini_key
    timeout_override = os.getenv("DATAPILOT_TIMEOUT")
    if timeout_override:
        try:
            models["timeout"] = float(timeout_override)
        except ValueError:
            LOGGER.warning("Ignoring non-numeric DATAPILOT_TIMEOUT=%r", timeout_override)
    provider_override = os.getenv("DATAPILOT_PROVIDER")
    if provider_override:
        data["provider"] = provider_override.strip().lower()
    return data


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    merged = _apply_env(_deep_merge(DEFAULT_CONFIG_TEMPLATE, data))
    try:
        return Settings.model_validate(merged)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration: {error}") from error


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load ``config_path`` (when given and present) over the default template."""
    if config_path is None or not Path(config_path).exists():
        if config_path is not None:
            LOGGER.debug("Config %s not found; using defaults", config_path)
        return settings_from_mapping({})

    try:
        with Path(config_path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")
    return settings_from_mapping(data)


def build_client(
    settings: Settings,
    *,
    transport: Optional[Transport] = None,
    on_usage: Optional[Any] = None,
    logs_base: Optional[Path] = None,
) -> LLMClient:
    """Instantiate the configured provider client."""
    logs_dir = settings.logs_dir(logs_base)
    transcripts = TranscriptWriter(logs_dir) if logs_dir is not None else None
    common: Dict[str, Any] = {
        "transport": transport,
        "timeout": settings.models.timeout,
        "retry_policy": settings.retry.policy(),
        "transcripts": transcripts,
        "on_usage": on_usage or _log_usage,
    }
    if settings.provider == "gemini":
        return GeminiClient(api_key=settings.models.gemini_api_key, model=settings.models.gemini, **common)
    return OpenAIClient(api_key=settings.models.openai_api_key, model=settings.models.openai, **common)


def _log_usage(usage: LLMUsage) -> None:
    LOGGER.info(
        "%s usage for %s (%s): prompt=%s completion=%s",
        usage.provider,
        usage.operation or "request",
        usage.model,
        usage.prompt_tokens,
        usage.completion_tokens,
    )
