"""Gemini ``generateContent`` client using the responseSchema dialect."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

from ..schema.dialects import SchemaDialect
from .llm_client import LLMClient, LLMRequest, LLMTransportError, Transport, resolve_timeout
from .retry import RetryPolicy
from .usage import LLMUsage

__all__ = ["GeminiClient", "SCHEMA_INSTRUCTION"]

LOGGER = logging.getLogger(__name__)

SCHEMA_INSTRUCTION = "Your response must be a valid JSON object adhering to the provided schema."
_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiClient(LLMClient):
    """Adapter around the Gemini REST API using schema Dialect A."""

    provider = "gemini"
    dialect = SchemaDialect.GEMINI

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = _DEFAULT_BASE_URL,
        model: str = "gemini-2.5-flash",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(model, retry_policy=retry_policy, **kwargs)
        self._api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        self._base_url = base_url.rstrip("/")
        self._timeout = resolve_timeout(timeout)
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("A Gemini API key is required when using the default transport.")

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/{self._model}:generateContent"

    def build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        schema = self.response_schema(request)
        prompt = request.prompt
        if schema is not None:
            prompt = f"{prompt.rstrip()}\n\n{SCHEMA_INSTRUCTION}"

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if request.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}

        generation: Dict[str, Any] = {}
        if schema is not None or request.json_mode:
            generation["responseMimeType"] = "application/json"
        if schema is not None:
            generation["responseSchema"] = schema
        if request.temperature is not None:
            generation["temperature"] = request.temperature
        if generation:
            payload["generationConfig"] = generation
        return payload

    def _raw_invoke(self, payload: Dict[str, Any]) -> Tuple[str, Optional[LLMUsage]]:
        try:
            raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - transport-specific failures
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        data = self._decode_json(raw_response)
        if not isinstance(data, dict):
            return raw_response, None
        error_payload = data.get("error")
        if isinstance(error_payload, dict) and error_payload.get("message"):
            raise LLMTransportError(f"Gemini error: {error_payload['message']}")

        prompt_feedback = data.get("promptFeedback")
        if isinstance(prompt_feedback, dict) and prompt_feedback.get("blockReason"):
            raise LLMTransportError(f"Gemini blocked the prompt: {prompt_feedback['blockReason']}")

        usage = LLMUsage.from_gemini(str(data.get("modelVersion") or self._model), data.get("usageMetadata"))
        return _candidate_text(data), usage

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        import urllib.error
        import urllib.request

        request = urllib.request.Request(
            self.endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": str(self._api_key),
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Gemini response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach Gemini endpoint: {error.reason}") from error
        return raw.decode("utf-8")


def _candidate_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        return ""
    content = first.get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
    )
