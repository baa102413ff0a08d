"""OpenAI client that speaks the Responses API with strict JSON-schema output."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

from ..schema.dialects import SchemaDialect
from .llm_client import LLMClient, LLMRequest, LLMTransportError, Transport, resolve_timeout
from .retry import RetryPolicy
from .usage import LLMUsage

__all__ = ["OpenAIClient"]

LOGGER = logging.getLogger(__name__)

_ROLES = frozenset({"user", "assistant", "system", "developer"})


class OpenAIClient(LLMClient):
    """Thin adapter around ``POST /v1/responses`` using schema Dialect B."""

    provider = "openai"
    dialect = SchemaDialect.JSON_SCHEMA

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/responses",
        model: str = "gpt-4o-mini",
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(model, retry_policy=retry_policy, **kwargs)
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        self._timeout = resolve_timeout(timeout)
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An OpenAI API key is required when using the default transport.")

    def build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        """Render the Responses API payload, attaching the strict schema when present."""
        messages: list[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append(_message("system", request.system_prompt))
        messages.append(_message("user", request.prompt))

        payload: Dict[str, Any] = {"model": self._model, "input": messages}
        schema = self.response_schema(request)
        if schema is not None and request.schema is not None:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": request.schema.name,
                    "schema": schema,
                    "strict": True,
                }
            }
        elif request.json_mode:
            payload["text"] = {"format": {"type": "json_object"}}
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.metadata:
            payload["metadata"] = {key: _metadata_value(value) for key, value in request.metadata.items()}
        return payload

    def _raw_invoke(self, payload: Dict[str, Any]) -> Tuple[str, Optional[LLMUsage]]:
        """Send the request over the configured transport."""
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
            raise LLMTransportError(f"OpenAI error: {error_payload['message']}")
        usage = LLMUsage.from_openai(str(data.get("model") or self._model), data.get("usage"))
        return self._extract_output_text(data), usage

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the OpenAI Responses API."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("OpenAI response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach OpenAI endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")
        return raw.decode("utf-8")

    @staticmethod
    def _extract_output_text(data: Dict[str, Any]) -> str:
        """Return the concatenated output text of a Responses API envelope."""
        output_text = data.get("output_text")
        if isinstance(output_text, str) and output_text.strip():
            return output_text

        fragments: list[str] = []
        for item in data.get("output") or []:
            if not isinstance(item, dict):
                continue
            contents = item.get("content")
            if not isinstance(contents, list):
                continue
            for content_item in contents:
                if not isinstance(content_item, dict):
                    continue
                json_payload = content_item.get("json")
                if isinstance(json_payload, (dict, list)):
                    fragments.append(json.dumps(json_payload))
                    continue
                text = content_item.get("text")
                if isinstance(text, str) and text.strip():
                    fragments.append(text)
        return "".join(fragments)


def _message(role: str, text: str) -> Dict[str, Any]:
    mapped = role if role in _ROLES else "user"
    return {"role": mapped, "content": [{"type": "input_text", "text": text}]}


def _metadata_value(value: Any, max_len: int = 512) -> str:
    formatted = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
    if len(formatted) > max_len:
        formatted = f"{formatted[: max_len - 3]}..."
    return formatted
