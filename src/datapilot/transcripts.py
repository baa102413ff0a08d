"""Per-attempt prompt/response transcripts written as plain text files."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

__all__ = ["TranscriptWriter"]

LOGGER = logging.getLogger(__name__)


class TranscriptWriter:
    """Persist request payloads and raw provider responses for later debugging."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def write_input(self, operation: str, payload: dict[str, Any], *, attempt: int) -> Optional[Path]:
        """Write the prompt text sent for ``operation``; return the file path."""
        timestamp = datetime.now(timezone.utc)
        lines = [
            f"Timestamp: {timestamp.isoformat()}",
            f"Operation: {operation}",
            f"Attempt: {attempt}",
        ]
        model_name = payload.get("model")
        if isinstance(model_name, str) and model_name:
            lines.append(f"Model: {model_name}")

        sections = _format_prompt_sections(payload)
        if sections:
            lines.append("")
            lines.extend(sections)
        return self._write("input", operation, attempt, timestamp, lines)

    def write_output(
        self,
        operation: str,
        raw: Optional[str],
        *,
        attempt: int,
        error: Optional[BaseException] = None,
    ) -> Optional[Path]:
        """Write the raw provider text (or the failure) for ``operation``."""
        if raw is None and error is None:
            return None
        timestamp = datetime.now(timezone.utc)
        lines = [
            f"Timestamp: {timestamp.isoformat()}",
            f"Operation: {operation}",
            f"Attempt: {attempt}",
        ]
        if error is not None:
            lines.append(f"Error: {error}")
        if raw is not None:
            lines.append("")
            lines.append("Raw Response:")
            lines.append(raw)
        return self._write("output", operation, attempt, timestamp, lines)

    def _write(
        self,
        kind: str,
        operation: str,
        attempt: int,
        timestamp: datetime,
        lines: list[str],
    ) -> Optional[Path]:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError:
            LOGGER.debug("Cannot create transcript directory %s", self._root, exc_info=True)
            return None

        file_parts = [
            kind,
            _slug(operation, fallback="operation"),
            f"attempt-{attempt}",
            timestamp.strftime("%Y%m%dT%H%M%S%fZ"),
            uuid.uuid4().hex[:8],
        ]
        log_path = self._root / ("__".join(file_parts) + ".txt")
        try:
            log_path.write_text("\n".join(lines), encoding="utf-8")
        except OSError:
            LOGGER.debug("Cannot write transcript %s", log_path, exc_info=True)
            return None
        return log_path


def _format_prompt_sections(payload: dict[str, Any]) -> list[str]:
    """Return readable prompt sections for OpenAI- or Gemini-shaped payloads."""
    sections: list[str] = []

    system = payload.get("systemInstruction")
    if isinstance(system, dict):
        text = _join_parts(system.get("parts"))
        if text:
            sections.append(f"System Prompt:\n{text}")

    messages = payload.get("input")
    if isinstance(messages, list):
        for message in messages:
            if not isinstance(message, dict):
                continue
            role = str(message.get("role") or "").strip()
            heading = f"{role.title()} Prompt:" if role else "Prompt:"
            content = message.get("content")
            if isinstance(content, str):
                body = content.strip()
            elif isinstance(content, list):
                body = "\n\n".join(
                    item["text"].strip()
                    for item in content
                    if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip()
                )
            else:
                body = ""
            if body:
                sections.append(f"{heading}\n{body}")

    contents = payload.get("contents")
    if isinstance(contents, list):
        for entry in contents:
            if not isinstance(entry, dict):
                continue
            text = _join_parts(entry.get("parts"))
            if text:
                role = str(entry.get("role") or "user")
                sections.append(f"{role.title()} Prompt:\n{text}")

    text_config = payload.get("text")
    if isinstance(text_config, dict) and isinstance(text_config.get("format"), dict):
        name = text_config["format"].get("name")
        if name:
            sections.append(f"Response Format: {name}")
    generation = payload.get("generationConfig")
    if isinstance(generation, dict) and generation.get("responseSchema"):
        try:
            schema_text = json.dumps(generation["responseSchema"], sort_keys=True)
        except (TypeError, ValueError):
            schema_text = str(generation["responseSchema"])
        sections.append(f"Response Schema: {schema_text[:200]}")
    return sections


def _join_parts(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    return "\n\n".join(
        part["text"].strip()
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"].strip()
    )


def _slug(value: str, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"
