"""Best-effort recovery of JSON objects and arrays from provider text.

Provider output is nominally JSON but regularly arrives wrapped in Markdown
fences or surrounded by narration. The helpers here try a short, fixed list of
candidates and either return a parsed value or raise a typed
``ValueRecoveryError`` carrying the raw text. Nothing here retries; callers
decide whether a failure is worth another provider round-trip.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .errors import ChatResponseParsingError, JsonCoercionError, PlanParsingError

__all__ = [
    "coerce_chat_response",
    "coerce_json_object",
    "extract_balanced_block",
    "parse_json_array",
    "strip_code_fence",
]

LOGGER = logging.getLogger(__name__)

PREVIEW_LENGTH = 150

_FENCE_PATTERN = re.compile(r"```(?:json)?[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fence(payload: str) -> str:
    """Return the inner content of the first fenced block, or ``payload`` unchanged."""
    match = _FENCE_PATTERN.search(payload)
    if not match:
        return payload
    return match.group(1).strip()


def extract_balanced_block(text: str, opener: str = "{") -> Optional[str]:
    """Return the first balanced ``opener``-delimited substring of ``text``.

    Depth only changes on delimiters seen outside string literals; quote state
    honours backslash escapes so braces inside values do not count.
    """
    closer = _CLOSERS[opener]
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _strip_trailing_commas(payload: str) -> str:
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _try_parse(candidate: Optional[str]) -> Any:
    if not candidate:
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


def _object_candidates(text: str) -> Iterator[str]:
    yield text
    if "```" in text:
        fenced = strip_code_fence(text)
        if fenced != text:
            yield fenced
    block = extract_balanced_block(text, "{")
    if block:
        yield block
        yield _strip_trailing_commas(block)


def coerce_json_object(raw: Union[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """Recover a JSON object from ``raw``.

    Candidates are tried in order: the trimmed text, the content of a fenced
    code block, then the first balanced brace block. Only a parsed mapping
    counts as success; arrays and scalars are skipped.
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise JsonCoercionError(f"Expected text to recover JSON from, got {type(raw).__name__}.", str(raw))

    trimmed = raw.strip()
    for candidate in _object_candidates(trimmed):
        parsed = _try_parse(candidate)
        if isinstance(parsed, dict):
            return parsed
    raise JsonCoercionError("No JSON object could be recovered from the response.", trimmed)


def _segment(text: str, opener: str) -> Optional[str]:
    closer = _CLOSERS[opener]
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _array_candidates(text: str) -> Iterator[str]:
    yield text
    for opener in ("[", "{"):
        block = extract_balanced_block(text, opener)
        if block:
            yield block
        segment = _segment(text, opener)
        if segment and segment != block:
            yield segment


def _array_from_value(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for item in value.values():
            if isinstance(item, list):
                return item
        if "chartType" in value and "title" in value:
            return [value]
    return None


def parse_json_array(raw: str) -> List[Any]:
    """Recover a JSON array (typically a list of plans) from ``raw``.

    An object answer is accepted when one of its properties holds an array,
    or when it looks like a single plan (has ``chartType`` and ``title``).
    """
    text = strip_code_fence((raw or "").strip())
    for candidate in _array_candidates(text):
        parsed = _try_parse(candidate)
        if parsed is None:
            continue
        result = _array_from_value(parsed)
        if result is not None:
            return result
        LOGGER.debug("Discarding recovered %s without an array payload", type(parsed).__name__)

    preview = text[:PREVIEW_LENGTH]
    raise PlanParsingError(f"Could not parse a JSON array from the response: {preview}", text)


def coerce_chat_response(raw: Union[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """Recover a chat response object that carries an ``actions`` list."""
    try:
        payload = coerce_json_object(raw)
    except JsonCoercionError as error:
        raise ChatResponseParsingError(str(error), error.raw_content) from error
    if not isinstance(payload.get("actions"), list):
        raw_text = raw if isinstance(raw, str) else json.dumps(payload)
        raise ChatResponseParsingError("Chat response is missing an 'actions' array.", raw_text.strip())
    return payload
