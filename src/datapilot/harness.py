"""Verification harness for generated transformation code.

Generated code is the body of ``def transform(data, _util)``; the harness
compiles it, runs it against a deep copy of a bounded sample and insists on a
list of row mappings. This is a validation pass, not a sandbox.
"""

from __future__ import annotations

import copy
import logging
import re
import textwrap
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .errors import CodeExecutionError

__all__ = ["TransformUtil", "compile_transform", "run_transform"]

LOGGER = logging.getLogger(__name__)

FUNCTION_NAME = "transform"
_CURRENCY_NOISE = re.compile(r"[$\s€£¥%]")
# Thousands groups only count when followed by a non-digit.
_NUMBER_TOKEN = re.compile(r"-?(?:\d{1,3}(?:,\d{3})+(?!\d)|\d+)(?:\.\d+)?")

Row = Dict[str, Any]


class TransformUtil:
    """Helper surface exposed to generated code as ``_util``."""

    @staticmethod
    def parse_number(value: Any) -> Optional[float]:
        """Parse currency, percentage, thousands-separated or ``(negative)`` numbers."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        text = str(value).strip()
        if not text:
            return None
        negative = False
        if text.startswith("(") and text.endswith(")"):
            text = text[1:-1]
            negative = True
        text = _CURRENCY_NOISE.sub("", text)
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".", 1)
        else:
            text = text.replace(",", "")
        try:
            number = float(text)
        except ValueError:
            return None
        return -number if negative else number

    @staticmethod
    def split_numeric_string(value: Optional[str]) -> List[str]:
        """Split comma-delimited numbers while keeping thousands separators intact."""
        if not value:
            return []
        text = str(value)
        tokens = _NUMBER_TOKEN.findall(text)
        return tokens or [text]


def compile_transform(function_body: str) -> Callable[[List[Row], TransformUtil], Any]:
    """Compile ``function_body`` into a callable ``transform(data, _util)``."""
    if not function_body or not function_body.strip():
        raise CodeExecutionError("Generated function body is empty.")
    source = f"def {FUNCTION_NAME}(data, _util):\n{textwrap.indent(textwrap.dedent(function_body), '    ')}\n"
    namespace: Dict[str, Any] = {}
    try:
        code = compile(source, "<generated-transform>", "exec")
        exec(code, namespace)
    except SyntaxError as error:
        raise CodeExecutionError(f"Generated code has a syntax error: {error.msg} (line {error.lineno})") from error
    return namespace[FUNCTION_NAME]


def run_transform(
    function_body: str,
    rows: Sequence[Mapping[str, Any]],
    util: Optional[TransformUtil] = None,
) -> List[Row]:
    """Execute ``function_body`` on a deep copy of ``rows`` and return its rows.

    Raises:
        CodeExecutionError: when the code fails to compile, raises, or does not
            return a list of mappings.
    """
    transform = compile_transform(function_body)
    sample = copy.deepcopy([dict(row) for row in rows])
    try:
        result = transform(sample, util or TransformUtil())
    except Exception as error:
        raise CodeExecutionError(f"{type(error).__name__}: {error}") from error

    if not isinstance(result, list):
        raise CodeExecutionError(
            f"Generated function did not return a list (got {type(result).__name__}); "
            "make sure it ends with an explicit return statement."
        )
    if result and not isinstance(result[0], Mapping):
        raise CodeExecutionError("Generated function did not return a list of row objects.")
    LOGGER.debug("Transform produced %d row(s) from %d sample row(s)", len(result), len(sample))
    return result
