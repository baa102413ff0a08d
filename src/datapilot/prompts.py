"""Prompt templates shared across the generation pipelines."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Sequence

from .contracts.plan import ColumnProfile

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings."
)

CANDIDATE_PLANS_SYSTEM = (
    "You are a senior business intelligence analyst specializing in ERP and financial data. "
    "Generate a diverse list of insightful analysis plan candidates for the given dataset. "
    "Respond with a JSON object whose `plans` array follows the provided schema."
)

REFINE_PLANS_SYSTEM = (
    "You are a Quality Review Data Analyst. Review the proposed analysis plans and their data samples, "
    "keep ONLY the most insightful and readable charts and configure them for the best default view. "
    "Respond with a JSON object whose `plans` array follows the provided schema."
)

DATA_PREPARATION_SYSTEM = (
    "You are an expert data engineer. Analyze the raw dataset and, if necessary, provide the body of a "
    "Python function that cleans and reshapes it into a tidy, analysis-ready list of rows. "
    "Also describe the columns of the transformed data."
)

FILTER_SYSTEM = (
    "You translate natural-language filter requests into the body of a Python function that returns the "
    "matching rows."
)

INTENT_SYSTEM = (
    "You route analyst requests to exactly one tool. Reply with an intent contract: the intent, the tool "
    "allowed for it (null when asking for clarification), its arguments and whether to wait for the user."
)

CHAT_SYSTEM = (
    "You are an expert data analyst operating in a Reason-Act loop. Explain every action in its `reason` "
    "field (under 280 characters) and emit a `plan_state_update` action before any other action. "
    "Populate exactly the payload field that matches each action's `type` and set every other payload "
    "field to null."
)

MISSING_CODE_INSTRUCTION = (
    "IMPORTANT VALIDATION FAILURE: your previous response included an execute_js_code action without a "
    "valid code.functionBody. Respond with an executable Python function body that transforms `data` and "
    "ends with an explicit return of the updated list."
)


def _json_block(value: Any, limit: int = 4000) -> str:
    text = json.dumps(value, indent=2, default=str, ensure_ascii=False)
    if len(text) > limit:
        text = f"{text[: limit - 3]}..."
    return text


def render_columns(columns: Sequence[ColumnProfile]) -> str:
    """Format column profiles as a bullet list."""
    return "\n".join(f"- {column.name} ({column.type})" for column in columns)


def render_feedback(previous_error: Optional[str]) -> str:
    """Return the corrective block embedded after a failed attempt."""
    if not previous_error:
        return ""
    return (
        "## Previous Attempt Failed\n"
        f"Your previous answer failed verification with this error:\n{previous_error}\n"
        "Fix the problem and answer again."
    )


def _join(*sections: str) -> str:
    return "\n\n".join(section for section in sections if section)


def render_candidate_plans_prompt(
    columns: Sequence[ColumnProfile],
    sample_rows: Sequence[Mapping[str, Any]],
    count: int,
) -> str:
    categorical = [column.name for column in columns if column.type in ("categorical", "date", "time")]
    numerical = [column.name for column in columns if column.type in ("numerical", "currency", "percentage")]
    return _join(
        f"Generate {count} distinct analysis plans for this dataset.",
        f"Categorical columns: {', '.join(categorical) or 'none'}",
        f"Numerical columns: {', '.join(numerical) or 'none'}",
        f"Sample rows:\n{_json_block(list(sample_rows[:5]))}",
        "Scatter plots need xValueColumn and yValueColumn; every other chart needs aggregation and "
        "groupByColumn, plus valueColumn unless the aggregation is count.",
        JSON_RESPONSE_INSTRUCTION,
    )


def render_refine_plans_prompt(reviewed: Sequence[Mapping[str, Any]]) -> str:
    return _join(
        "Review these plans with their aggregated samples. Return the plans worth keeping, configured with "
        "sensible defaultTopN and defaultHideOthers values.",
        _json_block(list(reviewed), limit=12000),
        JSON_RESPONSE_INSTRUCTION,
    )


def render_data_preparation_prompt(
    columns: Sequence[ColumnProfile],
    sample_rows: Sequence[Mapping[str, Any]],
    previous_error: Optional[str] = None,
) -> str:
    return _join(
        f"Columns:\n{render_columns(columns)}",
        f"Sample rows:\n{_json_block(list(sample_rows))}",
        "The function body receives `data` (list of dicts) and `_util` with `_util.parse_number(value)` and "
        "`_util.split_numeric_string(value)`. It must return a list of dicts. Use null for functionBody when "
        "the data is already tidy.",
        render_feedback(previous_error),
        JSON_RESPONSE_INSTRUCTION,
    )


def render_filter_prompt(
    query: str,
    columns: Sequence[ColumnProfile],
    sample_rows: Sequence[Mapping[str, Any]],
    previous_error: Optional[str] = None,
) -> str:
    return _join(
        f"Filter request: {query}",
        f"Columns:\n{render_columns(columns)}",
        f"Sample rows:\n{_json_block(list(sample_rows))}",
        "The function body receives `data` and `_util` and must return the filtered list of rows.",
        render_feedback(previous_error),
        JSON_RESPONSE_INSTRUCTION,
    )


def render_intent_prompt(
    message: str,
    columns: Sequence[ColumnProfile],
    previous_error: Optional[str] = None,
) -> str:
    return _join(
        f"User request: {message}",
        f"Columns:\n{render_columns(columns)}",
        render_feedback(previous_error),
        JSON_RESPONSE_INSTRUCTION,
    )


def render_chat_prompt(
    message: str,
    columns: Sequence[ColumnProfile],
    context: Optional[str] = None,
) -> str:
    return _join(
        f"Columns:\n{render_columns(columns)}",
        f"Context:\n{context}" if context else "",
        f"User message: {message}",
        JSON_RESPONSE_INSTRUCTION,
    )


__all__ = [
    "CANDIDATE_PLANS_SYSTEM",
    "CHAT_SYSTEM",
    "DATA_PREPARATION_SYSTEM",
    "FILTER_SYSTEM",
    "INTENT_SYSTEM",
    "JSON_RESPONSE_INSTRUCTION",
    "MISSING_CODE_INSTRUCTION",
    "REFINE_PLANS_SYSTEM",
    "render_candidate_plans_prompt",
    "render_chat_prompt",
    "render_columns",
    "render_data_preparation_prompt",
    "render_feedback",
    "render_filter_prompt",
    "render_intent_prompt",
    "render_refine_plans_prompt",
]
