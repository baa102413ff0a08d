from __future__ import annotations

import json

import pytest

from datapilot.errors import ChatResponseParsingError, JsonCoercionError, PlanParsingError, ValueRecoveryError
from datapilot.recovery import (
    coerce_chat_response,
    coerce_json_object,
    extract_balanced_block,
    parse_json_array,
    strip_code_fence,
)


def test_coerce_json_object_accepts_plain_and_fenced_text() -> None:
    value = {"explanation": "ok", "outputColumns": [{"name": "A", "type": "numerical"}]}
    encoded = json.dumps(value)

    assert coerce_json_object(encoded) == value
    assert coerce_json_object(f"```json\n{encoded}\n```") == value
    assert coerce_json_object(f"```\n{encoded}\n```") == value


def test_coerce_json_object_extracts_block_from_narration() -> None:
    raw = 'Sure! Here is the plan: {"a": {"b": "brace } in string"}, "c": [1, 2]} Let me know.'
    assert coerce_json_object(raw) == {"a": {"b": "brace } in string"}, "c": [1, 2]}


def test_coerce_json_object_tolerates_trailing_commas_in_block() -> None:
    raw = 'Result: {"a": 1, "b": [1, 2,],}'
    assert coerce_json_object(raw) == {"a": 1, "b": [1, 2]}


def test_coerce_json_object_passes_mappings_through() -> None:
    value = {"already": "parsed"}
    assert coerce_json_object(value) is value


@pytest.mark.parametrize("raw", ["", "no json here", "[1, 2, 3]", '"just a string"', "{broken"])
def test_coerce_json_object_raises_with_raw_content(raw: str) -> None:
    with pytest.raises(JsonCoercionError) as excinfo:
        coerce_json_object(raw)
    assert isinstance(excinfo.value, ValueRecoveryError)
    assert excinfo.value.raw_content == raw.strip()


def test_extract_balanced_block_honours_escaped_quotes() -> None:
    text = 'prefix {"k": "say \\"}\\" please", "n": {"m": 1}} suffix }'
    block = extract_balanced_block(text)
    assert block == '{"k": "say \\"}\\" please", "n": {"m": 1}}'
    assert extract_balanced_block("nothing here") is None
    assert extract_balanced_block("{ unbalanced") is None


def test_strip_code_fence_returns_input_without_fence() -> None:
    assert strip_code_fence("plain") == "plain"
    assert strip_code_fence("before ```json\n[1]\n``` after") == "[1]"


def test_parse_json_array_reads_wrapped_plan_lists() -> None:
    plans = [{"chartType": "bar", "title": "Revenue by region"}]

    assert parse_json_array(json.dumps(plans)) == plans
    assert parse_json_array(json.dumps({"plans": plans})) == plans
    assert parse_json_array("```json\n" + json.dumps({"plans": plans}) + "\n```") == plans
    assert parse_json_array("Here you go: " + json.dumps(plans) + " enjoy") == plans


def test_parse_json_array_wraps_single_plan_object() -> None:
    plan = {"chartType": "pie", "title": "Share by product", "description": "Product mix."}
    assert parse_json_array(json.dumps(plan)) == [plan]


def test_parse_json_array_raises_with_preview() -> None:
    raw = "I could not come up with anything useful " * 10
    with pytest.raises(PlanParsingError) as excinfo:
        parse_json_array(raw)
    message = str(excinfo.value)
    assert message.startswith("Could not parse a JSON array from the response: ")
    assert len(message) <= len("Could not parse a JSON array from the response: ") + 150


def test_parse_json_array_rejects_objects_without_arrays() -> None:
    with pytest.raises(PlanParsingError):
        parse_json_array('{"note": "nothing to chart"}')


def test_coerce_chat_response_requires_actions_list() -> None:
    payload = coerce_chat_response('```json\n{"actions": [{"type": "text_response"}]}\n```')
    assert payload["actions"] == [{"type": "text_response"}]

    with pytest.raises(ChatResponseParsingError, match="actions"):
        coerce_chat_response('{"action": "text_response"}')
    with pytest.raises(ChatResponseParsingError):
        coerce_chat_response("totally not json")
