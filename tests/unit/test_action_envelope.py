"""ActionEnvelope parsing, wire rendering and plan tracker normalization."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from datapilot.contracts.actions import (
    DEFAULT_CONFIDENCE,
    ExecuteCodeAction,
    PlanStateUpdateAction,
    ProceedToAnalysisAction,
    StateTagFactory,
    TextResponseAction,
    normalize_plan_state,
    parse_action,
    to_wire,
)
from datapilot.errors import ContractValidationError
from datapilot.schema import SchemaDialect, get_schema
from datapilot.schema.catalog import SLOT_NAMES


def _wire(action_type: str, **slots: object) -> dict:
    wire = {"type": action_type, "stepId": "s1", "reason": "because", "stateTag": None}
    wire.update({name: None for name in SLOT_NAMES})
    wire.update(slots)
    return wire


def _plan_state(**overrides: object) -> dict:
    state = {
        "planId": "plan-1",
        "goal": "Understand revenue by region",
        "contextSummary": None,
        "progress": "Loaded the dataset",
        "nextSteps": [{"id": "s2", "label": "Build the chart"}],
        "blockedBy": None,
        "observationIds": None,
        "confidence": None,
        "updatedAt": None,
        "currentStepId": "s1",
        "steps": [{"id": "s1", "label": "Load", "intent": "conversation", "status": "completed"}],
        "stateTag": None,
    }
    state.update(overrides)
    return state


def test_text_response_parses_into_its_variant() -> None:
    action = parse_action(_wire("text_response", text="Here is what I found."))

    assert isinstance(action, TextResponseAction)
    assert action.payload == "Here is what I found."
    assert action.stepId == "s1"


def test_execute_code_requires_non_empty_body() -> None:
    action = parse_action(
        _wire("execute_js_code", code={"explanation": "Drop totals", "functionBody": "return data"})
    )
    assert isinstance(action, ExecuteCodeAction)

    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("execute_js_code", code={"explanation": "Drop totals", "functionBody": ""}))
    assert "code.functionBody" in excinfo.value.paths


def test_missing_matching_slot_is_reported_once() -> None:
    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("filter_spreadsheet"))
    assert excinfo.value.paths == ["args"]


def test_populated_foreign_slot_is_rejected() -> None:
    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("text_response", text="hi", code={"explanation": "x", "functionBody": "return data"}))
    assert excinfo.value.paths == ["code"]
    assert "must be null" in excinfo.value.issues[0].message


def test_unknown_type_is_rejected() -> None:
    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("launch_rockets"))
    assert excinfo.value.paths == ["type"]


def test_proceed_to_analysis_carries_no_payload() -> None:
    action = parse_action(_wire("proceed_to_analysis"))
    assert isinstance(action, ProceedToAnalysisAction)
    assert action.payload is None


def test_nested_nulls_from_strict_providers_are_accepted() -> None:
    action = parse_action(
        _wire(
            "dom_action",
            domAction={
                "toolName": "setTopN",
                "target": None,
                "args": {"cardId": "card-1", "topN": 5, "visible": None, "format": None},
            },
        )
    )
    assert action.domAction.args.topN == 5


def test_clarification_accepts_all_null_pending_plan() -> None:
    pending = {name: None for name in ("chartType", "title", "groupByColumn", "valueColumn")}
    action = parse_action(
        _wire(
            "clarification_request",
            clarification={
                "question": "Which column should I sum?",
                "options": [{"label": "Revenue", "value": "Revenue"}],
                "pendingPlan": pending,
                "targetProperty": "valueColumn",
            },
        )
    )
    assert action.clarification.pendingPlan.chartType is None


@pytest.mark.parametrize(
    "wire",
    [
        _wire("text_response", text="hello"),
        _wire("proceed_to_analysis"),
        _wire("filter_spreadsheet", args={"query": "only the north region"}),
    ],
)
def test_wire_output_lists_every_slot(wire: dict) -> None:
    rendered = to_wire(parse_action(wire))

    for name in SLOT_NAMES:
        assert name in rendered
    populated = [name for name in SLOT_NAMES if rendered[name] is not None]
    assert len(populated) <= 1
    assert rendered["type"] == wire["type"]


def test_normalize_plan_state_fills_runtime_fields() -> None:
    tags = StateTagFactory()
    fixed = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    normalized = normalize_plan_state(_plan_state(confidence=3.2), now=lambda: fixed, tags=tags)

    assert normalized["updatedAt"] == "2024-05-01T12:30:00Z"
    assert normalized["observationIds"] == []
    assert normalized["confidence"] == 1.0
    assert normalized["contextSummary"] is None
    assert normalized["stateTag"].split("-")[1] == "1"

    action = parse_action(_wire("plan_state_update", planState=normalized))
    assert isinstance(action, PlanStateUpdateAction)
    assert action.planState.stateTag == normalized["stateTag"]


def test_normalize_plan_state_keeps_provider_values() -> None:
    normalized = normalize_plan_state(
        _plan_state(updatedAt="2024-01-01T00:00:00Z", stateTag="given", confidence="high", contextSummary="  ")
    )
    assert normalized["updatedAt"] == "2024-01-01T00:00:00Z"
    assert normalized["stateTag"] == "given"
    assert normalized["confidence"] == DEFAULT_CONFIDENCE
    assert normalized["contextSummary"] is None


def test_state_tags_increase_within_the_same_millisecond() -> None:
    tags = StateTagFactory()
    first = tags.mint(now_ms=1_700_000_000_000)
    second = tags.mint(now_ms=1_700_000_000_000)
    earlier_clock = tags.mint(now_ms=1_600_000_000_000)

    assert first == "1700000000000-1"
    assert second == "1700000000000-2"
    assert earlier_clock == "1700000000000-3"
    assert tags.mint(now_ms=1_700_000_000_001) == "1700000000001-1"


def test_plan_creation_enforces_chart_rules() -> None:
    ungrouped = {"chartType": "bar", "title": "Revenue", "description": "Revenue across the dataset."}

    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("plan_creation", plan=ungrouped))
    assert excinfo.value.paths == ["plan.aggregation", "plan.groupByColumn"]

    with pytest.raises(ContractValidationError) as excinfo:
        parse_action(_wire("plan_creation", plan={**ungrouped, "aggregation": "sum", "groupByColumn": "Region"}))
    assert excinfo.value.paths == ["plan.valueColumn"]

    counted = parse_action(
        _wire("plan_creation", plan={**ungrouped, "aggregation": "count", "groupByColumn": "Region"})
    )
    assert counted.plan.valueColumn is None


def _json_types(node: dict) -> list:
    raw = node.get("type")
    if raw is None:
        return []
    return [raw] if isinstance(raw, str) else list(raw)


def _assert_matches_schema(node: dict, value: object, path: str) -> None:
    if value is None:
        assert "null" in _json_types(node) or None in node.get("enum", []), f"{path} is not nullable"
        return
    if isinstance(value, dict):
        missing = [key for key in node.get("required", []) if key not in value]
        assert missing == [], f"{path} is missing {missing}"
        for key, item in value.items():
            assert key in node["properties"], f"{path}.{key} is not declared"
            _assert_matches_schema(node["properties"][key], item, f"{path}.{key}")
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _assert_matches_schema(node["items"], item, f"{path}.{index}")


@pytest.mark.parametrize(
    "wire",
    [
        _wire("plan_state_update", planState=normalize_plan_state(_plan_state())),
        _wire(
            "plan_creation",
            plan={
                "chartType": "bar",
                "title": "Revenue by region",
                "description": "Total revenue per region.",
                "aggregation": "sum",
                "groupByColumn": "Region",
                "valueColumn": "Revenue",
            },
        ),
        _wire("dom_action", domAction={"toolName": "setTopN", "args": {"cardId": "card-1", "topN": 5}}),
        _wire("await_user", awaitUserPayload={"question": "Which region?", "options": []}),
        _wire(
            "clarification_request",
            clarification={
                "question": "Which column should I sum?",
                "options": [{"label": "Revenue", "value": "Revenue"}],
                "pendingPlan": {"chartType": "bar", "groupByColumn": "Region"},
                "targetProperty": "valueColumn",
            },
        ),
    ],
)
def test_wire_output_satisfies_strict_action_schema(wire: dict) -> None:
    compiled = get_schema("MultiActionChatResponse").compile(SchemaDialect.JSON_SCHEMA)
    action_schema = compiled["properties"]["actions"]["items"]

    rendered = to_wire(parse_action(wire))

    _assert_matches_schema(action_schema, rendered, "actions.0")
