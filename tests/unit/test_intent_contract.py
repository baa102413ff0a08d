from __future__ import annotations

import pytest

from datapilot.contracts.intent import INTENT_TOOL_MATRIX, intent_contract_issues, normalize_intent_contract
from datapilot.errors import ContractValidationError


def test_minimal_contract_receives_defaults() -> None:
    contract = normalize_intent_contract({"intent": "aggregate", "tool": "csv.aggregate"})

    assert contract.args.aggregation == "sum"
    assert contract.args.groupBy == []
    assert contract.args.filters == []
    assert contract.awaitUser is False

    payload = contract.to_payload()
    assert payload["args"] == {"groupBy": [], "aggregation": "sum", "filters": []}
    assert "limit" not in payload["args"]
    assert payload["message"] is None


def test_tool_outside_allowed_set_is_reported_on_tool_path() -> None:
    with pytest.raises(ContractValidationError) as excinfo:
        normalize_intent_contract({"intent": "aggregate", "tool": "csv.profile"})

    assert excinfo.value.paths == ["tool"]
    assert 'Tool "csv.profile" is not allowed for intent "aggregate".' in excinfo.value.feedback()


def test_ask_clarify_requires_await_user() -> None:
    contract, issues = intent_contract_issues({"intent": "ask_clarify", "tool": None, "awaitUser": False})

    assert contract is None
    assert [issue.path for issue in issues] == ["awaitUser"]
    assert issues[0].message == "ask_clarify intent must set awaitUser=true."


def test_ask_clarify_forbids_any_tool() -> None:
    contract, issues = intent_contract_issues({"intent": "ask_clarify", "tool": "csv.aggregate", "awaitUser": True})

    assert contract is None
    assert [issue.path for issue in issues] == ["tool"]
    assert issues[0].message == 'Intent "ask_clarify" should not specify a tool.'


def test_every_broken_rule_is_enumerated() -> None:
    contract, issues = intent_contract_issues({"intent": "ask_clarify", "tool": "csv.profile"})

    assert contract is None
    assert {issue.path for issue in issues} == {"tool", "awaitUser"}


def test_valid_ask_clarify_contract() -> None:
    contract = normalize_intent_contract(
        {"intent": "ask_clarify", "tool": None, "awaitUser": True, "message": "Which column?"}
    )
    assert contract.tool is None
    assert contract.allowed_tools == ()


@pytest.mark.parametrize("intent, tools", [(intent, tools) for intent, tools in INTENT_TOOL_MATRIX.items() if tools])
def test_each_intent_accepts_its_own_tool(intent: str, tools: tuple) -> None:
    contract = normalize_intent_contract({"intent": intent, "tool": tools[0]})
    assert contract.tool == tools[0]


def test_field_errors_carry_nested_paths() -> None:
    contract, issues = intent_contract_issues(
        {
            "intent": "aggregate",
            "tool": "csv.aggregate",
            "args": {"limit": 0, "filters": [{"column": "Region", "value": []}]},
            "message": "x" * 281,
        }
    )

    paths = {issue.path for issue in issues}
    assert contract is None
    assert "args.limit" in paths
    assert "args.filters.0.value" in paths
    assert "message" in paths


def test_unknown_intent_and_extra_keys_are_rejected() -> None:
    _, issues = intent_contract_issues({"intent": "dance", "tool": None, "args": {"colour": "red"}})
    paths = {issue.path for issue in issues}
    assert "intent" in paths
    assert "args.colour" in paths


def test_null_optional_args_are_treated_as_absent() -> None:
    contract = normalize_intent_contract(
        {
            "intent": "detect_anomaly",
            "tool": "csv.detect_outliers",
            "args": {"column": "Revenue", "thresholdMultiplier": 1.5, "limit": None, "datasetId": None},
            "message": None,
        }
    )
    assert contract.args.limit is None
    assert contract.to_payload()["args"]["thresholdMultiplier"] == 1.5


def test_non_mapping_candidate_is_reported() -> None:
    contract, issues = intent_contract_issues(["intent", "aggregate"])
    assert contract is None
    assert issues[0].path == ""


@pytest.mark.parametrize("value", ["true", "yes", 1])
@pytest.mark.parametrize(
    "candidate",
    [
        {"intent": "ask_clarify", "tool": None},
        {"intent": "aggregate", "tool": "csv.aggregate"},
    ],
)
def test_await_user_must_be_a_real_boolean(candidate: dict, value: object) -> None:
    contract, issues = intent_contract_issues({**candidate, "awaitUser": value})

    assert contract is None
    assert [issue.path for issue in issues] == ["awaitUser"]
