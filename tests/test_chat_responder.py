from __future__ import annotations

from typing import Any, Dict

import pytest

from datapilot.contracts.actions import ExecuteCodeAction, PlanStateUpdateAction, StateTagFactory, TextResponseAction
from datapilot.errors import ChatResponseParsingError, ContractValidationError
from datapilot.pipelines import ChatResponder
from datapilot.prompts import MISSING_CODE_INSTRUCTION
from datapilot.schema.catalog import SLOT_NAMES
from datapilot.schema.dialects import SchemaDialect


def _action(action_type: str, **slots: Any) -> Dict[str, Any]:
    action = {"type": action_type, "stepId": "s1", "reason": "next step", "stateTag": None}
    action.update({name: None for name in SLOT_NAMES})
    action.update(slots)
    return action


PLAN_STATE = {
    "planId": "plan-1",
    "goal": "Clean the revenue column",
    "contextSummary": None,
    "progress": "Inspected the sample",
    "nextSteps": [{"id": "s2", "label": "Parse currency"}],
    "blockedBy": None,
    "observationIds": None,
    "confidence": 0.9,
    "updatedAt": None,
    "currentStepId": "s1",
    "steps": [{"id": "s1", "label": "Inspect", "intent": "conversation", "status": "in_progress"}],
    "stateTag": None,
}


def test_valid_stream_is_returned_in_order(scripted_client, sales_columns) -> None:
    client = scripted_client(
        [
            {
                "actions": [
                    _action("plan_state_update", planState=PLAN_STATE),
                    _action("text_response", text="I will parse the revenue column."),
                    _action("execute_js_code", code={"explanation": "Parse", "functionBody": "return data"}),
                ]
            }
        ]
    )

    response = ChatResponder(client, tags=StateTagFactory()).respond("clean revenue", sales_columns)

    assert [type(action) for action in response.actions] == [
        PlanStateUpdateAction,
        TextResponseAction,
        ExecuteCodeAction,
    ]
    assert response.rejected == []
    assert response.attempts == 1
    state = response.actions[0].planState
    assert state.stateTag
    assert state.updatedAt.endswith("Z")
    assert state.observationIds == []
    for wire in response.to_wire()["actions"]:
        assert set(SLOT_NAMES) <= set(wire)


def test_missing_code_triggers_one_corrective_reprompt(scripted_client) -> None:
    client = scripted_client(
        [
            {"actions": [_action("execute_js_code", code={"explanation": "Parse", "functionBody": "  "})]},
            {"actions": [_action("execute_js_code", code={"explanation": "Parse", "functionBody": "return data"})]},
        ]
    )

    response = ChatResponder(client).respond("clean revenue")

    assert response.attempts == 2
    assert MISSING_CODE_INSTRUCTION not in client.system_prompts[0]
    assert MISSING_CODE_INSTRUCTION in client.system_prompts[1]
    assert isinstance(response.actions[0], ExecuteCodeAction)


def test_gemini_dialect_gets_a_single_attempt(scripted_client) -> None:
    client = scripted_client(
        [
            {
                "actions": [
                    _action("text_response", text="Working on it."),
                    _action("execute_js_code", code=None),
                ]
            }
        ],
        dialect=SchemaDialect.GEMINI,
    )

    response = ChatResponder(client).respond("clean revenue")

    assert response.attempts == 1
    assert len(client.payloads) == 1
    assert [type(action) for action in response.actions] == [TextResponseAction]
    assert [issue.path for issue in response.rejected] == ["actions.1.code"]


def test_invalid_actions_are_dropped_with_indexed_paths(scripted_client) -> None:
    client = scripted_client(
        [
            {
                "actions": [
                    _action("text_response", text="Hello"),
                    _action("dom_action", domAction={"toolName": "explodeCard", "args": {"cardId": "c1"}}),
                    _action("teleport"),
                ]
            }
        ]
    )

    response = ChatResponder(client).respond("hi")

    assert len(response.actions) == 1
    paths = [issue.path for issue in response.rejected]
    assert "actions.1.domAction.toolName" in paths
    assert "actions.2.type" in paths


def test_response_without_valid_actions_raises(scripted_client) -> None:
    client = scripted_client([{"actions": [_action("text_response")]}])

    with pytest.raises(ContractValidationError) as excinfo:
        ChatResponder(client).respond("hi")
    assert excinfo.value.subject == "MultiActionChatResponse"
    assert excinfo.value.paths == ["actions.0.text"]


def test_unrecoverable_text_raises_parsing_error(scripted_client) -> None:
    client = scripted_client(["I am not JSON"])
    with pytest.raises(ChatResponseParsingError):
        ChatResponder(client).respond("hi")
