"""Self-correcting generation: re-prompting with the verification failure."""

from __future__ import annotations

from typing import Optional

import pytest

from datapilot.errors import CodeExecutionError, GenerationFailedError, OperationCancelledError
from datapilot.models.llm_client import LLMTransportError
from datapilot.models.retry import CancellationToken
from datapilot.pipelines import (
    CorrectionState,
    DataPreparer,
    FilterGenerator,
    IntentResolver,
    SelfCorrectingGenerator,
)


def test_generator_feeds_previous_error_into_next_attempt() -> None:
    feedbacks = []

    def generate(feedback: Optional[str]) -> str:
        feedbacks.append(feedback)
        return "bad" if len(feedbacks) == 1 else "good"

    def verify(candidate: str) -> str:
        if candidate == "bad":
            raise CodeExecutionError("TypeError: cannot add str and int")
        return candidate.upper()

    generator = SelfCorrectingGenerator("demo", generate=generate, verify=verify, max_attempts=3)
    result = generator.run()

    assert result.value == "GOOD"
    assert result.attempts == 2
    assert feedbacks == [None, "TypeError: cannot add str and int"]
    assert [record.outcome for record in result.history] == [CorrectionState.RETRYING, CorrectionState.SUCCEEDED]
    assert generator.state is CorrectionState.SUCCEEDED


def test_generator_exhausts_with_last_error() -> None:
    calls = []

    def generate(feedback: Optional[str]) -> int:
        calls.append(feedback)
        return len(calls)

    def verify(candidate: int) -> int:
        raise CodeExecutionError(f"failure {candidate}")

    generator = SelfCorrectingGenerator("demo", generate=generate, verify=verify, max_attempts=2)
    with pytest.raises(GenerationFailedError) as excinfo:
        generator.run()

    assert len(calls) == 2
    assert excinfo.value.attempts == 2
    assert str(excinfo.value) == "demo failed after 2 attempt(s). Last error: failure 2"
    assert isinstance(excinfo.value.__cause__, CodeExecutionError)
    assert generator.state is CorrectionState.EXHAUSTED


def test_generator_does_not_absorb_unexpected_errors() -> None:
    def generate(feedback: Optional[str]) -> int:
        raise KeyError("bug")

    generator = SelfCorrectingGenerator("demo", generate=generate, verify=lambda value: value, max_attempts=3)
    with pytest.raises(KeyError):
        generator.run()


def test_generator_stops_on_cancellation_between_attempts() -> None:
    token = CancellationToken()
    calls = []

    def generate(feedback: Optional[str]) -> int:
        calls.append(feedback)
        token.cancel()
        return 1

    def verify(candidate: int) -> int:
        raise CodeExecutionError("nope")

    generator = SelfCorrectingGenerator("demo", generate=generate, verify=verify, max_attempts=3)
    with pytest.raises(OperationCancelledError):
        generator.run(token)
    assert len(calls) == 1


def test_data_preparer_reprompts_once_with_error_text(scripted_client, sales_columns, sales_rows) -> None:
    broken = {
        "explanation": "Parse revenue",
        "functionBody": "return [row['Missing'] for row in data]",
        "outputColumns": [{"name": "Revenue", "type": "currency"}],
    }
    fixed = {
        "explanation": "Parse revenue",
        "functionBody": (
            "for row in data:\n"
            "    row['Revenue'] = _util.parse_number(row['Revenue'])\n"
            "return data"
        ),
        "outputColumns": [{"name": "Revenue", "type": "currency"}],
    }
    client = scripted_client([broken, fixed])

    result = DataPreparer(client).generate(sales_columns, sales_rows[:5])

    assert result.attempts == 2
    assert result.value.needs_transform
    assert len(client.prompts) == 2
    assert "Previous Attempt Failed" not in client.prompts[0]
    assert "Previous Attempt Failed" in client.prompts[1]
    assert "KeyError: 'Missing'" in client.prompts[1]
    assert client.operations == ["data_preparation", "data_preparation"]


def test_data_preparer_without_code_keeps_input_columns(scripted_client, sales_columns, sales_rows) -> None:
    client = scripted_client(['```json\n{"explanation": "Already tidy.", "functionBody": null, "outputColumns": []}\n```'])

    result = DataPreparer(client).generate(sales_columns, sales_rows[:5])

    assert result.attempts == 1
    assert result.value.functionBody is None
    assert [column.name for column in result.value.outputColumns] == [column.name for column in sales_columns]


def test_data_preparer_gives_up_after_three_attempts(scripted_client, sales_columns, sales_rows) -> None:
    broken = {"explanation": "x", "functionBody": "return 5", "outputColumns": []}
    client = scripted_client([broken, broken, broken])

    with pytest.raises(GenerationFailedError) as excinfo:
        DataPreparer(client).generate(sales_columns, sales_rows[:5])

    assert excinfo.value.attempts == 3
    assert "did not return a list" in str(excinfo.value)


def test_unparseable_answer_is_retried_like_a_failed_verification(scripted_client, sales_columns, sales_rows) -> None:
    client = scripted_client(
        [
            "I think you should filter the data.",
            {"explanation": "North only", "functionBody": "return [row for row in data if row['Region'] == 'North']"},
        ]
    )

    result = FilterGenerator(client).generate("only north", sales_columns, sales_rows)

    assert result.attempts == 2
    assert "No JSON object could be recovered" in client.prompts[1]


def test_filter_generator_respects_two_attempt_ceiling(scripted_client, sales_columns, sales_rows) -> None:
    short = {"explanation": "x", "functionBody": "return"}
    client = scripted_client([short, short])

    with pytest.raises(GenerationFailedError):
        FilterGenerator(client).generate("anything", sales_columns, sales_rows)
    assert len(client.prompts) == 2


def test_provider_failure_is_retried_by_the_generator(scripted_client, sales_columns, sales_rows) -> None:
    client = scripted_client(
        [
            LLMTransportError("socket closed"),
            {"explanation": "All rows", "functionBody": "return list(data)  # keep everything"},
        ]
    )
    result = FilterGenerator(client).generate("everything", sales_columns, sales_rows)
    assert result.attempts == 2
    assert "socket closed" in client.prompts[1]
    assert isinstance(result.history[0].error, str)


def test_intent_resolver_reprompts_with_enumerated_issues(scripted_client, sales_columns) -> None:
    client = scripted_client(
        [
            {"intent": "aggregate", "tool": "csv.profile"},
            {"intent": "aggregate", "tool": "csv.aggregate", "args": {"valueColumn": "Revenue", "groupBy": ["Region"]}},
        ]
    )

    result = IntentResolver(client).resolve("total revenue by region", sales_columns)

    assert result.value.tool == "csv.aggregate"
    assert result.value.args.groupBy == ["Region"]
    assert "The intent contract broke these rules:" in client.prompts[1]
    assert '- tool: Tool "csv.profile" is not allowed for intent "aggregate".' in client.prompts[1]
