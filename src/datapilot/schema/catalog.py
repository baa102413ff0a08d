"""Canonical response schemas and their per-path dialect policies."""

from __future__ import annotations

from typing import Dict, Iterable, List

from .dialects import SchemaDefinition, policies_for
from .nodes import SchemaNode, array, boolean, child_path, enum_of, integer, items_path, number, obj, string

__all__ = [
    "ACTION_TYPES",
    "AGGREGATIONS",
    "ANALYSIS_PLAN_LIST",
    "CHART_TYPES",
    "COLUMN_TYPES",
    "DATA_PREPARATION_PLAN",
    "DOM_TOOL_NAMES",
    "FILTER_OPERATORS",
    "FILTER_FUNCTION_RESPONSE",
    "INTENT_CONTRACT",
    "INTENTS",
    "MULTI_ACTION_CHAT_RESPONSE",
    "PAYLOAD_SLOTS",
    "PLAN_OPTIONAL_FIELDS",
    "PLAN_PROPERTIES",
    "SCHEMA_REGISTRY",
    "SLOT_NAMES",
    "TOOLS",
    "get_schema",
]

CHART_TYPES = ("bar", "line", "pie", "doughnut", "scatter", "combo")
AGGREGATIONS = ("sum", "count", "avg")
COLUMN_TYPES = ("numerical", "categorical", "date", "time", "currency", "percentage")
DOM_TOOL_NAMES = (
    "highlightCard",
    "changeCardChartType",
    "showCardData",
    "filterCard",
    "setTopN",
    "toggleHideOthers",
    "toggleLegendLabel",
    "exportCard",
    "removeCard",
)
ACTION_TYPES = (
    "plan_state_update",
    "text_response",
    "await_user",
    "plan_creation",
    "dom_action",
    "execute_js_code",
    "proceed_to_analysis",
    "filter_spreadsheet",
    "clarification_request",
)
# Payload slot carried by each action type; ``None`` means no payload.
PAYLOAD_SLOTS: Dict[str, str | None] = {
    "plan_state_update": "planState",
    "text_response": "text",
    "await_user": "awaitUserPayload",
    "plan_creation": "plan",
    "dom_action": "domAction",
    "execute_js_code": "code",
    "proceed_to_analysis": None,
    "filter_spreadsheet": "args",
    "clarification_request": "clarification",
}
SLOT_NAMES = ("planState", "text", "awaitUserPayload", "plan", "domAction", "code", "args", "clarification")


def _prefixed(base: str, names: Iterable[str]) -> List[str]:
    return [child_path(base, name) for name in names]


# --- analysis plans -------------------------------------------------------

PLAN_PROPERTIES: Dict[str, SchemaNode] = {
    "chartType": enum_of(CHART_TYPES, "Type of chart to generate."),
    "title": string("A concise title for the analysis."),
    "description": string("A brief explanation of what the analysis shows."),
    "aggregation": enum_of(AGGREGATIONS, "The aggregation function to apply. Omit for scatter plots."),
    "groupByColumn": string("The column to group data by (categorical). Omit for scatter plots."),
    "valueColumn": string("The column for aggregation (numerical). Not needed for 'count'."),
    "xValueColumn": string("The column for the X-axis of a scatter plot (numerical). Required for scatter plots."),
    "yValueColumn": string("The column for the Y-axis of a scatter plot (numerical). Required for scatter plots."),
    "secondaryValueColumn": string("For combo charts, the secondary column for aggregation (numerical)."),
    "secondaryAggregation": enum_of(AGGREGATIONS, "For combo charts, the aggregation for the secondary value column."),
    "defaultTopN": integer("Optional. Suggested default Top N view when there are many categories (e.g. 8)."),
    "defaultHideOthers": boolean("Optional. With defaultTopN, whether to hide the 'Others' bucket by default."),
}
PLAN_OPTIONAL_FIELDS = tuple(name for name in PLAN_PROPERTIES if name not in {"chartType", "title", "description"})

PLAN_NODE = obj(PLAN_PROPERTIES, required=("chartType", "title", "description"))

_PLAN_ITEMS = items_path(child_path("", "plans"))
_PLAN_LIST_ROOT = obj(
    {"plans": array(PLAN_NODE, "Analysis plan candidates.")},
    required=("plans",),
)

ANALYSIS_PLAN_LIST = SchemaDefinition(
    name="AnalysisPlanList",
    root=_PLAN_LIST_ROOT,
    policies=policies_for(
        additional_properties=("", _PLAN_ITEMS),
        all_required=("", _PLAN_ITEMS),
        nullable=_prefixed(_PLAN_ITEMS, PLAN_OPTIONAL_FIELDS),
    ),
    description="List of chart plans produced by candidate generation and the quality gate.",
)


# --- data preparation and filters ----------------------------------------

COLUMN_PROFILE_NODE = obj(
    {
        "name": string("The column name."),
        "type": enum_of(COLUMN_TYPES, "The data type of the column."),
    },
    required=("name", "type"),
)

_OUTPUT_COLUMNS = child_path("", "outputColumns")

DATA_PREPARATION_PLAN = SchemaDefinition(
    name="DataPreparationPlan",
    root=obj(
        {
            "explanation": string("A brief, user-facing explanation of the transformations applied to the data."),
            "functionBody": string(
                "Body of a Python function taking `data` (a list of dicts) and `_util` (helper object) that "
                "returns the transformed list. Null when no transformation is needed."
            ),
            "outputColumns": array(
                COLUMN_PROFILE_NODE,
                "Column profiles describing the data AFTER the transformation.",
            ),
        },
        required=("explanation", "outputColumns"),
    ),
    policies=policies_for(
        additional_properties=("", items_path(_OUTPUT_COLUMNS)),
        all_required=("", items_path(_OUTPUT_COLUMNS)),
        nullable=(child_path("", "functionBody"),),
    ),
)

FILTER_FUNCTION_RESPONSE = SchemaDefinition(
    name="FilterFunctionResponse",
    root=obj(
        {
            "explanation": string("A brief, user-facing explanation of the filter created from the query."),
            "functionBody": string(
                "Body of a Python function taking `data` and `_util` that returns the filtered list, "
                "e.g. `return [row for row in data if ...]`.",
                min_length=10,
            ),
        },
        required=("explanation", "functionBody"),
    ),
    policies=policies_for(additional_properties=("",), all_required=("",)),
)


# --- chat action stream ---------------------------------------------------

PLAN_STEP_NODE = obj(
    {"id": string("Stable step identifier."), "label": string("User-facing step label.")},
    required=("id", "label"),
)

PLAN_STATE_NODE = obj(
    {
        "planId": string("Identifier of the plan being tracked."),
        "goal": string("The user's goal in one sentence."),
        "contextSummary": string("Short summary of the relevant context, or null."),
        "progress": string("What has been achieved so far."),
        "nextSteps": array(PLAN_STEP_NODE, "Upcoming steps."),
        "blockedBy": string("What blocks progress, or null."),
        "observationIds": array(string(), "Observation ids this update accounts for."),
        "confidence": number("Confidence between 0 and 1."),
        "updatedAt": string("ISO-8601 timestamp of this update."),
        "currentStepId": string("The step currently being executed."),
        "steps": array(
            obj(
                {
                    "id": string(),
                    "label": string(),
                    "intent": string("Kind of work, e.g. conversation or transform."),
                    "status": enum_of(("pending", "in_progress", "completed", "blocked")),
                },
                required=("id", "label", "intent", "status"),
            ),
            "Full step list.",
        ),
        "stateTag": string("Opaque runtime state tag."),
    },
    required=("planId", "goal", "progress", "nextSteps", "updatedAt", "currentStepId", "steps"),
)

CHOICE_NODE = obj(
    {
        "label": string("The user-friendly text for the option button."),
        "value": string(
            "The exact column name (case-sensitive) or literal value assigned when this option is chosen."
        ),
    },
    required=("label", "value"),
)

AWAIT_USER_NODE = obj(
    {
        "promptId": string("Identifier used to correlate the user's answer."),
        "question": string("The question shown to the user."),
        "options": array(CHOICE_NODE, "Suggested answers."),
        "allowFreeText": boolean("Whether the user may type a free-form answer."),
    },
    required=("question", "options"),
)

DOM_TARGET_NODE = obj(
    {
        "byId": string("Card id."),
        "byTitle": string("Card title."),
        "selector": string("CSS selector."),
    }
)

DOM_ARGS_PROPERTIES: Dict[str, SchemaNode] = {
    "cardId": string("The ID of the target analysis card."),
    "newType": enum_of(CHART_TYPES, "For 'changeCardChartType'."),
    "visible": boolean("For 'showCardData'."),
    "column": string("For 'filterCard', the column to filter on."),
    "values": array(string(), "For 'filterCard', the values to include."),
    "topN": integer("For 'setTopN'. Null reverts to showing all categories."),
    "hide": boolean("For 'toggleHideOthers'."),
    "label": string("For 'toggleLegendLabel', the exact legend label."),
    "format": enum_of(("png", "csv", "html"), "For 'exportCard'."),
}

DOM_ACTION_NODE = obj(
    {
        "toolName": enum_of(DOM_TOOL_NAMES),
        "target": DOM_TARGET_NODE,
        "args": obj(DOM_ARGS_PROPERTIES, required=("cardId",), description="Arguments for the tool."),
    },
    required=("toolName", "args"),
    description="A DOM manipulation action for the frontend. Required for 'dom_action'.",
)

CODE_NODE = obj(
    {
        "explanation": string("A brief, user-facing explanation of what the code will do."),
        "functionBody": string(
            "Non-empty body of a Python function taking `data` and `_util` that returns the transformed list.",
            min_length=10,
        ),
    },
    required=("explanation", "functionBody"),
    description="For 'execute_js_code', the code to run.",
)

TOOL_ARGS_NODE = obj(
    {"query": string("The natural language query to filter the spreadsheet by.")},
    required=("query",),
    description="Arguments for 'filter_spreadsheet'.",
)

CLARIFICATION_NODE = obj(
    {
        "question": string("The clear, user-facing question to ask."),
        "options": array(CHOICE_NODE),
        # Gemini rejects objects without properties, so the partial plan lists every field.
        "pendingPlan": PLAN_NODE.optional().describe(
            "The partial analysis plan awaiting the user's input; contains every known parameter."
        ),
        "targetProperty": string("The pendingPlan property the selected value is assigned to."),
    },
    required=("question", "options", "pendingPlan", "targetProperty"),
    description="The clarification request. Required for 'clarification_request'.",
)

ACTION_NODE = obj(
    {
        "type": enum_of(ACTION_TYPES, "The action kind; exactly the matching payload field is populated."),
        "stepId": string("The plan step this action advances."),
        "reason": string("Why this action is taken, under 280 characters."),
        "stateTag": string("Runtime state tag; may be null."),
        "planState": PLAN_STATE_NODE.describe("Plan tracker. Required for 'plan_state_update'."),
        "text": string("Conversational text. Required for 'text_response'."),
        "awaitUserPayload": AWAIT_USER_NODE.describe("Question to wait on. Required for 'await_user'."),
        "plan": PLAN_NODE.describe("Analysis plan. Required for 'plan_creation'."),
        "domAction": DOM_ACTION_NODE,
        "code": CODE_NODE,
        "args": TOOL_ARGS_NODE,
        "clarification": CLARIFICATION_NODE,
    },
    required=("type", "stepId", "reason"),
)

_ACTIONS = child_path("", "actions")
_ACTION = items_path(_ACTIONS)
_PLAN_STATE = child_path(_ACTION, "planState")
_DOM_ACTION = child_path(_ACTION, "domAction")
_DOM_TARGET = child_path(_DOM_ACTION, "target")
_DOM_ARGS = child_path(_DOM_ACTION, "args")
_AWAIT = child_path(_ACTION, "awaitUserPayload")
_CLARIFICATION = child_path(_ACTION, "clarification")
_PENDING_PLAN = child_path(_CLARIFICATION, "pendingPlan")

_MULTI_ACTION_ROOT = obj(
    {"actions": array(ACTION_NODE, "A sequence of actions for the assistant to perform.")},
    required=("actions",),
)

MULTI_ACTION_CHAT_RESPONSE = SchemaDefinition(
    name="MultiActionChatResponse",
    root=_MULTI_ACTION_ROOT,
    policies=policies_for(
        additional_properties=_MULTI_ACTION_ROOT.object_paths(),
        all_required=_MULTI_ACTION_ROOT.object_paths(),
        nullable=[
            *_prefixed(_ACTION, ("stateTag", *SLOT_NAMES)),
            *_prefixed(_PLAN_STATE, ("contextSummary", "blockedBy", "confidence", "stateTag")),
            *_prefixed(_AWAIT, ("promptId", "allowFreeText")),
            _DOM_TARGET,
            *_prefixed(_DOM_TARGET, ("byId", "byTitle", "selector")),
            *_prefixed(_DOM_ARGS, [name for name in DOM_ARGS_PROPERTIES if name != "cardId"]),
            *_prefixed(child_path(_ACTION, "plan"), PLAN_OPTIONAL_FIELDS),
            *_prefixed(_PENDING_PLAN, PLAN_PROPERTIES),
        ],
    ),
    description="Ordered ActionEnvelope stream returned by the chat responder.",
)


# --- intent contracts -----------------------------------------------------

INTENTS = ("aggregate", "profile", "clean", "detect_anomaly", "remove_card", "save_view", "ask_clarify")
TOOLS = (
    "csv.aggregate",
    "csv.profile",
    "csv.clean_invoice_month",
    "csv.detect_outliers",
    "ui.remove_card",
    "idb.save_view",
)
FILTER_OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "in", "contains")

INTENT_ARGS_PROPERTIES: Dict[str, SchemaNode] = {
    "datasetId": string("Dataset identifier."),
    "column": string(),
    "valueColumn": string(),
    "groupBy": array(string(), "Columns to group by."),
    "aggregation": enum_of(("sum", "avg", "count", "min", "max")),
    "filters": array(
        obj(
            {
                "column": string(),
                "op": enum_of(FILTER_OPERATORS),
                "value": string("Literal to compare against."),
            },
            required=("column", "op", "value"),
        )
    ),
    "limit": integer(),
    "topN": integer(),
    "thresholdMultiplier": number(),
    "viewTitle": string(),
    "cardId": string(),
}
_INTENT_ARGS = child_path("", "args")
_INTENT_FILTER = items_path(child_path(_INTENT_ARGS, "filters"))

_INTENT_ROOT = obj(
    {
        "intent": enum_of(INTENTS),
        "tool": enum_of(TOOLS, "Tool to invoke; null for ask_clarify."),
        "args": obj(INTENT_ARGS_PROPERTIES),
        "awaitUser": boolean("True when the runtime must wait for the user."),
        "message": string("Optional short message, at most 280 characters."),
    },
    required=("intent",),
)

INTENT_CONTRACT = SchemaDefinition(
    name="IntentContract",
    root=_INTENT_ROOT,
    policies=policies_for(
        additional_properties=_INTENT_ROOT.object_paths(),
        all_required=_INTENT_ROOT.object_paths(),
        nullable=[
            child_path("", "tool"),
            child_path("", "message"),
            *_prefixed(
                _INTENT_ARGS,
                [name for name in INTENT_ARGS_PROPERTIES if name not in {"groupBy", "aggregation", "filters"}],
            ),
        ],
    ),
)

SCHEMA_REGISTRY: Dict[str, SchemaDefinition] = {
    definition.name: definition
    for definition in (
        ANALYSIS_PLAN_LIST,
        DATA_PREPARATION_PLAN,
        FILTER_FUNCTION_RESPONSE,
        MULTI_ACTION_CHAT_RESPONSE,
        INTENT_CONTRACT,
    )
}


def get_schema(name: str) -> SchemaDefinition:
    """Return the registered definition called ``name``."""
    try:
        return SCHEMA_REGISTRY[name]
    except KeyError as error:
        valid = ", ".join(sorted(SCHEMA_REGISTRY))
        raise KeyError(f"Unknown schema '{name}'. Expected one of: {valid}") from error
