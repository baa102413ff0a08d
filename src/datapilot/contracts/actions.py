"""ActionEnvelope: tagged union internally, all-slots-present wire shape at the boundary."""

from __future__ import annotations

import math
import threading
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, ClassVar, Dict, List, Literal, Mapping, Optional, Union

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import ContractIssue, ContractValidationError
from ..schema.catalog import ACTION_TYPES, PAYLOAD_SLOTS, SLOT_NAMES
from .base import ContractModel, issues_from_validation_error
from .plan import AnalysisPlan, plan_issues

__all__ = [
    "ActionEnvelope",
    "AwaitUserAction",
    "ClarificationAction",
    "DEFAULT_CONFIDENCE",
    "DomAction",
    "ExecuteCodeAction",
    "FilterSpreadsheetAction",
    "PlanCreationAction",
    "PlanState",
    "PlanStateUpdateAction",
    "ProceedToAnalysisAction",
    "StateTagFactory",
    "TextResponseAction",
    "normalize_plan_state",
    "parse_action",
    "to_wire",
]

DEFAULT_CONFIDENCE = 0.65


class _Payload(ContractModel):
    # Strict providers send explicit nulls for every optional field.
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PlanStep(_Payload):
    id: str
    label: str


class PlanStepDetail(_Payload):
    id: str
    label: str
    intent: str = "conversation"
    status: Literal["pending", "in_progress", "completed", "blocked"] = "pending"


class PlanState(_Payload):
    planId: str
    goal: str
    contextSummary: Optional[str] = None
    progress: str
    nextSteps: List[PlanStep] = Field(default_factory=list)
    blockedBy: Optional[str] = None
    observationIds: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None
    updatedAt: Optional[str] = None
    currentStepId: str
    steps: List[PlanStepDetail] = Field(default_factory=list)
    stateTag: Optional[str] = None


class Choice(_Payload):
    label: str
    value: str


class AwaitUserPayload(_Payload):
    promptId: Optional[str] = None
    question: str
    options: List[Choice] = Field(default_factory=list)
    allowFreeText: Optional[bool] = None


class DomTarget(_Payload):
    byId: Optional[str] = None
    byTitle: Optional[str] = None
    selector: Optional[str] = None


class DomArgs(_Payload):
    cardId: str
    newType: Optional[Literal["bar", "line", "pie", "doughnut", "scatter", "combo"]] = None
    visible: Optional[bool] = None
    column: Optional[str] = None
    values: Optional[List[str]] = None
    topN: Optional[int] = None
    hide: Optional[bool] = None
    label: Optional[str] = None
    format: Optional[Literal["png", "csv", "html"]] = None


class DomActionPayload(_Payload):
    toolName: Literal[
        "highlightCard",
        "changeCardChartType",
        "showCardData",
        "filterCard",
        "setTopN",
        "toggleHideOthers",
        "toggleLegendLabel",
        "exportCard",
        "removeCard",
    ]
    target: Optional[DomTarget] = None
    args: DomArgs


class CodePayload(_Payload):
    explanation: str
    functionBody: str = Field(min_length=1)


class ToolArgs(_Payload):
    query: str = Field(min_length=1)


class PendingPlan(_Payload):
    """Partial plan awaiting a clarification answer; every field may be null."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chartType: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    aggregation: Optional[str] = None
    groupByColumn: Optional[str] = None
    valueColumn: Optional[str] = None
    xValueColumn: Optional[str] = None
    yValueColumn: Optional[str] = None
    secondaryValueColumn: Optional[str] = None
    secondaryAggregation: Optional[str] = None
    defaultTopN: Optional[int] = None
    defaultHideOthers: Optional[bool] = None


class ClarificationRequest(_Payload):
    question: str
    options: List[Choice] = Field(default_factory=list)
    pendingPlan: PendingPlan
    targetProperty: str


class _Action(ContractModel):
    """Envelope metadata shared by every action variant."""

    slot: ClassVar[Optional[str]] = None

    stepId: Optional[str] = None
    reason: Optional[str] = None
    stateTag: Optional[str] = None

    @property
    def payload(self) -> Any:
        return getattr(self, self.slot) if self.slot else None


class PlanStateUpdateAction(_Action):
    slot: ClassVar[Optional[str]] = "planState"
    type: Literal["plan_state_update"] = "plan_state_update"
    planState: PlanState


class TextResponseAction(_Action):
    slot: ClassVar[Optional[str]] = "text"
    type: Literal["text_response"] = "text_response"
    text: str


class AwaitUserAction(_Action):
    slot: ClassVar[Optional[str]] = "awaitUserPayload"
    type: Literal["await_user"] = "await_user"
    awaitUserPayload: AwaitUserPayload


class PlanCreationAction(_Action):
    slot: ClassVar[Optional[str]] = "plan"
    type: Literal["plan_creation"] = "plan_creation"
    plan: AnalysisPlan


class DomAction(_Action):
    slot: ClassVar[Optional[str]] = "domAction"
    type: Literal["dom_action"] = "dom_action"
    domAction: DomActionPayload


class ExecuteCodeAction(_Action):
    slot: ClassVar[Optional[str]] = "code"
    type: Literal["execute_js_code"] = "execute_js_code"
    code: CodePayload


class ProceedToAnalysisAction(_Action):
    type: Literal["proceed_to_analysis"] = "proceed_to_analysis"


class FilterSpreadsheetAction(_Action):
    slot: ClassVar[Optional[str]] = "args"
    type: Literal["filter_spreadsheet"] = "filter_spreadsheet"
    args: ToolArgs


class ClarificationAction(_Action):
    slot: ClassVar[Optional[str]] = "clarification"
    type: Literal["clarification_request"] = "clarification_request"
    clarification: ClarificationRequest


ActionEnvelope = Annotated[
    Union[
        PlanStateUpdateAction,
        TextResponseAction,
        AwaitUserAction,
        PlanCreationAction,
        DomAction,
        ExecuteCodeAction,
        ProceedToAnalysisAction,
        FilterSpreadsheetAction,
        ClarificationAction,
    ],
    Field(discriminator="type"),
]

_ENVELOPE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ActionEnvelope)


def _strip_nulls(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _strip_nulls(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_strip_nulls(item) for item in value]
    return value


def parse_action(wire: Any) -> Any:
    """Validate one wire envelope and return its typed variant.

    Exactly the slot matching ``type`` must carry data; every other slot must
    be absent or null.

    Raises:
        ContractValidationError: listing every broken rule.
    """
    if not isinstance(wire, Mapping):
        raise ContractValidationError("ActionEnvelope", [ContractIssue("", "action must be a JSON object")])

    action_type = wire.get("type")
    if action_type not in ACTION_TYPES:
        expected = ", ".join(ACTION_TYPES)
        raise ContractValidationError(
            "ActionEnvelope",
            [ContractIssue("type", f"unknown action type {action_type!r}; expected one of: {expected}")],
        )

    slot = PAYLOAD_SLOTS[action_type]
    issues: List[ContractIssue] = []
    for name in SLOT_NAMES:
        if name != slot and wire.get(name) is not None:
            issues.append(ContractIssue(name, f"must be null for '{action_type}' actions"))
    if slot is not None and wire.get(slot) is None:
        issues.append(ContractIssue(slot, f"required for '{action_type}' actions"))

    candidate: Dict[str, Any] = {"type": action_type}
    for key in ("stepId", "reason", "stateTag"):
        if wire.get(key) is not None:
            candidate[key] = wire[key]
    if slot is not None and wire.get(slot) is not None:
        candidate[slot] = _strip_nulls(wire[slot])

    try:
        action = _ENVELOPE_ADAPTER.validate_python(candidate)
    except ValidationError as error:
        for issue in issues_from_validation_error(error, skip_leading=ACTION_TYPES):
            if slot is not None and wire.get(slot) is None and issue.path == slot:
                continue
            issues.append(issue)
        action = None
    if isinstance(action, PlanCreationAction):
        # Field types passed; chart-level rules still apply.
        issues.extend(
            ContractIssue(f"plan.{issue.path}", issue.message) for issue in plan_issues(action.plan.to_payload())
        )
    if issues or action is None:
        raise ContractValidationError("ActionEnvelope", issues)
    return action


def to_wire(action: Any) -> Dict[str, Any]:
    """Render ``action`` with every payload slot present.

    Unused slots and unset nested fields are explicit nulls, matching the
    all-required strict schema.
    """
    wire: Dict[str, Any] = {
        "type": action.type,
        "stepId": action.stepId,
        "reason": action.reason,
        "stateTag": action.stateTag,
    }
    for name in SLOT_NAMES:
        wire[name] = None
    if action.slot is not None:
        payload = action.payload
        wire[action.slot] = payload.model_dump() if hasattr(payload, "model_dump") else payload
    return wire


class StateTagFactory:
    """Mint monotonically increasing ``<epoch-ms>-<seq>`` state tags."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._last_epoch = 0

    def mint(self, now_ms: Optional[int] = None) -> str:
        with self._lock:
            now = int(time.time() * 1000) if now_ms is None else now_ms
            epoch = max(now, self._last_epoch)
            if epoch != self._last_epoch:
                self._seq = 0
                self._last_epoch = epoch
            self._seq += 1
            return f"{epoch:013d}-{self._seq}"


_FALLBACK_TAGS = StateTagFactory()


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def normalize_plan_state(
    plan_state: Mapping[str, Any],
    *,
    now: Optional[Callable[[], datetime]] = None,
    tags: Optional[StateTagFactory] = None,
) -> Dict[str, Any]:
    """Fill runtime-owned plan tracker fields the provider may leave out."""
    normalized = dict(plan_state)
    updated_at = normalized.get("updatedAt")
    if not isinstance(updated_at, str) or not updated_at.strip():
        stamp = now() if now is not None else datetime.now(timezone.utc)
        normalized["updatedAt"] = stamp.isoformat().replace("+00:00", "Z")
    state_tag = normalized.get("stateTag")
    if not isinstance(state_tag, str) or not state_tag.strip():
        normalized["stateTag"] = (tags or _FALLBACK_TAGS).mint()
    if not isinstance(normalized.get("observationIds"), list):
        normalized["observationIds"] = []
    normalized["blockedBy"] = normalized.get("blockedBy")
    summary = normalized.get("contextSummary")
    if not isinstance(summary, str) or not summary.strip():
        normalized["contextSummary"] = None
    normalized["confidence"] = _clamp_confidence(normalized.get("confidence"))
    return normalized
