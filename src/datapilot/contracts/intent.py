"""Intent contract: which tool a request resolves to and with which arguments."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import Field, StrictBool, StrictFloat, StrictInt, ValidationError, field_validator

from ..errors import ContractIssue, ContractValidationError
from .base import ContractModel, issues_from_validation_error, merge_issues

__all__ = [
    "FilterCondition",
    "INTENT_TOOL_MATRIX",
    "IntentArgs",
    "IntentContract",
    "MESSAGE_MAX_LENGTH",
    "intent_contract_issues",
    "normalize_intent_contract",
]

MESSAGE_MAX_LENGTH = 280

Intent = Literal["aggregate", "profile", "clean", "detect_anomaly", "remove_card", "save_view", "ask_clarify"]
Tool = Literal[
    "csv.aggregate",
    "csv.profile",
    "csv.clean_invoice_month",
    "csv.detect_outliers",
    "ui.remove_card",
    "idb.save_view",
]
FilterOperator = Literal["=", "!=", ">", ">=", "<", "<=", "in", "contains"]
Scalar = Union[StrictBool, StrictInt, StrictFloat, str]

INTENT_TOOL_MATRIX: Dict[str, Tuple[str, ...]] = {
    "aggregate": ("csv.aggregate",),
    "profile": ("csv.profile",),
    "clean": ("csv.clean_invoice_month",),
    "detect_anomaly": ("csv.detect_outliers",),
    "remove_card": ("ui.remove_card",),
    "save_view": ("idb.save_view",),
    "ask_clarify": (),
}

# Applied before validation so a minimal ``{intent, tool}`` is complete.
_ARG_DEFAULTS: Dict[str, Any] = {"groupBy": [], "aggregation": "sum", "filters": []}
_NULLABLE_ARGS = frozenset({"datasetId"})


class FilterCondition(ContractModel):
    column: str = Field(min_length=1)
    op: FilterOperator = "="
    value: Union[Scalar, List[Scalar]]

    @field_validator("value")
    @classmethod
    def _non_empty_list(cls, value: Any) -> Any:
        if isinstance(value, list) and not value:
            raise ValueError("filter value list must not be empty")
        return value


class IntentArgs(ContractModel):
    """Tool arguments; unknown keys are rejected."""

    datasetId: Optional[str] = Field(default=None, min_length=1)
    column: Optional[str] = Field(default=None, min_length=1)
    valueColumn: Optional[str] = Field(default=None, min_length=1)
    groupBy: List[str] = Field(default_factory=list)
    aggregation: Literal["sum", "avg", "count", "min", "max"] = "sum"
    filters: List[FilterCondition] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, gt=0)
    topN: Optional[int] = Field(default=None, gt=0)
    thresholdMultiplier: Optional[float] = Field(default=None, gt=0)
    viewTitle: Optional[str] = Field(default=None, min_length=1)
    cardId: Optional[str] = Field(default=None, min_length=1)


class IntentContract(ContractModel):
    intent: Intent
    tool: Optional[Tool] = None
    args: IntentArgs = Field(default_factory=IntentArgs)
    awaitUser: StrictBool = False
    message: Optional[str] = Field(default=None, max_length=MESSAGE_MAX_LENGTH)

    @property
    def allowed_tools(self) -> Tuple[str, ...]:
        return INTENT_TOOL_MATRIX[self.intent]

    def to_payload(self) -> Dict[str, Any]:
        """Return the dispatch payload; unset optional args stay absent."""
        return {
            "intent": self.intent,
            "tool": self.tool,
            "args": self.args.model_dump(exclude_none=True),
            "awaitUser": self.awaitUser,
            "message": self.message,
        }


def _with_defaults(candidate: Mapping[str, Any]) -> Dict[str, Any]:
    prepared: Dict[str, Any] = {key: value for key, value in candidate.items() if value is not None}
    if "tool" in candidate:
        prepared["tool"] = candidate["tool"]
    if "message" in candidate:
        prepared["message"] = candidate["message"]
    prepared.setdefault("awaitUser", False)

    raw_args = candidate.get("args")
    if raw_args is None:
        raw_args = {}
    if isinstance(raw_args, Mapping):
        args = {key: value for key, value in raw_args.items() if value is not None or key in _NULLABLE_ARGS}
        for key, default in _ARG_DEFAULTS.items():
            args.setdefault(key, list(default) if isinstance(default, list) else default)
        prepared["args"] = args
    else:
        prepared["args"] = raw_args
    return prepared


def _rule_issues(prepared: Mapping[str, Any]) -> List[ContractIssue]:
    intent = prepared.get("intent")
    if intent not in INTENT_TOOL_MATRIX:
        return []
    allowed = INTENT_TOOL_MATRIX[intent]
    tool = prepared.get("tool")
    issues: List[ContractIssue] = []
    if not allowed:
        if tool is not None:
            issues.append(ContractIssue("tool", f'Intent "{intent}" should not specify a tool.'))
    elif tool not in allowed:
        issues.append(ContractIssue("tool", f'Tool "{tool}" is not allowed for intent "{intent}".'))
    if intent == "ask_clarify" and prepared.get("awaitUser") is not True:
        issues.append(ContractIssue("awaitUser", "ask_clarify intent must set awaitUser=true."))
    return issues


def intent_contract_issues(candidate: Any) -> Tuple[Optional[IntentContract], List[ContractIssue]]:
    """Validate ``candidate`` and return ``(contract_or_None, issues)``."""
    if not isinstance(candidate, Mapping):
        return None, [ContractIssue("", "intent contract must be a JSON object")]
    prepared = _with_defaults(candidate)
    contract: Optional[IntentContract] = None
    field_issues: List[ContractIssue] = []
    try:
        contract = IntentContract.model_validate(prepared)
    except ValidationError as error:
        field_issues = issues_from_validation_error(error)
    issues = merge_issues(field_issues, _rule_issues(prepared))
    return (contract if not issues else None), issues


def normalize_intent_contract(candidate: Any) -> IntentContract:
    """Apply defaults, validate fields and cross-field rules.

    Raises:
        ContractValidationError: enumerating every broken rule with its path.
    """
    contract, issues = intent_contract_issues(candidate)
    if issues or contract is None:
        raise ContractValidationError("IntentContract", issues)
    return contract
