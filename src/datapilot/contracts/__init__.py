"""Semantic contracts validated after value recovery."""

from .actions import ActionEnvelope, PlanState, StateTagFactory, normalize_plan_state, parse_action, to_wire
from .intent import INTENT_TOOL_MATRIX, IntentArgs, IntentContract, normalize_intent_contract
from .plan import (
    AnalysisPlan,
    ColumnProfile,
    PreparedPlan,
    infer_group_by_column,
    is_valid_plan,
    normalize_generated_plan,
    plan_issues,
    prepare_plan_for_execution,
    validate_analysis_plan,
)

__all__ = [
    "ActionEnvelope",
    "AnalysisPlan",
    "ColumnProfile",
    "INTENT_TOOL_MATRIX",
    "IntentArgs",
    "IntentContract",
    "PlanState",
    "PreparedPlan",
    "StateTagFactory",
    "infer_group_by_column",
    "is_valid_plan",
    "normalize_generated_plan",
    "normalize_intent_contract",
    "normalize_plan_state",
    "parse_action",
    "plan_issues",
    "prepare_plan_for_execution",
    "to_wire",
    "validate_analysis_plan",
]
