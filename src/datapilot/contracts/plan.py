"""Analysis plan contract, structural validation and pre-execution repair."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import ConfigDict, Field, ValidationError, field_validator

from ..errors import ContractIssue, ContractValidationError
from .base import ContractModel, issues_from_validation_error, merge_issues

__all__ = [
    "AnalysisPlan",
    "ColumnProfile",
    "MIN_DESCRIPTION_LENGTH",
    "PreparedPlan",
    "groupable_columns",
    "infer_group_by_column",
    "is_valid_plan",
    "normalize_generated_plan",
    "plan_issues",
    "prepare_plan_for_execution",
    "validate_analysis_plan",
]

LOGGER = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 8
GROUPABLE_TYPES = ("categorical", "date", "time")
ALLOWED_AGGREGATIONS = ("sum", "count", "avg")

ChartType = Literal["bar", "line", "pie", "doughnut", "scatter", "combo"]
Aggregation = Literal["sum", "count", "avg"]
ColumnType = Literal["numerical", "categorical", "date", "time", "currency", "percentage"]


class ColumnProfile(ContractModel):
    """Name and semantic type of one dataset column."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    type: ColumnType
    unique_values: Optional[int] = Field(default=None, alias="uniqueValues")


class AnalysisPlan(ContractModel):
    """Chart descriptor produced by plan generation."""

    # Providers echo review context such as ``aggregatedSample``; drop it.
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chartType: ChartType
    title: str = Field(min_length=1)
    description: str
    aggregation: Optional[Aggregation] = None
    groupByColumn: Optional[str] = None
    valueColumn: Optional[str] = None
    xValueColumn: Optional[str] = None
    yValueColumn: Optional[str] = None
    secondaryValueColumn: Optional[str] = None
    secondaryAggregation: Optional[Aggregation] = None
    defaultTopN: Optional[int] = Field(default=None, ge=1)
    defaultHideOthers: Optional[bool] = None

    @field_validator("description")
    @classmethod
    def _description_is_informative(cls, value: str) -> str:
        if len(value.strip()) < MIN_DESCRIPTION_LENGTH:
            raise ValueError(f"description must contain at least {MIN_DESCRIPTION_LENGTH} characters")
        return value

    def to_payload(self) -> Dict[str, Any]:
        """Return the plan as a JSON-ready mapping without unset fields."""
        return self.model_dump(exclude_none=True)


def _rule_issues(candidate: Mapping[str, Any]) -> List[ContractIssue]:
    chart_type = candidate.get("chartType")
    issues: List[ContractIssue] = []
    if chart_type == "scatter":
        for name in ("xValueColumn", "yValueColumn"):
            if not candidate.get(name):
                issues.append(ContractIssue(name, "scatter plots require this column"))
        return issues

    aggregation = candidate.get("aggregation")
    if not aggregation:
        issues.append(ContractIssue("aggregation", f"required for {chart_type or 'non-scatter'} charts"))
    if not candidate.get("groupByColumn"):
        issues.append(ContractIssue("groupByColumn", f"required for {chart_type or 'non-scatter'} charts"))
    if aggregation and aggregation != "count" and not candidate.get("valueColumn"):
        issues.append(ContractIssue("valueColumn", f"required for '{aggregation}' aggregation"))
    return issues


def plan_issues(candidate: Any) -> List[ContractIssue]:
    """Return every structural problem of ``candidate``; empty when valid."""
    if not isinstance(candidate, Mapping):
        return [ContractIssue("", "plan must be a JSON object")]
    field_issues: List[ContractIssue] = []
    try:
        AnalysisPlan.model_validate(dict(candidate))
    except ValidationError as error:
        field_issues = issues_from_validation_error(error)
    return merge_issues(field_issues, _rule_issues(candidate))


def validate_analysis_plan(candidate: Any) -> AnalysisPlan:
    """Validate ``candidate`` and return the typed plan.

    Raises:
        ContractValidationError: listing every broken rule.
    """
    issues = plan_issues(candidate)
    if issues:
        raise ContractValidationError("AnalysisPlan", issues)
    return AnalysisPlan.model_validate(dict(candidate))


def is_valid_plan(candidate: Any) -> bool:
    issues = plan_issues(candidate)
    if issues:
        title = candidate.get("title") if isinstance(candidate, Mapping) else None
        LOGGER.warning(
            "Skipping invalid plan %r: %s",
            title,
            "; ".join(issue.render() for issue in issues),
        )
        return False
    return True


def infer_group_by_column(value_column: Optional[str], columns: Sequence[ColumnProfile]) -> Optional[str]:
    """Pick a grouping column for a plan that omitted one.

    Preference order: the first categorical/date/time column other than the
    value column, then the first such column, then any other column.
    """
    groupable = [column for column in columns if column.type in GROUPABLE_TYPES]
    for column in groupable:
        if column.name != value_column:
            return column.name
    if groupable:
        return groupable[0].name
    for column in columns:
        if column.name != value_column:
            return column.name
    return None


def normalize_generated_plan(candidate: Any, columns: Sequence[ColumnProfile]) -> Any:
    """Fill in a missing ``groupByColumn`` for aggregating chart types."""
    if not isinstance(candidate, Mapping):
        return candidate
    normalized = dict(candidate)
    chart_type = normalized.get("chartType")
    if chart_type and chart_type not in ("scatter", "combo") and not normalized.get("groupByColumn"):
        inferred = infer_group_by_column(normalized.get("valueColumn"), columns)
        if inferred:
            normalized["groupByColumn"] = inferred
    return normalized


def _count_unique(rows: Sequence[Mapping[str, Any]], column: str, max_sample: int = 500) -> int:
    seen = set()
    for row in rows[:max_sample]:
        value = row.get(column)
        if value is None:
            continue
        normalized = str(value).strip()
        if not normalized:
            continue
        seen.add(normalized)
        if len(seen) > 200:
            break
    return len(seen)


def groupable_columns(columns: Sequence[ColumnProfile], rows: Sequence[Mapping[str, Any]]) -> List[ColumnProfile]:
    """Rank columns by how well they serve as a chart's grouping axis."""
    scored = [
        (column, column.unique_values if column.unique_values is not None else _count_unique(rows, column.name))
        for column in columns
    ]
    preferred = [
        (column, unique)
        for column, unique in scored
        if unique > 1 and (column.type in GROUPABLE_TYPES or unique <= 50)
    ]
    if preferred:
        preferred.sort(
            key=lambda entry: (0 if entry[0].type in GROUPABLE_TYPES else 1, abs((entry[1] or 100) - 12))
        )
        return [column for column, _ in preferred]
    return [column for column, unique in scored if unique > 1]


@dataclass(slots=True)
class PreparedPlan:
    """Outcome of ``prepare_plan_for_execution``."""

    plan: AnalysisPlan
    warnings: List[str] = field(default_factory=list)
    is_valid: bool = True
    error_message: Optional[str] = None


def prepare_plan_for_execution(
    plan: AnalysisPlan,
    columns: Sequence[ColumnProfile],
    rows: Sequence[Mapping[str, Any]],
) -> PreparedPlan:
    """Repair a plan right before it is executed against the full dataset."""
    prepared = plan.model_copy()
    warnings: List[str] = []

    if prepared.chartType == "scatter":
        if not prepared.xValueColumn or not prepared.yValueColumn:
            return PreparedPlan(
                prepared, warnings, False, "Scatter plot plan is missing xValueColumn or yValueColumn."
            )
        return PreparedPlan(prepared, warnings)

    if not rows:
        return PreparedPlan(prepared, warnings, False, "Dataset appears empty for analysis.")

    if prepared.aggregation not in ALLOWED_AGGREGATIONS:
        fallback = "sum" if prepared.valueColumn else "count"
        prepared.aggregation = fallback
        warnings.append(f"Plan missing aggregation; defaulting to {fallback}.")
    if prepared.aggregation != "count" and not prepared.valueColumn:
        prepared.aggregation = "count"
        warnings.append("Value column missing for sum/avg; using count aggregation instead.")

    if prepared.chartType == "combo":
        if not prepared.valueColumn or not prepared.secondaryValueColumn:
            return PreparedPlan(
                prepared, warnings, False, "Combo chart requires both valueColumn and secondaryValueColumn."
            )
        if not prepared.secondaryAggregation:
            prepared.secondaryAggregation = prepared.aggregation or "sum"
            warnings.append("Secondary aggregation missing; mirroring primary aggregation.")

    if not prepared.groupByColumn:
        candidates = groupable_columns(columns, rows)
        if not candidates:
            return PreparedPlan(prepared, warnings, False, "Unable to infer a grouping column for this chart.")
        prepared.groupByColumn = candidates[0].name
        warnings.append(f'Plan missing grouping; defaulting to "{candidates[0].name}".')

    return PreparedPlan(prepared, warnings)
