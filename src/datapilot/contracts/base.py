"""Shared pydantic plumbing for the semantic contracts."""

from __future__ import annotations

from typing import Any, Iterable, List, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import ContractIssue

__all__ = ["ContractModel", "issue_path", "issues_from_validation_error", "merge_issues"]


class ContractModel(BaseModel):
    """Base model for contracts; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


def issue_path(location: Sequence[Any], prefix: str = "") -> str:
    """Render a pydantic error location as a dotted path."""
    parts = [str(part) for part in location]
    if prefix:
        parts.insert(0, prefix)
    return ".".join(parts)


def issues_from_validation_error(
    error: ValidationError,
    *,
    prefix: str = "",
    skip_leading: Iterable[str] = (),
) -> List[ContractIssue]:
    """Convert every pydantic error into a ``ContractIssue``.

    ``skip_leading`` drops a first location element such as the discriminator
    tag pydantic prepends for tagged unions.
    """
    skipped = set(skip_leading)
    issues: List[ContractIssue] = []
    for detail in error.errors(include_url=False):
        location = list(detail.get("loc", ()))
        if location and str(location[0]) in skipped:
            location = location[1:]
        issues.append(ContractIssue(issue_path(location, prefix), str(detail.get("msg", "invalid value"))))
    return issues


def merge_issues(field_issues: Sequence[ContractIssue], rule_issues: Sequence[ContractIssue]) -> List[ContractIssue]:
    """Combine field and cross-field issues; a path flagged by a field error is reported once."""
    flagged = {issue.path for issue in field_issues}
    merged = list(field_issues)
    merged.extend(issue for issue in rule_issues if issue.path not in flagged)
    return merged
