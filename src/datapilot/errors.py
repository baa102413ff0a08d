"""Error taxonomy shared by recovery, validation and generation pipelines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

__all__ = [
    "CodeExecutionError",
    "ContractIssue",
    "ContractValidationError",
    "ChatResponseParsingError",
    "DatapilotError",
    "GenerationFailedError",
    "JsonCoercionError",
    "OperationCancelledError",
    "PlanGenerationFatalError",
    "PlanGenerationWarning",
    "PlanParsingError",
    "SchemaDialectError",
    "SchemaPolicyError",
    "ValueRecoveryError",
]


class DatapilotError(RuntimeError):
    """Base class for recoverable failures raised by the package."""


class OperationCancelledError(Exception):
    """Raised as soon as a cancellation signal is observed.

    Not a ``DatapilotError``: loops that retry on those must let it through.
    """

    def __init__(self, message: str = "Operation was cancelled.") -> None:
        super().__init__(message)


class ValueRecoveryError(DatapilotError):
    """No JSON-shaped value could be recovered from provider text."""

    def __init__(self, message: str, raw_content: str) -> None:
        super().__init__(message)
        self.raw_content = raw_content


class JsonCoercionError(ValueRecoveryError):
    """Raised when object recovery exhausts every candidate."""


class PlanParsingError(ValueRecoveryError):
    """Raised when array recovery cannot produce a list of plans."""


class ChatResponseParsingError(ValueRecoveryError):
    """Raised when a chat response lacks a usable ``actions`` array."""


@dataclass(frozen=True, slots=True)
class ContractIssue:
    """Single broken rule, addressed by a dotted path into the payload."""

    path: str
    message: str

    def render(self) -> str:
        if not self.path:
            return self.message
        return f"{self.path}: {self.message}"


class ContractValidationError(DatapilotError):
    """A recovered value violated one or more contract rules."""

    def __init__(self, subject: str, issues: Iterable[ContractIssue]) -> None:
        self.subject = subject
        self.issues: list[ContractIssue] = list(issues)
        details = "; ".join(issue.render() for issue in self.issues) or "unknown violation"
        super().__init__(f"{subject} failed validation: {details}")

    @property
    def paths(self) -> list[str]:
        return [issue.path for issue in self.issues]

    def feedback(self) -> str:
        """Render the issues as bullet points suitable for a corrective re-prompt."""
        return "\n".join(f"- {issue.render()}" for issue in self.issues)


class CodeExecutionError(DatapilotError):
    """Generated code raised or returned something other than a list."""


class SchemaDialectError(DatapilotError):
    """A canonical schema cannot be expressed in the requested dialect."""


class SchemaPolicyError(DatapilotError):
    """Policy sets reference paths that do not exist in the schema tree."""

    def __init__(self, schema_name: str, missing: Sequence[str]) -> None:
        self.schema_name = schema_name
        self.missing = list(missing)
        joined = ", ".join(self.missing)
        super().__init__(f"Schema '{schema_name}' policies reference unknown paths: {joined}")


class GenerationFailedError(DatapilotError):
    """A self-correcting generator exhausted its attempt ceiling."""

    def __init__(self, message: str, *, attempts: int, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


@dataclass(slots=True)
class PlanGenerationWarning:
    """Non-fatal issue recorded while generating analysis plans."""

    code: str
    message: str
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class PlanGenerationFatalError(DatapilotError):
    """Plan generation failed even after the fallback generator ran."""

    def __init__(self, message: str, warnings: Sequence[PlanGenerationWarning]) -> None:
        super().__init__(message)
        self.warnings: list[PlanGenerationWarning] = list(warnings)
