"""Chat responder: request an ActionEnvelope stream and validate every action."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..contracts.actions import StateTagFactory, normalize_plan_state, parse_action, to_wire
from ..contracts.plan import ColumnProfile
from ..errors import ContractIssue, ContractValidationError
from ..models.llm_client import LLMClient, LLMRequest
from ..models.retry import CancellationToken, raise_if_cancelled
from ..prompts import CHAT_SYSTEM, MISSING_CODE_INSTRUCTION, render_chat_prompt
from ..recovery import coerce_chat_response
from ..schema.catalog import MULTI_ACTION_CHAT_RESPONSE
from ..schema.dialects import SchemaDialect

__all__ = ["ChatResponder", "ChatResponse"]

LOGGER = logging.getLogger(__name__)

# Gemini rarely honours the correction instruction, so it gets no second try.
ATTEMPTS_BY_DIALECT = {SchemaDialect.JSON_SCHEMA: 2, SchemaDialect.GEMINI: 1}


@dataclass(slots=True)
class ChatResponse:
    """Validated actions in provider order plus the issues of dropped ones."""

    actions: List[Any]
    rejected: List[ContractIssue] = field(default_factory=list)
    attempts: int = 1

    def to_wire(self) -> Dict[str, Any]:
        return {"actions": [to_wire(action) for action in self.actions]}


def _missing_code(actions: Sequence[Any]) -> bool:
    for action in actions:
        if not isinstance(action, Mapping) or action.get("type") != "execute_js_code":
            continue
        code = action.get("code")
        body = code.get("functionBody") if isinstance(code, Mapping) else None
        if not isinstance(body, str) or not body.strip():
            return True
    return False


class ChatResponder:
    def __init__(
        self,
        client: LLMClient,
        *,
        max_attempts: Optional[int] = None,
        tags: Optional[StateTagFactory] = None,
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts or ATTEMPTS_BY_DIALECT.get(client.dialect, 1)
        self._tags = tags or StateTagFactory()

    def respond(
        self,
        message: str,
        columns: Sequence[ColumnProfile] = (),
        *,
        context: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ChatResponse:
        """Return the validated action stream for ``message``.

        An ``execute_js_code`` action without a function body triggers one
        corrective re-prompt when attempts remain. Invalid actions are dropped
        and reported in ``rejected``; a response with no valid action raises.
        """
        prompt = render_chat_prompt(message, columns, context)
        system_prompt = CHAT_SYSTEM
        raw_actions: List[Any] = []
        attempt = 0
        for attempt in range(1, self._max_attempts + 1):
            raise_if_cancelled(cancel)
            completion = self._client.complete(
                LLMRequest(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    schema=MULTI_ACTION_CHAT_RESPONSE,
                    operation="chat",
                ),
                cancel=cancel,
            )
            raw_actions = coerce_chat_response(completion.text)["actions"]
            if _missing_code(raw_actions) and attempt < self._max_attempts:
                LOGGER.warning("Chat response lacked executable code; re-prompting (attempt %d)", attempt)
                system_prompt = f"{CHAT_SYSTEM}\n{MISSING_CODE_INSTRUCTION}"
                continue
            break

        actions: List[Any] = []
        rejected: List[ContractIssue] = []
        for index, raw in enumerate(raw_actions):
            if isinstance(raw, Mapping) and raw.get("type") == "plan_state_update" and isinstance(
                raw.get("planState"), Mapping
            ):
                raw = {**raw, "planState": normalize_plan_state(raw["planState"], tags=self._tags)}
            try:
                actions.append(parse_action(raw))
            except ContractValidationError as error:
                LOGGER.warning("Dropping action %d: %s", index, error)
                rejected.extend(
                    ContractIssue(f"actions.{index}.{issue.path}".rstrip("."), issue.message)
                    for issue in error.issues
                )

        if not actions:
            raise ContractValidationError(
                "MultiActionChatResponse",
                rejected or [ContractIssue("actions", "response contained no actions")],
            )
        return ChatResponse(actions=actions, rejected=rejected, attempts=attempt)
