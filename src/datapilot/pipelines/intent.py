"""Resolve a user request into a validated intent contract."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from ..contracts.intent import IntentContract, normalize_intent_contract
from ..contracts.plan import ColumnProfile
from ..errors import ContractValidationError
from ..models.llm_client import LLMClient, LLMRequest
from ..models.retry import CancellationToken
from ..prompts import INTENT_SYSTEM, render_intent_prompt
from ..recovery import coerce_json_object
from ..schema.catalog import INTENT_CONTRACT
from .correction import CorrectionResult, SelfCorrectingGenerator

__all__ = ["IntentResolver"]

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


def _describe(error: Exception) -> str:
    if isinstance(error, ContractValidationError):
        return f"The intent contract broke these rules:\n{error.feedback()}"
    return str(error)


class IntentResolver:
    """Re-prompts with the enumerated contract issues until the contract holds."""

    def __init__(self, client: LLMClient, *, max_attempts: int = MAX_ATTEMPTS) -> None:
        self._client = client
        self._max_attempts = max_attempts

    def resolve(
        self,
        message: str,
        columns: Sequence[ColumnProfile] = (),
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> CorrectionResult[IntentContract]:
        def request(feedback: Optional[str]) -> Dict[str, Any]:
            completion = self._client.complete(
                LLMRequest(
                    prompt=render_intent_prompt(message, columns, feedback),
                    system_prompt=INTENT_SYSTEM,
                    schema=INTENT_CONTRACT,
                    operation="intent",
                ),
                cancel=cancel,
            )
            return coerce_json_object(completion.text)

        generator: SelfCorrectingGenerator[Dict[str, Any], IntentContract] = SelfCorrectingGenerator(
            "intent resolution",
            generate=request,
            verify=normalize_intent_contract,
            max_attempts=self._max_attempts,
            describe_error=_describe,
        )
        result = generator.run(cancel)
        LOGGER.info("Resolved intent %s -> %s", result.value.intent, result.value.tool)
        return result
