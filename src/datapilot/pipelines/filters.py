"""Natural-language filter to verified filter function."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import ConfigDict, Field, ValidationError

from ..contracts.base import ContractModel, issues_from_validation_error
from ..contracts.plan import ColumnProfile
from ..errors import ContractValidationError
from ..harness import TransformUtil, run_transform
from ..models.llm_client import LLMClient, LLMRequest
from ..models.retry import CancellationToken
from ..prompts import FILTER_SYSTEM, render_filter_prompt
from ..recovery import coerce_json_object
from ..schema.catalog import FILTER_FUNCTION_RESPONSE
from .correction import CorrectionResult, SelfCorrectingGenerator

__all__ = ["FilterFunction", "FilterGenerator"]

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


class FilterFunction(ContractModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    explanation: str = Field(min_length=1)
    functionBody: str = Field(min_length=10)


class FilterGenerator:
    def __init__(
        self,
        client: LLMClient,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        util: Optional[TransformUtil] = None,
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._util = util or TransformUtil()

    def generate(
        self,
        query: str,
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Mapping[str, Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> CorrectionResult[FilterFunction]:
        """Return a filter function verified against ``sample_rows``."""

        def request(feedback: Optional[str]) -> Dict[str, Any]:
            completion = self._client.complete(
                LLMRequest(
                    prompt=render_filter_prompt(query, columns, sample_rows, feedback),
                    system_prompt=FILTER_SYSTEM,
                    schema=FILTER_FUNCTION_RESPONSE,
                    operation="filter_function",
                ),
                cancel=cancel,
            )
            return coerce_json_object(completion.text)

        def verify(candidate: Dict[str, Any]) -> FilterFunction:
            try:
                response = FilterFunction.model_validate(candidate)
            except ValidationError as error:
                raise ContractValidationError(
                    "FilterFunctionResponse", issues_from_validation_error(error)
                ) from error
            run_transform(response.functionBody, sample_rows, self._util)
            return response

        generator: SelfCorrectingGenerator[Dict[str, Any], FilterFunction] = SelfCorrectingGenerator(
            "filter generation",
            generate=request,
            verify=verify,
            max_attempts=self._max_attempts,
        )
        result = generator.run(cancel)
        LOGGER.info("Filter for %r ready after %d attempt(s)", query, result.attempts)
        return result
