"""Data-preparation code generation with execution-verified self-correction."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ConfigDict, Field, ValidationError

from ..contracts.base import ContractModel, issues_from_validation_error
from ..contracts.plan import ColumnProfile
from ..errors import ContractValidationError
from ..harness import TransformUtil, run_transform
from ..models.llm_client import LLMClient, LLMRequest
from ..models.retry import CancellationToken
from ..prompts import DATA_PREPARATION_SYSTEM, render_data_preparation_prompt
from ..recovery import coerce_json_object
from ..schema.catalog import DATA_PREPARATION_PLAN
from .correction import CorrectionResult, SelfCorrectingGenerator

__all__ = ["DataPreparationPlan", "DataPreparer"]

LOGGER = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class DataPreparationPlan(ContractModel):
    """Transformation to apply before analysis, plus the resulting columns."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    explanation: str
    functionBody: Optional[str] = None
    outputColumns: List[ColumnProfile] = Field(default_factory=list)

    @property
    def needs_transform(self) -> bool:
        return bool(self.functionBody and self.functionBody.strip())


class DataPreparer:
    """Ask the provider for a cleaning transform and verify it on the sample."""

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
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Mapping[str, Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> CorrectionResult[DataPreparationPlan]:
        def request(feedback: Optional[str]) -> Dict[str, Any]:
            completion = self._client.complete(
                LLMRequest(
                    prompt=render_data_preparation_prompt(columns, sample_rows, feedback),
                    system_prompt=DATA_PREPARATION_SYSTEM,
                    schema=DATA_PREPARATION_PLAN,
                    operation="data_preparation",
                ),
                cancel=cancel,
            )
            return coerce_json_object(completion.text)

        def verify(candidate: Dict[str, Any]) -> DataPreparationPlan:
            try:
                plan = DataPreparationPlan.model_validate(candidate)
            except ValidationError as error:
                raise ContractValidationError(
                    "DataPreparationPlan", issues_from_validation_error(error)
                ) from error
            if plan.needs_transform:
                run_transform(plan.functionBody or "", sample_rows, self._util)
                return plan
            plan.functionBody = None
            if not plan.outputColumns:
                plan.outputColumns = list(columns)
            return plan

        generator: SelfCorrectingGenerator[Dict[str, Any], DataPreparationPlan] = SelfCorrectingGenerator(
            "data preparation",
            generate=request,
            verify=verify,
            max_attempts=self._max_attempts,
        )
        result = generator.run(cancel)
        LOGGER.info(
            "Data preparation plan ready after %d attempt(s) (transform=%s)",
            result.attempts,
            result.value.needs_transform,
        )
        return result
