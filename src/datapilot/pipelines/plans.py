"""Three-stage analysis plan generation with a quality gate.

1. Candidate generation: ask for ``candidate_count`` plans, recover the array,
   infer missing grouping columns and discard structurally invalid plans.
2. Sample execution: run each survivor through the injected executor and drop
   plans that error or aggregate to zero rows.
3. Quality gate: send the surviving plans with their aggregated samples back
   for curation, validate the answer like stage 1, backfill by title up to
   the floor and cap at the ceiling.

Any non-cancellation failure in those stages is recorded as a warning and
candidate generation is retried once with half the count. When that fails as
well, ``PlanGenerationFatalError`` carries every warning collected so far.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from ..contracts.plan import AnalysisPlan, ColumnProfile, is_valid_plan, normalize_generated_plan
from ..errors import (
    DatapilotError,
    OperationCancelledError,
    PlanGenerationFatalError,
    PlanGenerationWarning,
    ValueRecoveryError,
)
from ..models.llm_client import LLMClient, LLMRequest
from ..models.retry import CancellationToken, raise_if_cancelled
from ..prompts import (
    CANDIDATE_PLANS_SYSTEM,
    REFINE_PLANS_SYSTEM,
    render_candidate_plans_prompt,
    render_refine_plans_prompt,
)
from ..recovery import parse_json_array
from ..schema.catalog import ANALYSIS_PLAN_LIST

__all__ = [
    "NoViablePlansError",
    "PlanExecutor",
    "PlanGenerationPipeline",
    "PlanGenerationResult",
    "ReviewedPlan",
]

LOGGER = logging.getLogger(__name__)

Row = Mapping[str, Any]
PlanExecutor = Callable[[AnalysisPlan, Sequence[Row]], Sequence[Row]]

DEFAULT_CANDIDATE_COUNT = 12
PLAN_FLOOR = 4
PLAN_CEILING = 12
REVIEW_SAMPLE_ROWS = 20
RETRY_HINT = "If this happens repeatedly, ask the assistant to retry with fewer plans."


class NoViablePlansError(DatapilotError):
    """Candidate generation produced no structurally valid plan."""


@dataclass(slots=True)
class ReviewedPlan:
    """A plan paired with the aggregated sample it produced."""

    plan: AnalysisPlan
    sample: List[Dict[str, Any]]

    def to_prompt(self) -> Dict[str, Any]:
        return {"plan": self.plan.to_payload(), "aggregatedSample": self.sample}


@dataclass(slots=True)
class PlanGenerationResult:
    plans: List[AnalysisPlan]
    warnings: List[PlanGenerationWarning] = field(default_factory=list)
    candidates: List[AnalysisPlan] = field(default_factory=list)
    reviewed: List[ReviewedPlan] = field(default_factory=list)
    used_fallback: bool = False


class PlanGenerationPipeline:
    """Generate, sample-test and curate chart plans for a dataset."""

    def __init__(
        self,
        client: LLMClient,
        executor: PlanExecutor,
        *,
        candidate_count: int = DEFAULT_CANDIDATE_COUNT,
        floor: int = PLAN_FLOOR,
        ceiling: int = PLAN_CEILING,
        review_sample_rows: int = REVIEW_SAMPLE_ROWS,
    ) -> None:
        if candidate_count < 1:
            raise ValueError("candidate_count must be at least 1")
        self._client = client
        self._executor = executor
        self.candidate_count = candidate_count
        self.floor = floor
        self.ceiling = ceiling
        self.review_sample_rows = review_sample_rows

    def run(
        self,
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Row],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> PlanGenerationResult:
        """Return curated plans plus any warnings raised along the way.

        Raises:
            PlanGenerationFatalError: when the fallback generation fails too.
            OperationCancelledError: as soon as cancellation is observed.
        """
        warnings: List[PlanGenerationWarning] = []
        try:
            result = self._run_stages(columns, sample_rows, cancel)
        except OperationCancelledError:
            raise
        except Exception as error:
            warnings.append(_warning_for(error))
            LOGGER.warning("Plan generation failed, retrying with a simpler generator: %s", error)
            return self._fallback(columns, sample_rows, cancel, warnings, error)
        result.warnings = warnings
        return result

    def _run_stages(
        self,
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Row],
        cancel: Optional[CancellationToken],
    ) -> PlanGenerationResult:
        candidates = self._generate_candidates(columns, sample_rows, self.candidate_count, cancel)
        if not candidates:
            raise NoViablePlansError("Candidate generation returned no valid plans.")

        raise_if_cancelled(cancel)
        reviewed = self._execute_on_sample(candidates, sample_rows)
        if not reviewed:
            LOGGER.warning("No candidate plan produced data for review; returning initial candidates")
            return PlanGenerationResult(plans=candidates[: self.floor], candidates=candidates)

        refined = self._refine(reviewed, columns, cancel)
        final = self._backfill(refined, candidates)
        LOGGER.info(
            "Plan generation kept %d of %d candidate(s) (%d reviewed)",
            len(final),
            len(candidates),
            len(reviewed),
        )
        return PlanGenerationResult(plans=final, candidates=candidates, reviewed=reviewed)

    def _fallback(
        self,
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Row],
        cancel: Optional[CancellationToken],
        warnings: List[PlanGenerationWarning],
        cause: Exception,
    ) -> PlanGenerationResult:
        count = max(1, self.candidate_count // 2)
        try:
            plans = self._generate_candidates(columns, sample_rows, count, cancel)
        except OperationCancelledError:
            raise
        except Exception as fallback_error:
            LOGGER.error("Fallback plan generation also failed: %s", fallback_error)
            raise PlanGenerationFatalError(
                "Failed to generate any analysis plans.", warnings
            ) from fallback_error
        if not plans:
            raise PlanGenerationFatalError(
                "Fallback plan generation returned no valid plans.", warnings
            ) from cause
        return PlanGenerationResult(
            plans=plans[: self.ceiling],
            warnings=warnings,
            candidates=plans,
            used_fallback=True,
        )

    def _request_plans(
        self,
        prompt: str,
        system_prompt: str,
        operation: str,
        cancel: Optional[CancellationToken],
    ) -> List[Any]:
        completion = self._client.complete(
            LLMRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                schema=ANALYSIS_PLAN_LIST,
                operation=operation,
            ),
            cancel=cancel,
        )
        return parse_json_array(completion.text)

    def _accept(self, raw_plans: Sequence[Any], columns: Sequence[ColumnProfile], *, unwrap: bool) -> List[AnalysisPlan]:
        accepted: List[AnalysisPlan] = []
        for item in raw_plans:
            if unwrap and isinstance(item, Mapping) and isinstance(item.get("plan"), Mapping):
                item = item["plan"]
            normalized = normalize_generated_plan(item, columns)
            if is_valid_plan(normalized):
                accepted.append(AnalysisPlan.model_validate(normalized))
        return accepted

    def _generate_candidates(
        self,
        columns: Sequence[ColumnProfile],
        sample_rows: Sequence[Row],
        count: int,
        cancel: Optional[CancellationToken],
    ) -> List[AnalysisPlan]:
        raw_plans = self._request_plans(
            render_candidate_plans_prompt(columns, sample_rows, count),
            CANDIDATE_PLANS_SYSTEM,
            "plans.candidates",
            cancel,
        )
        accepted = self._accept(raw_plans, columns, unwrap=False)
        LOGGER.debug("Candidate generation: %d of %d plan(s) valid", len(accepted), len(raw_plans))
        return accepted

    def _execute_on_sample(self, candidates: Sequence[AnalysisPlan], sample_rows: Sequence[Row]) -> List[ReviewedPlan]:
        reviewed: List[ReviewedPlan] = []
        for plan in candidates:
            try:
                aggregated = self._executor(plan, sample_rows)
            except Exception as error:
                LOGGER.warning("Execution of plan %r failed during review: %s", plan.title, error)
                continue
            if not aggregated:
                LOGGER.debug("Dropping plan %r: no rows on the sample", plan.title)
                continue
            sample = [dict(row) for row in list(aggregated)[: self.review_sample_rows]]
            reviewed.append(ReviewedPlan(plan, sample))
        return reviewed

    def _refine(
        self,
        reviewed: Sequence[ReviewedPlan],
        columns: Sequence[ColumnProfile],
        cancel: Optional[CancellationToken],
    ) -> List[AnalysisPlan]:
        raw_plans = self._request_plans(
            render_refine_plans_prompt([item.to_prompt() for item in reviewed]),
            REFINE_PLANS_SYSTEM,
            "plans.quality_gate",
            cancel,
        )
        return self._accept(raw_plans, columns, unwrap=True)

    def _backfill(self, refined: List[AnalysisPlan], candidates: Sequence[AnalysisPlan]) -> List[AnalysisPlan]:
        final = list(refined)
        if len(final) < self.floor and len(candidates) > len(final):
            # Title equality is the only identity plans carry.
            titles = {plan.title for plan in final}
            unused = [plan for plan in candidates if plan.title not in titles]
            final.extend(unused[: self.floor - len(final)])
        return final[: self.ceiling]


def _warning_for(error: Exception) -> PlanGenerationWarning:
    if isinstance(error, ValueRecoveryError):
        return PlanGenerationWarning(
            code="plan_parse_error",
            message="Plan response was not valid JSON. Retrying with a simpler generator.",
            hint=RETRY_HINT,
        )
    return PlanGenerationWarning(
        code="plan_generation_error",
        message=f"Plan generator failed on the first attempt ({error}). Retrying with a simpler prompt.",
        hint=RETRY_HINT,
    )
