"""Self-correcting generation pipelines built on the provider clients."""

from .chat import ChatResponder, ChatResponse
from .correction import AttemptRecord, CorrectionResult, CorrectionState, SelfCorrectingGenerator
from .data_prep import DataPreparationPlan, DataPreparer
from .filters import FilterFunction, FilterGenerator
from .intent import IntentResolver
from .plans import PlanGenerationPipeline, PlanGenerationResult, ReviewedPlan

__all__ = [
    "AttemptRecord",
    "ChatResponder",
    "ChatResponse",
    "CorrectionResult",
    "CorrectionState",
    "DataPreparationPlan",
    "DataPreparer",
    "FilterFunction",
    "FilterGenerator",
    "IntentResolver",
    "PlanGenerationPipeline",
    "PlanGenerationResult",
    "ReviewedPlan",
    "SelfCorrectingGenerator",
]
