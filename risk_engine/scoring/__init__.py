# Risk scoring
from .composite import composite_score
from .classifier import classify
from .recommendation import (
    RecommendationEngine,
    LEVEL_ACTIONS,
    FACTOR_ACTIONS,
    should_block,
    requires_manual_review,
)
from .engine import FraudAnalysisEngine, ProcessedTransaction, fail_safe_result, FAIL_SAFE_SCORE

__all__ = [
    "composite_score",
    "classify",
    "RecommendationEngine",
    "LEVEL_ACTIONS",
    "FACTOR_ACTIONS",
    "should_block",
    "requires_manual_review",
    "FraudAnalysisEngine",
    "ProcessedTransaction",
    "fail_safe_result",
    "FAIL_SAFE_SCORE",
]
