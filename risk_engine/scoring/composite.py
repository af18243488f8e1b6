"""
Composite Risk Score

Weighted average of the factor scores. Factors without usable data are
dropped from both numerator and denominator so a missing data source
neither inflates nor deflates the result.
"""

from ..errors import AnalysisPipelineFailure
from ..policy import FactorWeights
from ..schemas import RiskFactorResult, clamp_score


def composite_score(results: list[RiskFactorResult], weights: FactorWeights) -> int:
    """
    Compute the composite risk score.

    Args:
        results: Factor results (any order)
        weights: Weight per factor

    Returns:
        Score in [0, 100], rounded half-up

    Raises:
        AnalysisPipelineFailure: no factor produced usable data
    """
    weighted_sum = 0.0
    weight_total = 0.0

    for result in results:
        if not result.usable:
            continue
        weight = weights.for_factor(result.factor)
        weighted_sum += result.score * weight
        weight_total += weight

    if weight_total <= 0:
        raise AnalysisPipelineFailure("No risk factor produced usable data")

    return clamp_score(weighted_sum / weight_total)
