"""
Recommendation Engine

Turns a classified score into recommended security actions, a
confidence estimate and a review priority.

Rule table:
- CRITICAL: block, flag the account, notify the security team
- HIGH: manual review, additional verification, delay processing
- MEDIUM: enhanced monitoring, request verification
- LOW: proceed normally

Factor-specific additions (factor score above 50):
- velocity -> rate limiting
- payment -> verify payment method
- user_history -> verify identity
"""

from ..policy import RiskThresholds
from ..schemas import (
    FACTOR_ORDER,
    Recommendation,
    ReviewPriority,
    RiskFactor,
    RiskFactorResult,
    RiskLevel,
    SecurityAction,
    clamp_score,
)

LEVEL_ACTIONS: dict[RiskLevel, list[SecurityAction]] = {
    RiskLevel.CRITICAL: [
        SecurityAction.BLOCK_TRANSACTION,
        SecurityAction.FLAG_USER_ACCOUNT,
        SecurityAction.NOTIFY_SECURITY_TEAM,
    ],
    RiskLevel.HIGH: [
        SecurityAction.REQUIRE_MANUAL_REVIEW,
        SecurityAction.REQUEST_ADDITIONAL_VERIFICATION,
        SecurityAction.DELAY_TRANSACTION_PROCESSING,
    ],
    RiskLevel.MEDIUM: [
        SecurityAction.ENHANCED_MONITORING,
        SecurityAction.REQUEST_VERIFICATION,
    ],
    RiskLevel.LOW: [
        SecurityAction.PROCEED_NORMALLY,
    ],
}

FACTOR_ACTIONS: dict[RiskFactor, SecurityAction] = {
    RiskFactor.VELOCITY: SecurityAction.IMPLEMENT_RATE_LIMITING,
    RiskFactor.PAYMENT: SecurityAction.VERIFY_PAYMENT_METHOD,
    RiskFactor.USER_HISTORY: SecurityAction.VERIFY_USER_IDENTITY,
}

FACTOR_ACTION_THRESHOLD = 50

# Confidence model
STRONG_FACTOR_SCORE = 70
CONSISTENT = 0.9
INCONSISTENT = 0.6


def should_block(score: int, thresholds: RiskThresholds) -> bool:
    return score >= thresholds.critical


def requires_manual_review(level: RiskLevel) -> bool:
    return level in (RiskLevel.HIGH, RiskLevel.CRITICAL)


class RecommendationEngine:
    """Derives actions, confidence and priority for an analysis."""

    def recommend(
        self,
        score: int,
        level: RiskLevel,
        results: list[RiskFactorResult],
        thresholds: RiskThresholds,
    ) -> Recommendation:
        return Recommendation(
            actions=self.actions(level, results),
            confidence=self.confidence(results),
            priority=self.priority(score, level, thresholds),
        )

    @staticmethod
    def actions(level: RiskLevel, results: list[RiskFactorResult]) -> list[SecurityAction]:
        """Level actions followed by factor actions, de-duplicated in order."""
        actions = list(LEVEL_ACTIONS[level])

        for result in results:
            action = FACTOR_ACTIONS.get(result.factor)
            if action and result.usable and result.score > FACTOR_ACTION_THRESHOLD:
                actions.append(action)

        return list(dict.fromkeys(actions))

    @staticmethod
    def confidence(results: list[RiskFactorResult]) -> int:
        """
        Confidence in the assessment (0-100).

        availability = usable factors / all factors
        consistency = 0.9 when more than two usable factors score above 70,
        otherwise 0.6
        """
        usable = [r for r in results if r.usable]
        availability = len(usable) / len(FACTOR_ORDER)
        strong = sum(1 for r in usable if r.score > STRONG_FACTOR_SCORE)
        consistency = CONSISTENT if strong > 2 else INCONSISTENT
        return clamp_score(availability * consistency * 100)

    @staticmethod
    def priority(score: int, level: RiskLevel, thresholds: RiskThresholds) -> ReviewPriority:
        if level == RiskLevel.CRITICAL:
            return ReviewPriority.CRITICAL
        if score >= thresholds.high:
            return ReviewPriority.HIGH
        if level in (RiskLevel.HIGH, RiskLevel.MEDIUM):
            return ReviewPriority.NORMAL
        return ReviewPriority.LOW
