"""
Velocity Analysis

Detects abnormal transaction velocity for the paying user, which
indicates:
1. Stolen card being used rapidly before block
2. Account takeover with rapid purchases
3. Automated fraud using bots

Key signals (trailing window, current transaction excluded):
- Transaction count
- Total amount
- Failed attempts
"""

from datetime import timedelta

from ..schemas import RiskFactor, RiskFactorResult, SignalCodes, Transaction, TransactionStatus, VelocityDetails
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


class VelocityAnalyzer(BaseAnalyzer):
    """Scores how much the user has transacted in the last hour."""

    factor = RiskFactor.VELOCITY

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.velocity
        since = context.now - timedelta(minutes=patterns.window_minutes)

        records = await self._fetch(
            context.history.recent_transactions(
                transaction.user_id, since, exclude_id=transaction.id
            ),
            "recent transactions lookup",
        )

        count = len(records)
        total_amount = sum(r.amount for r in records)
        failed = sum(1 for r in records if r.status == TransactionStatus.FAILED)

        result = FactorScore()

        # =======================================================================
        # Check 1: Transaction count
        # =======================================================================
        if count >= patterns.max_transactions:
            result.add(SignalCodes.VELOCITY_HIGH_COUNT, patterns.high_count_score)

        # =======================================================================
        # Check 2: Amount accumulated in the window
        # =======================================================================
        if total_amount >= patterns.max_amount:
            result.add(SignalCodes.VELOCITY_HIGH_AMOUNT, patterns.high_amount_score)

        # =======================================================================
        # Check 3: Failed attempts
        # =======================================================================
        if failed >= patterns.max_failed:
            result.add(SignalCodes.VELOCITY_FAILED_ATTEMPTS, patterns.failed_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=VelocityDetails(
                signals=result.signals,
                window_minutes=patterns.window_minutes,
                transaction_count=count,
                total_amount=total_amount,
                failed_count=failed,
            ),
        )
