"""
Behavioral Analysis

Detects sessions that do not look like a person paying for a booking:
- Checkout completed too quickly
- Automation user agents (bots, crawlers, headless browsers)
- Amount far above what the user normally spends
- Activity in the small hours of the user's local night
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..schemas import BehavioralDetails, RiskFactor, RiskFactorResult, SignalCodes, Transaction
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


def local_hour(transaction: Transaction) -> int:
    """
    Hour of day of the transaction in the client's timezone.

    Falls back to the stored (UTC) timestamp when no valid timezone is given.
    """
    ts: datetime = transaction.created_at
    if transaction.timezone:
        try:
            ts = ts.astimezone(ZoneInfo(transaction.timezone))
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return ts.hour


class BehavioralAnalyzer(BaseAnalyzer):
    """Scores session and spending behaviour."""

    factor = RiskFactor.BEHAVIORAL

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.behavioral
        result = FactorScore()

        # =======================================================================
        # Check 1: Session too short
        # =======================================================================
        if transaction.session_duration < patterns.min_session_seconds:
            result.add(SignalCodes.BEHAVIOR_SHORT_SESSION, patterns.short_session_score)

        # =======================================================================
        # Check 2: Automation user agent
        # =======================================================================
        user_agent = (transaction.user_agent or "").lower()
        is_bot = bool(user_agent) and any(
            keyword in user_agent for keyword in patterns.bot_user_agent_keywords
        )
        if is_bot:
            result.add(SignalCodes.BEHAVIOR_BOT_USER_AGENT, patterns.bot_user_agent_score)

        # =======================================================================
        # Check 3: Amount spike versus the user's average
        # =======================================================================
        profile = await self._fetch(
            context.history.user_profile(transaction.user_id),
            "user profile lookup",
        )
        multiplier: Optional[float] = None
        if profile is not None and profile.avg_transaction_amount > 0:
            multiplier = transaction.amount / profile.avg_transaction_amount
            if multiplier > patterns.amount_multiplier_threshold:
                result.add(SignalCodes.BEHAVIOR_AMOUNT_SPIKE, patterns.amount_spike_score)

        # =======================================================================
        # Check 4: Unusual local hour
        # =======================================================================
        hour = local_hour(transaction)
        if patterns.unusual_hour_start <= hour <= patterns.unusual_hour_end:
            result.add(SignalCodes.BEHAVIOR_UNUSUAL_HOUR, patterns.unusual_hour_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=BehavioralDetails(
                signals=result.signals,
                session_duration=transaction.session_duration,
                amount_multiplier=round(multiplier, 2) if multiplier is not None else None,
                local_hour=hour,
                bot_user_agent=is_bot,
            ),
        )
