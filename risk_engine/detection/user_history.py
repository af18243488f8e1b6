"""
User History Analysis

Scores the account paying: how old it is, how well verified, whether
it has been flagged or reported for fraud, and whether it has ever
transacted before. An unknown user scores high on its own.
"""

from ..schemas import RiskFactor, RiskFactorResult, SignalCodes, Transaction, UserHistoryDetails
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


class UserHistoryAnalyzer(BaseAnalyzer):
    """Scores the account's age, verification and fraud record."""

    factor = RiskFactor.USER_HISTORY

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.user_history

        profile = await self._fetch(
            context.history.user_profile(transaction.user_id),
            "user profile lookup",
        )
        if profile is None:
            return RiskFactorResult(
                factor=self.factor,
                score=patterns.not_found_score,
                details=UserHistoryDetails(signals=[SignalCodes.USER_NOT_FOUND]),
            )

        result = FactorScore()
        age_days = profile.account_age_days(context.now)

        # Account age
        if age_days < patterns.brand_new_account_days:
            result.add(SignalCodes.USER_BRAND_NEW_ACCOUNT, patterns.brand_new_account_score)
        elif age_days < patterns.new_account_days:
            result.add(SignalCodes.USER_NEW_ACCOUNT, patterns.new_account_score)

        # Verification
        if profile.verification_level < patterns.min_verification_level:
            result.add(SignalCodes.USER_LOW_VERIFICATION, patterns.low_verification_score)

        # Existing flags
        if profile.account_flags:
            result.add(SignalCodes.USER_FLAGGED, patterns.flagged_account_score)

        # First transaction
        if profile.total_transactions == 0:
            result.add(SignalCodes.USER_NO_HISTORY, patterns.no_history_score)

        # Confirmed fraud
        if profile.confirmed_fraud_reports > 0:
            result.add(SignalCodes.USER_CONFIRMED_FRAUD, patterns.confirmed_fraud_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=UserHistoryDetails(
                signals=result.signals,
                account_age_days=round(age_days, 2),
                verification_level=profile.verification_level,
                account_flags=profile.account_flags,
                confirmed_fraud_reports=profile.confirmed_fraud_reports,
                total_transactions=profile.total_transactions,
            ),
        )
