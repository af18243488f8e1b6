"""
Payment Analysis

Scores the payment instrument:
1. Card BIN inside a known-bad range
2. Card BIN flagged by the reputation service
3. Unusually large amount
4. Cryptocurrency payment
5. Repeated failures on the same BIN (card testing)
"""

from datetime import timedelta

from ..schemas import PaymentDetails, PaymentMethod, RiskFactor, RiskFactorResult, SignalCodes, Transaction
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


class PaymentAnalyzer(BaseAnalyzer):
    """Scores the payment method, BIN and amount."""

    factor = RiskFactor.PAYMENT

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.payment
        result = FactorScore()
        bin_penalty = 0
        failed_attempts = 0
        card_bin = transaction.card_bin

        if card_bin:
            # ===================================================================
            # Check 1: Suspicious BIN range
            # ===================================================================
            if any(card_bin.startswith(prefix) for prefix in patterns.suspicious_bin_prefixes):
                result.add(SignalCodes.PAYMENT_SUSPICIOUS_BIN, patterns.suspicious_bin_score)

            # ===================================================================
            # Check 2: BIN reputation
            # ===================================================================
            reputation = await self._fetch(
                context.reputation.bin_reputation(card_bin),
                "BIN reputation lookup",
            )
            if reputation.is_high_risk:
                bin_penalty = reputation.risk_score
                result.add(SignalCodes.PAYMENT_HIGH_RISK_BIN, bin_penalty)

        # =======================================================================
        # Check 3: High amount
        # =======================================================================
        if transaction.amount > patterns.high_amount_threshold:
            result.add(SignalCodes.PAYMENT_HIGH_AMOUNT, patterns.high_amount_score)

        # =======================================================================
        # Check 4: Cryptocurrency
        # =======================================================================
        if transaction.payment_method == PaymentMethod.CRYPTOCURRENCY:
            result.add(SignalCodes.PAYMENT_CRYPTOCURRENCY, patterns.cryptocurrency_score)

        # =======================================================================
        # Check 5: Failures on the same BIN
        # =======================================================================
        if card_bin:
            since = context.now - timedelta(hours=patterns.bin_failure_window_hours)
            failed_attempts = await self._fetch(
                context.history.failed_bin_attempts(card_bin, since),
                "BIN failure lookup",
            )
            if failed_attempts > patterns.max_bin_failures:
                result.add(SignalCodes.PAYMENT_BIN_FAILURES, patterns.bin_failure_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=PaymentDetails(
                signals=result.signals,
                card_bin=card_bin,
                bin_penalty=bin_penalty,
                amount=transaction.amount,
                payment_method=transaction.payment_method.value,
                failed_bin_attempts_24h=failed_attempts,
            ),
        )
