"""
Device Analysis

Detects devices shared across many accounts (fraud rings, account
farms), devices previously flagged, and connections from malicious
IP addresses.

A missing fingerprint is scored on its own, but the IP reputation
check still runs and adds to it.
"""

from ..schemas import DeviceDetails, RiskFactor, RiskFactorResult, SignalCodes, Transaction
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


class DeviceAnalyzer(BaseAnalyzer):
    """Scores the device fingerprint and the client IP reputation."""

    factor = RiskFactor.DEVICE

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.device
        result = FactorScore()
        distinct_users = 0
        flagged = 0
        ip_malicious = False

        # =======================================================================
        # Check 1: Device fingerprint history
        # =======================================================================
        fingerprint = transaction.device_fingerprint
        if not fingerprint:
            result.add(SignalCodes.NO_FINGERPRINT, patterns.no_fingerprint_score)
        else:
            history = await self._fetch(
                context.history.device_history(fingerprint),
                "device history lookup",
            )
            if history is not None:
                distinct_users = len(history.distinct_users)
                flagged = history.flagged_count

                if distinct_users > patterns.max_users_per_device:
                    result.add(SignalCodes.DEVICE_SHARED, patterns.shared_device_score)

                if flagged > 0:
                    result.add(SignalCodes.DEVICE_FLAGGED, patterns.flagged_device_score)

        # =======================================================================
        # Check 2: IP reputation
        # =======================================================================
        if transaction.ip_address:
            reputation = await self._fetch(
                context.reputation.ip_reputation(transaction.ip_address),
                "IP reputation lookup",
            )
            ip_malicious = reputation.is_malicious
            if ip_malicious:
                result.add(SignalCodes.DEVICE_MALICIOUS_IP, patterns.malicious_ip_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=DeviceDetails(
                signals=result.signals,
                fingerprint=fingerprint,
                distinct_users=distinct_users,
                flagged_count=flagged,
                ip_malicious=ip_malicious,
            ),
        )
