"""
Geographic Analysis

Detects geographic anomalies that indicate fraud:
1. Transactions from high-risk countries
2. Impossible travel (two distant locations too close in time)
3. Hosting, VPN, proxy or Tor networks hiding the real location

A transaction without an IP address or whose IP cannot be located
still gets a (small) score: missing location is itself a signal.
"""

import logging
from datetime import datetime
from math import radians, sin, cos, sqrt, atan2
from typing import Optional

from ..schemas import GeographicDetails, GeoLocation, RiskFactor, RiskFactorResult, SignalCodes, Transaction
from .detector import AnalysisContext, BaseAnalyzer, FactorScore

logger = logging.getLogger("risk_engine.detection")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points using Haversine formula.

    Args:
        lat1, lon1: First point coordinates
        lat2, lon2: Second point coordinates

    Returns:
        Distance in kilometers
    """
    R = 6371  # Earth's radius in km

    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return R * c


class GeographicAnalyzer(BaseAnalyzer):
    """
    Scores where the transaction comes from.

    Checks:
    - High-risk country
    - Impossible travel against the user's previous located transaction
    - Anonymizing network (ISP/org name)
    """

    factor = RiskFactor.GEOGRAPHIC

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        patterns = context.policy.detection.geographic

        if not transaction.ip_address:
            return RiskFactorResult(
                factor=self.factor,
                score=patterns.no_ip_score,
                details=GeographicDetails(signals=[SignalCodes.NO_IP_ADDRESS]),
            )

        location = await self._locate(context, transaction.ip_address)
        if location is None:
            return RiskFactorResult(
                factor=self.factor,
                score=patterns.lookup_failed_score,
                details=GeographicDetails(signals=[SignalCodes.GEO_LOOKUP_FAILED]),
            )

        result = FactorScore()
        distance_km: Optional[float] = None
        hours_since: Optional[float] = None
        previous_id: Optional[str] = None

        # =======================================================================
        # Check 1: High-risk country
        # =======================================================================
        suspicious = {c.upper() for c in patterns.suspicious_countries}
        if location.country and location.country.upper() in suspicious:
            result.add(SignalCodes.GEO_SUSPICIOUS_COUNTRY, patterns.suspicious_country_score)

        # =======================================================================
        # Check 2: Impossible travel
        # =======================================================================
        if location.is_located:
            previous = await self._fetch(
                context.history.last_located_transaction(
                    transaction.user_id, before=context.now, exclude_id=transaction.id
                ),
                "previous location lookup",
            )
            if previous is not None:
                previous_id = previous.id
                distance_km = haversine_km(
                    previous.latitude, previous.longitude,
                    location.latitude, location.longitude,
                )
                hours_since = self._hours_between(previous.created_at, context.now)
                if (
                    hours_since <= patterns.travel_window_hours
                    and distance_km > patterns.impossible_travel_km
                ):
                    result.add(SignalCodes.GEO_IMPOSSIBLE_TRAVEL, patterns.impossible_travel_score)

        # =======================================================================
        # Check 3: Hosting / VPN / proxy / Tor network
        # =======================================================================
        org = (location.org or "").lower()
        if org and any(keyword in org for keyword in patterns.anonymizing_org_keywords):
            result.add(SignalCodes.GEO_ANONYMIZING_NETWORK, patterns.anonymizing_network_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=GeographicDetails(
                signals=result.signals,
                country=location.country,
                city=location.city,
                org=location.org,
                distance_km=round(distance_km, 1) if distance_km is not None else None,
                hours_since_previous=round(hours_since, 2) if hours_since is not None else None,
                previous_transaction_id=previous_id,
            ),
        )

    async def _locate(self, context: AnalysisContext, ip_address: str) -> Optional[GeoLocation]:
        # A failing geolocation provider scores the same as an unknown IP
        try:
            return await context.reputation.geolocate(ip_address)
        except Exception as e:
            logger.warning("Geolocation lookup failed for %s: %s", ip_address, e)
            return None

    @staticmethod
    def _hours_between(earlier: datetime, later: datetime) -> float:
        return abs((later - earlier).total_seconds()) / 3600
