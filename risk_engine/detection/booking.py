"""
Booking Pattern Analysis

Scores the booking a payment is for:
- Event too close (no time to verify) or implausibly far away
- Low-value private events, a common cover for card testing
- Resource already booked by another user on the same date
"""

from ..schemas import BookingPatternDetails, RiskFactor, RiskFactorResult, SignalCodes, Transaction
from .detector import AnalysisContext, BaseAnalyzer, FactorScore


class BookingPatternAnalyzer(BaseAnalyzer):
    """Scores booking timing, value and conflicts."""

    factor = RiskFactor.BOOKING_PATTERN

    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        booking = transaction.booking_data
        if booking is None:
            return RiskFactorResult(
                factor=self.factor,
                score=0,
                details=BookingPatternDetails(signals=[SignalCodes.NO_BOOKING_DATA]),
            )

        patterns = context.policy.detection.booking_pattern
        result = FactorScore()
        days_until = (booking.event_date - context.now.date()).days

        # =======================================================================
        # Check 1: Lead time
        # =======================================================================
        if days_until < patterns.last_minute_days:
            result.add(SignalCodes.BOOKING_LAST_MINUTE, patterns.last_minute_score)
        elif days_until > patterns.far_future_days:
            result.add(SignalCodes.BOOKING_FAR_FUTURE, patterns.far_future_score)

        # =======================================================================
        # Check 2: Low-value private event
        # =======================================================================
        event_type = (booking.event_type or "").lower()
        private_types = {t.lower() for t in patterns.private_event_types}
        if event_type in private_types and transaction.amount < patterns.low_value_threshold:
            result.add(SignalCodes.BOOKING_LOW_VALUE_PRIVATE, patterns.low_value_private_score)

        # =======================================================================
        # Check 3: Conflicting booking by someone else
        # =======================================================================
        conflicts = await self._fetch(
            context.history.conflicting_bookings(
                booking.resource_id, booking.event_date, transaction.user_id
            ),
            "conflicting bookings lookup",
        )
        if conflicts > 0:
            result.add(SignalCodes.BOOKING_CONFLICT, patterns.conflict_score)

        return RiskFactorResult(
            factor=self.factor,
            score=result.score,
            details=BookingPatternDetails(
                signals=result.signals,
                days_until_event=days_until,
                event_type=booking.event_type,
                conflicting_bookings=conflicts,
            ),
        )
