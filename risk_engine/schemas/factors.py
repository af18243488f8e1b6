"""
Risk Factor Schemas

Each analyzer produces one RiskFactorResult. The details are a
structured model per factor, discriminated by the `factor` field, so
consumers can read the raw measurements without parsing strings.
"""

import math
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RiskFactor(str, Enum):
    """The seven risk dimensions, in canonical order."""
    VELOCITY = "velocity"
    GEOGRAPHIC = "geographic"
    BEHAVIORAL = "behavioral"
    PAYMENT = "payment"
    USER_HISTORY = "user_history"
    DEVICE = "device"
    BOOKING_PATTERN = "booking_pattern"


FACTOR_ORDER: list[RiskFactor] = list(RiskFactor)


def clamp_score(value: float) -> int:
    """Round half-up and clamp into [0, 100]."""
    # round(.., 9) strips float noise such as 52.49999999999999
    return max(0, min(100, int(math.floor(round(float(value), 9) + 0.5))))


# =============================================================================
# Signal Codes (Constants)
# =============================================================================

class SignalCodes:
    """
    Codes of the conditions that fired inside an analyzer.

    Format: {FACTOR}_{CONDITION}
    """
    # Velocity
    VELOCITY_HIGH_COUNT = "VELOCITY_HIGH_COUNT"
    VELOCITY_HIGH_AMOUNT = "VELOCITY_HIGH_AMOUNT"
    VELOCITY_FAILED_ATTEMPTS = "VELOCITY_FAILED_ATTEMPTS"

    # Geographic
    NO_IP_ADDRESS = "NO_IP_ADDRESS"
    GEO_LOOKUP_FAILED = "GEO_LOOKUP_FAILED"
    GEO_SUSPICIOUS_COUNTRY = "GEO_SUSPICIOUS_COUNTRY"
    GEO_IMPOSSIBLE_TRAVEL = "GEO_IMPOSSIBLE_TRAVEL"
    GEO_ANONYMIZING_NETWORK = "GEO_ANONYMIZING_NETWORK"

    # Behavioral
    BEHAVIOR_SHORT_SESSION = "BEHAVIOR_SHORT_SESSION"
    BEHAVIOR_BOT_USER_AGENT = "BEHAVIOR_BOT_USER_AGENT"
    BEHAVIOR_AMOUNT_SPIKE = "BEHAVIOR_AMOUNT_SPIKE"
    BEHAVIOR_UNUSUAL_HOUR = "BEHAVIOR_UNUSUAL_HOUR"

    # Payment
    PAYMENT_SUSPICIOUS_BIN = "PAYMENT_SUSPICIOUS_BIN"
    PAYMENT_HIGH_RISK_BIN = "PAYMENT_HIGH_RISK_BIN"
    PAYMENT_HIGH_AMOUNT = "PAYMENT_HIGH_AMOUNT"
    PAYMENT_CRYPTOCURRENCY = "PAYMENT_CRYPTOCURRENCY"
    PAYMENT_BIN_FAILURES = "PAYMENT_BIN_FAILURES"

    # User history
    USER_NOT_FOUND = "USER_NOT_FOUND"
    USER_BRAND_NEW_ACCOUNT = "USER_BRAND_NEW_ACCOUNT"
    USER_NEW_ACCOUNT = "USER_NEW_ACCOUNT"
    USER_LOW_VERIFICATION = "USER_LOW_VERIFICATION"
    USER_FLAGGED = "USER_FLAGGED"
    USER_NO_HISTORY = "USER_NO_HISTORY"
    USER_CONFIRMED_FRAUD = "USER_CONFIRMED_FRAUD"

    # Device
    NO_FINGERPRINT = "NO_FINGERPRINT"
    DEVICE_SHARED = "DEVICE_SHARED"
    DEVICE_FLAGGED = "DEVICE_FLAGGED"
    DEVICE_MALICIOUS_IP = "DEVICE_MALICIOUS_IP"

    # Booking pattern
    NO_BOOKING_DATA = "NO_BOOKING_DATA"
    BOOKING_LAST_MINUTE = "BOOKING_LAST_MINUTE"
    BOOKING_FAR_FUTURE = "BOOKING_FAR_FUTURE"
    BOOKING_LOW_VALUE_PRIVATE = "BOOKING_LOW_VALUE_PRIVATE"
    BOOKING_CONFLICT = "BOOKING_CONFLICT"


# =============================================================================
# Per-factor details
# =============================================================================

class _FactorDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    signals: list[str] = Field(
        default_factory=list,
        description="Codes of the conditions that fired",
    )


class VelocityDetails(_FactorDetails):
    factor: Literal["velocity"] = "velocity"
    window_minutes: int = 60
    transaction_count: int = 0
    total_amount: float = 0
    failed_count: int = 0


class GeographicDetails(_FactorDetails):
    factor: Literal["geographic"] = "geographic"
    country: Optional[str] = None
    city: Optional[str] = None
    org: Optional[str] = None
    distance_km: Optional[float] = None
    hours_since_previous: Optional[float] = None
    previous_transaction_id: Optional[str] = None


class BehavioralDetails(_FactorDetails):
    factor: Literal["behavioral"] = "behavioral"
    session_duration: float = 0
    amount_multiplier: Optional[float] = None
    local_hour: Optional[int] = None
    bot_user_agent: bool = False


class PaymentDetails(_FactorDetails):
    factor: Literal["payment"] = "payment"
    card_bin: Optional[str] = None
    bin_penalty: int = 0
    amount: float = 0
    payment_method: Optional[str] = None
    failed_bin_attempts_24h: int = 0


class UserHistoryDetails(_FactorDetails):
    factor: Literal["user_history"] = "user_history"
    account_age_days: Optional[float] = None
    verification_level: Optional[int] = None
    account_flags: list[str] = Field(default_factory=list)
    confirmed_fraud_reports: int = 0
    total_transactions: int = 0


class DeviceDetails(_FactorDetails):
    factor: Literal["device"] = "device"
    fingerprint: Optional[str] = None
    distinct_users: int = 0
    flagged_count: int = 0
    ip_malicious: bool = False


class BookingPatternDetails(_FactorDetails):
    factor: Literal["booking_pattern"] = "booking_pattern"
    days_until_event: Optional[int] = None
    event_type: Optional[str] = None
    conflicting_bookings: int = 0


FactorDetails = Annotated[
    Union[
        VelocityDetails,
        GeographicDetails,
        BehavioralDetails,
        PaymentDetails,
        UserHistoryDetails,
        DeviceDetails,
        BookingPatternDetails,
    ],
    Field(discriminator="factor"),
]

DETAILS_BY_FACTOR: dict[RiskFactor, type[_FactorDetails]] = {
    RiskFactor.VELOCITY: VelocityDetails,
    RiskFactor.GEOGRAPHIC: GeographicDetails,
    RiskFactor.BEHAVIORAL: BehavioralDetails,
    RiskFactor.PAYMENT: PaymentDetails,
    RiskFactor.USER_HISTORY: UserHistoryDetails,
    RiskFactor.DEVICE: DeviceDetails,
    RiskFactor.BOOKING_PATTERN: BookingPatternDetails,
}


class RiskFactorResult(BaseModel):
    """
    Output of a single analyzer.

    The score is clamped into [0, 100] on construction. A result with
    data_unavailable=True carries score 0 and is excluded from the
    composite score.
    """
    model_config = ConfigDict(frozen=True)

    factor: RiskFactor
    score: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Factor risk score (0-100)",
    )
    details: FactorDetails
    data_unavailable: bool = Field(
        default=False,
        description="True when the analyzer could not obtain its data",
    )
    error: Optional[str] = Field(
        default=None,
        description="Why the analyzer was unavailable",
    )

    @field_validator("score", mode="before")
    @classmethod
    def clamp(cls, v) -> int:
        return clamp_score(v)

    @property
    def usable(self) -> bool:
        return not self.data_unavailable

    @classmethod
    def unavailable(cls, factor: RiskFactor, error: str) -> "RiskFactorResult":
        """Neutral result for an analyzer that failed, timed out or lacked data."""
        return cls(
            factor=factor,
            score=0,
            details=DETAILS_BY_FACTOR[factor](),
            data_unavailable=True,
            error=error,
        )
