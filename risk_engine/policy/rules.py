"""
Risk Policy Configuration

Defines the structure of the tunable risk policy: classification
thresholds, composite weights and the detection patterns every
analyzer reads its limits and score increments from. The policy is
loaded from YAML and can be hot-reloaded or updated through the API
without code deployment.
"""

from typing import Optional

from pydantic import BaseModel, Field

from ..schemas import RiskFactor


class RiskThresholds(BaseModel):
    """
    Score thresholds used by the classifier.

    Must be strictly increasing: low < medium < high < critical.
    The high threshold lies inside the HIGH band and marks
    high-priority review.
    """
    low: int = Field(default=30, ge=0, le=100)
    medium: int = Field(default=60, ge=0, le=100)
    high: int = Field(default=80, ge=0, le=100)
    critical: int = Field(default=90, ge=0, le=100)


class FactorWeights(BaseModel):
    """
    Composite score weights per factor.

    Weights need not sum to 1; the composite renormalises over the
    factors that produced usable data.
    """
    velocity: float = Field(default=0.20, ge=0)
    geographic: float = Field(default=0.15, ge=0)
    behavioral: float = Field(default=0.15, ge=0)
    payment: float = Field(default=0.25, ge=0)
    user_history: float = Field(default=0.15, ge=0)
    device: float = Field(default=0.05, ge=0)
    booking_pattern: float = Field(default=0.05, ge=0)

    def for_factor(self, factor: RiskFactor) -> float:
        return getattr(self, factor.value)

    @property
    def total(self) -> float:
        return sum(self.for_factor(f) for f in RiskFactor)


# =============================================================================
# Detection patterns (per analyzer)
# =============================================================================

class VelocityPatterns(BaseModel):
    window_minutes: int = Field(default=60, gt=0)
    max_transactions: int = Field(default=5, ge=1, description="count >= this fires")
    high_count_score: int = 25
    max_amount: float = Field(default=50000, ge=0, description="window total >= this fires")
    high_amount_score: int = 30
    max_failed: int = Field(default=3, ge=1, description="failed >= this fires")
    failed_score: int = 20


class GeographicPatterns(BaseModel):
    no_ip_score: int = 10
    lookup_failed_score: int = 15
    suspicious_countries: list[str] = Field(default_factory=lambda: ["KP", "IR", "SY", "CU"])
    suspicious_country_score: int = 40
    impossible_travel_km: float = Field(default=1000, gt=0)
    travel_window_hours: float = Field(default=6, gt=0)
    impossible_travel_score: int = 25
    anonymizing_org_keywords: list[str] = Field(
        default_factory=lambda: ["hosting", "vpn", "proxy", "tor"]
    )
    anonymizing_network_score: int = 20


class BehavioralPatterns(BaseModel):
    min_session_seconds: float = Field(default=30, ge=0)
    short_session_score: int = 15
    bot_user_agent_keywords: list[str] = Field(
        default_factory=lambda: ["bot", "crawler", "scraper", "spider", "headless"]
    )
    bot_user_agent_score: int = 30
    amount_multiplier_threshold: float = Field(default=10, gt=0)
    amount_spike_score: int = 20
    unusual_hour_start: int = Field(default=2, ge=0, le=23)
    unusual_hour_end: int = Field(default=5, ge=0, le=23, description="inclusive")
    unusual_hour_score: int = 10


class PaymentPatterns(BaseModel):
    suspicious_bin_prefixes: list[str] = Field(default_factory=lambda: ["123456", "654321"])
    suspicious_bin_score: int = 35
    high_amount_threshold: float = Field(default=10000, ge=0)
    high_amount_score: int = 15
    cryptocurrency_score: int = 10
    bin_failure_window_hours: float = Field(default=24, gt=0)
    max_bin_failures: int = Field(default=5, ge=0, description="failures > this fires")
    bin_failure_score: int = 40


class UserHistoryPatterns(BaseModel):
    not_found_score: int = 50
    brand_new_account_days: float = 1
    brand_new_account_score: int = 30
    new_account_days: float = 7
    new_account_score: int = 15
    min_verification_level: int = 2
    low_verification_score: int = 20
    flagged_account_score: int = 25
    no_history_score: int = 10
    confirmed_fraud_score: int = 80


class DevicePatterns(BaseModel):
    no_fingerprint_score: int = 15
    max_users_per_device: int = Field(default=5, ge=1, description="distinct users > this fires")
    shared_device_score: int = 25
    flagged_device_score: int = 40
    malicious_ip_score: int = 50


class BookingPatterns(BaseModel):
    last_minute_days: int = 1
    last_minute_score: int = 20
    far_future_days: int = 365
    far_future_score: int = 15
    private_event_types: list[str] = Field(default_factory=lambda: ["private"])
    low_value_threshold: float = 1000
    low_value_private_score: int = 10
    conflict_score: int = 30


class DetectionPatterns(BaseModel):
    """Limits and score increments for every analyzer."""
    velocity: VelocityPatterns = Field(default_factory=VelocityPatterns)
    geographic: GeographicPatterns = Field(default_factory=GeographicPatterns)
    behavioral: BehavioralPatterns = Field(default_factory=BehavioralPatterns)
    payment: PaymentPatterns = Field(default_factory=PaymentPatterns)
    user_history: UserHistoryPatterns = Field(default_factory=UserHistoryPatterns)
    device: DevicePatterns = Field(default_factory=DevicePatterns)
    booking_pattern: BookingPatterns = Field(default_factory=BookingPatterns)


class RiskPolicy(BaseModel):
    """
    Complete risk policy.

    Loaded from YAML file and can be hot-reloaded.
    """
    version: str = Field(
        default="1.0.0",
        description="Policy version for audit trail",
    )
    description: Optional[str] = Field(
        default=None,
        description="Policy description",
    )
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    weights: FactorWeights = Field(default_factory=FactorWeights)
    detection: DetectionPatterns = Field(default_factory=DetectionPatterns)


class RiskPolicyUpdate(BaseModel):
    """Body of PUT /settings. Omitted sections are left unchanged."""
    thresholds: Optional[RiskThresholds] = None
    weights: Optional[FactorWeights] = None
    detection: Optional[DetectionPatterns] = None
    description: Optional[str] = None


# Default policy configuration (fallback)
# ========================================
# Used when config/risk_policy.yaml is missing or fails to load so the
# engine keeps scoring during a degraded configuration state.
DEFAULT_POLICY = RiskPolicy(
    version="1.0.0",
    description="Default transaction risk policy",
)
