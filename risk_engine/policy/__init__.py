# Risk policy configuration
from .rules import (
    RiskPolicy,
    RiskPolicyUpdate,
    RiskThresholds,
    FactorWeights,
    DetectionPatterns,
    VelocityPatterns,
    GeographicPatterns,
    BehavioralPatterns,
    PaymentPatterns,
    UserHistoryPatterns,
    DevicePatterns,
    BookingPatterns,
    DEFAULT_POLICY,
)
from .manager import PolicyManager, validate_policy, validate_thresholds, validate_weights

__all__ = [
    "RiskPolicy",
    "RiskPolicyUpdate",
    "RiskThresholds",
    "FactorWeights",
    "DetectionPatterns",
    "VelocityPatterns",
    "GeographicPatterns",
    "BehavioralPatterns",
    "PaymentPatterns",
    "UserHistoryPatterns",
    "DevicePatterns",
    "BookingPatterns",
    "DEFAULT_POLICY",
    "PolicyManager",
    "validate_policy",
    "validate_thresholds",
    "validate_weights",
]
