# Data schemas for the Transaction Risk Engine
from .transaction import (
    Transaction,
    TransactionStatus,
    TransactionSummary,
    PaymentMethod,
    BookingData,
    ensure_utc,
)
from .history import (
    TransactionRecord,
    UserRiskProfile,
    DeviceHistory,
    DeviceHistoryEntry,
    GeoLocation,
    IPReputation,
    BINReputation,
    BlacklistEntry,
    BlacklistKind,
    Severity,
)
from .factors import (
    RiskFactor,
    FACTOR_ORDER,
    RiskFactorResult,
    SignalCodes,
    VelocityDetails,
    GeographicDetails,
    BehavioralDetails,
    PaymentDetails,
    UserHistoryDetails,
    DeviceDetails,
    BookingPatternDetails,
    clamp_score,
)
from .analysis import (
    RiskLevel,
    ReviewPriority,
    SecurityAction,
    ENFORCING_ACTIONS,
    Recommendation,
    FraudAnalysisResult,
    ActionOutcome,
    ActionExecutionReport,
    SecurityAlert,
)
from .review import (
    ReviewStatus,
    ManualReviewEntry,
    ReviewDecisionRequest,
    ReviewDecisionResult,
    ReviewQueueItem,
    ReviewQueuePage,
)
from .report import FactorFrequency, FraudReport

__all__ = [
    # Transactions
    "Transaction",
    "TransactionStatus",
    "TransactionSummary",
    "PaymentMethod",
    "BookingData",
    "ensure_utc",
    # History / reputation
    "TransactionRecord",
    "UserRiskProfile",
    "DeviceHistory",
    "DeviceHistoryEntry",
    "GeoLocation",
    "IPReputation",
    "BINReputation",
    "BlacklistEntry",
    "BlacklistKind",
    "Severity",
    # Factors
    "RiskFactor",
    "FACTOR_ORDER",
    "RiskFactorResult",
    "SignalCodes",
    "VelocityDetails",
    "GeographicDetails",
    "BehavioralDetails",
    "PaymentDetails",
    "UserHistoryDetails",
    "DeviceDetails",
    "BookingPatternDetails",
    "clamp_score",
    # Analysis
    "RiskLevel",
    "ReviewPriority",
    "SecurityAction",
    "ENFORCING_ACTIONS",
    "Recommendation",
    "FraudAnalysisResult",
    "ActionOutcome",
    "ActionExecutionReport",
    "SecurityAlert",
    # Review
    "ReviewStatus",
    "ManualReviewEntry",
    "ReviewDecisionRequest",
    "ReviewDecisionResult",
    "ReviewQueueItem",
    "ReviewQueuePage",
    # Report
    "FactorFrequency",
    "FraudReport",
]
