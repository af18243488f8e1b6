"""
Analysis Schemas

Defines the risk levels, recommended security actions and the
FraudAnalysisResult returned for every analyzed transaction.
"""

import uuid
from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .factors import RiskFactor, RiskFactorResult, clamp_score
from .transaction import ensure_utc


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class RiskLevel(str, Enum):
    """
    Risk level derived from the composite score.

    Ordered by severity: LOW < MEDIUM < HIGH < CRITICAL
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewPriority(str, Enum):
    """Manual review priority, lowest to highest."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    def bumped(self) -> "ReviewPriority":
        """Next priority up; CRITICAL stays CRITICAL."""
        order = list(ReviewPriority)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]


class SecurityAction(str, Enum):
    """
    Actions the recommendation engine can emit.

    Enforcing actions (block, flag, notify, review) mutate state through
    the action executor; the rest are recorded as advisory metadata.
    """
    BLOCK_TRANSACTION = "BLOCK_TRANSACTION"
    FLAG_USER_ACCOUNT = "FLAG_USER_ACCOUNT"
    NOTIFY_SECURITY_TEAM = "NOTIFY_SECURITY_TEAM"
    REQUIRE_MANUAL_REVIEW = "REQUIRE_MANUAL_REVIEW"
    REQUEST_ADDITIONAL_VERIFICATION = "REQUEST_ADDITIONAL_VERIFICATION"
    DELAY_TRANSACTION_PROCESSING = "DELAY_TRANSACTION_PROCESSING"
    ENHANCED_MONITORING = "ENHANCED_MONITORING"
    REQUEST_VERIFICATION = "REQUEST_VERIFICATION"
    PROCEED_NORMALLY = "PROCEED_NORMALLY"
    IMPLEMENT_RATE_LIMITING = "IMPLEMENT_RATE_LIMITING"
    VERIFY_PAYMENT_METHOD = "VERIFY_PAYMENT_METHOD"
    VERIFY_USER_IDENTITY = "VERIFY_USER_IDENTITY"


ENFORCING_ACTIONS = frozenset({
    SecurityAction.BLOCK_TRANSACTION,
    SecurityAction.FLAG_USER_ACCOUNT,
    SecurityAction.NOTIFY_SECURITY_TEAM,
    SecurityAction.REQUIRE_MANUAL_REVIEW,
})


class Recommendation(BaseModel):
    """Recommended actions with a confidence estimate and review priority."""
    model_config = ConfigDict(frozen=True)

    actions: list[SecurityAction] = Field(
        default_factory=list,
        description="De-duplicated actions in rule order",
    )
    confidence: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Confidence in the assessment (0-100)",
    )
    priority: ReviewPriority = Field(
        default=ReviewPriority.NORMAL,
        description="Priority for a manual review entry",
    )


class FraudAnalysisResult(BaseModel):
    """
    Complete risk analysis of a transaction.

    Immutable once produced. A transaction may be analyzed more than
    once; the latest result by analyzed_at wins for lookups.
    """
    model_config = ConfigDict(frozen=True)

    analysis_id: str = Field(
        default_factory=_new_id,
        description="Unique analysis identifier",
    )
    transaction_id: str
    user_id: Optional[str] = None

    # =========================================================================
    # Scores
    # =========================================================================
    risk_score: int = Field(
        ...,
        ge=0,
        le=100,
        description="Weighted composite risk score (0-100)",
    )
    risk_level: RiskLevel
    risk_factors: list[RiskFactorResult] = Field(
        default_factory=list,
        description="Per-factor results in canonical factor order",
    )

    # =========================================================================
    # Decision
    # =========================================================================
    recommendation: Recommendation
    requires_manual_review: bool = False
    should_block: bool = False

    # =========================================================================
    # Audit
    # =========================================================================
    analyzed_at: datetime = Field(default_factory=_utc_now)
    policy_version: Optional[str] = Field(
        default=None,
        description="Risk policy version used for this analysis",
    )
    fail_safe: bool = Field(
        default=False,
        description="True when the pipeline failed and a conservative result was returned",
    )
    error: Optional[str] = None

    @field_validator("risk_score", mode="before")
    @classmethod
    def clamp(cls, v) -> int:
        return clamp_score(v)

    @field_validator("analyzed_at")
    @classmethod
    def validate_analyzed_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def factor(self, factor: RiskFactor) -> Optional[RiskFactorResult]:
        """Result for one factor, if present."""
        for result in self.risk_factors:
            if result.factor == factor:
                return result
        return None


class ActionOutcome(BaseModel):
    """Outcome of one security action."""
    action: SecurityAction
    status: str = Field(
        ...,
        description="applied, skipped, failed or advisory",
    )
    detail: Optional[str] = None


class ActionExecutionReport(BaseModel):
    """What the action executor did for an analysis."""
    transaction_id: str
    outcomes: list[ActionOutcome] = Field(default_factory=list)
    review_entry_id: Optional[str] = None

    def _with_status(self, status: str) -> list[SecurityAction]:
        return [o.action for o in self.outcomes if o.status == status]

    @property
    def applied(self) -> list[SecurityAction]:
        return self._with_status("applied")

    @property
    def skipped(self) -> list[SecurityAction]:
        return self._with_status("skipped")

    @property
    def failed(self) -> list[SecurityAction]:
        return self._with_status("failed")

    @property
    def advisory(self) -> list[SecurityAction]:
        return self._with_status("advisory")



class SecurityAlert(BaseModel):
    """Operator notification emitted by the action executor or review escalation."""
    id: str = Field(default_factory=_new_id)
    alert_type: str = Field(
        ...,
        description="HIGH_RISK_TRANSACTION, FAIL_SAFE_ANALYSIS or REVIEW_ESCALATED",
    )
    severity: RiskLevel = RiskLevel.HIGH
    transaction_id: Optional[str] = None
    user_id: Optional[str] = None
    risk_score: Optional[int] = None
    message: str
    data: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
