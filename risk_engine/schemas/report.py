"""
Fraud Report Schemas
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .analysis import RiskLevel
from .factors import RiskFactor


class FactorFrequency(BaseModel):
    """How often a factor contributed, and its mean score when it did."""
    factor: RiskFactor
    frequency: int = Field(..., ge=0)
    avg_score: int = Field(..., ge=0, le=100)


class FraudReport(BaseModel):
    """Aggregate view over analyses produced within a time window."""
    timeframe: str = Field(..., description="Window, e.g. '30d'")
    window_start: datetime
    generated_at: datetime

    total_analyses: int = 0
    risk_distribution: dict[RiskLevel, int] = Field(
        default_factory=lambda: {level: 0 for level in RiskLevel},
        description="Analyses per risk level; every level is present",
    )
    blocked_transactions: int = 0
    manual_reviews: int = 0
    fail_safe_analyses: int = 0
    avg_risk_score: float = 0.0
    common_risk_factors: list[FactorFrequency] = Field(
        default_factory=list,
        description="Top factors by frequency",
    )
