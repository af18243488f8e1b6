"""
Manual Review Schemas

A ManualReviewEntry is created for every analysis that needs a human
decision. Entries move pending -> approved | rejected exactly once.
"""

import uuid
from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .analysis import ReviewPriority
from .transaction import TransactionStatus, TransactionSummary, ensure_utc


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class ReviewStatus(str, Enum):
    """Review entry states. APPROVED and REJECTED are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ManualReviewEntry(BaseModel):
    """Queued request for a human fraud decision."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    transaction_id: str
    analysis_id: Optional[str] = None
    risk_score: int = Field(default=0, ge=0, le=100)
    priority: ReviewPriority = ReviewPriority.NORMAL
    status: ReviewStatus = ReviewStatus.PENDING

    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=_utc_now)
    escalated_at: Optional[datetime] = None
    escalation_count: int = Field(default=0, ge=0)

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("reviewed_at", "escalated_at")
    @classmethod
    def validate_optional_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v else v

    @property
    def is_resolved(self) -> bool:
        return self.status != ReviewStatus.PENDING


class ReviewDecisionRequest(BaseModel):
    """Body of POST /manual-review/{id}/decision."""
    decision: str = Field(
        ...,
        description="approve or reject",
    )
    reviewer_id: str = Field(
        ...,
        min_length=1,
        description="Reviewer making the decision",
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=2000,
    )


class ReviewDecisionResult(BaseModel):
    """Resolved entry together with the resulting transaction status."""
    entry: ManualReviewEntry
    transaction_status: Optional[TransactionStatus] = None


class ReviewQueueItem(BaseModel):
    """Review entry joined with its transaction."""
    entry: ManualReviewEntry
    transaction: Optional[TransactionSummary] = None


class ReviewQueuePage(BaseModel):
    """One page of the manual review queue."""
    items: list[ReviewQueueItem] = Field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
