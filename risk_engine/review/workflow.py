"""
Manual Review Workflow

State machine for human fraud decisions:

    pending --approve--> approved   (transaction -> approved)
    pending --reject---> rejected   (transaction -> rejected_fraud)

The transaction moves from pending or blocked_fraud, so approving the
review of a blocked transaction releases it.

Both targets are terminal. The entry transition is a compare-and-set on
`pending`, so two reviewers deciding the same entry concurrently cannot
both win: the loser gets ReviewAlreadyResolved.

Pending entries that wait longer than their priority's SLA are escalated
one priority level and operators are notified. Escalation never changes
the status of an entry. Critical entries stay critical but are still
re-alerted once per critical SLA period until someone decides them.
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Callable, Optional

from ..errors import InvalidDecision, PersistenceFailure, ReviewAlreadyResolved, ReviewNotFound
from ..metrics import metrics
from ..repositories import NotificationSink, ReviewStore, TransactionRepository
from ..schemas import (
    ManualReviewEntry,
    ReviewDecisionResult,
    ReviewPriority,
    ReviewQueueItem,
    ReviewQueuePage,
    ReviewStatus,
    RiskLevel,
    SecurityAlert,
    TransactionStatus,
    TransactionSummary,
)

logger = logging.getLogger("risk_engine.review")

DECISIONS: dict[str, tuple[ReviewStatus, TransactionStatus, set[TransactionStatus]]] = {
    "approve": (
        ReviewStatus.APPROVED,
        TransactionStatus.APPROVED,
        {TransactionStatus.PENDING, TransactionStatus.BLOCKED_FRAUD},
    ),
    "reject": (
        ReviewStatus.REJECTED,
        TransactionStatus.REJECTED_FRAUD,
        {TransactionStatus.PENDING, TransactionStatus.BLOCKED_FRAUD},
    ),
}

DEFAULT_SLA_HOURS: dict[str, float] = {
    "critical": 1.0,
    "high": 4.0,
    "normal": 24.0,
    "low": 72.0,
}

MAX_PAGE_SIZE = 100


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ManualReviewWorkflow:
    """Resolves, lists and escalates manual review entries."""

    def __init__(
        self,
        reviews: ReviewStore,
        transactions: TransactionRepository,
        notifications: Optional[NotificationSink] = None,
        sla_hours: Optional[dict[str, float]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize workflow.

        Args:
            reviews: Review entry store
            transactions: Transaction repository for the status transition
            notifications: Sink for escalation alerts (optional)
            sla_hours: Hours a pending entry may wait, per priority value
            clock: Time source
        """
        self.reviews = reviews
        self.transactions = transactions
        self.notifications = notifications
        self.sla_hours = {**DEFAULT_SLA_HOURS, **(sla_hours or {})}
        self.clock = clock

    # =========================================================================
    # Decisions
    # =========================================================================

    async def decide(
        self,
        entry_id: str,
        decision: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> ReviewDecisionResult:
        """
        Resolve a pending review entry.

        Args:
            entry_id: Review entry id
            decision: "approve" or "reject"
            reviewer_id: Who decided
            notes: Free-text reviewer notes

        Returns:
            The resolved entry and the resulting transaction status

        Raises:
            InvalidDecision: decision is not approve/reject (nothing changes)
            ReviewNotFound: unknown entry id
            ReviewAlreadyResolved: entry is no longer pending
        """
        normalized = (decision or "").strip().lower()
        if normalized not in DECISIONS:
            raise InvalidDecision(decision)
        review_status, transaction_status, expected = DECISIONS[normalized]

        entry = await self.reviews.get(entry_id)
        if entry is None:
            raise ReviewNotFound(entry_id)
        if entry.is_resolved:
            raise ReviewAlreadyResolved(entry_id, entry.status.value)

        now = self.clock()
        resolved = await self.reviews.resolve(
            entry_id,
            status=review_status,
            reviewer_id=reviewer_id,
            notes=notes,
            reviewed_at=now,
        )
        if resolved is None:
            # Lost the race against another reviewer
            current = await self.reviews.get(entry_id)
            raise ReviewAlreadyResolved(entry_id, current.status.value if current else None)

        metrics.review_decisions.labels(decision=normalized).inc()
        logger.info(
            "Review %s %s by %s (transaction %s)",
            entry_id, review_status.value, reviewer_id, entry.transaction_id,
        )

        try:
            final_status = await self._apply_to_transaction(
                entry.transaction_id, transaction_status, expected, now
            )
        except PersistenceFailure as e:
            # The decision stands; the transaction keeps its last known status
            metrics.persistence_failures.labels(store=e.store).inc()
            logger.error(
                "Review %s resolved but transaction %s was not updated: %s",
                entry_id, entry.transaction_id, e,
            )
            final_status = await self._current_status(entry.transaction_id)
        return ReviewDecisionResult(entry=resolved, transaction_status=final_status)

    async def _apply_to_transaction(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        expected: set[TransactionStatus],
        at: datetime,
    ) -> Optional[TransactionStatus]:
        try:
            updated = await self.transactions.update_status(
                transaction_id, new_status, expected=expected, at=at
            )
        except Exception as e:
            raise PersistenceFailure("transaction", str(e)) from e
        if updated:
            return new_status

        current = await self._current_status(transaction_id)
        logger.warning(
            "Transaction %s not moved to %s (current status: %s)",
            transaction_id, new_status.value, current.value if current else "unknown",
        )
        return current

    async def _current_status(self, transaction_id: str) -> Optional[TransactionStatus]:
        try:
            transaction = await self.transactions.get(transaction_id)
        except Exception as e:
            logger.warning("Could not read transaction %s: %s", transaction_id, e)
            return None
        return transaction.status if transaction else None

    # =========================================================================
    # Queue
    # =========================================================================

    async def list_queue(
        self,
        status: Optional[ReviewStatus] = ReviewStatus.PENDING,
        priority: Optional[ReviewPriority] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ReviewQueuePage:
        """Page of review entries, newest first, joined with their transactions."""
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        entries, total = await self.reviews.list_entries(
            status=status, priority=priority, page=page, limit=limit
        )

        items = []
        for entry in entries:
            transaction = await self.transactions.get(entry.transaction_id)
            items.append(ReviewQueueItem(
                entry=entry,
                transaction=TransactionSummary.from_transaction(transaction) if transaction else None,
            ))

        return ReviewQueuePage(items=items, page=page, limit=limit, total=total)

    # =========================================================================
    # SLA escalation
    # =========================================================================

    def is_overdue(self, entry: ManualReviewEntry, now: datetime) -> bool:
        """
        Pending longer than the SLA of its current priority.

        The clock restarts at the last escalation so an entry climbs one
        level per SLA period instead of jumping straight to critical.
        """
        if entry.is_resolved:
            return False
        since = entry.escalated_at or entry.created_at
        limit = timedelta(hours=self.sla_hours[entry.priority.value])
        return now - since > limit

    async def escalate_stale(self) -> list[ManualReviewEntry]:
        """
        Escalate every pending entry past its SLA.

        Returns:
            Entries that were escalated
        """
        now = self.clock()
        escalated = []

        for entry in await self.reviews.list_pending():
            if not self.is_overdue(entry, now):
                continue

            updated = await self.reviews.mark_escalated(
                entry.id, entry.priority.bumped(), now
            )
            if updated is None:
                continue

            escalated.append(updated)
            metrics.review_escalations.labels(priority=updated.priority.value).inc()
            logger.warning(
                "Review %s overdue, escalated %s -> %s",
                entry.id, entry.priority.value, updated.priority.value,
            )
            await self._notify_escalation(updated)

        if escalated:
            logger.info("Escalated %d stale review entries", len(escalated))
        return escalated

    async def _notify_escalation(self, entry: ManualReviewEntry) -> None:
        if self.notifications is None:
            return
        alert = SecurityAlert(
            alert_type="REVIEW_ESCALATED",
            severity=RiskLevel.CRITICAL if entry.priority == ReviewPriority.CRITICAL else RiskLevel.HIGH,
            transaction_id=entry.transaction_id,
            risk_score=entry.risk_score,
            message=f"Manual review {entry.id} overdue, priority now {entry.priority.value}",
            data={
                "review_entry_id": entry.id,
                "escalation_count": entry.escalation_count,
            },
        )
        try:
            await self.notifications.notify(alert)
        except Exception as e:
            metrics.notifications_failed.inc()
            logger.warning("Escalation notification for %s failed: %s", entry.id, e)
