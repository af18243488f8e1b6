"""
Security Action Executor

Applies the recommended actions of an analysis:

- BLOCK_TRANSACTION: conditional pending -> blocked_fraud update
- FLAG_USER_ACCOUNT: adds the fraud_risk flag to the owner
- NOTIFY_SECURITY_TEAM: alert to the notification sink (fire-and-forget)
- REQUIRE_MANUAL_REVIEW: one pending review entry per analysis
- everything else: recorded on the transaction as advisory metadata

Execution is best-effort with per-action isolation: a failing action
is logged and counted, and the remaining actions still run. A review
entry is never created for an analysis that could not be persisted.
"""

import asyncio
import logging
from datetime import datetime, UTC
from typing import Callable

from ..errors import ExternalSideEffectFailure, PersistenceFailure
from ..metrics import metrics
from ..repositories import NotificationSink, ReviewStore, TransactionRepository
from ..schemas import (
    ENFORCING_ACTIONS,
    ActionExecutionReport,
    ActionOutcome,
    FraudAnalysisResult,
    ManualReviewEntry,
    RiskLevel,
    SecurityAction,
    SecurityAlert,
    Transaction,
    TransactionStatus,
)

logger = logging.getLogger("risk_engine.actions")

FRAUD_RISK_FLAG = "fraud_risk"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SecurityActionExecutor:
    """
    Drives the side effects of an analysis.

    Never raises for a failing collaborator; the outcome of every action
    is reported in the returned ActionExecutionReport.
    """

    def __init__(
        self,
        transactions: TransactionRepository,
        reviews: ReviewStore,
        notifications: NotificationSink,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize executor.

        Args:
            transactions: Transaction repository (status, flags, advisories)
            reviews: Manual review store
            notifications: Operator notification sink
            clock: Time source
        """
        self.transactions = transactions
        self.reviews = reviews
        self.notifications = notifications
        self.clock = clock
        self._background: set[asyncio.Task] = set()

    async def execute(
        self,
        transaction: Transaction,
        result: FraudAnalysisResult,
        persisted: bool = True,
    ) -> ActionExecutionReport:
        """
        Execute all recommended actions.

        Args:
            transaction: Analyzed transaction
            result: Its analysis
            persisted: Whether the analysis was stored; no review entry otherwise

        Returns:
            Report of applied / skipped / failed / advisory actions
        """
        report = ActionExecutionReport(transaction_id=transaction.id)
        advisories: list[SecurityAction] = []

        for action in result.recommendation.actions:
            if action not in ENFORCING_ACTIONS:
                advisories.append(action)
                continue

            try:
                outcome = await self._enforce(action, transaction, result, persisted, report)
            except (ExternalSideEffectFailure, PersistenceFailure) as e:
                outcome = ActionOutcome(action=action, status="failed", detail=e.reason)
                logger.warning("Action failed for transaction %s: %s", transaction.id, e)
            report.outcomes.append(outcome)
            metrics.action_outcomes.labels(action=action.value, result=outcome.status).inc()

        # Critical analyses need a reviewer even though the rule table
        # does not list REQUIRE_MANUAL_REVIEW for them
        if (
            result.requires_manual_review
            and SecurityAction.REQUIRE_MANUAL_REVIEW not in result.recommendation.actions
        ):
            try:
                outcome = await self._enforce(
                    SecurityAction.REQUIRE_MANUAL_REVIEW, transaction, result, persisted, report
                )
            except (ExternalSideEffectFailure, PersistenceFailure) as e:
                outcome = ActionOutcome(
                    action=SecurityAction.REQUIRE_MANUAL_REVIEW, status="failed", detail=e.reason
                )
                logger.warning("Action failed for transaction %s: %s", transaction.id, e)
            report.outcomes.append(outcome)
            metrics.action_outcomes.labels(
                action=SecurityAction.REQUIRE_MANUAL_REVIEW.value, result=outcome.status
            ).inc()

        if advisories:
            report.outcomes.extend(await self._record_advisories(transaction, advisories))

        return report

    # =========================================================================
    # Enforcing actions
    # =========================================================================

    async def _enforce(
        self,
        action: SecurityAction,
        transaction: Transaction,
        result: FraudAnalysisResult,
        persisted: bool,
        report: ActionExecutionReport,
    ) -> ActionOutcome:
        if action == SecurityAction.BLOCK_TRANSACTION:
            return await self._block(transaction)
        if action == SecurityAction.FLAG_USER_ACCOUNT:
            return await self._flag(transaction)
        if action == SecurityAction.NOTIFY_SECURITY_TEAM:
            return self._notify(transaction, result)
        return await self._queue_review(transaction, result, persisted, report)

    async def _block(self, transaction: Transaction) -> ActionOutcome:
        action = SecurityAction.BLOCK_TRANSACTION
        try:
            blocked = await self.transactions.update_status(
                transaction.id,
                TransactionStatus.BLOCKED_FRAUD,
                expected={TransactionStatus.PENDING},
                at=self.clock(),
            )
        except Exception as e:
            raise ExternalSideEffectFailure(action.value, str(e)) from e

        if not blocked:
            logger.info("Transaction %s no longer pending, block skipped", transaction.id)
            return ActionOutcome(action=action, status="skipped", detail="transaction not pending")

        logger.warning("Transaction %s blocked as fraud", transaction.id)
        return ActionOutcome(action=action, status="applied")

    async def _flag(self, transaction: Transaction) -> ActionOutcome:
        action = SecurityAction.FLAG_USER_ACCOUNT
        try:
            await self.transactions.flag_user(transaction.user_id, FRAUD_RISK_FLAG)
        except Exception as e:
            raise ExternalSideEffectFailure(action.value, str(e)) from e
        return ActionOutcome(action=action, status="applied", detail=FRAUD_RISK_FLAG)

    def _notify(self, transaction: Transaction, result: FraudAnalysisResult) -> ActionOutcome:
        alert = SecurityAlert(
            alert_type="FAIL_SAFE_ANALYSIS" if result.fail_safe else "HIGH_RISK_TRANSACTION",
            severity=result.risk_level if result.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL) else RiskLevel.HIGH,
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            risk_score=result.risk_score,
            message=f"{result.risk_level.value.upper()} risk transaction detected",
            data={
                "analysis_id": result.analysis_id,
                "actions": [a.value for a in result.recommendation.actions],
            },
        )
        self._fire_and_forget(self.notifications.notify(alert), f"notify:{transaction.id}")
        return ActionOutcome(action=SecurityAction.NOTIFY_SECURITY_TEAM, status="applied", detail=alert.id)

    async def _queue_review(
        self,
        transaction: Transaction,
        result: FraudAnalysisResult,
        persisted: bool,
        report: ActionExecutionReport,
    ) -> ActionOutcome:
        action = SecurityAction.REQUIRE_MANUAL_REVIEW
        if report.review_entry_id:
            return ActionOutcome(action=action, status="skipped", detail="review entry already created")
        if not persisted:
            logger.error(
                "Analysis %s for transaction %s was not persisted, no review entry created",
                result.analysis_id, transaction.id,
            )
            return ActionOutcome(action=action, status="skipped", detail="analysis not persisted")

        entry = ManualReviewEntry(
            transaction_id=transaction.id,
            analysis_id=result.analysis_id,
            risk_score=result.risk_score,
            priority=result.recommendation.priority,
            created_at=self.clock(),
        )
        try:
            await self.reviews.create(entry)
        except Exception as e:
            metrics.persistence_failures.labels(store="review").inc()
            raise PersistenceFailure("review", str(e)) from e

        report.review_entry_id = entry.id
        metrics.review_entries_created.labels(priority=entry.priority.value).inc()
        return ActionOutcome(action=action, status="applied", detail=entry.id)

    # =========================================================================
    # Advisory actions
    # =========================================================================

    async def _record_advisories(
        self,
        transaction: Transaction,
        advisories: list[SecurityAction],
    ) -> list[ActionOutcome]:
        try:
            await self.transactions.add_advisories(transaction.id, [a.value for a in advisories])
        except Exception as e:
            logger.warning("Recording advisories for %s failed: %s", transaction.id, e)
            status, detail = "failed", str(e)
        else:
            status, detail = "advisory", None

        for action in advisories:
            metrics.action_outcomes.labels(action=action.value, result=status).inc()
        return [ActionOutcome(action=a, status=status, detail=detail) for a in advisories]

    def _fire_and_forget(self, coro, name: str) -> None:
        """Run a coroutine in the background and log failures."""
        task = asyncio.create_task(coro)
        self._background.add(task)

        def _log_exception(task_ref: asyncio.Task) -> None:
            self._background.discard(task_ref)
            if task_ref.cancelled():
                return
            exc = task_ref.exception()
            if exc is not None:
                metrics.notifications_failed.inc()
                logger.warning("Background task %s failed: %s", name, exc)

        task.add_done_callback(_log_exception)

    async def drain(self) -> None:
        """Wait for in-flight notifications (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
