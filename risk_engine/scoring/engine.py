"""
Fraud Analysis Engine

Main scoring pipeline. Orchestrates the analyzers and combines their
results into a FraudAnalysisResult.

Pipeline:
1. Snapshot the active risk policy
2. Run all analyzers concurrently (DetectionEngine)
3. Composite score -> risk level -> recommendation
4. Persist the analysis (with retries)
5. Execute the recommended security actions

Steps 1-3 are bounded by analysis_timeout_seconds. A timeout or an
unexpected failure never reaches the caller: a conservative fail-safe
result is returned instead and sent to manual review.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Callable, Optional

from ..actions import SecurityActionExecutor
from ..detection import AnalysisContext, DetectionEngine
from ..errors import AnalysisPipelineFailure, PersistenceFailure
from ..metrics import metrics
from ..policy import PolicyManager, RiskPolicy
from ..repositories import AnalysisStore, HistoryRepository, ReputationService, TransactionRepository
from ..schemas import (
    ActionExecutionReport,
    FraudAnalysisResult,
    Recommendation,
    ReviewPriority,
    RiskFactorResult,
    RiskLevel,
    SecurityAction,
    Transaction,
)
from .classifier import classify
from .composite import composite_score
from .recommendation import RecommendationEngine, requires_manual_review, should_block

logger = logging.getLogger("risk_engine.engine")

FAIL_SAFE_SCORE = 50


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ProcessedTransaction:
    """Outcome of the full pipeline for one transaction."""
    result: FraudAnalysisResult
    actions: ActionExecutionReport
    persisted: bool


def fail_safe_result(
    transaction: Transaction,
    error: str,
    policy_version: Optional[str] = None,
    risk_factors: Optional[list[RiskFactorResult]] = None,
    analyzed_at: Optional[datetime] = None,
) -> FraudAnalysisResult:
    """
    Conservative result used when the pipeline cannot finish.

    Neither approves nor blocks: the transaction goes to a reviewer with
    high priority.
    """
    return FraudAnalysisResult(
        transaction_id=transaction.id,
        user_id=transaction.user_id,
        risk_score=FAIL_SAFE_SCORE,
        risk_level=RiskLevel.MEDIUM,
        risk_factors=risk_factors or [],
        recommendation=Recommendation(
            actions=[SecurityAction.REQUIRE_MANUAL_REVIEW],
            confidence=0,
            priority=ReviewPriority.HIGH,
        ),
        requires_manual_review=True,
        should_block=False,
        analyzed_at=analyzed_at or _utc_now(),
        policy_version=policy_version,
        fail_safe=True,
        error=error,
    )


class FraudAnalysisEngine:
    """
    Scores transactions and drives the resulting side effects.

    All collaborators are injected; the engine holds no global state
    besides the metrics registry.
    """

    def __init__(
        self,
        detection_engine: DetectionEngine,
        policy_manager: PolicyManager,
        history: HistoryRepository,
        reputation: ReputationService,
        transactions: TransactionRepository,
        analysis_store: AnalysisStore,
        action_executor: SecurityActionExecutor,
        recommendation_engine: Optional[RecommendationEngine] = None,
        analysis_timeout_seconds: float = 5.0,
        persistence_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.detection_engine = detection_engine
        self.policy_manager = policy_manager
        self.history = history
        self.reputation = reputation
        self.transactions = transactions
        self.analysis_store = analysis_store
        self.action_executor = action_executor
        self.recommendation_engine = recommendation_engine or RecommendationEngine()
        self.analysis_timeout = analysis_timeout_seconds
        self.persistence_retries = max(1, persistence_retries)
        self.retry_backoff = retry_backoff_seconds
        self.clock = clock

    async def process(self, transaction: Transaction) -> ProcessedTransaction:
        """
        Score a transaction, persist the analysis and execute its actions.

        Args:
            transaction: Transaction to analyze

        Returns:
            ProcessedTransaction with the analysis and the action report
        """
        await self._record_transaction(transaction)

        result = await self.score_transaction(transaction)
        persisted = await self._persist(result)
        report = await self.action_executor.execute(transaction, result, persisted=persisted)

        return ProcessedTransaction(result=result, actions=report, persisted=persisted)

    async def score_transaction(self, transaction: Transaction) -> FraudAnalysisResult:
        """
        Produce a FraudAnalysisResult without side effects.

        Never raises for valid input; pipeline failures produce the
        fail-safe result.
        """
        started_at = time.perf_counter()
        policy = self.policy_manager.snapshot()
        now = self.clock()
        partial: list[RiskFactorResult] = []

        try:
            result = await asyncio.wait_for(
                self._analyze(transaction, policy, now, partial),
                timeout=self.analysis_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Analysis timed out after {self.analysis_timeout}s"
            logger.error("Transaction %s: %s", transaction.id, error)
            metrics.fail_safe_total.labels(reason="timeout").inc()
            result = fail_safe_result(transaction, error, policy.version, partial, now)
        except AnalysisPipelineFailure as e:
            logger.error("Analysis pipeline failed for transaction %s: %s", transaction.id, e)
            metrics.fail_safe_total.labels(reason="no_usable_factors").inc()
            result = fail_safe_result(transaction, str(e), policy.version, partial, now)
        except Exception as e:
            logger.exception("Unexpected error analyzing transaction %s", transaction.id)
            metrics.fail_safe_total.labels(reason="error").inc()
            result = fail_safe_result(
                transaction, f"Analysis failed: {e}", policy.version, partial, now
            )

        metrics.analysis_latency.observe((time.perf_counter() - started_at) * 1000)
        metrics.analyses_total.labels(risk_level=result.risk_level.value).inc()
        metrics.risk_score_distribution.observe(result.risk_score)

        if result.risk_level == RiskLevel.CRITICAL:
            logger.warning(
                "Critical risk detected: transaction=%s user=%s score=%d",
                transaction.id, transaction.user_id, result.risk_score,
            )

        return result

    async def _analyze(
        self,
        transaction: Transaction,
        policy: RiskPolicy,
        now: datetime,
        partial: list[RiskFactorResult],
    ) -> FraudAnalysisResult:
        context = AnalysisContext(
            history=self.history,
            reputation=self.reputation,
            policy=policy,
            now=now,
        )

        factors = await self.detection_engine.run_analysis(transaction, context)
        partial.extend(factors)

        score = composite_score(factors, policy.weights)
        level = classify(score, policy.thresholds)
        recommendation = self.recommendation_engine.recommend(
            score, level, factors, policy.thresholds
        )

        return FraudAnalysisResult(
            transaction_id=transaction.id,
            user_id=transaction.user_id,
            risk_score=score,
            risk_level=level,
            risk_factors=factors,
            recommendation=recommendation,
            requires_manual_review=requires_manual_review(level),
            should_block=should_block(score, policy.thresholds),
            analyzed_at=now,
            policy_version=policy.version,
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _record_transaction(self, transaction: Transaction) -> None:
        """Make the transaction known to the repository so actions can target it."""
        try:
            await self.transactions.upsert(transaction)
        except Exception as e:
            metrics.persistence_failures.labels(store="transaction").inc()
            logger.warning("Could not record transaction %s: %s", transaction.id, e)

    async def _persist(self, result: FraudAnalysisResult) -> bool:
        """Save the analysis; False when every attempt failed."""
        try:
            await self._save_with_retry(result)
        except PersistenceFailure as e:
            metrics.persistence_failures.labels(store=e.store).inc()
            logger.error("Analysis %s not persisted: %s", result.analysis_id, e)
            return False
        return True

    async def _save_with_retry(self, result: FraudAnalysisResult) -> None:
        """Save the analysis, retrying with exponential backoff."""
        for attempt in range(1, self.persistence_retries + 1):
            try:
                await self.analysis_store.save(result)
                return
            except Exception as e:
                if attempt == self.persistence_retries:
                    raise PersistenceFailure(
                        "analysis", f"{e} (after {attempt} attempts)"
                    ) from e
                logger.warning(
                    "Persisting analysis %s failed (attempt %d/%d): %s",
                    result.analysis_id, attempt, self.persistence_retries, e,
                )
                await asyncio.sleep(self.retry_backoff * 2 ** (attempt - 1))
