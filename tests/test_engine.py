"""
Fraud Analysis Engine Tests

End-to-end tests of the scoring pipeline: analyzers -> composite ->
classification -> recommendation -> persistence -> actions, including
the fail-safe paths.
"""

import asyncio

import pytest
from prometheus_client import REGISTRY

from risk_engine.detection import BaseAnalyzer, DetectionEngine
from risk_engine.policy import RiskPolicyUpdate, RiskThresholds
from risk_engine.repositories import InMemoryAnalysisStore
from risk_engine.schemas import (
    FACTOR_ORDER,
    ReviewPriority,
    ReviewStatus,
    RiskFactor,
    RiskFactorResult,
    RiskLevel,
    SecurityAction,
    TransactionStatus,
)
from risk_engine.schemas.factors import DETAILS_BY_FACTOR
from risk_engine.scoring import FAIL_SAFE_SCORE, FraudAnalysisEngine, RecommendationEngine

from conftest import FIXED_NOW, fixed_clock


# =============================================================================
# Mock collaborators
# =============================================================================

class StaticAnalyzer(BaseAnalyzer):
    """Mock analyzer returning a fixed score."""

    def __init__(self, factor: RiskFactor, score: int):
        self.factor = factor
        self.score = score

    async def analyze(self, transaction, context):
        return RiskFactorResult(
            factor=self.factor,
            score=self.score,
            details=DETAILS_BY_FACTOR[self.factor](),
        )


class SlowAnalyzer(StaticAnalyzer):
    """Mock analyzer slower than the whole-analysis timeout."""

    async def analyze(self, transaction, context):
        await asyncio.sleep(5)
        return await super().analyze(transaction, context)


class BrokenAnalyzer(StaticAnalyzer):
    """Mock analyzer that always fails."""

    async def analyze(self, transaction, context):
        raise RuntimeError("feature store offline")


class PolicyChangingAnalyzer(StaticAnalyzer):
    """Mock analyzer that tightens the policy while the analysis is running."""

    def __init__(self, factor, score, policy_manager):
        super().__init__(factor, score)
        self.policy_manager = policy_manager

    async def analyze(self, transaction, context):
        await self.policy_manager.update(RiskPolicyUpdate(
            thresholds=RiskThresholds(low=5, medium=10, high=15, critical=20),
        ))
        return await super().analyze(transaction, context)


class ExplodingRecommendationEngine(RecommendationEngine):
    """Recommendation engine with a bug."""

    def recommend(self, score, level, results, thresholds):
        raise RuntimeError("boom")


class FlakyAnalysisStore(InMemoryAnalysisStore):
    """Analysis store that fails the first `failures` saves."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def save(self, result):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("database unavailable")
        await super().save(result)


@pytest.fixture
def build_engine(history, reputation, transactions, analysis_store, executor, policy_manager):
    """Factory for engines with custom analyzers, timeouts or stores."""

    def _build(
        analyzers: list[BaseAnalyzer],
        analyzer_timeout: float = 1.0,
        analysis_timeout: float = 2.0,
        store=None,
        recommendation_engine=None,
    ) -> FraudAnalysisEngine:
        return FraudAnalysisEngine(
            detection_engine=DetectionEngine(analyzers, analyzer_timeout_seconds=analyzer_timeout),
            policy_manager=policy_manager,
            history=history,
            reputation=reputation,
            transactions=transactions,
            analysis_store=store or analysis_store,
            action_executor=executor,
            recommendation_engine=recommendation_engine,
            analysis_timeout_seconds=analysis_timeout,
            persistence_retries=3,
            retry_backoff_seconds=0,
            clock=fixed_clock,
        )

    return _build


def static(score: int) -> list[BaseAnalyzer]:
    return [StaticAnalyzer(factor, score) for factor in FACTOR_ORDER]


# =============================================================================
# Rule-based pipeline
# =============================================================================

class TestCleanTransaction:
    """A low-risk transaction proceeds without side effects."""

    @pytest.mark.asyncio
    async def test_scores_low(self, engine, clean_transaction):
        """All factors 0: LOW, proceed normally."""
        result = await engine.score_transaction(clean_transaction)

        assert result.risk_score == 0
        assert result.risk_level == RiskLevel.LOW
        assert [f.factor for f in result.risk_factors] == FACTOR_ORDER
        assert result.recommendation.actions == [SecurityAction.PROCEED_NORMALLY]
        assert result.recommendation.confidence == 60
        assert result.recommendation.priority == ReviewPriority.LOW
        assert result.requires_manual_review is False
        assert result.should_block is False
        assert result.fail_safe is False
        assert result.policy_version == "1.0.0"
        assert result.analyzed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_process_persists_and_records_advisory(
        self, engine, clean_transaction, transactions, analysis_store, reviews
    ):
        """The analysis is stored, the transaction stays pending, no review entry."""
        processed = await engine.process(clean_transaction)

        assert processed.persisted is True
        assert await analysis_store.latest_for_transaction("txn_clean") == processed.result
        assert (await transactions.get("txn_clean")).status == TransactionStatus.PENDING
        assert transactions.advisories["txn_clean"] == ["PROCEED_NORMALLY"]
        assert processed.actions.advisory == [SecurityAction.PROCEED_NORMALLY]
        assert reviews.entries == {}


class TestFraudScenario:
    """The full rule set against a realistic fraud attempt."""

    @pytest.mark.asyncio
    async def test_factor_scores(self, engine, fraud_history, fraud_transaction):
        """Each analyzer fires as expected."""
        result = await engine.score_transaction(fraud_transaction)

        scores = {f.factor: f.score for f in result.risk_factors}
        assert scores == {
            RiskFactor.VELOCITY: 75,
            RiskFactor.GEOGRAPHIC: 85,
            RiskFactor.BEHAVIORAL: 75,
            RiskFactor.PAYMENT: 100,
            RiskFactor.USER_HISTORY: 100,
            RiskFactor.DEVICE: 100,
            RiskFactor.BOOKING_PATTERN: 20,
        }

    @pytest.mark.asyncio
    async def test_classified_high_not_blocked(self, engine, fraud_history, fraud_transaction):
        """Composite 85 is HIGH: reviewed with high priority, not blocked."""
        result = await engine.score_transaction(fraud_transaction)

        assert result.risk_score == 85
        assert result.risk_level == RiskLevel.HIGH
        assert result.should_block is False
        assert result.requires_manual_review is True
        assert result.recommendation.priority == ReviewPriority.HIGH
        assert result.recommendation.confidence == 90
        assert result.recommendation.actions == [
            SecurityAction.REQUIRE_MANUAL_REVIEW,
            SecurityAction.REQUEST_ADDITIONAL_VERIFICATION,
            SecurityAction.DELAY_TRANSACTION_PROCESSING,
            SecurityAction.IMPLEMENT_RATE_LIMITING,
            SecurityAction.VERIFY_PAYMENT_METHOD,
            SecurityAction.VERIFY_USER_IDENTITY,
        ]

    @pytest.mark.asyncio
    async def test_process_queues_review(self, engine, fraud_history, fraud_transaction, reviews, transactions):
        """One pending review entry referencing the stored analysis."""
        processed = await engine.process(fraud_transaction)

        assert len(reviews.entries) == 1
        entry = reviews.entries[processed.actions.review_entry_id]
        assert entry.transaction_id == "txn_fraud"
        assert entry.analysis_id == processed.result.analysis_id
        assert entry.risk_score == 85
        assert entry.priority == ReviewPriority.HIGH
        assert entry.created_at == FIXED_NOW
        assert (await transactions.get("txn_fraud")).status == TransactionStatus.PENDING
        assert transactions.advisories["txn_fraud"] == [
            "REQUEST_ADDITIONAL_VERIFICATION",
            "DELAY_TRANSACTION_PROCESSING",
            "IMPLEMENT_RATE_LIMITING",
            "VERIFY_PAYMENT_METHOD",
            "VERIFY_USER_IDENTITY",
        ]


class TestCriticalPath:
    """A critical analysis blocks, flags, notifies and queues a review."""

    @pytest.mark.asyncio
    async def test_critical_actions(
        self, build_engine, executor, clean_transaction, transactions, reviews, notifications
    ):
        """Every enforcing action is applied."""
        engine = build_engine(static(95))

        processed = await engine.process(clean_transaction)
        await executor.drain()

        result = processed.result
        assert result.risk_score == 95
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.should_block is True
        assert result.recommendation.priority == ReviewPriority.CRITICAL

        assert processed.actions.applied == [
            SecurityAction.BLOCK_TRANSACTION,
            SecurityAction.FLAG_USER_ACCOUNT,
            SecurityAction.NOTIFY_SECURITY_TEAM,
            SecurityAction.REQUIRE_MANUAL_REVIEW,
        ]
        assert (await transactions.get("txn_clean")).status == TransactionStatus.BLOCKED_FRAUD
        assert transactions.user_flags["user_1"] == ["fraud_risk"]

        assert len(notifications.alerts) == 1
        alert = notifications.alerts[0]
        assert alert.alert_type == "HIGH_RISK_TRANSACTION"
        assert alert.severity == RiskLevel.CRITICAL
        assert alert.data["analysis_id"] == result.analysis_id

        entry = reviews.entries[processed.actions.review_entry_id]
        assert entry.priority == ReviewPriority.CRITICAL

    @pytest.mark.asyncio
    async def test_approving_blocked_review_releases_transaction(
        self, build_engine, executor, workflow, clean_transaction, transactions
    ):
        """A reviewer can release a transaction the engine blocked."""
        engine = build_engine(static(95))
        processed = await engine.process(clean_transaction)
        await executor.drain()
        assert (await transactions.get("txn_clean")).status == TransactionStatus.BLOCKED_FRAUD

        result = await workflow.decide(processed.actions.review_entry_id, "approve", "analyst_1")

        assert result.entry.status == ReviewStatus.APPROVED
        assert result.transaction_status == TransactionStatus.APPROVED
        assert (await transactions.get("txn_clean")).status == TransactionStatus.APPROVED

    @pytest.mark.asyncio
    async def test_reanalysis_keeps_latest(self, build_engine, clean_transaction, analysis_store):
        """Analyzing twice stores two results; lookups return the latest."""
        engine = build_engine(static(10))

        await engine.process(clean_transaction)
        engine.clock = lambda: FIXED_NOW.replace(hour=15)
        second = await engine.process(clean_transaction)

        assert len(analysis_store.results["txn_clean"]) == 2
        assert await analysis_store.latest_for_transaction("txn_clean") == second.result


# =============================================================================
# Fail-safe
# =============================================================================

class TestFailSafe:
    """Pipeline failures yield the conservative fail-safe result."""

    @pytest.mark.asyncio
    async def test_whole_analysis_timeout(self, build_engine, clean_transaction):
        """Exceeding the outer timeout returns score 50 for manual review."""
        engine = build_engine(
            [SlowAnalyzer(f, 0) for f in FACTOR_ORDER],
            analyzer_timeout=5.0,
            analysis_timeout=0.05,
        )

        result = await engine.score_transaction(clean_transaction)

        assert result.fail_safe is True
        assert result.risk_score == FAIL_SAFE_SCORE
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.recommendation.actions == [SecurityAction.REQUIRE_MANUAL_REVIEW]
        assert result.recommendation.confidence == 0
        assert result.recommendation.priority == ReviewPriority.HIGH
        assert result.requires_manual_review is True
        assert result.should_block is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_no_usable_factors(self, build_engine, clean_transaction):
        """Every analyzer failing is a fail-safe, not a clean score of 0."""
        engine = build_engine([BrokenAnalyzer(f, 0) for f in FACTOR_ORDER])

        result = await engine.score_transaction(clean_transaction)

        assert result.fail_safe is True
        assert result.risk_score == 50
        assert len(result.risk_factors) == 7
        assert all(f.data_unavailable for f in result.risk_factors)
        assert result.error == "No risk factor produced usable data"

    @pytest.mark.asyncio
    async def test_partial_failure_is_not_fail_safe(self, build_engine, clean_transaction):
        """Some analyzers failing just drops them from the composite."""
        analyzers = static(80)
        analyzers[0] = BrokenAnalyzer(RiskFactor.VELOCITY, 0)
        engine = build_engine(analyzers)

        result = await engine.score_transaction(clean_transaction)

        assert result.fail_safe is False
        assert result.risk_score == 80
        assert result.factor(RiskFactor.VELOCITY).data_unavailable

    @pytest.mark.asyncio
    async def test_unexpected_error(self, build_engine, clean_transaction):
        """A bug after scoring still produces a fail-safe result."""
        engine = build_engine(static(10), recommendation_engine=ExplodingRecommendationEngine())

        result = await engine.score_transaction(clean_transaction)

        assert result.fail_safe is True
        assert result.error == "Analysis failed: boom"
        assert len(result.risk_factors) == 7

    @pytest.mark.asyncio
    async def test_fail_safe_queues_high_priority_review(self, build_engine, clean_transaction, reviews):
        """The fail-safe result is stored and sent to a reviewer."""
        engine = build_engine([BrokenAnalyzer(f, 0) for f in FACTOR_ORDER])

        processed = await engine.process(clean_transaction)

        entry = reviews.entries[processed.actions.review_entry_id]
        assert entry.priority == ReviewPriority.HIGH
        assert entry.risk_score == 50


# =============================================================================
# Policy snapshot
# =============================================================================

class TestPolicySnapshot:
    """An analysis uses the policy active when it started."""

    @pytest.mark.asyncio
    async def test_update_mid_analysis_does_not_apply(self, build_engine, policy_manager, clean_transaction):
        """Thresholds changed by a concurrent update do not affect the running analysis."""
        analyzers = static(30)
        analyzers[0] = PolicyChangingAnalyzer(RiskFactor.VELOCITY, 30, policy_manager)
        engine = build_engine(analyzers)

        result = await engine.score_transaction(clean_transaction)

        assert result.policy_version == "1.0.0"
        assert result.risk_level == RiskLevel.MEDIUM
        assert policy_manager.version == "1.0.1"

        next_result = await engine.score_transaction(clean_transaction)
        assert next_result.policy_version == "1.0.1"
        assert next_result.risk_level == RiskLevel.CRITICAL


# =============================================================================
# Persistence
# =============================================================================

class TestPersistence:
    """Analysis persistence retries and its effect on review entries."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, build_engine, clean_transaction):
        """Two failures then success: persisted on the third attempt."""
        store = FlakyAnalysisStore(failures=2)
        engine = build_engine(static(10), store=store)

        processed = await engine.process(clean_transaction)

        assert processed.persisted is True
        assert store.attempts == 3
        assert len(store.results["txn_clean"]) == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_returns_result(self, build_engine, clean_transaction, reviews):
        """The caller still gets the result; no orphan review entry is created."""
        store = FlakyAnalysisStore(failures=10)
        engine = build_engine(static(70), store=store)

        processed = await engine.process(clean_transaction)

        assert processed.persisted is False
        assert store.attempts == 3
        assert processed.result.risk_level == RiskLevel.HIGH
        assert reviews.entries == {}
        assert processed.actions.review_entry_id is None
        assert SecurityAction.REQUIRE_MANUAL_REVIEW in processed.actions.skipped

    @pytest.mark.asyncio
    async def test_permanent_failure_is_reported_once(self, build_engine, clean_transaction, caplog):
        """Exhausted retries count one analysis-store failure and log it."""
        engine = build_engine(static(10), store=FlakyAnalysisStore(failures=10))
        before = REGISTRY.get_sample_value(
            "risk_persistence_failures_total", {"store": "analysis"}
        ) or 0.0

        with caplog.at_level("ERROR", logger="risk_engine"):
            await engine.process(clean_transaction)

        assert REGISTRY.get_sample_value(
            "risk_persistence_failures_total", {"store": "analysis"}
        ) == before + 1
        assert "analysis store write failed" in caplog.text
        assert "after 3 attempts" in caplog.text
