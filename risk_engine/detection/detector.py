"""
Detection Engine

Orchestrates the seven risk-factor analyzers and collects their
results into a list in canonical factor order. Each analyzer runs
independently and produces a sub-score with the signals that fired.

Design goals:
- Run analyzers concurrently, each bounded by its own timeout
- Never let one failing analyzer fail the analysis
- Provide explainability (signal codes and raw measurements per factor)
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Optional, TypeVar

from ..errors import AnalyzerDataUnavailable
from ..metrics import metrics
from ..policy import RiskPolicy
from ..repositories import HistoryRepository, ReputationService
from ..schemas import FACTOR_ORDER, RiskFactor, RiskFactorResult, Transaction

logger = logging.getLogger("risk_engine.detection")

T = TypeVar("T")


@dataclass
class AnalysisContext:
    """
    Everything an analyzer may read besides the transaction.

    The policy is the snapshot taken when the analysis started and `now`
    is the reference time for every window computation.
    """
    history: HistoryRepository
    reputation: ReputationService
    policy: RiskPolicy
    now: datetime


@dataclass
class FactorScore:
    """
    Accumulates score increments and the signals that caused them.

    Converted into an immutable RiskFactorResult once the analyzer is done.
    """
    score: int = 0
    signals: list[str] = field(default_factory=list)

    def add(self, code: str, points: int) -> None:
        """Add points for a fired condition."""
        self.score += points
        self.signals.append(code)


class BaseAnalyzer(ABC):
    """
    Base class for all risk-factor analyzers.

    Each analyzer focuses on one risk dimension:
    - VelocityAnalyzer: transaction frequency and volume in the last hour
    - GeographicAnalyzer: country, impossible travel, anonymizing networks
    - BehavioralAnalyzer: session, user agent, amount spikes, odd hours
    - PaymentAnalyzer: BIN ranges and reputation, amount, instrument
    - UserHistoryAnalyzer: account age, verification, flags, fraud reports
    - DeviceAnalyzer: shared or flagged devices, malicious IPs
    - BookingPatternAnalyzer: booking timing, value and conflicts

    Any learned model can be plugged in by subclassing with the same
    factor and signature.
    """

    factor: RiskFactor

    @abstractmethod
    async def analyze(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        """
        Run analysis logic.

        Args:
            transaction: Transaction under analysis
            context: Repositories, policy snapshot and reference time

        Returns:
            RiskFactorResult with score, signals and measurements

        Raises:
            AnalyzerDataUnavailable: required data could not be obtained
        """
        pass

    async def _fetch(self, awaitable: Awaitable[T], what: str) -> T:
        """Await a collaborator call, reporting failures as missing data."""
        try:
            return await awaitable
        except AnalyzerDataUnavailable:
            raise
        except Exception as e:
            raise AnalyzerDataUnavailable(self.factor.value, f"{what} failed: {e}") from e


class DetectionEngine:
    """
    Runs all analyzers concurrently.

    Each analyzer is wrapped so that a timeout, a data-unavailable error
    or any other exception yields a neutral result (score 0,
    data_unavailable=True). Cancellation of the caller propagates into
    the analyzers.
    """

    def __init__(
        self,
        analyzers: list[BaseAnalyzer],
        analyzer_timeout_seconds: float = 2.0,
    ):
        """
        Initialize detection engine.

        Args:
            analyzers: List of analyzer instances (one per factor)
            analyzer_timeout_seconds: Per-analyzer time limit
        """
        self.analyzers = analyzers
        self.analyzer_timeout = analyzer_timeout_seconds

    async def run_analysis(
        self,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> list[RiskFactorResult]:
        """
        Run all analyzers and collect results.

        Returns:
            Results in canonical factor order
        """
        results = await asyncio.gather(*(
            self._run_one(analyzer, transaction, context)
            for analyzer in self.analyzers
        ))

        order = {factor: index for index, factor in enumerate(FACTOR_ORDER)}
        return sorted(results, key=lambda r: order[r.factor])

    async def _run_one(
        self,
        analyzer: BaseAnalyzer,
        transaction: Transaction,
        context: AnalysisContext,
    ) -> RiskFactorResult:
        factor = analyzer.factor
        started_at = time.perf_counter()
        reason: Optional[str] = None

        try:
            return await asyncio.wait_for(
                analyzer.analyze(transaction, context),
                timeout=self.analyzer_timeout,
            )
        except asyncio.TimeoutError:
            reason = "timeout"
            error = f"{factor.value} analyzer timed out after {self.analyzer_timeout}s"
        except AnalyzerDataUnavailable as e:
            reason = "data_unavailable"
            error = str(e)
        except Exception as e:
            reason = "error"
            error = f"{factor.value} analyzer failed: {e}"
        finally:
            metrics.analyzer_latency.labels(factor=factor.value).observe(
                (time.perf_counter() - started_at) * 1000
            )

        metrics.analyzer_failures.labels(factor=factor.value, reason=reason).inc()
        logger.warning(
            "Analyzer %s unavailable for transaction %s: %s",
            factor.value, transaction.id, error,
        )
        return RiskFactorResult.unavailable(factor, error)
