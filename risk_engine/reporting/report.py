"""
Fraud Report Generator

Read-only aggregation of stored analyses over a trailing window:
risk level distribution, blocked and reviewed counts, average score and
the most frequent contributing risk factors.
"""

import logging
import re
from collections import defaultdict
from datetime import datetime, timedelta, UTC
from typing import Callable

from ..repositories import AnalysisStore
from ..schemas import FactorFrequency, FraudReport, RiskFactor, RiskLevel, clamp_score

logger = logging.getLogger("risk_engine.reporting")

DEFAULT_WINDOW = "30d"
MAX_WINDOW_DAYS = 365
TOP_FACTORS = 5

_WINDOW_PATTERN = re.compile(r'^(\d+)d$')


def _utc_now() -> datetime:
    return datetime.now(UTC)


def parse_window(window: str) -> timedelta:
    """
    Parse a report window such as "7d", "30d" or "90d".

    Raises:
        ValueError: not N followed by 'd' with 1 <= N <= 365
    """
    match = _WINDOW_PATTERN.match((window or "").strip().lower())
    if not match:
        raise ValueError(f"Invalid report window '{window}'. Use e.g. 7d, 30d or 90d")

    days = int(match.group(1))
    if not 1 <= days <= MAX_WINDOW_DAYS:
        raise ValueError(f"Report window must be between 1d and {MAX_WINDOW_DAYS}d")
    return timedelta(days=days)


class FraudReportGenerator:
    """Builds FraudReports from the analysis store."""

    def __init__(
        self,
        analysis_store: AnalysisStore,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.analysis_store = analysis_store
        self.clock = clock

    async def generate(self, window: str = DEFAULT_WINDOW) -> FraudReport:
        """
        Aggregate all analyses with analyzed_at >= now - window.

        A factor counts as occurring in an analysis when it had usable
        data and a score above zero.
        """
        span = parse_window(window)
        now = self.clock()
        window_start = now - span

        analyses = await self.analysis_store.list_since(window_start)

        distribution = {level: 0 for level in RiskLevel}
        blocked = 0
        reviews = 0
        fail_safe = 0
        score_total = 0
        factor_scores: dict[RiskFactor, list[int]] = defaultdict(list)

        for analysis in analyses:
            distribution[analysis.risk_level] += 1
            score_total += analysis.risk_score
            if analysis.should_block:
                blocked += 1
            if analysis.requires_manual_review:
                reviews += 1
            if analysis.fail_safe:
                fail_safe += 1

            for factor in analysis.risk_factors:
                if factor.usable and factor.score > 0:
                    factor_scores[factor.factor].append(factor.score)

        common = sorted(
            (
                FactorFrequency(
                    factor=factor,
                    frequency=len(scores),
                    avg_score=clamp_score(sum(scores) / len(scores)),
                )
                for factor, scores in factor_scores.items()
            ),
            key=lambda f: (-f.frequency, f.factor.value),
        )[:TOP_FACTORS]

        total = len(analyses)
        logger.info("Generated %s fraud report over %d analyses", window, total)

        return FraudReport(
            timeframe=window.strip().lower(),
            window_start=window_start,
            generated_at=now,
            total_analyses=total,
            risk_distribution=distribution,
            blocked_transactions=blocked,
            manual_reviews=reviews,
            fail_safe_analyses=fail_safe,
            avg_risk_score=round(score_total / total, 2) if total else 0.0,
            common_risk_factors=common,
        )
