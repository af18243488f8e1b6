"""
Prometheus Metrics

Defines all metrics exposed by the risk engine.
Metrics are critical for:
- Latency monitoring (analysis and per-analyzer)
- Business metrics (risk level mix, blocks, reviews)
- Operational health (analyzer failures, fail-safe results, persistence errors)
"""

import logging

from prometheus_client import Counter, Histogram, Gauge

logger = logging.getLogger("risk_engine.metrics")


class RiskMetrics:
    """
    Container for all Prometheus metrics.

    Organized by category:
    - Request metrics
    - Latency metrics
    - Analysis metrics
    - Action and review metrics
    - System metrics
    """

    def __init__(self):
        """Initialize all metrics."""

        # =====================================================================
        # Request Metrics
        # =====================================================================
        self.requests_total = Counter(
            "risk_requests_total",
            "Total number of API requests",
            labelnames=["endpoint"],
        )

        self.errors_total = Counter(
            "risk_errors_total",
            "Total number of errors",
            labelnames=["error_type"],
        )

        # =====================================================================
        # Latency Metrics
        # =====================================================================
        # Whole pipeline (bounded by analysis_timeout_seconds)
        self.analysis_latency = Histogram(
            "risk_analysis_latency_ms",
            "End-to-end analysis latency in milliseconds",
            buckets=[10, 25, 50, 100, 250, 500, 1000, 2000, 5000],
        )

        self.analyzer_latency = Histogram(
            "risk_analyzer_latency_ms",
            "Single analyzer latency in milliseconds",
            labelnames=["factor"],
            buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2000],
        )

        # =====================================================================
        # Analysis Metrics
        # =====================================================================
        self.analyses_total = Counter(
            "risk_analyses_total",
            "Total number of analyses by risk level",
            labelnames=["risk_level"],
        )

        self.fail_safe_total = Counter(
            "risk_fail_safe_total",
            "Analyses that fell back to the fail-safe result",
            labelnames=["reason"],
        )

        self.analyzer_failures = Counter(
            "risk_analyzer_failures_total",
            "Analyzer results replaced by a data-unavailable result",
            labelnames=["factor", "reason"],
        )

        self.risk_score_distribution = Histogram(
            "risk_score",
            "Distribution of composite risk scores",
            buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
        )

        # =====================================================================
        # Action / Review Metrics
        # =====================================================================
        self.action_outcomes = Counter(
            "risk_action_outcomes_total",
            "Security action outcomes",
            labelnames=["action", "result"],
        )

        self.review_entries_created = Counter(
            "risk_review_entries_created_total",
            "Manual review entries created",
            labelnames=["priority"],
        )

        self.review_decisions = Counter(
            "risk_review_decisions_total",
            "Manual review decisions",
            labelnames=["decision"],
        )

        self.review_escalations = Counter(
            "risk_review_escalations_total",
            "Stale review entries escalated",
            labelnames=["priority"],
        )

        self.notifications_failed = Counter(
            "risk_notifications_failed_total",
            "Operator notifications that could not be delivered",
        )

        # =====================================================================
        # System Metrics
        # =====================================================================
        self.persistence_failures = Counter(
            "risk_persistence_failures_total",
            "Store writes that failed",
            labelnames=["store"],
        )

        self.cache_hits = Counter(
            "risk_cache_hits_total",
            "Number of analysis cache hits",
        )

        self.cache_misses = Counter(
            "risk_cache_misses_total",
            "Number of analysis cache misses",
        )

        self.redis_latency = Histogram(
            "risk_redis_latency_ms",
            "Redis operation latency in milliseconds",
            buckets=[1, 2, 5, 10, 20, 50],
        )

        self.postgres_latency = Histogram(
            "risk_postgres_latency_ms",
            "PostgreSQL operation latency in milliseconds",
            buckets=[5, 10, 25, 50, 100, 250],
        )

        # Component health
        self.component_health = Gauge(
            "risk_component_health",
            "Component health status (1=healthy, 0=unhealthy)",
            labelnames=["component"],
        )

        self.policy_updates = Counter(
            "risk_policy_updates_total",
            "Risk policy updates and reloads",
            labelnames=["kind"],
        )


# Global metrics instance
metrics = RiskMetrics()
