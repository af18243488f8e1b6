"""
API Dependencies

Builds the service graph for the API and exposes it to the endpoints
through FastAPI dependency injection.

Backends are selected by settings:
- STORAGE_BACKEND=memory: in-memory repositories (development, tests)
- STORAGE_BACKEND=postgres: SQLAlchemy async + asyncpg
- REDIS_ENABLED=true: read-through cache for analysis lookups
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import redis.asyncio as redis
from fastapi import Request

from ..actions import SecurityActionExecutor
from ..config import Settings
from ..detection import DetectionEngine, default_analyzers
from ..policy import PolicyManager
from ..reporting import FraudReportGenerator
from ..repositories import (
    AnalysisStore,
    FanOutNotificationSink,
    HistoryRepository,
    InMemoryAnalysisStore,
    InMemoryHistoryRepository,
    InMemoryReviewStore,
    InMemoryTransactionRepository,
    LoggingNotificationSink,
    NotificationSink,
    ReputationService,
    ReviewStore,
    StaticReputationService,
    TransactionRepository,
    WebhookNotificationSink,
)
from ..repositories.cache import CachedAnalysisStore
from ..repositories.postgres import (
    PostgresAlertSink,
    PostgresAnalysisStore,
    PostgresDatabase,
    PostgresHistoryRepository,
    PostgresReviewStore,
    PostgresTransactionRepository,
)
from ..review import ManualReviewWorkflow
from ..scoring import FraudAnalysisEngine

logger = logging.getLogger("risk_engine.api")

PROJECT_ROOT = Path(__file__).parent.parent.parent


@dataclass
class ServiceContainer:
    """Everything the endpoints need, wired once per application."""
    policy_manager: PolicyManager
    transactions: TransactionRepository
    history: HistoryRepository
    reputation: ReputationService
    analysis_store: AnalysisStore
    reviews: ReviewStore
    notifications: NotificationSink
    engine: FraudAnalysisEngine
    action_executor: SecurityActionExecutor
    review_workflow: ManualReviewWorkflow
    report_generator: FraudReportGenerator
    database: Optional[PostgresDatabase] = None
    redis_client: Optional[redis.Redis] = None
    closeables: list = field(default_factory=list)

    async def close(self) -> None:
        """Release connections and drain background notifications."""
        await self.action_executor.drain()
        for resource in self.closeables:
            try:
                await resource.close()
            except Exception as e:
                logger.warning("Closing %s failed: %s", resource.__class__.__name__, e)
        if self.redis_client:
            await self.redis_client.aclose()
        if self.database:
            await self.database.close()


def _resolve(path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def build_services(
    settings: Settings,
    transactions: TransactionRepository,
    history: HistoryRepository,
    reputation: ReputationService,
    analysis_store: AnalysisStore,
    reviews: ReviewStore,
    notifications: NotificationSink,
    policy_manager: Optional[PolicyManager] = None,
    database: Optional[PostgresDatabase] = None,
    redis_client: Optional[redis.Redis] = None,
) -> ServiceContainer:
    """Wire the engine, executor, workflow and report generator around the given stores."""
    policy_manager = policy_manager or PolicyManager(
        policy_path=_resolve(settings.risk_policy_path)
    )

    executor = SecurityActionExecutor(
        transactions=transactions,
        reviews=reviews,
        notifications=notifications,
    )
    engine = FraudAnalysisEngine(
        detection_engine=DetectionEngine(
            default_analyzers(),
            analyzer_timeout_seconds=settings.analyzer_timeout_seconds,
        ),
        policy_manager=policy_manager,
        history=history,
        reputation=reputation,
        transactions=transactions,
        analysis_store=analysis_store,
        action_executor=executor,
        analysis_timeout_seconds=settings.analysis_timeout_seconds,
        persistence_retries=settings.persistence_retries,
        retry_backoff_seconds=settings.persistence_retry_backoff_seconds,
    )
    workflow = ManualReviewWorkflow(
        reviews=reviews,
        transactions=transactions,
        notifications=notifications,
        sla_hours=settings.review_sla_hours,
    )

    return ServiceContainer(
        policy_manager=policy_manager,
        transactions=transactions,
        history=history,
        reputation=reputation,
        analysis_store=analysis_store,
        reviews=reviews,
        notifications=notifications,
        engine=engine,
        action_executor=executor,
        review_workflow=workflow,
        report_generator=FraudReportGenerator(analysis_store),
        database=database,
        redis_client=redis_client,
    )


def build_memory_container(settings: Settings) -> ServiceContainer:
    """In-memory stores; reputation data from the YAML file if present."""
    return build_services(
        settings,
        transactions=InMemoryTransactionRepository(),
        history=InMemoryHistoryRepository(),
        reputation=StaticReputationService.from_yaml(_resolve(settings.reputation_data_path)),
        analysis_store=InMemoryAnalysisStore(),
        reviews=InMemoryReviewStore(),
        notifications=LoggingNotificationSink(),
    )


async def _connect_redis(settings: Settings) -> Optional[redis.Redis]:
    pool = redis.ConnectionPool.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=20,
    )
    client = redis.Redis(connection_pool=pool)
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.warning("Redis connection failed, analysis cache disabled: %s", e)
        await client.aclose()
        return None
    return client


async def build_container(settings: Settings) -> ServiceContainer:
    """
    Build the service graph from settings.

    Postgres connection failures propagate: the service must not start
    against a storage backend it cannot reach.
    """
    if settings.storage_backend == "memory":
        container = build_memory_container(settings)
        logger.info("Using in-memory storage backend")
        return container

    database = PostgresDatabase(settings.postgres_url, echo=settings.app_debug)
    await database.initialize()

    history = PostgresHistoryRepository(database)
    reputation = StaticReputationService.from_yaml(_resolve(settings.reputation_data_path))
    reputation.add_blacklist_entries(await history.load_blacklist())

    analysis_store: AnalysisStore = PostgresAnalysisStore(database)
    redis_client = await _connect_redis(settings) if settings.redis_enabled else None
    if redis_client:
        analysis_store = CachedAnalysisStore(
            analysis_store,
            redis_client,
            prefix=settings.redis_key_prefix,
            ttl_seconds=settings.analysis_cache_ttl_seconds,
        )

    sinks: list[NotificationSink] = [LoggingNotificationSink(), PostgresAlertSink(database)]
    webhook = None
    if settings.alert_webhook_url:
        webhook = WebhookNotificationSink(settings.alert_webhook_url, token=settings.alert_webhook_token)
        sinks.append(webhook)

    container = build_services(
        settings,
        transactions=PostgresTransactionRepository(database),
        history=history,
        reputation=reputation,
        analysis_store=analysis_store,
        reviews=PostgresReviewStore(database),
        notifications=FanOutNotificationSink(sinks),
        database=database,
        redis_client=redis_client,
    )
    if webhook:
        container.closeables.append(webhook)

    logger.info("Using PostgreSQL storage backend (cache: %s)", "redis" if redis_client else "off")
    return container


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's services."""
    return request.app.state.container
