"""
Transaction Risk Engine API

FastAPI application exposing the scoring pipeline, the manual review
queue, fraud reports and the tunable risk settings.

Endpoints:
- POST /analyze-transaction: Score a transaction and execute its actions
- GET /analysis/{transaction_id}: Latest analysis for a transaction
- GET /report: Fraud report over a trailing window
- GET /manual-review-queue: Paged review queue
- POST /manual-review/{entry_id}/decision: Approve or reject
- POST /manual-review/escalate: Escalate reviews past their SLA
- GET/PUT /settings, POST /settings/reload: Risk policy
- GET /health: Health check
- GET /metrics: Prometheus metrics
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import __version__
from ..config import settings
from ..errors import (
    InvalidDecision,
    ReviewAlreadyResolved,
    ReviewNotFound,
    SettingsValidationError,
)
from ..metrics import metrics
from ..policy import RiskPolicy, RiskPolicyUpdate
from ..reporting import DEFAULT_WINDOW
from ..schemas import (
    FraudAnalysisResult,
    FraudReport,
    ManualReviewEntry,
    ReviewDecisionRequest,
    ReviewDecisionResult,
    ReviewPriority,
    ReviewQueuePage,
    ReviewStatus,
    Transaction,
)
from ..utils.logger import get_logger
from .auth import require_admin_token, require_api_token, require_metrics_token
from .dependencies import ServiceContainer, build_container, get_container

logger = logging.getLogger("risk_engine.api")

router = APIRouter()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the service graph from settings unless one was injected into
    create_app(), and releases its connections on shutdown.
    """
    get_logger("risk_engine", settings.app_log_level)

    owned = app.state.container is None
    if owned:
        app.state.container = await build_container(settings)

    logger.info(
        "Risk engine started (env=%s, policy=%s)",
        settings.app_env, app.state.container.policy_manager.version,
    )

    yield

    if owned:
        await app.state.container.close()
    else:
        await app.state.container.action_executor.drain()


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Transaction Risk Engine",
        description="Real-time transaction risk scoring and manual review",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


# =============================================================================
# HEALTH / METRICS
# =============================================================================

@router.get("/health")
async def health_check(services: ServiceContainer = Depends(get_container)):
    """
    Health check endpoint.

    Returns service health status and component availability.
    """
    health = {
        "status": "healthy",
        "components": {
            "policy": True,
            "storage": True,
        },
        "policy_version": services.policy_manager.version,
    }

    if services.database:
        try:
            await services.database.health_check()
        except Exception as e:
            logger.warning("Postgres health check failed: %s", e)
            health["components"]["storage"] = False

    if services.redis_client:
        try:
            await services.redis_client.ping()
            health["components"]["redis"] = True
        except Exception as e:
            logger.warning("Redis health check failed: %s", e)
            health["components"]["redis"] = False

    for component, healthy in health["components"].items():
        metrics.component_health.labels(component=component).set(1 if healthy else 0)

    # Overall status
    if not all(health["components"].values()):
        health["status"] = "degraded"

    return health


@router.get("/metrics")
def metrics_endpoint(_: None = Depends(require_metrics_token)):
    """Expose Prometheus metrics with optional token auth."""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# ANALYSIS
# =============================================================================

@router.post("/analyze-transaction", response_model=FraudAnalysisResult)
async def analyze_transaction(
    transaction: Transaction,
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """
    Score a transaction.

    Runs the seven analyzers, persists the analysis and executes the
    recommended actions. Pipeline failures yield a fail-safe result
    (score 50, manual review) instead of an error.
    """
    metrics.requests_total.labels(endpoint="/analyze-transaction").inc()

    processed = await services.engine.process(transaction)

    if processed.actions.failed:
        logger.warning(
            "Transaction %s: actions failed: %s",
            transaction.id, ", ".join(a.value for a in processed.actions.failed),
        )
    return processed.result


@router.get("/analysis/{transaction_id}", response_model=FraudAnalysisResult)
async def get_analysis(
    transaction_id: str,
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """Latest analysis for a transaction."""
    metrics.requests_total.labels(endpoint="/analysis").inc()

    result = await services.analysis_store.latest_for_transaction(transaction_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"No analysis for transaction '{transaction_id}'")
    return result


@router.get("/report", response_model=FraudReport)
async def get_report(
    window: str = DEFAULT_WINDOW,
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """Fraud report over a trailing window such as 7d, 30d or 90d."""
    metrics.requests_total.labels(endpoint="/report").inc()

    try:
        return await services.report_generator.generate(window)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# MANUAL REVIEW
# =============================================================================

@router.get("/manual-review-queue", response_model=ReviewQueuePage)
async def get_review_queue(
    status: Optional[ReviewStatus] = ReviewStatus.PENDING,
    priority: Optional[ReviewPriority] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """Review entries, newest first, with their transactions."""
    metrics.requests_total.labels(endpoint="/manual-review-queue").inc()

    return await services.review_workflow.list_queue(
        status=status, priority=priority, page=page, limit=limit
    )


@router.post("/manual-review/escalate", response_model=list[ManualReviewEntry])
async def escalate_reviews(
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_admin_token),
):
    """Escalate pending reviews that exceeded their SLA."""
    metrics.requests_total.labels(endpoint="/manual-review/escalate").inc()
    return await services.review_workflow.escalate_stale()


@router.post("/manual-review/{entry_id}/decision", response_model=ReviewDecisionResult)
async def decide_review(
    entry_id: str,
    request: ReviewDecisionRequest,
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """
    Approve or reject a pending review.

    400 for a decision other than approve/reject, 404 for an unknown
    entry, 409 when the entry was already resolved.
    """
    metrics.requests_total.labels(endpoint="/manual-review/decision").inc()

    try:
        return await services.review_workflow.decide(
            entry_id,
            decision=request.decision,
            reviewer_id=request.reviewer_id,
            notes=request.notes,
        )
    except InvalidDecision as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReviewNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReviewAlreadyResolved as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# RISK SETTINGS
# =============================================================================

@router.get("/settings", response_model=RiskPolicy)
async def get_risk_settings(
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_api_token),
):
    """Active risk policy: thresholds, weights and detection patterns."""
    return services.policy_manager.snapshot()


@router.put("/settings", response_model=RiskPolicy)
async def update_risk_settings(
    update: RiskPolicyUpdate,
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_admin_token),
):
    """
    Update the risk policy.

    Thresholds must be strictly increasing and at least one weight must
    be positive; the PATCH version is bumped on success.
    """
    try:
        policy = await services.policy_manager.update(update)
    except SettingsValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    metrics.policy_updates.labels(kind="update").inc()
    return policy


@router.post("/settings/reload")
async def reload_risk_settings(
    services: ServiceContainer = Depends(get_container),
    _: None = Depends(require_admin_token),
):
    """Reload the risk policy from its YAML file."""
    manager = services.policy_manager
    if manager.reload_policy():
        metrics.policy_updates.labels(kind="reload").inc()
        return {
            "status": "success",
            "version": manager.version,
            "hash": manager.policy_hash,
        }
    else:
        raise HTTPException(status_code=500, detail="Policy reload failed")


app = create_app()
