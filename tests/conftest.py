"""
Pytest Configuration and Fixtures - Transaction Risk Engine

Provides in-memory repositories seeded per test, a fixed reference
time and sample transactions shared across the test suite.
"""

from datetime import date, datetime, timedelta, UTC
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from risk_engine.actions import SecurityActionExecutor
from risk_engine.api.dependencies import ServiceContainer, build_services
from risk_engine.api.main import create_app, lifespan
from risk_engine.config import settings
from risk_engine.detection import AnalysisContext, DetectionEngine, default_analyzers
from risk_engine.policy import DEFAULT_POLICY, PolicyManager
from risk_engine.repositories import (
    InMemoryAnalysisStore,
    InMemoryHistoryRepository,
    InMemoryNotificationSink,
    InMemoryReviewStore,
    InMemoryTransactionRepository,
    StaticReputationService,
)
from risk_engine.review import ManualReviewWorkflow
from risk_engine.schemas import (
    BlacklistEntry,
    BlacklistKind,
    BookingData,
    GeoLocation,
    PaymentMethod,
    Severity,
    Transaction,
    TransactionRecord,
    TransactionStatus,
    UserRiskProfile,
)
from risk_engine.scoring import FraudAnalysisEngine

# Tuesday afternoon in UTC; 10:00 in New York (EDT)
FIXED_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=UTC)

CLEAN_IP = "198.51.100.7"
BAD_IP = "192.0.2.10"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests (no infrastructure)")
    config.addinivalue_line("markers", "integration: in-process API tests")


def fixed_clock() -> datetime:
    return FIXED_NOW


# =============================================================================
# Repositories
# =============================================================================

@pytest.fixture
def history() -> InMemoryHistoryRepository:
    """History with one established, verified customer (user_1)."""
    repo = InMemoryHistoryRepository()
    repo.add_profile(UserRiskProfile(
        user_id="user_1",
        account_created_at=FIXED_NOW - timedelta(days=400),
        verification_level=3,
        avg_transaction_amount=200.0,
        max_transaction_amount=900.0,
        total_transactions=12,
    ))
    return repo


@pytest.fixture
def reputation() -> StaticReputationService:
    """New York broadband range plus a blacklisted North Korean Tor exit."""
    return StaticReputationService(
        blacklist=[
            BlacklistEntry(kind=BlacklistKind.IP, value=BAD_IP, severity=Severity.CRITICAL),
            BlacklistEntry(kind=BlacklistKind.CARD_BIN, value="123456", severity=Severity.HIGH),
        ],
        geolocations={
            "198.51.100.0/24": GeoLocation(
                country="US", city="New York",
                latitude=40.7128, longitude=-74.0060,
                org="Example Broadband",
            ),
            BAD_IP: GeoLocation(
                country="KP", city="Pyongyang",
                latitude=39.0392, longitude=125.7625,
                org="Tor exit hosting",
            ),
        },
    )


@pytest.fixture
def transactions() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def analysis_store() -> InMemoryAnalysisStore:
    return InMemoryAnalysisStore()


@pytest.fixture
def reviews() -> InMemoryReviewStore:
    return InMemoryReviewStore()


@pytest.fixture
def notifications() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def policy_manager() -> PolicyManager:
    """Policy manager without a backing file."""
    return PolicyManager()


@pytest.fixture
def context(history, reputation) -> AnalysisContext:
    return AnalysisContext(
        history=history,
        reputation=reputation,
        policy=DEFAULT_POLICY,
        now=FIXED_NOW,
    )


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def executor(transactions, reviews, notifications) -> SecurityActionExecutor:
    return SecurityActionExecutor(
        transactions=transactions,
        reviews=reviews,
        notifications=notifications,
        clock=fixed_clock,
    )


@pytest.fixture
def engine(history, reputation, transactions, analysis_store, executor, policy_manager) -> FraudAnalysisEngine:
    return FraudAnalysisEngine(
        detection_engine=DetectionEngine(default_analyzers(), analyzer_timeout_seconds=1.0),
        policy_manager=policy_manager,
        history=history,
        reputation=reputation,
        transactions=transactions,
        analysis_store=analysis_store,
        action_executor=executor,
        analysis_timeout_seconds=2.0,
        persistence_retries=3,
        retry_backoff_seconds=0,
        clock=fixed_clock,
    )


@pytest.fixture
def workflow(reviews, transactions, notifications) -> ManualReviewWorkflow:
    return ManualReviewWorkflow(
        reviews=reviews,
        transactions=transactions,
        notifications=notifications,
        clock=fixed_clock,
    )


# =============================================================================
# Transactions
# =============================================================================

@pytest.fixture
def clean_transaction() -> Transaction:
    """Established customer, home network, normal session, ordinary booking."""
    return Transaction(
        id="txn_clean",
        user_id="user_1",
        amount=150.0,
        currency="usd",
        payment_method=PaymentMethod.CARD,
        card_bin="400000",
        ip_address=CLEAN_IP,
        user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 14_3) Safari/605.1.15",
        device_fingerprint="fp_home",
        session_duration=240,
        timezone="America/New_York",
        booking_data=BookingData(
            resource_id="celebrity_1",
            event_date=FIXED_NOW.date() + timedelta(days=30),
            event_type="corporate",
        ),
        created_at=FIXED_NOW,
    )


@pytest.fixture
def fraud_history(history: InMemoryHistoryRepository) -> InMemoryHistoryRepository:
    """
    History for user_bad: a burst of large and failed payments from New
    York in the last hour, a card-testing run on BIN 12345678, a device
    farm and a freshly created, already reported account.
    """
    history.add_profile(UserRiskProfile(
        user_id="user_bad",
        account_created_at=FIXED_NOW - timedelta(hours=2),
        verification_level=0,
        account_flags=["chargeback"],
        confirmed_fraud_reports=1,
        avg_transaction_amount=200.0,
        total_transactions=0,
    ))

    statuses = [
        TransactionStatus.FAILED,
        TransactionStatus.FAILED,
        TransactionStatus.FAILED,
        TransactionStatus.APPROVED,
        TransactionStatus.APPROVED,
    ]
    for i, status in enumerate(statuses):
        history.add_transaction(TransactionRecord(
            id=f"txn_burst_{i}",
            user_id="user_bad",
            amount=12000.0,
            status=status,
            latitude=40.7128,
            longitude=-74.0060,
            created_at=FIXED_NOW - timedelta(minutes=30 + i),
        ))

    for i in range(6):
        history.add_transaction(TransactionRecord(
            id=f"txn_card_test_{i}",
            user_id=f"tester_{i}",
            amount=1.0,
            status=TransactionStatus.FAILED,
            card_bin="12345678",
            created_at=FIXED_NOW - timedelta(hours=3),
        ))

    for i in range(6):
        history.add_device_sighting(
            "fp_farm", f"farm_user_{i}", FIXED_NOW - timedelta(days=1), is_flagged=(i == 0)
        )

    return history


@pytest.fixture
def fraud_transaction() -> Transaction:
    """
    Headless browser on a blacklisted Tor exit, paying a huge amount with
    crypto on a blacklisted BIN at 04:00 local time for a same-day event.
    """
    return Transaction(
        id="txn_fraud",
        user_id="user_bad",
        amount=60000.0,
        currency="USD",
        payment_method=PaymentMethod.CRYPTOCURRENCY,
        card_bin="12345678",
        ip_address=BAD_IP,
        user_agent="Mozilla/5.0 HeadlessChrome/120.0",
        device_fingerprint="fp_farm",
        session_duration=5,
        timezone="Pacific/Kiritimati",
        booking_data=BookingData(
            resource_id="celebrity_9",
            event_date=FIXED_NOW.date(),
            event_type="corporate",
        ),
        created_at=FIXED_NOW,
    )


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def api_container(transactions, analysis_store, reviews, notifications, reputation, policy_manager) -> ServiceContainer:
    """In-memory service graph whose history knows user_1 relative to the real clock."""
    history = InMemoryHistoryRepository()
    history.add_profile(UserRiskProfile(
        user_id="user_1",
        account_created_at=datetime.now(UTC) - timedelta(days=400),
        verification_level=3,
        avg_transaction_amount=200.0,
        total_transactions=12,
    ))
    return build_services(
        settings,
        transactions=transactions,
        history=history,
        reputation=reputation,
        analysis_store=analysis_store,
        reviews=reviews,
        notifications=notifications,
        policy_manager=policy_manager,
    )


@pytest_asyncio.fixture
async def api_client(api_container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """
    Get async HTTP client for API tests.

    Uses lifespan context manager to properly initialize app resources.
    """
    app = create_app(api_container)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def transaction_payload() -> dict:
    """JSON body of a low-risk transaction for user_1."""
    return {
        "id": "txn_api_1",
        "user_id": "user_1",
        "amount": 150.0,
        "currency": "USD",
        "payment_method": "card",
        "card_bin": "400000",
        "ip_address": CLEAN_IP,
        "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/122.0",
        "device_fingerprint": "fp_api",
        "session_duration": 180,
        "booking_data": {
            "resource_id": "celebrity_1",
            "event_date": (date.today() + timedelta(days=30)).isoformat(),
            "event_type": "corporate",
        },
    }
