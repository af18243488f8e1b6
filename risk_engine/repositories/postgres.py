"""
PostgreSQL Repositories

SQLAlchemy async (asyncpg driver) implementations of the collaborator
interfaces. Tables are created by sql/001_risk_engine.sql.

Errors are not swallowed here: read failures surface to the analyzers
(which turn them into data-unavailable results) and write failures
surface to the pipeline (which retries and counts them).
"""

import json
import logging
import time
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from ..metrics import metrics
from ..schemas import (
    BlacklistEntry,
    BlacklistKind,
    BookingData,
    DeviceHistory,
    DeviceHistoryEntry,
    FraudAnalysisResult,
    ManualReviewEntry,
    ReviewPriority,
    ReviewStatus,
    SecurityAlert,
    Transaction,
    TransactionRecord,
    TransactionStatus,
    UserRiskProfile,
)
from .base import (
    AnalysisStore,
    HistoryRepository,
    NotificationSink,
    ReviewStore,
    TransactionRepository,
)

logger = logging.getLogger("risk_engine.postgres")


class PostgresDatabase:
    """
    Shared engine and session factory.

    One instance is created at startup and handed to every adapter.
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        Initialize database wrapper.

        Args:
            database_url: PostgreSQL connection URL (postgresql+asyncpg://...)
            echo: Log SQL statements
        """
        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.session_factory = None

    async def initialize(self) -> None:
        """Initialize database connection pool."""
        self.engine = create_async_engine(
            self.database_url,
            echo=self.echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        if not self.session_factory:
            raise RuntimeError("Database not initialized")

        async with self.session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1

    def session(self) -> AsyncSession:
        if not self.session_factory:
            raise RuntimeError("Database not initialized")
        return self.session_factory()


def _observe(started_at: float) -> None:
    metrics.postgres_latency.observe((time.perf_counter() - started_at) * 1000)


def _json(value) -> str:
    return json.dumps(value, default=str)


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return json.loads(value)
    return list(value)


# =============================================================================
# Transactions
# =============================================================================

class PostgresTransactionRepository(TransactionRepository):
    """transactions and users tables."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT *
                    FROM transactions
                    WHERE id = :id
                """),
                {"id": transaction_id},
            )
            _observe(started_at)
            row = result.mappings().first()
        return self._to_transaction(row) if row else None

    async def upsert(self, transaction: Transaction) -> None:
        booking = transaction.booking_data
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    INSERT INTO transactions (
                        id, user_id, amount, currency, payment_method, card_bin,
                        ip_address, user_agent, device_fingerprint, session_duration,
                        timezone, booking_resource_id, booking_event_date,
                        booking_event_type, status, created_at
                    ) VALUES (
                        :id, :user_id, :amount, :currency, :payment_method, :card_bin,
                        :ip_address, :user_agent, :device_fingerprint, :session_duration,
                        :timezone, :booking_resource_id, :booking_event_date,
                        :booking_event_type, :status, :created_at
                    )
                    ON CONFLICT (id) DO NOTHING
                """),
                {
                    "id": transaction.id,
                    "user_id": transaction.user_id,
                    "amount": transaction.amount,
                    "currency": transaction.currency,
                    "payment_method": transaction.payment_method.value,
                    "card_bin": transaction.card_bin,
                    "ip_address": transaction.ip_address,
                    "user_agent": transaction.user_agent,
                    "device_fingerprint": transaction.device_fingerprint,
                    "session_duration": transaction.session_duration,
                    "timezone": transaction.timezone,
                    "booking_resource_id": booking.resource_id if booking else None,
                    "booking_event_date": booking.event_date if booking else None,
                    "booking_event_type": booking.event_type if booking else None,
                    "status": transaction.status.value,
                    "created_at": transaction.created_at,
                },
            )
            await session.commit()
            _observe(started_at)

    async def update_status(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        expected: Iterable[TransactionStatus],
        at: datetime,
    ) -> bool:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    UPDATE transactions
                    SET status = :new_status,
                        status_changed_at = :at
                    WHERE id = :id
                      AND status = ANY(:expected)
                    RETURNING id
                """),
                {
                    "id": transaction_id,
                    "new_status": new_status.value,
                    "expected": [s.value for s in expected],
                    "at": at,
                },
            )
            updated = result.first() is not None
            await session.commit()
            _observe(started_at)
        return updated

    async def flag_user(self, user_id: str, flag: str) -> None:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    UPDATE users
                    SET account_flags = account_flags || CAST(:flag AS jsonb)
                    WHERE id = :user_id
                      AND NOT account_flags @> CAST(:flag AS jsonb)
                """),
                {"user_id": user_id, "flag": _json([flag])},
            )
            await session.commit()
            _observe(started_at)

    async def add_advisories(self, transaction_id: str, advisories: list[str]) -> None:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    UPDATE transactions
                    SET advisories = advisories || CAST(:advisories AS jsonb)
                    WHERE id = :id
                """),
                {"id": transaction_id, "advisories": _json(advisories)},
            )
            await session.commit()
            _observe(started_at)

    @staticmethod
    def _to_transaction(row) -> Transaction:
        booking = None
        if row["booking_resource_id"] and row["booking_event_date"]:
            booking = BookingData(
                resource_id=row["booking_resource_id"],
                event_date=row["booking_event_date"],
                event_type=row["booking_event_type"],
            )
        return Transaction(
            id=row["id"],
            user_id=row["user_id"],
            amount=float(row["amount"]),
            currency=row["currency"],
            payment_method=row["payment_method"],
            card_bin=row["card_bin"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            device_fingerprint=row["device_fingerprint"],
            session_duration=float(row["session_duration"] or 0),
            timezone=row["timezone"],
            booking_data=booking,
            created_at=row["created_at"],
            status=row["status"],
        )


# =============================================================================
# History
# =============================================================================

class PostgresHistoryRepository(HistoryRepository):
    """Read-only queries over transactions, users, devices and bookings."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def recent_transactions(
        self,
        user_id: str,
        since: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[TransactionRecord]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT id, user_id, amount, status, card_bin, ip_address,
                           device_fingerprint, latitude, longitude, created_at
                    FROM transactions
                    WHERE user_id = :user_id
                      AND created_at >= :since
                      AND (CAST(:exclude_id AS text) IS NULL OR id <> :exclude_id)
                    ORDER BY created_at DESC
                """),
                {"user_id": user_id, "since": since, "exclude_id": exclude_id},
            )
            _observe(started_at)
            return [self._to_record(row) for row in result.mappings().all()]

    async def last_located_transaction(
        self,
        user_id: str,
        before: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT id, user_id, amount, status, card_bin, ip_address,
                           device_fingerprint, latitude, longitude, created_at
                    FROM transactions
                    WHERE user_id = :user_id
                      AND created_at <= :before
                      AND latitude IS NOT NULL
                      AND longitude IS NOT NULL
                      AND (CAST(:exclude_id AS text) IS NULL OR id <> :exclude_id)
                    ORDER BY created_at DESC
                    LIMIT 1
                """),
                {"user_id": user_id, "before": before, "exclude_id": exclude_id},
            )
            _observe(started_at)
            row = result.mappings().first()
            return self._to_record(row) if row else None

    async def failed_bin_attempts(self, card_bin: str, since: datetime) -> int:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT COUNT(*)
                    FROM transactions
                    WHERE card_bin = :card_bin
                      AND status = 'failed'
                      AND created_at >= :since
                """),
                {"card_bin": card_bin, "since": since},
            )
            _observe(started_at)
            return int(result.scalar() or 0)

    async def user_profile(self, user_id: str) -> Optional[UserRiskProfile]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT u.id,
                           u.created_at,
                           u.verification_level,
                           u.account_flags,
                           (SELECT COUNT(*) FROM fraud_reports fr
                             WHERE fr.reported_user_id = u.id
                               AND fr.status = 'confirmed') AS confirmed_fraud_reports,
                           COALESCE(AVG(t.amount), 0) AS avg_amount,
                           COALESCE(MAX(t.amount), 0) AS max_amount,
                           COUNT(t.id) AS total_transactions
                    FROM users u
                    LEFT JOIN transactions t ON t.user_id = u.id
                    WHERE u.id = :user_id
                    GROUP BY u.id
                """),
                {"user_id": user_id},
            )
            _observe(started_at)
            row = result.mappings().first()

        if not row:
            return None
        return UserRiskProfile(
            user_id=row["id"],
            account_created_at=row["created_at"],
            verification_level=row["verification_level"] or 0,
            account_flags=_as_list(row["account_flags"]),
            confirmed_fraud_reports=int(row["confirmed_fraud_reports"] or 0),
            avg_transaction_amount=float(row["avg_amount"]),
            max_transaction_amount=float(row["max_amount"]),
            total_transactions=int(row["total_transactions"]),
        )

    async def device_history(self, fingerprint: str) -> Optional[DeviceHistory]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT user_id, is_flagged, seen_at
                    FROM device_sightings
                    WHERE fingerprint = :fingerprint
                    ORDER BY seen_at DESC
                """),
                {"fingerprint": fingerprint},
            )
            _observe(started_at)
            rows = result.mappings().all()

        if not rows:
            return None
        return DeviceHistory(
            fingerprint=fingerprint,
            entries=[
                DeviceHistoryEntry(
                    user_id=row["user_id"],
                    is_flagged=bool(row["is_flagged"]),
                    seen_at=row["seen_at"],
                )
                for row in rows
            ],
        )

    async def conflicting_bookings(
        self,
        resource_id: str,
        event_date: date,
        exclude_user_id: str,
    ) -> int:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT COUNT(*)
                    FROM bookings
                    WHERE resource_id = :resource_id
                      AND event_date = :event_date
                      AND user_id <> :user_id
                      AND status <> 'cancelled'
                """),
                {
                    "resource_id": resource_id,
                    "event_date": event_date,
                    "user_id": exclude_user_id,
                },
            )
            _observe(started_at)
            return int(result.scalar() or 0)

    async def load_blacklist(self) -> list[BlacklistEntry]:
        """Active entries of the BIN, IP and email blacklists."""
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT 'card_bin' AS kind, bin_prefix AS value, severity, reason, expires_at
                    FROM bin_blacklist
                    WHERE expires_at IS NULL OR expires_at > NOW()
                    UNION ALL
                    SELECT 'ip', ip_address, severity, reason, expires_at
                    FROM ip_blacklist
                    WHERE expires_at IS NULL OR expires_at > NOW()
                    UNION ALL
                    SELECT 'email', email, severity, reason, expires_at
                    FROM email_blacklist
                    WHERE expires_at IS NULL OR expires_at > NOW()
                """),
            )
            _observe(started_at)
            return [
                BlacklistEntry(
                    kind=BlacklistKind(row["kind"]),
                    value=row["value"],
                    severity=row["severity"],
                    reason=row["reason"],
                    expires_at=row["expires_at"],
                )
                for row in result.mappings().all()
            ]

    @staticmethod
    def _to_record(row) -> TransactionRecord:
        return TransactionRecord(
            id=row["id"],
            user_id=row["user_id"],
            amount=float(row["amount"]),
            status=row["status"],
            card_bin=row["card_bin"],
            ip_address=row["ip_address"],
            device_fingerprint=row["device_fingerprint"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            created_at=row["created_at"],
        )


# =============================================================================
# Analyses
# =============================================================================

class PostgresAnalysisStore(AnalysisStore):
    """fraud_analyses table; the full result is stored as jsonb."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def save(self, result: FraudAnalysisResult) -> None:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    INSERT INTO fraud_analyses (
                        analysis_id, transaction_id, user_id, risk_score,
                        risk_level, should_block, requires_manual_review,
                        fail_safe, policy_version, result, analyzed_at
                    ) VALUES (
                        :analysis_id, :transaction_id, :user_id, :risk_score,
                        :risk_level, :should_block, :requires_manual_review,
                        :fail_safe, :policy_version, CAST(:result AS jsonb), :analyzed_at
                    )
                    ON CONFLICT (analysis_id) DO NOTHING
                """),
                {
                    "analysis_id": result.analysis_id,
                    "transaction_id": result.transaction_id,
                    "user_id": result.user_id,
                    "risk_score": result.risk_score,
                    "risk_level": result.risk_level.value,
                    "should_block": result.should_block,
                    "requires_manual_review": result.requires_manual_review,
                    "fail_safe": result.fail_safe,
                    "policy_version": result.policy_version,
                    "result": result.model_dump_json(),
                    "analyzed_at": result.analyzed_at,
                },
            )
            await session.commit()
            _observe(started_at)

    async def latest_for_transaction(self, transaction_id: str) -> Optional[FraudAnalysisResult]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT result
                    FROM fraud_analyses
                    WHERE transaction_id = :transaction_id
                    ORDER BY analyzed_at DESC
                    LIMIT 1
                """),
                {"transaction_id": transaction_id},
            )
            _observe(started_at)
            row = result.first()
        return self._to_result(row[0]) if row else None

    async def list_since(self, since: datetime) -> list[FraudAnalysisResult]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text("""
                    SELECT result
                    FROM fraud_analyses
                    WHERE analyzed_at >= :since
                    ORDER BY analyzed_at DESC
                """),
                {"since": since},
            )
            _observe(started_at)
            return [self._to_result(row[0]) for row in result.all()]

    @staticmethod
    def _to_result(value) -> FraudAnalysisResult:
        if isinstance(value, str):
            return FraudAnalysisResult.model_validate_json(value)
        return FraudAnalysisResult.model_validate(value)


# =============================================================================
# Manual review queue
# =============================================================================

class PostgresReviewStore(ReviewStore):
    """manual_review_queue table."""

    COLUMNS = """
        id, transaction_id, analysis_id, risk_score, priority, status,
        reviewer_id, reviewed_at, notes, created_at, escalated_at, escalation_count
    """

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def create(self, entry: ManualReviewEntry) -> ManualReviewEntry:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    INSERT INTO manual_review_queue (
                        id, transaction_id, analysis_id, risk_score, priority,
                        status, created_at, escalation_count
                    ) VALUES (
                        :id, :transaction_id, :analysis_id, :risk_score, :priority,
                        :status, :created_at, :escalation_count
                    )
                """),
                {
                    "id": entry.id,
                    "transaction_id": entry.transaction_id,
                    "analysis_id": entry.analysis_id,
                    "risk_score": entry.risk_score,
                    "priority": entry.priority.value,
                    "status": entry.status.value,
                    "created_at": entry.created_at,
                    "escalation_count": entry.escalation_count,
                },
            )
            await session.commit()
            _observe(started_at)
        return entry

    async def get(self, entry_id: str) -> Optional[ManualReviewEntry]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text(f"SELECT {self.COLUMNS} FROM manual_review_queue WHERE id = :id"),
                {"id": entry_id},
            )
            _observe(started_at)
            row = result.mappings().first()
        return ManualReviewEntry(**row) if row else None

    async def resolve(
        self,
        entry_id: str,
        status: ReviewStatus,
        reviewer_id: str,
        notes: Optional[str],
        reviewed_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text(f"""
                    UPDATE manual_review_queue
                    SET status = :status,
                        reviewer_id = :reviewer_id,
                        notes = :notes,
                        reviewed_at = :reviewed_at
                    WHERE id = :id
                      AND status = 'pending'
                    RETURNING {self.COLUMNS}
                """),
                {
                    "id": entry_id,
                    "status": status.value,
                    "reviewer_id": reviewer_id,
                    "notes": notes,
                    "reviewed_at": reviewed_at,
                },
            )
            row = result.mappings().first()
            await session.commit()
            _observe(started_at)
        return ManualReviewEntry(**row) if row else None

    async def mark_escalated(
        self,
        entry_id: str,
        priority: ReviewPriority,
        escalated_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text(f"""
                    UPDATE manual_review_queue
                    SET priority = :priority,
                        escalated_at = :escalated_at,
                        escalation_count = escalation_count + 1
                    WHERE id = :id
                      AND status = 'pending'
                    RETURNING {self.COLUMNS}
                """),
                {"id": entry_id, "priority": priority.value, "escalated_at": escalated_at},
            )
            row = result.mappings().first()
            await session.commit()
            _observe(started_at)
        return ManualReviewEntry(**row) if row else None

    async def list_entries(
        self,
        status: Optional[ReviewStatus] = ReviewStatus.PENDING,
        priority: Optional[ReviewPriority] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ManualReviewEntry], int]:
        params = {
            "status": status.value if status else None,
            "priority": priority.value if priority else None,
            "limit": limit,
            "offset": (page - 1) * limit,
        }
        where = """
            WHERE (CAST(:status AS text) IS NULL OR status = :status)
              AND (CAST(:priority AS text) IS NULL OR priority = :priority)
        """
        async with self.db.session() as session:
            started_at = time.perf_counter()
            total = await session.execute(
                text(f"SELECT COUNT(*) FROM manual_review_queue {where}"),
                params,
            )
            result = await session.execute(
                text(f"""
                    SELECT {self.COLUMNS}
                    FROM manual_review_queue
                    {where}
                    ORDER BY created_at DESC
                    LIMIT :limit OFFSET :offset
                """),
                params,
            )
            _observe(started_at)
            entries = [ManualReviewEntry(**row) for row in result.mappings().all()]
            return entries, int(total.scalar() or 0)

    async def list_pending(self) -> list[ManualReviewEntry]:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            result = await session.execute(
                text(f"""
                    SELECT {self.COLUMNS}
                    FROM manual_review_queue
                    WHERE status = 'pending'
                    ORDER BY created_at ASC
                """),
            )
            _observe(started_at)
            return [ManualReviewEntry(**row) for row in result.mappings().all()]


# =============================================================================
# Alerts
# =============================================================================

class PostgresAlertSink(NotificationSink):
    """Persist alerts into the alerts table for the operator console."""

    def __init__(self, db: PostgresDatabase):
        self.db = db

    async def notify(self, alert: SecurityAlert) -> None:
        async with self.db.session() as session:
            started_at = time.perf_counter()
            await session.execute(
                text("""
                    INSERT INTO alerts (
                        id, alert_type, severity, transaction_id, user_id,
                        risk_score, message, data, created_at
                    ) VALUES (
                        :id, :alert_type, :severity, :transaction_id, :user_id,
                        :risk_score, :message, CAST(:data AS jsonb), :created_at
                    )
                """),
                {
                    "id": alert.id,
                    "alert_type": alert.alert_type,
                    "severity": alert.severity.value,
                    "transaction_id": alert.transaction_id,
                    "user_id": alert.user_id,
                    "risk_score": alert.risk_score,
                    "message": alert.message,
                    "data": _json(alert.data),
                    "created_at": alert.created_at,
                },
            )
            await session.commit()
            _observe(started_at)
