"""
In-Memory Repositories

Process-local implementations of every collaborator interface. Used
for development (STORAGE_BACKEND=memory) and throughout the test suite.
Each store serialises its mutations with an asyncio.Lock so the
conditional updates behave like their SQL counterparts.
"""

import asyncio
from datetime import date, datetime
from typing import Iterable, Optional

from ..schemas import (
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


class InMemoryTransactionRepository(TransactionRepository):
    """Transactions, account flags and advisory metadata kept in dicts."""

    def __init__(self, transactions: Optional[Iterable[Transaction]] = None):
        self.transactions: dict[str, Transaction] = {t.id: t for t in transactions or []}
        self.user_flags: dict[str, list[str]] = {}
        self.advisories: dict[str, list[str]] = {}
        self.status_changed_at: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        return self.transactions.get(transaction_id)

    async def upsert(self, transaction: Transaction) -> None:
        async with self._lock:
            self.transactions.setdefault(transaction.id, transaction)

    async def update_status(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        expected: Iterable[TransactionStatus],
        at: datetime,
    ) -> bool:
        async with self._lock:
            current = self.transactions.get(transaction_id)
            if current is None or current.status not in set(expected):
                return False
            self.transactions[transaction_id] = current.model_copy(update={"status": new_status})
            self.status_changed_at[transaction_id] = at
            return True

    async def flag_user(self, user_id: str, flag: str) -> None:
        async with self._lock:
            flags = self.user_flags.setdefault(user_id, [])
            if flag not in flags:
                flags.append(flag)

    async def add_advisories(self, transaction_id: str, advisories: list[str]) -> None:
        async with self._lock:
            existing = self.advisories.setdefault(transaction_id, [])
            existing.extend(a for a in advisories if a not in existing)


class InMemoryHistoryRepository(HistoryRepository):
    """
    History seeded through the add_* helpers.

    Account flags set by InMemoryTransactionRepository.flag_user are not
    reflected here; profiles are a snapshot supplied by the caller.
    """

    def __init__(self):
        self.records: list[TransactionRecord] = []
        self.profiles: dict[str, UserRiskProfile] = {}
        self.devices: dict[str, DeviceHistory] = {}
        self.bookings: list[tuple[str, date, str]] = []

    # =========================================================================
    # Seeding helpers
    # =========================================================================

    def add_transaction(self, record: TransactionRecord) -> None:
        self.records.append(record)

    def add_profile(self, profile: UserRiskProfile) -> None:
        self.profiles[profile.user_id] = profile

    def add_device_sighting(
        self,
        fingerprint: str,
        user_id: str,
        seen_at: datetime,
        is_flagged: bool = False,
    ) -> None:
        history = self.devices.setdefault(fingerprint, DeviceHistory(fingerprint=fingerprint))
        history.entries.append(
            DeviceHistoryEntry(user_id=user_id, is_flagged=is_flagged, seen_at=seen_at)
        )

    def add_booking(self, resource_id: str, event_date: date, user_id: str) -> None:
        self.bookings.append((resource_id, event_date, user_id))

    # =========================================================================
    # HistoryRepository
    # =========================================================================

    async def recent_transactions(
        self,
        user_id: str,
        since: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[TransactionRecord]:
        return [
            r for r in self.records
            if r.user_id == user_id and r.created_at >= since and r.id != exclude_id
        ]

    async def last_located_transaction(
        self,
        user_id: str,
        before: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        candidates = [
            r for r in self.records
            if r.user_id == user_id
            and r.id != exclude_id
            and r.created_at <= before
            and r.is_located
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda r: r.created_at)

    async def failed_bin_attempts(self, card_bin: str, since: datetime) -> int:
        return sum(
            1 for r in self.records
            if r.card_bin == card_bin
            and r.status == TransactionStatus.FAILED
            and r.created_at >= since
        )

    async def user_profile(self, user_id: str) -> Optional[UserRiskProfile]:
        return self.profiles.get(user_id)

    async def device_history(self, fingerprint: str) -> Optional[DeviceHistory]:
        return self.devices.get(fingerprint)

    async def conflicting_bookings(
        self,
        resource_id: str,
        event_date: date,
        exclude_user_id: str,
    ) -> int:
        return sum(
            1 for rid, day, uid in self.bookings
            if rid == resource_id and day == event_date and uid != exclude_user_id
        )


class InMemoryAnalysisStore(AnalysisStore):
    """Analysis results grouped by transaction."""

    def __init__(self):
        self.results: dict[str, list[FraudAnalysisResult]] = {}
        self._lock = asyncio.Lock()

    async def save(self, result: FraudAnalysisResult) -> None:
        async with self._lock:
            self.results.setdefault(result.transaction_id, []).append(result)

    async def latest_for_transaction(self, transaction_id: str) -> Optional[FraudAnalysisResult]:
        results = self.results.get(transaction_id)
        if not results:
            return None
        return max(results, key=lambda r: r.analyzed_at)

    async def list_since(self, since: datetime) -> list[FraudAnalysisResult]:
        return [
            r for results in self.results.values()
            for r in results
            if r.analyzed_at >= since
        ]


class InMemoryReviewStore(ReviewStore):
    """Manual review entries keyed by id."""

    def __init__(self):
        self.entries: dict[str, ManualReviewEntry] = {}
        self._lock = asyncio.Lock()

    async def create(self, entry: ManualReviewEntry) -> ManualReviewEntry:
        async with self._lock:
            self.entries[entry.id] = entry
        return entry

    async def get(self, entry_id: str) -> Optional[ManualReviewEntry]:
        return self.entries.get(entry_id)

    async def resolve(
        self,
        entry_id: str,
        status: ReviewStatus,
        reviewer_id: str,
        notes: Optional[str],
        reviewed_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        async with self._lock:
            current = self.entries.get(entry_id)
            if current is None or current.status != ReviewStatus.PENDING:
                return None
            updated = current.model_copy(update={
                "status": status,
                "reviewer_id": reviewer_id,
                "notes": notes,
                "reviewed_at": reviewed_at,
            })
            self.entries[entry_id] = updated
            return updated

    async def mark_escalated(
        self,
        entry_id: str,
        priority: ReviewPriority,
        escalated_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        async with self._lock:
            current = self.entries.get(entry_id)
            if current is None or current.status != ReviewStatus.PENDING:
                return None
            updated = current.model_copy(update={
                "priority": priority,
                "escalated_at": escalated_at,
                "escalation_count": current.escalation_count + 1,
            })
            self.entries[entry_id] = updated
            return updated

    async def list_entries(
        self,
        status: Optional[ReviewStatus] = ReviewStatus.PENDING,
        priority: Optional[ReviewPriority] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ManualReviewEntry], int]:
        matching = [
            e for e in self.entries.values()
            if (status is None or e.status == status)
            and (priority is None or e.priority == priority)
        ]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        offset = (page - 1) * limit
        return matching[offset:offset + limit], len(matching)

    async def list_pending(self) -> list[ManualReviewEntry]:
        return [e for e in self.entries.values() if e.status == ReviewStatus.PENDING]


class InMemoryNotificationSink(NotificationSink):
    """Collects alerts; used in development and tests."""

    def __init__(self):
        self.alerts: list[SecurityAlert] = []

    async def notify(self, alert: SecurityAlert) -> None:
        self.alerts.append(alert)
