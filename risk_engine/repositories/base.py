"""
Collaborator Interfaces

Everything the engine reads from or writes to outside itself goes
through one of these abstract classes. Concrete adapters:

- memory.py: in-process stores (development, tests)
- postgres.py: SQLAlchemy async + asyncpg
- cache.py: Redis read-through cache for analysis lookups
- reputation.py: blacklist / geolocation backed reputation service
- notifications.py: logging and PostgreSQL alert sinks

State-changing writes that can race (transaction status, review
resolution) are conditional: they only apply when the stored state
still matches what the caller expects, and report whether they did.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, Optional

from ..schemas import (
    BINReputation,
    BlacklistEntry,
    BlacklistKind,
    DeviceHistory,
    FraudAnalysisResult,
    GeoLocation,
    IPReputation,
    ManualReviewEntry,
    ReviewPriority,
    ReviewStatus,
    SecurityAlert,
    Transaction,
    TransactionRecord,
    TransactionStatus,
    UserRiskProfile,
)


class TransactionRepository(ABC):
    """Transactions and the accounts that own them."""

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def upsert(self, transaction: Transaction) -> None:
        """Record a transaction submitted for analysis if it is not known yet."""
        pass

    @abstractmethod
    async def update_status(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        expected: Iterable[TransactionStatus],
        at: datetime,
    ) -> bool:
        """
        Conditionally move a transaction to new_status.

        Returns:
            True if the stored status was one of `expected` and was updated
        """
        pass

    @abstractmethod
    async def flag_user(self, user_id: str, flag: str) -> None:
        pass

    @abstractmethod
    async def add_advisories(self, transaction_id: str, advisories: list[str]) -> None:
        pass


class HistoryRepository(ABC):
    """Read-only history the analyzers consult."""

    @abstractmethod
    async def recent_transactions(
        self,
        user_id: str,
        since: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[TransactionRecord]:
        pass

    @abstractmethod
    async def last_located_transaction(
        self,
        user_id: str,
        before: datetime,
        exclude_id: Optional[str] = None,
    ) -> Optional[TransactionRecord]:
        """Most recent earlier transaction of the user that has coordinates."""
        pass

    @abstractmethod
    async def failed_bin_attempts(self, card_bin: str, since: datetime) -> int:
        pass

    @abstractmethod
    async def user_profile(self, user_id: str) -> Optional[UserRiskProfile]:
        pass

    @abstractmethod
    async def device_history(self, fingerprint: str) -> Optional[DeviceHistory]:
        pass

    @abstractmethod
    async def conflicting_bookings(
        self,
        resource_id: str,
        event_date: date,
        exclude_user_id: str,
    ) -> int:
        """Bookings by other users on the same resource and date."""
        pass


class ReputationService(ABC):
    """IP, BIN and blacklist reputation lookups."""

    @abstractmethod
    async def geolocate(self, ip_address: str) -> Optional[GeoLocation]:
        pass

    @abstractmethod
    async def ip_reputation(self, ip_address: str) -> IPReputation:
        pass

    @abstractmethod
    async def bin_reputation(self, card_bin: str) -> BINReputation:
        pass

    @abstractmethod
    async def blacklist_lookup(
        self,
        kind: BlacklistKind,
        value: str,
    ) -> Optional[BlacklistEntry]:
        pass


class AnalysisStore(ABC):
    """Persisted analysis results."""

    @abstractmethod
    async def save(self, result: FraudAnalysisResult) -> None:
        pass

    @abstractmethod
    async def latest_for_transaction(self, transaction_id: str) -> Optional[FraudAnalysisResult]:
        pass

    @abstractmethod
    async def list_since(self, since: datetime) -> list[FraudAnalysisResult]:
        pass


class ReviewStore(ABC):
    """Manual review queue."""

    @abstractmethod
    async def create(self, entry: ManualReviewEntry) -> ManualReviewEntry:
        pass

    @abstractmethod
    async def get(self, entry_id: str) -> Optional[ManualReviewEntry]:
        pass

    @abstractmethod
    async def resolve(
        self,
        entry_id: str,
        status: ReviewStatus,
        reviewer_id: str,
        notes: Optional[str],
        reviewed_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        """
        Compare-and-set: resolve the entry only while it is still pending.

        Returns:
            The updated entry, or None if it was no longer pending
        """
        pass

    @abstractmethod
    async def mark_escalated(
        self,
        entry_id: str,
        priority: ReviewPriority,
        escalated_at: datetime,
    ) -> Optional[ManualReviewEntry]:
        """Bump priority of a still-pending entry; None if it was resolved meanwhile."""
        pass

    @abstractmethod
    async def list_entries(
        self,
        status: Optional[ReviewStatus] = ReviewStatus.PENDING,
        priority: Optional[ReviewPriority] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[ManualReviewEntry], int]:
        """Page of entries newest first, and the total matching count."""
        pass

    @abstractmethod
    async def list_pending(self) -> list[ManualReviewEntry]:
        pass


class NotificationSink(ABC):
    """Best-effort operator notifications."""

    @abstractmethod
    async def notify(self, alert: SecurityAlert) -> None:
        pass
