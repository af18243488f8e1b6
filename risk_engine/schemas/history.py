"""
History and Reputation Schemas

Read-only aggregates the analyzers consume. They are produced by the
history repository and the reputation service; the engine never
writes them.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .transaction import TransactionStatus, ensure_utc


class TransactionRecord(BaseModel):
    """A past transaction of a user as seen by the history repository."""
    id: str
    user_id: str
    amount: float = Field(default=0, ge=0)
    status: TransactionStatus = TransactionStatus.PENDING
    card_bin: Optional[str] = None
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_located(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class UserRiskProfile(BaseModel):
    """
    Account-level risk profile.

    Aggregated from the user record, prior transactions and fraud
    reports filed against the account.
    """
    user_id: str
    account_created_at: datetime
    verification_level: int = Field(
        default=0,
        ge=0,
        description="0 = unverified, higher = stronger KYC",
    )
    account_flags: list[str] = Field(
        default_factory=list,
        description="Flags previously set on the account",
    )
    confirmed_fraud_reports: int = Field(
        default=0,
        ge=0,
        description="Fraud reports confirmed against this account",
    )
    avg_transaction_amount: float = Field(default=0, ge=0)
    max_transaction_amount: float = Field(default=0, ge=0)
    total_transactions: int = Field(default=0, ge=0)

    @field_validator("account_created_at")
    @classmethod
    def validate_account_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def account_age_days(self, now: datetime) -> float:
        return (now - self.account_created_at).total_seconds() / 86400


class DeviceHistoryEntry(BaseModel):
    """One sighting of a fingerprint."""
    user_id: str
    is_flagged: bool = False
    seen_at: datetime

    @field_validator("seen_at")
    @classmethod
    def validate_seen_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class DeviceHistory(BaseModel):
    """All sightings of a device fingerprint."""
    fingerprint: str
    entries: list[DeviceHistoryEntry] = Field(default_factory=list)

    @property
    def distinct_users(self) -> set[str]:
        return {entry.user_id for entry in self.entries}

    @property
    def flagged_count(self) -> int:
        return sum(1 for entry in self.entries if entry.is_flagged)

    @property
    def last_seen(self) -> Optional[datetime]:
        if not self.entries:
            return None
        return max(entry.seen_at for entry in self.entries)


class GeoLocation(BaseModel):
    """Geolocation of an IP address."""
    country: Optional[str] = Field(
        default=None,
        description="ISO 3166-1 alpha-2 country code",
    )
    city: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    org: Optional[str] = Field(
        default=None,
        description="Owning organisation / ISP",
    )

    @property
    def is_located(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class IPReputation(BaseModel):
    """Reputation of an IP address."""
    is_malicious: bool = False
    reputation_score: int = Field(default=0, ge=0, le=100)
    categories: list[str] = Field(default_factory=list)


class BINReputation(BaseModel):
    """Reputation of a card BIN."""
    is_high_risk: bool = False
    risk_score: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Penalty added by the payment analyzer when high risk",
    )
    bin_type: Optional[str] = None


class BlacklistKind(str, Enum):
    """What a blacklist entry matches."""
    CARD_BIN = "card_bin"
    IP = "ip"
    EMAIL = "email"


class Severity(str, Enum):
    """Blacklist entry severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BlacklistEntry(BaseModel):
    """
    Entry on the card BIN, IP or email blacklist.

    Entries with an expires_at in the past never match.
    """
    kind: BlacklistKind
    value: str = Field(..., min_length=1)
    severity: Severity = Severity.MEDIUM
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("value")
    @classmethod
    def normalize_value(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v else v

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.now(UTC))
