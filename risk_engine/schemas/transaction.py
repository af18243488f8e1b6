"""
Transaction Schemas

Defines the Transaction structure submitted for risk analysis.
Validation happens here, before any analyzer runs: a transaction
without an id or user, with a negative amount or with a malformed
card BIN is rejected outright.
"""

from datetime import datetime, date, UTC
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class PaymentMethod(str, Enum):
    """Payment instruments accepted by the platform."""
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CRYPTOCURRENCY = "cryptocurrency"
    OTHER = "other"


class TransactionStatus(str, Enum):
    """
    Transaction lifecycle states touched by the engine.

    - PENDING: awaiting a decision
    - APPROVED: released by a reviewer
    - BLOCKED_FRAUD: held automatically by the engine
    - REJECTED_FRAUD: rejected by a reviewer
    - FAILED: payment attempt failed (history only)
    """
    PENDING = "pending"
    APPROVED = "approved"
    BLOCKED_FRAUD = "blocked_fraud"
    REJECTED_FRAUD = "rejected_fraud"
    FAILED = "failed"


class BookingData(BaseModel):
    """Booking attached to a transaction (celebrity/resource reservation)."""
    resource_id: str = Field(
        ...,
        description="Booked resource (celebrity) identifier",
        min_length=1,
    )
    event_date: date = Field(
        ...,
        description="Date of the booked event",
    )
    event_type: Optional[str] = Field(
        default=None,
        description="Event type, e.g. private, corporate, public",
    )


class Transaction(BaseModel):
    """
    Transaction submitted for risk analysis.

    Only the fields the analyzers read are modelled; everything about
    how the booking was created lives outside the engine.
    """

    # =========================================================================
    # Identifiers
    # =========================================================================
    id: str = Field(
        ...,
        description="Unique transaction identifier",
        min_length=1,
        max_length=64,
    )
    user_id: str = Field(
        ...,
        description="Owner of the transaction",
        min_length=1,
        max_length=64,
    )

    # =========================================================================
    # Payment
    # =========================================================================
    amount: float = Field(
        ...,
        ge=0,
        description="Transaction amount in major currency units",
    )
    currency: Optional[str] = Field(
        default=None,
        description="ISO 4217 currency code",
        min_length=3,
        max_length=3,
    )
    payment_method: PaymentMethod = Field(
        default=PaymentMethod.CARD,
        description="Payment instrument",
    )
    card_bin: Optional[str] = Field(
        default=None,
        description="Card Bank Identification Number (first 6-8 digits)",
    )

    # =========================================================================
    # Session / device
    # =========================================================================
    ip_address: Optional[str] = Field(
        default=None,
        description="Client IP address",
    )
    user_agent: Optional[str] = Field(
        default=None,
        description="Client user agent string",
    )
    device_fingerprint: Optional[str] = Field(
        default=None,
        description="Device fingerprint hash",
        max_length=128,
    )
    session_duration: float = Field(
        default=0,
        ge=0,
        description="Seconds the client spent in session before paying",
    )
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone of the client, used for local-hour checks",
    )

    # =========================================================================
    # Booking
    # =========================================================================
    booking_data: Optional[BookingData] = Field(
        default=None,
        description="Booking the payment is for",
    )

    # =========================================================================
    # Lifecycle
    # =========================================================================
    created_at: datetime = Field(
        default_factory=_utc_now,
        description="When the transaction was created",
    )
    status: TransactionStatus = Field(
        default=TransactionStatus.PENDING,
        description="Current transaction status",
    )

    @field_validator("card_bin")
    @classmethod
    def validate_card_bin(cls, v: Optional[str]) -> Optional[str]:
        """Card BIN must be 6-8 digits."""
        if v is None:
            return v
        v = v.strip()
        if not v.isdigit() or not 6 <= len(v) <= 8:
            raise ValueError("card_bin must be 6-8 digits")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        """Normalize currency to uppercase."""
        return v.upper() if v else v

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        """Store timestamps as timezone-aware UTC."""
        return ensure_utc(v)


class TransactionSummary(BaseModel):
    """Short transaction view joined into the manual review queue."""
    id: str
    user_id: str
    amount: float
    currency: Optional[str] = None
    payment_method: PaymentMethod
    status: TransactionStatus
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionSummary":
        return cls(
            id=transaction.id,
            user_id=transaction.user_id,
            amount=transaction.amount,
            currency=transaction.currency,
            payment_method=transaction.payment_method,
            status=transaction.status,
            created_at=transaction.created_at,
        )
