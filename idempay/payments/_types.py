"""
Payment types — domain data structures.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class Currency(Enum):
    """Closed set of currencies the system knows about."""

    IDR = "IDR"
    THB = "THB"
    VND = "VND"
    PHP = "PHP"


class PaymentStatus(Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PENDING = "PENDING"


# ═══════════════════════════════════════════════════════════════════════════════
# Request — ephemeral input
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentRequest:
    """
    Inbound charge request.

    Note: currency is kept as the raw client string.
    Validation decides whether it names a supported Currency.
    """

    amount: Decimal
    currency: str
    customer_id: str
    ride_id: str
    card_number: str
    description: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Payment — persisted, never mutated after insert
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Payment:
    id: str
    amount: Decimal
    currency: Currency
    customer_id: str
    ride_id: str
    status: PaymentStatus
    card_last4: str
    created_at: datetime
    description: str | None = None
    fail_reason: str | None = None

    def to_snapshot(self) -> str:
        """Serialize for the ledger's response snapshot."""
        return json.dumps(
            {
                "id": self.id,
                "amount": str(self.amount),
                "currency": self.currency.value,
                "customer_id": self.customer_id,
                "ride_id": self.ride_id,
                "status": self.status.value,
                "card_last_4": self.card_last4,
                "description": self.description,
                "fail_reason": self.fail_reason,
                "created_at": self.created_at.isoformat(),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_snapshot(cls, snapshot: str) -> Payment:
        """
        Restore a Payment written by to_snapshot().

        Raises ValueError / KeyError on a malformed snapshot.
        """
        data = json.loads(snapshot)
        return cls(
            id=data["id"],
            amount=Decimal(data["amount"]),
            currency=Currency(data["currency"]),
            customer_id=data["customer_id"],
            ride_id=data["ride_id"],
            status=PaymentStatus(data["status"]),
            card_last4=data["card_last_4"],
            created_at=datetime.fromisoformat(data["created_at"]),
            description=data.get("description"),
            fail_reason=data.get("fail_reason"),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Processor outcome / creation result
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ProcessorOutcome:
    """Settlement decision for one request."""

    status: PaymentStatus
    card_last4: str
    fail_reason: str | None = None


@dataclass(frozen=True, slots=True)
class CreatedPayment:
    """
    Result of create_payment.

    replayed=True means the payment was read back from the ledger snapshot
    and the processor was not called.
    """

    payment: Payment
    replayed: bool


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Currency",
    "PaymentStatus",
    "PaymentRequest",
    "Payment",
    "ProcessorOutcome",
    "CreatedPayment",
)
