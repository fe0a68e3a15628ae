"""
Storage ports — typed capability protocols.

Ledger / PaymentStore are bound to one transaction.
Backend opens transactions.
All store methods return Result for explicit error handling.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Protocol

from kungfu import Result

from idempay.idempotency import IdempotencyRecord
from idempay.payments import Payment


# ═══════════════════════════════════════════════════════════════════════════════
# Store Error
# ═══════════════════════════════════════════════════════════════════════════════


class StoreErrorKind(Enum):
    FAILURE = auto()  # Backend/driver error
    DUPLICATE_KEY = auto()  # Live ledger entry already holds the key
    CONFLICT = auto()  # Payment id collision
    NOT_PROCESSING = auto()  # complete_with on a missing or completed entry
    LOCK_TIMEOUT = auto()  # Key held by another transaction past the wait budget


@dataclass(frozen=True)
class StoreError:
    """Storage operation error."""

    kind: StoreErrorKind
    message: str
    cause: Exception | None = None

    @classmethod
    def failure(cls, message: str, cause: Exception | None = None) -> StoreError:
        return cls(StoreErrorKind.FAILURE, message, cause)

    @property
    def is_duplicate_key(self) -> bool:
        return self.kind == StoreErrorKind.DUPLICATE_KEY

    @property
    def is_lock_timeout(self) -> bool:
        return self.kind == StoreErrorKind.LOCK_TIMEOUT


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class Ledger(Protocol):
    """
    Key → IdempotencyRecord store, bound to one transaction.

    Entries whose expires_at has passed are invisible to every method
    except delete_expired.
    """

    async def lock_for_update(
        self, key: str, now: datetime, timeout: float | None = None
    ) -> Result[IdempotencyRecord | None, StoreError]:
        """
        Take exclusive access to key for the rest of the transaction.

        Blocks while another transaction holds the key. Returns Ok(None) if
        no live entry exists. Scope is one key; other keys are unaffected.

        timeout bounds only the wait for this key (None waits forever).
        Running out yields StoreErrorKind.LOCK_TIMEOUT.
        """
        ...

    async def insert(
        self, record: IdempotencyRecord, now: datetime
    ) -> Result[None, StoreError]:
        """
        Insert a new entry.

        An expired entry with the same key is replaced.
        A live one yields StoreErrorKind.DUPLICATE_KEY.
        """
        ...

    async def complete_with(
        self, key: str, payment_id: str, snapshot: str
    ) -> Result[IdempotencyRecord, StoreError]:
        """PROCESSING → COMPLETED. Anything else yields NOT_PROCESSING."""
        ...

    async def get(
        self, key: str, now: datetime
    ) -> Result[IdempotencyRecord | None, StoreError]:
        """Non-locking read."""
        ...

    async def delete_expired(self, now: datetime) -> Result[int, StoreError]:
        """Delete entries with expires_at <= now. Returns count removed."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Payment Store
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentStore(Protocol):
    async def insert(self, payment: Payment) -> Result[None, StoreError]:
        """Insert. Id collision yields StoreErrorKind.CONFLICT."""
        ...

    async def find_by_id(self, payment_id: str) -> Result[Payment | None, StoreError]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Transaction / Backend
# ═══════════════════════════════════════════════════════════════════════════════


class Transaction(Protocol):
    @property
    def ledger(self) -> Ledger: ...

    @property
    def payments(self) -> PaymentStore: ...


class Backend(Protocol):
    """
    Opens atomic units of work.

    Example:
        async with backend.begin() as tx:
            match await tx.ledger.lock_for_update(key, now):
                ...

    Normal exit commits. Any exception, cancellation included, rolls back.
    Key locks taken inside the transaction are released after commit/rollback.

    readonly=True is for lookups: the transaction never writes and never
    waits behind writers holding keys.
    """

    def begin(self, *, readonly: bool = False) -> AbstractAsyncContextManager[Transaction]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "StoreErrorKind",
    "StoreError",
    "Ledger",
    "PaymentStore",
    "Transaction",
    "Backend",
)
