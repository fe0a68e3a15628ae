"""
Idempotency types — ledger entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# Record Status — Ledger Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class RecordStatus(Enum):
    """
    Status of a ledger entry.

    Lifecycle:
        PROCESSING → COMPLETED (once, same transaction as the payment insert)
                   → (expired → reaped)
    """

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency Record — Stored State
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class IdempotencyRecord:
    """
    One ledger entry per key.

    request_fingerprint is set at creation and never changes.
    payment_id / response_snapshot are None until COMPLETED.
    """

    key: str
    request_fingerprint: str
    status: RecordStatus
    created_at: datetime
    expires_at: datetime
    payment_id: str | None = None
    response_snapshot: str | None = None

    @classmethod
    def processing(
        cls,
        key: str,
        fingerprint: str,
        now: datetime,
        ttl: timedelta,
    ) -> IdempotencyRecord:
        return cls(
            key=key,
            request_fingerprint=fingerprint,
            status=RecordStatus.PROCESSING,
            created_at=now,
            expires_at=now + ttl,
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_processing(self) -> bool:
        return self.status == RecordStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self.status == RecordStatus.COMPLETED


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "RecordStatus",
    "IdempotencyRecord",
)
