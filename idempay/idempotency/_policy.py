"""
Idempotency policy — behavior configuration.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta

from idempay.payments import Currency


# ═══════════════════════════════════════════════════════════════════════════════
# Policy — Full Configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Policy:
    """
    Creation protocol configuration.

    Fluent builder pattern — chain methods to configure.

    Example:
        policy = (
            Policy()
            .with_ttl(hours=24)
            .with_lock_timeout(seconds=10)
            .with_currencies([Currency.IDR, Currency.THB])
        )

    key_ttl: how long a ledger entry stays visible (expires_at = created_at + key_ttl).
    lock_timeout: max wait for the per-key lock; None waits forever.
        A wait that runs out resolves as PAYMENT_PROCESSING.
    currencies: accepted subset of Currency.
    """

    key_ttl: timedelta = timedelta(hours=24)
    lock_timeout: timedelta | None = timedelta(seconds=10)
    currencies: frozenset[Currency] = frozenset(Currency)

    def with_ttl(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        hours: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Set TTL for ledger entries.

        Example:
            .with_ttl(seconds=3600)  # 1 hour
            .with_ttl(hours=24)      # 1 day
            .with_ttl(delta=timedelta(days=7))
        """
        if delta is not None:
            ttl_val = delta
        else:
            total_seconds = (seconds or 0) + (minutes or 0) * 60 + (hours or 0) * 3600
            ttl_val = timedelta(seconds=total_seconds)

        if ttl_val <= timedelta(0):
            raise ValueError("key TTL must be positive")

        return Policy(
            key_ttl=ttl_val,
            lock_timeout=self.lock_timeout,
            currencies=self.currencies,
        )

    def with_lock_timeout(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Set the per-key lock wait budget.

        Example:
            .with_lock_timeout(seconds=5)
            .with_lock_timeout()           # wait forever
        """
        if delta is not None:
            timeout: timedelta | None = delta
        elif seconds is not None:
            timeout = timedelta(seconds=seconds)
        else:
            timeout = None

        return Policy(
            key_ttl=self.key_ttl,
            lock_timeout=timeout,
            currencies=self.currencies,
        )

    def with_currencies(self, currencies: Iterable[Currency]) -> Policy:
        """
        Restrict accepted currencies.

        Example:
            .with_currencies([Currency.IDR])
        """
        accepted = frozenset(currencies)
        if not accepted:
            raise ValueError("at least one currency must be accepted")

        return Policy(
            key_ttl=self.key_ttl,
            lock_timeout=self.lock_timeout,
            currencies=accepted,
        )

    @property
    def lock_timeout_seconds(self) -> float | None:
        if self.lock_timeout is None:
            return None
        return self.lock_timeout.total_seconds()


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = ("Policy",)
