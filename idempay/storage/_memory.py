"""
Memory backend — for tests and single-process demos.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime

from kungfu import Result, Ok, Error

from idempay.idempotency import IdempotencyRecord, RecordStatus
from idempay.payments import Payment
from idempay.storage._locks import KeyLocks
from idempay.storage._ports import StoreError, StoreErrorKind


class MemoryBackend:
    """
    In-memory Backend.

    Writes are staged per transaction and applied in one step on commit,
    so other tasks never observe a partial transaction.

    Note: Только для single-instance / тестов.
    Почему: Нет distributed lock, данные не переживут рестарт.
    """

    def __init__(self, locks: KeyLocks | None = None) -> None:
        self.records: dict[str, IdempotencyRecord] = {}
        self.payments: dict[str, Payment] = {}
        self.locks = locks if locks is not None else KeyLocks()

    @asynccontextmanager
    async def begin(self, *, readonly: bool = False) -> AsyncIterator[MemoryTransaction]:
        # Reads never wait on key locks here; readonly needs no special handling
        async with AsyncExitStack() as stack:
            tx = MemoryTransaction(self, stack)
            yield tx
            # Only reached when the body did not raise
            tx.apply()


class MemoryTransaction:
    def __init__(self, backend: MemoryBackend, stack: AsyncExitStack) -> None:
        self._backend = backend
        self._stack = stack
        self._held: set[str] = set()
        self.staged_records: dict[str, IdempotencyRecord] = {}
        # key → the expired record seen by delete_expired
        self.staged_deletes: dict[str, IdempotencyRecord] = {}
        self.staged_payments: dict[str, Payment] = {}
        self._ledger = MemoryLedger(self)
        self._payments = MemoryPaymentStore(self)

    @property
    def ledger(self) -> MemoryLedger:
        return self._ledger

    @property
    def payments(self) -> MemoryPaymentStore:
        return self._payments

    async def hold(self, key: str, timeout: float | None = None) -> bool:
        """Per-key mutex, re-entrant per transaction. False if timeout ran out."""
        if key in self._held:
            return True
        try:
            async with asyncio.timeout(timeout):
                await self._stack.enter_async_context(self._backend.locks.hold(key))
        except TimeoutError:
            return False
        self._held.add(key)
        return True

    def record(self, key: str) -> IdempotencyRecord | None:
        if key in self.staged_records:
            return self.staged_records[key]
        return self._backend.records.get(key)

    def payment(self, payment_id: str) -> Payment | None:
        if payment_id in self.staged_payments:
            return self.staged_payments[payment_id]
        return self._backend.payments.get(payment_id)

    def committed_records(self) -> dict[str, IdempotencyRecord]:
        return self._backend.records

    def apply(self) -> None:
        records = self._backend.records
        for key, seen in self.staged_deletes.items():
            # A newer entry committed since the sweep stays
            if records.get(key) is seen:
                del records[key]
        records.update(self.staged_records)
        self._backend.payments.update(self.staged_payments)


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryLedger:
    def __init__(self, tx: MemoryTransaction) -> None:
        self._tx = tx

    def _live(self, key: str, now: datetime) -> IdempotencyRecord | None:
        record = self._tx.record(key)
        if record is None or record.is_expired(now):
            return None
        return record

    async def lock_for_update(
        self, key: str, now: datetime, timeout: float | None = None
    ) -> Result[IdempotencyRecord | None, StoreError]:
        if not await self._tx.hold(key, timeout):
            return Error(
                StoreError(StoreErrorKind.LOCK_TIMEOUT, f"Timed out waiting for key: {key}")
            )
        return Ok(self._live(key, now))

    async def insert(
        self, record: IdempotencyRecord, now: datetime
    ) -> Result[None, StoreError]:
        if self._live(record.key, now) is not None:
            return Error(
                StoreError(
                    StoreErrorKind.DUPLICATE_KEY,
                    f"Duplicate idempotency key: {record.key}",
                )
            )
        self._tx.staged_records[record.key] = record
        return Ok(None)

    async def complete_with(
        self, key: str, payment_id: str, snapshot: str
    ) -> Result[IdempotencyRecord, StoreError]:
        record = self._tx.record(key)
        if record is None or record.status != RecordStatus.PROCESSING:
            return Error(
                StoreError(
                    StoreErrorKind.NOT_PROCESSING,
                    f"No processing record for key: {key}",
                )
            )
        completed = dataclasses.replace(
            record,
            status=RecordStatus.COMPLETED,
            payment_id=payment_id,
            response_snapshot=snapshot,
        )
        self._tx.staged_records[key] = completed
        return Ok(completed)

    async def get(
        self, key: str, now: datetime
    ) -> Result[IdempotencyRecord | None, StoreError]:
        return Ok(self._live(key, now))

    async def delete_expired(self, now: datetime) -> Result[int, StoreError]:
        expired = {
            key: record
            for key, record in self._tx.committed_records().items()
            if record.is_expired(now)
        }
        self._tx.staged_deletes.update(expired)
        return Ok(len(expired))


# ═══════════════════════════════════════════════════════════════════════════════
# Payment Store
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryPaymentStore:
    def __init__(self, tx: MemoryTransaction) -> None:
        self._tx = tx

    async def insert(self, payment: Payment) -> Result[None, StoreError]:
        if self._tx.payment(payment.id) is not None:
            return Error(
                StoreError(StoreErrorKind.CONFLICT, f"Duplicate payment id: {payment.id}")
            )
        self._tx.staged_payments[payment.id] = payment
        return Ok(None)

    async def find_by_id(self, payment_id: str) -> Result[Payment | None, StoreError]:
        return Ok(self._tx.payment(payment_id))


__all__ = (
    "MemoryBackend",
    "MemoryTransaction",
    "MemoryLedger",
    "MemoryPaymentStore",
)
