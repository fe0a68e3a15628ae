"""
SQLAlchemy backend — ledger and payment store on one AsyncSession.

Usage:
    session_factory, engine = await create_database(url)
    backend = SQLAlchemyBackend(session_factory)

    async with backend.begin() as tx:
        match await tx.ledger.lock_for_update(key, now):
            case Ok(None):
                ...

Row locks:
    Postgres: SELECT ... FOR UPDATE on the ledger row; SET LOCAL lock_timeout
    bounds the wait.
    SQLite has no row locks; the backend holds a KeyLocks mutex for the
    rest of the transaction instead. Same scope (one key), same blocking.
    Only the KeyLocks wait is timed. The database write lock taken by
    BEGIN IMMEDIATE waits on busy_timeout.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Any, cast

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kungfu import Result, Ok, Error

from idempay.db import READ_ONLY, IdempotencyRow, PaymentRow
from idempay.idempotency import IdempotencyRecord, RecordStatus
from idempay.payments import Currency, Payment, PaymentStatus
from idempay.storage._locks import KeyLocks
from idempay.storage._ports import StoreError, StoreErrorKind

# Dialects whose SELECT ... FOR UPDATE is a no-op
_NO_ROW_LOCKS = frozenset({"sqlite"})

# Postgres lock_not_available
_LOCK_NOT_AVAILABLE = "55P03"


# ═══════════════════════════════════════════════════════════════════════════════
# Row mapping
# ═══════════════════════════════════════════════════════════════════════════════


def _to_record(row: IdempotencyRow) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row.key,
        request_fingerprint=row.request_fingerprint,
        status=RecordStatus(row.status),
        created_at=row.created_at,
        expires_at=row.expires_at,
        payment_id=row.payment_id,
        response_snapshot=row.response_snapshot,
    )


def _to_payment(row: PaymentRow) -> Payment:
    return Payment(
        id=row.id,
        amount=row.amount,
        currency=Currency(row.currency),
        customer_id=row.customer_id,
        ride_id=row.ride_id,
        status=PaymentStatus(row.status),
        card_last4=row.card_last4,
        created_at=row.created_at,
        description=row.description,
        fail_reason=row.fail_reason,
    )


def _lock_timeout(key: str, cause: Exception | None = None) -> StoreError:
    return StoreError(StoreErrorKind.LOCK_TIMEOUT, f"Timed out waiting for key: {key}", cause)


def _set_lock_timeout(timeout: float | None) -> Any:
    """SET LOCAL lock_timeout; None (or 0) disables it."""
    millis = 0 if timeout is None else max(1, round(timeout * 1000))
    return text(f"SET LOCAL lock_timeout = {millis}")


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _insert_ignoring_duplicate(dialect: str, record: IdempotencyRecord) -> Any:
    """INSERT ... ON CONFLICT (key) DO NOTHING."""
    values = dict(
        key=record.key,
        request_fingerprint=record.request_fingerprint,
        payment_id=record.payment_id,
        response_snapshot=record.response_snapshot,
        status=record.status.value,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )
    match dialect:
        case "sqlite":
            return (
                sqlite_insert(IdempotencyRow)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["key"])
            )
        case "postgresql":
            return (
                pg_insert(IdempotencyRow)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["key"])
            )
        case _:
            raise NotImplementedError(f"ON CONFLICT insert not supported for dialect {dialect!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# Backend / Transaction
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyBackend:
    """
    Backend over an async_sessionmaker.

    One transaction = one AsyncSession with session.begin().

    Note: KeyLocks живёт в backend, а не в транзакции — он общий для всех
    транзакций одного процесса. Pass a shared KeyLocks when several backends
    point at the same SQLite file.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: KeyLocks | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.locks = locks if locks is not None else KeyLocks()

    @asynccontextmanager
    async def begin(self, *, readonly: bool = False) -> AsyncIterator[SQLAlchemyTransaction]:
        # Exit order: commit/rollback, close session, then release key locks
        async with AsyncExitStack() as stack:
            async with self._session_factory() as session, session.begin():
                if readonly:
                    # Must precede the first statement; the begin listener reads it
                    await session.connection(execution_options={READ_ONLY: True})
                yield SQLAlchemyTransaction(session, stack, self.locks)


class SQLAlchemyTransaction:
    def __init__(self, session: AsyncSession, stack: AsyncExitStack, locks: KeyLocks) -> None:
        self._session = session
        self._stack = stack
        self._locks = locks
        self._held: set[str] = set()
        self._dialect = session.bind.dialect.name
        self._ledger = SQLAlchemyLedger(self)
        self._payments = SQLAlchemyPaymentStore(self)

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def dialect(self) -> str:
        return self._dialect

    @property
    def ledger(self) -> SQLAlchemyLedger:
        return self._ledger

    @property
    def payments(self) -> SQLAlchemyPaymentStore:
        return self._payments

    @property
    def has_row_locks(self) -> bool:
        return self._dialect not in _NO_ROW_LOCKS

    async def hold(self, key: str, timeout: float | None = None) -> bool:
        """
        Per-key mutex for dialects without row locks. Re-entrant per transaction.

        False if timeout ran out before the key was free.
        """
        if self.has_row_locks or key in self._held:
            return True
        try:
            async with asyncio.timeout(timeout):
                await self._stack.enter_async_context(self._locks.hold(key))
        except TimeoutError:
            return False
        self._held.add(key)
        return True


# ═══════════════════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyLedger:
    def __init__(self, tx: SQLAlchemyTransaction) -> None:
        self._tx = tx

    async def lock_for_update(
        self, key: str, now: datetime, timeout: float | None = None
    ) -> Result[IdempotencyRecord | None, StoreError]:
        if not await self._tx.hold(key, timeout):
            return Error(_lock_timeout(key))

        session = self._tx.session
        bounded = timeout is not None and self._tx.dialect == "postgresql"
        try:
            if bounded:
                await session.execute(_set_lock_timeout(timeout))
            stmt = (
                select(IdempotencyRow)
                .where(IdempotencyRow.key == key, IdempotencyRow.expires_at > now)
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if bounded:
                # Later statements of this transaction wait without limit
                await session.execute(_set_lock_timeout(None))
        except DBAPIError as e:
            if _sqlstate(e) == _LOCK_NOT_AVAILABLE:
                return Error(_lock_timeout(key, e))
            return Error(StoreError.failure(f"Failed to lock key {key}: {e}", e))
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to lock key {key}: {e}", e))
        return Ok(_to_record(row) if row is not None else None)

    async def insert(
        self, record: IdempotencyRecord, now: datetime
    ) -> Result[None, StoreError]:
        session = self._tx.session
        try:
            # An expired row with the same key is dead weight; replace it
            await session.execute(
                delete(IdempotencyRow).where(
                    IdempotencyRow.key == record.key,
                    IdempotencyRow.expires_at <= now,
                )
            )
            stmt = _insert_ignoring_duplicate(self._tx.dialect, record)
            cursor = cast(CursorResult[Any], await session.execute(stmt))
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to insert key {record.key}: {e}", e))

        if cursor.rowcount == 0:
            return Error(
                StoreError(
                    StoreErrorKind.DUPLICATE_KEY,
                    f"Duplicate idempotency key: {record.key}",
                )
            )
        return Ok(None)

    async def complete_with(
        self, key: str, payment_id: str, snapshot: str
    ) -> Result[IdempotencyRecord, StoreError]:
        session = self._tx.session
        try:
            stmt = (
                update(IdempotencyRow)
                .where(
                    IdempotencyRow.key == key,
                    IdempotencyRow.status == RecordStatus.PROCESSING.value,
                )
                .values(
                    status=RecordStatus.COMPLETED.value,
                    payment_id=payment_id,
                    response_snapshot=snapshot,
                )
                .execution_options(synchronize_session=False)
            )
            cursor = cast(CursorResult[Any], await session.execute(stmt))
            if cursor.rowcount != 1:
                return Error(
                    StoreError(
                        StoreErrorKind.NOT_PROCESSING,
                        f"No processing record for key: {key}",
                    )
                )
            # Identity map may hold the pre-update state
            stmt = (
                select(IdempotencyRow)
                .where(IdempotencyRow.key == key)
                .execution_options(populate_existing=True)
            )
            row = (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to complete key {key}: {e}", e))
        return Ok(_to_record(row))

    async def get(
        self, key: str, now: datetime
    ) -> Result[IdempotencyRecord | None, StoreError]:
        try:
            stmt = select(IdempotencyRow).where(
                IdempotencyRow.key == key, IdempotencyRow.expires_at > now
            )
            row = (await self._tx.session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to get key {key}: {e}", e))
        return Ok(_to_record(row) if row is not None else None)

    async def delete_expired(self, now: datetime) -> Result[int, StoreError]:
        try:
            stmt = (
                delete(IdempotencyRow)
                .where(IdempotencyRow.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            cursor = cast(CursorResult[Any], await self._tx.session.execute(stmt))
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to delete expired records: {e}", e))
        return Ok(cursor.rowcount)


# ═══════════════════════════════════════════════════════════════════════════════
# Payment Store
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyPaymentStore:
    def __init__(self, tx: SQLAlchemyTransaction) -> None:
        self._tx = tx

    async def insert(self, payment: Payment) -> Result[None, StoreError]:
        session = self._tx.session
        row = PaymentRow(
            id=payment.id,
            amount=payment.amount,
            currency=payment.currency.value,
            customer_id=payment.customer_id,
            ride_id=payment.ride_id,
            status=payment.status.value,
            card_last4=payment.card_last4,
            description=payment.description,
            fail_reason=payment.fail_reason,
            created_at=payment.created_at,
        )
        try:
            if await session.get(PaymentRow, payment.id) is not None:
                return Error(
                    StoreError(StoreErrorKind.CONFLICT, f"Duplicate payment id: {payment.id}")
                )
            session.add(row)
            await session.flush()
        except IntegrityError as e:
            return Error(
                StoreError(StoreErrorKind.CONFLICT, f"Duplicate payment id: {payment.id}", e)
            )
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to insert payment {payment.id}: {e}", e))
        return Ok(None)

    async def find_by_id(self, payment_id: str) -> Result[Payment | None, StoreError]:
        try:
            row = await self._tx.session.get(PaymentRow, payment_id)
        except SQLAlchemyError as e:
            return Error(StoreError.failure(f"Failed to find payment {payment_id}: {e}", e))
        return Ok(_to_payment(row) if row is not None else None)


__all__ = (
    "SQLAlchemyBackend",
    "SQLAlchemyTransaction",
    "SQLAlchemyLedger",
    "SQLAlchemyPaymentStore",
)
