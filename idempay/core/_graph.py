"""
Creation graph — the idempotent creation protocol as nodnod nodes.

Every decision is a node; the outcome is picked by polymorphic routing.
Runs inside one transaction opened by the caller.

Architecture:
    CreationSpec (injected)
         │
         ▼
    SpecNode
         │
         ▼
    LockedRecordNode (lock key, read live record)
         │
         ├── StoreErrorNode ──────────────┐
         ├── LockTimeoutNode ─────────────┤
         ├── ProcessingRecordNode ────────┤
         ├── CompletedRecordNode ─────────┼── CreationOutcome (@polymorphic)
         │      └── MatchingFingerprintNode ┤          │
         └── NoRecordNode ────────────────┘          ▼
                                               FinalResultNode

Note: НЕ используем 'from __future__ import annotations' потому что
nodnod использует type hints в runtime для dependency resolution.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from nodnod import NodeError, polymorphic, case
from combinators import lift as L

from kungfu import Result, Ok, Error

from idempay._types import Clock
from idempay.core._runner import node, compile_graph
from idempay.idempotency import IdempotencyRecord, Policy
from idempay.payments import (
    CreatedPayment,
    Currency,
    Payment,
    PaymentError,
    PaymentErrors,
    PaymentRequest,
    Processor,
    ProcessorOutcome,
)
from idempay.storage import StoreError, Transaction


# ═══════════════════════════════════════════════════════════════════════════════
# Input — Spec (injected)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CreationSpec:
    """
    One creation attempt.

    Note: key / request are already validated, currency is the parsed
    Currency and fingerprint is computed. tx is the open transaction the
    whole protocol runs in.
    """

    key: str
    request: PaymentRequest
    currency: Currency
    fingerprint: str
    tx: Transaction
    processor: Processor
    policy: Policy
    clock: Clock


# ═══════════════════════════════════════════════════════════════════════════════
# Entry / Lock
# ═══════════════════════════════════════════════════════════════════════════════


@node
class SpecNode:
    """Wraps CreationSpec for graph."""

    def __init__(self, spec: CreationSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, spec: CreationSpec) -> "SpecNode":
        return cls(spec)


@node
class LockedRecordNode:
    """
    Takes the per-key lock and reads the live record.

    Blocks while another transaction holds the key, at most
    policy.lock_timeout. Only the per-key wait counts against it; waits on
    unrelated keys or on the database itself do not.
    """

    def __init__(
        self,
        spec: CreationSpec,
        now: datetime,
        record: IdempotencyRecord | None = None,
        store_error: StoreError | None = None,
        timed_out: bool = False,
    ) -> None:
        self.spec = spec
        self.now = now
        self.record = record
        self.store_error = store_error
        self.timed_out = timed_out

    @classmethod
    async def __compose__(cls, spec_node: SpecNode) -> "LockedRecordNode":
        spec = spec_node.spec
        now = spec.clock()
        match await spec.tx.ledger.lock_for_update(
            spec.key, now, spec.policy.lock_timeout_seconds
        ):
            case Ok(record):
                return cls(spec, now, record=record)
            case Error(err) if err.is_lock_timeout:
                return cls(spec, now, timed_out=True)
            case Error(err):
                return cls(spec, now, store_error=err)


# ═══════════════════════════════════════════════════════════════════════════════
# State Nodes — each validates one situation after the lock
# ═══════════════════════════════════════════════════════════════════════════════


@node
class StoreErrorNode:
    def __init__(self, error: StoreError, spec: CreationSpec) -> None:
        self.error = error
        self.spec = spec

    @classmethod
    def __compose__(cls, locked: LockedRecordNode) -> "StoreErrorNode":
        if locked.store_error is None:
            raise NodeError("No store error")
        return cls(locked.store_error, locked.spec)


@node
class LockTimeoutNode:
    def __init__(self, spec: CreationSpec) -> None:
        self.spec = spec

    @classmethod
    def __compose__(cls, locked: LockedRecordNode) -> "LockTimeoutNode":
        if not locked.timed_out:
            raise NodeError("Lock acquired")
        return cls(locked.spec)


@node
class ProcessingRecordNode:
    """Validates: record exists, PROCESSING."""

    def __init__(self, record: IdempotencyRecord, spec: CreationSpec) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, locked: LockedRecordNode) -> "ProcessingRecordNode":
        record = locked.record
        if record is None:
            raise NodeError("No record")
        if not record.is_processing:
            raise NodeError("Not processing")
        return cls(record, locked.spec)


@node
class CompletedRecordNode:
    """Validates: record exists, COMPLETED."""

    def __init__(self, record: IdempotencyRecord, spec: CreationSpec) -> None:
        self.record = record
        self.spec = spec

    @classmethod
    def __compose__(cls, locked: LockedRecordNode) -> "CompletedRecordNode":
        record = locked.record
        if record is None:
            raise NodeError("No record")
        if not record.is_completed:
            raise NodeError("Not completed")
        return cls(record, locked.spec)


@node
class MatchingFingerprintNode:
    """
    Validates: stored fingerprint equals the current request's.

    Note: Сравниваем digest, а не поля.
    Any fingerprinted difference is a conflict, even one validation ignores.
    """

    def __init__(self, completed: CompletedRecordNode) -> None:
        self.completed = completed

    @classmethod
    def __compose__(cls, completed: CompletedRecordNode) -> "MatchingFingerprintNode":
        if completed.record.request_fingerprint != completed.spec.fingerprint:
            raise NodeError("Fingerprint mismatch")
        return cls(completed)


@node
class NoRecordNode:
    """Validates: lock held, no live record."""

    def __init__(self, spec: CreationSpec, now: datetime) -> None:
        self.spec = spec
        self.now = now

    @classmethod
    def __compose__(cls, locked: LockedRecordNode) -> "NoRecordNode":
        if locked.store_error is not None:
            raise NodeError("Store error")
        if locked.timed_out:
            raise NodeError("Lock timeout")
        if locked.record is not None:
            raise NodeError("Record exists")
        return cls(locked.spec, locked.now)


# ═══════════════════════════════════════════════════════════════════════════════
# Outcome Types
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OutcomeOk:
    payment: Payment
    replayed: bool


@dataclass(frozen=True)
class OutcomeError:
    """
    Error outcome.

    cause is the StoreError or exception behind an INTERNAL_ERROR, for logs.
    """

    error: PaymentError
    cause: StoreError | Exception | None = None


type Outcome = OutcomeOk | OutcomeError


def _store_failure(err: StoreError) -> OutcomeError:
    return OutcomeError(PaymentErrors.internal("internal server error"), err)


def _replay(record: IdempotencyRecord) -> Outcome:
    snapshot = record.response_snapshot
    if snapshot is None:
        return OutcomeError(
            PaymentErrors.internal("internal server error"),
            StoreError.failure(f"Completed record without snapshot: {record.key}"),
        )
    try:
        payment = Payment.from_snapshot(snapshot)
    except (ValueError, KeyError) as e:
        return OutcomeError(PaymentErrors.internal("internal server error"), e)
    return OutcomeOk(payment=payment, replayed=True)


def _resolve_completed(spec: CreationSpec, record: IdempotencyRecord) -> Outcome:
    if record.request_fingerprint != spec.fingerprint:
        return OutcomeError(PaymentErrors.key_conflict(spec.key))
    return _replay(record)


async def _resolve_race(spec: CreationSpec) -> Outcome:
    """
    Insert lost to a concurrent writer: lock again and route on what won.

    Note: Повторный lock того же ключа в той же транзакции — no-op
    для KeyLocks; FOR UPDATE ждёт commit победителя.
    """
    match await spec.tx.ledger.lock_for_update(
        spec.key, spec.clock(), spec.policy.lock_timeout_seconds
    ):
        case Error(err) if err.is_lock_timeout:
            return OutcomeError(PaymentErrors.in_progress(spec.key))
        case Error(err):
            return _store_failure(err)
        case Ok(record) if record is not None and record.is_completed:
            return _resolve_completed(spec, record)
        case Ok(_):
            return OutcomeError(PaymentErrors.in_progress(spec.key))


async def _settle(spec: CreationSpec) -> Outcome:
    """Processor → payment insert → ledger completion."""
    request = spec.request
    ledger = spec.tx.ledger

    settled = await L.catching_async(
        lambda: spec.processor.process(request),
        on_error=lambda e: e,
    )
    outcome: ProcessorOutcome
    match settled:
        case Error(exc):
            return OutcomeError(PaymentErrors.internal("payment processor failed"), exc)
        case Ok(outcome):
            pass

    payment = Payment(
        id=str(uuid4()),
        amount=request.amount,
        currency=spec.currency,
        customer_id=request.customer_id,
        ride_id=request.ride_id,
        status=outcome.status,
        card_last4=outcome.card_last4,
        created_at=spec.clock(),
        description=request.description,
        fail_reason=outcome.fail_reason,
    )

    match await spec.tx.payments.insert(payment):
        case Error(err):
            return _store_failure(err)
        case Ok(_):
            pass

    match await ledger.complete_with(spec.key, payment.id, payment.to_snapshot()):
        case Error(err):
            return _store_failure(err)
        case Ok(_):
            return OutcomeOk(payment=payment, replayed=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Polymorphic Outcome
# ═══════════════════════════════════════════════════════════════════════════════


@polymorphic[Outcome]
class CreationOutcome:
    """
    Polymorphic router — each @case depends on a validated state node.

    Note: Проверки уже сделаны в state nodes, здесь только логика.
    Exactly one case can succeed for any locked state.
    """

    @case
    def store_error(cls, node: StoreErrorNode) -> Outcome:
        return _store_failure(node.error)

    @case
    def lock_timeout(cls, node: LockTimeoutNode) -> Outcome:
        """Another attempt held the key past lock_timeout."""
        return OutcomeError(PaymentErrors.in_progress(node.spec.key))

    @case
    def in_progress(cls, node: ProcessingRecordNode) -> Outcome:
        return OutcomeError(PaymentErrors.in_progress(node.spec.key))

    @case
    def replay(cls, matched: MatchingFingerprintNode) -> Outcome:
        """Stored snapshot verbatim; the processor is not called."""
        return _replay(matched.completed.record)

    @case
    def key_conflict(cls, completed: CompletedRecordNode) -> Outcome:
        """
        Same key, different payload.

        Note: Этот case выполнится если MatchingFingerprintNode fail.
        """
        if completed.record.request_fingerprint == completed.spec.fingerprint:
            raise NodeError("Fingerprint matches")
        return OutcomeError(PaymentErrors.key_conflict(completed.spec.key))

    @case
    async def create_new(cls, node: NoRecordNode) -> Outcome:
        """Claim the key, settle, persist."""
        spec = node.spec
        record = IdempotencyRecord.processing(
            spec.key, spec.fingerprint, node.now, spec.policy.key_ttl
        )

        match await spec.tx.ledger.insert(record, node.now):
            case Error(err) if err.is_duplicate_key:
                return await _resolve_race(spec)
            case Error(err):
                return _store_failure(err)
            case Ok(_):
                pass

        return await _settle(spec)


# ═══════════════════════════════════════════════════════════════════════════════
# Final Node
# ═══════════════════════════════════════════════════════════════════════════════


@node
class FinalResultNode:
    """Converts Outcome to typed Result."""

    def __init__(self, outcome: Outcome) -> None:
        self.outcome = outcome

    @classmethod
    def __compose__(cls, outcome: CreationOutcome) -> "FinalResultNode":
        return cls(outcome.value)

    def to_result(self) -> Result[CreatedPayment, OutcomeError]:
        match self.outcome:
            case OutcomeOk(payment=p, replayed=r):
                return Ok(CreatedPayment(payment=p, replayed=r))
            case OutcomeError() as err:
                return Error(err)


CREATION_GRAPH = compile_graph(FinalResultNode)


# ═══════════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════════


async def run_creation(spec: CreationSpec) -> Result[CreatedPayment, OutcomeError]:
    """
    Run the creation protocol inside spec.tx.

    An Error result leaves writes staged in spec.tx; the caller must roll
    the transaction back.
    """
    final = await CREATION_GRAPH.run(spec)
    return final.to_result()


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "CreationSpec",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "SpecNode",
    "LockedRecordNode",
    "StoreErrorNode",
    "LockTimeoutNode",
    "ProcessingRecordNode",
    "CompletedRecordNode",
    "MatchingFingerprintNode",
    "NoRecordNode",
    "CreationOutcome",
    "FinalResultNode",
    "CREATION_GRAPH",
    "run_creation",
)
