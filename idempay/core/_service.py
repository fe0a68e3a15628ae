"""
Payment service — the three public operations.

    service = PaymentService(backend, SimulatedProcessor(), Policy())

    match await service.create_payment(key, request):
        case Ok(created):
            created.payment, created.replayed
        case Error(err):
            err.code, err.retryable
"""

from __future__ import annotations

import structlog
from kungfu import Result, Ok, Error

from idempay._types import Clock, utcnow
from idempay.core._graph import CreationSpec, OutcomeError, run_creation
from idempay.idempotency import IdempotencyRecord, Policy, fingerprint
from idempay.payments import (
    CreatedPayment,
    Payment,
    PaymentError,
    PaymentErrors,
    PaymentRequest,
    Processor,
    validate_key,
    validate_request,
)
from idempay.storage import Backend, StoreError

logger = structlog.get_logger().bind(component="payment_service")


class Rollback(Exception):
    """Raised inside backend.begin() to discard every staged write."""

    def __init__(self, reason: OutcomeError | StoreError) -> None:
        super().__init__(reason)
        self.reason = reason


class PaymentService:
    """
    Idempotent payment creation and lookups.

    Note: Валидация — до транзакции, без побочных эффектов.
    Everything after it runs in one backend transaction that either commits
    whole or rolls back whole.
    """

    def __init__(
        self,
        backend: Backend,
        processor: Processor,
        policy: Policy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._backend = backend
        self._processor = processor
        self._policy = policy if policy is not None else Policy()
        self._clock = clock

    @property
    def policy(self) -> Policy:
        return self._policy

    # ═══════════════════════════════════════════════════════════════════════════
    # CreatePayment
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_payment(
        self, key: str | None, request: PaymentRequest
    ) -> Result[CreatedPayment, PaymentError]:
        log = logger.bind(key=key)

        match validate_key(key):
            case Error(err):
                log.info("payment.rejected", outcome=err.code.value)
                return Error(err)
            case Ok(valid_key):
                pass

        match validate_request(request, self._policy.currencies):
            case Error(err):
                log.info("payment.rejected", outcome=err.code.value, details=list(err.details))
                return Error(err)
            case Ok(currency):
                pass

        try:
            async with self._backend.begin() as tx:
                spec = CreationSpec(
                    key=valid_key,
                    request=request,
                    currency=currency,
                    fingerprint=fingerprint(request),
                    tx=tx,
                    processor=self._processor,
                    policy=self._policy,
                    clock=self._clock,
                )
                match await run_creation(spec):
                    case Ok(created):
                        pass
                    case Error(failure):
                        raise Rollback(failure)
        except Rollback as rb:
            return Error(self._failed(log, rb.reason))
        except Exception:
            log.exception("payment.failed", outcome="commit_error")
            return Error(PaymentErrors.internal("internal server error"))

        log.info(
            "payment.replayed" if created.replayed else "payment.created",
            outcome="replayed" if created.replayed else "created",
            payment_id=created.payment.id,
            status=created.payment.status.value,
            replayed=created.replayed,
        )
        return Ok(created)

    @staticmethod
    def _failed(log: structlog.typing.FilteringBoundLogger, reason: OutcomeError | StoreError) -> PaymentError:
        match reason:
            case OutcomeError(error=error, cause=None):
                log.info("payment.rejected", outcome=error.code.value, replayed=False)
                return error
            case OutcomeError(error=error, cause=cause):
                log.error("payment.failed", outcome=error.code.value, cause=str(cause))
                return error
            case StoreError() as err:
                log.error("payment.failed", outcome="store_error", cause=err.message)
                return PaymentErrors.internal("internal server error")

    # ═══════════════════════════════════════════════════════════════════════════
    # Lookups
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_payment(self, payment_id: str) -> Result[Payment, PaymentError]:
        try:
            async with self._backend.begin(readonly=True) as tx:
                found = await tx.payments.find_by_id(payment_id)
        except Exception:
            logger.exception("payment.lookup_failed", payment_id=payment_id)
            return Error(PaymentErrors.internal("internal server error"))

        match found:
            case Ok(None):
                return Error(PaymentErrors.payment_not_found(payment_id))
            case Ok(payment):
                return Ok(payment)
            case Error(err):
                logger.error("payment.lookup_failed", payment_id=payment_id, cause=err.message)
                return Error(PaymentErrors.internal("internal server error"))

    async def get_by_key(self, key: str) -> Result[IdempotencyRecord, PaymentError]:
        """Live ledger entry for key. Expired entries are not found."""
        try:
            async with self._backend.begin(readonly=True) as tx:
                found = await tx.ledger.get(key, self._clock())
        except Exception:
            logger.exception("idempotency.lookup_failed", key=key)
            return Error(PaymentErrors.internal("internal server error"))

        match found:
            case Ok(None):
                return Error(PaymentErrors.key_not_found(key))
            case Ok(record):
                return Ok(record)
            case Error(err):
                logger.error("idempotency.lookup_failed", key=key, cause=err.message)
                return Error(PaymentErrors.internal("internal server error"))


__all__ = ("Rollback", "PaymentService")
