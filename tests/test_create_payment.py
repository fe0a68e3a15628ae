"""PaymentService: creation, replay, conflict, expiry, lookups."""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Ok

from idempay.core import PaymentService
from idempay.idempotency import IdempotencyRecord, Policy, RecordStatus, fingerprint
from idempay.payments import (
    Currency,
    ErrorCategory,
    ErrorCode,
    InstantProcessor,
    PaymentStatus,
)

from tests.helpers import BASE_REQUEST, make_request, unwrap, unwrap_err


class GatedProcessor(InstantProcessor):
    """Blocks every call until release is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def process(self, request):
        self.entered.set()
        await self.release.wait()
        return await super().process(request)


class StaleFirstLookLedger:
    """
    Ledger whose first lock_for_update reports the key as unused.

    Stands in for a writer that committed the key between our lookup and
    our insert.
    """

    def __init__(self, ledger) -> None:
        self._ledger = ledger
        self._looked = False

    async def lock_for_update(self, key, now, timeout=None):
        result = await self._ledger.lock_for_update(key, now, timeout)
        if not self._looked:
            self._looked = True
            return Ok(None)
        return result

    def __getattr__(self, name):
        return getattr(self._ledger, name)


class StaleFirstLookTx:
    def __init__(self, tx) -> None:
        self.ledger = StaleFirstLookLedger(tx.ledger)
        self.payments = tx.payments


class StaleFirstLookBackend:
    def __init__(self, backend) -> None:
        self._backend = backend

    @asynccontextmanager
    async def begin(self, *, readonly=False):
        async with self._backend.begin(readonly=readonly) as tx:
            yield StaleFirstLookTx(tx)


# ═══════════════════════════════════════════════════════════════════════════════
# First request / replay
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_request_creates_payment(service, processor, clock):
    created = unwrap(await service.create_payment("k1", BASE_REQUEST))

    payment = created.payment
    assert not created.replayed
    assert payment.status == PaymentStatus.FAILED
    assert payment.fail_reason == "insufficient_funds"
    assert payment.card_last4 == "0002"
    assert payment.currency == Currency.IDR
    assert payment.amount == Decimal("85000")
    assert payment.created_at == clock()
    assert processor.call_count == 1

    record = unwrap(await service.get_by_key("k1"))
    assert record.status == RecordStatus.COMPLETED
    assert record.payment_id == payment.id
    assert record.request_fingerprint == fingerprint(BASE_REQUEST)
    assert record.expires_at == clock() + timedelta(hours=24)


@pytest.mark.asyncio
async def test_retry_replays_without_processing(service, processor):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    second = unwrap(await service.create_payment("k1", BASE_REQUEST))

    assert second.replayed
    assert second.payment == first.payment
    assert processor.call_count == 1


@pytest.mark.asyncio
async def test_amount_scale_does_not_break_replay(service, processor):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    second = unwrap(await service.create_payment("k1", make_request(amount=Decimal("85000.00"))))

    assert second.replayed
    assert second.payment.id == first.payment.id
    assert processor.call_count == 1


@pytest.mark.asyncio
async def test_description_change_still_replays(service):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    second = unwrap(await service.create_payment("k1", make_request(description="late note")))

    assert second.replayed
    assert second.payment.description is None
    assert second.payment.id == first.payment.id


@pytest.mark.asyncio
async def test_successful_card(service):
    created = unwrap(
        await service.create_payment("k1", make_request(card_number="4242424242424242"))
    )
    assert created.payment.status == PaymentStatus.SUCCEEDED
    assert created.payment.fail_reason is None


@pytest.mark.asyncio
async def test_distinct_keys_create_distinct_payments(service, processor):
    a = unwrap(await service.create_payment("a", BASE_REQUEST))
    b = unwrap(await service.create_payment("b", BASE_REQUEST))

    assert a.payment.id != b.payment.id
    assert processor.call_count == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Conflict / in progress
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_same_key_different_payload_conflicts(service, processor):
    unwrap(await service.create_payment("k1", BASE_REQUEST))

    err = unwrap_err(await service.create_payment("k1", make_request(amount=Decimal("999"))))
    assert err.code == ErrorCode.IDEMPOTENCY_KEY_CONFLICT
    assert err.category == ErrorCategory.CONFLICT
    assert not err.retryable
    assert processor.call_count == 1

    record = unwrap(await service.get_by_key("k1"))
    assert record.request_fingerprint == fingerprint(BASE_REQUEST)


@pytest.mark.asyncio
async def test_processing_record_reports_in_progress(service, backend, processor, clock):
    record = IdempotencyRecord.processing("k1", fingerprint(BASE_REQUEST), clock(), timedelta(hours=24))
    async with backend.begin() as tx:
        unwrap(await tx.ledger.insert(record, clock()))

    err = unwrap_err(await service.create_payment("k1", BASE_REQUEST))
    assert err.code == ErrorCode.PAYMENT_PROCESSING
    assert err.retryable
    assert processor.call_count == 0


@pytest.mark.asyncio
async def test_lock_wait_timeout_reports_in_progress(backend, policy, clock):
    gated = GatedProcessor()
    patient = PaymentService(backend, gated, policy, clock)
    impatient = PaymentService(backend, gated, policy.with_lock_timeout(seconds=0.05), clock)

    first = asyncio.create_task(patient.create_payment("k1", BASE_REQUEST))
    await gated.entered.wait()

    err = unwrap_err(await impatient.create_payment("k1", BASE_REQUEST))
    assert err.code == ErrorCode.PAYMENT_PROCESSING

    gated.release.set()
    created = unwrap(await first)
    assert not created.replayed
    assert gated.call_count == 1

    replay = unwrap(await impatient.create_payment("k1", BASE_REQUEST))
    assert replay.replayed
    assert replay.payment.id == created.payment.id


@pytest.mark.asyncio
async def test_busy_key_does_not_time_out_an_unused_key(backend, policy, clock):
    gated = GatedProcessor()
    patient = PaymentService(backend, gated, policy, clock)
    impatient = PaymentService(
        backend, InstantProcessor(), policy.with_lock_timeout(seconds=0.05), clock
    )

    first = asyncio.create_task(patient.create_payment("k1", BASE_REQUEST))
    await gated.entered.wait()

    second = asyncio.create_task(impatient.create_payment("k2", BASE_REQUEST))
    await asyncio.sleep(0.2)
    gated.release.set()

    assert not unwrap(await first).replayed
    created = unwrap(await second)
    assert not created.replayed
    assert created.payment.status == PaymentStatus.FAILED


@pytest.mark.asyncio
async def test_lookups_do_not_wait_for_a_settlement(backend, policy, clock):
    gated = GatedProcessor()
    service = PaymentService(backend, gated, policy, clock)
    gated.release.set()
    done = unwrap(await service.create_payment("k0", BASE_REQUEST))

    gated.release.clear()
    gated.entered.clear()
    pending = asyncio.create_task(service.create_payment("k1", BASE_REQUEST))
    await gated.entered.wait()

    async with asyncio.timeout(1):
        assert unwrap(await service.get_payment(done.payment.id)) == done.payment
        assert unwrap(await service.get_by_key("k0")).payment_id == done.payment.id
        # Not committed yet
        missing = unwrap_err(await service.get_by_key("k1"))
        assert missing.code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND

    gated.release.set()
    assert not unwrap(await pending).replayed


# ═══════════════════════════════════════════════════════════════════════════════
# Insert race
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_lost_insert_race_replays_winner(service, backend, processor, policy, clock):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    racer = PaymentService(StaleFirstLookBackend(backend), processor, policy, clock)

    again = unwrap(await racer.create_payment("k1", BASE_REQUEST))
    assert again.replayed
    assert again.payment == first.payment
    assert processor.call_count == 1


@pytest.mark.asyncio
async def test_lost_insert_race_with_other_payload_conflicts(
    service, backend, processor, policy, clock
):
    unwrap(await service.create_payment("k1", BASE_REQUEST))
    racer = PaymentService(StaleFirstLookBackend(backend), processor, policy, clock)

    err = unwrap_err(await racer.create_payment("k1", make_request(amount=Decimal("999"))))
    assert err.code == ErrorCode.IDEMPOTENCY_KEY_CONFLICT
    assert processor.call_count == 1


@pytest.mark.asyncio
async def test_lost_insert_race_against_processing_entry(backend, processor, policy, clock):
    record = IdempotencyRecord.processing(
        "k1", fingerprint(BASE_REQUEST), clock(), timedelta(hours=24)
    )
    async with backend.begin() as tx:
        unwrap(await tx.ledger.insert(record, clock()))
    racer = PaymentService(StaleFirstLookBackend(backend), processor, policy, clock)

    err = unwrap_err(await racer.create_payment("k1", BASE_REQUEST))
    assert err.code == ErrorCode.PAYMENT_PROCESSING
    assert processor.call_count == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Cancellation
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_cancelled_request_leaves_key_unused(backend, policy, clock):
    gated = GatedProcessor()
    service = PaymentService(backend, gated, policy, clock)

    task = asyncio.create_task(service.create_payment("k1", BASE_REQUEST))
    await gated.entered.wait()
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    err = unwrap_err(await service.get_by_key("k1"))
    assert err.code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND

    gated.release.set()
    created = unwrap(await service.create_payment("k1", BASE_REQUEST))
    assert not created.replayed
    assert gated.call_count == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Failure rolls back
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_processor_failure_leaves_key_reusable(service, processor):
    processor.fail_with = ConnectionError("gateway down")

    err = unwrap_err(await service.create_payment("k1", BASE_REQUEST))
    assert err.code == ErrorCode.INTERNAL_ERROR
    assert err.retryable
    assert unwrap_err(await service.get_by_key("k1")).code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND

    processor.fail_with = None
    created = unwrap(await service.create_payment("k1", BASE_REQUEST))
    assert not created.replayed
    assert unwrap(await service.get_payment(created.payment.id)) == created.payment


# ═══════════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("key", "request_", "code"),
    [
        (None, BASE_REQUEST, ErrorCode.IDEMPOTENCY_KEY_MISSING),
        ("k" * 65, BASE_REQUEST, ErrorCode.IDEMPOTENCY_KEY_TOO_LONG),
        ("k1", make_request(amount=Decimal("-5")), ErrorCode.INVALID_PAYMENT_REQUEST),
        ("k1", make_request(currency="EUR"), ErrorCode.INVALID_CURRENCY),
    ],
)
async def test_invalid_input_writes_nothing(service, processor, key, request_, code):
    err = unwrap_err(await service.create_payment(key, request_))
    assert err.code == code
    assert processor.call_count == 0
    assert unwrap_err(await service.get_by_key("k1")).code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND


@pytest.mark.asyncio
async def test_policy_restricts_currencies(backend, processor, clock):
    service = PaymentService(backend, processor, Policy().with_currencies([Currency.IDR]), clock)

    err = unwrap_err(await service.create_payment("k1", make_request(currency="THB")))
    assert err.code == ErrorCode.INVALID_CURRENCY
    unwrap(await service.create_payment("k2", BASE_REQUEST))


# ═══════════════════════════════════════════════════════════════════════════════
# Expiry
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_expired_key_starts_fresh(service, processor, clock):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    clock.advance(timedelta(hours=24))

    assert unwrap_err(await service.get_by_key("k1")).code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND

    second = unwrap(await service.create_payment("k1", make_request(amount=Decimal("999"))))
    assert not second.replayed
    assert second.payment.id != first.payment.id
    assert processor.call_count == 2

    # The old payment outlives its ledger entry
    assert unwrap(await service.get_payment(first.payment.id)) == first.payment


# ═══════════════════════════════════════════════════════════════════════════════
# Lookups
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_get_payment(service):
    created = unwrap(await service.create_payment("k1", BASE_REQUEST))
    assert unwrap(await service.get_payment(created.payment.id)) == created.payment


@pytest.mark.asyncio
async def test_unknown_ids(service):
    assert unwrap_err(await service.get_payment("nope")).code == ErrorCode.PAYMENT_NOT_FOUND
    assert unwrap_err(await service.get_by_key("nope")).code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND
