import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from kungfu import Error

from idempay.core import ExpiryReaper
from idempay.payments import ErrorCode
from idempay.storage import MemoryBackend, StoreError, StoreErrorKind

from tests.helpers import BASE_REQUEST, unwrap, unwrap_err


class _FailingLedger:
    async def delete_expired(self, now):
        return Error(StoreError.failure("disk on fire"))


class _FailingTx:
    ledger = _FailingLedger()


class FailingBackend:
    def __init__(self) -> None:
        self.sweeps = 0

    @asynccontextmanager
    async def begin(self):
        self.sweeps += 1
        yield _FailingTx()


@pytest.mark.asyncio
async def test_run_once_removes_only_expired(service, backend, clock):
    unwrap(await service.create_payment("old", BASE_REQUEST))
    clock.advance(timedelta(hours=23))
    unwrap(await service.create_payment("new", BASE_REQUEST))
    clock.advance(timedelta(hours=1))

    reaper = ExpiryReaper(backend, clock=clock)
    assert unwrap(await reaper.run_once()) == 1
    assert unwrap(await reaper.run_once()) == 0

    assert unwrap(await service.get_by_key("new")).key == "new"
    assert unwrap_err(await service.get_by_key("old")).code == ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND


@pytest.mark.asyncio
async def test_key_is_fresh_after_sweep(service, backend, processor, clock):
    first = unwrap(await service.create_payment("k1", BASE_REQUEST))
    clock.advance(timedelta(hours=25))
    unwrap(await ExpiryReaper(backend, clock=clock).run_once())

    second = unwrap(await service.create_payment("k1", BASE_REQUEST))
    assert not second.replayed
    assert second.payment.id != first.payment.id
    assert processor.call_count == 2


@pytest.mark.asyncio
async def test_failed_sweep_returns_error():
    err = unwrap_err(await ExpiryReaper(FailingBackend()).run_once())
    assert err.kind == StoreErrorKind.FAILURE
    assert err.message == "disk on fire"


@pytest.mark.asyncio
async def test_loop_keeps_ticking_after_failure():
    backend = FailingBackend()
    reaper = ExpiryReaper(backend, interval=timedelta(milliseconds=10))

    async with reaper:
        assert reaper.running
        await asyncio.sleep(0.1)

    assert not reaper.running
    assert backend.sweeps >= 2


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    reaper = ExpiryReaper(MemoryBackend())
    await reaper.stop()
    assert not reaper.running


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        ExpiryReaper(MemoryBackend(), interval=timedelta(0))
