"""
Expiry reaper — periodic sweep of expired ledger entries.

    reaper = ExpiryReaper(backend, interval=timedelta(hours=1))
    async with reaper:
        ...                      # sweeps every interval until exit

    await reaper.run_once()      # one sweep, e.g. from tests
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta

import structlog
from kungfu import Result, Ok, Error

from idempay._types import Clock, utcnow
from idempay.core._service import Rollback
from idempay.storage import Backend, StoreError

logger = structlog.get_logger().bind(component="reaper")


class ExpiryReaper:
    """
    Owns one background task that calls delete_expired every interval.

    Note: Ошибка одного прохода логируется и не останавливает цикл.
    The next tick simply tries again.
    """

    def __init__(
        self,
        backend: Backend,
        interval: timedelta = timedelta(hours=1),
        clock: Clock = utcnow,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("reaper interval must be positive")
        self._backend = backend
        self._interval = interval
        self._clock = clock
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Result[int, StoreError]:
        """Delete expired entries in one transaction. Returns the count removed."""
        try:
            async with self._backend.begin() as tx:
                match await tx.ledger.delete_expired(self._clock()):
                    case Ok(count):
                        pass
                    case Error(err):
                        raise Rollback(err)
        except Rollback as rb:
            err = rb.reason if isinstance(rb.reason, StoreError) else StoreError.failure(str(rb.reason))
            logger.error("reaper.failed", error=err.message)
            return Error(err)
        except Exception as e:
            logger.exception("reaper.failed")
            return Error(StoreError.failure(f"Expired record sweep failed: {e}", e))

        if count > 0:
            logger.info("reaper.deleted", count=count)
        return Ok(count)

    async def _loop(self) -> None:
        interval = self._interval.total_seconds()
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="idempay-reaper")
        logger.info("reaper.started", interval_seconds=self._interval.total_seconds())

    async def stop(self, timeout: float | None = None) -> None:
        """
        Signal the loop and wait for it.

        A sweep in flight gets `timeout` seconds to finish, then is cancelled.
        """
        task = self._task
        if task is None:
            return
        self._stop.set()
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        logger.info("reaper.stopped")

    async def __aenter__(self) -> ExpiryReaper:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()


__all__ = ("ExpiryReaper",)
