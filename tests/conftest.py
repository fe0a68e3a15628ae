"""Shared fixtures: backends, clock, processor, service."""

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from idempay.core import PaymentService
from idempay.db import create_database
from idempay.idempotency import Policy
from idempay.payments import InstantProcessor
from idempay.storage import Backend, MemoryBackend, SQLAlchemyBackend

from tests.helpers import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def processor() -> InstantProcessor:
    return InstantProcessor()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def backend(request: Any, tmp_path: Any) -> AsyncIterator[Backend]:
    if request.param == "memory":
        yield MemoryBackend()
        return

    session_factory, engine = await create_database(
        f"sqlite+aiosqlite:///{tmp_path / 'idempay.db'}"
    )
    try:
        yield SQLAlchemyBackend(session_factory)
    finally:
        await engine.dispose()


@pytest.fixture
def policy() -> Policy:
    return Policy().with_ttl(hours=24).with_lock_timeout(seconds=5)


@pytest.fixture
def service(
    backend: Backend, processor: InstantProcessor, policy: Policy, clock: FrozenClock
) -> PaymentService:
    return PaymentService(backend, processor, policy, clock)
