"""
Idempotent Payments Example

Run: python examples/idempotent_payments.py
"""

import asyncio
import uuid
from decimal import Decimal

from combinators import batch, lift as L
from kungfu import Ok, Error

from idempay import configure_logging
from idempay.core import PaymentService
from idempay.db import create_database
from idempay.idempotency import Policy
from idempay.payments import PaymentRequest, SimulatedProcessor
from idempay.storage import SQLAlchemyBackend


def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


async def main() -> None:
    banner("Idempotent Payments")
    configure_logging("WARNING")

    session_factory, engine = await create_database("sqlite+aiosqlite:///./example.db")
    processor = SimulatedProcessor()
    service = PaymentService(SQLAlchemyBackend(session_factory), processor, Policy())

    try:
        # 1. First request — declined card, still a recorded outcome
        print("1. First request:")
        key = f"ride_{uuid.uuid4().hex[:8]}"
        req = PaymentRequest(
            amount=Decimal("85000"),
            currency="IDR",
            customer_id="c1",
            ride_id="r1",
            card_number="4000000000000002",
        )
        match await service.create_payment(key, req):
            case Ok(created):
                p = created.payment
                print(f"   Payment: {p.id}, {p.status.value} ({p.fail_reason})")
            case Error(e):
                print(f"   Error: {e.code.value}")
        print(f"   Processor calls: {processor.call_count}\n")

        # 2. Retry (replayed)
        print("2. Retry (replayed):")
        match await service.create_payment(key, req):
            case Ok(created):
                print(f"   Payment: {created.payment.id}, replayed={created.replayed}")
            case Error(e):
                print(f"   Error: {e.code.value}")
        print(f"   Processor calls: {processor.call_count} (no new call!)\n")

        # 3. Same key, different amount
        print("3. Same key, amount=999:")
        changed = PaymentRequest(
            amount=Decimal("999"),
            currency="IDR",
            customer_id="c1",
            ride_id="r1",
            card_number="4000000000000002",
        )
        match await service.create_payment(key, changed):
            case Ok(_):
                print("   Unexpected success")
            case Error(e):
                print(f"   Error: {e.code.value}\n")

        # 4. Concurrent (5 requests via combinators.batch)
        print("4. Concurrent (5 requests):")
        concurrent_key = f"ride_{uuid.uuid4().hex[:8]}"
        concurrent_req = PaymentRequest(
            amount=Decimal("120000"),
            currency="IDR",
            customer_id="c2",
            ride_id="r2",
            card_number="4242424242424242",
        )
        before = processor.call_count

        await batch(
            range(5),
            handler=lambda _: L.catching_async(
                lambda: service.create_payment(concurrent_key, concurrent_req),
                on_error=str,
            ),
            concurrency=5,
        )
        print(f"   Processor calls: {processor.call_count - before} (only 1!)\n")

        print(f"Summary: {processor.call_count} processor calls for 8 requests")

    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
