"""Test helpers: request builder, Result unwrapping, manual clock."""

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from kungfu import Ok, Error

from idempay.payments import Currency, Payment, PaymentRequest, PaymentStatus

BASE_REQUEST = PaymentRequest(
    amount=Decimal("85000"),
    currency="IDR",
    customer_id="c1",
    ride_id="r1",
    card_number="4000000000000002",
)


def make_request(**overrides: Any) -> PaymentRequest:
    """BASE_REQUEST with fields replaced."""
    return replace(BASE_REQUEST, **overrides)


def make_payment(payment_id: str = "p1", amount: str = "85000.50") -> Payment:
    return Payment(
        id=payment_id,
        amount=Decimal(amount),
        currency=Currency.IDR,
        customer_id="c1",
        ride_id="r1",
        status=PaymentStatus.SUCCEEDED,
        card_last4="4242",
        created_at=datetime(2025, 1, 1, 12, 0, 0),
        description="airport",
    )


def unwrap(result: Any) -> Any:
    match result:
        case Ok(value):
            return value
        case Error(err):
            raise AssertionError(f"expected Ok, got Error({err!r})")


def unwrap_err(result: Any) -> Any:
    match result:
        case Error(err):
            return err
        case Ok(value):
            raise AssertionError(f"expected Error, got Ok({value!r})")


class FrozenClock:
    """Manually advanced clock; naive UTC like utcnow()."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta
