"""
Request validation — runs before any storage access.
"""

from __future__ import annotations

from collections.abc import Iterable

from kungfu import Result, Ok, Error

from idempay.payments._errors import PaymentError, PaymentErrors
from idempay.payments._types import Currency, PaymentRequest

MAX_KEY_LENGTH = 64


def validate_key(key: str | None) -> Result[str, PaymentError]:
    if not key:
        return Error(PaymentErrors.key_missing())
    if len(key) > MAX_KEY_LENGTH:
        return Error(PaymentErrors.key_too_long(MAX_KEY_LENGTH))
    return Ok(key)


def validate_request(
    request: PaymentRequest,
    currencies: Iterable[Currency],
) -> Result[Currency, PaymentError]:
    """
    Validate a request against the configured currency set.

    Returns the parsed Currency on success.
    An unsupported currency short-circuits with INVALID_CURRENCY; every other
    problem is collected into one INVALID_PAYMENT_REQUEST.
    """
    allowed = sorted(c.value for c in currencies)
    reasons: list[str] = []

    if not request.amount.is_finite() or request.amount <= 0:
        reasons.append("amount must be greater than 0")

    currency: Currency | None = None
    if not request.currency:
        reasons.append("currency is required")
    elif request.currency not in allowed:
        return Error(PaymentErrors.invalid_currency(request.currency, allowed))
    else:
        currency = Currency(request.currency)

    if not request.customer_id:
        reasons.append("customer_id is required")
    if not request.ride_id:
        reasons.append("ride_id is required")
    if not request.card_number:
        reasons.append("card_number is required")

    if reasons or currency is None:
        return Error(PaymentErrors.invalid_request(reasons))
    return Ok(currency)


__all__ = (
    "MAX_KEY_LENGTH",
    "validate_key",
    "validate_request",
)
