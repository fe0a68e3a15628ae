"""
Request fingerprint — deterministic digest of the charge-defining fields.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal

from idempay.payments import PaymentRequest

FINGERPRINT_FIELDS = ("amount", "currency", "customer_id", "ride_id", "card_number")


def canonical_amount(amount: Decimal) -> str:
    """
    Scale-free decimal text.

        canonical_amount(Decimal("100.00"))  # "100"
        canonical_amount(Decimal("0.50"))    # "0.5"
    """
    text = format(amount.normalize(), "f")
    return text if text != "-0" else "0"


def fingerprint(request: PaymentRequest) -> str:
    """
    SHA-256 hex digest over the fingerprinted fields.

    Note: description is not part of the charge and is left out.
    """
    payload = {
        "amount": canonical_amount(request.amount),
        "currency": request.currency,
        "customer_id": request.customer_id,
        "ride_id": request.ride_id,
        "card_number": request.card_number,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


__all__ = (
    "FINGERPRINT_FIELDS",
    "canonical_amount",
    "fingerprint",
)
