"""
Payments — domain types, validation, settlement.

    from idempay import payments as P

    request = P.PaymentRequest(
        amount=Decimal("85000"),
        currency="IDR",
        customer_id="c1",
        ride_id="r1",
        card_number="4000000000000002",
    )
    outcome = await P.SimulatedProcessor().process(request)
"""

from idempay.payments._types import (
    Currency,
    PaymentStatus,
    PaymentRequest,
    Payment,
    ProcessorOutcome,
    CreatedPayment,
)
from idempay.payments._errors import (
    ErrorCategory,
    ErrorCode,
    PaymentError,
    PaymentErrors,
)
from idempay.payments._messages import (
    DEFAULT_LANGUAGE,
    MESSAGES,
    parse_accept_language,
    message_for,
)
from idempay.payments._validate import (
    MAX_KEY_LENGTH,
    validate_key,
    validate_request,
)
from idempay.payments._processor import (
    Processor,
    CARD_OUTCOMES,
    card_last4,
    resolve_outcome,
    SimulatedProcessor,
    InstantProcessor,
)

__all__ = (
    # Types
    "Currency",
    "PaymentStatus",
    "PaymentRequest",
    "Payment",
    "ProcessorOutcome",
    "CreatedPayment",
    # Errors
    "ErrorCategory",
    "ErrorCode",
    "PaymentError",
    "PaymentErrors",
    # Messages
    "DEFAULT_LANGUAGE",
    "MESSAGES",
    "parse_accept_language",
    "message_for",
    # Validation
    "MAX_KEY_LENGTH",
    "validate_key",
    "validate_request",
    # Processor
    "Processor",
    "CARD_OUTCOMES",
    "card_last4",
    "resolve_outcome",
    "SimulatedProcessor",
    "InstantProcessor",
)
