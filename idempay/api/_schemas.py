"""
Wire schemas — pydantic request/response models.

Each model converts at the boundary: to_domain() for requests,
from_domain() for responses.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from idempay.idempotency import IdempotencyRecord
from idempay.payments import Payment, PaymentRequest


class CreatePaymentBody(BaseModel):
    """
    POST /v1/payments body.

    Note: Поля необязательные на уровне схемы — отсутствующее поле
    проверяет validate_request и возвращает все причины сразу.
    """

    amount: Decimal = Decimal(0)
    currency: str = ""
    customer_id: str = ""
    ride_id: str = ""
    card_number: str = ""
    description: str | None = None

    def to_domain(self) -> PaymentRequest:
        return PaymentRequest(
            amount=self.amount,
            currency=self.currency,
            customer_id=self.customer_id,
            ride_id=self.ride_id,
            card_number=self.card_number,
            description=self.description or None,
        )


class PaymentResponse(BaseModel):
    id: str
    amount: float
    currency: str
    customer_id: str
    ride_id: str
    status: str
    card_last_4: str
    description: str | None = None
    fail_reason: str | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, payment: Payment) -> PaymentResponse:
        return cls(
            id=payment.id,
            amount=float(payment.amount),
            currency=payment.currency.value,
            customer_id=payment.customer_id,
            ride_id=payment.ride_id,
            status=payment.status.value,
            card_last_4=payment.card_last4,
            description=payment.description,
            fail_reason=payment.fail_reason,
            created_at=payment.created_at,
        )


class IdempotencyRecordResponse(BaseModel):
    """Ledger entry without the response snapshot."""

    key: str
    request_fingerprint: str
    payment_id: str | None = None
    status: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_domain(cls, record: IdempotencyRecord) -> IdempotencyRecordResponse:
        return cls(
            key=record.key,
            request_fingerprint=record.request_fingerprint,
            payment_id=record.payment_id,
            status=record.status.value,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )


class ErrorBody(BaseModel):
    code: str
    message: str
    details: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "OK"


__all__ = (
    "CreatePaymentBody",
    "PaymentResponse",
    "IdempotencyRecordResponse",
    "ErrorBody",
    "HealthResponse",
)
