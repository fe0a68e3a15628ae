"""
Payment errors — codes, taxonomy, constructors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto


# ═══════════════════════════════════════════════════════════════════════════════
# Taxonomy
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorCategory(Enum):
    """
    What the client should do about an error.

    VALIDATION:  fix the request; nothing was written.
    CONFLICT:    key reused with a different payload; pick a new key.
    IN_PROGRESS: same key still mid-flight; retry with backoff.
    NOT_FOUND:   unknown payment id, or unknown/expired key.
    INTERNAL:    storage/serialization failure; rolled back, same key is safe.
    """

    VALIDATION = auto()
    CONFLICT = auto()
    IN_PROGRESS = auto()
    NOT_FOUND = auto()
    INTERNAL = auto()


class ErrorCode(Enum):
    INVALID_PAYMENT_REQUEST = "INVALID_PAYMENT_REQUEST"
    INVALID_CURRENCY = "INVALID_CURRENCY"
    IDEMPOTENCY_KEY_MISSING = "IDEMPOTENCY_KEY_MISSING"
    IDEMPOTENCY_KEY_TOO_LONG = "IDEMPOTENCY_KEY_TOO_LONG"
    IDEMPOTENCY_KEY_CONFLICT = "IDEMPOTENCY_KEY_CONFLICT"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    IDEMPOTENCY_KEY_NOT_FOUND = "IDEMPOTENCY_KEY_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.INVALID_PAYMENT_REQUEST: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_CURRENCY: ErrorCategory.VALIDATION,
    ErrorCode.IDEMPOTENCY_KEY_MISSING: ErrorCategory.VALIDATION,
    ErrorCode.IDEMPOTENCY_KEY_TOO_LONG: ErrorCategory.VALIDATION,
    ErrorCode.IDEMPOTENCY_KEY_CONFLICT: ErrorCategory.CONFLICT,
    ErrorCode.PAYMENT_PROCESSING: ErrorCategory.IN_PROGRESS,
    ErrorCode.PAYMENT_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.INTERNAL_ERROR: ErrorCategory.INTERNAL,
}


# ═══════════════════════════════════════════════════════════════════════════════
# Error value
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class PaymentError:
    """
    Error returned by every PaymentService operation.

    Note: details carries every validation reason; message is the first one
    (or the code's default text).
    """

    code: ErrorCode
    message: str
    details: tuple[str, ...] = ()

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    @property
    def retryable(self) -> bool:
        """True if retrying with the same key and payload may succeed."""
        return self.category in (ErrorCategory.IN_PROGRESS, ErrorCategory.INTERNAL)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class PaymentErrors:
    @staticmethod
    def key_missing() -> PaymentError:
        return PaymentError(
            ErrorCode.IDEMPOTENCY_KEY_MISSING, "X-Idempotency-Key header is required"
        )

    @staticmethod
    def key_too_long(limit: int) -> PaymentError:
        return PaymentError(
            ErrorCode.IDEMPOTENCY_KEY_TOO_LONG,
            f"X-Idempotency-Key must be at most {limit} characters",
        )

    @staticmethod
    def invalid_request(reasons: list[str]) -> PaymentError:
        return PaymentError(
            ErrorCode.INVALID_PAYMENT_REQUEST,
            reasons[0] if reasons else "invalid payment request",
            tuple(reasons),
        )

    @staticmethod
    def invalid_currency(currency: str, supported: list[str]) -> PaymentError:
        return PaymentError(
            ErrorCode.INVALID_CURRENCY,
            f"currency '{currency}' is not supported; "
            f"valid currencies: {', '.join(supported)}",
            (currency,),
        )

    @staticmethod
    def key_conflict(key: str) -> PaymentError:
        return PaymentError(
            ErrorCode.IDEMPOTENCY_KEY_CONFLICT,
            f"idempotency key '{key}' already used with different request payload",
        )

    @staticmethod
    def in_progress(key: str) -> PaymentError:
        return PaymentError(
            ErrorCode.PAYMENT_PROCESSING,
            f"a payment with idempotency key '{key}' is currently being processed",
        )

    @staticmethod
    def payment_not_found(payment_id: str) -> PaymentError:
        return PaymentError(
            ErrorCode.PAYMENT_NOT_FOUND, f"payment '{payment_id}' not found"
        )

    @staticmethod
    def key_not_found(key: str) -> PaymentError:
        return PaymentError(
            ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND, f"idempotency key '{key}' not found"
        )

    @staticmethod
    def internal(msg: str) -> PaymentError:
        return PaymentError(ErrorCode.INTERNAL_ERROR, msg)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ErrorCategory",
    "ErrorCode",
    "PaymentError",
    "PaymentErrors",
)
