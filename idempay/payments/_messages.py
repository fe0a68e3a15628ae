"""
Localized error messages.

Only the HTTP layer uses these. PaymentError.message stays in English with
request-specific detail; clients asking for another language get the
catalog text for the code.
"""

from __future__ import annotations

from idempay.payments._errors import ErrorCode

DEFAULT_LANGUAGE = "en"

MESSAGES: dict[str, dict[ErrorCode, str]] = {
    "en": {
        ErrorCode.IDEMPOTENCY_KEY_MISSING: "X-Idempotency-Key header is required",
        ErrorCode.IDEMPOTENCY_KEY_TOO_LONG: "X-Idempotency-Key must be at most 64 characters",
        ErrorCode.IDEMPOTENCY_KEY_CONFLICT: "idempotency key already used with different request payload",
        ErrorCode.PAYMENT_PROCESSING: "a payment with this idempotency key is currently being processed",
        ErrorCode.PAYMENT_NOT_FOUND: "payment not found",
        ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND: "idempotency key not found",
        ErrorCode.INVALID_PAYMENT_REQUEST: "invalid payment request",
        ErrorCode.INVALID_CURRENCY: "currency is not supported",
        ErrorCode.INTERNAL_ERROR: "an internal error occurred",
    },
    "es": {
        ErrorCode.IDEMPOTENCY_KEY_MISSING: "el encabezado X-Idempotency-Key es obligatorio",
        ErrorCode.IDEMPOTENCY_KEY_TOO_LONG: "X-Idempotency-Key debe tener como maximo 64 caracteres",
        ErrorCode.IDEMPOTENCY_KEY_CONFLICT: "la clave de idempotencia ya fue utilizada con un payload diferente",
        ErrorCode.PAYMENT_PROCESSING: "un pago con esta clave de idempotencia esta siendo procesado actualmente",
        ErrorCode.PAYMENT_NOT_FOUND: "pago no encontrado",
        ErrorCode.IDEMPOTENCY_KEY_NOT_FOUND: "clave de idempotencia no encontrada",
        ErrorCode.INVALID_PAYMENT_REQUEST: "solicitud de pago invalida",
        ErrorCode.INVALID_CURRENCY: "moneda no soportada",
        ErrorCode.INTERNAL_ERROR: "ocurrio un error interno",
    },
}


def parse_accept_language(header: str | None) -> str:
    """
    First language tag of an Accept-Language header.

        parse_accept_language("es-MX,es;q=0.9,en;q=0.8")  # "es-MX"
    """
    if not header:
        return DEFAULT_LANGUAGE
    first = header.split(",")[0].split(";")[0].strip()
    return first or DEFAULT_LANGUAGE


def message_for(code: ErrorCode, lang: str) -> str:
    """Catalog text for code in lang; falls back to English, then the code."""
    base = lang.split("-", 1)[0].strip().lower()

    catalog = MESSAGES.get(base)
    if catalog is not None and code in catalog:
        return catalog[code]

    return MESSAGES[DEFAULT_LANGUAGE].get(code, code.value)


__all__ = (
    "DEFAULT_LANGUAGE",
    "MESSAGES",
    "parse_accept_language",
    "message_for",
)
