"""
HTTP errors — PaymentError → status code + localized JSON body.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from idempay.api._schemas import ErrorBody
from idempay.payments import (
    DEFAULT_LANGUAGE,
    ErrorCategory,
    PaymentError,
    PaymentErrors,
    message_for,
    parse_accept_language,
)

logger = structlog.get_logger().bind(component="api")

STATUS_CODES: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.IN_PROGRESS: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.INTERNAL: 500,
}


class PaymentHTTPError(Exception):
    """Raised by route handlers; rendered by the registered handler."""

    def __init__(self, error: PaymentError) -> None:
        super().__init__(str(error))
        self.error = error


def error_response(error: PaymentError, accept_language: str | None) -> JSONResponse:
    """
    Render error for the client's language.

    Note: English keeps the request-specific message; other languages get
    the catalog text for the code. details are never translated.
    """
    lang = parse_accept_language(accept_language)
    if lang.split("-", 1)[0].lower() == DEFAULT_LANGUAGE:
        message = error.message
    else:
        message = message_for(error.code, lang)

    body = ErrorBody(code=error.code.value, message=message, details=list(error.details))
    return JSONResponse(status_code=STATUS_CODES[error.category], content=body.model_dump())


async def _payment_error(request: Request, exc: PaymentHTTPError) -> JSONResponse:
    return error_response(exc.error, request.headers.get("Accept-Language"))


async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("request.invalid_body", errors=len(exc.errors()))
    return error_response(
        PaymentErrors.invalid_request(["invalid request body"]),
        request.headers.get("Accept-Language"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.exception_handler(PaymentHTTPError)(_payment_error)
    app.exception_handler(RequestValidationError)(_invalid_body)


__all__ = (
    "STATUS_CODES",
    "PaymentHTTPError",
    "error_response",
    "install_error_handlers",
)
