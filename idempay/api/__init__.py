"""
API — FastAPI surface over PaymentService.

    from idempay.api import create_app

    app = create_app()
"""

from idempay.api._app import (
    REPLAYED_HEADER,
    get_service,
    router,
    create_app,
)
from idempay.api._errors import (
    STATUS_CODES,
    PaymentHTTPError,
    error_response,
)
from idempay.api._middleware import TRACE_HEADER
from idempay.api._schemas import (
    CreatePaymentBody,
    PaymentResponse,
    IdempotencyRecordResponse,
    ErrorBody,
    HealthResponse,
)

__all__ = (
    # App
    "REPLAYED_HEADER",
    "TRACE_HEADER",
    "get_service",
    "router",
    "create_app",
    # Errors
    "STATUS_CODES",
    "PaymentHTTPError",
    "error_response",
    # Schemas
    "CreatePaymentBody",
    "PaymentResponse",
    "IdempotencyRecordResponse",
    "ErrorBody",
    "HealthResponse",
)
