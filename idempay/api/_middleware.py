"""
HTTP middleware — trace id, access log, recovery.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response

from idempay.api._errors import error_response
from idempay.payments import PaymentErrors

logger = structlog.get_logger().bind(component="api")

TRACE_HEADER = "X-Trace-Id"


async def trace_requests(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """
    Echo or mint X-Trace-Id and bind it to every log line of the request.

    One access line per request. An unhandled exception becomes
    500 INTERNAL_ERROR.
    """
    trace_id = request.headers.get(TRACE_HEADER) or str(uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)

    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request.unhandled", method=request.method, path=request.url.path)
        response = error_response(
            PaymentErrors.internal("an unexpected error occurred"),
            request.headers.get("Accept-Language"),
        )

    response.headers[TRACE_HEADER] = trace_id
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response


def install_middleware(app: FastAPI) -> None:
    app.middleware("http")(trace_requests)


__all__ = ("TRACE_HEADER", "trace_requests", "install_middleware")
