"""
FastAPI application — routes and lifespan.

    app = create_app()                              # Settings from env
    app = create_app(settings, processor=InstantProcessor())

Lifespan owns the engine, the PaymentService and the ExpiryReaper.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from kungfu import Ok, Error

from idempay._log import configure_logging
from idempay.api._errors import PaymentHTTPError, install_error_handlers
from idempay.api._middleware import install_middleware
from idempay.api._schemas import (
    CreatePaymentBody,
    HealthResponse,
    IdempotencyRecordResponse,
    PaymentResponse,
)
from idempay.config import Settings
from idempay.core import ExpiryReaper, PaymentService
from idempay.db import create_database
from idempay.payments import Processor, SimulatedProcessor
from idempay.storage import SQLAlchemyBackend

logger = structlog.get_logger().bind(component="api")

REPLAYED_HEADER = "Idempotent-Replayed"


# ═══════════════════════════════════════════════════════════════════════════════
# Dependencies
# ═══════════════════════════════════════════════════════════════════════════════


def get_service(request: Request) -> PaymentService:
    return request.app.state.service


ServiceDep = Annotated[PaymentService, Depends(get_service)]


# ═══════════════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════════════

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


@router.post("/v1/payments", status_code=201, response_model=PaymentResponse)
async def create_payment(
    body: CreatePaymentBody,
    response: Response,
    service: ServiceDep,
    idempotency_key: Annotated[str | None, Header(alias="X-Idempotency-Key")] = None,
) -> PaymentResponse:
    match await service.create_payment(idempotency_key, body.to_domain()):
        case Ok(created):
            response.headers[REPLAYED_HEADER] = "true" if created.replayed else "false"
            return PaymentResponse.from_domain(created.payment)
        case Error(err):
            raise PaymentHTTPError(err)


@router.get("/v1/payments/{payment_id}", response_model=PaymentResponse)
async def get_payment(payment_id: str, service: ServiceDep) -> PaymentResponse:
    match await service.get_payment(payment_id):
        case Ok(payment):
            return PaymentResponse.from_domain(payment)
        case Error(err):
            raise PaymentHTTPError(err)


@router.get("/v1/idempotency/{key}", response_model=IdempotencyRecordResponse)
async def get_by_key(key: str, service: ServiceDep) -> IdempotencyRecordResponse:
    match await service.get_by_key(key):
        case Ok(record):
            return IdempotencyRecordResponse.from_domain(record)
        case Error(err):
            raise PaymentHTTPError(err)


# ═══════════════════════════════════════════════════════════════════════════════
# Application
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(
    settings: Settings | None = None,
    *,
    processor: Processor | None = None,
) -> FastAPI:
    """
    Build the app.

    processor defaults to SimulatedProcessor with the configured delays.
    """
    cfg = settings if settings is not None else Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(cfg.log_level, cfg.log_json)

        session_factory, engine = await create_database(cfg.database_url)
        backend = SQLAlchemyBackend(session_factory)
        settle = processor if processor is not None else SimulatedProcessor(
            min_delay=cfg.processor_min_delay_ms / 1000,
            max_delay=cfg.processor_max_delay_ms / 1000,
        )
        reaper = ExpiryReaper(backend, interval=cfg.cleanup_interval)

        app.state.backend = backend
        app.state.service = PaymentService(backend, settle, cfg.policy())
        app.state.reaper = reaper

        reaper.start()
        logger.info("app.started", host=cfg.app_host, port=cfg.app_port)
        try:
            yield
        finally:
            await reaper.stop(timeout=cfg.graceful_timeout.total_seconds())
            await engine.dispose()
            logger.info("app.stopped")

    app = FastAPI(title="idempay", lifespan=lifespan)
    app.state.settings = cfg
    install_middleware(app)
    install_error_handlers(app)
    app.include_router(router)
    return app


__all__ = (
    "REPLAYED_HEADER",
    "get_service",
    "router",
    "create_app",
)
