"""
idempay — idempotency-safe payment creation.

    from idempay import payments as P      # Domain types, validation, processor
    from idempay import idempotency as I   # Ledger records, fingerprint, policy
    from idempay import storage as S       # Memory / SQLAlchemy backends
    from idempay import core               # PaymentService, ExpiryReaper

    from idempay.api import create_app     # FastAPI surface
"""

from idempay import payments
from idempay import idempotency
from idempay import storage
from idempay import core
from idempay._types import (
    Result,
    Ok,
    Error,
    Clock,
    utcnow,
)
from idempay._log import configure_logging

__version__ = "0.1.0"

__all__ = (
    "payments",
    "idempotency",
    "storage",
    "core",
    "Result",
    "Ok",
    "Error",
    "Clock",
    "utcnow",
    "configure_logging",
)
