"""
Core types for idempay.

Re-exports from kungfu + clock helpers.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

# Re-export from kungfu
from kungfu import Result, Ok, Error

# ═══════════════════════════════════════════════════════════════════════════════
# Clock
# ═══════════════════════════════════════════════════════════════════════════════

type Clock = Callable[[], datetime]
"""Source of "now". Injected wherever expiry is computed or checked."""


def utcnow() -> datetime:
    """
    Current UTC time as a naive datetime.

    Note: SQLite drops tzinfo on read. Every timestamp idempay stores or
    compares is naive UTC.
    """
    return datetime.now(UTC).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    # Clock
    "Clock",
    "utcnow",
)
