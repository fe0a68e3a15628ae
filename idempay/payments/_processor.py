"""
Payment processor — settlement decision (simulated).

Outcome is a pure function of the card number, so tests can pick a result
by picking a card.
"""

from __future__ import annotations

import asyncio
import random
from typing import Protocol

import structlog

from idempay.payments._types import PaymentRequest, PaymentStatus, ProcessorOutcome

logger = structlog.get_logger().bind(component="processor")


# ═══════════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════════


class Processor(Protocol):
    """
    Decides the settlement outcome for a request.

    May take a bounded but variable time. Raises on failure; callers lift
    the call into a Result.
    """

    async def process(self, request: PaymentRequest) -> ProcessorOutcome: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Card policy
# ═══════════════════════════════════════════════════════════════════════════════

CARD_OUTCOMES: dict[str, tuple[PaymentStatus, str | None]] = {
    "4000000000000002": (PaymentStatus.FAILED, "insufficient_funds"),
    "4000000000000069": (PaymentStatus.FAILED, "expired_card"),
    "4000000000000119": (PaymentStatus.FAILED, "processing_error"),
    "4000000000000259": (PaymentStatus.PENDING, None),
}


def card_last4(card_number: str) -> str:
    return card_number[-4:]


def resolve_outcome(request: PaymentRequest) -> ProcessorOutcome:
    status, reason = CARD_OUTCOMES.get(
        request.card_number, (PaymentStatus.SUCCEEDED, None)
    )
    return ProcessorOutcome(
        status=status,
        card_last4=card_last4(request.card_number),
        fail_reason=reason,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Simulated Processor — production stand-in
# ═══════════════════════════════════════════════════════════════════════════════


class SimulatedProcessor:
    """
    Sleeps a uniform random delay, then applies the card policy.

    Example:
        processor = SimulatedProcessor(min_delay=0.05, max_delay=0.2)
        outcome = await processor.process(request)
    """

    def __init__(self, min_delay: float = 0.05, max_delay: float = 0.2) -> None:
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("need 0 <= min_delay <= max_delay")
        self._min_delay = min_delay
        self._max_delay = max_delay
        self.call_count = 0

    async def process(self, request: PaymentRequest) -> ProcessorOutcome:
        self.call_count += 1
        await asyncio.sleep(random.uniform(self._min_delay, self._max_delay))

        outcome = resolve_outcome(request)
        logger.info(
            "processor.settled",
            status=outcome.status.value,
            card_last4=outcome.card_last4,
        )
        return outcome


# ═══════════════════════════════════════════════════════════════════════════════
# Instant Processor — for tests
# ═══════════════════════════════════════════════════════════════════════════════


class InstantProcessor:
    """
    Same card policy, no delay.

    Note: fail_with makes every call raise that exception.
    """

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.call_count = 0

    async def process(self, request: PaymentRequest) -> ProcessorOutcome:
        self.call_count += 1
        if self.fail_with is not None:
            raise self.fail_with
        return resolve_outcome(request)


__all__ = (
    "Processor",
    "CARD_OUTCOMES",
    "card_last4",
    "resolve_outcome",
    "SimulatedProcessor",
    "InstantProcessor",
)
