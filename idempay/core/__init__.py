"""
Core — creation protocol graph, PaymentService, expiry reaper.

    from idempay import core

    service = core.PaymentService(backend, processor, policy)
    reaper = core.ExpiryReaper(backend, interval=timedelta(hours=1))
"""

from idempay.core._runner import (
    TypedScope,
    Compiled,
    compile_graph,
)
from idempay.core._graph import (
    CreationSpec,
    Outcome,
    OutcomeOk,
    OutcomeError,
    CreationOutcome,
    FinalResultNode,
    CREATION_GRAPH,
    run_creation,
)
from idempay.core._service import (
    Rollback,
    PaymentService,
)
from idempay.core._reaper import ExpiryReaper

__all__ = (
    # Runner
    "TypedScope",
    "Compiled",
    "compile_graph",
    # Graph
    "CreationSpec",
    "Outcome",
    "OutcomeOk",
    "OutcomeError",
    "CreationOutcome",
    "FinalResultNode",
    "CREATION_GRAPH",
    "run_creation",
    # Service
    "Rollback",
    "PaymentService",
    # Reaper
    "ExpiryReaper",
)
