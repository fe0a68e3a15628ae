"""
Idempotency — ledger entry types, fingerprint, policy.

    from idempay import idempotency as I

    fp = I.fingerprint(request)
    record = I.IdempotencyRecord.processing(key, fp, now, I.Policy().key_ttl)

Storage of records lives in idempay.storage; the creation protocol that
ties records to payments lives in idempay.core.
"""

from idempay.idempotency._types import (
    RecordStatus,
    IdempotencyRecord,
)
from idempay.idempotency._fingerprint import (
    FINGERPRINT_FIELDS,
    canonical_amount,
    fingerprint,
)
from idempay.idempotency._policy import Policy

__all__ = (
    # Types
    "RecordStatus",
    "IdempotencyRecord",
    # Fingerprint
    "FINGERPRINT_FIELDS",
    "canonical_amount",
    "fingerprint",
    # Policy
    "Policy",
)
