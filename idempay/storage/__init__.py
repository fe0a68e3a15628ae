"""
Storage — ledger and payment store behind one transactional Backend.

    from idempay import storage as S

    backend = S.MemoryBackend()                       # tests, demos
    backend = S.SQLAlchemyBackend(session_factory)    # production

    async with backend.begin() as tx:
        await tx.ledger.lock_for_update(key, now)
        await tx.payments.insert(payment)

Normal exit commits; an exception rolls everything back.
"""

from idempay.storage._ports import (
    StoreErrorKind,
    StoreError,
    Ledger,
    PaymentStore,
    Transaction,
    Backend,
)
from idempay.storage._locks import KeyLocks
from idempay.storage._memory import (
    MemoryBackend,
    MemoryTransaction,
    MemoryLedger,
    MemoryPaymentStore,
)
from idempay.storage._sqlalchemy import (
    SQLAlchemyBackend,
    SQLAlchemyTransaction,
    SQLAlchemyLedger,
    SQLAlchemyPaymentStore,
)

__all__ = (
    # Ports
    "StoreErrorKind",
    "StoreError",
    "Ledger",
    "PaymentStore",
    "Transaction",
    "Backend",
    # Locks
    "KeyLocks",
    # Memory
    "MemoryBackend",
    "MemoryTransaction",
    "MemoryLedger",
    "MemoryPaymentStore",
    # SQLAlchemy
    "SQLAlchemyBackend",
    "SQLAlchemyTransaction",
    "SQLAlchemyLedger",
    "SQLAlchemyPaymentStore",
)
