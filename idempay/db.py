"""
Database layer — SQLAlchemy rows, explicit migrations, engine setup.

Note: Миграции — явный упорядоченный tuple, никакой регистрации при импорте.
Caller decides which steps run and when.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import DateTime, Numeric, String, Text, event, insert, select
from sqlalchemy.engine import Connection, Dialect, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from idempay._types import utcnow

logger = structlog.get_logger().bind(component="db")


# ═══════════════════════════════════════════════════════════════════════════════
# Column types
# ═══════════════════════════════════════════════════════════════════════════════


class Amount(TypeDecorator[Decimal]):
    """
    Exact decimal amount.

    NUMERIC where the driver handles Decimal natively; decimal text on SQLite,
    which would otherwise round through float.
    """

    impl = Numeric(20, 4)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(40))
        return dialect.type_descriptor(Numeric(20, 4))

    def process_bind_param(self, value: Decimal | None, dialect: Dialect) -> Any:
        if value is None or dialect.name != "sqlite":
            return value
        return format(value, "f")

    def process_result_value(self, value: Any, dialect: Dialect) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value) if not isinstance(value, Decimal) else value


# ═══════════════════════════════════════════════════════════════════════════════
# Base / Rows
# ═══════════════════════════════════════════════════════════════════════════════


class Base(DeclarativeBase):
    pass


class PaymentRow(Base):
    """Persisted payment. Written once, never updated."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    ride_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    card_last4: Mapped[str] = mapped_column(String(4), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    fail_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class IdempotencyRow(Base):
    """
    Ledger entry.

    Note: payment_id — слабая ссылка (lookup only), без FOREIGN KEY.
    """

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    response_snapshot: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class MigrationRow(Base):
    __tablename__ = "schema_migrations"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Migrations
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Migration:
    """
    One schema step.

    apply runs on a sync Connection inside the migration transaction.
    """

    id: str
    apply: Callable[[Connection], None]


def _create_payments(conn: Connection) -> None:
    PaymentRow.__table__.create(conn, checkfirst=True)


def _create_idempotency_records(conn: Connection) -> None:
    IdempotencyRow.__table__.create(conn, checkfirst=True)


MIGRATIONS: tuple[Migration, ...] = (
    Migration("001_create_payments", _create_payments),
    Migration("002_create_idempotency_records", _create_idempotency_records),
)


def _apply(conn: Connection, steps: Sequence[Migration]) -> list[str]:
    MigrationRow.__table__.create(conn, checkfirst=True)
    done = set(conn.execute(select(MigrationRow.id)).scalars())

    applied: list[str] = []
    for step in steps:
        if step.id in done:
            continue
        step.apply(conn)
        conn.execute(insert(MigrationRow).values(id=step.id, applied_at=utcnow()))
        applied.append(step.id)
    return applied


async def run_migrations(
    engine: AsyncEngine,
    steps: Sequence[Migration] = MIGRATIONS,
) -> list[str]:
    """
    Apply pending steps in order, in one transaction.

    Already recorded ids are skipped. Returns the ids applied by this call.
    """
    async with engine.begin() as conn:
        applied = await conn.run_sync(_apply, steps)

    if applied:
        logger.info("migrations.applied", ids=applied)
    else:
        logger.debug("migrations.up_to_date")
    return applied


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════


# Dialects with an ON CONFLICT DO NOTHING insert for the ledger
SUPPORTED_DIALECTS = frozenset({"sqlite", "postgresql"})

# Connection execution option marking a transaction that never writes
READ_ONLY = "idempay_read_only"


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    Open every SQLite write transaction with BEGIN IMMEDIATE.

    A deferred transaction that reads first and writes later can fail with
    SQLITE_BUSY when another writer is active. IMMEDIATE takes the write lock
    up front, so transactions queue on busy_timeout instead.

    Connections carrying the READ_ONLY execution option get a plain deferred
    BEGIN and read alongside an active writer.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Hand transaction control to SQLAlchemy's "begin" event
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn: Connection) -> None:
        if conn.get_execution_options().get(READ_ONLY):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


async def create_database(
    url: str = "sqlite+aiosqlite:///./idempay.db",
    steps: Sequence[Migration] = MIGRATIONS,
    *,
    busy_timeout: float = 30.0,
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """
    Create engine, run migrations, return (session_factory, engine).

    Raises ValueError for a database outside SUPPORTED_DIALECTS.
    """
    backend_name = make_url(url).get_backend_name()
    if backend_name not in SUPPORTED_DIALECTS:
        raise ValueError(
            f"unsupported database {backend_name!r}; "
            f"expected one of: {', '.join(sorted(SUPPORTED_DIALECTS))}"
        )

    connect_args: dict[str, Any] = {}
    if backend_name == "sqlite":
        connect_args["timeout"] = busy_timeout

    engine = create_async_engine(url, echo=False, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)

    await run_migrations(engine, steps)
    return async_sessionmaker(engine, expire_on_commit=False), engine


__all__ = (
    "Amount",
    "Base",
    "PaymentRow",
    "IdempotencyRow",
    "MigrationRow",
    "Migration",
    "MIGRATIONS",
    "run_migrations",
    "SUPPORTED_DIALECTS",
    "READ_ONLY",
    "create_database",
)
