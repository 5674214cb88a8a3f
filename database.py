# --- models.py (or the models section of database.py) ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    JSON, String, Text, Integer, Numeric, DateTime, Date, Boolean,
    ForeignKey, func, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, Optional
import logging, os, time, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests/dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
def normalize_database_url(url: str) -> str:
    """Force the async drivers SQLAlchemy needs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine for PostgreSQL (asyncpg) or SQLite (aiosqlite)."""
    url = normalize_database_url(url)
    echo = os.getenv("NODE_ENV") == "development"
    if url.startswith("sqlite"):
        if ":memory:" in url:
            return create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=15,
        connect_args={
            "server_settings": {"application_name": "commerce_import"},
            "command_timeout": 60,
            "timeout": 30,
        },
    )


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", "") or "sqlite+aiosqlite:///:memory:")
engine = build_engine(DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
            return url
        if "://" in url:
            return url
    except ValueError:
        pass
    return "******"

logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def ping_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity check: OK")
    except Exception as e:
        logger.exception(f"DB connectivity check failed: {e}")


def _new_id() -> str:
    return str(uuid.uuid4())

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# Import ledger
# -------------------------------------------------------------------

IMPORT_STATUSES = ("pending", "mapping", "importing", "completed", "failed")
TERMINAL_IMPORT_STATUSES = ("completed", "failed")


class ImportRun(Base):
    __tablename__ = "data_imports"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    source_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_table: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # [{csv_column, target_field, skipped, required}]
    mapped_fields: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    # [{row, field, message}]
    errors: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    file_preview: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','mapping','importing','completed','failed')",
            name="ck_data_imports_status",
        ),
    )


class ImportProgress(Base):
    __tablename__ = "import_progress"

    import_id: Mapped[str] = mapped_column(String, ForeignKey("data_imports.id"), primary_key=True)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    rows_done: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rows_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors_so_far: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String, nullable=False, default="in_progress")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress','completed','failed')",
            name="ck_import_progress_status",
        ),
    )


class SyncLogEntry(Base):
    __tablename__ = "data_sync_log"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    import_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("data_imports.id"), nullable=True)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

# -------------------------------------------------------------------
# Commerce
# -------------------------------------------------------------------

class Customer(Base):
    __tablename__ = "ecom_customers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    external_source: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Always stored lower-cased
    email: Mapped[str] = mapped_column(Text, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    default_address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    accepts_marketing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Derived; rewritten by the aggregator after every import
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    avg_order_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    first_order_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_order_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    orders = relationship("Order", back_populates="customer")

    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_ecom_customers_org_email"),
    )


class Order(Base):
    __tablename__ = "ecom_orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    import_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("data_imports.id"), nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    external_source: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    customer_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("ecom_customers.id"), nullable=True)
    customer_external_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_number: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    financial_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fulfillment_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    subtotal_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_discounts: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_shipping: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String, nullable=False, default="USD")

    # [{name, sku, quantity, price}]
    line_items: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    discount_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    shipping_method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="orders")

# -------------------------------------------------------------------
# CRM
# -------------------------------------------------------------------

class CrmCompany(Base):
    __tablename__ = "crm_companies"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    industry: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    size: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sector: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    annual_revenue: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    employees: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CrmContact(Base):
    __tablename__ = "crm_contacts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    company_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("crm_companies.id"), nullable=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CrmDeal(Base):
    __tablename__ = "crm_deals"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    stage: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    probability: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    expected_close_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CrmProduct(Base):
    __tablename__ = "crm_products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)


class CustomFieldDefinition(Base):
    __tablename__ = "crm_custom_fields"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    field_key: Mapped[str] = mapped_column(String, nullable=False)
    field_label: Mapped[str] = mapped_column(Text, nullable=False)
    field_type: Mapped[str] = mapped_column(String, nullable=False, default="text")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("org_id", "table_name", "field_key", name="uq_crm_custom_fields_key"),
        CheckConstraint(
            "field_type IN ('text','number','date','boolean')",
            name="ck_crm_custom_fields_type",
        ),
    )

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_data_imports_org_created', ImportRun.org_id, ImportRun.created_at)
Index('ix_ecom_orders_customer_processed', Order.customer_id, Order.processed_at)
Index('ix_ecom_orders_org_number', Order.org_id, Order.order_number)
Index('ix_crm_companies_org_name', CrmCompany.org_id, CrmCompany.name)
Index('ix_data_sync_log_import', SyncLogEntry.import_id)
# -------------------------------------------------------------------
# DI + init helpers
# -------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db():
    """Ensure tables exist."""
    await ping_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    """Round-trip a trivial query and report latency."""
    start = time.time()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": int((time.time() - start) * 1000)}
