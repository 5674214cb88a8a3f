"""
Storage Service Layer
Database operations used by the import pipeline, the CRM importer and the
import history endpoints.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, desc, func, insert, update
from sqlalchemy import inspect as sa_inspect
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
from datetime import datetime
from decimal import Decimal

from database import (
    AsyncSessionLocal, ImportRun, ImportProgress, SyncLogEntry, Customer, Order,
    CrmCompany, CrmContact, CrmDeal, CrmProduct, CustomFieldDefinition,
    TERMINAL_IMPORT_STATUSES,
)
from settings import resolve_org_id

logger = logging.getLogger(__name__)

CRM_MODELS = {
    "crm_contacts": CrmContact,
    "crm_companies": CrmCompany,
    "crm_deals": CrmDeal,
    "crm_products": CrmProduct,
}


class StorageService:
    """Storage service providing database operations"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or AsyncSessionLocal

    def _attribute_names(self, model) -> set:
        return {attr.key for attr in sa_inspect(model).column_attrs}

    def _filter_columns(self, model, rows: List[dict]) -> List[dict]:
        """Drop keys that aren't mapped attributes of the model (prevents invalid kw errors)."""
        allowed = self._attribute_names(model)
        return [{k: v for k, v in row.items() if k in allowed} for row in rows]

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self._session_factory()

    async def _bulk_insert(self, model, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        rows = self._filter_columns(model, rows)
        async with self.get_session() as session:
            await session.execute(insert(model), rows)
            await session.commit()
        return len(rows)

    # Customer operations
    async def find_customer_ids_by_email(self, org_id: str, emails: Sequence[str]) -> Dict[str, str]:
        """Map lower-cased email -> customer id for the emails that already exist."""
        if not emails:
            return {}
        async with self.get_session() as session:
            result = await session.execute(
                select(Customer.email, Customer.id).where(
                    Customer.org_id == org_id,
                    Customer.email.in_(list(emails)),
                )
            )
            return {email.lower(): cid for email, cid in result.all()}

    async def insert_customers(self, rows: List[Dict[str, Any]]) -> int:
        """Insert one chunk of customer drafts in a single transaction."""
        return await self._bulk_insert(Customer, rows)

    async def get_customer_by_email(self, org_id: str, email: str) -> Optional[Customer]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Customer).where(Customer.org_id == org_id, Customer.email == email.lower())
            )
            return result.scalars().first()

    async def count_customers(self, org_id: str) -> int:
        async with self.get_session() as session:
            result = await session.execute(
                select(func.count()).select_from(Customer).where(Customer.org_id == org_id)
            )
            return int(result.scalar() or 0)

    async def get_customer_order_history(self, customer_id: str) -> List[Tuple[Decimal, datetime]]:
        """(total_price, processed_at) for every order of a customer, oldest first."""
        async with self.get_session() as session:
            result = await session.execute(
                select(Order.total_price, Order.processed_at)
                .where(Order.customer_id == customer_id)
                .order_by(Order.processed_at.asc(), Order.created_at.asc())
            )
            return [(row.total_price, row.processed_at) for row in result.all()]

    async def update_customer_aggregates(self, customer_id: str, values: Dict[str, Any]) -> bool:
        async with self.get_session() as session:
            result = await session.execute(
                update(Customer)
                .where(Customer.id == customer_id)
                .values(**values, updated_at=func.now())
            )
            await session.commit()
            return bool(result.rowcount)

    # Order operations
    async def insert_orders(self, rows: List[Dict[str, Any]]) -> int:
        """Insert one chunk of order drafts in a single transaction."""
        return await self._bulk_insert(Order, rows)

    async def get_orders(
        self,
        org_id: str,
        *,
        import_id: Optional[str] = None,
        order_number: Optional[str] = None,
    ) -> List[Order]:
        async with self.get_session() as session:
            query = select(Order).where(Order.org_id == org_id)
            if import_id:
                query = query.where(Order.import_id == import_id)
            if order_number:
                query = query.where(Order.order_number == order_number)
            result = await session.execute(query.order_by(Order.processed_at, Order.order_number))
            return list(result.scalars().all())

    # Import run operations
    async def create_import_run(self, run_data: Dict[str, Any]) -> ImportRun:
        """Create new import run record"""
        async with self.get_session() as session:
            payload = dict(run_data)
            payload["org_id"] = resolve_org_id(payload.get("org_id"))
            run = ImportRun(**payload)
            session.add(run)
            await session.commit()
            await session.refresh(run)
            return run

    async def get_import_run(self, import_id: str, org_id: Optional[str] = None) -> Optional[ImportRun]:
        async with self.get_session() as session:
            run = await session.get(ImportRun, import_id)
            if run is not None and org_id and run.org_id != org_id:
                return None
            return run

    async def list_import_runs(self, org_id: str, limit: int = 50) -> List[ImportRun]:
        """Recent import runs, newest first."""
        async with self.get_session() as session:
            query = (
                select(ImportRun)
                .where(ImportRun.org_id == org_id)
                .order_by(desc(ImportRun.created_at))
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_import_run(self, import_id: str, updates: Dict[str, Any]) -> bool:
        """Update a run that has not reached a terminal status; terminal runs are left untouched."""
        if not import_id:
            return False
        async with self.get_session() as session:
            stmt = (
                update(ImportRun)
                .where(
                    ImportRun.id == import_id,
                    ImportRun.status.notin_(TERMINAL_IMPORT_STATUSES),
                )
                .values(**updates)
            )
            result = await session.execute(stmt)
            if result.rowcount:
                await session.commit()
                return True

            await session.rollback()
            return False

    async def safe_finalize_import_run(
        self,
        import_id: str,
        status: str,
        values: Dict[str, Any],
    ) -> bool:
        """Atomically transition a run to a terminal status if it is not already terminal."""
        if status not in TERMINAL_IMPORT_STATUSES:
            raise ValueError(f"{status!r} is not a terminal import status")
        payload = dict(values)
        payload["status"] = status
        payload.setdefault("completed_at", datetime.utcnow())
        return await self.update_import_run(import_id, payload)

    # Activity log
    async def add_sync_log_entry(self, entry: Dict[str, Any]) -> SyncLogEntry:
        async with self.get_session() as session:
            record = SyncLogEntry(**entry)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def get_sync_log(self, org_id: str, import_id: Optional[str] = None) -> List[SyncLogEntry]:
        async with self.get_session() as session:
            query = select(SyncLogEntry).where(SyncLogEntry.org_id == org_id)
            if import_id:
                query = query.where(SyncLogEntry.import_id == import_id)
            result = await session.execute(query.order_by(desc(SyncLogEntry.created_at)))
            return list(result.scalars().all())

    # Progress snapshots
    async def upsert_import_progress(self, snapshot: Dict[str, Any]) -> None:
        """Insert or overwrite the latest progress snapshot for a run."""
        async with self.get_session() as session:
            existing = await session.get(ImportProgress, snapshot["import_id"])
            if existing is None:
                session.add(ImportProgress(**snapshot))
            else:
                for key, value in snapshot.items():
                    setattr(existing, key, value)
            await session.commit()

    async def get_import_progress(self, import_id: str) -> Optional[ImportProgress]:
        async with self.get_session() as session:
            return await session.get(ImportProgress, import_id)

    # CRM operations
    async def insert_crm_records(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        model = CRM_MODELS[table_name]
        return await self._bulk_insert(model, rows)

    async def get_crm_records(self, table_name: str, org_id: str) -> List[Any]:
        model = CRM_MODELS[table_name]
        async with self.get_session() as session:
            result = await session.execute(
                select(model).where(model.org_id == org_id).order_by(model.created_at)
            )
            return list(result.scalars().all())

    async def find_company_ids_by_name(self, org_id: str, names: Iterable[str]) -> Dict[str, str]:
        """Map lower-cased company name -> id; first match wins for duplicate names."""
        wanted = {n.strip().lower() for n in names if n and n.strip()}
        if not wanted:
            return {}
        async with self.get_session() as session:
            result = await session.execute(
                select(CrmCompany.name, CrmCompany.id)
                .where(
                    CrmCompany.org_id == org_id,
                    func.lower(CrmCompany.name).in_(list(wanted)),
                )
                .order_by(CrmCompany.created_at)
            )
            found: Dict[str, str] = {}
            for name, company_id in result.all():
                found.setdefault(name.lower(), company_id)
            return found

    async def list_custom_fields(self, org_id: str, table_name: str) -> List[CustomFieldDefinition]:
        async with self.get_session() as session:
            result = await session.execute(
                select(CustomFieldDefinition)
                .where(
                    CustomFieldDefinition.org_id == org_id,
                    CustomFieldDefinition.table_name == table_name,
                )
                .order_by(CustomFieldDefinition.sort_order)
            )
            return list(result.scalars().all())

    async def add_custom_fields(
        self,
        org_id: str,
        table_name: str,
        definitions: List[Dict[str, Any]],
        user_id: Optional[str] = None,
    ) -> int:
        """Register custom field definitions that don't exist yet; returns how many were added."""
        if not definitions:
            return 0
        existing = {f.field_key for f in await self.list_custom_fields(org_id, table_name)}
        sort_base = len(existing)
        rows = []
        for definition in definitions:
            key = definition["field_key"]
            if key in existing:
                continue
            existing.add(key)
            rows.append({
                "org_id": org_id,
                "user_id": user_id,
                "table_name": table_name,
                "field_key": key,
                "field_label": definition.get("field_label") or key,
                "field_type": definition.get("field_type") or "text",
                "sort_order": sort_base + len(rows),
            })
        return await self._bulk_insert(CustomFieldDefinition, rows)


# Global storage instance
storage = StorageService()
