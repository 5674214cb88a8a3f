"""
Customer Resolver
Deduplicates customers by lower-cased email: existing customers are found in
bounded lookup batches, missing ones are created in writer chunks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from database import _new_id
from services.batch_writer import Draft, ProgressCounter, WriteReport, chunked, write_in_chunks
from services.coercion import parse_bool
from services.field_mapper import MappedRow, MappingPlan
from settings import CUSTOMER_LOOKUP_BATCH_SIZE

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCustomers:
    email_to_id: Dict[str, str] = field(default_factory=dict)
    existing: Dict[str, str] = field(default_factory=dict)
    created: Dict[str, str] = field(default_factory=dict)
    drafts: List[Draft] = field(default_factory=list)
    report: WriteReport = field(default_factory=WriteReport)

    def customer_ids(self) -> List[str]:
        return list(dict.fromkeys(self.email_to_id.values()))


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def split_full_name(full_name: str) -> Tuple[Optional[str], Optional[str]]:
    """'Ada King Lovelace' -> ('Ada', 'King Lovelace')."""
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], (" ".join(parts[1:]) or None)


def collect_emails(rows: Sequence[Dict[str, str]], plan: MappingPlan) -> Dict[str, List[int]]:
    """Distinct normalized emails in first-seen order, each with its 0-based row indexes."""
    by_email: Dict[str, List[int]] = {}
    for idx, row in enumerate(rows):
        email = normalize_email(plan.read(row).get("email"))
        if email:
            by_email.setdefault(email, []).append(idx)
    return by_email


def build_customer_values(
    email: str,
    first_row: MappedRow,
    *,
    org_id: str,
    imported_at: datetime,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Customer record for an email, built from the first row it was seen on."""
    first_name = first_row.get("first_name") or None
    last_name = first_row.get("last_name") or None
    full_name = first_row.get("full_name")
    if full_name and not (first_name and last_name):
        split_first, split_last = split_full_name(full_name)
        first_name = first_name or split_first
        last_name = last_name or split_last

    address = first_row.with_prefix("addr_")

    metadata: Dict[str, Any] = {"imported_at": imported_at.isoformat()}
    if user_id:
        metadata["imported_by"] = user_id
    metadata.update(first_row.extensions())

    return {
        "id": _new_id(),
        "org_id": org_id,
        "external_id": f"import-{email}",
        "external_source": "import",
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "phone": first_row.get("phone") or None,
        "default_address": address or None,
        "accepts_marketing": parse_bool(first_row.get("accepts_marketing")),
        "metadata_json": metadata,
    }


async def lookup_existing(
    store,
    org_id: str,
    emails: Sequence[str],
    batch_size: Optional[int] = None,
) -> Dict[str, str]:
    """Query existing customers in bounded batches.

    A failed batch is logged and its emails are treated as not found.
    """
    size = batch_size or CUSTOMER_LOOKUP_BATCH_SIZE
    found: Dict[str, str] = {}
    for start, batch in chunked(list(emails), size):
        try:
            found.update(await store.find_customer_ids_by_email(org_id, batch))
        except Exception:
            logger.exception(
                "Customer lookup batch %d-%d failed for org %s; treating as not found",
                start + 1, start + len(batch), org_id,
            )
    return found


async def resolve_customers(
    rows: Sequence[Dict[str, str]],
    plan: MappingPlan,
    *,
    store,
    org_id: str,
    progress: ProgressCounter,
    imported_at: datetime,
    user_id: Optional[str] = None,
    chunk_size: Optional[int] = None,
    lookup_batch_size: Optional[int] = None,
    emails: Optional[Dict[str, List[int]]] = None,
) -> ResolvedCustomers:
    """Resolve every distinct email to exactly one customer id, creating the missing ones.

    Each distinct email is one progress unit: matched emails complete on lookup,
    new ones as their insert chunk lands. The caller sizes the total.
    """
    by_email = emails if emails is not None else collect_emails(rows, plan)
    result = ResolvedCustomers()

    result.existing = await lookup_existing(store, org_id, list(by_email), lookup_batch_size)
    result.email_to_id.update(result.existing)
    if result.existing:
        await progress.advance(len(result.existing))

    for email, row_indexes in by_email.items():
        if email in result.email_to_id:
            continue
        values = build_customer_values(
            email,
            plan.read(rows[row_indexes[0]]),
            org_id=org_id,
            imported_at=imported_at,
            user_id=user_id,
        )
        result.drafts.append(Draft(values=values, source_rows=tuple(i + 1 for i in row_indexes)))

    async def _recover(chunk: Sequence[Draft], exc: Exception) -> None:
        # Another run may have inserted the same emails first
        if not isinstance(exc, IntegrityError):
            return
        chunk_emails = [d.values["email"] for d in chunk]
        recovered = await store.find_customer_ids_by_email(org_id, chunk_emails)
        if recovered:
            logger.info("Recovered %d concurrently created customers for org %s", len(recovered), org_id)
        result.existing.update(recovered)
        result.email_to_id.update(recovered)

    result.report = await write_in_chunks(
        result.drafts,
        store.insert_customers,
        label="Customers",
        progress=progress,
        chunk_size=chunk_size,
        on_chunk_error=_recover,
    )

    for draft in result.report.written_drafts:
        email = draft.values["email"]
        result.created[email] = draft.values["id"]
        result.email_to_id[email] = draft.values["id"]

    logger.info(
        "Resolved %d emails for org %s: existing=%d created=%d failed=%d",
        len(by_email), org_id, len(result.existing), len(result.created), result.report.failed,
    )
    return result
