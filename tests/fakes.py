"""In-memory doubles for the billing store and school directory.

They honour the same contracts as the SQL implementations: unique idempotency
keys and invoice numbers, compare-and-swap status updates, and atomic invoice
sequences. ``asyncio.sleep(0)`` yields between reads and writes so concurrent
callers really interleave.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from app.core.exceptions import ConflictError, DuplicateKeyError, RecordNotFound, StoreUnavailable
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus, BillingType
from app.schemas.billing import BillingFilter, SchoolRef
from app.utils.time import get_utc_now


def _matches(record: BillingRecord, filters: Optional[BillingFilter]) -> bool:
    if filters is None:
        return True
    if filters.school_id is not None and record.school_id != filters.school_id:
        return False
    if filters.status is not None and record.status != filters.status:
        return False
    if filters.billing_type is not None and record.billing_type != filters.billing_type:
        return False
    if filters.currency is not None and record.currency != filters.currency:
        return False
    if filters.date_from is not None and record.created_at < datetime.combine(filters.date_from, time.min):
        return False
    if filters.date_to is not None and record.created_at >= datetime.combine(filters.date_to + timedelta(days=1), time.min):
        return False
    return True


class InMemoryBillingStore:
    def __init__(self, fail_for_schools: Iterable[UUID] = ()) -> None:
        self.records: Dict[UUID, BillingRecord] = {}
        self.keys: Dict[str, UUID] = {}
        self.invoice_numbers: Set[str] = set()
        self.sequences: Dict[Tuple[str, int], int] = {}
        self.fail_for_schools = set(fail_for_schools)
        self.skip_fast_path = False

    async def create(self, record: BillingRecord, timeout: Optional[float] = None) -> BillingRecord:
        await asyncio.sleep(0)
        if record.school_id in self.fail_for_schools:
            raise StoreUnavailable("Simulated store outage")
        if record.idempotency_key in self.keys:
            raise DuplicateKeyError("duplicate idempotency key", idempotency_key=record.idempotency_key)
        if record.invoice_number in self.invoice_numbers:
            raise ConflictError(f"Invoice number {record.invoice_number} is already taken")
        now = get_utc_now()
        record.created_at = now
        record.updated_at = now
        self.records[record.id] = record
        self.keys[record.idempotency_key] = record.id
        self.invoice_numbers.add(record.invoice_number)
        return record

    async def get(self, record_id: UUID, timeout: Optional[float] = None) -> Optional[BillingRecord]:
        await asyncio.sleep(0)
        return self.records.get(record_id)

    async def exists_idempotency_key(self, key: str, timeout: Optional[float] = None) -> bool:
        await asyncio.sleep(0)
        if self.skip_fast_path:
            return False
        return key in self.keys

    async def update_status(self, record_id, expected_status, new_status, fields=None, timeout=None) -> BillingRecord:
        await asyncio.sleep(0)
        record = self.records.get(record_id)
        if record is None:
            raise RecordNotFound(f"Billing record {record_id} not found")
        if record.status != expected_status:
            raise ConflictError(f"Billing record {record_id} is {record.status.value}")
        for name, value in (fields or {}).items():
            setattr(record, name, value)
        record.status = new_status
        record.updated_at = get_utc_now()
        return record

    async def query(self, filters=None, offset: int = 0, limit: Optional[int] = None, timeout=None) -> List[BillingRecord]:
        await asyncio.sleep(0)
        items = sorted(
            (r for r in self.records.values() if _matches(r, filters)),
            key=lambda r: (r.created_at, r.invoice_number),
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return items[offset:end]

    async def count(self, filters=None, timeout=None) -> int:
        return len([r for r in self.records.values() if _matches(r, filters)])

    async def list_past_due(self, today: date, timeout=None) -> List[BillingRecord]:
        return [
            r for r in self.records.values()
            if r.status == BillingStatus.PENDING and r.due_date < today
        ]

    async def next_sequence(self, billing_type: BillingType, year: int, timeout=None) -> int:
        await asyncio.sleep(0)
        key = (billing_type.value, year)
        self.sequences[key] = self.sequences.get(key, 0) + 1
        return self.sequences[key]


class FakeSchoolDirectory:
    def __init__(self, schools: Iterable[SchoolRef]) -> None:
        self.schools = {s.id: s for s in schools}

    async def list_schools(self, school_ids=None, active_only: bool = True) -> List[SchoolRef]:
        if school_ids is None:
            items = list(self.schools.values())
        else:
            items = [self.schools[i] for i in school_ids if i in self.schools]
        if active_only:
            items = [s for s in items if s.is_active]
        return items

    async def get_school(self, school_id: UUID) -> Optional[SchoolRef]:
        return self.schools.get(school_id)
