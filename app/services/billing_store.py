"""Billing Record Store - durable storage behind the billing engine.

``BillingRecordStore`` is the contract the engine is written against;
``SqlAlchemyBillingStore`` implements it on PostgreSQL. Each call opens its own
short-lived session so batch workers can write for different schools in
parallel, and each call is bounded by a timeout that surfaces as the retryable
``StoreUnavailable``.
"""

import asyncio
from datetime import date, datetime, time, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.exceptions import ConflictError, DuplicateKeyError, RecordNotFound, StoreUnavailable
from app.core.logging import get_logger
from app.database import AsyncSessionLocal
from app.models.billing import BillingRecord, InvoiceSequence
from app.models.enums import BillingStatus, BillingType
from app.schemas.billing import BillingFilter
from app.utils.time import get_utc_now

logger = get_logger(__name__)

T = TypeVar("T")

IDEMPOTENCY_CONSTRAINT = "uq_billing_records_idempotency_key"
INVOICE_NUMBER_CONSTRAINT = "uq_billing_records_invoice_number"


class BillingRecordStore(Protocol):
    async def create(self, record: BillingRecord, timeout: Optional[float] = None) -> BillingRecord:
        """Insert a record; DuplicateKeyError if its idempotency key exists."""
        ...

    async def get(self, record_id: UUID, timeout: Optional[float] = None) -> Optional[BillingRecord]:
        ...

    async def exists_idempotency_key(self, key: str, timeout: Optional[float] = None) -> bool:
        ...

    async def update_status(
        self,
        record_id: UUID,
        expected_status: BillingStatus,
        new_status: BillingStatus,
        fields: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> BillingRecord:
        """Compare-and-swap on status; ConflictError if it no longer matches."""
        ...

    async def query(
        self,
        filters: Optional[BillingFilter] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[BillingRecord]:
        ...

    async def count(self, filters: Optional[BillingFilter] = None, timeout: Optional[float] = None) -> int:
        ...

    async def list_past_due(self, today: date, timeout: Optional[float] = None) -> List[BillingRecord]:
        """Pending records whose due date is before ``today``."""
        ...

    async def next_sequence(self, billing_type: BillingType, year: int, timeout: Optional[float] = None) -> int:
        ...


def _apply_filters(stmt, filters: Optional[BillingFilter]):
    if filters is None:
        return stmt
    if filters.school_id is not None:
        stmt = stmt.where(BillingRecord.school_id == filters.school_id)
    if filters.status is not None:
        stmt = stmt.where(BillingRecord.status == filters.status)
    if filters.billing_type is not None:
        stmt = stmt.where(BillingRecord.billing_type == filters.billing_type)
    if filters.currency is not None:
        stmt = stmt.where(BillingRecord.currency == filters.currency)
    if filters.date_from is not None:
        stmt = stmt.where(BillingRecord.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to is not None:
        # date_to is inclusive of the whole day
        stmt = stmt.where(BillingRecord.created_at < datetime.combine(filters.date_to + timedelta(days=1), time.min))
    return stmt


class SqlAlchemyBillingStore:
    """PostgreSQL-backed billing record store"""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        timeout: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout if timeout is not None else settings.BILLING_STORE_TIMEOUT_SECONDS

    async def _run(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        timeout: Optional[float],
    ) -> T:
        async def _in_session() -> T:
            async with self._session_factory() as session:
                return await work(session)

        limit = timeout if timeout is not None else self._timeout
        try:
            return await asyncio.wait_for(_in_session(), limit)
        except asyncio.TimeoutError:
            logger.warning("Billing store timed out", extra={"operation": operation, "timeout": limit})
            raise StoreUnavailable(f"Billing store timed out during {operation}", operation=operation)
        except (OperationalError, InterfaceError) as exc:
            logger.warning(
                "Billing store unavailable",
                extra={"operation": operation, "error": str(exc.orig)},
            )
            raise StoreUnavailable(f"Billing store unavailable during {operation}", operation=operation) from exc

    async def create(self, record: BillingRecord, timeout: Optional[float] = None) -> BillingRecord:
        async def work(session: AsyncSession) -> BillingRecord:
            now = get_utc_now()
            record.created_at = now
            record.updated_at = now
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                detail = str(exc.orig)
                if IDEMPOTENCY_CONSTRAINT in detail:
                    raise DuplicateKeyError(
                        "A billing record with this idempotency key already exists",
                        idempotency_key=record.idempotency_key,
                    ) from exc
                if INVOICE_NUMBER_CONSTRAINT in detail:
                    raise ConflictError(
                        f"Invoice number {record.invoice_number} is already taken",
                        invoice_number=record.invoice_number,
                    ) from exc
                raise
            return record

        return await self._run("create", work, timeout)

    async def get(self, record_id: UUID, timeout: Optional[float] = None) -> Optional[BillingRecord]:
        async def work(session: AsyncSession) -> Optional[BillingRecord]:
            result = await session.execute(select(BillingRecord).where(BillingRecord.id == record_id))
            return result.scalar_one_or_none()

        return await self._run("get", work, timeout)

    async def exists_idempotency_key(self, key: str, timeout: Optional[float] = None) -> bool:
        async def work(session: AsyncSession) -> bool:
            found = await session.scalar(
                select(BillingRecord.id).where(BillingRecord.idempotency_key == key).limit(1)
            )
            return found is not None

        return await self._run("exists_idempotency_key", work, timeout)

    async def update_status(
        self,
        record_id: UUID,
        expected_status: BillingStatus,
        new_status: BillingStatus,
        fields: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> BillingRecord:
        values = dict(fields or {})
        values["status"] = new_status
        values["updated_at"] = get_utc_now()

        async def work(session: AsyncSession) -> BillingRecord:
            stmt = (
                update(BillingRecord)
                .where(BillingRecord.id == record_id, BillingRecord.status == expected_status)
                .values(**values)
                .returning(BillingRecord)
                .execution_options(synchronize_session=False)
            )
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                current = await session.scalar(select(BillingRecord.status).where(BillingRecord.id == record_id))
                await session.rollback()
                if current is None:
                    raise RecordNotFound(f"Billing record {record_id} not found")
                raise ConflictError(
                    f"Billing record {record_id} is {current.value}, expected {expected_status.value}",
                    expected=expected_status.value,
                    actual=current.value,
                )
            await session.commit()
            return record

        return await self._run("update_status", work, timeout)

    async def query(
        self,
        filters: Optional[BillingFilter] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[BillingRecord]:
        async def work(session: AsyncSession) -> List[BillingRecord]:
            stmt = _apply_filters(select(BillingRecord), filters).order_by(
                BillingRecord.created_at.desc(), BillingRecord.invoice_number.desc()
            )
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

        return await self._run("query", work, timeout)

    async def count(self, filters: Optional[BillingFilter] = None, timeout: Optional[float] = None) -> int:
        async def work(session: AsyncSession) -> int:
            stmt = _apply_filters(select(func.count(BillingRecord.id)), filters)
            return (await session.scalar(stmt)) or 0

        return await self._run("count", work, timeout)

    async def list_past_due(self, today: date, timeout: Optional[float] = None) -> List[BillingRecord]:
        async def work(session: AsyncSession) -> List[BillingRecord]:
            result = await session.execute(
                select(BillingRecord)
                .where(BillingRecord.status == BillingStatus.PENDING, BillingRecord.due_date < today)
                .order_by(BillingRecord.due_date)
            )
            return list(result.scalars().all())

        return await self._run("list_past_due", work, timeout)

    async def next_sequence(self, billing_type: BillingType, year: int, timeout: Optional[float] = None) -> int:
        async def work(session: AsyncSession) -> int:
            # Single-statement upsert: the row lock makes concurrent callers queue
            stmt = pg_insert(InvoiceSequence).values(billing_type=billing_type.value, year=year, last_value=1)
            stmt = stmt.on_conflict_do_update(
                index_elements=[InvoiceSequence.billing_type, InvoiceSequence.year],
                set_={"last_value": InvoiceSequence.last_value + 1},
            ).returning(InvoiceSequence.last_value)
            value = (await session.execute(stmt)).scalar_one()
            await session.commit()
            return value

        return await self._run("next_sequence", work, timeout)
