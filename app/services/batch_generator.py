"""Batch Generator - bill many schools in one idempotent call.

Each school is processed independently by a bounded pool of asyncio workers.
A school already holding a record with the same idempotency key is reported as
skipped; the unique constraint in the store backs up the in-memory check when
two runs race. One school's failure never aborts the batch.
"""

import asyncio
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from app.config import settings
from app.core.exceptions import BillingError, DuplicateKeyError, InvalidAmount, ValidationError
from app.core.logging import get_logger
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus, BillingType
from app.schemas.billing import (
    BatchResult,
    BillingRecordResponse,
    FailedSchool,
    FeePolicy,
    SchoolRef,
)
from app.services.fee_calculator import compute_setup_fee, compute_subscription_fee
from app.services.invoice_numbering import idempotency_key, next_invoice_number
from app.utils.time import get_utc_today

logger = get_logger(__name__)

SETUP_FEE_DESCRIPTION = "One-time school setup fee"


def compute_amount(school: SchoolRef, policy: FeePolicy) -> Decimal:
    if policy.billing_type == BillingType.SETUP_FEE:
        return compute_setup_fee(policy.amount, policy.currency)
    amount = compute_subscription_fee(school.active_student_count, policy.per_student_rate, policy.currency)
    if amount <= 0:
        raise InvalidAmount(f"Subscription fee for school {school.id} computes to {amount}", amount=str(amount))
    return amount


def default_description(school: SchoolRef, policy: FeePolicy) -> str:
    if policy.billing_type == BillingType.SETUP_FEE:
        return SETUP_FEE_DESCRIPTION
    return f"Monthly subscription fee - {policy.period.start:%B %Y} ({school.active_student_count} students)"


def default_due_date(policy: FeePolicy, today: date) -> date:
    if policy.due_date is not None:
        return policy.due_date
    if policy.billing_type == BillingType.SETUP_FEE:
        return today + timedelta(days=settings.BILLING_SETUP_FEE_DUE_DAYS)
    return today + timedelta(days=settings.BILLING_SUBSCRIPTION_DUE_DAYS)


def build_record(
    school: SchoolRef,
    policy: FeePolicy,
    amount: Decimal,
    invoice_number: str,
    key: str,
    today: date,
) -> BillingRecord:
    """Assemble a new pending record; timestamps are left to the store."""
    description = (policy.description or default_description(school, policy)).strip()
    if not description:
        raise ValidationError("Description must not be empty")

    record = BillingRecord(
        id=uuid.uuid4(),
        school_id=school.id,
        invoice_number=invoice_number,
        idempotency_key=key,
        billing_type=policy.billing_type,
        amount=amount,
        currency=policy.currency,
        status=BillingStatus.PENDING,
        due_date=default_due_date(policy, today),
        description=description,
    )
    if policy.billing_type == BillingType.SUBSCRIPTION_FEE:
        # Snapshot: later enrollment changes do not touch this record
        record.student_count = school.active_student_count
        record.billing_period_start = policy.period.start
        record.billing_period_end = policy.period.end
    return record


class BatchGenerator:
    def __init__(self, store, concurrency: Optional[int] = None) -> None:
        self.store = store
        self.concurrency = max(1, concurrency or settings.BILLING_BATCH_CONCURRENCY)

    async def create_one(self, school: SchoolRef, policy: FeePolicy, today: Optional[date] = None) -> BillingRecord:
        """
        Create the record ``policy`` describes for one school.

        Raises:
            DuplicateKeyError: the school is already billed for this key
            InvalidAmount: the fee does not compute to a positive amount
            StoreUnavailable: the store timed out or dropped the connection
        """
        today = today or get_utc_today()
        key = idempotency_key(school.id, policy.billing_type, policy.period)
        if await self.store.exists_idempotency_key(key):
            raise DuplicateKeyError(
                f"School {school.id} already has a {policy.billing_type.value} for this period",
                idempotency_key=key,
            )
        amount = compute_amount(school, policy)
        invoice_number = await next_invoice_number(
            self.store, school.id, policy.billing_type, policy.period, today
        )
        record = build_record(school, policy, amount, invoice_number, key, today)
        return await self.store.create(record)

    async def generate(
        self,
        schools: Sequence[SchoolRef],
        policy: FeePolicy,
        today: Optional[date] = None,
    ) -> BatchResult:
        today = today or get_utc_today()
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes: List[Optional[Tuple[str, object]]] = [None] * len(schools)

        async def worker(index: int, school: SchoolRef) -> None:
            async with semaphore:
                try:
                    record = await self.create_one(school, policy, today)
                    outcomes[index] = ("created", record)
                except DuplicateKeyError:
                    outcomes[index] = ("skipped", school.id)
                except BillingError as exc:
                    logger.warning(
                        "Billing failed for school",
                        extra={"school_id": str(school.id), "code": exc.code, "reason": exc.message},
                    )
                    outcomes[index] = ("failed", FailedSchool(school_id=school.id, reason=exc.message, code=exc.code))
                except Exception as exc:
                    logger.exception("Unexpected error billing school", extra={"school_id": str(school.id)})
                    outcomes[index] = (
                        "failed",
                        FailedSchool(school_id=school.id, reason=str(exc) or type(exc).__name__, code="INTERNAL_ERROR"),
                    )

        await asyncio.gather(*(worker(i, school) for i, school in enumerate(schools)))

        result = BatchResult()
        for kind, value in outcomes:
            if kind == "created":
                result.created.append(BillingRecordResponse.model_validate(value))
            elif kind == "skipped":
                result.skipped.append(value)
            else:
                result.failed.append(value)

        logger.info(
            "Billing batch finished",
            extra={
                "billing_type": policy.billing_type.value,
                "schools": len(schools),
                "created_count": len(result.created),
                "skipped_count": len(result.skipped),
                "failed_count": len(result.failed),
            },
        )
        return result
