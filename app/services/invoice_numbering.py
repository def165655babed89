"""Invoice numbers and idempotency keys.

Invoice numbers look like ``SUB-2026-00042``: a type prefix, the billing year
and a per (type, year) sequence handed out atomically by the store.
"""

import hashlib
from datetime import date
from typing import Optional
from uuid import UUID

from app.config import settings
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.models.enums import BillingType
from app.schemas.billing import BillingPeriod
from app.utils.time import get_utc_today

logger = get_logger(__name__)

TYPE_PREFIXES = {
    BillingType.SETUP_FEE: "SET",
    BillingType.SUBSCRIPTION_FEE: "SUB",
}


def format_invoice_number(billing_type: BillingType, year: int, sequence: int) -> str:
    if sequence <= 0:
        raise ValidationError(f"Invoice sequence must be positive, got {sequence}")
    width = settings.INVOICE_SEQUENCE_WIDTH
    return f"{TYPE_PREFIXES[billing_type]}-{year:04d}-{sequence:0{width}d}"


def invoice_year(billing_type: BillingType, period: Optional[BillingPeriod], today: Optional[date] = None) -> int:
    # Subscriptions number by the year they bill for, setup fees by issue year
    if billing_type == BillingType.SUBSCRIPTION_FEE and period is not None:
        return period.start.year
    return (today or get_utc_today()).year


async def next_invoice_number(
    store,
    school_id: UUID,
    billing_type: BillingType,
    period: Optional[BillingPeriod] = None,
    today: Optional[date] = None,
) -> str:
    """
    Allocate the next invoice number for ``billing_type``.

    The sequence comes from ``store.next_sequence`` which is atomic, so
    concurrent callers never receive the same number.
    """
    year = invoice_year(billing_type, period, today)
    sequence = await store.next_sequence(billing_type, year)
    number = format_invoice_number(billing_type, year, sequence)
    logger.debug("Allocated invoice number", extra={"invoice_number": number, "school_id": str(school_id)})
    return number


def idempotency_key(school_id: UUID, billing_type: BillingType, period: Optional[BillingPeriod] = None) -> str:
    """
    Deterministic key identifying one billable (school, type[, period]).

    Setup fees are one-off per school so the period is ignored for them.
    """
    parts = [str(school_id), billing_type.value]
    if billing_type == BillingType.SUBSCRIPTION_FEE:
        if period is None:
            raise ValidationError("Subscription fees need a billing period for their idempotency key")
        parts.extend([period.start.isoformat(), period.end.isoformat()])
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
