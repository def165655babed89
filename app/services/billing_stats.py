"""Aggregation & export projection over billing records.

Everything here is read-only and derived: records in, summaries out. Sums
stay in ``Decimal`` so ``total_billed == total_paid + outstanding`` holds
exactly.
"""

from collections import Counter, defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from app.core.exceptions import ValidationError
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus, BillingType, ExportFormat
from app.schemas.billing import BillingFilter, BillingStats, ExportProjection, SchoolBillingSummary
from app.utils.time import get_utc_now

ZERO = Decimal("0")
RATE_PRECISION = Decimal("0.0001")

EXPORT_COLUMNS = [
    "invoice_number",
    "school_id",
    "billing_type",
    "status",
    "amount",
    "currency",
    "student_count",
    "billing_period_start",
    "billing_period_end",
    "due_date",
    "paid_date",
    "payment_method",
    "description",
    "created_at",
]

EXPORT_EXTENSIONS = {ExportFormat.PDF: "pdf", ExportFormat.EXCEL: "xlsx"}


def collection_rate(total_paid: Decimal, total_billed: Decimal) -> Decimal:
    if total_billed == 0:
        return ZERO.quantize(RATE_PRECISION)
    return (total_paid / total_billed).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def _status_counts(records: Iterable[BillingRecord]) -> Dict[BillingStatus, int]:
    counts = Counter(BillingStatus(r.status) for r in records)
    return {status: counts.get(status, 0) for status in BillingStatus}


def _type_counts(records: Iterable[BillingRecord]) -> Dict[BillingType, int]:
    counts = Counter(BillingType(r.billing_type) for r in records)
    return {billing_type: counts.get(billing_type, 0) for billing_type in BillingType}


def _sum(records: Iterable[BillingRecord]) -> Decimal:
    return sum((Decimal(r.amount) for r in records), ZERO)


def summarize_school(school_id: UUID, records: Sequence[BillingRecord]) -> SchoolBillingSummary:
    """Roll up one school's records; records for other schools are ignored."""
    own = [r for r in records if r.school_id == school_id]
    billed = _sum(own)
    paid = _sum(r for r in own if r.status == BillingStatus.PAID)
    return SchoolBillingSummary(
        school_id=school_id,
        total_billed=billed,
        total_paid=paid,
        outstanding=billed - paid,
        record_count=len(own),
        counts_by_status=_status_counts(own),
        counts_by_type=_type_counts(own),
    )


def per_school_summaries(records: Sequence[BillingRecord]) -> List[SchoolBillingSummary]:
    by_school: Dict[UUID, List[BillingRecord]] = defaultdict(list)
    for record in records:
        by_school[record.school_id].append(record)
    return [summarize_school(school_id, group) for school_id, group in by_school.items()]


def compute_stats(
    records: Sequence[BillingRecord],
    currency: str,
    include_per_school: bool = True,
) -> BillingStats:
    """
    Totals, collection rate and breakdowns for an already-filtered record set.

    An empty set yields zeroed stats. Records in another currency are refused
    rather than summed.
    """
    foreign = {r.currency for r in records if r.currency != currency}
    if foreign:
        raise ValidationError(
            f"Cannot aggregate {currency} with {', '.join(sorted(foreign))} records",
            currencies=sorted(foreign),
        )

    def amount_where(status: Optional[BillingStatus] = None, billing_type: Optional[BillingType] = None) -> Decimal:
        return _sum(
            r for r in records
            if (status is None or r.status == status) and (billing_type is None or r.billing_type == billing_type)
        )

    total_billed = _sum(records)
    total_paid = amount_where(status=BillingStatus.PAID)

    return BillingStats(
        currency=currency,
        total_billed=total_billed,
        total_paid=total_paid,
        outstanding=total_billed - total_paid,
        collection_rate=collection_rate(total_paid, total_billed),
        pending_amount=amount_where(status=BillingStatus.PENDING),
        overdue_amount=amount_where(status=BillingStatus.OVERDUE),
        cancelled_amount=amount_where(status=BillingStatus.CANCELLED),
        setup_fees_total=amount_where(billing_type=BillingType.SETUP_FEE),
        subscription_fees_total=amount_where(billing_type=BillingType.SUBSCRIPTION_FEE),
        record_count=len(records),
        total_schools=len({r.school_id for r in records}),
        active_subscriptions=sum(
            1 for r in records
            if r.billing_type == BillingType.SUBSCRIPTION_FEE and r.status != BillingStatus.CANCELLED
        ),
        counts_by_status=_status_counts(records),
        counts_by_type=_type_counts(records),
        per_school=per_school_summaries(records) if include_per_school else [],
    )


def _cell(value) -> str:
    if value is None:
        return ""
    if hasattr(value, "value"):
        return str(value.value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def export_row(record: BillingRecord) -> Dict[str, str]:
    return {column: _cell(getattr(record, column)) for column in EXPORT_COLUMNS}


def build_export(
    records: Sequence[BillingRecord],
    fmt: ExportFormat,
    currency: str,
    filters: Optional[BillingFilter] = None,
) -> ExportProjection:
    """Rows plus the aggregate block, ready for the PDF/Excel renderer."""
    generated_at = get_utc_now()
    return ExportProjection(
        format=fmt,
        filename=f"billing-records-{generated_at:%Y%m%d-%H%M%S}.{EXPORT_EXTENSIONS[fmt]}",
        generated_at=generated_at,
        filters=filters.as_params() if filters else {},
        columns=list(EXPORT_COLUMNS),
        rows=[export_row(r) for r in records],
        summary=compute_stats(records, currency, include_per_school=False),
    )
