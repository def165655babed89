"""Unit tests for billing aggregation and export projection."""

import random
from datetime import date, datetime
from decimal import Decimal
from itertools import count
from uuid import uuid4

import pytest

from app.core.exceptions import ValidationError
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus, BillingType, ExportFormat
from app.schemas.billing import BillingFilter
from app.services.billing_stats import (
    EXPORT_COLUMNS,
    build_export,
    collection_rate,
    compute_stats,
    summarize_school,
)

_seq = count(1)


def make_record(school_id=None, amount="1000", status=BillingStatus.PENDING,
                billing_type=BillingType.SETUP_FEE, currency="KES"):
    n = next(_seq)
    return BillingRecord(
        id=uuid4(),
        school_id=school_id or uuid4(),
        invoice_number=f"SET-2026-{n:05d}",
        idempotency_key=f"key-{n}",
        billing_type=billing_type,
        amount=Decimal(amount),
        currency=currency,
        status=status,
        due_date=date(2026, 11, 1),
        paid_date=date(2026, 10, 20) if status == BillingStatus.PAID else None,
        payment_method="mpesa" if status == BillingStatus.PAID else None,
        description="Test fee",
        created_at=datetime(2026, 10, 19, 8, 30),
        updated_at=datetime(2026, 10, 19, 8, 30),
    )


def test_empty_set_gives_zeroed_stats():
    stats = compute_stats([], "KES")
    assert stats.total_billed == 0
    assert stats.total_paid == 0
    assert stats.outstanding == 0
    assert stats.collection_rate == 0
    assert stats.record_count == 0
    assert stats.per_school == []
    assert all(v == 0 for v in stats.counts_by_status.values())


def test_totals_and_breakdowns():
    school = uuid4()
    records = [
        make_record(school, "5000.00", BillingStatus.PAID),
        make_record(school, "18000.00", BillingStatus.PENDING, BillingType.SUBSCRIPTION_FEE),
        make_record(uuid4(), "1500.50", BillingStatus.OVERDUE, BillingType.SUBSCRIPTION_FEE),
        make_record(uuid4(), "700.00", BillingStatus.CANCELLED, BillingType.SUBSCRIPTION_FEE),
    ]
    stats = compute_stats(records, "KES")

    assert stats.total_billed == Decimal("25200.50")
    assert stats.total_paid == Decimal("5000.00")
    assert stats.outstanding == Decimal("20200.50")
    assert stats.pending_amount == Decimal("18000.00")
    assert stats.overdue_amount == Decimal("1500.50")
    assert stats.cancelled_amount == Decimal("700.00")
    assert stats.setup_fees_total == Decimal("5000.00")
    assert stats.subscription_fees_total == Decimal("20200.50")
    assert stats.active_subscriptions == 2
    assert stats.total_schools == 3
    assert stats.counts_by_status[BillingStatus.PAID] == 1
    assert stats.counts_by_type[BillingType.SUBSCRIPTION_FEE] == 3
    assert stats.collection_rate == Decimal("0.1984")
    assert len(stats.per_school) == 3


def test_totals_balance_exactly_for_random_sets():
    rng = random.Random(42)
    for _ in range(50):
        records = [
            make_record(
                amount=f"{rng.randint(1, 10_000_000) / 100:.2f}",
                status=rng.choice(list(BillingStatus)),
            )
            for _ in range(rng.randint(1, 40))
        ]
        stats = compute_stats(records, "KES", include_per_school=False)
        assert stats.total_billed == stats.total_paid + stats.outstanding
        assert 0 <= stats.collection_rate <= 1


def test_collection_rate_bounds():
    assert collection_rate(Decimal("0"), Decimal("0")) == 0
    assert collection_rate(Decimal("100"), Decimal("100")) == 1
    assert collection_rate(Decimal("1"), Decimal("3")) == Decimal("0.3333")


def test_mixed_currencies_refused():
    with pytest.raises(ValidationError):
        compute_stats([make_record(currency="KES"), make_record(currency="USD")], "KES")


def test_school_summary_ignores_other_schools():
    school = uuid4()
    records = [
        make_record(school, "100.00", BillingStatus.PAID),
        make_record(school, "50.00"),
        make_record(uuid4(), "999.00"),
    ]
    summary = summarize_school(school, records)
    assert summary.record_count == 2
    assert summary.total_billed == Decimal("150.00")
    assert summary.total_paid == Decimal("100.00")
    assert summary.outstanding == Decimal("50.00")
    assert summary.counts_by_status[BillingStatus.PENDING] == 1


def test_export_projection():
    records = [make_record(amount="18000.00", status=BillingStatus.PAID), make_record(amount="50.00")]
    filters = BillingFilter(status=BillingStatus.PAID)
    projection = build_export(records, ExportFormat.EXCEL, "KES", filters)

    assert projection.format == ExportFormat.EXCEL
    assert projection.filename.endswith(".xlsx")
    assert projection.columns == EXPORT_COLUMNS
    assert projection.filters == {"status": "paid"}
    assert len(projection.rows) == 2
    row = projection.rows[0]
    assert row["amount"] == "18000.00"
    assert row["status"] == "paid"
    assert row["paid_date"] == "2026-10-20"
    assert row["billing_period_start"] == ""
    assert projection.summary.total_billed == Decimal("18050.00")
    assert projection.summary.per_school == []


def test_export_pdf_of_empty_set():
    projection = build_export([], ExportFormat.PDF, "KES")
    assert projection.rows == []
    assert projection.filename.endswith(".pdf")
    assert projection.summary.total_billed == 0
