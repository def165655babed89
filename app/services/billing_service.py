"""Billing Service - the operations the API layer calls.

Wires the school directory, the record store, the batch generator and the
lifecycle manager together and fills in configured defaults (currency, setup
fee, per-student rate, billing period).
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from app.config import settings
from app.core.exceptions import InvalidAmount, InvalidTransition, RecordNotFound, SchoolInactive
from app.core.logging import get_logger
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus, BillingType, ExportFormat
from app.schemas.billing import (
    BatchResult,
    BillingFilter,
    BillingPeriod,
    BillingRecordAmend,
    BillingRecordCreate,
    BillingScope,
    BillingStats,
    ExportProjection,
    FailedSchool,
    FeeDefaults,
    FeePolicy,
    FeePreview,
    SchoolBillingSummary,
    SchoolRef,
)
from app.services.batch_generator import BatchGenerator
from app.services.billing_stats import build_export, compute_stats, summarize_school
from app.services.fee_calculator import compute_setup_fee, compute_subscription_fee, to_decimal
from app.services.lifecycle import MANUAL_TARGETS, LifecycleManager
from app.utils.time import get_utc_today, month_bounds

logger = get_logger(__name__)


def env_fee_defaults() -> FeeDefaults:
    return FeeDefaults(
        currency=settings.BILLING_DEFAULT_CURRENCY,
        setup_fee_amount=settings.BILLING_DEFAULT_SETUP_FEE,
        per_student_rate=settings.BILLING_DEFAULT_PER_STUDENT_RATE,
    )


class BillingService:
    def __init__(
        self,
        store,
        directory,
        defaults: Optional[FeeDefaults] = None,
        concurrency: Optional[int] = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self.defaults = defaults or env_fee_defaults()
        self.generator = BatchGenerator(store, concurrency)
        self.lifecycle = LifecycleManager(store)

    async def _resolve_scope(self, scope: Optional[BillingScope]) -> Tuple[List[SchoolRef], List[FailedSchool]]:
        """Target schools plus failures for requested ids that cannot be billed."""
        if scope is None or scope.school_ids is None:
            return await self.directory.list_schools(), []

        requested = list(dict.fromkeys(scope.school_ids))
        found = {s.id: s for s in await self.directory.list_schools(requested, active_only=False)}
        schools: List[SchoolRef] = []
        rejected: List[FailedSchool] = []
        for school_id in requested:
            school = found.get(school_id)
            if school is None:
                rejected.append(FailedSchool(school_id=school_id, reason="School not found", code=RecordNotFound.code))
            elif not school.is_active:
                rejected.append(FailedSchool(school_id=school_id, reason="School is inactive", code=SchoolInactive.code))
            else:
                schools.append(school)
        return schools, rejected

    async def _run_batch(self, policy: FeePolicy, scope: Optional[BillingScope], today: Optional[date]) -> BatchResult:
        schools, rejected = await self._resolve_scope(scope)
        logger.info(
            "Starting billing batch",
            extra={"billing_type": policy.billing_type.value, "schools": len(schools), "rejected": len(rejected)},
        )
        result = await self.generator.generate(schools, policy, today)
        result.failed.extend(rejected)
        return result

    async def create_setup_fees(
        self,
        amount: Optional[Decimal] = None,
        scope: Optional[BillingScope] = None,
        due_date: Optional[date] = None,
        description: Optional[str] = None,
        today: Optional[date] = None,
    ) -> BatchResult:
        amount = self.defaults.setup_fee_amount if amount is None else to_decimal(amount)
        # Reject a bad flat amount before touching any school
        compute_setup_fee(amount, self.defaults.currency)
        policy = FeePolicy(
            billing_type=BillingType.SETUP_FEE,
            amount=amount,
            currency=self.defaults.currency,
            due_date=due_date,
            description=description,
        )
        return await self._run_batch(policy, scope, today)

    async def create_subscription_fees(
        self,
        per_student_rate: Optional[Decimal] = None,
        period: Optional[BillingPeriod] = None,
        scope: Optional[BillingScope] = None,
        due_date: Optional[date] = None,
        description: Optional[str] = None,
        today: Optional[date] = None,
    ) -> BatchResult:
        rate = self.defaults.per_student_rate if per_student_rate is None else to_decimal(per_student_rate, "per_student_rate")
        if rate <= 0:
            raise InvalidAmount(f"Per-student rate must be positive, got {rate}", rate=str(rate))
        if period is None:
            start, end = month_bounds(today or get_utc_today())
            period = BillingPeriod(start=start, end=end)
        policy = FeePolicy(
            billing_type=BillingType.SUBSCRIPTION_FEE,
            per_student_rate=rate,
            period=period,
            currency=self.defaults.currency,
            due_date=due_date,
            description=description,
        )
        return await self._run_batch(policy, scope, today)

    async def create_record(self, data: BillingRecordCreate, today: Optional[date] = None) -> BillingRecord:
        """
        Create one record for one school.

        Unlike the batch paths an existing record for the same key is an
        error (DuplicateKeyError), not a skip.
        """
        school = await self.directory.get_school(data.school_id)
        if school is None:
            raise RecordNotFound(f"School {data.school_id} not found")
        if not school.is_active:
            raise SchoolInactive(f"School {school.id} is inactive and cannot be billed", school_id=str(school.id))

        if data.billing_type == BillingType.SETUP_FEE:
            policy = FeePolicy(
                billing_type=BillingType.SETUP_FEE,
                amount=data.amount,
                currency=self.defaults.currency,
                due_date=data.due_date,
                description=data.description,
            )
        else:
            period = data.period
            if period is None:
                start, end = month_bounds(today or get_utc_today())
                period = BillingPeriod(start=start, end=end)
            policy = FeePolicy(
                billing_type=BillingType.SUBSCRIPTION_FEE,
                per_student_rate=data.amount,
                period=period,
                currency=self.defaults.currency,
                due_date=data.due_date,
                description=data.description,
            )
        record = await self.generator.create_one(school, policy, today)
        logger.info(
            "Billing record created",
            extra={"record_id": str(record.id), "invoice_number": record.invoice_number, "school_id": str(school.id)},
        )
        return record

    async def get_record(self, record_id: UUID) -> BillingRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise RecordNotFound(f"Billing record {record_id} not found")
        return record

    async def transition_status(
        self,
        record_id: UUID,
        target: BillingStatus,
        payment_method: Optional[str] = None,
        paid_date: Optional[date] = None,
    ) -> BillingRecord:
        """Caller-driven transitions; overdue is reached only through the sweep."""
        if target not in MANUAL_TARGETS:
            raise InvalidTransition(
                f"Records cannot be moved to {target.value} directly",
                target=target.value,
            )
        return await self.lifecycle.transition(record_id, target, payment_method=payment_method, paid_date=paid_date)

    async def amend_record(self, record_id: UUID, data: BillingRecordAmend) -> BillingRecord:
        return await self.lifecycle.amend(
            record_id,
            amount=data.amount,
            description=data.description,
            due_date=data.due_date,
        )

    async def sweep_overdue(self, today: Optional[date] = None) -> List[BillingRecord]:
        return await self.lifecycle.sweep_overdue(today)

    async def list_records(
        self,
        filters: Optional[BillingFilter] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[BillingRecord], int]:
        offset = (page - 1) * page_size
        records = await self.store.query(filters, offset=offset, limit=page_size)
        total = await self.store.count(filters)
        return records, total

    def _currency_scope(self, filters: Optional[BillingFilter]) -> BillingFilter:
        """Aggregates cover one currency: the requested one, else the configured default."""
        filters = filters or BillingFilter()
        if filters.currency is None:
            filters = filters.model_copy(update={"currency": self.defaults.currency})
        return filters

    async def get_stats(self, filters: Optional[BillingFilter] = None) -> BillingStats:
        filters = self._currency_scope(filters)
        records = await self.store.query(filters)
        return compute_stats(records, filters.currency)

    async def get_school_summary(self, school_id: UUID) -> SchoolBillingSummary:
        records = await self.store.query(BillingFilter(school_id=school_id))
        return summarize_school(school_id, records)

    async def export(self, filters: Optional[BillingFilter] = None, fmt: ExportFormat = ExportFormat.EXCEL) -> ExportProjection:
        filters = self._currency_scope(filters)
        records = await self.store.query(filters)
        projection = build_export(records, fmt, filters.currency, filters)
        logger.info("Billing export prepared", extra={"format": fmt.value, "rows": len(projection.rows)})
        return projection

    async def preview_subscription_fee(self, school_id: UUID, per_student_rate: Optional[Decimal] = None) -> FeePreview:
        """What a subscription fee for this school would be right now."""
        school = await self.directory.get_school(school_id)
        if school is None:
            raise RecordNotFound(f"School {school_id} not found")
        rate = self.defaults.per_student_rate if per_student_rate is None else to_decimal(per_student_rate, "per_student_rate")
        amount = compute_subscription_fee(school.active_student_count, rate, self.defaults.currency)
        return FeePreview(
            school_id=school_id,
            student_count=school.active_student_count,
            per_student_rate=rate,
            calculated_amount=amount,
            currency=self.defaults.currency,
        )
