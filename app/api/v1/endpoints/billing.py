import math
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.exceptions import ValidationError
from app.core.rate_limit import BATCH_LIMIT, limiter
from app.models.enums import BillingStatus, BillingType
from app.schemas.billing import (
    BatchResult,
    BillingFilter,
    BillingRecordAmend,
    BillingRecordCreate,
    BillingRecordResponse,
    BillingSettingResponse,
    BillingSettingUpdate,
    BillingStats,
    ExportProjection,
    ExportRequest,
    FeePreview,
    SchoolBillingSummary,
    SetupFeeBatchRequest,
    StatusTransitionRequest,
    SubscriptionFeeBatchRequest,
)
from app.schemas.responses import PaginatedResponse, PaginationMeta, SuccessResponse
from app.services.billing_service import BillingService
from app.services.billing_settings_service import BillingSettingsService

router = APIRouter()


def billing_filter(
    school_id: Optional[UUID] = None,
    status: Optional[BillingStatus] = None,
    billing_type: Optional[BillingType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
) -> BillingFilter:
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    return BillingFilter(
        school_id=school_id,
        status=status,
        billing_type=billing_type,
        date_from=date_from,
        date_to=date_to,
        currency=currency,
    )


def _batch_message(result: BatchResult) -> str:
    return f"{len(result.created)} created, {len(result.skipped)} skipped, {len(result.failed)} failed"


@router.post("/setup-fees", response_model=SuccessResponse[BatchResult])
@limiter.limit(BATCH_LIMIT)
async def create_setup_fees(
    request: Request,
    body: SetupFeeBatchRequest,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Create setup fees for the scoped schools (all active schools by default).
    Safe to repeat: already-billed schools come back as skipped.
    """
    result = await service.create_setup_fees(
        amount=body.amount,
        scope=body.scope,
        due_date=body.due_date,
        description=body.description,
    )
    return SuccessResponse(data=result, message=_batch_message(result))


@router.post("/subscription-fees", response_model=SuccessResponse[BatchResult])
@limiter.limit(BATCH_LIMIT)
async def create_subscription_fees(
    request: Request,
    body: SubscriptionFeeBatchRequest,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Create per-student subscription fees for a billing period.
    """
    result = await service.create_subscription_fees(
        per_student_rate=body.per_student_rate,
        period=body.period,
        scope=body.scope,
        due_date=body.due_date,
        description=body.description,
    )
    return SuccessResponse(data=result, message=_batch_message(result))


@router.post("/records", response_model=SuccessResponse[BillingRecordResponse])
async def create_billing_record(
    body: BillingRecordCreate,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Create a single billing record for one school.
    """
    record = await service.create_record(body)
    return SuccessResponse(data=record, message="Billing record created")


@router.get("/records", response_model=PaginatedResponse[BillingRecordResponse])
async def list_billing_records(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    filters: BillingFilter = Depends(billing_filter),
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    records, total = await service.list_records(filters, page=page, page_size=page_size)
    return PaginatedResponse(
        data=records,
        meta=PaginationMeta(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
    )


@router.get("/records/{record_id}", response_model=SuccessResponse[BillingRecordResponse])
async def get_billing_record(
    record_id: UUID,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    record = await service.get_record(record_id)
    return SuccessResponse(data=record)


@router.patch("/records/{record_id}", response_model=SuccessResponse[BillingRecordResponse])
async def amend_billing_record(
    record_id: UUID,
    body: BillingRecordAmend,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Change amount, description or due date. Pending records only.
    """
    record = await service.amend_record(record_id, body)
    return SuccessResponse(data=record, message="Billing record updated")


@router.post("/records/{record_id}/status", response_model=SuccessResponse[BillingRecordResponse])
async def transition_billing_status(
    record_id: UUID,
    body: StatusTransitionRequest,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Move a record through its lifecycle (mark paid, cancel).
    Marking paid requires payment_method and paid_date.
    """
    record = await service.transition_status(
        record_id,
        body.status,
        payment_method=body.payment_method,
        paid_date=body.paid_date,
    )
    return SuccessResponse(data=record, message=f"Billing record marked {record.status.value}")


@router.post("/overdue-sweep", response_model=SuccessResponse[List[BillingRecordResponse]])
async def sweep_overdue_records(
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Mark every pending record past its due date as overdue.
    Meant to be called by a scheduler.
    """
    moved = await service.sweep_overdue()
    return SuccessResponse(data=moved, message=f"{len(moved)} records marked overdue")


@router.get("/stats", response_model=SuccessResponse[BillingStats])
async def get_billing_stats(
    filters: BillingFilter = Depends(billing_filter),
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    stats = await service.get_stats(filters)
    return SuccessResponse(data=stats)


@router.get("/schools/{school_id}/summary", response_model=SuccessResponse[SchoolBillingSummary])
async def get_school_billing_summary(
    school_id: UUID,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    summary = await service.get_school_summary(school_id)
    return SuccessResponse(data=summary)


@router.get("/schools/{school_id}/fee-preview", response_model=SuccessResponse[FeePreview])
async def preview_subscription_fee(
    school_id: UUID,
    per_student_rate: Optional[Decimal] = None,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Subscription fee the school would be billed at its current enrollment.
    """
    preview = await service.preview_subscription_fee(school_id, per_student_rate)
    return SuccessResponse(data=preview)


@router.post("/export", response_model=SuccessResponse[ExportProjection])
async def export_billing_data(
    body: ExportRequest,
    service: BillingService = Depends(deps.get_billing_service),
) -> Any:
    """
    Export-ready rows and totals; the caller renders the PDF/Excel file.
    """
    projection = await service.export(body.filters, body.format)
    return SuccessResponse(data=projection, message=f"{len(projection.rows)} records ready for export")


@router.get("/settings", response_model=SuccessResponse[List[BillingSettingResponse]])
async def get_billing_settings(
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    billing_settings = await BillingSettingsService.list_settings(db)
    return SuccessResponse(data=billing_settings)


@router.put("/settings/{setting_key}", response_model=SuccessResponse[BillingSettingResponse])
async def update_billing_setting(
    setting_key: str,
    body: BillingSettingUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> Any:
    setting = await BillingSettingsService.update_setting(db, setting_key, body.setting_value)
    return SuccessResponse(data=setting, message="Billing setting updated")
