from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from uuid import UUID
from datetime import datetime, date
from decimal import Decimal

from app.models.enums import BillingStatus, BillingType, ExportFormat


class BillingPeriod(BaseModel):
    """Inclusive date range a subscription fee covers"""
    start: date
    end: date

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_order(self) -> "BillingPeriod":
        if self.start > self.end:
            raise ValueError("billing period start must not be after its end")
        return self


class SchoolRef(BaseModel):
    """A school as seen by the billing engine (read from the directory)"""
    id: UUID
    name: Optional[str] = None
    active_student_count: int = 0
    is_active: bool = True

    model_config = ConfigDict(frozen=True)


class FeePolicy(BaseModel):
    """
    What to bill every school in a batch.

    Setup fees need ``amount``; subscription fees need ``per_student_rate``
    and ``period``.
    """
    billing_type: BillingType
    amount: Optional[Decimal] = None
    per_student_rate: Optional[Decimal] = None
    period: Optional[BillingPeriod] = None
    due_date: Optional[date] = None
    currency: str = "KES"
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_fields_for_type(self) -> "FeePolicy":
        if self.billing_type == BillingType.SETUP_FEE and self.amount is None:
            raise ValueError("setup fee policy requires amount")
        if self.billing_type == BillingType.SUBSCRIPTION_FEE:
            if self.per_student_rate is None:
                raise ValueError("subscription fee policy requires per_student_rate")
            if self.period is None:
                raise ValueError("subscription fee policy requires period")
        return self


class BillingScope(BaseModel):
    """Which schools a batch targets; no ids means every active school"""
    school_ids: Optional[List[UUID]] = None


class SetupFeeBatchRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, description="Flat fee; falls back to the configured setup fee")
    due_date: Optional[date] = None
    description: Optional[str] = None
    scope: BillingScope = Field(default_factory=BillingScope)


class SubscriptionFeeBatchRequest(BaseModel):
    per_student_rate: Optional[Decimal] = Field(None, description="Falls back to the configured per-student rate")
    period: Optional[BillingPeriod] = Field(None, description="Defaults to the current calendar month")
    due_date: Optional[date] = None
    description: Optional[str] = None
    scope: BillingScope = Field(default_factory=BillingScope)


class BillingRecordCreate(BaseModel):
    """
    Single-record creation. For subscription fees ``amount`` is the
    per-student rate and the student count is read from the directory.
    """
    school_id: UUID
    billing_type: BillingType
    amount: Decimal
    description: str = Field(..., min_length=1)
    due_date: Optional[date] = None
    period: Optional[BillingPeriod] = None


class BillingRecordAmend(BaseModel):
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    due_date: Optional[date] = None


class StatusTransitionRequest(BaseModel):
    status: BillingStatus
    payment_method: Optional[str] = None
    paid_date: Optional[date] = None


class BillingFilter(BaseModel):
    school_id: Optional[UUID] = None
    status: Optional[BillingStatus] = None
    billing_type: Optional[BillingType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    @model_validator(mode="after")
    def check_range(self) -> "BillingFilter":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    def as_params(self) -> Dict[str, str]:
        return {k: str(v.value if hasattr(v, "value") else v) for k, v in self.model_dump(exclude_none=True).items()}


class ExportRequest(BaseModel):
    format: ExportFormat = ExportFormat.EXCEL
    filters: BillingFilter = Field(default_factory=BillingFilter)


class BillingRecordResponse(BaseModel):
    id: UUID
    invoice_number: str
    school_id: UUID
    billing_type: BillingType
    amount: Decimal
    currency: str
    status: BillingStatus
    student_count: Optional[int] = None
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    due_date: date
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    description: str
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class FailedSchool(BaseModel):
    school_id: UUID
    reason: str
    code: str


class BatchResult(BaseModel):
    """Outcome of a batch run; every target school lands in exactly one list"""
    created: List[BillingRecordResponse] = Field(default_factory=list)
    skipped: List[UUID] = Field(default_factory=list)
    failed: List[FailedSchool] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.skipped) + len(self.failed)


class SchoolBillingSummary(BaseModel):
    school_id: UUID
    total_billed: Decimal
    total_paid: Decimal
    outstanding: Decimal
    record_count: int
    counts_by_status: Dict[BillingStatus, int]
    counts_by_type: Dict[BillingType, int]


class BillingStats(BaseModel):
    currency: str
    total_billed: Decimal
    total_paid: Decimal
    outstanding: Decimal
    collection_rate: Decimal
    pending_amount: Decimal
    overdue_amount: Decimal
    cancelled_amount: Decimal
    setup_fees_total: Decimal
    subscription_fees_total: Decimal
    record_count: int
    total_schools: int
    active_subscriptions: int
    counts_by_status: Dict[BillingStatus, int]
    counts_by_type: Dict[BillingType, int]
    per_school: List[SchoolBillingSummary] = Field(default_factory=list)


class ExportProjection(BaseModel):
    """Format-agnostic export payload handed to the renderer"""
    format: ExportFormat
    filename: str
    generated_at: datetime
    filters: Dict[str, str]
    columns: List[str]
    rows: List[Dict[str, str]]
    summary: BillingStats


class FeePreview(BaseModel):
    school_id: UUID
    student_count: int
    per_student_rate: Decimal
    calculated_amount: Decimal
    currency: str


class FeeDefaults(BaseModel):
    currency: str
    setup_fee_amount: Decimal
    per_student_rate: Decimal


class BillingSettingResponse(BaseModel):
    setting_key: str
    setting_value: Any
    description: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BillingSettingUpdate(BaseModel):
    setting_value: Dict[str, Any]

    @field_validator("setting_value")
    @classmethod
    def not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError("setting_value must not be empty")
        return v
