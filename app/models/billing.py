"""Billing Models"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ENUM, JSONB
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel, SchoolScopedMixin
from app.models.enums import BillingStatus, BillingType


class BillingRecord(BaseModel, SchoolScopedMixin):
    """
    One invoice issued to a school: a one-time setup fee or a subscription
    fee for a billing period.

    Rows are never deleted by the engine; cancellation is a status.
    The unique idempotency key is the authoritative guard against billing the
    same (school, type, period) twice.
    """
    __tablename__ = "school_billing_records"
    # Billing history must outlive the school row
    school_ondelete = "RESTRICT"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_billing_records_idempotency_key"),
        UniqueConstraint("invoice_number", name="uq_billing_records_invoice_number"),
        CheckConstraint("amount > 0", name="ck_billing_records_amount_positive"),
        CheckConstraint(
            "billing_period_start IS NULL OR billing_period_end IS NULL "
            "OR billing_period_start <= billing_period_end",
            name="ck_billing_records_period_order",
        ),
    )
    
    invoice_number = Column(String(32), nullable=False)
    idempotency_key = Column(String(64), nullable=False)
    billing_type = Column(ENUM(BillingType, name="billing_type", values_callable=lambda e: [m.value for m in e]), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="KES")
    status = Column(
        ENUM(BillingStatus, name="billing_status", values_callable=lambda e: [m.value for m in e]),
        default=BillingStatus.PENDING,
        nullable=False,
        index=True,
    )
    
    # Subscription fees only
    student_count = Column(Integer, nullable=True)
    billing_period_start = Column(Date, nullable=True)
    billing_period_end = Column(Date, nullable=True)
    
    due_date = Column(Date, nullable=False, index=True)
    paid_date = Column(Date, nullable=True)
    payment_method = Column(String(50), nullable=True)
    description = Column(Text, nullable=False)
    
    school = relationship("School", back_populates="billing_records")
    
    def __repr__(self) -> str:
        return f"<BillingRecord {self.invoice_number} {self.amount} {self.currency} - {self.status}>"


class InvoiceSequence(Base):
    """Per (billing type, year) counter behind invoice numbers"""
    __tablename__ = "invoice_sequences"
    
    billing_type = Column(String(32), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


class BillingSetting(BaseModel):
    """
    Admin-editable billing defaults (currency, setup fee, per-student rate),
    stored as JSON values keyed by name.
    """
    __tablename__ = "billing_settings"
    
    setting_key = Column(String(100), nullable=False, unique=True, index=True)
    setting_value = Column(JSONB, nullable=False)
    description = Column(Text, nullable=True)
    
    def __repr__(self) -> str:
        return f"<BillingSetting {self.setting_key}>"
