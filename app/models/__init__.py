"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel, SchoolScopedMixin, StatusMixin
from app.models.enums import BillingStatus, BillingType, ExportFormat
from app.models.school import School, Student
from app.models.billing import BillingRecord, BillingSetting, InvoiceSequence


__all__ = [
    # Base classes
    "BaseModel",
    "SchoolScopedMixin",
    "StatusMixin",
    
    # Enums
    "BillingStatus",
    "BillingType",
    "ExportFormat",
    
    # Directory
    "School",
    "Student",
    
    # Billing
    "BillingRecord",
    "BillingSetting",
    "InvoiceSequence",
]
