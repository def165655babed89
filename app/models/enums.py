"""Centralized Enum Definitions"""

import enum


class BillingType(str, enum.Enum):
    """Kinds of charge a school can be billed for"""
    SETUP_FEE = "setup_fee"
    SUBSCRIPTION_FEE = "subscription_fee"


class BillingStatus(str, enum.Enum):
    """Billing record lifecycle states"""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class ExportFormat(str, enum.Enum):
    """Formats the export renderer understands"""
    PDF = "pdf"
    EXCEL = "excel"
