"""Standardized API Response Schemas"""

from typing import Generic, TypeVar
from pydantic import BaseModel, Field


T = TypeVar('T')


class SuccessResponse(BaseModel, Generic[T]):
    """
    Success envelope.
    
    Example:
        {
            "success": true,
            "data": {"invoice_number": "SUB-2026-00042", ...},
            "message": "Billing record created"
        }
    """
    success: bool = True
    data: T
    message: str = "Operation successful"


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """
    Error envelope; ``code`` is the billing error code.
    
    Example:
        {
            "success": false,
            "error": {
                "code": "INVALID_TRANSITION",
                "message": "Cannot move billing record SET-2026-00007 from paid to cancelled"
            }
        }
    """
    success: bool = False
    error: ErrorDetail


class PaginationMeta(BaseModel):
    page: int = Field(..., ge=1, description="Current page number")
    page_size: int = Field(..., ge=1, le=100, description="Items per page")
    total: int = Field(..., ge=0, description="Total number of matching records")
    total_pages: int = Field(..., ge=0, description="Total number of pages")


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated list envelope with ``meta`` describing the page"""
    success: bool = True
    data: list[T]
    meta: PaginationMeta
    message: str = "Operation successful"
