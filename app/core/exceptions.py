"""Billing error taxonomy.

Every error carries a stable ``code`` (surfaced in ``ErrorResponse``) and the
HTTP status the API layer answers with. ``retryable`` marks transient failures
the caller may retry with backoff.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all billing engine errors"""

    code: str = "BILLING_ERROR"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(BillingError):
    """Malformed input: missing required field, bad date ordering, float money"""

    code = "VALIDATION_ERROR"
    status_code = 422


class InvalidAmount(BillingError):
    """Non-positive amount or negative rate; raised before any write"""

    code = "INVALID_AMOUNT"
    status_code = 422


class InvalidTransition(BillingError):
    """Lifecycle guard violated; the record is left unchanged"""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, current=current, target=target, **context)
        self.current = current
        self.target = target


class DuplicateKeyError(BillingError):
    """Idempotency key already present in the store (already billed)"""

    code = "DUPLICATE_BILLING_RECORD"
    status_code = 409

    def __init__(self, message: str, idempotency_key: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, idempotency_key=idempotency_key, **context)
        self.idempotency_key = idempotency_key


class ConflictError(BillingError):
    """A concurrent mutation won the compare-and-swap; re-fetch and retry"""

    code = "CONFLICT"
    status_code = 409
    retryable = True


class RecordNotFound(BillingError):
    code = "RESOURCE_NOT_FOUND"
    status_code = 404


class SchoolInactive(BillingError):
    """The school exists but is not active and cannot be billed"""

    code = "SCHOOL_INACTIVE"
    status_code = 409


class StoreUnavailable(BillingError):
    """Transient infrastructure failure (timeout, dropped connection)"""

    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True
