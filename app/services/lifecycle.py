"""Lifecycle Manager - the billing record status state machine.

    pending -> paid | overdue | cancelled
    overdue -> paid | cancelled
    paid, cancelled -> (terminal)

Guards are checked against a freshly read record and the write is a
compare-and-swap on the status that was read, so two callers racing on the
same record cannot both win.
"""

from datetime import date
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from uuid import UUID

from app.core.exceptions import (
    ConflictError,
    InvalidAmount,
    InvalidTransition,
    RecordNotFound,
    ValidationError,
)
from app.core.logging import get_logger
from app.models.billing import BillingRecord
from app.models.enums import BillingStatus
from app.services.fee_calculator import Money, quantize_amount, to_decimal
from app.utils.time import get_utc_today

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Mapping[BillingStatus, FrozenSet[BillingStatus]] = {
    BillingStatus.PENDING: frozenset({BillingStatus.PAID, BillingStatus.OVERDUE, BillingStatus.CANCELLED}),
    BillingStatus.OVERDUE: frozenset({BillingStatus.PAID, BillingStatus.CANCELLED}),
    BillingStatus.PAID: frozenset(),
    BillingStatus.CANCELLED: frozenset(),
}


# Targets a caller may request; overdue is set only by sweep_overdue
MANUAL_TARGETS: FrozenSet[BillingStatus] = frozenset({BillingStatus.PAID, BillingStatus.CANCELLED})


def can_transition(current: BillingStatus, target: BillingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    record: BillingRecord,
    target: BillingStatus,
    payment_method: Optional[str] = None,
    paid_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Validate ``record -> target`` and return the payment fields to write.

    Raises:
        InvalidTransition: the edge is not in the table or its guard fails
        ValidationError: payment fields supplied for a non-paid target
    """
    current = BillingStatus(record.status)
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move billing record {record.invoice_number} from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )

    if target == BillingStatus.PAID:
        method = (payment_method or "").strip()
        if not method:
            raise InvalidTransition(
                "A payment method is required to mark a record paid",
                current=current.value,
                target=target.value,
            )
        if paid_date is None:
            raise InvalidTransition(
                "A paid date is required to mark a record paid",
                current=current.value,
                target=target.value,
            )
        if record.created_at is not None and paid_date < record.created_at.date():
            raise InvalidTransition(
                f"Paid date {paid_date} is before the record was created",
                current=current.value,
                target=target.value,
            )
        return {"payment_method": method, "paid_date": paid_date}

    if payment_method is not None or paid_date is not None:
        raise ValidationError(f"Payment details only apply to the paid status, not {target.value}")

    if target == BillingStatus.OVERDUE:
        today = today or get_utc_today()
        if not today > record.due_date:
            raise InvalidTransition(
                f"Record {record.invoice_number} is not past its due date {record.due_date}",
                current=current.value,
                target=target.value,
            )
    return {}


class LifecycleManager:
    """Applies status transitions and pending-only amendments through the store"""

    def __init__(self, store) -> None:
        self.store = store

    async def _load(self, record_id: UUID) -> BillingRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise RecordNotFound(f"Billing record {record_id} not found")
        return record

    async def transition(
        self,
        record_id: UUID,
        target: BillingStatus,
        payment_method: Optional[str] = None,
        paid_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> BillingRecord:
        record = await self._load(record_id)
        current = BillingStatus(record.status)
        fields = check_transition(record, target, payment_method, paid_date, today)
        updated = await self.store.update_status(record_id, current, target, fields)
        logger.info(
            "Billing record status changed",
            extra={
                "record_id": str(record_id),
                "invoice_number": updated.invoice_number,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return updated

    async def mark_paid(self, record_id: UUID, payment_method: str, paid_date: date) -> BillingRecord:
        return await self.transition(record_id, BillingStatus.PAID, payment_method=payment_method, paid_date=paid_date)

    async def cancel(self, record_id: UUID) -> BillingRecord:
        return await self.transition(record_id, BillingStatus.CANCELLED)

    async def sweep_overdue(self, today: Optional[date] = None) -> List[BillingRecord]:
        """Move every pending record past its due date to overdue."""
        today = today or get_utc_today()
        candidates = await self.store.list_past_due(today)
        moved = []
        for record in candidates:
            try:
                moved.append(await self.transition(record.id, BillingStatus.OVERDUE, today=today))
            except (ConflictError, InvalidTransition) as exc:
                # Paid or cancelled between the scan and the write
                logger.info(
                    "Skipped overdue transition",
                    extra={"record_id": str(record.id), "reason": str(exc)},
                )
        logger.info("Overdue sweep finished", extra={"scanned": len(candidates), "marked_overdue": len(moved)})
        return moved

    async def amend(
        self,
        record_id: UUID,
        amount: Optional[Money] = None,
        description: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> BillingRecord:
        """Change amount, description or due date of a pending record."""
        record = await self._load(record_id)
        if BillingStatus(record.status) != BillingStatus.PENDING:
            raise InvalidTransition(
                f"Only pending records can be amended; {record.invoice_number} is {BillingStatus(record.status).value}",
                current=BillingStatus(record.status).value,
            )

        fields: Dict[str, Any] = {}
        if amount is not None:
            value = to_decimal(amount)
            if value <= 0:
                raise InvalidAmount(f"Amount must be positive, got {value}", amount=str(value))
            fields["amount"] = quantize_amount(value, record.currency)
        if description is not None:
            if not description.strip():
                raise ValidationError("Description must not be empty")
            fields["description"] = description.strip()
        if due_date is not None:
            fields["due_date"] = due_date
        if not fields:
            raise ValidationError("Nothing to amend")

        updated = await self.store.update_status(record_id, BillingStatus.PENDING, BillingStatus.PENDING, fields)
        logger.info(
            "Billing record amended",
            extra={"record_id": str(record_id), "fields": sorted(fields)},
        )
        return updated
