"""Unit tests for billing schemas."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from app.models.enums import BillingStatus, BillingType
from app.schemas.billing import BillingFilter, BillingPeriod, FeePolicy, StatusTransitionRequest


def test_billing_period_valid():
    period = BillingPeriod(start=date(2026, 10, 1), end=date(2026, 10, 31))
    assert period.start < period.end


def test_billing_period_single_day():
    period = BillingPeriod(start=date(2026, 10, 1), end=date(2026, 10, 1))
    assert period.start == period.end


def test_billing_period_rejects_reversed_dates():
    with pytest.raises(PydanticValidationError):
        BillingPeriod(start=date(2026, 10, 31), end=date(2026, 10, 1))


def test_setup_policy_requires_amount():
    with pytest.raises(PydanticValidationError):
        FeePolicy(billing_type=BillingType.SETUP_FEE)


def test_subscription_policy_requires_rate_and_period():
    with pytest.raises(PydanticValidationError):
        FeePolicy(billing_type=BillingType.SUBSCRIPTION_FEE, per_student_rate=Decimal("50"))
    with pytest.raises(PydanticValidationError):
        FeePolicy(
            billing_type=BillingType.SUBSCRIPTION_FEE,
            period=BillingPeriod(start=date(2026, 10, 1), end=date(2026, 10, 31)),
        )


def test_filter_rejects_reversed_range():
    with pytest.raises(PydanticValidationError):
        BillingFilter(date_from=date(2026, 10, 2), date_to=date(2026, 10, 1))


def test_filter_as_params_skips_unset():
    params = BillingFilter(status=BillingStatus.PAID, date_from=date(2026, 1, 1)).as_params()
    assert params == {"status": "paid", "date_from": "2026-01-01"}


def test_status_transition_request_parses_strings():
    req = StatusTransitionRequest(status="paid", payment_method="mpesa", paid_date="2026-10-19")
    assert req.status == BillingStatus.PAID
    assert req.paid_date == date(2026, 10, 19)


def test_filter_currency_is_uppercased():
    assert BillingFilter(currency="kes").currency == "KES"
    assert BillingFilter(currency="usd").as_params() == {"currency": "USD"}
