"""Fee Calculator - pure money arithmetic for setup and subscription fees.

Amounts are ``Decimal`` quantized to the currency's minor unit with
round-half-up, so identical inputs always produce identical outputs.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from app.core.exceptions import InvalidAmount, ValidationError

Money = Union[Decimal, int, str]

# ISO 4217 minor-unit exponents that differ from the default of 2
_ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "UGX", "RWF", "BIF", "CLP", "VND", "XAF", "XOF"}


def minor_unit_exponent(currency: str) -> int:
    return 0 if currency.upper() in _ZERO_DECIMAL_CURRENCIES else 2


def to_decimal(value: Money, field: str = "amount") -> Decimal:
    """Coerce an int/str/Decimal to Decimal; binary floats are refused."""
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a Decimal, int or numeric string", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} is not a number: {value!r}", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    return result


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    exponent = minor_unit_exponent(currency)
    return amount.quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)


def compute_setup_fee(flat_amount: Money, currency: str = "KES") -> Decimal:
    """Setup fees are flat: the amount is returned unchanged (quantized)."""
    amount = to_decimal(flat_amount, "flat_amount")
    if amount <= 0:
        raise InvalidAmount(f"Setup fee must be positive, got {amount}", amount=str(amount))
    return quantize_amount(amount, currency)


def compute_subscription_fee(student_count: int, per_student_rate: Money, currency: str = "KES") -> Decimal:
    """
    Subscription fee = student_count x per_student_rate.

    Raises:
        InvalidAmount: student_count is not a positive int or the rate is negative
    """
    if isinstance(student_count, bool) or not isinstance(student_count, int):
        raise InvalidAmount(f"Student count must be an integer, got {student_count!r}")
    if student_count <= 0:
        raise InvalidAmount(
            f"Student count must be positive, got {student_count}",
            student_count=student_count,
        )
    rate = to_decimal(per_student_rate, "per_student_rate")
    if rate < 0:
        raise InvalidAmount(f"Per-student rate must not be negative, got {rate}", rate=str(rate))
    return quantize_amount(rate * student_count, currency)
