"""
Money math for the fee engine.

Amounts are integer minor units (cents). Percentages arrive as decimal
strings from the database ("0.65" means 0.65%) and every
percentage-of-money computation goes through Decimal, never float:
10000 cents at 0.65% must be exactly 65.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from flowfee.common.exception import FeeValidationError

Numeric = Union[int, float, str, Decimal]

ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Numeric, field_name: str = "value") -> Decimal:
    """
    Parse a number into a finite Decimal. Floats go through their shortest
    repr so 0.65 becomes Decimal("0.65") and not the binary expansion.
    """
    if isinstance(value, bool):
        raise FeeValidationError(
            f"{field_name} is not a valid number: {value!r}",
            context={"field": field_name},
        )
    if isinstance(value, Decimal):
        parsed = value
    else:
        try:
            parsed = Decimal(repr(value) if isinstance(value, float) else str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise FeeValidationError(
                f"{field_name} is not a valid number: {value!r}",
                context={"field": field_name},
            ) from exc
    if not parsed.is_finite():
        raise FeeValidationError(
            f"{field_name} is not a valid number: {value!r}",
            context={"field": field_name},
        )
    return parsed


def round_minor_units(value: Decimal) -> int:
    """Round half-up (ties away from zero) to a whole minor unit."""
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def format_percentage(value: Decimal) -> str:
    """Plain decimal string for storage: Decimal('2.50') -> '2.5', zero -> '0'."""
    if value.is_zero():
        return "0"
    return format(value.normalize(), "f")


def validate_percentage_string(percentage: Numeric, field_name: str) -> None:
    to_decimal(percentage, field_name)


def validate_numeric_amount(amount: Numeric, field_name: str) -> None:
    to_decimal(amount, field_name)


def calculate_percentage_fee(amount: Numeric, percentage: Numeric) -> int:
    """
    amount * percentage / 100, rounded half-up to an integer minor unit.

    >>> calculate_percentage_fee(10000, "0.65")
    65
    >>> calculate_percentage_fee(10000, 10)
    1000
    """
    amount_decimal = to_decimal(amount, "Amount")
    percentage_decimal = to_decimal(percentage, "Percentage")
    return round_minor_units(amount_decimal * percentage_decimal / HUNDRED)


# ----------------------------------------------------------------------
# Totals
# ----------------------------------------------------------------------


def calculate_total_fee_amount(fee_calculation) -> int:
    """
    Everything the platform keeps for a transaction: the flowglad fee,
    merchant-of-record surcharge and international fee (each on the
    discount-inclusive amount), plus the payment method fee and tax.
    """
    base_amount = fee_calculation.base_amount
    discount_amount_fixed = fee_calculation.discount_amount_fixed or 0
    flowglad_fee_percentage = fee_calculation.flowglad_fee_percentage
    mor_surcharge_percentage = getattr(fee_calculation, "mor_surcharge_percentage", None) or "0"
    international_fee_percentage = fee_calculation.international_fee_percentage

    validate_numeric_amount(base_amount, "Base amount")
    validate_numeric_amount(discount_amount_fixed, "Discount amount fixed")
    validate_percentage_string(flowglad_fee_percentage, "Flowglad fee percentage")
    validate_percentage_string(mor_surcharge_percentage, "MoR surcharge percentage")
    validate_percentage_string(international_fee_percentage, "International fee percentage")

    safe_discount = max(discount_amount_fixed, 0)
    discount_inclusive_amount = base_amount - safe_discount

    flowglad_fee_fixed = calculate_percentage_fee(discount_inclusive_amount, flowglad_fee_percentage)
    mor_surcharge_fixed = calculate_percentage_fee(discount_inclusive_amount, mor_surcharge_percentage)
    international_fee_fixed = calculate_percentage_fee(discount_inclusive_amount, international_fee_percentage)

    return (
        flowglad_fee_fixed
        + mor_surcharge_fixed
        + international_fee_fixed
        + fee_calculation.payment_method_fee_fixed
        + fee_calculation.tax_amount_fixed
    )


def calculate_total_due_amount(fee_calculation) -> int:
    """What the customer pays: base minus discount plus tax, never negative."""
    return max(
        fee_calculation.base_amount
        - (fee_calculation.discount_amount_fixed or 0)
        + fee_calculation.tax_amount_fixed,
        0,
    )
