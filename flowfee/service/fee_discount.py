from __future__ import annotations

from decimal import Decimal
from typing import Optional

import structlog

from flowfee.common.site_enums import DiscountAmountType
from flowfee.model.fee_inputs import Discount, DiscountRedemptionRecord
from flowfee.service.fee_math import calculate_percentage_fee, to_decimal

logger = structlog.get_logger()

MAX_DISCOUNT_PERCENTAGE = Decimal(100)


def _discount_for(base_price: int, amount_type: str, amount, source: str) -> int:
    if amount_type == DiscountAmountType.FIXED.value:
        # not clamped here; pretax_total floors at zero
        return amount
    if amount_type == DiscountAmountType.PERCENT.value:
        percentage = min(to_decimal(amount, "Discount amount"), MAX_DISCOUNT_PERCENTAGE)
        return calculate_percentage_fee(base_price, percentage)
    logger.warning(f"Unknown discount amount_type {amount_type!r} on {source}, applying no discount")
    return 0


def calculate_discount_amount(base_price: int, discount: Optional[Discount]) -> int:
    """Discount in minor units; percent discounts are capped at 100%."""
    if discount is None:
        return 0
    return _discount_for(base_price, discount.amount_type, discount.amount, f"discount {discount.id}")


def calculate_discount_amount_from_redemption(
    base_price: int,
    redemption: Optional[DiscountRedemptionRecord],
) -> int:
    """Same rules, read from the amount frozen on the redemption."""
    if redemption is None:
        return 0
    return _discount_for(
        base_price,
        redemption.discount_amount_type,
        redemption.discount_amount,
        f"discount redemption for discount {redemption.discount_id}",
    )
