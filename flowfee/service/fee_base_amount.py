from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import structlog

from flowfee.common.exception import FeeValidationError
from flowfee.common.site_enums import PriceType, SubscriptionItemType
from flowfee.model.fee_inputs import (
    BillingPeriodItem,
    InvoiceLineItem,
    Price,
    Purchase,
    UsageOverage,
)
from flowfee.service.fee_math import round_minor_units

logger = structlog.get_logger()

_KNOWN_PRICE_TYPES = {price_type.value for price_type in PriceType}


def calculate_price_base_amount(
    price: Price,
    purchase: Optional[Purchase] = None,
) -> int:
    """
    Amount charged for one unit of a price. A purchase can override the
    price's own unit amount: single-payment purchases use their first
    invoice value, subscription purchases their per-cycle price. A missing
    or zero override falls back to the unit price.
    """
    if purchase is None:
        return price.unit_price

    if purchase.price_type == PriceType.SINGLE_PAYMENT.value:
        return purchase.first_invoice_value or price.unit_price

    if purchase.price_type == PriceType.SUBSCRIPTION.value:
        return purchase.price_per_billing_cycle or price.unit_price

    if purchase.price_type is not None and purchase.price_type not in _KNOWN_PRICE_TYPES:
        logger.warning(
            f"Unknown purchase price_type {purchase.price_type!r} on purchase {purchase.id}, "
            f"using the price's unit amount"
        )
    return price.unit_price


def calculate_price_base_amount_with_quantity(
    price: Price,
    purchase: Optional[Purchase] = None,
    quantity: int = 1,
) -> int:
    return calculate_price_base_amount(price, purchase) * quantity


def calculate_invoice_base_amount(invoice_line_items: Sequence[InvoiceLineItem]) -> int:
    return sum(item.price * item.quantity for item in invoice_line_items)


def calculate_billing_items_base_amount(
    billing_period_items: Sequence[BillingPeriodItem],
    usage_overages: Optional[List[UsageOverage]] = None,
) -> int:
    """
    Static items contribute unit_price * quantity. Each usage overage is
    priced by the usage item sharing its meter: the event balance divided
    into billable units, times that item's unit price.
    """
    static_total = sum(
        item.unit_price * item.quantity
        for item in billing_period_items
        if item.type == SubscriptionItemType.STATIC.value
    )

    usage_items: Dict[str, BillingPeriodItem] = {
        item.usage_meter_id: item
        for item in billing_period_items
        if item.type == SubscriptionItemType.USAGE.value and item.usage_meter_id
    }

    usage_total = Decimal(0)
    for overage in usage_overages or []:
        usage_item = usage_items.get(overage.usage_meter_id)
        if usage_item is None:
            raise FeeValidationError(
                f"Usage billing period item not found for usage meter {overage.usage_meter_id}",
                context={"usage_meter_id": overage.usage_meter_id},
            )
        events_per_unit = usage_item.usage_events_per_unit
        if events_per_unit is None or events_per_unit <= 0:
            raise FeeValidationError(
                f"Usage item for meter {overage.usage_meter_id} has no positive usage_events_per_unit",
                context={
                    "usage_meter_id": overage.usage_meter_id,
                    "usage_events_per_unit": events_per_unit,
                },
            )
        usage_total += (
            Decimal(overage.balance) / Decimal(events_per_unit) * Decimal(usage_item.unit_price)
        )

    return static_total + round_minor_units(usage_total)
