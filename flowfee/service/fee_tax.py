from __future__ import annotations

import uuid
from typing import Optional

import structlog

from flowfee.common.stripe_tax import (
    create_stripe_tax_calculation_by_price,
    create_stripe_tax_calculation_by_purchase,
)
from flowfee.model.fee_inputs import (
    BillingAddress,
    Price,
    Purchase,
    TaxCalculationResult,
)

logger = structlog.get_logger()

NO_TAX_OVERRIDE_PREFIX = "notaxoverride_"


def no_tax_override_id() -> str:
    return f"{NO_TAX_OVERRIDE_PREFIX}{uuid.uuid4().hex}"


def calculate_taxes(
    discount_inclusive_amount: int,
    livemode: bool,
    billing_address: BillingAddress,
    price: Price,
    purchase: Optional[Purchase] = None,
) -> TaxCalculationResult:
    """
    Tax owed on a merchant-of-record sale. A zero amount never reaches
    Stripe and gets a synthetic calculation id instead, so every MoR fee
    calculation still carries one.
    """
    if discount_inclusive_amount == 0:
        return TaxCalculationResult(
            tax_amount_fixed=0,
            stripe_tax_calculation_id=no_tax_override_id(),
            stripe_tax_transaction_id=None,
        )

    if purchase is not None:
        calculation = create_stripe_tax_calculation_by_purchase(
            purchase=purchase,
            price=price,
            billing_address=billing_address,
            discount_inclusive_amount=discount_inclusive_amount,
            livemode=livemode,
        )
    else:
        calculation = create_stripe_tax_calculation_by_price(
            price=price,
            billing_address=billing_address,
            discount_inclusive_amount=discount_inclusive_amount,
            livemode=livemode,
        )

    logger.info(
        f"Stripe Tax calculation {calculation.id} for {discount_inclusive_amount}: "
        f"tax {calculation.tax_amount_exclusive}"
    )
    return TaxCalculationResult(
        tax_amount_fixed=calculation.tax_amount_exclusive,
        stripe_tax_calculation_id=calculation.id,
        stripe_tax_transaction_id=None,
    )
