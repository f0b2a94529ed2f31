from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import stripe
import structlog

from flowfee.common.exception import FeeValidationError, TaxEngineException
from flowfee.common.site_enums import TaxReversalMode
from flowfee.config.config import settings
from flowfee.model.fee_inputs import BillingAddress, Price, Purchase

logger = structlog.get_logger()

stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES

# Stripe Tax code for general digital goods
DIGITAL_TAX_CODE = "txcd_10000000"


def _customer_details(billing_address: BillingAddress) -> Dict[str, Any]:
    address = billing_address.address.model_dump(exclude_none=True)
    return {"address": address, "address_source": "billing"}


def _create_calculation(
    *,
    reference: str,
    billing_address: BillingAddress,
    discount_inclusive_amount: int,
    currency: str,
    livemode: bool,
):
    try:
        return stripe.tax.Calculation.create(
            api_key=settings.stripe_secret_key(livemode),
            currency=currency,
            customer_details=_customer_details(billing_address),
            line_items=[
                {
                    "quantity": 1,
                    "amount": discount_inclusive_amount,
                    "reference": reference,
                    "tax_code": DIGITAL_TAX_CODE,
                }
            ],
        )
    except stripe.StripeError as exc:
        logger.error(f"Stripe Tax calculation failed for {reference}: {exc}")
        raise TaxEngineException(
            "Stripe Tax calculation failed",
            context={"reference": reference, "detail": str(exc)},
        ) from exc


def create_stripe_tax_calculation_by_price(
    price: Price,
    billing_address: BillingAddress,
    discount_inclusive_amount: int,
    livemode: bool,
):
    return _create_calculation(
        reference=price.id,
        billing_address=billing_address,
        discount_inclusive_amount=discount_inclusive_amount,
        currency=price.currency,
        livemode=livemode,
    )


def create_stripe_tax_calculation_by_purchase(
    purchase: Purchase,
    price: Price,
    billing_address: BillingAddress,
    discount_inclusive_amount: int,
    livemode: bool,
):
    return _create_calculation(
        reference=purchase.id,
        billing_address=billing_address,
        discount_inclusive_amount=discount_inclusive_amount,
        currency=price.currency,
        livemode=livemode,
    )


def create_stripe_tax_transaction_from_calculation(
    stripe_tax_calculation_id: str,
    reference: str,
    livemode: bool,
):
    """Commit a calculation once the payment it priced has succeeded."""
    try:
        return stripe.tax.Transaction.create_from_calculation(
            api_key=settings.stripe_secret_key(livemode),
            calculation=stripe_tax_calculation_id,
            reference=reference,
        )
    except stripe.StripeError as exc:
        logger.error(
            f"Stripe Tax transaction from calculation {stripe_tax_calculation_id} failed: {exc}"
        )
        raise TaxEngineException(
            "Stripe Tax transaction creation failed",
            context={"stripe_tax_calculation_id": stripe_tax_calculation_id, "detail": str(exc)},
        ) from exc


def reverse_stripe_tax_transaction(
    stripe_tax_transaction_id: str,
    mode: str,
    flat_amount: Optional[int] = None,
    livemode: bool = True,
    reference: Optional[str] = None,
):
    """
    Reverse a committed tax transaction, fully or by a flat amount.

    flat_amount is the positive amount refunded; Stripe takes it negated.
    Every reversal needs its own reference, one is generated when omitted.
    """
    if mode == TaxReversalMode.PARTIAL.value:
        if isinstance(flat_amount, bool) or not isinstance(flat_amount, int) or flat_amount <= 0:
            raise FeeValidationError(
                "Invalid partial-refund amount for tax reversal",
                context={"stripe_tax_transaction_id": stripe_tax_transaction_id, "flat_amount": flat_amount},
            )
    elif mode != TaxReversalMode.FULL.value:
        raise FeeValidationError(
            f"Unknown tax reversal mode: {mode}",
            context={"stripe_tax_transaction_id": stripe_tax_transaction_id},
        )

    params: Dict[str, Any] = {
        "mode": mode,
        "original_transaction": stripe_tax_transaction_id,
        "reference": reference or f"{stripe_tax_transaction_id}_reversal_{uuid.uuid4().hex[:12]}",
    }
    if mode == TaxReversalMode.PARTIAL.value:
        params["flat_amount"] = -flat_amount

    try:
        return stripe.tax.Transaction.create_reversal(
            api_key=settings.stripe_secret_key(livemode),
            **params,
        )
    except stripe.StripeError as exc:
        logger.error(f"Stripe Tax reversal of {stripe_tax_transaction_id} failed: {exc}")
        raise TaxEngineException(
            "Stripe Tax reversal failed",
            context={"stripe_tax_transaction_id": stripe_tax_transaction_id, "detail": str(exc)},
        ) from exc
