from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from flowfee.common.site_enums import FeeCalculationType, StripeConnectContractType
from flowfee.data.discount_redemption import select_active_discount_redemption
from flowfee.data.fee_calculation import insert_fee_calculation
from flowfee.model.fee_calculation import FeeCalculationInsert, FeeCalculationRecord
from flowfee.model.fee_inputs import (
    CheckoutSessionFeeCalculationParams,
    CountryRecord,
    DiscountRedemptionRecord,
    InvoiceFeeCalculationParams,
    OrganizationRecord,
    SubscriptionFeeCalculationParams,
    TaxCalculationResult,
)
from flowfee.service.fee_base_amount import (
    calculate_billing_items_base_amount,
    calculate_invoice_base_amount,
    calculate_price_base_amount_with_quantity,
)
from flowfee.service.fee_components import (
    calculate_flowglad_fee_percentage,
    calculate_international_fee_percentage,
    calculate_mor_surcharge_percentage,
    calculate_payment_method_fee_amount,
)
from flowfee.service.fee_discount import (
    calculate_discount_amount,
    calculate_discount_amount_from_redemption,
)
from flowfee.service.fee_finalization import finalize_fee_calculation
from flowfee.service.fee_tax import calculate_taxes

logger = structlog.get_logger()


def _is_merchant_of_record(organization: OrganizationRecord) -> bool:
    return organization.stripe_connect_contract_type == StripeConnectContractType.MERCHANT_OF_RECORD.value


def _fee_fields(
    *,
    organization: OrganizationRecord,
    organization_country: CountryRecord,
    payment_method_type: str,
    payment_method_country: Optional[str],
    base_amount: int,
    discount_amount: int,
) -> dict:
    """Fields every fee calculation computes the same way, whatever it prices."""
    pretax_total = max(base_amount - discount_amount, 0)
    return {
        "organization_id": organization.organization_id,
        "payment_method_type": payment_method_type,
        "base_amount": base_amount,
        "discount_amount_fixed": discount_amount,
        "pretax_total": pretax_total,
        "flowglad_fee_percentage": calculate_flowglad_fee_percentage(organization),
        "mor_surcharge_percentage": calculate_mor_surcharge_percentage(organization),
        "international_fee_percentage": calculate_international_fee_percentage(
            payment_method=payment_method_type,
            payment_method_country=payment_method_country,
            organization=organization,
            organization_country=organization_country,
        ),
        "payment_method_fee_fixed": calculate_payment_method_fee_amount(pretax_total, payment_method_type),
    }


# ----------------------------------------------------------------------
# Insert builders (no persistence)
# ----------------------------------------------------------------------


def build_invoice_fee_calculation_insert(params: InvoiceFeeCalculationParams) -> FeeCalculationInsert:
    """Invoices are already priced: no discount and no tax on top."""
    base_amount = calculate_invoice_base_amount(params.invoice_line_items)
    fields = _fee_fields(
        organization=params.organization,
        organization_country=params.organization_country,
        payment_method_type=params.payment_method_type,
        payment_method_country=params.billing_address.address.country,
        base_amount=base_amount,
        discount_amount=0,
    )
    return FeeCalculationInsert(
        **fields,
        type=FeeCalculationType.CHECKOUT_SESSION_PAYMENT,
        checkout_session_id=params.checkout_session_id,
        invoice_id=params.invoice.id,
        currency=params.invoice.currency,
        livemode=params.invoice.livemode,
        billing_address=params.billing_address,
        tax_amount_fixed=0,
        internal_notes="Invoice fee calculation",
    )


def build_checkout_session_fee_calculation_insert(
    params: CheckoutSessionFeeCalculationParams,
) -> FeeCalculationInsert:
    """Price checkout: resolved price times quantity, less the discount, plus MoR tax."""
    base_amount = calculate_price_base_amount_with_quantity(
        params.price, params.purchase, params.quantity
    )
    discount_amount = calculate_discount_amount(base_amount, params.discount)
    fields = _fee_fields(
        organization=params.organization,
        organization_country=params.organization_country,
        payment_method_type=params.payment_method_type,
        payment_method_country=params.billing_address.address.country,
        base_amount=base_amount,
        discount_amount=discount_amount,
    )

    tax = TaxCalculationResult()
    if _is_merchant_of_record(params.organization):
        tax = calculate_taxes(
            discount_inclusive_amount=fields["pretax_total"],
            livemode=params.price.livemode,
            billing_address=params.billing_address,
            price=params.price,
            purchase=params.purchase,
        )

    return FeeCalculationInsert(
        **fields,
        type=FeeCalculationType.CHECKOUT_SESSION_PAYMENT,
        checkout_session_id=params.checkout_session_id,
        price_id=params.price.id,
        purchase_id=params.purchase.id if params.purchase else None,
        discount_id=params.discount.id if params.discount else None,
        currency=params.price.currency,
        livemode=params.price.livemode,
        billing_address=params.billing_address,
        tax_amount_fixed=tax.tax_amount_fixed,
        stripe_tax_calculation_id=tax.stripe_tax_calculation_id,
        stripe_tax_transaction_id=tax.stripe_tax_transaction_id,
    )


def build_subscription_fee_calculation_insert(
    params: SubscriptionFeeCalculationParams,
) -> FeeCalculationInsert:
    base_amount = calculate_billing_items_base_amount(
        params.billing_period_items, params.usage_overages
    )
    discount_amount = calculate_discount_amount_from_redemption(
        base_amount, params.discount_redemption
    )
    payment_method = params.payment_method
    fields = _fee_fields(
        organization=params.organization,
        organization_country=params.organization_country,
        payment_method_type=payment_method.type,
        payment_method_country=payment_method.country,
        base_amount=base_amount,
        discount_amount=discount_amount,
    )

    tax = TaxCalculationResult()
    if _is_merchant_of_record(params.organization):
        if params.price is None:
            logger.warning(
                f"Merchant of record subscription billing period {params.billing_period.id} "
                f"has no price to calculate tax against, no tax applied"
            )
        else:
            tax = calculate_taxes(
                discount_inclusive_amount=fields["pretax_total"],
                livemode=params.livemode,
                billing_address=payment_method.billing_details,
                price=params.price,
            )

    return FeeCalculationInsert(
        **fields,
        type=FeeCalculationType.SUBSCRIPTION_PAYMENT,
        billing_period_id=params.billing_period.id,
        discount_id=params.discount_redemption.discount_id if params.discount_redemption else None,
        currency=params.currency,
        livemode=params.livemode,
        billing_address=payment_method.billing_details,
        tax_amount_fixed=tax.tax_amount_fixed,
        stripe_tax_calculation_id=tax.stripe_tax_calculation_id,
        stripe_tax_transaction_id=tax.stripe_tax_transaction_id,
    )


# ----------------------------------------------------------------------
# Persisting entry points
# ----------------------------------------------------------------------


async def _persist(db: AsyncSession, insert: FeeCalculationInsert) -> FeeCalculationRecord:
    fee_calculation = await insert_fee_calculation(db, insert)
    record = FeeCalculationRecord.model_validate(fee_calculation)
    logger.info(
        f"Fee calculation {record.fee_calculation_id} created: type={record.type}, "
        f"base={record.base_amount}, pretax={record.pretax_total}, tax={record.tax_amount_fixed}"
    )
    return record


async def create_invoice_fee_calculation_for_checkout_session(
    db: AsyncSession,
    params: InvoiceFeeCalculationParams,
) -> FeeCalculationRecord:
    return await _persist(db, build_invoice_fee_calculation_insert(params))


async def create_checkout_session_fee_calculation(
    db: AsyncSession,
    params: CheckoutSessionFeeCalculationParams,
) -> FeeCalculationRecord:
    return await _persist(db, build_checkout_session_fee_calculation_insert(params))


async def create_subscription_fee_calculation(
    db: AsyncSession,
    params: SubscriptionFeeCalculationParams,
) -> FeeCalculationRecord:
    return await _persist(db, build_subscription_fee_calculation_insert(params))


async def create_and_finalize_subscription_fee_calculation(
    db: AsyncSession,
    params: SubscriptionFeeCalculationParams,
) -> FeeCalculationRecord:
    """
    Billing-run entry point. The subscription's active discount redemption
    (if any) replaces whatever the caller passed, then the new calculation
    is finalized against this month's volume in the same transaction.
    """
    redemption = await select_active_discount_redemption(
        db, subscription_id=params.billing_period.subscription_id
    )
    params = params.model_copy(
        update={
            "discount_redemption": (
                DiscountRedemptionRecord.model_validate(redemption) if redemption else None
            )
        }
    )
    initial = await create_subscription_fee_calculation(db, params)
    return await finalize_fee_calculation(db, initial)
