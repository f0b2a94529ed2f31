"""
Settlement and refund hooks for a stored fee calculation.

When the payment a calculation priced succeeds, the calculation is finalized
against the organization's volume history, the discount redemption behind
the payment is advanced, and a merchant-of-record tax calculation is
committed as a Stripe Tax transaction. A refund reverses that transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from flowfee.common.exception import FeeValidationError, RecordNotFoundException
from flowfee.common.site_enums import PaymentStatus, TaxReversalMode
from flowfee.common.stripe_tax import (
    create_stripe_tax_transaction_from_calculation,
    reverse_stripe_tax_transaction,
)
from flowfee.data.fee_calculation import select_fee_calculation_by_id, update_fee_calculation
from flowfee.data.payment import select_payment_by_id
from flowfee.model.fee_calculation import FeeCalculationRecord
from flowfee.service.discount_redemption import safely_increment_discount_redemption_for_payment
from flowfee.service.fee_finalization import finalize_fee_calculation
from flowfee.service.fee_tax import NO_TAX_OVERRIDE_PREFIX

logger = structlog.get_logger()


def needs_tax_transaction(fee_calculation: FeeCalculationRecord) -> bool:
    calculation_id = fee_calculation.stripe_tax_calculation_id
    return bool(
        calculation_id
        and not calculation_id.startswith(NO_TAX_OVERRIDE_PREFIX)
        and not fee_calculation.stripe_tax_transaction_id
    )


async def _load_fee_calculation(db: AsyncSession, fee_calculation_id: UUID) -> FeeCalculationRecord:
    fee_calculation = await select_fee_calculation_by_id(db, fee_calculation_id)
    if not fee_calculation:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(fee_calculation_id)},
        )
    return FeeCalculationRecord.model_validate(fee_calculation)


async def settle_fee_calculation_for_payment(
    db: AsyncSession,
    fee_calculation_id: UUID,
    payment_id: UUID,
    now: Optional[datetime] = None,
) -> FeeCalculationRecord:
    """
    Finalize a fee calculation once its payment has succeeded.

    The payment must belong to the calculation's organization and be in
    the succeeded state. Committing the tax transaction is skipped when the
    calculation has none to commit, or already committed one.
    """
    fee_calculation = await _load_fee_calculation(db, fee_calculation_id)

    payment = await select_payment_by_id(db, payment_id)
    if not payment:
        raise RecordNotFoundException(
            "Payment not found",
            context={"payment_id": str(payment_id)},
        )
    if payment.organization_id != fee_calculation.organization_id:
        raise FeeValidationError(
            "Payment belongs to a different organization than the fee calculation",
            context={"payment_id": str(payment_id), "fee_calculation_id": str(fee_calculation_id)},
        )
    if payment.status != PaymentStatus.SUCCEEDED.value:
        raise FeeValidationError(
            f"Payment {payment_id} has not succeeded (status {payment.status})",
            context={"payment_id": str(payment_id), "status": payment.status},
        )

    finalized = await finalize_fee_calculation(db, fee_calculation, now=now)
    await safely_increment_discount_redemption_for_payment(db, payment)

    if not needs_tax_transaction(finalized):
        return finalized

    transaction = create_stripe_tax_transaction_from_calculation(
        finalized.stripe_tax_calculation_id,
        reference=str(payment.payment_id),
        livemode=finalized.livemode,
    )
    updated = await update_fee_calculation(
        db,
        finalized.fee_calculation_id,
        {"stripe_tax_transaction_id": transaction.id},
    )
    if not updated:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(finalized.fee_calculation_id)},
        )
    logger.info(
        f"Tax transaction {transaction.id} committed for fee calculation "
        f"{finalized.fee_calculation_id} (payment {payment.payment_id})"
    )
    return FeeCalculationRecord.model_validate(updated)


async def reverse_fee_calculation_tax(
    db: AsyncSession,
    fee_calculation_id: UUID,
    refund_amount: Optional[int] = None,
) -> Optional[str]:
    """
    Reverse the committed tax transaction of a refunded payment. No amount
    means a full refund. Returns the reversal id, or None when the
    calculation never committed a tax transaction.
    """
    fee_calculation = await _load_fee_calculation(db, fee_calculation_id)

    if not fee_calculation.stripe_tax_transaction_id:
        logger.info(f"Fee calculation {fee_calculation_id} has no tax transaction to reverse")
        return None

    if refund_amount is None:
        reversal = reverse_stripe_tax_transaction(
            fee_calculation.stripe_tax_transaction_id,
            TaxReversalMode.FULL.value,
            livemode=fee_calculation.livemode,
        )
    else:
        reversal = reverse_stripe_tax_transaction(
            fee_calculation.stripe_tax_transaction_id,
            TaxReversalMode.PARTIAL.value,
            flat_amount=refund_amount,
            livemode=fee_calculation.livemode,
        )

    logger.info(
        f"Tax transaction {fee_calculation.stripe_tax_transaction_id} reversed as {reversal.id} "
        f"(refund {refund_amount if refund_amount is not None else 'full'})"
    )
    return reversal.id
