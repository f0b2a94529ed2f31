"""
Settlement-time reconciliation of a fee calculation.

The percentage written at checkout is the organization's list rate. Once the
payment settles, the rate is scaled down by whatever part of the amount was
covered by upfront processing credits (lifetime) and by the monthly free
tier (calendar month, UTC). Both are measured against resolved payments,
refunds included.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from flowfee.common.exception import RecordNotFoundException
from flowfee.data.fee_calculation import (
    FeeCalculation,
    select_fee_calculation_by_id,
    update_fee_calculation,
)
from flowfee.data.organization import select_organization_by_id
from flowfee.data.payment import (
    select_lifetime_usage_for_payments,
    select_resolved_payments_month_to_date,
)
from flowfee.model.fee_calculation import FeeCalculationRecord
from flowfee.service.fee_math import format_percentage, to_decimal

logger = structlog.get_logger()


class FreeTierOutcome(NamedTuple):
    """Which part of a transaction is chargeable, and the note explaining why."""

    chargeable_amount: int
    notes: str


def apply_credits_and_free_tier(
    *,
    current_transaction_amount: int,
    upfront_processing_credits: int,
    total_processed_lifetime: int,
    monthly_free_tier: int,
    total_processed_month_to_date: int,
    organization_fee_percentage: Decimal,
) -> FreeTierOutcome:
    credits_remaining_before = max(upfront_processing_credits - total_processed_lifetime, 0)
    credits_applied = min(current_transaction_amount, credits_remaining_before)
    amount_after_credits = max(current_transaction_amount - credits_remaining_before, 0)

    if amount_after_credits == 0 and credits_applied > 0:
        return FreeTierOutcome(
            0,
            f"No fee applied due to upfront processing credits. "
            f"Credits applied: {credits_applied}. "
            f"Remaining credits before transaction: {credits_remaining_before}.",
        )

    credits_prefix = f"Credits applied: {credits_applied}. " if credits_applied > 0 else ""

    if monthly_free_tier <= total_processed_month_to_date:
        return FreeTierOutcome(
            amount_after_credits,
            f"{credits_prefix}Full fee applied. "
            f"Processed this month before transaction: {total_processed_month_to_date}. "
            f"Free tier: {monthly_free_tier}.",
        )

    chargeable_amount = max(
        amount_after_credits - (monthly_free_tier - total_processed_month_to_date), 0
    )
    if chargeable_amount == 0:
        return FreeTierOutcome(
            0,
            f"{credits_prefix}No fee applied. "
            f"Processed this month after transaction: "
            f"{total_processed_month_to_date + current_transaction_amount}. "
            f"Free tier: {monthly_free_tier}.",
        )

    effective = effective_fee_percentage(
        organization_fee_percentage, chargeable_amount, current_transaction_amount
    )
    return FreeTierOutcome(
        chargeable_amount,
        f"{credits_prefix}Partial fee applied. Overage: {chargeable_amount}. "
        f"Processed this month before transaction: {total_processed_month_to_date}. "
        f"Free tier: {monthly_free_tier}. "
        f"Effective percentage: {format_percentage(effective)}%.",
    )


def effective_fee_percentage(
    organization_fee_percentage: Decimal,
    chargeable_amount: int,
    current_transaction_amount: int,
) -> Decimal:
    if current_transaction_amount <= 0:
        return Decimal(0)
    return organization_fee_percentage * Decimal(chargeable_amount) / Decimal(current_transaction_amount)


async def finalize_fee_calculation(
    db: AsyncSession,
    fee_calculation: Union[FeeCalculation, FeeCalculationRecord],
    now: Optional[datetime] = None,
) -> FeeCalculationRecord:
    """
    Rewrite flowglad_fee_percentage and internal_notes from the
    organization's volume history. Only those two columns change.

    The organization row is locked first, so concurrent finalizations for
    one organization see each other's payments in turn.
    """
    organization = await select_organization_by_id(
        db, fee_calculation.organization_id, for_update=True
    )
    if not organization:
        raise RecordNotFoundException(
            "Organization not found",
            context={"organization_id": str(fee_calculation.organization_id)},
        )

    month_to_date_payments = await select_resolved_payments_month_to_date(
        db, organization.organization_id, now=now
    )
    lifetime_payments = await select_lifetime_usage_for_payments(db, organization.organization_id)

    total_processed_month_to_date = sum(payment.amount for payment in month_to_date_payments)
    total_processed_lifetime = sum(payment.amount for payment in lifetime_payments)

    organization_fee_percentage = to_decimal(
        organization.fee_percentage, "Organization fee percentage"
    )
    current_transaction_amount = fee_calculation.pretax_total or 0

    outcome = apply_credits_and_free_tier(
        current_transaction_amount=current_transaction_amount,
        upfront_processing_credits=organization.upfront_processing_credits or 0,
        total_processed_lifetime=total_processed_lifetime,
        monthly_free_tier=organization.monthly_billing_volume_free_tier or 0,
        total_processed_month_to_date=total_processed_month_to_date,
        organization_fee_percentage=organization_fee_percentage,
    )
    final_percentage = effective_fee_percentage(
        organization_fee_percentage, outcome.chargeable_amount, current_transaction_amount
    )

    calculated_at = (now or datetime.now(timezone.utc)).isoformat()
    updated = await update_fee_calculation(
        db,
        fee_calculation.fee_calculation_id,
        {
            "flowglad_fee_percentage": format_percentage(final_percentage),
            "internal_notes": f"{outcome.notes} Calculated time: {calculated_at}",
        },
    )
    if not updated:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(fee_calculation.fee_calculation_id)},
        )

    logger.info(
        f"Fee calculation {fee_calculation.fee_calculation_id} finalized at "
        f"{format_percentage(final_percentage)}% (chargeable {outcome.chargeable_amount} "
        f"of {current_transaction_amount})"
    )
    return FeeCalculationRecord.model_validate(updated)


async def finalize_fee_calculation_by_id(
    db: AsyncSession,
    fee_calculation_id: UUID,
    now: Optional[datetime] = None,
) -> FeeCalculationRecord:
    fee_calculation = await select_fee_calculation_by_id(db, fee_calculation_id)
    if not fee_calculation:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(fee_calculation_id)},
        )
    return await finalize_fee_calculation(db, fee_calculation, now=now)
