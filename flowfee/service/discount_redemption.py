from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from flowfee.common.site_enums import DiscountDuration
from flowfee.data.discount_redemption import (
    DiscountRedemption,
    select_active_discount_redemption,
    update_discount_redemption,
)
from flowfee.data.payment import Payment, count_successful_payments

logger = structlog.get_logger()


async def increment_number_of_payments_for_discount_redemption(
    db: AsyncSession,
    redemption: DiscountRedemption,
    payment: Payment,
) -> None:
    """
    Mark a number-of-payments redemption fully redeemed once enough
    succeeded payments exist. Payments are counted for the redemption's
    subscription, or its purchase when it has none; the settled payment is
    already stored, so it is part of the count.
    """
    successful_payments = await count_successful_payments(
        db,
        subscription_id=redemption.subscription_id,
        purchase_id=None if redemption.subscription_id else redemption.purchase_id,
    )
    number_of_payments = redemption.number_of_payments or 1

    if successful_payments >= number_of_payments:
        await update_discount_redemption(
            db, redemption.discount_redemption_id, {"fully_redeemed": True}
        )
        logger.info(
            f"Discount redemption {redemption.discount_redemption_id} fully redeemed after "
            f"{successful_payments} of {number_of_payments} payments (payment {payment.payment_id})"
        )


async def safely_increment_discount_redemption_for_payment(
    db: AsyncSession,
    payment: Payment,
) -> None:
    """
    Advance the discount redemption attached to a settled payment's
    subscription (or purchase). Payments with neither, or with no active
    redemption, are left alone.
    """
    if not payment.subscription_id and not payment.purchase_id:
        return

    redemption = await select_active_discount_redemption(
        db,
        subscription_id=payment.subscription_id,
        purchase_id=payment.purchase_id,
    )
    if not redemption or redemption.fully_redeemed:
        return

    if redemption.duration == DiscountDuration.FOREVER.value:
        return

    if redemption.duration == DiscountDuration.ONCE.value:
        await update_discount_redemption(
            db, redemption.discount_redemption_id, {"fully_redeemed": True}
        )
        logger.info(f"Discount redemption {redemption.discount_redemption_id} used once, fully redeemed")
        return

    if redemption.duration == DiscountDuration.NUMBER_OF_PAYMENTS.value:
        await increment_number_of_payments_for_discount_redemption(db, redemption, payment)
        return

    logger.warning(
        f"Unknown discount redemption duration {redemption.duration!r} on "
        f"{redemption.discount_redemption_id}, left unchanged"
    )
