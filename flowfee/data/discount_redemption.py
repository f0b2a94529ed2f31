from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func
from sqlalchemy.exc import IntegrityError

from flowfee.data.dbinit import Base
from flowfee.common.exception import GeneralDataException, IntegrityException


# ----------------------------------------------------------------------
# DiscountRedemption – a discount applied to one subscription/purchase
# ----------------------------------------------------------------------


class DiscountRedemption(Base):
    """
    Snapshot of a discount at the moment it was applied. The amount and
    amount type are frozen here so editing the discount later does not
    change what existing subscriptions are charged.
    """

    __tablename__ = "discount_redemption"

    discount_redemption_id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )

    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organization.organization_id"),
        nullable=True,
        index=True,
    )

    discount_id = Column(String, nullable=False)
    discount_name = Column(String, nullable=True)
    discount_code = Column(String, nullable=True)

    discount_amount = Column(Integer, nullable=False)
    discount_amount_type = Column(String, nullable=False)  # 'fixed' / 'percent'

    subscription_id = Column(String, nullable=True, index=True)
    purchase_id = Column(String, nullable=True, index=True)

    duration = Column(String, nullable=False)  # 'once' / 'forever' / 'number_of_payments'
    number_of_payments = Column(Integer, nullable=True)

    fully_redeemed = Column(Boolean, nullable=False, default=False)
    livemode = Column(Boolean, nullable=False, default=True)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


async def select_discount_redemption(
    db: AsyncSession,
    discount_redemption_id: uuid.UUID,
) -> Optional[DiscountRedemption]:
    result = await db.execute(
        select(DiscountRedemption).where(
            DiscountRedemption.discount_redemption_id == discount_redemption_id
        )
    )
    return result.scalar_one_or_none()


async def select_active_discount_redemption(
    db: AsyncSession,
    *,
    subscription_id: Optional[str] = None,
    purchase_id: Optional[str] = None,
) -> Optional[DiscountRedemption]:
    """
    The most recent redemption that is not fully redeemed, looked up by
    subscription first and purchase second.
    """
    stmt = select(DiscountRedemption).where(DiscountRedemption.fully_redeemed.is_(False))
    if subscription_id:
        stmt = stmt.where(DiscountRedemption.subscription_id == subscription_id)
    elif purchase_id:
        stmt = stmt.where(DiscountRedemption.purchase_id == purchase_id)
    else:
        return None
    result = await db.execute(
        stmt.order_by(DiscountRedemption.created_at.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def update_discount_redemption(
    db: AsyncSession,
    discount_redemption_id: uuid.UUID,
    values: Dict[str, Any],
) -> Optional[DiscountRedemption]:
    """Update fields on a redemption and return the refreshed row."""
    redemption = await select_discount_redemption(db, discount_redemption_id)
    if not redemption:
        return None

    for key, value in values.items():
        if hasattr(redemption, key) and value is not None:
            setattr(redemption, key, value)

    try:
        await db.flush()
        await db.refresh(redemption)
        return redemption
    except IntegrityError as exc:
        await db.rollback()
        raise IntegrityException(
            "Integrity error when updating discount redemption",
            context={"detail": str(exc)},
        ) from exc
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        raise GeneralDataException(
            "Unexpected error when updating discount redemption",
            context={"detail": str(exc)},
        ) from exc
