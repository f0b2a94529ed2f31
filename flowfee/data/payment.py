from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
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

from flowfee.data.dbinit import Base
from flowfee.common.site_enums import PaymentStatus, RESOLVED_PAYMENT_STATUSES


# ----------------------------------------------------------------------
# Payment – settled transactions written by the payment-status pipeline
# ----------------------------------------------------------------------


class Payment(Base):
    __tablename__ = "payment"

    payment_id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )

    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organization.organization_id"),
        nullable=False,
        index=True,
    )

    subscription_id = Column(String, nullable=True, index=True)
    purchase_id = Column(String, nullable=True, index=True)
    invoice_id = Column(String, nullable=True)

    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String, nullable=False, default="usd")

    # 'succeeded','refunded','processing','failed', ...
    status = Column(String, nullable=False)

    charge_date = Column(DateTime(timezone=True), nullable=False)

    stripe_payment_intent_id = Column(String, nullable=True)
    stripe_charge_id = Column(String, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def month_start(now: Optional[datetime] = None) -> datetime:
    """First instant of the current calendar month, in UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


_resolved_statuses = [status.value for status in RESOLVED_PAYMENT_STATUSES]


async def select_resolved_payments_month_to_date(
    db: AsyncSession,
    organization_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> List[Payment]:
    """Succeeded and refunded payments charged since the start of this month."""
    result = await db.execute(
        select(Payment)
        .where(Payment.organization_id == organization_id)
        .where(Payment.charge_date >= month_start(now))
        .where(Payment.status.in_(_resolved_statuses))
    )
    return result.scalars().all()


async def select_lifetime_usage_for_payments(
    db: AsyncSession,
    organization_id: uuid.UUID,
) -> List[Payment]:
    """Every succeeded or refunded payment the organization has ever taken."""
    result = await db.execute(
        select(Payment)
        .where(Payment.organization_id == organization_id)
        .where(Payment.status.in_(_resolved_statuses))
    )
    return result.scalars().all()


async def count_successful_payments(
    db: AsyncSession,
    *,
    subscription_id: Optional[str] = None,
    purchase_id: Optional[str] = None,
) -> int:
    """
    Count succeeded payments for a subscription or, when there is no
    subscription, for a purchase. Returns 0 when neither is given.
    """
    stmt = select(func.count()).select_from(Payment).where(
        Payment.status == PaymentStatus.SUCCEEDED.value
    )
    if subscription_id:
        stmt = stmt.where(Payment.subscription_id == subscription_id)
    elif purchase_id:
        stmt = stmt.where(Payment.purchase_id == purchase_id)
    else:
        return 0
    result = await db.execute(stmt)
    return result.scalar_one()


async def select_payment_by_id(
    db: AsyncSession,
    payment_id: uuid.UUID,
) -> Optional[Payment]:
    result = await db.execute(select(Payment).where(Payment.payment_id == payment_id))
    return result.scalar_one_or_none()
