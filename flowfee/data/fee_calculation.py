from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from flowfee.data.dbinit import Base
from flowfee.common.exception import GeneralDataException, IntegrityException
from flowfee.model.fee_calculation import FeeCalculationInsert


# ----------------------------------------------------------------------
# FeeCalculation
# ----------------------------------------------------------------------


class FeeCalculation(Base):
    """
    Fee breakdown for one checkout-session payment or one subscription
    billing-period payment. Written once at authorization time, finalized
    once at settlement, never deleted.
    """
    __tablename__ = "fee_calculation"
    __table_args__ = (
        CheckConstraint(
            "(checkout_session_id IS NULL) <> (billing_period_id IS NULL)",
            name="ck_fee_calculation_single_owner",
        ),
    )

    fee_calculation_id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )

    type = Column(String, nullable=False)  # 'checkout_session_payment' / 'subscription_payment'

    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organization.organization_id"),
        nullable=False,
        index=True,
    )

    checkout_session_id = Column(String, nullable=True, index=True)
    billing_period_id = Column(String, nullable=True, index=True)

    price_id = Column(String, nullable=True)
    purchase_id = Column(String, nullable=True)
    discount_id = Column(String, nullable=True)
    invoice_id = Column(String, nullable=True)

    # Amounts in minor units; fixed after insert
    base_amount = Column(Integer, nullable=False)
    discount_amount_fixed = Column(Integer, nullable=False, default=0)
    pretax_total = Column(Integer, nullable=False)
    tax_amount_fixed = Column(Integer, nullable=False, default=0)

    # Percentages kept as decimal strings so nothing passes through a float
    flowglad_fee_percentage = Column(String, nullable=False)
    mor_surcharge_percentage = Column(String, nullable=False, default="0")
    international_fee_percentage = Column(String, nullable=False, default="0")
    payment_method_fee_fixed = Column(Integer, nullable=False, default=0)

    currency = Column(String, nullable=False)
    payment_method_type = Column(String, nullable=False)
    billing_address = Column(JSONB, nullable=True)

    stripe_tax_calculation_id = Column(String, nullable=True)
    stripe_tax_transaction_id = Column(String, nullable=True)

    internal_notes = Column(String, nullable=True)
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


# Only these columns may change once a row exists
MUTABLE_FEE_CALCULATION_FIELDS = frozenset({
    "flowglad_fee_percentage",
    "mor_surcharge_percentage",
    "internal_notes",
    "stripe_tax_transaction_id",
})


# ----------------------------------------------------------------------
# FeeCalculation helpers
# ----------------------------------------------------------------------


async def insert_fee_calculation(
    db: AsyncSession,
    insert: FeeCalculationInsert,
) -> FeeCalculation:
    """Insert a new fee calculation row and return it."""
    try:
        fee_calculation = FeeCalculation(**insert.model_dump())
        db.add(fee_calculation)
        await db.flush()
        await db.refresh(fee_calculation)
        return fee_calculation
    except IntegrityError as exc:
        await db.rollback()
        raise IntegrityException(
            "Integrity error when inserting fee calculation",
            context={"detail": str(exc)},
        ) from exc
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        raise GeneralDataException(
            "Unexpected error when inserting fee calculation",
            context={"detail": str(exc)},
        ) from exc


async def select_fee_calculation_by_id(
    db: AsyncSession,
    fee_calculation_id: uuid.UUID,
) -> Optional[FeeCalculation]:
    """Fetch a fee calculation by primary key."""
    result = await db.execute(
        select(FeeCalculation).where(FeeCalculation.fee_calculation_id == fee_calculation_id)
    )
    return result.scalar_one_or_none()


async def select_latest_fee_calculation(
    db: AsyncSession,
    *,
    checkout_session_id: Optional[str] = None,
    billing_period_id: Optional[str] = None,
) -> Optional[FeeCalculation]:
    """Most recent calculation for a checkout session or billing period."""
    stmt = select(FeeCalculation)
    if checkout_session_id:
        stmt = stmt.where(FeeCalculation.checkout_session_id == checkout_session_id)
    elif billing_period_id:
        stmt = stmt.where(FeeCalculation.billing_period_id == billing_period_id)
    else:
        return None
    result = await db.execute(
        stmt.order_by(FeeCalculation.created_at.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def update_fee_calculation(
    db: AsyncSession,
    fee_calculation_id: uuid.UUID,
    values: Dict[str, Any],
) -> Optional[FeeCalculation]:
    """
    Update the mutable fields of a fee calculation and return the refreshed
    row. Amount columns are rejected: they are frozen at insert time.
    """
    frozen = set(values) - MUTABLE_FEE_CALCULATION_FIELDS
    if frozen:
        raise GeneralDataException(
            "Attempted to change immutable fee calculation fields",
            context={"fields": sorted(frozen), "fee_calculation_id": str(fee_calculation_id)},
        )

    fee_calculation = await select_fee_calculation_by_id(db, fee_calculation_id)
    if not fee_calculation:
        return None

    for key, value in values.items():
        if value is not None:
            setattr(fee_calculation, key, value)

    try:
        await db.flush()
        await db.refresh(fee_calculation)
        return fee_calculation
    except IntegrityError as exc:
        await db.rollback()
        raise IntegrityException(
            "Integrity error when updating fee calculation",
            context={"detail": str(exc)},
        ) from exc
    except Exception as exc:  # noqa: BLE001
        await db.rollback()
        raise GeneralDataException(
            "Unexpected error when updating fee calculation",
            context={"detail": str(exc)},
        ) from exc
