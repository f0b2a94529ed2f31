from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from flowfee.common.exception import RecordNotFoundException
from flowfee.data.dbinit import get_db
from flowfee.data.fee_calculation import (
    select_fee_calculation_by_id,
    select_latest_fee_calculation,
)
from flowfee.model.fee_calculation import (
    FeeCalculationRecord,
    to_client_record,
    to_customer_record,
)
from flowfee.model.fee_inputs import (
    CheckoutSessionFeeCalculationParams,
    InvoiceFeeCalculationParams,
    SettlePaymentRequest,
    SubscriptionFeeCalculationParams,
    TaxReversalRequest,
)
from flowfee.service.fee_calculation import (
    build_checkout_session_fee_calculation_insert,
    create_and_finalize_subscription_fee_calculation,
    create_checkout_session_fee_calculation,
    create_invoice_fee_calculation_for_checkout_session,
)
from flowfee.service.fee_finalization import finalize_fee_calculation_by_id
from flowfee.service.fee_math import calculate_total_due_amount, calculate_total_fee_amount
from flowfee.service.fee_settlement import (
    reverse_fee_calculation_tax,
    settle_fee_calculation_for_payment,
)

logger = structlog.get_logger()

router = APIRouter()


def _with_totals(record: FeeCalculationRecord) -> Dict[str, Any]:
    body = to_client_record(record)
    body["total_fee_amount"] = calculate_total_fee_amount(record)
    body["total_due_amount"] = calculate_total_due_amount(record)
    return body


@router.post("/preview/price")
async def preview_price_fee_calculation(params: CheckoutSessionFeeCalculationParams):
    """
    Compute a checkout fee calculation without storing it. Merchant-of-record
    organizations still get a live Stripe Tax calculation.
    """
    insert = build_checkout_session_fee_calculation_insert(params)
    body = insert.model_dump(mode="json")
    body["total_fee_amount"] = calculate_total_fee_amount(insert)
    body["total_due_amount"] = calculate_total_due_amount(insert)
    return body


@router.post("/checkout-session", status_code=status.HTTP_201_CREATED)
async def create_checkout_session_calculation(
    params: CheckoutSessionFeeCalculationParams,
    db: AsyncSession = Depends(get_db),
):
    record = await create_checkout_session_fee_calculation(db, params)
    return _with_totals(record)


@router.post("/invoice", status_code=status.HTTP_201_CREATED)
async def create_invoice_calculation(
    params: InvoiceFeeCalculationParams,
    db: AsyncSession = Depends(get_db),
):
    record = await create_invoice_fee_calculation_for_checkout_session(db, params)
    return _with_totals(record)


@router.post("/subscription", status_code=status.HTTP_201_CREATED)
async def create_subscription_calculation(
    params: SubscriptionFeeCalculationParams,
    db: AsyncSession = Depends(get_db),
):
    """Billing-run entry point: creates and finalizes in one transaction."""
    record = await create_and_finalize_subscription_fee_calculation(db, params)
    return _with_totals(record)


@router.post("/{fee_calculation_id}/finalize")
async def finalize_calculation(
    fee_calculation_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    logger.info(f"Finalize requested for fee calculation {fee_calculation_id}")
    record = await finalize_fee_calculation_by_id(db, fee_calculation_id)
    return _with_totals(record)


@router.post("/{fee_calculation_id}/settle")
async def settle_calculation(
    fee_calculation_id: UUID,
    body: SettlePaymentRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Called by the payment pipeline when the payment succeeds: finalizes the
    calculation, advances its discount redemption and commits MoR tax.
    """
    record = await settle_fee_calculation_for_payment(db, fee_calculation_id, body.payment_id)
    return _with_totals(record)


@router.post("/{fee_calculation_id}/tax-reversal")
async def reverse_calculation_tax(
    fee_calculation_id: UUID,
    body: TaxReversalRequest,
    db: AsyncSession = Depends(get_db),
):
    reversal_id = await reverse_fee_calculation_tax(db, fee_calculation_id, body.refund_amount)
    return {
        "fee_calculation_id": str(fee_calculation_id),
        "reversed": reversal_id is not None,
        "stripe_tax_reversal_id": reversal_id,
    }


@router.get("/latest")
async def get_latest_calculation(
    checkout_session_id: Optional[str] = Query(default=None),
    billing_period_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    if not checkout_session_id and not billing_period_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="checkout_session_id or billing_period_id is required",
        )
    fee_calculation = await select_latest_fee_calculation(
        db,
        checkout_session_id=checkout_session_id,
        billing_period_id=billing_period_id,
    )
    if not fee_calculation:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={
                "checkout_session_id": checkout_session_id,
                "billing_period_id": billing_period_id,
            },
        )
    return _with_totals(FeeCalculationRecord.model_validate(fee_calculation))


@router.get("/{fee_calculation_id}")
async def get_calculation(
    fee_calculation_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    fee_calculation = await select_fee_calculation_by_id(db, fee_calculation_id)
    if not fee_calculation:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(fee_calculation_id)},
        )
    return _with_totals(FeeCalculationRecord.model_validate(fee_calculation))


@router.get("/{fee_calculation_id}/customer")
async def get_customer_calculation(
    fee_calculation_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Customer-safe view with the amount due, for checkout and receipt pages."""
    fee_calculation = await select_fee_calculation_by_id(db, fee_calculation_id)
    if not fee_calculation:
        raise RecordNotFoundException(
            "Fee calculation not found",
            context={"fee_calculation_id": str(fee_calculation_id)},
        )
    record = FeeCalculationRecord.model_validate(fee_calculation)
    body = to_customer_record(record)
    body["total_due_amount"] = calculate_total_due_amount(record)
    return body
