from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

from flowfee.common.site_enums import FeeCalculationType, PaymentMethodType
from flowfee.model.fee_inputs import BillingAddress


class FeeCalculationBase(BaseModel):
    """
    One priced transaction's fee breakdown. Money fields are integer minor
    units, percentage fields are decimal strings ("0.65" means 0.65%).
    """
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    type: FeeCalculationType
    organization_id: UUID

    # owning context: checkout session for checkout payments, billing period for subscriptions
    checkout_session_id: Optional[str] = None
    billing_period_id: Optional[str] = None

    price_id: Optional[str] = None
    purchase_id: Optional[str] = None
    discount_id: Optional[str] = None
    invoice_id: Optional[str] = None

    base_amount: int
    discount_amount_fixed: int = 0
    pretax_total: int
    tax_amount_fixed: int = 0

    flowglad_fee_percentage: str
    mor_surcharge_percentage: str = "0"
    international_fee_percentage: str = "0"
    payment_method_fee_fixed: int = 0

    currency: str
    payment_method_type: PaymentMethodType
    billing_address: Optional[BillingAddress] = None

    stripe_tax_calculation_id: Optional[str] = None
    stripe_tax_transaction_id: Optional[str] = None

    internal_notes: Optional[str] = None
    livemode: bool = True


class FeeCalculationInsert(FeeCalculationBase):

    @model_validator(mode="after")
    def check_owning_context(self) -> "FeeCalculationInsert":
        if bool(self.checkout_session_id) == bool(self.billing_period_id):
            raise ValueError(
                "Exactly one of checkout_session_id or billing_period_id must be set"
            )
        if self.type == FeeCalculationType.CHECKOUT_SESSION_PAYMENT and not self.checkout_session_id:
            raise ValueError("Checkout session fee calculations need a checkout_session_id")
        if self.type == FeeCalculationType.SUBSCRIPTION_PAYMENT and not self.billing_period_id:
            raise ValueError("Subscription fee calculations need a billing_period_id")
        return self


class FeeCalculationRecord(FeeCalculationBase):
    fee_calculation_id: UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ----------------------------------------------------------------------
# Projections
# ----------------------------------------------------------------------

CLIENT_HIDDEN_FIELDS = frozenset({
    "internal_notes",
    "stripe_tax_calculation_id",
    "stripe_tax_transaction_id",
})

CUSTOMER_VISIBLE_FIELDS = frozenset({
    "fee_calculation_id",
    "type",
    "checkout_session_id",
    "billing_period_id",
    "price_id",
    "purchase_id",
    "discount_id",
    "invoice_id",
    "base_amount",
    "discount_amount_fixed",
    "pretax_total",
    "tax_amount_fixed",
    "currency",
    "livemode",
})


def to_client_record(record: FeeCalculationRecord) -> Dict[str, Any]:
    """Merchant-facing view: everything except audit notes and tax engine ids."""
    return record.model_dump(mode="json", exclude=set(CLIENT_HIDDEN_FIELDS))


def to_customer_record(record: FeeCalculationRecord) -> Dict[str, Any]:
    """What the paying customer may see: the amounts they are charged, no fee internals."""
    return record.model_dump(mode="json", include=set(CUSTOMER_VISIBLE_FIELDS))
