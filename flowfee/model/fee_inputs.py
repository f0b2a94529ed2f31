from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from flowfee.common.site_enums import (
    DiscountDuration,
    PaymentMethodType,
    PriceType,
    StripeConnectContractType,
    SubscriptionItemType,
)


class _Input(BaseModel):
    # enum fields hold their plain string values after parsing
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Address(_Input):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class BillingAddress(_Input):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Address


class CountryRecord(_Input):
    country_id: Optional[UUID] = None
    code: str
    name: Optional[str] = None


class OrganizationRecord(_Input):
    organization_id: UUID
    fee_percentage: str
    stripe_connect_contract_type: StripeConnectContractType = StripeConnectContractType.PLATFORM
    monthly_billing_volume_free_tier: int = 0
    upfront_processing_credits: int = 0
    country_id: Optional[UUID] = None


class Price(_Input):
    id: str
    unit_price: int
    currency: str = "usd"
    type: PriceType = PriceType.SINGLE_PAYMENT
    livemode: bool = True
    product_id: Optional[str] = None


class Purchase(_Input):
    id: str
    price_type: Optional[str] = None
    first_invoice_value: Optional[int] = None
    price_per_billing_cycle: Optional[int] = None


class Discount(_Input):
    id: str
    amount_type: str
    amount: int
    duration: Optional[DiscountDuration] = None
    number_of_payments: Optional[int] = None


class DiscountRedemptionRecord(_Input):
    discount_redemption_id: Optional[UUID] = None
    discount_id: str
    discount_amount: int
    discount_amount_type: str
    subscription_id: Optional[str] = None
    purchase_id: Optional[str] = None
    duration: DiscountDuration = DiscountDuration.ONCE
    number_of_payments: Optional[int] = None
    fully_redeemed: bool = False


class InvoiceLineItem(_Input):
    price: int
    quantity: int = 1
    description: Optional[str] = None


class Invoice(_Input):
    id: str
    currency: str = "usd"
    livemode: bool = True


class BillingPeriodItem(_Input):
    type: SubscriptionItemType = SubscriptionItemType.STATIC
    unit_price: int
    quantity: int = 1
    usage_meter_id: Optional[str] = None
    usage_events_per_unit: Optional[int] = None


class UsageOverage(_Input):
    usage_meter_id: str
    balance: int


class BillingPeriod(_Input):
    id: str = Field(min_length=1)
    subscription_id: str


class PaymentMethod(_Input):
    id: Optional[str] = None
    type: PaymentMethodType = PaymentMethodType.CARD
    billing_details: BillingAddress
    # country reported by the card network, used when the billing address has none
    payment_method_data_country: Optional[str] = None

    @property
    def country(self) -> Optional[str]:
        return self.billing_details.address.country or self.payment_method_data_country


class TaxCalculationResult(BaseModel):
    tax_amount_fixed: int = 0
    stripe_tax_calculation_id: Optional[str] = None
    stripe_tax_transaction_id: Optional[str] = None


class CheckoutSessionFeeCalculationParams(_Input):
    organization: OrganizationRecord
    organization_country: CountryRecord
    price: Price
    purchase: Optional[Purchase] = None
    discount: Optional[Discount] = None
    quantity: int = Field(default=1, ge=1)
    billing_address: BillingAddress
    payment_method_type: PaymentMethodType
    checkout_session_id: str = Field(min_length=1)


class InvoiceFeeCalculationParams(_Input):
    organization: OrganizationRecord
    organization_country: CountryRecord
    invoice: Invoice
    invoice_line_items: List[InvoiceLineItem]
    billing_address: BillingAddress
    payment_method_type: PaymentMethodType
    checkout_session_id: str = Field(min_length=1)


class SubscriptionFeeCalculationParams(_Input):
    organization: OrganizationRecord
    organization_country: CountryRecord
    billing_period: BillingPeriod
    billing_period_items: List[BillingPeriodItem]
    payment_method: PaymentMethod
    discount_redemption: Optional[DiscountRedemptionRecord] = None
    usage_overages: List[UsageOverage] = []
    # the subscription's price; only needed for merchant-of-record tax
    price: Optional[Price] = None
    currency: str = "usd"
    livemode: bool = True


class SettlePaymentRequest(BaseModel):
    payment_id: UUID


class TaxReversalRequest(BaseModel):
    # omitted for a full refund
    refund_amount: Optional[int] = Field(default=None, gt=0)
