from __future__ import annotations

from decimal import Decimal

from flowfee.common.exception import FeeValidationError
from flowfee.common.site_enums import (
    COUNTRY_CODES,
    PaymentMethodType,
    StripeConnectContractType,
)
from flowfee.model.fee_inputs import CountryRecord, OrganizationRecord
from flowfee.service.fee_math import (
    HUNDRED,
    round_minor_units,
    validate_percentage_string,
)

CARD_CROSS_BORDER_FEE_PERCENTAGE = "1.5"
CARD_BASE_FEE_PERCENTAGE = Decimal("2.9")
CARD_FIXED_FEE_CENTS = 30
BANK_ACCOUNT_FEE_PERCENTAGE = Decimal("0.8")
BANK_ACCOUNT_MAX_FEE_CENTS = 500
SEPA_DEBIT_FEE_PERCENTAGE = Decimal("0.8")
SEPA_DEBIT_MAX_FEE_CENTS = 600
MOR_SURCHARGE_PERCENTAGE = "1.1"


def calculate_flowglad_fee_percentage(organization: OrganizationRecord) -> str:
    """The organization's own fee percentage string, passed through untouched."""
    validate_percentage_string(organization.fee_percentage, "Organization fee percentage")
    return organization.fee_percentage


def calculate_mor_surcharge_percentage(organization: OrganizationRecord) -> str:
    if organization.stripe_connect_contract_type == StripeConnectContractType.MERCHANT_OF_RECORD.value:
        return MOR_SURCHARGE_PERCENTAGE
    return "0"


def calculate_international_fee_percentage(
    payment_method: str,
    payment_method_country: str,
    organization: OrganizationRecord,
    organization_country: CountryRecord,
) -> str:
    """
    Cross-border surcharge for the payment. Merchant-of-record sales paid
    from the US never carry one; otherwise card and SEPA payments from a
    country other than the organization's pay CARD_CROSS_BORDER_FEE_PERCENTAGE.
    """
    payment_country_code = (payment_method_country or "").upper()

    if (
        organization.stripe_connect_contract_type == StripeConnectContractType.MERCHANT_OF_RECORD.value
        and payment_country_code == "US"
    ):
        return "0"

    if payment_country_code not in COUNTRY_CODES:
        raise FeeValidationError(
            f"Billing address country {payment_country_code} is not in the list of country codes",
            context={"country": payment_method_country},
        )

    if organization_country.code.upper() == payment_country_code:
        return "0"

    if payment_method in (PaymentMethodType.CARD.value, PaymentMethodType.SEPA_DEBIT.value):
        return CARD_CROSS_BORDER_FEE_PERCENTAGE
    return "0"


def _card_fee(amount: Decimal) -> int:
    return round_minor_units(amount * CARD_BASE_FEE_PERCENTAGE / HUNDRED + CARD_FIXED_FEE_CENTS)


def calculate_payment_method_fee_amount(total_amount_to_charge: int, payment_method: str) -> int:
    """
    Processor fee for charging total_amount_to_charge with the given method.
    Card and Link: 2.9% + 30. US bank account: 0.8% capped at 500.
    SEPA debit: 0.8% capped at 600. Anything else is priced like a card.
    """
    if total_amount_to_charge <= 0:
        return 0

    amount = Decimal(total_amount_to_charge)

    if payment_method == PaymentMethodType.US_BANK_ACCOUNT.value:
        return round_minor_units(
            min(amount * BANK_ACCOUNT_FEE_PERCENTAGE / HUNDRED, Decimal(BANK_ACCOUNT_MAX_FEE_CENTS))
        )
    if payment_method == PaymentMethodType.SEPA_DEBIT.value:
        return round_minor_units(
            min(amount * SEPA_DEBIT_FEE_PERCENTAGE / HUNDRED, Decimal(SEPA_DEBIT_MAX_FEE_CENTS))
        )
    return _card_fee(amount)
