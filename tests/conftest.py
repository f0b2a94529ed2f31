import uuid
from types import SimpleNamespace

import pytest

from flowfee.common.site_enums import StripeConnectContractType
from flowfee.model.fee_inputs import (
    Address,
    BillingAddress,
    CountryRecord,
    OrganizationRecord,
    Price,
)


@pytest.fixture
def organization_id():
    return uuid.uuid4()


@pytest.fixture
def us_country():
    return CountryRecord(country_id=uuid.uuid4(), code="US", name="United States")


@pytest.fixture
def platform_organization(organization_id, us_country):
    return OrganizationRecord(
        organization_id=organization_id,
        fee_percentage="0.65",
        stripe_connect_contract_type=StripeConnectContractType.PLATFORM,
        country_id=us_country.country_id,
    )


@pytest.fixture
def mor_organization(organization_id, us_country):
    return OrganizationRecord(
        organization_id=organization_id,
        fee_percentage="0.65",
        stripe_connect_contract_type=StripeConnectContractType.MERCHANT_OF_RECORD,
        country_id=us_country.country_id,
    )


def _billing_address(country="US"):
    return BillingAddress(
        name="Jane Buyer",
        email="jane@example.com",
        address=Address(line1="1 Main St", city="Springfield", postal_code="12345", country=country),
    )


@pytest.fixture
def us_billing_address():
    return _billing_address("US")


@pytest.fixture
def de_billing_address():
    return _billing_address("DE")


@pytest.fixture
def price():
    return Price(id="price_1", unit_price=1000, currency="usd", livemode=True)


@pytest.fixture
def fake_insert(monkeypatch):
    """
    Replaces insert_fee_calculation in the assembler with an in-memory
    version. The rows it "stores" are collected on the returned list.
    """
    from flowfee.service import fee_calculation as fee_calculation_service

    stored = []

    async def _insert(db, insert):
        row = SimpleNamespace(
            **insert.model_dump(),
            fee_calculation_id=uuid.uuid4(),
            created_at=None,
            updated_at=None,
        )
        stored.append(row)
        return row

    monkeypatch.setattr(fee_calculation_service, "insert_fee_calculation", _insert)
    return stored
