from types import SimpleNamespace

import pytest
import stripe

from flowfee.common import stripe_tax
from flowfee.common.exception import FeeValidationError, TaxEngineException
from flowfee.config.config import settings
from flowfee.model.fee_inputs import Purchase
from flowfee.service import fee_tax
from flowfee.service.fee_tax import calculate_taxes


class TestCalculateTaxes:

    @pytest.fixture
    def calls(self, monkeypatch):
        calls = []

        def _by_price(**kwargs):
            calls.append(("price", kwargs))
            return SimpleNamespace(id="taxcalc_price", tax_amount_exclusive=80)

        def _by_purchase(**kwargs):
            calls.append(("purchase", kwargs))
            return SimpleNamespace(id="taxcalc_purchase", tax_amount_exclusive=95)

        monkeypatch.setattr(fee_tax, "create_stripe_tax_calculation_by_price", _by_price)
        monkeypatch.setattr(fee_tax, "create_stripe_tax_calculation_by_purchase", _by_purchase)
        return calls

    def test_zero_amount_skips_stripe(self, calls, price, us_billing_address):
        result = calculate_taxes(0, True, us_billing_address, price)

        assert calls == []
        assert result.tax_amount_fixed == 0
        assert result.stripe_tax_calculation_id.startswith("notaxoverride_")
        assert result.stripe_tax_transaction_id is None

    def test_zero_amount_ids_are_unique(self, calls, price, us_billing_address):
        first = calculate_taxes(0, True, us_billing_address, price)
        second = calculate_taxes(0, True, us_billing_address, price)
        assert first.stripe_tax_calculation_id != second.stripe_tax_calculation_id

    def test_price_scoped_calculation(self, calls, price, us_billing_address):
        result = calculate_taxes(1000, True, us_billing_address, price)

        assert [kind for kind, _ in calls] == ["price"]
        assert calls[0][1]["discount_inclusive_amount"] == 1000
        assert result.tax_amount_fixed == 80
        assert result.stripe_tax_calculation_id == "taxcalc_price"
        assert result.stripe_tax_transaction_id is None

    def test_purchase_scoped_calculation(self, calls, price, us_billing_address):
        purchase = Purchase(id="pur_1", price_type="single_payment")
        result = calculate_taxes(1000, False, us_billing_address, price, purchase)

        assert [kind for kind, _ in calls] == ["purchase"]
        assert calls[0][1]["purchase"].id == "pur_1"
        assert calls[0][1]["livemode"] is False
        assert result.tax_amount_fixed == 95


class TestStripeTaxWrapper:

    @pytest.fixture(autouse=True)
    def keys(self, monkeypatch):
        monkeypatch.setattr(settings, "STRIPE_LIVE_SECRET_KEY", "sk_live_test")
        monkeypatch.setattr(settings, "STRIPE_TEST_SECRET_KEY", "sk_test_test")

    def test_calculation_request_shape(self, monkeypatch, price, us_billing_address):
        captured = {}

        def _create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="taxcalc_1", tax_amount_exclusive=0)

        monkeypatch.setattr(stripe.tax.Calculation, "create", _create)
        stripe_tax.create_stripe_tax_calculation_by_price(
            price=price,
            billing_address=us_billing_address,
            discount_inclusive_amount=900,
            livemode=True,
        )

        assert captured["api_key"] == "sk_live_test"
        assert captured["currency"] == "usd"
        assert captured["customer_details"]["address_source"] == "billing"
        assert captured["customer_details"]["address"]["country"] == "US"
        assert "line2" not in captured["customer_details"]["address"]
        assert captured["line_items"] == [
            {"quantity": 1, "amount": 900, "reference": "price_1", "tax_code": "txcd_10000000"}
        ]

    def test_purchase_calculation_uses_purchase_reference_and_test_key(
        self, monkeypatch, price, us_billing_address
    ):
        captured = {}

        def _create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="taxcalc_1", tax_amount_exclusive=0)

        monkeypatch.setattr(stripe.tax.Calculation, "create", _create)
        stripe_tax.create_stripe_tax_calculation_by_purchase(
            purchase=Purchase(id="pur_9"),
            price=price,
            billing_address=us_billing_address,
            discount_inclusive_amount=900,
            livemode=False,
        )

        assert captured["api_key"] == "sk_test_test"
        assert captured["line_items"][0]["reference"] == "pur_9"

    def test_stripe_error_becomes_tax_engine_exception(self, monkeypatch, price, us_billing_address):
        def _create(**kwargs):
            raise stripe.StripeError("tax service down")

        monkeypatch.setattr(stripe.tax.Calculation, "create", _create)
        with pytest.raises(TaxEngineException):
            stripe_tax.create_stripe_tax_calculation_by_price(
                price=price,
                billing_address=us_billing_address,
                discount_inclusive_amount=900,
                livemode=True,
            )

    def test_transaction_from_calculation(self, monkeypatch):
        captured = {}

        def _create_from_calculation(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="tax_txn_1")

        monkeypatch.setattr(stripe.tax.Transaction, "create_from_calculation", _create_from_calculation)
        transaction = stripe_tax.create_stripe_tax_transaction_from_calculation(
            "taxcalc_1", "pi_123", livemode=True
        )

        assert transaction.id == "tax_txn_1"
        assert captured == {"api_key": "sk_live_test", "calculation": "taxcalc_1", "reference": "pi_123"}


class TestReverseStripeTaxTransaction:

    @pytest.fixture
    def reversals(self, monkeypatch):
        reversals = []

        def _create_reversal(**kwargs):
            reversals.append(kwargs)
            return SimpleNamespace(id="tax_txn_reversal")

        monkeypatch.setattr(stripe.tax.Transaction, "create_reversal", _create_reversal)
        return reversals

    def test_full_reversal(self, reversals):
        stripe_tax.reverse_stripe_tax_transaction("tax_txn_1", "full", livemode=False)

        assert len(reversals) == 1
        assert reversals[0]["mode"] == "full"
        assert reversals[0]["original_transaction"] == "tax_txn_1"
        assert "flat_amount" not in reversals[0]
        assert reversals[0]["reference"].startswith("tax_txn_1_reversal_")

    def test_partial_reversal_sends_negative_amount(self, reversals):
        stripe_tax.reverse_stripe_tax_transaction(
            "tax_txn_1", "partial", flat_amount=250, livemode=True, reference="refund_1"
        )

        assert reversals[0]["flat_amount"] == -250
        assert reversals[0]["reference"] == "refund_1"

    @pytest.mark.parametrize("flat_amount", [None, 0, -5, 1.5, True])
    def test_partial_reversal_needs_positive_integer(self, reversals, flat_amount):
        with pytest.raises(FeeValidationError):
            stripe_tax.reverse_stripe_tax_transaction("tax_txn_1", "partial", flat_amount=flat_amount)
        assert reversals == []

    def test_unknown_mode(self, reversals):
        with pytest.raises(FeeValidationError):
            stripe_tax.reverse_stripe_tax_transaction("tax_txn_1", "half")
        assert reversals == []
