import uuid
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from flowfee.api import fee_calculations as fee_calculations_api
from flowfee.common.exception import RecordNotFoundException, TaxEngineException
from flowfee.data.dbinit import get_db
from flowfee.model.fee_calculation import FeeCalculationRecord
from flowfee.service import fee_calculation as fee_calculation_service
from main import app

PREFIX = "/api/v1/fee-calculations"


async def _no_db():
    yield None


@pytest.fixture
def client():
    app.dependency_overrides[get_db] = _no_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _record(**overrides):
    values = dict(
        fee_calculation_id=uuid.uuid4(),
        type="checkout_session_payment",
        organization_id=uuid.uuid4(),
        checkout_session_id="chckt_1",
        base_amount=10000,
        discount_amount_fixed=1000,
        pretax_total=9000,
        tax_amount_fixed=0,
        flowglad_fee_percentage="0.65",
        mor_surcharge_percentage="0",
        international_fee_percentage="0",
        payment_method_fee_fixed=291,
        currency="usd",
        payment_method_type="card",
        internal_notes="Full fee applied.",
        stripe_tax_calculation_id=None,
    )
    values.update(overrides)
    return FeeCalculationRecord(**values)


def _preview_body(**overrides):
    body = {
        "organization": {
            "organization_id": str(uuid.uuid4()),
            "fee_percentage": "0.65",
            "stripe_connect_contract_type": "platform",
        },
        "organization_country": {"code": "US", "name": "United States"},
        "price": {"id": "price_1", "unit_price": 1000, "currency": "usd"},
        "quantity": 2,
        "billing_address": {"name": "Jane", "address": {"country": "US"}},
        "payment_method_type": "card",
        "checkout_session_id": "chckt_1",
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"x-request-id": "req-123"})
    assert response.headers["x-request-id"] == "req-123"


class TestPreview:

    def test_preview_price(self, client):
        response = client.post(f"{PREFIX}/preview/price", json=_preview_body())

        assert response.status_code == 200
        body = response.json()
        assert body["base_amount"] == 2000
        assert body["pretax_total"] == 2000
        # 58 + 30
        assert body["payment_method_fee_fixed"] == 88
        assert body["flowglad_fee_percentage"] == "0.65"
        # 13 flowglad + 88 card
        assert body["total_fee_amount"] == 101
        assert body["total_due_amount"] == 2000

    def test_unknown_country_is_unprocessable(self, client):
        response = client.post(
            f"{PREFIX}/preview/price",
            json=_preview_body(billing_address={"address": {"country": "ZZ"}}),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "FeeValidationError"

    @pytest.mark.parametrize("path", ["preview/price", "checkout-session"])
    def test_empty_checkout_session_id_is_unprocessable(self, client, path):
        response = client.post(f"{PREFIX}/{path}", json=_preview_body(checkout_session_id=""))

        assert response.status_code == 422

    def test_invoice_with_empty_checkout_session_id_is_unprocessable(self, client):
        body = _preview_body(checkout_session_id="")
        body.pop("price")
        body.pop("quantity")
        body["invoice"] = {"id": "inv_1"}
        body["invoice_line_items"] = [{"price": 1000, "quantity": 1}]

        response = client.post(f"{PREFIX}/invoice", json=body)

        assert response.status_code == 422

    def test_tax_engine_failure_is_bad_gateway(self, client, monkeypatch):
        def _calculate_taxes(**kwargs):
            raise TaxEngineException("Stripe Tax calculation failed")

        monkeypatch.setattr(fee_calculation_service, "calculate_taxes", _calculate_taxes)
        body = _preview_body()
        body["organization"]["stripe_connect_contract_type"] = "merchant_of_record"

        response = client.post(f"{PREFIX}/preview/price", json=body)

        assert response.status_code == 502


class TestFinalize:

    def test_finalize_returns_client_projection(self, client, monkeypatch):
        record = _record()

        async def _finalize(db, fee_calculation_id):
            assert fee_calculation_id == record.fee_calculation_id
            return record

        monkeypatch.setattr(fee_calculations_api, "finalize_fee_calculation_by_id", _finalize)

        response = client.post(f"{PREFIX}/{record.fee_calculation_id}/finalize")

        assert response.status_code == 200
        body = response.json()
        assert body["fee_calculation_id"] == str(record.fee_calculation_id)
        assert "internal_notes" not in body
        assert body["total_due_amount"] == 9000

    def test_finalize_missing_is_not_found(self, client, monkeypatch):
        async def _finalize(db, fee_calculation_id):
            raise RecordNotFoundException("Fee calculation not found")

        monkeypatch.setattr(fee_calculations_api, "finalize_fee_calculation_by_id", _finalize)

        response = client.post(f"{PREFIX}/{uuid.uuid4()}/finalize")

        assert response.status_code == 404
        assert response.json()["message"] == "Fee calculation not found"


class TestLookup:

    def test_latest_by_checkout_session(self, client, monkeypatch):
        record = _record()
        lookups = []

        async def _latest(db, *, checkout_session_id=None, billing_period_id=None):
            lookups.append((checkout_session_id, billing_period_id))
            return SimpleNamespace(**record.model_dump())

        monkeypatch.setattr(fee_calculations_api, "select_latest_fee_calculation", _latest)

        response = client.get(f"{PREFIX}/latest", params={"checkout_session_id": "chckt_1"})

        assert response.status_code == 200
        assert lookups == [("chckt_1", None)]
        assert response.json()["checkout_session_id"] == "chckt_1"

    def test_latest_missing_is_not_found(self, client, monkeypatch):
        async def _latest(db, *, checkout_session_id=None, billing_period_id=None):
            return None

        monkeypatch.setattr(fee_calculations_api, "select_latest_fee_calculation", _latest)

        response = client.get(f"{PREFIX}/latest", params={"billing_period_id": "bp_1"})

        assert response.status_code == 404

    def test_latest_needs_an_owner(self, client):
        response = client.get(f"{PREFIX}/latest")
        assert response.status_code == 400

    def test_customer_view(self, client, monkeypatch):
        record = _record(tax_amount_fixed=500)

        async def _select(db, fee_calculation_id):
            return SimpleNamespace(**record.model_dump())

        monkeypatch.setattr(fee_calculations_api, "select_fee_calculation_by_id", _select)

        response = client.get(f"{PREFIX}/{record.fee_calculation_id}/customer")

        assert response.status_code == 200
        body = response.json()
        assert body["total_due_amount"] == 9500
        assert "flowglad_fee_percentage" not in body
        assert "payment_method_fee_fixed" not in body


class TestSettlement:

    def test_settle_passes_payment_through(self, client, monkeypatch):
        record = _record(stripe_tax_transaction_id="tax_txn_1")
        payment_id = uuid.uuid4()
        calls = []

        async def _settle(db, fee_calculation_id, settled_payment_id):
            calls.append((fee_calculation_id, settled_payment_id))
            return record

        monkeypatch.setattr(fee_calculations_api, "settle_fee_calculation_for_payment", _settle)

        response = client.post(
            f"{PREFIX}/{record.fee_calculation_id}/settle",
            json={"payment_id": str(payment_id)},
        )

        assert response.status_code == 200
        assert calls == [(record.fee_calculation_id, payment_id)]
        assert "stripe_tax_transaction_id" not in response.json()

    def test_partial_tax_reversal(self, client, monkeypatch):
        fee_calculation_id = uuid.uuid4()

        async def _reverse(db, calculation_id, refund_amount):
            assert refund_amount == 400
            return "tax_rev_1"

        monkeypatch.setattr(fee_calculations_api, "reverse_fee_calculation_tax", _reverse)

        response = client.post(
            f"{PREFIX}/{fee_calculation_id}/tax-reversal", json={"refund_amount": 400}
        )

        assert response.status_code == 200
        assert response.json() == {
            "fee_calculation_id": str(fee_calculation_id),
            "reversed": True,
            "stripe_tax_reversal_id": "tax_rev_1",
        }

    def test_non_positive_refund_amount_is_unprocessable(self, client):
        response = client.post(
            f"{PREFIX}/{uuid.uuid4()}/tax-reversal", json={"refund_amount": 0}
        )
        assert response.status_code == 422
