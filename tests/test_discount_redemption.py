import uuid
from types import SimpleNamespace

import pytest

from flowfee.service import discount_redemption as redemption_service
from flowfee.service.discount_redemption import (
    increment_number_of_payments_for_discount_redemption,
    safely_increment_discount_redemption_for_payment,
)


def _redemption(duration, number_of_payments=None, subscription_id="sub_1", purchase_id="pur_1"):
    return SimpleNamespace(
        discount_redemption_id=uuid.uuid4(),
        duration=duration,
        number_of_payments=number_of_payments,
        subscription_id=subscription_id,
        purchase_id=purchase_id,
        fully_redeemed=False,
    )


def _payment(subscription_id="sub_1", purchase_id="pur_1"):
    return SimpleNamespace(
        payment_id=uuid.uuid4(),
        subscription_id=subscription_id,
        purchase_id=purchase_id,
        amount=1000,
        status="succeeded",
    )


class FakeRedemptionStore:

    def __init__(self, monkeypatch, redemption=None, successful_payments=0):
        self.redemption = redemption
        self.successful_payments = successful_payments
        self.lookups = []
        self.counts = []
        self.updates = []

        async def _select_active(db, *, subscription_id=None, purchase_id=None):
            self.lookups.append((subscription_id, purchase_id))
            return self.redemption

        async def _update(db, discount_redemption_id, values):
            self.updates.append((discount_redemption_id, values))
            return self.redemption

        async def _count(db, *, subscription_id=None, purchase_id=None):
            self.counts.append((subscription_id, purchase_id))
            return self.successful_payments

        monkeypatch.setattr(redemption_service, "select_active_discount_redemption", _select_active)
        monkeypatch.setattr(redemption_service, "update_discount_redemption", _update)
        monkeypatch.setattr(redemption_service, "count_successful_payments", _count)


class TestSafelyIncrementDiscountRedemption:

    async def test_payment_without_subscription_or_purchase_is_ignored(self, monkeypatch):
        store = FakeRedemptionStore(monkeypatch, _redemption("once"))

        await safely_increment_discount_redemption_for_payment(None, _payment(None, None))

        assert store.lookups == []
        assert store.updates == []

    async def test_no_active_redemption(self, monkeypatch):
        store = FakeRedemptionStore(monkeypatch, None)

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.lookups == [("sub_1", "pur_1")]
        assert store.updates == []

    async def test_already_fully_redeemed(self, monkeypatch):
        redemption = _redemption("once")
        redemption.fully_redeemed = True
        store = FakeRedemptionStore(monkeypatch, redemption)

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.updates == []

    async def test_forever_stays_active(self, monkeypatch):
        store = FakeRedemptionStore(monkeypatch, _redemption("forever"))

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.updates == []
        assert store.counts == []

    async def test_once_is_fully_redeemed(self, monkeypatch):
        redemption = _redemption("once")
        store = FakeRedemptionStore(monkeypatch, redemption)

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.updates == [(redemption.discount_redemption_id, {"fully_redeemed": True})]

    async def test_number_of_payments_counts_payments(self, monkeypatch):
        store = FakeRedemptionStore(monkeypatch, _redemption("number_of_payments", 3), successful_payments=1)

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.counts == [("sub_1", None)]
        assert store.updates == []

    async def test_unknown_duration_is_left_alone(self, monkeypatch):
        store = FakeRedemptionStore(monkeypatch, _redemption("fortnightly"))

        await safely_increment_discount_redemption_for_payment(None, _payment())

        assert store.updates == []


class TestIncrementNumberOfPayments:

    @pytest.mark.parametrize(
        "number_of_payments, successful_payments, redeemed",
        [
            (3, 1, False),
            (3, 2, False),
            (3, 3, True),
            (3, 4, True),
            (None, 1, True),
            (1, 1, True),
        ],
    )
    async def test_redeemed_once_cap_reached(self, monkeypatch, number_of_payments, successful_payments, redeemed):
        redemption = _redemption("number_of_payments", number_of_payments)
        store = FakeRedemptionStore(monkeypatch, redemption, successful_payments=successful_payments)

        await increment_number_of_payments_for_discount_redemption(None, redemption, _payment())

        assert bool(store.updates) is redeemed

    async def test_counts_by_purchase_when_no_subscription(self, monkeypatch):
        redemption = _redemption("number_of_payments", 2, subscription_id=None, purchase_id="pur_7")
        store = FakeRedemptionStore(monkeypatch, redemption, successful_payments=2)

        await increment_number_of_payments_for_discount_redemption(
            None, redemption, _payment(subscription_id=None, purchase_id="pur_7")
        )

        assert store.counts == [(None, "pur_7")]
        assert store.updates == [(redemption.discount_redemption_id, {"fully_redeemed": True})]
