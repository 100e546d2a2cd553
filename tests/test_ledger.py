from decimal import Decimal

import pytest

from extensions import db
from rewards.ledger import LedgerHelper, EARNED, COMMISSION


def test_credit_creates_row_and_updates_counters(make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "1.5", kind=EARNED, tier_name="Silver")
    LedgerHelper.credit(user.id, "0.25", kind=COMMISSION)
    db.session.commit()

    balance = LedgerHelper.balance(user.id)
    assert balance["available"] == Decimal("1.75")
    assert balance["lifetime_earned"] == Decimal("1.5")
    assert balance["lifetime_commission"] == Decimal("0.25")
    assert LedgerHelper.snapshot(user.id)[0]["currentTier"] == "Silver"


def test_credit_truncates_to_six_places(make_user):
    user = make_user()
    credited = LedgerHelper.credit(user.id, "0.1234567")
    db.session.commit()
    assert credited == Decimal("0.123456")


def test_credit_rejects_negative_amount(make_user):
    with pytest.raises(ValueError):
        LedgerHelper.credit(make_user().id, "-1")


def test_reserve_is_conditional_on_available(make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "5")
    db.session.commit()

    assert LedgerHelper.reserve(user.id, "USDC", "3") is True
    assert LedgerHelper.reserve(user.id, "USDC", "3") is False
    db.session.commit()
    assert LedgerHelper.available(user.id) == Decimal("2")


def test_refund_restores_available(make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "5")
    LedgerHelper.reserve(user.id, "USDC", "4")
    LedgerHelper.refund(user.id, "USDC", "4")
    db.session.commit()
    assert LedgerHelper.available(user.id) == Decimal("5")


def test_assets_are_separate_rows(make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "2", asset="POL")
    db.session.commit()
    assert LedgerHelper.available(user.id, "POL") == Decimal("2")
    assert LedgerHelper.available(user.id, "USDC") == Decimal("0")
    assert LedgerHelper.reserve(user.id, "USDC", "1") is False


@pytest.mark.parametrize("value", ["NaN", Decimal("Infinity"), "-inf"])
def test_non_finite_credit_is_rejected(make_user, value):
    user = make_user()
    with pytest.raises(ValueError):
        LedgerHelper.credit(user.id, value)
    assert LedgerHelper.available(user.id) == Decimal("0")
