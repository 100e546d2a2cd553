import time
from datetime import timedelta
from decimal import Decimal

import pytest

from extensions import db
from models import RoundLineItem, ReferralCommission, SnapshotRound
from rewards.config import RewardConfigHelper
from rewards.errors import AlreadyProcessed, NoActiveTiers, NothingToSnapshot, RoundNotFound, TooEarly
from rewards.ledger import LedgerHelper
from rewards.permits import PermitRegistry
from rewards.profit_rounds import ProfitRoundEngine
from utils import utcnow


@pytest.fixture
def engine(chain, permits):
    return ProfitRoundEngine(chain, permits, pool_size=2)


@pytest.fixture
def team(chain, make_user, grant_permit):
    """grandparent <- parent <- staker, plus a small holder outside every tier."""
    grandparent = make_user()
    parent = make_user(referrer=grandparent)
    staker = make_user(referrer=parent)
    small = make_user()
    for user in (staker, small):
        grant_permit(user)
    chain.set_balance(staker.wallet_address, "50.0")
    chain.set_balance(small.wallet_address, "5.0")
    return {"grandparent": grandparent, "parent": parent, "staker": staker, "small": small}


def test_round_snapshot_classifies_balances(engine, team):
    preview = engine.start_round()

    assert preview["status"] == "pending"
    assert preview["totalUsers"] == 1
    assert preview["skipped_no_tier"] == 1
    item = preview["items"][0]
    assert item["userId"] == team["staker"].id
    assert item["tier"] == "Silver"
    assert Decimal(item["profit"]) == Decimal("0.15")
    # nothing is credited before distribution
    assert LedgerHelper.available(team["staker"].id) == Decimal("0")


def test_distribution_pays_profit_and_commission_cascade(engine, team):
    round_id = engine.start_round()["id"]
    result = engine.distribute_round(round_id)

    assert result["credited"] == 1
    assert result["commissions"] == 2
    assert result["status"] == "distributed"

    staker = LedgerHelper.balance(team["staker"].id)
    assert staker["available"] == Decimal("0.15")
    assert staker["lifetime_earned"] == Decimal("0.15")

    parent = LedgerHelper.balance(team["parent"].id)
    assert parent["available"] == Decimal("0.015")
    assert parent["lifetime_commission"] == Decimal("0.015")

    grandparent = LedgerHelper.balance(team["grandparent"].id)
    assert grandparent["lifetime_commission"] == Decimal("0.0075")

    levels = sorted(c.level for c in ReferralCommission.query.filter_by(round_id=round_id))
    assert levels == [1, 2]


def test_root_user_produces_no_commission(chain, engine, make_user, grant_permit):
    loner = make_user()
    grant_permit(loner)
    chain.set_balance(loner.wallet_address, "150")

    round_id = engine.start_round()["id"]
    result = engine.distribute_round(round_id)

    assert result["commissions"] == 0
    assert ReferralCommission.query.count() == 0
    assert LedgerHelper.available(loner.id) == Decimal("0.525")


def test_second_distribution_is_refused(engine, team):
    round_id = engine.start_round()["id"]
    engine.distribute_round(round_id)

    with pytest.raises(AlreadyProcessed):
        engine.distribute_round(round_id)
    assert LedgerHelper.available(team["staker"].id) == Decimal("0.15")


def test_cooldown_gates_next_round(engine, team):
    engine.distribute_round(engine.start_round()["id"])

    with pytest.raises(TooEarly) as exc:
        engine.start_round()
    assert 0 < exc.value.seconds_remaining <= 28800

    later = utcnow() + timedelta(seconds=28801)
    assert engine.start_round(now=later)["status"] == "pending"


def test_countdown_reports_remaining_time(engine, team):
    assert engine.countdown()["can_calculate"] is True
    engine.distribute_round(engine.start_round()["id"])

    state = engine.countdown()
    assert state["can_calculate"] is False
    assert state["hours"] == 7 or state["hours"] == 8


def test_partial_failure_leaves_round_pending_and_retry_completes(engine, chain, make_user, grant_permit, monkeypatch):
    first, second = make_user(), make_user()
    for user in (first, second):
        grant_permit(user)
        chain.set_balance(user.wallet_address, "30")
    round_id = engine.start_round()["id"]

    original = LedgerHelper.credit

    def flaky_credit(user_id, amount, **kwargs):
        if user_id == second.id:
            raise RuntimeError("database hiccup")
        return original(user_id, amount, **kwargs)

    monkeypatch.setattr(LedgerHelper, "credit", staticmethod(flaky_credit))
    result = engine.distribute_round(round_id)
    assert result["credited"] == 1
    assert result["failed"] == 1
    assert result["status"] == "pending"
    assert db.session.get(SnapshotRound, round_id).status == "pending"

    monkeypatch.setattr(LedgerHelper, "credit", staticmethod(original))
    retry = engine.distribute_round(round_id)
    assert retry["credited"] == 1
    assert retry["status"] == "distributed"
    assert LedgerHelper.available(first.id) == Decimal("0.09")
    assert LedgerHelper.available(second.id) == Decimal("0.09")


def test_unreadable_balance_is_skipped(engine, chain, team):
    chain.unreadable.add(team["staker"].wallet_address)
    preview = engine.start_round()

    assert preview["status"] == "pending"
    assert preview["totalUsers"] == 0
    assert preview["items"] == []
    assert preview["skipped_unreadable"] == 1
    assert preview["skipped_no_tier"] == 1
    assert SnapshotRound.query.count() == 1


def test_round_with_only_out_of_band_balances_is_recorded(engine, chain, make_user, grant_permit):
    holder = make_user()
    grant_permit(holder)
    chain.set_balance(holder.wallet_address, "5.0")

    preview = engine.start_round()
    assert preview["totalUsers"] == 0
    assert Decimal(preview["totalAmount"]) == Decimal("0")

    result = engine.distribute_round(preview["id"])
    assert result["credited"] == 0
    assert result["status"] == "distributed"
    assert LedgerHelper.available(holder.id) == Decimal("0")


def test_line_item_is_credited_once(engine, team):
    round_id = engine.start_round()["id"]
    item = RoundLineItem.query.filter_by(round_id=round_id).one()
    rates = RewardConfigHelper.commission_rates()
    profit = Decimal(str(item.profit))

    assert engine._credit_item(round_id, item.id, item.user_id, profit, item.tier_name, rates) == 2
    assert engine._credit_item(round_id, item.id, item.user_id, profit, item.tier_name, rates) is None

    assert LedgerHelper.available(team["staker"].id) == Decimal("0.15")
    assert LedgerHelper.available(team["parent"].id) == Decimal("0.015")
    assert ReferralCommission.query.filter_by(round_id=round_id).count() == 2


def test_distribution_skips_items_credited_elsewhere(engine, team, monkeypatch):
    round_id = engine.start_round()["id"]
    item = RoundLineItem.query.filter_by(round_id=round_id).one()
    item_id, user_id, profit, tier_name = item.id, item.user_id, Decimal(str(item.profit)), item.tier_name
    rates = RewardConfigHelper.commission_rates()

    # another worker credits the item between the pending read and the update
    original = engine._credit_item

    def racing_credit(*args, **kwargs):
        original(round_id, item_id, user_id, profit, tier_name, rates)
        return original(*args, **kwargs)

    monkeypatch.setattr(engine, "_credit_item", racing_credit)
    result = engine.distribute_round(round_id)

    assert result["credited"] == 0
    assert result["skipped"] == 1
    assert result["status"] == "distributed"
    assert LedgerHelper.available(team["staker"].id) == Decimal("0.15")


def test_no_permits_means_nothing_to_snapshot(chain, make_user):
    user = make_user()
    chain.set_balance(user.wallet_address, "50")
    engine = ProfitRoundEngine(chain, PermitRegistry())
    with pytest.raises(NothingToSnapshot):
        engine.start_round()


def test_expired_permit_is_not_eligible(chain, team):
    later = PermitRegistry(clock=lambda: time.time() + 7200)
    engine = ProfitRoundEngine(chain, later)
    with pytest.raises(NothingToSnapshot):
        engine.start_round()


def test_no_active_tiers(engine, team):
    for tier in RewardConfigHelper.list_tiers():
        RewardConfigHelper.update_tier(tier.id, is_active=False)
    db.session.commit()
    with pytest.raises(NoActiveTiers):
        engine.start_round()


def test_cancel_pending_round(engine, team):
    round_id = engine.start_round()["id"]
    result = engine.cancel_round(round_id)

    assert result["removed_items"] == 1
    assert db.session.get(SnapshotRound, round_id).status == "cancelled"
    assert RoundLineItem.query.filter_by(round_id=round_id).count() == 0
    with pytest.raises(AlreadyProcessed):
        engine.distribute_round(round_id)


def test_cancel_refused_after_distribution(engine, team):
    round_id = engine.start_round()["id"]
    engine.distribute_round(round_id)
    with pytest.raises(AlreadyProcessed):
        engine.cancel_round(round_id)


def test_unknown_round(engine):
    with pytest.raises(RoundNotFound):
        engine.distribute_round(424242)


def test_overview_lists_pending_and_recent(engine, team):
    pending_id = engine.start_round()["id"]
    overview = engine.overview()
    assert [r["id"] for r in overview["pending"]] == [pending_id]
    assert overview["recent"] == []

    engine.distribute_round(pending_id)
    overview = engine.overview()
    assert overview["pending"] == []
    assert overview["recent"][0]["status"] == "distributed"
