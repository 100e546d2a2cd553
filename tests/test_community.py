from decimal import Decimal

import pytest

from extensions import db
from models import PoolClaim
from rewards.community import CommunityEngine
from rewards.config import RewardConfigHelper
from rewards.errors import NotClaimable
from rewards.ledger import LedgerHelper
from rewards.tasks import TaskBonusHelper


@pytest.fixture
def engine(chain):
    return CommunityEngine(chain, pool_size=2)


@pytest.fixture
def small_levels(app):
    RewardConfigHelper.upsert_level(1, unlock_volume_normal="100", unlock_volume_influencer="50")
    RewardConfigHelper.upsert_level(2, unlock_volume_normal="500", unlock_volume_influencer="250")
    db.session.commit()


def _team(make_user, chain, leader, *balances):
    members = []
    for amount in balances:
        member = make_user(referrer=leader)
        chain.set_balance(member.wallet_address, amount)
        members.append(member)
    return members


def test_team_volume_counts_three_levels(engine, chain, make_user):
    leader = make_user()
    l1 = make_user(referrer=leader)
    l2 = make_user(referrer=l1)
    l3 = make_user(referrer=l2)
    l4 = make_user(referrer=l3)
    for member, amount in ((l1, "10"), (l2, "20"), (l3, "30"), (l4, "1000")):
        chain.set_balance(member.wallet_address, amount)

    assert engine.team_volume(leader.id) == Decimal("60")


def test_level_staircase_over_effective_volume(engine, chain, make_user, small_levels):
    leader = make_user()
    (member,) = _team(make_user, chain, leader, "250")

    assert engine.refresh_status(leader.id).real_level == 1

    chain.set_balance(member.wallet_address, "500")
    status = engine.refresh_status(leader.id)
    assert status.real_level == 2
    assert status.current_level == 2


def test_task_bonus_adds_to_effective_volume(engine, chain, make_user, small_levels):
    leader = make_user()
    _team(make_user, chain, leader, "95")
    submission = TaskBonusHelper.submit(leader.id, "retweet_announcement")
    TaskBonusHelper.review_submission(submission.id, approve=True)

    assert engine.refresh_status(leader.id).real_level == 1


def test_level_drops_when_volume_falls(engine, chain, make_user, small_levels):
    leader = make_user()
    (member,) = _team(make_user, chain, leader, "600")
    assert engine.refresh_status(leader.id).real_level == 2

    chain.set_balance(member.wallet_address, "120")
    status = engine.refresh_status(leader.id)
    assert status.real_level == 1
    assert status.current_level == 1


def test_influencer_thresholds(engine, chain, make_user, small_levels):
    leader = make_user()
    _team(make_user, chain, leader, "300")
    assert engine.refresh_status(leader.id).real_level == 1

    assert engine.set_influencer(leader.id).real_level == 2
    assert engine.remove_influencer(leader.id).real_level == 1


def test_admin_override_pins_current_level(engine, chain, make_user):
    leader = make_user()
    (member,) = _team(make_user, chain, leader, "20000")
    assert engine.refresh_status(leader.id).real_level == 3

    engine.set_override(leader.id, 1)
    chain.set_balance(member.wallet_address, "50000")
    status = engine.refresh_status(leader.id)
    assert status.real_level == 4
    assert status.current_level == 1

    restored = engine.restore_real_level(leader.id)
    assert restored.is_admin_override is False
    assert restored.current_level == 4


def test_override_users_cannot_claim(engine, chain, make_user):
    leader = make_user()
    _team(make_user, chain, leader, "20000")
    engine.refresh_status(leader.id)
    engine.set_override(leader.id, 5)

    with pytest.raises(NotClaimable) as exc:
        engine.claim(leader.id, 1)
    assert exc.value.context["reason"] == "admin_override"
    assert engine.status_payload(leader.id)["claimableLevels"] == []


def test_only_surpassed_levels_are_claimable(engine, chain, make_user):
    leader = make_user()
    _team(make_user, chain, leader, "5000")
    status = engine.refresh_status(leader.id)
    assert status.real_level == 2
    assert CommunityEngine.claimable_levels(status) == [1]

    with pytest.raises(NotClaimable) as exc:
        engine.claim(leader.id, 2)
    assert exc.value.context["reason"] == "not_reached"


def test_claim_credits_pool_once(engine, chain, make_user):
    leader = make_user()
    _team(make_user, chain, leader, "5000")
    engine.refresh_status(leader.id)

    claim = engine.claim(leader.id, 1)
    assert claim.status == "completed"
    assert LedgerHelper.balance(leader.id)["lifetime_earned"] == Decimal("50")

    with pytest.raises(NotClaimable) as exc:
        engine.claim(leader.id, 1)
    assert exc.value.context["reason"] == "already_claimed"
    assert PoolClaim.query.filter_by(user_id=leader.id).count() == 1
    assert LedgerHelper.available(leader.id) == Decimal("50")
    assert engine.get_or_create_status(leader.id).total_community_earned == Decimal("50")


def test_status_payload_reports_progress(engine, chain, make_user):
    leader = make_user()
    _team(make_user, chain, leader, "1500")
    payload = engine.status_payload(leader.id)

    assert payload["realLevel"] == 1
    assert payload["nextLevel"] == 2
    assert Decimal(payload["remainingVolume"]) == Decimal("3500")
    assert Decimal(payload["dailyEarning"]) == Decimal("0.5")
    assert len(payload["levels"]) == 6


def test_list_statuses_filters(engine, chain, make_user):
    a, b = make_user(), make_user()
    engine.refresh_status(a.id)
    engine.set_override(b.id, 2)

    assert [s.user_id for s in CommunityEngine.list_statuses(override_only=True)] == [b.id]
    assert [s.user_id for s in CommunityEngine.list_statuses(level=2)] == [b.id]
