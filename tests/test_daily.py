from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from models import DailyEarningRecord
from rewards.community import CommunityEngine
from rewards.daily import DailyEarningProcessor
from rewards.ledger import LedgerHelper


@pytest.fixture
def community(chain):
    return CommunityEngine(chain)


@pytest.fixture
def leveled_users(make_user, community):
    level_two, level_zero = make_user(), make_user()
    community.set_override(level_two.id, 2)
    community.refresh_status(level_zero.id)
    return level_two, level_zero


def test_preview_writes_nothing(leveled_users):
    level_two, _ = leveled_users
    preview = DailyEarningProcessor(today=date(2026, 3, 1)).preview()

    assert preview["users_to_process"] == 1
    assert preview["total_amount"] == Decimal("2")
    assert preview["users"][0]["user_id"] == level_two.id
    assert DailyEarningRecord.query.count() == 0


def test_distribute_credits_once_per_day(leveled_users):
    level_two, level_zero = leveled_users
    processor = DailyEarningProcessor(today=date(2026, 3, 1))

    first = processor.distribute()
    assert first["processed"] == 1
    assert first["total_amount"] == Decimal("2")

    again = processor.distribute()
    assert again["processed"] == 0
    assert again["skipped"] == 1

    assert LedgerHelper.available(level_two.id) == Decimal("2")
    assert LedgerHelper.available(level_zero.id) == Decimal("0")
    assert CommunityEngine.get_or_create_status(level_two.id).last_daily_earning_date == date(2026, 3, 1)


def test_next_day_is_credited_again(leveled_users):
    level_two, _ = leveled_users
    DailyEarningProcessor(today=date(2026, 3, 1)).distribute()
    DailyEarningProcessor(today=date(2026, 3, 2)).distribute()

    assert DailyEarningRecord.query.filter_by(user_id=level_two.id).count() == 2
    assert LedgerHelper.balance(level_two.id)["lifetime_earned"] == Decimal("4")


def test_next_distribution_without_history(make_user):
    user = make_user()
    morning = datetime(2026, 3, 1, 9, 0, 0)
    schedule = DailyEarningProcessor.next_distribution(user.id, now=morning)
    assert schedule["next_distribution_at"] == "2026-03-01T12:00:00"
    assert schedule["seconds_remaining"] == 3 * 3600
    assert schedule["last_distribution"] is None

    evening = datetime(2026, 3, 1, 18, 0, 0)
    schedule = DailyEarningProcessor.next_distribution(user.id, now=evening)
    assert schedule["next_distribution_at"] == "2026-03-02T12:00:00"


def test_next_distribution_follows_last_record(leveled_users):
    level_two, _ = leveled_users
    DailyEarningProcessor(today=date(2026, 3, 1)).distribute()

    record = DailyEarningProcessor.last_distribution(level_two.id)
    schedule = DailyEarningProcessor.next_distribution(level_two.id, now=record.created_at)
    assert schedule["seconds_remaining"] == int(timedelta(hours=24).total_seconds())
    assert schedule["last_distribution"]["amount"] == "2"


def test_same_day_is_credited_once_per_user(leveled_users):
    level_two, _ = leveled_users
    processor = DailyEarningProcessor(today=date(2026, 3, 1))

    assert processor._credit_user(level_two.id, 2, Decimal("2")) is True
    assert processor._credit_user(level_two.id, 2, Decimal("2")) is False

    assert DailyEarningRecord.query.filter_by(user_id=level_two.id).count() == 1
    assert LedgerHelper.available(level_two.id) == Decimal("2")
    assert CommunityEngine.get_or_create_status(level_two.id).total_community_earned == Decimal("2")


def test_distribution_skips_user_credited_elsewhere(leveled_users, monkeypatch):
    level_two, _ = leveled_users
    processor = DailyEarningProcessor(today=date(2026, 3, 1))
    stale_rows = processor.calculate()

    # another run credits the user after this run computed its batch
    processor._credit_user(level_two.id, 2, Decimal("2"))
    monkeypatch.setattr(processor, "calculate", lambda: stale_rows)

    result = processor.distribute()
    assert result["processed"] == 0
    assert result["skipped"] == 1
    assert LedgerHelper.available(level_two.id) == Decimal("2")
