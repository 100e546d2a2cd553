from decimal import Decimal

import pytest

from rewards.errors import ConfigurationError, InvalidTransition
from rewards.tasks import TaskBonusHelper


def test_approved_task_adds_bonus(make_user):
    user = make_user()
    submission = TaskBonusHelper.submit(user.id, "follow_twitter", proof="https://x.com/someone")
    assert submission.status == "pending"
    assert TaskBonusHelper.get_task_bonus(user.id) == Decimal("0")

    reviewed = TaskBonusHelper.review_submission(submission.id, approve=True, reviewer_id=user.id)
    assert reviewed.status == "approved"
    assert TaskBonusHelper.get_task_bonus(user.id) == Decimal("10")


def test_rejected_task_adds_nothing(make_user):
    user = make_user()
    submission = TaskBonusHelper.submit(user.id, "join_telegram")
    TaskBonusHelper.review_submission(submission.id, approve=False)
    assert TaskBonusHelper.get_task_bonus(user.id) == Decimal("0")


def test_review_happens_once(make_user):
    user = make_user()
    submission = TaskBonusHelper.submit(user.id, "invite_first_friend")
    TaskBonusHelper.review_submission(submission.id, approve=True)
    with pytest.raises(InvalidTransition):
        TaskBonusHelper.review_submission(submission.id, approve=True)
    assert TaskBonusHelper.get_task_bonus(user.id) == Decimal("20")


def test_duplicate_and_unknown_submissions(make_user):
    user = make_user()
    TaskBonusHelper.submit(user.id, "follow_twitter")
    with pytest.raises(InvalidTransition):
        TaskBonusHelper.submit(user.id, "follow_twitter")
    with pytest.raises(ConfigurationError):
        TaskBonusHelper.submit(user.id, "climb_everest")


def test_pending_queue(make_user):
    a, b = make_user(), make_user()
    first = TaskBonusHelper.submit(a.id, "follow_twitter")
    second = TaskBonusHelper.submit(b.id, "join_telegram")
    TaskBonusHelper.review_submission(first.id, approve=False)

    assert [s.id for s in TaskBonusHelper.pending_submissions()] == [second.id]
