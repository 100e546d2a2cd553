from decimal import Decimal
from typing import Optional
import logging

from sqlalchemy import select, update

from extensions import db
from models import TaskProgress, TaskSubmission, SubmissionStatus
from rewards.errors import InvalidTransition, ConfigurationError
from utils import insert_ignore, quantize_amount, to_decimal, utcnow


logger = logging.getLogger(__name__)


TASK_CATALOG = {
    "follow_twitter": Decimal("10"),
    "join_telegram": Decimal("10"),
    "retweet_announcement": Decimal("5"),
    "invite_first_friend": Decimal("20"),
    "daily_checkin_streak_7": Decimal("15"),
}


class TaskBonusHelper:
    """Task submissions and the accumulated bonus they add to unlock volume."""

    @staticmethod
    def get_task_bonus(user_id: int) -> Decimal:
        value = db.session.execute(
            select(TaskProgress.total_task_bonus).where(TaskProgress.user_id == user_id)
        ).scalar()
        return to_decimal(value) if value is not None else Decimal("0")

    @staticmethod
    def submit(user_id: int, task_key: str, proof: Optional[str] = None) -> TaskSubmission:
        if task_key not in TASK_CATALOG:
            raise ConfigurationError(f"Unknown task {task_key!r}", task_key=task_key)
        reward = quantize_amount(TASK_CATALOG[task_key])

        existing = TaskSubmission.query.filter_by(user_id=user_id, task_key=task_key).first()
        if existing is not None:
            raise InvalidTransition("Task already submitted", task_key=task_key, status=existing.status)

        submission = TaskSubmission(user_id=user_id, task_key=task_key, reward=reward, proof=proof)
        db.session.add(submission)
        db.session.commit()
        return submission

    @staticmethod
    def review_submission(submission_id: int, approve: bool, reviewer_id: Optional[int] = None) -> TaskSubmission:
        """Approve (adds the reward once) or reject a pending submission."""
        new_status = SubmissionStatus.APPROVED.value if approve else SubmissionStatus.REJECTED.value
        now = utcnow()

        moved = db.session.execute(
            update(TaskSubmission)
            .where(TaskSubmission.id == submission_id, TaskSubmission.status == SubmissionStatus.PENDING.value)
            .values(status=new_status, reviewer_id=reviewer_id, reviewed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if moved != 1:
            db.session.rollback()
            raise InvalidTransition("Submission is not pending", submission_id=submission_id)

        submission = db.session.get(TaskSubmission, submission_id, populate_existing=True)
        if approve:
            insert_ignore(
                TaskProgress,
                user_id=submission.user_id,
                total_task_bonus=Decimal("0"),
                created_at=now,
                updated_at=now,
            )
            db.session.execute(
                update(TaskProgress)
                .where(TaskProgress.user_id == submission.user_id)
                .values(total_task_bonus=TaskProgress.total_task_bonus + to_decimal(submission.reward), updated_at=now)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()

        logger.info(f"Task submission {submission_id} {new_status} by {reviewer_id}")
        return submission

    @staticmethod
    def pending_submissions(limit: int = 100):
        return (
            TaskSubmission.query.filter_by(status=SubmissionStatus.PENDING.value)
            .order_by(TaskSubmission.created_at.asc(), TaskSubmission.id.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def user_submissions(user_id: int):
        return TaskSubmission.query.filter_by(user_id=user_id).order_by(TaskSubmission.id).all()
