from datetime import datetime, date, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from sqlalchemy import select

from extensions import db
from logger import rewards_logger
from models import CommunityStatus, DailyEarningRecord
from rewards.community import CommunityEngine
from rewards.config import RewardConfigHelper
from rewards.ledger import LedgerHelper, EARNED
from utils import insert_ignore, quantize_amount, to_decimal, utcnow, decimal_str


logger = logging.getLogger(__name__)

DAILY_DISTRIBUTION_HOUR_UTC = 12
EARNING_INTERVAL = timedelta(hours=24)


class DailyEarningProcessor:
    """
    Daily community stipend: reward_pool * daily_rate of the user's current level,
    at most once per (user, calendar date).
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today or utcnow().date()

    # ==========================================================
    #                  CALCULATION
    # ==========================================================
    def calculate(self) -> List[Dict]:
        configs = RewardConfigHelper.level_configs()
        statuses = (
            CommunityStatus.query.filter(CommunityStatus.current_level > 0)
            .order_by(CommunityStatus.user_id)
            .all()
        )
        credited_today = set(db.session.execute(
            select(DailyEarningRecord.user_id).where(DailyEarningRecord.earning_date == self.today)
        ).scalars().all())

        rows = []
        for status in statuses:
            config = configs.get(status.current_level)
            if config is None:
                continue
            reward_pool = to_decimal(config.reward_pool)
            daily_rate = to_decimal(config.daily_rate)
            if daily_rate <= 0:
                continue
            amount = quantize_amount(reward_pool * daily_rate)
            if amount <= 0:
                continue
            rows.append({
                "user_id": status.user_id,
                "level": status.current_level,
                "reward_pool": reward_pool,
                "daily_rate": daily_rate,
                "amount": amount,
                "already_credited": status.user_id in credited_today,
            })
        return rows

    def preview(self) -> Dict:
        """Would-be amounts; nothing is written."""
        rows = self.calculate()
        to_process = [r for r in rows if not r["already_credited"]]
        return {
            "date": self.today.isoformat(),
            "users": rows,
            "users_to_process": len(to_process),
            "already_credited": len(rows) - len(to_process),
            "total_amount": sum((r["amount"] for r in to_process), Decimal("0")),
        }

    # ==========================================================
    #                  DISTRIBUTION
    # ==========================================================
    def _credit_user(self, user_id: int, level: int, amount: Decimal) -> bool:
        now = utcnow()
        inserted = insert_ignore(
            DailyEarningRecord,
            user_id=user_id,
            earning_date=self.today,
            level=level,
            amount=amount,
            credited=True,
            created_at=now,
            updated_at=now,
        )
        if not inserted:
            db.session.rollback()
            return False

        LedgerHelper.credit(user_id, amount, kind=EARNED)
        CommunityEngine.add_community_earned(user_id, amount, earning_date=self.today)
        db.session.commit()
        return True

    def distribute(self) -> Dict:
        processed = skipped = failed = 0
        total = Decimal("0")
        errors = []

        for row in self.calculate():
            if row["already_credited"]:
                skipped += 1
                continue
            try:
                if self._credit_user(row["user_id"], row["level"], row["amount"]):
                    processed += 1
                    total += row["amount"]
                else:
                    skipped += 1
            except Exception as e:
                db.session.rollback()
                failed += 1
                errors.append({"user_id": row["user_id"], "error": str(e)})
                logger.exception(f"Daily earning for user {row['user_id']} failed: {e}")

        result = {
            "date": self.today.isoformat(),
            "processed": processed,
            "skipped": skipped,
            "failed": failed,
            "total_amount": total,
            "errors": errors,
        }
        rewards_logger.info(f"Daily earnings {self.today}: processed={processed} skipped={skipped} failed={failed} total={total}")
        return result

    # ==========================================================
    #                  USER SCHEDULE
    # ==========================================================
    @staticmethod
    def last_distribution(user_id: int) -> Optional[DailyEarningRecord]:
        return (
            DailyEarningRecord.query.filter_by(user_id=user_id)
            .order_by(DailyEarningRecord.earning_date.desc(), DailyEarningRecord.id.desc())
            .first()
        )

    @staticmethod
    def next_distribution(user_id: int, now: Optional[datetime] = None) -> Dict:
        """Last earning + 24h, otherwise today's 12:00 UTC slot (tomorrow's once it has passed)."""
        now = now or utcnow()
        last = DailyEarningProcessor.last_distribution(user_id)

        if last is not None:
            next_at = last.created_at + EARNING_INTERVAL
        else:
            next_at = datetime.combine(now.date(), time(hour=DAILY_DISTRIBUTION_HOUR_UTC))
            if next_at <= now:
                next_at += timedelta(days=1)

        remaining = max(0, int((next_at - now).total_seconds()))
        return {
            "next_distribution_at": next_at.isoformat(),
            "seconds_remaining": remaining,
            "last_distribution": DailyEarningProcessor.describe(last),
        }

    @staticmethod
    def describe(record: Optional[DailyEarningRecord]) -> Optional[Dict]:
        if record is None:
            return None
        return {
            "date": record.earning_date.isoformat(),
            "amount": decimal_str(record.amount),
            "level": record.level,
            "created_at": record.created_at.isoformat(),
        }
