# rewards/community.py
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from flask import current_app
from sqlalchemy import select, update

from extensions import db
from models import CommunityStatus, PoolClaim, User, ClaimStatus
from rewards.config import RewardConfigHelper, MAX_COMMUNITY_LEVEL
from rewards.errors import ConfigurationError, NotClaimable
from rewards.ledger import LedgerHelper, EARNED
from rewards.oracle import read_balances, DEFAULT_POOL_SIZE
from rewards.referral_tree import ReferralTreeHelper, TEAM_VOLUME_DEPTH
from rewards.tasks import TaskBonusHelper
from rewards.tiers import classify_level, next_level_threshold
from utils import insert_ignore, quantize_amount, to_decimal, utcnow, decimal_str


logger = logging.getLogger(__name__)


class CommunityEngine:
    """
    Community levels over L1-L3 team volume plus task bonus.

    real_level always follows effective volume. current_level follows real_level
    except while an admin override pins it; pinned users also forgo pool claims.
    """

    def __init__(self, oracle, pool_size: int = DEFAULT_POOL_SIZE):
        self.oracle = oracle
        self.pool_size = pool_size

    @classmethod
    def from_app(cls, chain) -> "CommunityEngine":
        return cls(chain, current_app.config.get("ORACLE_POOL_SIZE", DEFAULT_POOL_SIZE))

    # ------------------------------------------------------------------
    # Status rows
    # ------------------------------------------------------------------
    @staticmethod
    def get_or_create_status(user_id: int) -> CommunityStatus:
        now = utcnow()
        insert_ignore(
            CommunityStatus,
            user_id=user_id,
            real_level=0,
            current_level=0,
            is_admin_override=False,
            is_influencer=False,
            team_volume=Decimal("0"),
            total_community_earned=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        return db.session.execute(
            select(CommunityStatus)
            .where(CommunityStatus.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    def team_volume(self, user_id: int) -> Decimal:
        """Live sum of L1-L3 descendants' balances (members with a wallet only)."""
        member_ids = [uid for uid, _ in ReferralTreeHelper.get_descendants(user_id, TEAM_VOLUME_DEPTH)]
        if not member_ids:
            return Decimal("0")

        wallets = db.session.execute(
            select(User.wallet_address).where(User.id.in_(member_ids), User.wallet_address.isnot(None))
        ).scalars().all()
        balances = read_balances(self.oracle, wallets, self.pool_size)
        return sum(balances.values(), Decimal("0"))

    # ------------------------------------------------------------------
    # Level computation
    # ------------------------------------------------------------------
    def refresh_status(self, user_id: int) -> CommunityStatus:
        """Recompute volume and real_level; sync current_level unless pinned. One transaction."""
        team_volume = quantize_amount(self.team_volume(user_id))
        task_bonus = TaskBonusHelper.get_task_bonus(user_id)
        effective = team_volume + task_bonus

        status = self.get_or_create_status(user_id)
        thresholds = RewardConfigHelper.level_thresholds(influencer=status.is_influencer)
        real_level = classify_level(effective, thresholds)

        previous = status.real_level
        status.real_level = real_level
        if not status.is_admin_override:
            status.current_level = real_level
        status.team_volume = team_volume
        status.volume_refreshed_at = utcnow()
        db.session.commit()

        if previous != real_level:
            logger.info(f"User {user_id} real level {previous} -> {real_level} (effective volume {effective})")
        return status

    def refresh_volume(self, user_id: int) -> CommunityStatus:
        return self.refresh_status(user_id)

    @staticmethod
    def claimed_levels(user_id: int) -> List[int]:
        return db.session.execute(
            select(PoolClaim.level).where(
                PoolClaim.user_id == user_id, PoolClaim.status == ClaimStatus.COMPLETED.value
            )
        ).scalars().all()

    @staticmethod
    def claimable_levels(status: CommunityStatus) -> List[int]:
        """Levels strictly below real_level without a completed claim. None while pinned."""
        if status.is_admin_override:
            return []
        configured = RewardConfigHelper.level_configs()
        claimed = set(CommunityEngine.claimed_levels(status.user_id))
        return [
            level for level in sorted(configured)
            if level < status.real_level and level not in claimed
        ]

    def status_payload(self, user_id: int) -> Dict:
        status = self.refresh_status(user_id)
        configs = RewardConfigHelper.level_configs()
        thresholds = RewardConfigHelper.level_thresholds(influencer=status.is_influencer)
        task_bonus = TaskBonusHelper.get_task_bonus(user_id)
        effective = to_decimal(status.team_volume) + task_bonus

        next_level, next_floor = next_level_threshold(status.real_level, thresholds)
        current = configs.get(status.current_level)
        daily_amount = (
            quantize_amount(to_decimal(current.reward_pool) * to_decimal(current.daily_rate))
            if current is not None else Decimal("0")
        )

        claimable = self.claimable_levels(status)
        payload = status.to_dict()
        payload.update({
            "taskBonus": decimal_str(task_bonus),
            "effectiveVolume": decimal_str(effective),
            "nextLevel": next_level,
            "nextLevelThreshold": decimal_str(next_floor) if next_floor is not None else None,
            "remainingVolume": decimal_str(max(Decimal("0"), next_floor - effective)) if next_floor is not None else None,
            "dailyEarning": decimal_str(daily_amount),
            "claimableLevels": [
                {"level": level, "rewardPool": decimal_str(configs[level].reward_pool)} for level in claimable
            ],
            "claims": [c.to_dict() for c in PoolClaim.query.filter_by(user_id=user_id).order_by(PoolClaim.level)],
            "levels": [row.to_dict() for row in configs.values()],
        })
        return payload

    # ------------------------------------------------------------------
    # Pool claims
    # ------------------------------------------------------------------
    def claim(self, user_id: int, level: int) -> PoolClaim:
        """Claim level's one-time pool reward; claim row and ledger credit commit together."""
        level = int(level)
        status = self.get_or_create_status(user_id)

        if status.is_admin_override:
            raise NotClaimable("Claims are disabled under admin override", level=level, reason="admin_override")
        if level not in self.claimable_levels(status):
            reason = "already_claimed" if level in self.claimed_levels(user_id) else "not_reached"
            raise NotClaimable(f"Level {level} is not claimable", level=level, reason=reason)

        config = RewardConfigHelper.level_configs().get(level)
        amount = quantize_amount(config.reward_pool)
        now = utcnow()

        try:
            inserted = insert_ignore(
                PoolClaim,
                user_id=user_id,
                level=level,
                amount=amount,
                status=ClaimStatus.COMPLETED.value,
                claimed_at=now,
                created_at=now,
                updated_at=now,
            )
            if not inserted:
                db.session.rollback()
                raise NotClaimable(f"Level {level} already claimed", level=level, reason="already_claimed")

            LedgerHelper.credit(user_id, amount, kind=EARNED)
            self.add_community_earned(user_id, amount)
            db.session.commit()
        except NotClaimable:
            raise
        except Exception:
            db.session.rollback()
            logger.exception(f"Pool claim failed for user {user_id} level {level}")
            raise

        logger.info(f"User {user_id} claimed level {level} pool reward {amount}")
        return PoolClaim.query.filter_by(user_id=user_id, level=level).one()

    @staticmethod
    def add_community_earned(user_id: int, amount: Decimal, earning_date=None) -> None:
        values = {
            "total_community_earned": CommunityStatus.total_community_earned + amount,
            "updated_at": utcnow(),
        }
        if earning_date is not None:
            values["last_daily_earning_date"] = earning_date
        db.session.execute(
            update(CommunityStatus)
            .where(CommunityStatus.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------
    def set_override(self, user_id: int, level: int) -> CommunityStatus:
        level = int(level)
        if level < 0 or level > MAX_COMMUNITY_LEVEL:
            raise ConfigurationError(f"Level must be 0..{MAX_COMMUNITY_LEVEL}", level=level)
        status = self.get_or_create_status(user_id)
        status.is_admin_override = True
        status.admin_set_level = level
        status.current_level = level
        db.session.commit()
        logger.info(f"Admin override: user {user_id} pinned to level {level}")
        return status

    def restore_real_level(self, user_id: int) -> CommunityStatus:
        """Drop the override and snap current_level back to a freshly computed real_level."""
        status = self.get_or_create_status(user_id)
        status.is_admin_override = False
        status.admin_set_level = None
        db.session.commit()
        return self.refresh_status(user_id)

    def set_influencer(self, user_id: int, influencer: bool = True) -> CommunityStatus:
        status = self.get_or_create_status(user_id)
        status.is_influencer = bool(influencer)
        db.session.commit()
        return self.refresh_status(user_id)

    def remove_influencer(self, user_id: int) -> CommunityStatus:
        return self.set_influencer(user_id, False)

    @staticmethod
    def list_statuses(level: Optional[int] = None, override_only: bool = False) -> List[CommunityStatus]:
        query = CommunityStatus.query
        if level is not None:
            query = query.filter(CommunityStatus.current_level == level)
        if override_only:
            query = query.filter(CommunityStatus.is_admin_override.is_(True))
        return query.order_by(CommunityStatus.current_level.desc(), CommunityStatus.user_id).all()
