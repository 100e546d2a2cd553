# models.py: Flask-SQLAlchemy models for the soft-staking reward engine
import enum
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import validates

from extensions import db
from utils import utcnow, decimal_str


AMOUNT = db.Numeric(18, 6)
RATE = db.Numeric(10, 6)

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class RoundStatus(enum.Enum):
    PENDING = "pending"
    DISTRIBUTED = "distributed"
    CANCELLED = "cancelled"


class WithdrawalStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PermitStatus(enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    EXPIRED = "expired"


class ClaimStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class SubmissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# ===========================================================
# USER
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """An account. One wallet per user, one user per wallet; the referrer is fixed at creation."""
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    wallet_address = db.Column(db.String(42), unique=True, nullable=True)
    email = db.Column(db.String(120), unique=True, nullable=True)
    role = db.Column(db.String(20), nullable=False, default="user", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    referrer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    referrer = db.relationship("User", remote_side=[id], backref=db.backref("direct_referrals", lazy="dynamic"))

    @validates("referrer_id")
    def _referrer_is_immutable(self, key, value):
        if self.referrer_id is not None and value != self.referrer_id:
            raise ValueError("referrer cannot be changed once set")
        if value is not None and self.id is not None and value == self.id:
            raise ValueError("user cannot refer themselves")
        return value

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "walletAddress": self.wallet_address,
            "email": self.email,
            "role": self.role,
            "referrerId": self.referrer_id,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.wallet_address}>"


class PermitSignature(db.Model, BaseMixin):
    """An off-chain token permit the owner signed for the platform spender."""
    __tablename__ = "permit_signatures"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    owner_address = db.Column(db.String(42), nullable=False, index=True)
    spender_address = db.Column(db.String(42), nullable=False)
    token_address = db.Column(db.String(42), nullable=True)
    value = db.Column(db.String(80), nullable=False)
    nonce = db.Column(db.BigInteger, nullable=False, default=0)
    deadline = db.Column(db.BigInteger, nullable=False)
    v = db.Column(db.Integer, nullable=True)
    r = db.Column(db.String(66), nullable=True)
    s = db.Column(db.String(66), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=PermitStatus.PENDING.value, index=True)
    executed_at = db.Column(db.DateTime, nullable=True)
    tx_hash = db.Column(db.String(66), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "ownerAddress": self.owner_address,
            "spenderAddress": self.spender_address,
            "value": self.value,
            "deadline": self.deadline,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# ===========================================================
# CONFIGURATION
# ===========================================================

class ProfitTier(db.Model, BaseMixin):
    """Balance band [min_amount, max_amount) earning `rate` per round."""
    __tablename__ = "profit_tiers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), nullable=False)
    min_amount = db.Column(AMOUNT, nullable=False)
    max_amount = db.Column(AMOUNT, nullable=False)
    rate = db.Column(RATE, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("min_amount < max_amount", name="ck_tier_range"),
        CheckConstraint("rate >= 0", name="ck_tier_rate"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "min": decimal_str(self.min_amount),
            "max": decimal_str(self.max_amount),
            "rate": decimal_str(self.rate),
            "isActive": self.is_active,
        }


class CommunityLevel(db.Model, BaseMixin):
    __tablename__ = "community_levels"

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, unique=True, nullable=False)
    reward_pool = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    daily_rate = db.Column(RATE, nullable=False, default=Decimal("0"))
    unlock_volume_normal = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    unlock_volume_influencer = db.Column(AMOUNT, nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint("level >= 1 AND level <= 6", name="ck_community_level_range"),
    )

    def to_dict(self):
        return {
            "level": self.level,
            "rewardPool": decimal_str(self.reward_pool),
            "dailyRate": decimal_str(self.daily_rate),
            "unlockVolumeNormal": decimal_str(self.unlock_volume_normal),
            "unlockVolumeInfluencer": decimal_str(self.unlock_volume_influencer),
        }


class ReferralCommissionRate(db.Model, BaseMixin):
    """Commission rate paid to the ancestor at generational depth `level`."""
    __tablename__ = "referral_commission_rates"

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, unique=True, nullable=False)
    rate = db.Column(RATE, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("level >= 1 AND level <= 6", name="ck_commission_level_range"),
    )

    def to_dict(self):
        return {"level": self.level, "rate": decimal_str(self.rate), "isActive": self.is_active}


class RewardSettings(db.Model, BaseMixin):
    """Singleton row (id=1) of engine settings."""
    __tablename__ = "reward_settings"

    id = db.Column(db.Integer, primary_key=True)
    interval_seconds = db.Column(db.Integer, nullable=False, default=28800)
    min_withdrawal_usdc = db.Column(AMOUNT, nullable=False, default=Decimal("0.1"))
    min_withdrawal_pol = db.Column(AMOUNT, nullable=False, default=Decimal("0.1"))
    last_distribution_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "intervalSeconds": self.interval_seconds,
            "minWithdrawalUsdc": decimal_str(self.min_withdrawal_usdc),
            "minWithdrawalPol": decimal_str(self.min_withdrawal_pol),
            "lastDistributionAt": self.last_distribution_at.isoformat() if self.last_distribution_at else None,
        }


# ===========================================================
# PROFIT ROUNDS
# ===========================================================

class SnapshotRound(db.Model, BaseMixin):
    __tablename__ = "snapshot_rounds"

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(20), nullable=False, default=RoundStatus.PENDING.value, index=True)
    total_users = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    distributed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    items = db.relationship("RoundLineItem", backref="round", lazy="dynamic")

    def to_dict(self, include_items=False):
        data = {
            "id": self.id,
            "status": self.status,
            "totalUsers": self.total_users,
            "totalAmount": decimal_str(self.total_amount),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "distributedAt": self.distributed_at.isoformat() if self.distributed_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items.order_by(RoundLineItem.id)]
        return data


class RoundLineItem(db.Model, BaseMixin):
    """One user's snapshot in a round. Only `credited` may change after insert."""
    __tablename__ = "round_line_items"

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey("snapshot_rounds.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    wallet_address = db.Column(db.String(42), nullable=False)
    balance = db.Column(AMOUNT, nullable=False)
    tier_id = db.Column(db.Integer, db.ForeignKey("profit_tiers.id", ondelete="SET NULL"), nullable=True)
    tier_name = db.Column(db.String(40), nullable=False)
    rate = db.Column(RATE, nullable=False)
    profit = db.Column(AMOUNT, nullable=False)
    credited = db.Column(db.Boolean, nullable=False, default=False)
    credited_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("round_id", "user_id", name="uq_round_line_item_user"),
        Index("idx_round_line_item_pending", "round_id", "credited"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "roundId": self.round_id,
            "userId": self.user_id,
            "walletAddress": self.wallet_address,
            "balance": decimal_str(self.balance),
            "tier": self.tier_name,
            "rate": decimal_str(self.rate),
            "profit": decimal_str(self.profit),
            "credited": self.credited,
        }


class ReferralCommission(db.Model, BaseMixin):
    __tablename__ = "referral_commissions"

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey("snapshot_rounds.id"), nullable=False, index=True)
    beneficiary_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    source_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    level = db.Column(db.Integer, nullable=False)
    source_profit = db.Column(AMOUNT, nullable=False)
    rate = db.Column(RATE, nullable=False)
    amount = db.Column(AMOUNT, nullable=False)
    credited = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("round_id", "beneficiary_id", "source_user_id", "level", name="uq_referral_commission"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "roundId": self.round_id,
            "sourceUserId": self.source_user_id,
            "level": self.level,
            "sourceProfit": decimal_str(self.source_profit),
            "rate": decimal_str(self.rate),
            "amount": decimal_str(self.amount),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# ===========================================================
# LEDGER
# ===========================================================

class LedgerBalance(db.Model, BaseMixin):
    """Per (user, asset) balances. Only `available` ever decreases."""
    __tablename__ = "ledger_balances"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    asset = db.Column(db.String(10), nullable=False, default="USDC")
    lifetime_earned = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    lifetime_commission = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    available = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    lifetime_withdrawn = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    current_tier = db.Column(db.String(40), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "asset", name="uq_ledger_user_asset"),
        CheckConstraint("available >= 0", name="ck_ledger_available_non_negative"),
    )

    def to_dict(self):
        return {
            "asset": self.asset,
            "lifetimeEarned": decimal_str(self.lifetime_earned),
            "lifetimeCommission": decimal_str(self.lifetime_commission),
            "available": decimal_str(self.available),
            "lifetimeWithdrawn": decimal_str(self.lifetime_withdrawn),
            "currentTier": self.current_tier,
        }


class WithdrawalRequest(db.Model, BaseMixin):
    __tablename__ = "withdrawal_requests"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    asset = db.Column(db.String(10), nullable=False)
    amount = db.Column(AMOUNT, nullable=False)
    destination = db.Column(db.String(42), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)
    tx_hash = db.Column(db.String(66), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "asset": self.asset,
            "amount": decimal_str(self.amount),
            "destination": self.destination,
            "status": self.status,
            "txHash": self.tx_hash,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }


# ===========================================================
# COMMUNITY
# ===========================================================

class CommunityStatus(db.Model, BaseMixin):
    __tablename__ = "community_status"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    real_level = db.Column(db.Integer, nullable=False, default=0)
    current_level = db.Column(db.Integer, nullable=False, default=0)
    is_admin_override = db.Column(db.Boolean, nullable=False, default=False)
    admin_set_level = db.Column(db.Integer, nullable=True)
    is_influencer = db.Column(db.Boolean, nullable=False, default=False)
    team_volume = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    volume_refreshed_at = db.Column(db.DateTime, nullable=True)
    total_community_earned = db.Column(AMOUNT, nullable=False, default=Decimal("0"))
    last_daily_earning_date = db.Column(db.Date, nullable=True)

    user = db.relationship("User", backref=db.backref("community_status", uselist=False))

    def to_dict(self):
        return {
            "userId": self.user_id,
            "realLevel": self.real_level,
            "currentLevel": self.current_level,
            "isAdminOverride": self.is_admin_override,
            "adminSetLevel": self.admin_set_level,
            "isInfluencer": self.is_influencer,
            "teamVolume": decimal_str(self.team_volume),
            "volumeRefreshedAt": self.volume_refreshed_at.isoformat() if self.volume_refreshed_at else None,
            "totalCommunityEarned": decimal_str(self.total_community_earned),
        }


class PoolClaim(db.Model, BaseMixin):
    __tablename__ = "pool_claims"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    level = db.Column(db.Integer, nullable=False)
    amount = db.Column(AMOUNT, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ClaimStatus.COMPLETED.value)
    claimed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "level", name="uq_pool_claim_user_level"),
    )

    def to_dict(self):
        return {
            "level": self.level,
            "amount": decimal_str(self.amount),
            "status": self.status,
            "claimedAt": self.claimed_at.isoformat() if self.claimed_at else None,
        }


class DailyEarningRecord(db.Model, BaseMixin):
    __tablename__ = "daily_earning_records"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    earning_date = db.Column(db.Date, nullable=False)
    level = db.Column(db.Integer, nullable=False)
    amount = db.Column(AMOUNT, nullable=False)
    credited = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "earning_date", name="uq_daily_earning_user_date"),
        Index("idx_daily_earning_date", "earning_date"),
    )

    def to_dict(self):
        return {
            "date": self.earning_date.isoformat(),
            "level": self.level,
            "amount": decimal_str(self.amount),
            "credited": self.credited,
        }


# ===========================================================
# TASKS
# ===========================================================

class TaskProgress(db.Model, BaseMixin):
    """Accumulated approved task rewards; feeds community unlock volume."""
    __tablename__ = "task_progress"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    total_task_bonus = db.Column(AMOUNT, nullable=False, default=Decimal("0"))


class TaskSubmission(db.Model, BaseMixin):
    __tablename__ = "task_submissions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    task_key = db.Column(db.String(64), nullable=False)
    reward = db.Column(AMOUNT, nullable=False)
    proof = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=SubmissionStatus.PENDING.value, index=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "task_key", name="uq_task_submission_user_task"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "taskKey": self.task_key,
            "reward": decimal_str(self.reward),
            "proof": self.proof,
            "status": self.status,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
