"""
Round-based profit engine.

start_round snapshots eligible balances into a pending round without touching
any ledger. distribute_round credits each line item exactly once (the
credited flag flips through a conditional UPDATE) and pays the referral
commission cascade in the same transaction as the item it derives from.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
import logging
import math

from flask import current_app
from sqlalchemy import update

from extensions import db
from logger import rewards_logger
from models import (
    User, SnapshotRound, RoundLineItem, ReferralCommission, RewardSettings, RoundStatus,
)
from rewards.config import RewardConfigHelper, SETTINGS_ID
from rewards.errors import (
    AlreadyProcessed, NoActiveTiers, NothingToSnapshot, RoundNotFound, TooEarly,
)
from rewards.ledger import LedgerHelper, EARNED, COMMISSION
from rewards.oracle import read_balances, DEFAULT_POOL_SIZE
from rewards.referral_tree import ReferralTreeHelper, COMMISSION_MAX_DEPTH
from rewards.tiers import classify_tier
from utils import insert_ignore, quantize_amount, utcnow


logger = logging.getLogger(__name__)

RECENT_ROUNDS_LIMIT = 10


class ProfitRoundEngine:

    def __init__(self, oracle, permits, pool_size: int = DEFAULT_POOL_SIZE):
        self.oracle = oracle
        self.permits = permits
        self.pool_size = pool_size

    # ==========================================================
    #                  COOLDOWN
    # ==========================================================
    @staticmethod
    def cooldown(settings: RewardSettings, now=None) -> Dict:
        now = now or utcnow()
        interval = int(settings.interval_seconds or 0)
        last = settings.last_distribution_at

        if last is None:
            return {
                "can_calculate": True,
                "seconds_remaining": 0,
                "next_allowed_at": None,
                "last_distribution_at": None,
                "interval_seconds": interval,
            }

        next_allowed = last + timedelta(seconds=interval)
        remaining = max(0, math.ceil((next_allowed - now).total_seconds()))
        return {
            "can_calculate": remaining == 0,
            "seconds_remaining": remaining,
            "next_allowed_at": next_allowed,
            "last_distribution_at": last,
            "interval_seconds": interval,
        }

    def countdown(self, now=None) -> Dict:
        state = self.cooldown(RewardConfigHelper.get_settings(), now)
        remaining = state["seconds_remaining"]
        state.update({
            "hours": remaining // 3600,
            "minutes": (remaining % 3600) // 60,
            "seconds": remaining % 60,
        })
        return state

    # ==========================================================
    #                  SNAPSHOT
    # ==========================================================
    def eligible_users(self) -> List[User]:
        """Users with a bound wallet and a live permit. Others are silently left out."""
        candidates = (
            User.query.filter(User.wallet_address.isnot(None), User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )
        return [u for u in candidates if self.permits.has_valid_permit(u.wallet_address)]

    def start_round(self, created_by: Optional[int] = None, now=None) -> Dict:
        """Snapshot, classify and persist a pending round. No ledger is touched."""
        now = now or utcnow()
        settings = RewardConfigHelper.get_settings()

        state = self.cooldown(settings, now)
        if not state["can_calculate"]:
            raise TooEarly(state["seconds_remaining"], state["next_allowed_at"])

        bands = RewardConfigHelper.active_tiers()
        if not bands:
            raise NoActiveTiers("No active profit tiers configured")

        users = self.eligible_users()
        if not users:
            raise NothingToSnapshot("No users with a wallet and a valid permit")

        balances = read_balances(self.oracle, [u.wallet_address for u in users], self.pool_size)

        round_ = SnapshotRound(status=RoundStatus.PENDING.value, created_by=created_by, created_at=now)
        db.session.add(round_)
        db.session.flush()

        total = Decimal("0")
        unreadable = unmatched = 0
        items = []
        for user in users:
            balance = balances.get(user.wallet_address)
            if balance is None:
                unreadable += 1
                continue

            band = classify_tier(balance, bands)
            if band is None:
                unmatched += 1
                continue

            profit = quantize_amount(balance * band.rate)
            items.append(RoundLineItem(
                round_id=round_.id,
                user_id=user.id,
                wallet_address=user.wallet_address,
                balance=quantize_amount(balance),
                tier_id=band.tier_id,
                tier_name=band.name,
                rate=band.rate,
                profit=profit,
                credited=False,
            ))
            total += profit

        # a round with no matching balance is still recorded, with zero users
        db.session.add_all(items)
        round_.total_users = len(items)
        round_.total_amount = total
        db.session.commit()

        rewards_logger.info(
            f"Round {round_.id} created: users={len(items)} total={total} "
            f"unreadable={unreadable} unmatched={unmatched}"
        )
        preview = round_.to_dict(include_items=True)
        preview.update({"skipped_unreadable": unreadable, "skipped_no_tier": unmatched})
        return preview

    # ==========================================================
    #                  DISTRIBUTION
    # ==========================================================
    def _get_round(self, round_id: int) -> SnapshotRound:
        round_ = db.session.get(SnapshotRound, round_id)
        if round_ is None:
            raise RoundNotFound(f"Round {round_id} not found", round_id=round_id)
        return round_

    def _pay_commissions(self, round_id: int, source_user_id: int, profit: Decimal, rates: Dict[int, Decimal]) -> int:
        """Cascade one credited profit up the ancestor chain. Each row is inserted once."""
        if profit <= 0 or not rates:
            return 0

        paid = 0
        for ancestor_id, depth in ReferralTreeHelper.get_ancestor_chain(source_user_id, COMMISSION_MAX_DEPTH):
            rate = rates.get(depth)
            if not rate:
                continue
            amount = quantize_amount(profit * rate)
            if amount <= 0:
                continue

            inserted = insert_ignore(
                ReferralCommission,
                round_id=round_id,
                beneficiary_id=ancestor_id,
                source_user_id=source_user_id,
                level=depth,
                source_profit=profit,
                rate=rate,
                amount=amount,
                credited=True,
                created_at=utcnow(),
                updated_at=utcnow(),
            )
            if inserted:
                LedgerHelper.credit(ancestor_id, amount, kind=COMMISSION)
                paid += 1
        return paid

    def _credit_item(self, round_id: int, item_id: int, user_id: int, profit: Decimal,
                     tier_name: str, rates: Dict[int, Decimal]) -> Optional[int]:
        """
        Credit one line item and its commissions in a single transaction.
        Returns the number of commissions paid, or None when another worker already
        credited the item.
        """
        claimed = db.session.execute(
            update(RoundLineItem)
            .where(RoundLineItem.id == item_id, RoundLineItem.credited.is_(False))
            .values(credited=True, credited_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.session.rollback()
            return None

        LedgerHelper.credit(user_id, profit, kind=EARNED, tier_name=tier_name)
        paid = self._pay_commissions(round_id, user_id, profit, rates)
        db.session.commit()
        return paid

    def distribute_round(self, round_id: int) -> Dict:
        round_ = self._get_round(round_id)
        if round_.status != RoundStatus.PENDING.value:
            raise AlreadyProcessed(
                f"Round {round_id} is {round_.status}", round_id=round_id, status=round_.status
            )

        rates = RewardConfigHelper.commission_rates()
        pending = [
            (item.id, item.user_id, item.profit, item.tier_name)
            for item in RoundLineItem.query.filter_by(round_id=round_id, credited=False).order_by(RoundLineItem.id)
        ]

        credited = skipped = failed = commissions = 0
        amount = Decimal("0")
        for item_id, user_id, profit, tier_name in pending:
            try:
                paid = self._credit_item(round_id, item_id, user_id, quantize_amount(profit), tier_name, rates)
            except Exception as e:
                db.session.rollback()
                failed += 1
                logger.exception(f"Round {round_id}: crediting item {item_id} (user {user_id}) failed: {e}")
                continue

            if paid is None:
                skipped += 1
                continue
            credited += 1
            commissions += paid
            amount += quantize_amount(profit)

        remaining = RoundLineItem.query.filter_by(round_id=round_id, credited=False).count()
        finalized = False
        if remaining == 0:
            finalized = self._finalize(round_id)

        result = {
            "round_id": round_id,
            "credited": credited,
            "skipped": skipped,
            "failed": failed,
            "commissions": commissions,
            "amount": amount,
            "remaining": remaining,
            "status": RoundStatus.DISTRIBUTED.value if finalized else RoundStatus.PENDING.value,
        }
        rewards_logger.info(f"Round {round_id} distribution: {result}")
        return result

    def _finalize(self, round_id: int) -> bool:
        now = utcnow()
        moved = db.session.execute(
            update(SnapshotRound)
            .where(SnapshotRound.id == round_id, SnapshotRound.status == RoundStatus.PENDING.value)
            .values(status=RoundStatus.DISTRIBUTED.value, distributed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if moved == 1:
            # re-arms the cooldown gate
            db.session.execute(
                update(RewardSettings)
                .where(RewardSettings.id == SETTINGS_ID)
                .values(last_distribution_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
        return moved == 1

    def cancel_round(self, round_id: int) -> Dict:
        """Discard a pending round. Refused once any item has been credited."""
        round_ = self._get_round(round_id)
        if round_.status != RoundStatus.PENDING.value:
            raise AlreadyProcessed(
                f"Round {round_id} is {round_.status}", round_id=round_id, status=round_.status
            )

        credited = RoundLineItem.query.filter_by(round_id=round_id, credited=True).count()
        if credited:
            raise AlreadyProcessed(
                f"Round {round_id} is partially distributed; retry distribution instead",
                round_id=round_id, credited_items=credited,
            )

        removed_items = RoundLineItem.query.filter_by(round_id=round_id, credited=False).delete(synchronize_session=False)
        removed_commissions = ReferralCommission.query.filter_by(round_id=round_id).delete(synchronize_session=False)
        now = utcnow()
        moved = db.session.execute(
            update(SnapshotRound)
            .where(SnapshotRound.id == round_id, SnapshotRound.status == RoundStatus.PENDING.value)
            .values(status=RoundStatus.CANCELLED.value, cancelled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if moved != 1:
            db.session.rollback()
            raise AlreadyProcessed(f"Round {round_id} changed state concurrently", round_id=round_id)
        db.session.commit()

        rewards_logger.info(f"Round {round_id} cancelled: items={removed_items} commissions={removed_commissions}")
        return {"round_id": round_id, "removed_items": removed_items, "removed_commissions": removed_commissions}

    # ==========================================================
    #                  OVERVIEW
    # ==========================================================
    def overview(self, now=None) -> Dict:
        pending = (
            SnapshotRound.query.filter_by(status=RoundStatus.PENDING.value)
            .order_by(SnapshotRound.created_at.desc())
            .all()
        )
        recent = (
            SnapshotRound.query.filter_by(status=RoundStatus.DISTRIBUTED.value)
            .order_by(SnapshotRound.distributed_at.desc())
            .limit(RECENT_ROUNDS_LIMIT)
            .all()
        )
        return {
            "pending": [r.to_dict(include_items=True) for r in pending],
            "recent": [r.to_dict() for r in recent],
            "countdown": self.countdown(now),
        }

    @classmethod
    def from_app(cls, chain, permits) -> "ProfitRoundEngine":
        return cls(chain, permits, current_app.config.get("ORACLE_POOL_SIZE", DEFAULT_POOL_SIZE))
