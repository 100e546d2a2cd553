from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from flask import current_app
from sqlalchemy import select

from extensions import db
from models import User
from rewards.errors import InvalidReferral
from rewards.oracle import read_balances
from utils import normalize_address


logger = logging.getLogger(__name__)

COMMISSION_MAX_DEPTH = 6   # ancestor generations paid per profit credit
TEAM_VOLUME_DEPTH = 3      # L1-L3 count towards community unlock volume
MAX_TRAVERSAL_DEPTH = 50   # dashboard "whole team" views


class ReferralTreeHelper:
    """
    Referral forest over users.referrer_id.
    Every walk is bounded by depth and by a visited set, so a malformed
    cycle in stored data can never loop.
    """

    @staticmethod
    def get_referrer_id(user_id: int) -> Optional[int]:
        return db.session.execute(select(User.referrer_id).where(User.id == user_id)).scalar()

    @staticmethod
    def get_ancestor_chain(user_id: int, max_depth: int = COMMISSION_MAX_DEPTH) -> List[Tuple[int, int]]:
        """[(ancestor_id, depth)] starting at the direct referrer (depth 1)."""
        chain = []
        seen = {user_id}
        current = user_id

        for depth in range(1, max_depth + 1):
            referrer_id = ReferralTreeHelper.get_referrer_id(current)
            if referrer_id is None:
                break
            if referrer_id in seen:
                logger.warning(f"Referral cycle detected above user {user_id} at depth {depth}")
                break
            chain.append((referrer_id, depth))
            seen.add(referrer_id)
            current = referrer_id

        return chain

    @staticmethod
    def get_descendants(user_id: int, max_depth: int = MAX_TRAVERSAL_DEPTH) -> List[Tuple[int, int]]:
        """Breadth-first [(descendant_id, depth)], direct referrals at depth 1."""
        result = []
        seen = {user_id}
        frontier = [user_id]
        depth = 0

        while frontier and depth < max_depth:
            depth += 1
            rows = db.session.execute(
                select(User.id).where(User.referrer_id.in_(frontier)).order_by(User.id)
            ).scalars().all()

            next_frontier = []
            for descendant_id in rows:
                if descendant_id in seen:
                    continue
                seen.add(descendant_id)
                result.append((descendant_id, depth))
                next_frontier.append(descendant_id)
            frontier = next_frontier

        return result

    @staticmethod
    def is_ancestor(ancestor_id: int, user_id: int, max_depth: int = MAX_TRAVERSAL_DEPTH) -> bool:
        return any(a == ancestor_id for a, _ in ReferralTreeHelper.get_ancestor_chain(user_id, max_depth))

    @staticmethod
    def count_by_depth(user_id: int, max_depth: int = MAX_TRAVERSAL_DEPTH) -> Dict[int, int]:
        counts: Dict[int, int] = {}
        for _, depth in ReferralTreeHelper.get_descendants(user_id, max_depth):
            counts[depth] = counts.get(depth, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Edge creation
    # ------------------------------------------------------------------
    @staticmethod
    def add_new_user(wallet_address: str, referrer_id: Optional[int] = None, email: Optional[str] = None) -> User:
        """
        Register a user with an optional referrer.
        Must be called inside an existing transaction (no commit here).
        """
        wallet = normalize_address(wallet_address)

        referrer = None
        if referrer_id is not None:
            referrer = db.session.get(User, referrer_id)
            if referrer is None:
                raise InvalidReferral("Referrer not found", referrer_id=referrer_id)
            if referrer.wallet_address == wallet:
                raise InvalidReferral("User cannot refer themselves", referrer_id=referrer_id)
            if not referrer.is_active:
                raise InvalidReferral("Referrer is inactive", referrer_id=referrer_id)

        if User.query.filter_by(wallet_address=wallet).first() is not None:
            raise InvalidReferral("Wallet already registered", wallet_address=wallet)

        user = User(wallet_address=wallet, email=email, referrer_id=referrer.id if referrer else None)
        db.session.add(user)
        db.session.flush()

        current_app.logger.info(f"User {user.id} registered wallet={wallet} referrer={user.referrer_id}")
        return user

    @staticmethod
    def set_referrer(user_id: int, referrer_id: int) -> User:
        """Bind a referrer for a user that has none; refuses any edge that would close a loop."""
        user = db.session.get(User, user_id)
        if user is None:
            raise InvalidReferral("User not found", user_id=user_id)
        if user.referrer_id is not None:
            raise InvalidReferral("Referrer already set", user_id=user_id, referrer_id=user.referrer_id)
        if referrer_id == user_id:
            raise InvalidReferral("User cannot refer themselves", user_id=user_id)

        referrer = db.session.get(User, referrer_id)
        if referrer is None:
            raise InvalidReferral("Referrer not found", referrer_id=referrer_id)

        # the referrer must not sit below the user
        if ReferralTreeHelper.is_ancestor(user_id, referrer_id):
            current_app.logger.warning(
                f"Cycle detected: referrer_id={referrer_id} is descendant of user_id={user_id}"
            )
            raise InvalidReferral("Referrer is in the user's downline", user_id=user_id, referrer_id=referrer_id)

        user.referrer_id = referrer_id
        db.session.flush()
        return user

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @staticmethod
    def referral_balances(user_id: int, oracle, max_depth: int = MAX_TRAVERSAL_DEPTH, pool_size: int = 10) -> Dict:
        """All descendants with live balances plus aggregated volumes."""
        descendants = ReferralTreeHelper.get_descendants(user_id, max_depth)
        if not descendants:
            return {
                "members": [],
                "total_volume": Decimal("0"),
                "level1_volume": Decimal("0"),
                "member_count": 0,
                "direct_count": 0,
                "counts_by_depth": {},
            }

        depth_by_id = dict(descendants)
        users = User.query.filter(User.id.in_(list(depth_by_id))).all()
        balances = read_balances(oracle, [u.wallet_address for u in users if u.wallet_address], pool_size)

        members = []
        total = Decimal("0")
        level1 = Decimal("0")
        counts: Dict[int, int] = {}
        for user in sorted(users, key=lambda u: (depth_by_id[u.id], u.id)):
            depth = depth_by_id[user.id]
            balance = balances.get(user.wallet_address) if user.wallet_address else None
            counts[depth] = counts.get(depth, 0) + 1
            if balance is not None:
                total += balance
                if depth == 1:
                    level1 += balance
            members.append({
                "user_id": user.id,
                "wallet_address": user.wallet_address,
                "depth": depth,
                "balance": balance,
                "joined_at": user.created_at,
            })

        return {
            "members": members,
            "total_volume": total,
            "level1_volume": level1,
            "member_count": len(members),
            "direct_count": counts.get(1, 0),
            "counts_by_depth": counts,
        }
