from typing import Dict

from models import (
    RoundLineItem, ReferralCommission, DailyEarningRecord, PoolClaim, WithdrawalRequest,
)
from rewards.ledger import LedgerHelper


HISTORY_LIMIT = 50


def user_history(user_id: int, limit: int = HISTORY_LIMIT) -> Dict:
    """The user's balances and the most recent entries of every credit and debit source."""
    rounds = (
        RoundLineItem.query.filter_by(user_id=user_id)
        .order_by(RoundLineItem.created_at.desc(), RoundLineItem.id.desc())
        .limit(limit)
        .all()
    )
    commissions = (
        ReferralCommission.query.filter_by(beneficiary_id=user_id)
        .order_by(ReferralCommission.created_at.desc(), ReferralCommission.id.desc())
        .limit(limit)
        .all()
    )
    daily = (
        DailyEarningRecord.query.filter_by(user_id=user_id)
        .order_by(DailyEarningRecord.earning_date.desc())
        .limit(limit)
        .all()
    )
    claims = PoolClaim.query.filter_by(user_id=user_id).order_by(PoolClaim.level).all()
    withdrawals = (
        WithdrawalRequest.query.filter_by(user_id=user_id)
        .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
        .limit(limit)
        .all()
    )

    return {
        "balances": LedgerHelper.snapshot(user_id),
        "profits": [item.to_dict() for item in rounds],
        "commissions": [c.to_dict() for c in commissions],
        "daily_earnings": [d.to_dict() for d in daily],
        "pool_claims": [c.to_dict() for c in claims],
        "withdrawals": [w.to_dict() for w in withdrawals],
    }
