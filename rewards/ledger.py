"""
Per (user, asset) ledger.

Every mutation is a single UPDATE with an in-SQL increment, so concurrent
credits and debits on the same row never lose updates. Nothing here commits:
each engine wraps the ledger call together with its own idempotency guard in
one transaction.
"""
import logging
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import select, update

from extensions import db
from models import LedgerBalance
from utils import insert_ignore, quantize_amount, to_decimal, utcnow


logger = logging.getLogger(__name__)

REFERENCE_ASSET = "USDC"
SUPPORTED_ASSETS = ("USDC", "POL")

EARNED = "earned"
COMMISSION = "commission"


class LedgerHelper:

    @staticmethod
    def ensure_row(user_id: int, asset: str = REFERENCE_ASSET) -> bool:
        """Create the zero row if missing. True when a row was created."""
        now = utcnow()
        return insert_ignore(
            LedgerBalance,
            user_id=user_id,
            asset=asset,
            lifetime_earned=Decimal("0"),
            lifetime_commission=Decimal("0"),
            available=Decimal("0"),
            lifetime_withdrawn=Decimal("0"),
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _execute(user_id: int, asset: str, values: dict, *conditions) -> int:
        values["updated_at"] = utcnow()
        stmt = (
            update(LedgerBalance)
            .where(LedgerBalance.user_id == user_id, LedgerBalance.asset == asset, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return db.session.execute(stmt).rowcount

    @staticmethod
    def credit(user_id: int, amount, kind: str = EARNED, asset: str = REFERENCE_ASSET, tier_name: str = None) -> Decimal:
        """Increase available and the matching lifetime counter by the same amount."""
        amount = quantize_amount(amount)
        if amount < 0:
            raise ValueError(f"Credit amount must be >= 0, got {amount}")
        if kind not in (EARNED, COMMISSION):
            raise ValueError(f"Unknown credit kind {kind!r}")

        LedgerHelper.ensure_row(user_id, asset)

        lifetime = LedgerBalance.lifetime_earned if kind == EARNED else LedgerBalance.lifetime_commission
        values = {
            "available": LedgerBalance.available + amount,
            lifetime.key: lifetime + amount,
        }
        if tier_name:
            values["current_tier"] = tier_name

        LedgerHelper._execute(user_id, asset, values)
        logger.debug(f"Ledger credit user={user_id} asset={asset} kind={kind} amount={amount}")
        return amount

    @staticmethod
    def reserve(user_id: int, asset: str, amount) -> bool:
        """Optimistic debit. False (and no change) when available < amount."""
        amount = quantize_amount(amount)
        if amount <= 0:
            raise ValueError(f"Reserve amount must be positive, got {amount}")
        rows = LedgerHelper._execute(
            user_id,
            asset,
            {"available": LedgerBalance.available - amount},
            LedgerBalance.available >= amount,
        )
        return rows == 1

    @staticmethod
    def refund(user_id: int, asset: str, amount) -> None:
        amount = quantize_amount(amount)
        LedgerHelper.ensure_row(user_id, asset)
        LedgerHelper._execute(user_id, asset, {"available": LedgerBalance.available + amount})

    @staticmethod
    def record_withdrawn(user_id: int, asset: str, amount) -> None:
        amount = quantize_amount(amount)
        LedgerHelper._execute(user_id, asset, {"lifetime_withdrawn": LedgerBalance.lifetime_withdrawn + amount})

    @staticmethod
    def available(user_id: int, asset: str = REFERENCE_ASSET) -> Decimal:
        value = db.session.execute(
            select(LedgerBalance.available).where(
                LedgerBalance.user_id == user_id, LedgerBalance.asset == asset
            )
        ).scalar()
        return to_decimal(value) if value is not None else Decimal("0")

    @staticmethod
    def snapshot(user_id: int) -> List[Dict]:
        """Fresh read of every ledger row for the user."""
        rows = db.session.execute(
            select(LedgerBalance)
            .where(LedgerBalance.user_id == user_id)
            .order_by(LedgerBalance.asset)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [row.to_dict() for row in rows]

    @staticmethod
    def balance(user_id: int, asset: str = REFERENCE_ASSET) -> Dict[str, Decimal]:
        row = db.session.execute(
            select(
                LedgerBalance.lifetime_earned,
                LedgerBalance.lifetime_commission,
                LedgerBalance.available,
                LedgerBalance.lifetime_withdrawn,
            ).where(LedgerBalance.user_id == user_id, LedgerBalance.asset == asset)
        ).first()
        if row is None:
            zero = Decimal("0")
            return {"lifetime_earned": zero, "lifetime_commission": zero, "available": zero, "lifetime_withdrawn": zero}
        return {
            "lifetime_earned": to_decimal(row.lifetime_earned),
            "lifetime_commission": to_decimal(row.lifetime_commission),
            "available": to_decimal(row.available),
            "lifetime_withdrawn": to_decimal(row.lifetime_withdrawn),
        }
