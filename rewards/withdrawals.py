"""
Withdrawal state machine.

    pending --(reserve funds)--> processing --> completed
                                            --> failed (refund)
                                            --> processing (indeterminate, operator resolves)

Every transition is a conditional UPDATE on the current status, so a refund
can only ride on the single transition into `failed`.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import update

from extensions import db
from logger import withdrawals_logger
from models import User, WithdrawalRequest, WithdrawalStatus
from rewards.config import RewardConfigHelper
from rewards.errors import (
    BelowMinimum, InsufficientBalance, InvalidTransition, NoWallet, UnsupportedAsset,
    UserNotFound, WithdrawalNotFound, TransferFailed, TransferIndeterminate,
)
from rewards.ledger import LedgerHelper, SUPPORTED_ASSETS
from utils import quantize_amount, to_decimal, utcnow


logger = logging.getLogger(__name__)

PENDING = WithdrawalStatus.PENDING.value
PROCESSING = WithdrawalStatus.PROCESSING.value
COMPLETED = WithdrawalStatus.COMPLETED.value
FAILED = WithdrawalStatus.FAILED.value

OPEN_STATUSES = (PENDING, PROCESSING)


class WithdrawalManager:

    def __init__(self, gateway):
        self.gateway = gateway

    # ==========================================================
    #                  VALIDATION
    # ==========================================================
    @staticmethod
    def validate_request(user: User, asset: str, amount) -> Tuple[str, Decimal]:
        """Normalized (asset, amount), or the first violated precondition."""
        asset = (asset or "").upper()
        if asset not in SUPPORTED_ASSETS:
            raise UnsupportedAsset(f"Unsupported asset {asset}. Use USDC or POL", asset=asset)

        try:
            amount = quantize_amount(amount)
        except ValueError:
            raise BelowMinimum("Invalid amount format", amount=str(amount))

        minimum = RewardConfigHelper.min_withdrawal(asset)
        if amount <= 0 or amount < minimum:
            raise BelowMinimum(
                f"Minimum withdrawal is {minimum} {asset}", asset=asset, minimum=minimum, amount=amount
            )

        available = LedgerHelper.available(user.id, asset)
        if amount > available:
            raise InsufficientBalance(
                "Insufficient balance", asset=asset, available=available, amount=amount
            )

        if not user.wallet_address:
            raise NoWallet("No wallet connected")

        return asset, amount

    # ==========================================================
    #                  REQUEST
    # ==========================================================
    def request_withdrawal(self, user_id: int, asset: str, amount) -> int:
        """
        Reserve the funds and create the request in one transaction, then try the
        transfer right away. Returns the request id whatever the transfer outcome.
        """
        user = db.session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found", user_id=user_id)

        asset, amount = self.validate_request(user, asset, amount)

        request = WithdrawalRequest(
            user_id=user.id,
            asset=asset,
            amount=amount,
            destination=user.wallet_address,
            status=PENDING,
        )
        db.session.add(request)
        db.session.flush()

        if not LedgerHelper.reserve(user.id, asset, amount):
            db.session.rollback()
            raise InsufficientBalance("Insufficient balance", asset=asset, amount=amount)
        db.session.commit()

        withdrawal_id = request.id
        withdrawals_logger.info(f"Withdrawal {withdrawal_id} pending: user={user_id} {amount} {asset} reserved")

        self.execute(withdrawal_id)
        return withdrawal_id

    # ==========================================================
    #                  EXECUTION
    # ==========================================================
    def _transition(self, withdrawal_id: int, from_statuses, to_status: str, **values) -> bool:
        values.update(status=to_status, updated_at=utcnow())
        moved = db.session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == withdrawal_id, WithdrawalRequest.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        return moved == 1

    def execute(self, withdrawal_id: int) -> str:
        """Move a pending request to processing and call the transfer rail. Returns the final status."""
        request = self.get(withdrawal_id)
        user_id, asset, amount, destination = request.user_id, request.asset, to_decimal(request.amount), request.destination

        if not self._transition(withdrawal_id, (PENDING,), PROCESSING):
            db.session.rollback()
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} is not pending", withdrawal_id=withdrawal_id
            )
        db.session.commit()
        withdrawals_logger.info(f"Withdrawal {withdrawal_id} processing")

        try:
            tx_hash = self.gateway.transfer_out(destination, amount, asset)
        except TransferIndeterminate as e:
            self._note_indeterminate(withdrawal_id, e)
            return PROCESSING
        except TransferFailed as e:
            self._fail(withdrawal_id, user_id, asset, amount, str(e), (PROCESSING,), tx_hash=e.tx_hash)
            return FAILED
        except Exception as e:
            # unknown exceptions say nothing about whether funds moved
            logger.exception(f"Withdrawal {withdrawal_id}: unexpected transfer error")
            self._note_indeterminate(withdrawal_id, e)
            return PROCESSING

        self._complete(withdrawal_id, user_id, asset, amount, tx_hash, (PROCESSING,))
        return COMPLETED

    def _complete(self, withdrawal_id, user_id, asset, amount, tx_hash, from_statuses, resolved_by=None) -> bool:
        done = self._transition(
            withdrawal_id, from_statuses, COMPLETED,
            tx_hash=tx_hash, processed_at=utcnow(), error_message=None, resolved_by=resolved_by,
        )
        if done:
            LedgerHelper.record_withdrawn(user_id, asset, amount)
        db.session.commit()
        if done:
            withdrawals_logger.info(f"Withdrawal {withdrawal_id} completed tx={tx_hash}")
        return done

    def _fail(self, withdrawal_id, user_id, asset, amount, reason, from_statuses, tx_hash=None, resolved_by=None) -> bool:
        """Transition to failed and refund the reservation, exactly once."""
        done = self._transition(
            withdrawal_id, from_statuses, FAILED,
            error_message=reason, processed_at=utcnow(), tx_hash=tx_hash, resolved_by=resolved_by,
        )
        if done:
            LedgerHelper.refund(user_id, asset, amount)
        db.session.commit()
        if done:
            withdrawals_logger.warning(f"Withdrawal {withdrawal_id} failed, {amount} {asset} refunded: {reason}")
        return done

    def _note_indeterminate(self, withdrawal_id: int, error: Exception) -> None:
        tx_hash = getattr(error, "tx_hash", None)
        values = {"error_message": f"Indeterminate: {error}"}
        if tx_hash:
            values["tx_hash"] = tx_hash
        self._transition(withdrawal_id, (PROCESSING,), PROCESSING, **values)
        db.session.commit()
        withdrawals_logger.error(f"Withdrawal {withdrawal_id} left processing for reconciliation: {error}")

    # ==========================================================
    #                  OPERATOR RESOLUTION
    # ==========================================================
    def complete_withdrawal(self, withdrawal_id: int, tx_hash: str, resolved_by: Optional[int] = None) -> WithdrawalRequest:
        request = self.get(withdrawal_id)
        if not tx_hash:
            raise InvalidTransition("tx_hash is required to complete a withdrawal", withdrawal_id=withdrawal_id)
        if not self._complete(withdrawal_id, request.user_id, request.asset, to_decimal(request.amount),
                              tx_hash, OPEN_STATUSES, resolved_by=resolved_by):
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} is already resolved", withdrawal_id=withdrawal_id
            )
        return self.get(withdrawal_id)

    def fail_withdrawal(self, withdrawal_id: int, reason: str, resolved_by: Optional[int] = None) -> WithdrawalRequest:
        request = self.get(withdrawal_id)
        if not self._fail(withdrawal_id, request.user_id, request.asset, to_decimal(request.amount),
                          reason or "Rejected by operator", OPEN_STATUSES, tx_hash=request.tx_hash,
                          resolved_by=resolved_by):
            raise InvalidTransition(
                f"Withdrawal {withdrawal_id} is already resolved", withdrawal_id=withdrawal_id
            )
        return self.get(withdrawal_id)

    # ==========================================================
    #                  QUERIES
    # ==========================================================
    @staticmethod
    def get(withdrawal_id: int, user_id: Optional[int] = None) -> WithdrawalRequest:
        request = db.session.get(WithdrawalRequest, withdrawal_id, populate_existing=True)
        if request is None or (user_id is not None and request.user_id != user_id):
            raise WithdrawalNotFound(f"Withdrawal {withdrawal_id} not found", withdrawal_id=withdrawal_id)
        return request

    @staticmethod
    def list_for_user(user_id: int, limit: int = 50) -> List[WithdrawalRequest]:
        return (
            WithdrawalRequest.query.filter_by(user_id=user_id)
            .order_by(WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_open(limit: int = 100) -> List[WithdrawalRequest]:
        return (
            WithdrawalRequest.query.filter(WithdrawalRequest.status.in_(OPEN_STATUSES))
            .order_by(WithdrawalRequest.created_at.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def summary(user_id: int) -> Dict:
        rows = WithdrawalManager.list_for_user(user_id)
        return {
            "withdrawals": [w.to_dict() for w in rows],
            "open": sum(1 for w in rows if w.status in OPEN_STATUSES),
        }
