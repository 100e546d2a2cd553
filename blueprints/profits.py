#======================================================================================
#
#   USER PROFITS, LEDGER HISTORY AND WITHDRAWALS
#
#=======================================================================================
from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user
import logging

from rewards.chain import get_chain
from rewards.history import user_history
from rewards.withdrawals import WithdrawalManager
from utils import jsonable


logger = logging.getLogger(__name__)

bp = Blueprint("profits", __name__, url_prefix="/api")


@bp.route("/profits/user", methods=["GET"])
@login_required
def my_profits():
    return jsonify({"success": True, **jsonable(user_history(current_user.id))})


@bp.route("/profits/withdraw", methods=["POST"])
@login_required
def withdraw():
    """
    Request a withdrawal of `amount` in `tokenType` (USDC or POL) to the bound wallet.
    Funds are reserved before the transfer is attempted; the response carries the
    request status, which may still be `processing`.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"success": False, "error": "Request must be JSON"}), 400

    token_type = data.get("tokenType")
    amount = data.get("amount")
    if not token_type or amount in (None, ""):
        return jsonify({"success": False, "error": "tokenType and amount are required"}), 400

    manager = WithdrawalManager(get_chain())
    withdrawal_id = manager.request_withdrawal(current_user.id, token_type, amount)
    withdrawal = manager.get(withdrawal_id)

    current_app.logger.info(f"Withdrawal {withdrawal_id} by user {current_user.id}: {withdrawal.status}")
    return jsonify({
        "success": withdrawal.status != "failed",
        "withdrawal": withdrawal.to_dict(),
    }), 202 if withdrawal.status == "processing" else 200


@bp.route("/withdrawals", methods=["GET"])
@login_required
def my_withdrawals():
    return jsonify({"success": True, **WithdrawalManager.summary(current_user.id)})


@bp.route("/withdrawals/<int:withdrawal_id>", methods=["GET"])
@login_required
def withdrawal_status(withdrawal_id):
    withdrawal = WithdrawalManager.get(withdrawal_id, user_id=current_user.id)
    return jsonify({"success": True, "withdrawal": withdrawal.to_dict()})
