from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user

from rewards.chain import get_chain
from rewards.referral_tree import ReferralTreeHelper
from utils import jsonable


bp = Blueprint("referral", __name__, url_prefix="/api/referral")


@bp.route("/balances", methods=["GET"])
@login_required
def referral_balances():
    """Every descendant with their live balance, plus team and first-line volume."""
    result = ReferralTreeHelper.referral_balances(
        current_user.id,
        get_chain(),
        pool_size=current_app.config.get("ORACLE_POOL_SIZE", 10),
    )
    return jsonify({"success": True, **jsonable(result)})


@bp.route("/upline", methods=["GET"])
@login_required
def upline():
    chain = ReferralTreeHelper.get_ancestor_chain(current_user.id)
    return jsonify({"success": True, "upline": [{"userId": uid, "depth": depth} for uid, depth in chain]})
