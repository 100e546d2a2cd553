#======================================================================================
#
# ADMIN API: profit rounds, reward configuration, community, daily earnings, tasks
# and withdrawal resolution
#
#=======================================================================================
from flask import jsonify, request, Blueprint, abort
from flask_login import login_required, current_user
from functools import wraps
import logging

from extensions import db
from rewards.chain import get_chain, get_permits
from rewards.community import CommunityEngine
from rewards.config import RewardConfigHelper
from rewards.daily import DailyEarningProcessor
from rewards.errors import ConfigurationError
from rewards.profit_rounds import ProfitRoundEngine
from rewards.tasks import TaskBonusHelper
from rewards.withdrawals import WithdrawalManager
from utils import jsonable

logger = logging.getLogger(__name__)


def admin_required(f):
    """
    Restrict a route to admins.
    - Requires an authenticated session (401 otherwise).
    - Aborts with 403 Forbidden unless the user's role is admin.
    """
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if current_user.role != "admin":
            abort(403)
        return f(*args, **kwargs)

    return decorated_function


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        raise ConfigurationError("Request must be JSON")
    return data


def _int_field(data, key):
    value = data.get(key)
    if value is None:
        raise ConfigurationError(f"{key} is required", field=key)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer", field=key, value=value)


def _profit_engine():
    return ProfitRoundEngine.from_app(get_chain(), get_permits())


#============================================================================================================
#     PROFIT ROUNDS
#============================================================================================================
@admin_bp.route("/profits/overview", methods=["GET"])
@admin_required
def profits_overview():
    return jsonify({"success": True, **jsonable(_profit_engine().overview())})


@admin_bp.route("/profits/calculate", methods=["POST"])
@admin_required
def calculate_profits():
    """Snapshot balances of all permitted wallets into a pending round."""
    result = _profit_engine().start_round(created_by=current_user.id)
    logger.info(f"Admin {current_user.id} started round {result.get('id')}")
    return jsonify({"success": True, **jsonable(result)}), 201


@admin_bp.route("/profits/distribute", methods=["POST"])
@admin_required
def distribute_profits():
    data = _json_body()
    round_id = _int_field(data, "roundId")
    result = _profit_engine().distribute_round(round_id)
    logger.info(f"Admin {current_user.id} distributed round {round_id}: {result}")
    return jsonify({"success": True, **jsonable(result)})


@admin_bp.route("/profits/cancel", methods=["POST"])
@admin_required
def cancel_profits():
    data = _json_body()
    round_id = _int_field(data, "roundId")
    result = _profit_engine().cancel_round(round_id)
    return jsonify({"success": True, **jsonable(result)})


#============================================================================================================
#     REWARD CONFIGURATION
#============================================================================================================
@admin_bp.route("/config", methods=["GET"])
@admin_required
def get_config():
    return jsonify({"success": True, **jsonable(RewardConfigHelper.get_distribution_summary())})


@admin_bp.route("/config/validate", methods=["GET"])
@admin_required
def validate_config():
    ok, problems = RewardConfigHelper.validate_configuration()
    return jsonify({"success": True, "valid": ok, "problems": problems})


def _apply_config_action(action, data):
    """
    Apply one configuration action:
    update_settings, add_tier, update_tier, delete_tier, set_commission_rate, upsert_level.
    Returns None for an unknown action.
    """
    if action == "update_settings":
        result = RewardConfigHelper.update_settings(
            interval_seconds=data.get("intervalSeconds"),
            min_withdrawal_usdc=data.get("minWithdrawalUsdc"),
            min_withdrawal_pol=data.get("minWithdrawalPol"),
        ).to_dict()
    elif action == "add_tier":
        result = RewardConfigHelper.add_tier(data.get("name"), data.get("min"), data.get("max"), data.get("rate")).to_dict()
    elif action == "update_tier":
        result = RewardConfigHelper.update_tier(
            _int_field(data, "tierId"),
            name=data.get("name"),
            min_amount=data.get("min"),
            max_amount=data.get("max"),
            rate=data.get("rate"),
            is_active=data.get("isActive"),
        ).to_dict()
    elif action == "delete_tier":
        RewardConfigHelper.delete_tier(_int_field(data, "tierId"))
        result = {"deleted": _int_field(data, "tierId")}
    elif action == "set_commission_rate":
        result = RewardConfigHelper.set_commission_rate(
            data.get("level"), data.get("rate"), is_active=data.get("isActive", True)
        ).to_dict()
    elif action == "upsert_level":
        result = RewardConfigHelper.upsert_level(
            data.get("level"),
            reward_pool=data.get("rewardPool"),
            daily_rate=data.get("dailyRate"),
            unlock_volume_normal=data.get("unlockVolumeNormal"),
            unlock_volume_influencer=data.get("unlockVolumeInfluencer"),
        ).to_dict()
    else:
        return None
    return result


@admin_bp.route("/config", methods=["POST"])
@admin_required
def update_config():
    data = _json_body()
    action = data.get("action")

    try:
        result = _apply_config_action(action, data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {action}: {e}", action=action)
    if result is None:
        return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400

    db.session.commit()
    logger.info(f"Admin {current_user.id} config action {action}")
    return jsonify({"success": True, "result": jsonable(result)})


#============================================================================================================
#     COMMUNITY
#============================================================================================================
@admin_bp.route("/community/users", methods=["GET"])
@admin_required
def community_users():
    level = request.args.get("level", type=int)
    override_only = request.args.get("override", "").lower() in ("1", "true", "yes")
    statuses = CommunityEngine.list_statuses(level=level, override_only=override_only)
    return jsonify({"success": True, "users": [s.to_dict() for s in statuses]})


@admin_bp.route("/community/action", methods=["POST"])
@admin_required
def community_action():
    data = _json_body()
    action = data.get("action")
    user_id = _int_field(data, "userId")

    engine = CommunityEngine.from_app(get_chain())
    if action == "set_level":
        status = engine.set_override(user_id, _int_field(data, "level"))
    elif action == "restore_real_level":
        status = engine.restore_real_level(user_id)
    elif action == "set_influencer":
        status = engine.set_influencer(user_id, True)
    elif action == "remove_influencer":
        status = engine.remove_influencer(user_id)
    elif action == "refresh":
        status = engine.refresh_status(user_id)
    else:
        return jsonify({"success": False, "error": f"Unknown action: {action}"}), 400

    logger.info(f"Admin {current_user.id} community action {action} on user {user_id}")
    return jsonify({"success": True, "status": status.to_dict()})


#============================================================================================================
#     DAILY EARNINGS
#============================================================================================================
@admin_bp.route("/daily-earnings", methods=["GET"])
@admin_required
def daily_earnings_preview():
    return jsonify({"success": True, **jsonable(DailyEarningProcessor().preview())})


@admin_bp.route("/daily-earnings", methods=["POST"])
@admin_required
def daily_earnings_distribute():
    result = DailyEarningProcessor().distribute()
    logger.info(f"Admin {current_user.id} ran daily earnings: {result.get('processed')} processed")
    return jsonify({"success": True, **jsonable(result)})


#============================================================================================================
#     TASKS
#============================================================================================================
@admin_bp.route("/tasks/pending", methods=["GET"])
@admin_required
def pending_tasks():
    return jsonify({"success": True, "submissions": [s.to_dict() for s in TaskBonusHelper.pending_submissions()]})


@admin_bp.route("/tasks/<int:submission_id>/review", methods=["POST"])
@admin_required
def review_task(submission_id):
    data = _json_body()
    approve = bool(data.get("approve"))
    submission = TaskBonusHelper.review_submission(submission_id, approve, reviewer_id=current_user.id)
    return jsonify({"success": True, "submission": submission.to_dict()})


#============================================================================================================
#     WITHDRAWALS
#============================================================================================================
@admin_bp.route("/withdrawals", methods=["GET"])
@admin_required
def open_withdrawals():
    return jsonify({"success": True, "withdrawals": [w.to_dict() for w in WithdrawalManager.list_open()]})


@admin_bp.route("/withdrawals/<int:withdrawal_id>/complete", methods=["POST"])
@admin_required
def complete_withdrawal(withdrawal_id):
    """Mark an indeterminate withdrawal as settled once the transfer is confirmed on chain."""
    data = _json_body()
    tx_hash = (data.get("txHash") or "").strip()
    if not tx_hash:
        return jsonify({"success": False, "error": "txHash is required"}), 400

    withdrawal = WithdrawalManager(get_chain()).complete_withdrawal(withdrawal_id, tx_hash, resolved_by=current_user.id)
    return jsonify({"success": True, "withdrawal": withdrawal.to_dict()})


@admin_bp.route("/withdrawals/<int:withdrawal_id>/reject", methods=["POST"])
@admin_required
def reject_withdrawal(withdrawal_id):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason") or "Rejected by admin"
    withdrawal = WithdrawalManager(get_chain()).fail_withdrawal(withdrawal_id, reason, resolved_by=current_user.id)
    return jsonify({"success": True, "withdrawal": withdrawal.to_dict()})


@admin_bp.route("/withdrawals/<int:withdrawal_id>/execute", methods=["POST"])
@admin_required
def execute_withdrawal(withdrawal_id):
    manager = WithdrawalManager(get_chain())
    status = manager.execute(withdrawal_id)
    return jsonify({"success": True, "status": status, "withdrawal": manager.get(withdrawal_id).to_dict()})
