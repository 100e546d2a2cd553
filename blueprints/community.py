from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from rewards.chain import get_chain
from rewards.community import CommunityEngine
from rewards.daily import DailyEarningProcessor
from utils import jsonable


bp = Blueprint("community", __name__, url_prefix="/api/community")


@bp.route("/status", methods=["GET"])
@login_required
def status():
    """Live unlock progress, levels and claimable pool rewards."""
    engine = CommunityEngine.from_app(get_chain())
    return jsonify({"success": True, "status": jsonable(engine.status_payload(current_user.id))})


@bp.route("/claim", methods=["POST"])
@login_required
def claim():
    data = request.get_json(silent=True) or {}
    level = data.get("level")
    if level is None:
        return jsonify({"success": False, "error": "level is required"}), 400
    try:
        level = int(level)
    except (TypeError, ValueError):
        return jsonify({"success": False, "error": "level must be an integer"}), 400

    engine = CommunityEngine.from_app(get_chain())
    claim = engine.claim(current_user.id, level)
    return jsonify({"success": True, "claim": claim.to_dict()})


@bp.route("/next-distribution", methods=["GET"])
@login_required
def next_distribution():
    return jsonify({"success": True, **DailyEarningProcessor.next_distribution(current_user.id)})


@bp.route("/last-distribution", methods=["GET"])
@login_required
def last_distribution():
    record = DailyEarningProcessor.last_distribution(current_user.id)
    return jsonify({"success": True, "last_distribution": DailyEarningProcessor.describe(record)})
