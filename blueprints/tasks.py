from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from rewards.tasks import TaskBonusHelper, TASK_CATALOG
from utils import decimal_str


bp = Blueprint("tasks", __name__, url_prefix="/api/tasks")


@bp.route("", methods=["GET"])
@login_required
def list_tasks():
    submissions = {s.task_key: s.to_dict() for s in TaskBonusHelper.user_submissions(current_user.id)}
    return jsonify({
        "success": True,
        "tasks": [
            {"taskKey": key, "reward": decimal_str(reward), "submission": submissions.get(key)}
            for key, reward in TASK_CATALOG.items()
        ],
        "totalTaskBonus": decimal_str(TaskBonusHelper.get_task_bonus(current_user.id)),
    })


@bp.route("/submit", methods=["POST"])
@login_required
def submit_task():
    data = request.get_json(silent=True) or {}
    task_key = (data.get("taskKey") or "").strip()
    if not task_key:
        return jsonify({"success": False, "error": "taskKey is required"}), 400

    submission = TaskBonusHelper.submit(current_user.id, task_key, proof=data.get("proof"))
    return jsonify({"success": True, "submission": submission.to_dict()}), 201
