"""Per-user progression views. Owners see their own data; admins see anyone's."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from helpers import self_or_admin
from service import get_service

bp = Blueprint("users", __name__, url_prefix="/api/users")


@bp.route("/<int:user_id>")
@self_or_admin
def user_stats(user_id):
    service = get_service()
    body = service.get_user_stats(user_id).to_dict()
    limit = min(50, max(1, request.args.get("recent", 10, type=int)))
    body["recentAttempts"] = [
        {
            "id": a["id"],
            "quizId": a["quiz_id"],
            "quizTitle": a["quiz_title"],
            "score": a["score"],
            "totalQuestions": a["total_questions"],
            "timeSpentSeconds": a["time_spent_seconds"],
            "xpEarned": a["xp_earned"],
            "completedAt": a["completed_at"],
        }
        for a in service.recent_attempts(user_id, limit)
    ]
    return jsonify(body)


@bp.route("/<int:user_id>/paths")
@self_or_admin
def user_paths(user_id):
    paths = get_service().list_user_paths(user_id)
    return jsonify({"paths": [p.to_dict() for p in paths]})


@bp.route("/<int:user_id>/paths/<path_id>")
@self_or_admin
def user_path_progress(user_id, path_id):
    return jsonify(get_service().get_user_progress(user_id, path_id).to_dict())
