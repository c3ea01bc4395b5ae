"""Admin-only progression maintenance."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user

from audit import log_event
from helpers import admin_required
from service import get_service

bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@bp.route("/users/<int:user_id>/achievements/recheck", methods=["POST"])
@admin_required
def recheck_achievements(user_id):
    unlocked = get_service().recheck_achievements(user_id)
    log_event("achievements_recheck", current_user.id,
              f"target={user_id} unlocked={len(unlocked)}")
    return jsonify({
        "userId": user_id,
        "newlyUnlockedAchievements": [a.to_dict() for a in unlocked],
    })
