"""Lesson completion route."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from helpers import current_user_id
from service import get_service

bp = Blueprint("lessons", __name__, url_prefix="/api/lessons")


@bp.route("/<lesson_id>/complete", methods=["POST"])
@login_required
def complete_lesson(lesson_id):
    data = request.get_json(silent=True) or {}
    result = get_service().complete_lesson(
        current_user_id(), lesson_id, path_id=data.get("pathId") or None,
    )
    return jsonify(result.to_dict())
