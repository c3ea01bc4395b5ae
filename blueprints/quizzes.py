"""Quiz routes: fetch a quiz for play and submit an attempt."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from db_stores import ContentCatalogDB
from errors import EntityNotFound, InvalidSubmission
from helpers import current_user_id, json_body
from progression import normalize_answers
from service import get_service

bp = Blueprint("quizzes", __name__, url_prefix="/api/quizzes")


@bp.route("/<quiz_id>")
@login_required
def get_quiz(quiz_id):
    quiz = ContentCatalogDB().quiz_for_display(quiz_id)
    if quiz is None:
        raise EntityNotFound("quiz", quiz_id)
    return jsonify(quiz)


@bp.route("/attempt", methods=["POST"])
@login_required
def submit_attempt():
    data = json_body()
    quiz_id = data.get("quizId") or data.get("quiz_id")
    if not quiz_id:
        raise InvalidSubmission("quizId is required")

    result = get_service().submit_quiz_attempt(
        current_user_id(),
        str(quiz_id),
        normalize_answers(data.get("answers", {})),
        data.get("timeSpentSeconds", data.get("timeSpent", 0)),
        attempt_id=data.get("attemptId") or None,
        path_id=data.get("pathId") or None,
    )
    return jsonify(result.to_dict()), 200 if result.replayed else 201
