"""Leaderboard route."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from helpers import paginate_args, paginated_response
from service import get_service

bp = Blueprint("ranking", __name__)


@bp.route("/api/leaderboard")
@login_required
def leaderboard():
    timeframe = request.args.get("timeframe", "all")
    page, limit = paginate_args()
    board = get_service().get_leaderboard(timeframe, page, limit)
    body = paginated_response([e.to_dict() for e in board.entries], board.total_count, page, limit)
    body["timeframe"] = board.timeframe
    body["stats"] = board.stats.to_dict()
    return jsonify(body)
