"""
Blueprint registration and JSON error handlers.
"""

from __future__ import annotations

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from errors import ConcurrencyConflict, ProgressionError

logger = logging.getLogger(__name__)


def register_blueprints(app):
    from blueprints.admin import bp as admin_bp
    from blueprints.lessons import bp as lessons_bp
    from blueprints.quizzes import bp as quizzes_bp
    from blueprints.ranking import bp as ranking_bp
    from blueprints.users import bp as users_bp

    app.register_blueprint(quizzes_bp)
    app.register_blueprint(lessons_bp)
    app.register_blueprint(ranking_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(admin_bp)

    register_error_handlers(app)


def register_error_handlers(app):
    @app.errorhandler(ProgressionError)
    def _progression_error(exc: ProgressionError):
        if isinstance(exc, ConcurrencyConflict):
            logger.warning("Giving up after repeated conflicts: %s", exc)
        return jsonify({"error": str(exc)}), exc.status_code

    @app.errorhandler(ValueError)
    def _bad_parameter(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"error": exc.description}), exc.code
