"""
Progression Service — Flask Web Application

JSON API for the progression and ranking engine of a gamified e-learning
app: quiz scoring, XP and levels, daily streaks, achievements, learning
path progress and leaderboards.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response

import database
import seed_catalog
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from extensions import limiter
from logging_config import init_logging
from service import init_progression


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    if test_config is not None:
        app.config.from_object(config_by_name["testing"])
        app.config.update(test_config)
    else:
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    # Structured logging
    init_logging(app)

    # Register database teardown and lazy schema init
    database.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    # Auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Progression core, API blueprints and JSON error handlers
    init_progression(app)
    register_blueprints(app)

    # CLI: flask seed-catalog
    seed_catalog.init_app(app)

    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
