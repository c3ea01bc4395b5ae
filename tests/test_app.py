"""Tests for app wiring — config, logging, seed command, health and headers."""

import json
import logging

import pytest

from config import ProductionConfig, config_by_name
from logging_config import JSONFormatter


class TestConfig:
    def test_testing_defaults(self, app):
        assert app.config["TESTING"]
        assert app.config["XP_PER_CORRECT_ANSWER"] == 10
        assert app.config["DEFAULT_LESSON_XP"] == 10
        assert app.config["PROGRESSION_MAX_ATTEMPTS"] == 5

    def test_production_rejects_default_secret(self, monkeypatch):
        monkeypatch.setattr(ProductionConfig, "SECRET_KEY", "dev-key-change-in-production")
        with pytest.raises(RuntimeError):
            ProductionConfig.validate()

    def test_config_names(self):
        assert set(config_by_name) == {"development", "production", "testing"}

    def test_service_uses_configured_xp(self, tmp_path):
        from app import create_app
        app = create_app({"DATABASE": str(tmp_path / "x.db"), "XP_PER_CORRECT_ANSWER": 25})
        assert app.extensions["progression"].scorer.xp_per_correct == 25


class TestLogging:
    def test_json_formatter(self):
        record = logging.LogRecord("progression", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.request_id = "abc123"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["request_id"] == "abc123"

    def test_request_id_header(self, client):
        resp = client.get("/healthz", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"


class TestSeedCatalog:
    def test_seed_counts(self, catalog):
        assert catalog["quizzes"] == 2
        assert catalog["achievements"] == 8

    def test_seed_is_idempotent(self, app, catalog):
        with app.app_context():
            from database import get_db
            from seed_catalog import seed
            seed(get_db())
            count = get_db().execute("SELECT COUNT(*) FROM lessons").fetchone()[0]
        assert count == catalog["lessons"]

    def test_cli_command(self, app):
        result = app.test_cli_runner().invoke(args=["seed-catalog", "--reset"])
        assert result.exit_code == 0
        assert "achievements=8" in result.output


class TestSurface:
    def test_health(self, client):
        assert client.get("/healthz").get_json() == {"status": "ok"}

    def test_security_headers(self, client):
        resp = client.get("/healthz")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert "error" in resp.get_json()
