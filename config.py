"""
Application configuration — environment-aware settings.

All environment variables are documented here. A local ``.env`` file is
loaded on import.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    DATABASE = os.environ.get("DATABASE", str(BASE_DIR / "progression.db"))
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "5"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1 MB

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Progression rules
    XP_PER_CORRECT_ANSWER = _int_env("XP_PER_CORRECT_ANSWER", 10)
    DEFAULT_LESSON_XP = _int_env("DEFAULT_LESSON_XP", 10)
    PROGRESSION_MAX_ATTEMPTS = _int_env("PROGRESSION_MAX_ATTEMPTS", 5)
    PROGRESSION_RETRY_WAIT = float(os.environ.get("PROGRESSION_RETRY_WAIT", "0.05"))

    # Leaderboard
    LEADERBOARD_PAGE_SIZE = _int_env("LEADERBOARD_PAGE_SIZE", 50)
    LEADERBOARD_MAX_PAGE_SIZE = _int_env("LEADERBOARD_MAX_PAGE_SIZE", 100)

    # Rate limiting (defaults to in-memory; point at Redis for multi-worker deployments)
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if cls.PROGRESSION_MAX_ATTEMPTS < 1:
            errors.append("PROGRESSION_MAX_ATTEMPTS must be at least 1.")

        if cls.RATELIMIT_STORAGE_URI == "memory://":
            warnings.warn("RATELIMIT_STORAGE_URI is in-memory; limits are per worker process.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    PROGRESSION_RETRY_WAIT = 0
    RATELIMIT_ENABLED = False


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
