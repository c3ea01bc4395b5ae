"""
Test fixtures for the progression service.

Provides app, client, auth_client, admin_client, db and catalog fixtures
backed by a file-based SQLite database in tmp_path.
"""

from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

LEARNER_PASSWORD = "testpass123"
ADMIN_PASSWORD = "adminpass123"


class FrozenClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set_date(self, day: date) -> None:
        self.now = datetime(day.year, day.month, day.day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app
    from werkzeug.security import generate_password_hash

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "PROGRESSION_RETRY_WAIT": 0,
    })

    with app.app_context():
        from database import get_db, init_db, run_migrations

        init_db()
        run_migrations()

        # Seed a learner (id 1) and an admin (id 2)
        db = get_db()
        db.execute(
            "INSERT INTO users (id, name, email, password_hash, role, created_at) "
            "VALUES (1, 'Test Learner', 'test@example.com', ?, 'learner', '2026-01-01T00:00:00+00:00')",
            (generate_password_hash(LEARNER_PASSWORD),),
        )
        db.execute(
            "INSERT INTO users (id, name, email, password_hash, role, created_at) "
            "VALUES (2, 'Test Admin', 'admin@example.com', ?, 'admin', '2026-01-01T00:00:00+00:00')",
            (generate_password_hash(ADMIN_PASSWORD),),
        )
        db.commit()

    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _login(app, email: str, password: str):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def auth_client(app):
    """Authenticated test client (logged in as the learner, user 1)."""
    return _login(app, "test@example.com", LEARNER_PASSWORD)


@pytest.fixture
def admin_client(app):
    """Authenticated test client (logged in as the admin, user 2)."""
    return _login(app, "admin@example.com", ADMIN_PASSWORD)


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def catalog(app):
    """Seed the demo content catalog."""
    with app.app_context():
        from database import get_db
        from seed_catalog import seed
        return seed(get_db())


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_user(app):
    """Factory inserting extra users directly: make_user(name, total_xp=0, streak=0)."""
    def _make(name: str, total_xp: int = 0, streak: int = 0) -> int:
        from database import get_db
        from progression import level_for_xp

        with app.app_context():
            db = get_db()
            cur = db.execute(
                "INSERT INTO users (name, email, role, total_xp, level, streak, created_at) "
                "VALUES (?, ?, 'learner', ?, ?, ?, '2026-01-01T00:00:00+00:00')",
                (name, f"{name.lower().replace(' ', '.')}@example.com", total_xp,
                 level_for_xp(total_xp), streak),
            )
            db.commit()
            return cur.lastrowid
    return _make
