"""
User Authentication — Flask-Login blueprint.

JSON register, login and logout routes under /api/auth. Passwords are
hashed with werkzeug.security; repeated failed logins lock the account
for a short window.
"""

from __future__ import annotations

import math
import sqlite3
from datetime import datetime, timedelta
from enum import Enum

from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db, to_timestamp, utcnow
from db_stores import UserStoreDB
from extensions import limiter

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
login_manager = LoginManager()


class Role(str, Enum):
    LEARNER = "learner"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        try:
            return cls(value)
        except ValueError:
            return cls.LEARNER


class User(UserMixin):
    """Wraps a DB user row for Flask-Login. The role is resolved once, here."""

    def __init__(self, id: int, name: str, email: str, role: Role = Role.LEARNER):
        self.id = id
        self.name = name
        self.email = email
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @staticmethod
    def get(user_id: int):
        row = get_db().execute(
            "SELECT id, name, email, role FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], Role.parse(row["role"]))
        return None

    @staticmethod
    def get_by_email(email: str):
        return get_db().execute(
            "SELECT id, name, email, password_hash, role, login_attempts, locked_until "
            "FROM users WHERE email = ?", (email,),
        ).fetchone()

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role.value}


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isalpha() for c in password):
        return "Password must contain at least one letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _lock_remaining(row) -> float:
    if not row["locked_until"]:
        return 0
    try:
        lock_time = datetime.fromisoformat(row["locked_until"])
    except ValueError:
        return 0
    return (lock_time - utcnow()).total_seconds()


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per hour")
def register():
    data = request.get_json(silent=True) or {}
    name = str(data.get("name", "")).strip()
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    if not name or not email or not password:
        return jsonify({"error": "name, email and password are required"}), 400

    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    if User.get_by_email(email):
        return jsonify({"error": "An account with this email already exists."}), 409

    db = get_db()
    try:
        user_id = UserStoreDB().create(
            name, email, generate_password_hash(password), Role.LEARNER.value,
            to_timestamp(utcnow()),
        )
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        return jsonify({"error": "An account with this email already exists."}), 409

    log_event("register", user_id, f"email={email}")
    user = User(user_id, name, email)
    login_user(user, remember=True)
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = User.get_by_email(email)
    if not row:
        return jsonify({"error": "Invalid email or password."}), 401

    remaining = _lock_remaining(row)
    if remaining > 0:
        log_event("login_locked", row["id"], f"email={email}")
        mins = math.ceil(remaining / 60)
        return jsonify({"error": f"Account temporarily locked. Try again in {mins} minute(s)."}), 423

    db = get_db()
    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        attempts = row["login_attempts"] + 1
        locked_until = ""
        if attempts >= LOCKOUT_THRESHOLD:
            locked_until = to_timestamp(utcnow() + timedelta(minutes=LOCKOUT_MINUTES))
        db.execute(
            "UPDATE users SET login_attempts = ?, locked_until = ? WHERE id = ?",
            (attempts, locked_until, row["id"]),
        )
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return jsonify({"error": "Invalid email or password."}), 401

    db.execute("UPDATE users SET login_attempts = 0, locked_until = '' WHERE id = ?", (row["id"],))
    db.commit()

    user = User(row["id"], row["name"], row["email"], Role.parse(row["role"]))
    login_user(user, remember=True)
    log_event("login_success", row["id"])
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", current_user.id)
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})
