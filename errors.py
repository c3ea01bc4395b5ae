"""
Progression error taxonomy.

Every error raised by the progression core derives from ProgressionError so
the HTTP layer can map the whole family to JSON responses in one place.
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for progression core errors."""

    status_code = 500


class InvalidSubmission(ProgressionError):
    """Malformed or referentially inconsistent input. Nothing was written."""

    status_code = 400


class EntityNotFound(ProgressionError):
    """Unknown user, quiz, lesson, path or achievement id."""

    status_code = 404

    def __init__(self, kind: str, entity_id, detail: str = ""):
        self.kind = kind
        self.entity_id = entity_id
        message = f"{kind} {entity_id!r} not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UserNotFound(EntityNotFound):
    def __init__(self, user_id):
        super().__init__("user", user_id)


class ConcurrencyConflict(ProgressionError):
    """An optimistic update lost the race against a concurrent writer."""

    status_code = 503
