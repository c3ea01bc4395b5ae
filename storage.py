"""Storage ports for the progression core.

Components depend on these protocols, not on sqlite3. db_stores.py holds the
SQLite implementations; anything offering per-key conditional updates and
ordered range reads can stand in.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional, Protocol

from progression import (
    Achievement,
    AnswerRecord,
    LearningPath,
    QuizDefinition,
    UserStatsSnapshot,
)


class UserStore(Protocol):
    def get(self, user_id: int) -> Optional[dict[str, Any]]: ...
    def update_xp(self, user_id: int, total_xp: int, level: int, expected_version: int) -> bool: ...
    def update_streak(self, user_id: int, streak: int, longest_streak: int,
                      last_active_date: date, expected_version: int) -> bool: ...


class XpLedgerStore(Protocol):
    def record(self, user_id: int, source_type: str, source_id: str, amount: int,
               created_at: str = "") -> bool: ...


class ContentCatalog(Protocol):
    def quiz(self, quiz_id: str) -> Optional[QuizDefinition]: ...
    def lesson(self, lesson_id: str) -> Optional[dict[str, Any]]: ...
    def path(self, path_id: str) -> Optional[LearningPath]: ...
    def lessons_by_category(self) -> dict[str, int]: ...


class AttemptLog(Protocol):
    def get(self, attempt_id: str) -> Optional[dict[str, Any]]: ...
    def add(self, attempt_id: str, user_id: int, quiz_id: str, score: int, total_questions: int,
            time_spent_seconds: int, xp_earned: int, completed_at: str,
            answers: list[AnswerRecord]) -> None: ...
    def recent(self, user_id: int, limit: int = 10) -> list[dict[str, Any]]: ...
    def totals(self, user_id: int) -> dict[str, Any]: ...


class LessonCompletionStore(Protocol):
    def add(self, user_id: int, lesson_id: str, xp_earned: int, completed_at: str) -> bool: ...
    def count(self, user_id: int) -> int: ...


class AchievementStore(Protocol):
    def catalog(self) -> list[Achievement]: ...
    def unlocked_ids(self, user_id: int) -> set[str]: ...
    def unlock(self, user_id: int, achievement_id: str, unlocked_at: str) -> bool: ...
    def unlocked(self, user_id: int) -> list[dict[str, Any]]: ...


class StatsReader(Protocol):
    def snapshot(self, user_id: int, streak: int) -> UserStatsSnapshot: ...


class EnrollmentStore(Protocol):
    def ensure(self, user_id: int, path_id: str, now: str) -> None: ...
    def add_item(self, user_id: int, path_id: str, item_type: str, item_id: str, now: str) -> bool: ...
    def get(self, user_id: int, path_id: str) -> Optional[dict[str, Any]]: ...
    def items(self, user_id: int, path_id: str) -> dict[str, list[str]]: ...
    def path_ids(self, user_id: int) -> list[str]: ...


class LeaderboardSource(Protocol):
    def count(self, since: Optional[str] = None) -> int: ...
    def page(self, offset: int, limit: int, since: Optional[str] = None) -> list[dict[str, Any]]: ...
    def summary(self, since: Optional[str], today_start: str, active_since: date) -> dict[str, int]: ...
