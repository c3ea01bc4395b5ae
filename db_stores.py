"""
DB-backed store classes for the progression service.

Each class implements one of the ports in storage.py on top of SQLite.
Stores never commit: the caller owns the transaction (see
database.transaction), so one progression event commits or rolls back
as a unit.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Optional

from database import get_db
from errors import ConcurrencyConflict
from progression import (
    DEFAULT_LESSON_XP,
    Achievement,
    AnswerRecord,
    LearningPath,
    QuizDefinition,
    QuizQuestion,
    UserStatsSnapshot,
)


_ATTEMPT_PERCENT = "CASE WHEN total_questions > 0 THEN score * 100.0 / total_questions ELSE 0 END"


# ── Users ────────────────────────────────────────────────────────────


class UserStoreDB:
    """Users table: identity plus raw progression counters."""

    def get(self, user_id: int) -> Optional[dict[str, Any]]:
        db = get_db()
        row = db.execute(
            "SELECT id, name, email, role, total_xp, level, streak, longest_streak, "
            "last_active_date, version, created_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        user = dict(row)
        if user["last_active_date"]:
            user["last_active_date"] = date.fromisoformat(user["last_active_date"])
        return user

    def create(self, name: str, email: str, password_hash: str, role: str, created_at: str) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO users (name, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (name, email, password_hash, role, created_at),
        )
        return cur.lastrowid

    def update_xp(self, user_id: int, total_xp: int, level: int, expected_version: int) -> bool:
        """Conditional write keyed on version. False means another writer won."""
        db = get_db()
        cur = db.execute(
            "UPDATE users SET total_xp = ?, level = ?, version = version + 1 "
            "WHERE id = ? AND version = ?",
            (total_xp, level, user_id, expected_version),
        )
        return cur.rowcount == 1

    def update_streak(self, user_id: int, streak: int, longest_streak: int,
                      last_active_date: date, expected_version: int) -> bool:
        db = get_db()
        cur = db.execute(
            "UPDATE users SET streak = ?, longest_streak = ?, last_active_date = ?, "
            "version = version + 1 WHERE id = ? AND version = ?",
            (streak, longest_streak, last_active_date.isoformat(), user_id, expected_version),
        )
        return cur.rowcount == 1


# ── XP ledger ────────────────────────────────────────────────────────


class XpLedgerDB:
    """Which sources have already paid out XP for a user."""

    def record(self, user_id: int, source_type: str, source_id: str, amount: int,
               created_at: str = "") -> bool:
        """Insert the reward marker. False if this source was already rewarded."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO xp_ledger (user_id, source_type, source_id, amount, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, source_type, str(source_id), amount, created_at),
        )
        return cur.rowcount == 1


# ── Content catalog ──────────────────────────────────────────────────


class ContentCatalogDB:
    """Read-only lookups into lessons, quizzes and learning paths."""

    def __init__(self, default_lesson_xp: int = DEFAULT_LESSON_XP):
        self.default_lesson_xp = default_lesson_xp

    def quiz(self, quiz_id: str) -> Optional[QuizDefinition]:
        db = get_db()
        quiz = db.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
        if not quiz:
            return None
        rows = db.execute(
            "SELECT q.id AS question_id, q.text AS question_text, o.id AS option_id, o.is_correct "
            "FROM questions q LEFT JOIN question_options o ON o.question_id = q.id "
            "WHERE q.quiz_id = ? ORDER BY q.position, q.id, o.rowid",
            (quiz_id,),
        ).fetchall()
        questions: dict[str, QuizQuestion] = {}
        for r in rows:
            question = questions.get(r["question_id"])
            if question is None:
                question = QuizQuestion(
                    id=r["question_id"], option_ids=[], correct_option_id="",
                    text=r["question_text"],
                )
                questions[r["question_id"]] = question
            if r["option_id"] is None:
                continue
            question.option_ids.append(r["option_id"])
            if r["is_correct"]:
                question.correct_option_id = r["option_id"]
        return QuizDefinition(
            id=quiz["id"], title=quiz["title"], questions=list(questions.values()),
            category_id=quiz["category_id"], difficulty=quiz["difficulty"],
        )

    def quiz_for_display(self, quiz_id: str) -> Optional[dict]:
        """Quiz with questions and options, without revealing correct answers."""
        db = get_db()
        quiz = db.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
        if not quiz:
            return None
        questions = []
        for q in db.execute(
            "SELECT id, text FROM questions WHERE quiz_id = ? ORDER BY position, id", (quiz_id,)
        ).fetchall():
            options = db.execute(
                "SELECT id, text FROM question_options WHERE question_id = ? ORDER BY rowid",
                (q["id"],),
            ).fetchall()
            questions.append({
                "id": q["id"],
                "text": q["text"],
                "options": [{"id": o["id"], "text": o["text"]} for o in options],
            })
        return {
            "id": quiz["id"],
            "title": quiz["title"],
            "categoryId": quiz["category_id"],
            "difficulty": quiz["difficulty"],
            "questions": questions,
        }

    def lesson(self, lesson_id: str) -> Optional[dict[str, Any]]:
        db = get_db()
        row = db.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
        if not row:
            return None
        lesson = dict(row)
        if lesson["xp_reward"] is None:
            lesson["xp_reward"] = self.default_lesson_xp
        return lesson

    def path(self, path_id: str) -> Optional[LearningPath]:
        db = get_db()
        row = db.execute("SELECT * FROM learning_paths WHERE id = ?", (path_id,)).fetchone()
        if not row:
            return None
        items = db.execute(
            "SELECT item_type, item_id FROM path_items WHERE path_id = ? ORDER BY position, item_id",
            (path_id,),
        ).fetchall()
        return LearningPath(
            id=row["id"],
            title=row["title"],
            difficulty=row["difficulty"],
            lesson_ids=[i["item_id"] for i in items if i["item_type"] == "lesson"],
            quiz_ids=[i["item_id"] for i in items if i["item_type"] == "quiz"],
        )

    def lessons_by_category(self) -> dict[str, int]:
        db = get_db()
        rows = db.execute(
            "SELECT category_id, COUNT(*) AS cnt FROM lessons WHERE is_published = 1 "
            "GROUP BY category_id"
        ).fetchall()
        return {r["category_id"]: r["cnt"] for r in rows}


# ── Quiz attempts ────────────────────────────────────────────────────


class QuizAttemptLogDB:
    """Append-only quiz attempt log."""

    def get(self, attempt_id: str) -> Optional[dict[str, Any]]:
        db = get_db()
        row = db.execute("SELECT * FROM quiz_attempts WHERE id = ?", (attempt_id,)).fetchone()
        return dict(row) if row else None

    def add(self, attempt_id: str, user_id: int, quiz_id: str, score: int, total_questions: int,
            time_spent_seconds: int, xp_earned: int, completed_at: str,
            answers: list[AnswerRecord]) -> None:
        db = get_db()
        try:
            db.execute(
                "INSERT INTO quiz_attempts (id, user_id, quiz_id, score, total_questions, "
                "time_spent_seconds, xp_earned, completed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (attempt_id, user_id, quiz_id, score, total_questions,
                 time_spent_seconds, xp_earned, completed_at),
            )
        except sqlite3.IntegrityError as exc:
            # Same attempt id committed by a concurrent request; a retry replays it.
            raise ConcurrencyConflict(f"Attempt {attempt_id} was recorded concurrently") from exc
        db.executemany(
            "INSERT INTO attempt_answers (attempt_id, question_id, chosen_option_id, is_correct, position) "
            "VALUES (?, ?, ?, ?, ?)",
            [
                (attempt_id, a.question_id, a.chosen_option_id, int(a.is_correct), i)
                for i, a in enumerate(answers)
            ],
        )

    def answers(self, attempt_id: str) -> list[AnswerRecord]:
        db = get_db()
        rows = db.execute(
            "SELECT question_id, chosen_option_id, is_correct FROM attempt_answers "
            "WHERE attempt_id = ? ORDER BY position",
            (attempt_id,),
        ).fetchall()
        return [AnswerRecord(r["question_id"], r["chosen_option_id"], bool(r["is_correct"])) for r in rows]

    def recent(self, user_id: int, limit: int = 10) -> list[dict[str, Any]]:
        db = get_db()
        rows = db.execute(
            "SELECT a.*, q.title AS quiz_title FROM quiz_attempts a "
            "LEFT JOIN quizzes q ON q.id = a.quiz_id "
            "WHERE a.user_id = ? ORDER BY a.completed_at DESC, a.rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def totals(self, user_id: int) -> dict[str, Any]:
        """Attempt count, mean percentage and summed time spent."""
        db = get_db()
        row = db.execute(
            f"SELECT COUNT(*) AS quizzes_taken, AVG({_ATTEMPT_PERCENT}) AS average_score, "
            "COALESCE(SUM(time_spent_seconds), 0) AS study_time_seconds "
            "FROM quiz_attempts WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return dict(row)


# ── Lesson completions ───────────────────────────────────────────────


class LessonCompletionStoreDB:
    def add(self, user_id: int, lesson_id: str, xp_earned: int, completed_at: str) -> bool:
        """Record first completion. False if the lesson was already completed."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO lesson_completions (user_id, lesson_id, xp_earned, completed_at) "
            "VALUES (?, ?, ?, ?)",
            (user_id, lesson_id, xp_earned, completed_at),
        )
        return cur.rowcount == 1

    def count(self, user_id: int) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM lesson_completions WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["cnt"]


# ── Achievements ─────────────────────────────────────────────────────


class AchievementStoreDB:
    """Achievement catalog plus the per-user unlock set."""

    def catalog(self) -> list[Achievement]:
        db = get_db()
        rows = db.execute("SELECT * FROM achievements ORDER BY rowid").fetchall()
        return [self._row_to_achievement(r) for r in rows]

    def unlocked_ids(self, user_id: int) -> set[str]:
        db = get_db()
        rows = db.execute(
            "SELECT achievement_id FROM user_achievements WHERE user_id = ?", (user_id,)
        ).fetchall()
        return {r["achievement_id"] for r in rows}

    def unlock(self, user_id: int, achievement_id: str, unlocked_at: str) -> bool:
        """Insert the unlock. False if it already existed."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, unlocked_at) "
            "VALUES (?, ?, ?)",
            (user_id, achievement_id, unlocked_at),
        )
        return cur.rowcount == 1

    def unlocked(self, user_id: int) -> list[dict[str, Any]]:
        db = get_db()
        rows = db.execute(
            "SELECT a.*, ua.unlocked_at FROM user_achievements ua "
            "JOIN achievements a ON a.id = ua.achievement_id "
            "WHERE ua.user_id = ? ORDER BY ua.unlocked_at, a.rowid",
            (user_id,),
        ).fetchall()
        result = []
        for r in rows:
            entry = self._row_to_achievement(r).to_dict()
            entry["unlockedAt"] = r["unlocked_at"]
            result.append(entry)
        return result

    def _row_to_achievement(self, r: sqlite3.Row) -> Achievement:
        return Achievement(
            id=r["id"],
            title=r["title"],
            description=r["description"],
            icon=r["icon"],
            xp_reward=r["xp_reward"],
            condition=Achievement.parse_condition(r["condition"]),
        )


class UserStatsReaderDB:
    """Builds the per-user half of the snapshot achievement conditions read.

    Catalog totals per category come from the content catalog.
    """

    def snapshot(self, user_id: int, streak: int) -> UserStatsSnapshot:
        db = get_db()
        attempts = db.execute(
            "SELECT COUNT(*) AS cnt, "
            "MAX(CASE WHEN total_questions > 0 AND score = total_questions THEN 1 ELSE 0 END) AS perfect, "
            "MIN(time_spent_seconds) AS fastest "
            "FROM quiz_attempts WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        lessons_done = db.execute(
            "SELECT COUNT(*) AS cnt FROM lesson_completions WHERE user_id = ?", (user_id,)
        ).fetchone()
        by_category = db.execute(
            "SELECT l.category_id, COUNT(*) AS cnt FROM lesson_completions lc "
            "JOIN lessons l ON l.id = lc.lesson_id "
            "WHERE lc.user_id = ? AND l.is_published = 1 GROUP BY l.category_id",
            (user_id,),
        ).fetchall()
        return UserStatsSnapshot(
            user_id=user_id,
            quiz_attempts=attempts["cnt"],
            lessons_completed=lessons_done["cnt"],
            completed_by_category={r["category_id"]: r["cnt"] for r in by_category},
            streak=streak,
            has_perfect_score=bool(attempts["perfect"]),
            fastest_attempt_seconds=attempts["fastest"],
        )


# ── Learning path enrollments ────────────────────────────────────────


class PathEnrollmentStoreDB:
    """Enrollment rows plus the completed-item set per enrollment."""

    def ensure(self, user_id: int, path_id: str, now: str) -> None:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO path_enrollments (user_id, path_id, started_at, last_activity_at) "
            "VALUES (?, ?, ?, ?)",
            (user_id, path_id, now, now),
        )

    def add_item(self, user_id: int, path_id: str, item_type: str, item_id: str, now: str) -> bool:
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO enrollment_items (user_id, path_id, item_type, item_id, completed_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, path_id, item_type, item_id, now),
        )
        added = cur.rowcount == 1
        if added:
            db.execute(
                "UPDATE path_enrollments SET last_activity_at = ? WHERE user_id = ? AND path_id = ?",
                (now, user_id, path_id),
            )
        return added

    def get(self, user_id: int, path_id: str) -> Optional[dict[str, Any]]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM path_enrollments WHERE user_id = ? AND path_id = ?",
            (user_id, path_id),
        ).fetchone()
        return dict(row) if row else None

    def items(self, user_id: int, path_id: str) -> dict[str, list[str]]:
        db = get_db()
        rows = db.execute(
            "SELECT item_type, item_id FROM enrollment_items WHERE user_id = ? AND path_id = ? "
            "ORDER BY completed_at, item_id",
            (user_id, path_id),
        ).fetchall()
        result: dict[str, list[str]] = {"lesson": [], "quiz": []}
        for r in rows:
            result[r["item_type"]].append(r["item_id"])
        return result

    def path_ids(self, user_id: int) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT path_id FROM path_enrollments WHERE user_id = ? ORDER BY last_activity_at DESC",
            (user_id,),
        ).fetchall()
        return [r["path_id"] for r in rows]


# ── Leaderboard ──────────────────────────────────────────────────────


class LeaderboardStoreDB:
    """Range reads over users ordered by all-time XP, ties by id."""

    _ACTIVE_SINCE = (
        "EXISTS (SELECT 1 FROM quiz_attempts qa "
        "WHERE qa.user_id = users.id AND qa.completed_at >= ?)"
    )

    def count(self, since: Optional[str] = None) -> int:
        db = get_db()
        if since is None:
            row = db.execute("SELECT COUNT(*) AS cnt FROM users").fetchone()
        else:
            row = db.execute(
                f"SELECT COUNT(*) AS cnt FROM users WHERE {self._ACTIVE_SINCE}", (since,)
            ).fetchone()
        return row["cnt"]

    def page(self, offset: int, limit: int, since: Optional[str] = None) -> list[dict[str, Any]]:
        """One page of users with their lesson, quiz and achievement aggregates.

        Quiz aggregates cover only attempts inside the window when ``since``
        is given; lesson and achievement counts are all-time.
        """
        db = get_db()
        where, params = "", []
        if since is not None:
            where, params = f"WHERE {self._ACTIVE_SINCE}", [since]
        rows = [
            dict(r) for r in db.execute(
                f"SELECT id AS user_id, name, total_xp, streak FROM users {where} "
                "ORDER BY total_xp DESC, id ASC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        ]
        if not rows:
            return rows

        ids = [r["user_id"] for r in rows]
        marks = ", ".join("?" * len(ids))
        window, window_params = "", []
        if since is not None:
            window, window_params = " AND completed_at >= ?", [since]

        quizzes = {
            r["user_id"]: r for r in db.execute(
                f"SELECT user_id, COUNT(*) AS quizzes_taken, AVG({_ATTEMPT_PERCENT}) AS average_score, "
                "COALESCE(SUM(time_spent_seconds), 0) AS study_time_seconds "
                f"FROM quiz_attempts WHERE user_id IN ({marks}){window} GROUP BY user_id",
                (*ids, *window_params),
            ).fetchall()
        }
        lessons = {
            r["user_id"]: r["cnt"] for r in db.execute(
                f"SELECT user_id, COUNT(*) AS cnt FROM lesson_completions "
                f"WHERE user_id IN ({marks}) GROUP BY user_id",
                ids,
            ).fetchall()
        }
        badges: dict[int, list[str]] = {}
        for r in db.execute(
            "SELECT ua.user_id, a.icon FROM user_achievements ua "
            "JOIN achievements a ON a.id = ua.achievement_id "
            f"WHERE ua.user_id IN ({marks}) ORDER BY ua.unlocked_at, a.id",
            ids,
        ).fetchall():
            badges.setdefault(r["user_id"], []).append(r["icon"])

        for row in rows:
            quiz = quizzes.get(row["user_id"])
            row["completed_lessons"] = lessons.get(row["user_id"], 0)
            row["quizzes_taken"] = quiz["quizzes_taken"] if quiz else 0
            row["average_score"] = quiz["average_score"] if quiz else None
            row["study_time_seconds"] = quiz["study_time_seconds"] if quiz else 0
            row["badges"] = badges.get(row["user_id"], [])
        return rows

    def summary(self, since: Optional[str], today_start: str, active_since: date) -> dict[str, int]:
        """Board-wide counters: ranked users, weekly actives, today's quizzes and XP."""
        db = get_db()
        active = db.execute(
            "SELECT COUNT(*) AS cnt FROM users WHERE last_active_date >= ?",
            (active_since.isoformat(),),
        ).fetchone()
        quizzes = db.execute(
            "SELECT COUNT(*) AS cnt FROM quiz_attempts WHERE completed_at >= ?", (today_start,)
        ).fetchone()
        xp = db.execute(
            "SELECT COALESCE(SUM(amount), 0) AS total FROM xp_ledger WHERE created_at >= ?",
            (today_start,),
        ).fetchone()
        return {
            "total_users": self.count(since),
            "active_users_this_week": active["cnt"],
            "quizzes_today": quizzes["cnt"],
            "xp_earned_today": xp["total"],
        }
