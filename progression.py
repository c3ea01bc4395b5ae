"""
Progression rules — dataclasses and pure functions.

Everything here is storage-free: level math, quiz scoring, the streak rule
and path percent-complete. Derived values (level, percent, rank) are computed
here and nowhere else.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional

from errors import InvalidSubmission

XP_PER_CORRECT_ANSWER = 10
XP_PER_LEVEL = 100
DEFAULT_LESSON_XP = 10


# ── Levels ─────────────────────────────────────────────────────────


def level_for_xp(total_xp: int) -> int:
    """Level is floor(total_xp / 100) + 1."""
    return total_xp // XP_PER_LEVEL + 1


def xp_for_level(level: int) -> int:
    """Total XP at which ``level`` starts."""
    return (level - 1) * XP_PER_LEVEL


def level_progress(total_xp: int) -> dict:
    level = level_for_xp(total_xp)
    start = xp_for_level(level)
    end = xp_for_level(level + 1)
    return {
        "level": level,
        "xp_into_level": total_xp - start,
        "xp_for_next_level": end,
        "xp_to_next_level": end - total_xp,
        "level_progress_pct": min(100, int((total_xp - start) / (end - start) * 100)),
    }


# ── Quiz scoring ───────────────────────────────────────────────────


@dataclass
class QuizQuestion:
    id: str
    option_ids: list[str]
    correct_option_id: str
    text: str = ""


@dataclass
class QuizDefinition:
    id: str
    title: str
    questions: list[QuizQuestion]
    category_id: str = ""
    difficulty: str = ""


@dataclass
class AnswerRecord:
    question_id: str
    chosen_option_id: Optional[str]
    is_correct: bool


@dataclass
class QuizScore:
    score: int
    total_questions: int
    xp_earned: int
    answers: list[AnswerRecord] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        if self.total_questions <= 0:
            return 0
        return round(self.score / self.total_questions * 100)

    @property
    def is_perfect(self) -> bool:
        return self.total_questions > 0 and self.score == self.total_questions


class ScoreCalculator:
    """Turns a submission into a score. One flat XP amount per correct answer."""

    def __init__(self, xp_per_correct: int = XP_PER_CORRECT_ANSWER):
        self.xp_per_correct = xp_per_correct

    def score(self, quiz: QuizDefinition, answers: Mapping[str, str]) -> QuizScore:
        by_id = {q.id: q for q in quiz.questions}
        for question_id, option_id in answers.items():
            question = by_id.get(question_id)
            if question is None:
                raise InvalidSubmission(
                    f"Question {question_id!r} is not part of quiz {quiz.id!r}"
                )
            if option_id is not None and option_id not in question.option_ids:
                raise InvalidSubmission(
                    f"Option {option_id!r} does not belong to question {question_id!r}"
                )

        records = []
        correct = 0
        # Answer records follow quiz order; unanswered questions count as wrong.
        for question in quiz.questions:
            chosen = answers.get(question.id)
            is_correct = chosen is not None and chosen == question.correct_option_id
            if is_correct:
                correct += 1
            records.append(AnswerRecord(question.id, chosen, is_correct))

        return QuizScore(
            score=correct,
            total_questions=len(quiz.questions),
            xp_earned=correct * self.xp_per_correct,
            answers=records,
        )


OPTION_KEYS = ("optionId", "option_id", "chosenOptionId")


def normalize_answers(raw: Any) -> dict[str, str]:
    """Accept ``{questionId: optionId}`` or ``[{questionId, optionId}, ...]``.

    A null option means the question was skipped and is left out.
    """
    if isinstance(raw, Mapping):
        return {str(k): str(v) for k, v in raw.items() if v is not None}
    if not isinstance(raw, list):
        raise InvalidSubmission("answers must be an object or a list")

    answers: dict[str, str] = {}
    for item in raw:
        if not isinstance(item, Mapping):
            raise InvalidSubmission("each answer must be an object")
        question_id = item.get("questionId", item.get("question_id"))
        option_key = next((k for k in OPTION_KEYS if k in item), None)
        if question_id is None or option_key is None:
            raise InvalidSubmission("each answer needs questionId and optionId")
        option_id = item[option_key]
        question_id = str(question_id)
        if question_id in answers:
            raise InvalidSubmission(f"Question {question_id!r} answered more than once")
        if option_id is None:
            continue
        answers[question_id] = str(option_id)
    return answers


# ── Streaks ────────────────────────────────────────────────────────


def next_streak(streak: int, last_active: Optional[date], activity: date) -> tuple[int, date]:
    """Return (streak, last_active_date) after recording activity on ``activity``.

    Same day is a no-op, the next day extends, a gap resets to 1 and an
    out-of-order earlier date changes nothing.
    """
    if last_active is None:
        return 1, activity
    if activity <= last_active:
        return streak, last_active
    if activity == last_active + timedelta(days=1):
        return streak + 1, activity
    return 1, activity


# ── Learning paths ────────────────────────────────────────────────


def percent_complete(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return max(0, min(100, round(completed / total * 100)))


@dataclass
class LearningPath:
    id: str
    title: str
    lesson_ids: list[str] = field(default_factory=list)
    quiz_ids: list[str] = field(default_factory=list)
    difficulty: str = ""


@dataclass
class PathProgress:
    user_id: int
    path_id: str
    total_lessons: int
    total_quizzes: int
    completed_lesson_ids: list[str] = field(default_factory=list)
    completed_quiz_ids: list[str] = field(default_factory=list)
    started_at: str = ""
    last_activity_at: str = ""

    @property
    def completed_lessons(self) -> int:
        return len(self.completed_lesson_ids)

    @property
    def completed_quizzes(self) -> int:
        return len(self.completed_quiz_ids)

    @property
    def percent_complete(self) -> int:
        return percent_complete(
            self.completed_lessons + self.completed_quizzes,
            self.total_lessons + self.total_quizzes,
        )

    def to_dict(self) -> dict:
        return {
            "pathId": self.path_id,
            "percentComplete": self.percent_complete,
            "completedLessonIds": list(self.completed_lesson_ids),
            "completedQuizIds": list(self.completed_quiz_ids),
            "lessons": {"completed": self.completed_lessons, "total": self.total_lessons},
            "quizzes": {"completed": self.completed_quizzes, "total": self.total_quizzes},
            "startedAt": self.started_at,
            "lastActivityAt": self.last_activity_at,
        }


# ── Achievements ──────────────────────────────────────────────────


@dataclass
class Achievement:
    id: str
    title: str
    xp_reward: int
    condition: dict
    description: str = ""
    icon: str = ""

    @staticmethod
    def parse_condition(raw: Any) -> dict:
        """Conditions are stored as JSON text; bad JSON yields an empty dict."""
        if isinstance(raw, dict):
            return raw
        try:
            parsed = json.loads(raw or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "xpReward": self.xp_reward,
        }


@dataclass
class UserStatsSnapshot:
    """Cumulative stats that achievement conditions are evaluated against."""

    user_id: int
    quiz_attempts: int = 0
    lessons_completed: int = 0
    completed_by_category: dict[str, int] = field(default_factory=dict)
    lessons_by_category: dict[str, int] = field(default_factory=dict)
    streak: int = 0
    has_perfect_score: bool = False
    fastest_attempt_seconds: Optional[int] = None


# ── Leaderboard ───────────────────────────────────────────────────


@dataclass
class LeaderboardEntry:
    user_id: int
    display_name: str
    total_xp: int
    streak: int
    rank: int
    completed_lessons: int = 0
    quizzes_taken: int = 0
    average_score: int = 0
    study_time_seconds: int = 0
    achievements_unlocked: int = 0
    badges: list[str] = field(default_factory=list)

    @property
    def level(self) -> int:
        return level_for_xp(self.total_xp)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.display_name or "Anonymous User",
            "totalXp": self.total_xp,
            "level": self.level,
            "streak": self.streak,
            "rank": self.rank,
            "completedLessons": self.completed_lessons,
            "quizScore": self.average_score,
            "badges": self.badges,
            "stats": {
                "totalQuizzesTaken": self.quizzes_taken,
                "totalStudyTime": self.study_time_seconds,
                "achievementsUnlocked": self.achievements_unlocked,
            },
        }


@dataclass
class LeaderboardStats:
    """Board-wide counters shown above the ranking."""

    total_users: int = 0
    active_users_this_week: int = 0
    quizzes_today: int = 0
    xp_earned_today: int = 0

    def to_dict(self) -> dict:
        return {
            "totalUsers": self.total_users,
            "activeUsersThisWeek": self.active_users_this_week,
            "totalQuizzesToday": self.quizzes_today,
            "totalXpEarnedToday": self.xp_earned_today,
        }


@dataclass
class LeaderboardPage:
    entries: list[LeaderboardEntry]
    total_count: int
    page: int
    page_size: int
    timeframe: str
    stats: LeaderboardStats = field(default_factory=LeaderboardStats)

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size))
