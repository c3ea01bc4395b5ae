"""
Progression service — the public entry point of the progression core.

Each mutating call runs as one transaction: score, XP, streak, path progress
and achievement unlocks commit together or not at all. A ConcurrencyConflict
rolls the transaction back and the whole event is retried with tenacity.
Domain events are published only after a successful commit.

Usage:
    from service import init_progression, get_service
    init_progression(app)            # called once in create_app()
    result = get_service().submit_quiz_attempt(user_id, quiz_id, answers, 42)
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from flask import current_app
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from achievements import AchievementEvaluator
from database import get_db, to_timestamp, transaction, utcnow
from db_stores import (
    AchievementStoreDB,
    ContentCatalogDB,
    LeaderboardStoreDB,
    LessonCompletionStoreDB,
    PathEnrollmentStoreDB,
    QuizAttemptLogDB,
    UserStatsReaderDB,
    UserStoreDB,
    XpLedgerDB,
)
from errors import ConcurrencyConflict, EntityNotFound, InvalidSubmission, UserNotFound
from events import (
    AchievementUnlocked,
    EventBus,
    LevelUp,
    StreakChanged,
    XpChanged,
    install_logging_subscriber,
)
from leaderboard import LeaderboardRanker
from ledger import ProgressionLedger, StreakResult, StreakTracker
from paths import PathProgressTracker
from progression import (
    DEFAULT_LESSON_XP,
    XP_PER_CORRECT_ANSWER,
    Achievement,
    LeaderboardPage,
    PathProgress,
    ScoreCalculator,
    level_for_xp,
    level_progress,
)

logger = logging.getLogger(__name__)


@dataclass
class QuizSubmissionResult:
    attempt_id: str
    score: int
    total_questions: int
    percentage: int
    xp_earned: int
    new_total_xp: int
    new_level: int
    leveled_up: bool
    streak: int
    newly_unlocked_achievements: list[Achievement] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "attemptId": self.attempt_id,
            "score": self.score,
            "totalQuestions": self.total_questions,
            "percentage": self.percentage,
            "xpEarned": self.xp_earned,
            "newTotalXp": self.new_total_xp,
            "newLevel": self.new_level,
            "leveledUp": self.leveled_up,
            "streak": self.streak,
            "newlyUnlockedAchievements": [a.to_dict() for a in self.newly_unlocked_achievements],
            "replayed": self.replayed,
        }


@dataclass
class LessonCompletionResult:
    lesson_id: str
    xp_earned: int
    new_total_xp: int
    new_level: int
    leveled_up: bool
    streak: int
    already_completed: bool
    newly_unlocked_achievements: list[Achievement] = field(default_factory=list)
    path_progress: Optional[PathProgress] = None

    def to_dict(self) -> dict:
        return {
            "lessonId": self.lesson_id,
            "xpEarned": self.xp_earned,
            "newTotalXp": self.new_total_xp,
            "newLevel": self.new_level,
            "leveledUp": self.leveled_up,
            "streak": self.streak,
            "alreadyCompleted": self.already_completed,
            "newlyUnlockedAchievements": [a.to_dict() for a in self.newly_unlocked_achievements],
            "pathProgress": self.path_progress.to_dict() if self.path_progress else None,
        }


@dataclass
class UserStats:
    user_id: int
    display_name: str
    total_xp: int
    streak: int
    longest_streak: int
    last_active_date: Optional[str]
    quizzes_taken: int
    lessons_completed: int
    average_score: int = 0
    study_time_seconds: int = 0
    achievements_unlocked: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        progress = level_progress(self.total_xp)
        return {
            "userId": self.user_id,
            "name": self.display_name,
            "totalXp": self.total_xp,
            "level": progress["level"],
            "xpIntoLevel": progress["xp_into_level"],
            "xpForNextLevel": progress["xp_for_next_level"],
            "xpToNextLevel": progress["xp_to_next_level"],
            "levelProgressPct": progress["level_progress_pct"],
            "streak": self.streak,
            "longestStreak": self.longest_streak,
            "lastActiveDate": self.last_active_date,
            "quizzesTaken": self.quizzes_taken,
            "lessonsCompleted": self.lessons_completed,
            "averageScore": self.average_score,
            "totalStudyTime": self.study_time_seconds,
            "achievementsUnlocked": self.achievements_unlocked,
        }


def _rewards(unlocked: list[Achievement]) -> int:
    return sum(a.xp_reward for a in unlocked)


class ProgressionService:
    """Orchestrates scoring, XP, streaks, path progress and achievements."""

    def __init__(
        self,
        *,
        users=None,
        xp_ledger=None,
        catalog=None,
        attempts=None,
        lesson_completions=None,
        achievements=None,
        stats=None,
        enrollments=None,
        leaderboard=None,
        events: Optional[EventBus] = None,
        xp_per_correct: int = XP_PER_CORRECT_ANSWER,
        default_lesson_xp: int = DEFAULT_LESSON_XP,
        max_attempts: int = 5,
        retry_wait: float = 0.05,
        clock: Callable[[], datetime] = utcnow,
        connect: Callable = get_db,
    ):
        self.users = users or UserStoreDB()
        self.catalog = catalog or ContentCatalogDB(default_lesson_xp)
        self.attempts = attempts or QuizAttemptLogDB()
        self.lesson_completions = lesson_completions or LessonCompletionStoreDB()
        self.achievement_store = achievements or AchievementStoreDB()
        self.events = events or EventBus()
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.clock = clock
        self.connect = connect

        self.scorer = ScoreCalculator(xp_per_correct)
        self.ledger = ProgressionLedger(self.users, xp_ledger or XpLedgerDB(), clock)
        self.streaks = StreakTracker(self.users)
        self.evaluator = AchievementEvaluator(
            self.achievement_store, stats or UserStatsReaderDB(), self.catalog, self.ledger, clock
        )
        self.paths = PathProgressTracker(self.catalog, enrollments or PathEnrollmentStoreDB(), clock)
        self.ranker = LeaderboardRanker(leaderboard or LeaderboardStoreDB(), clock)

    # ── Transaction + retry boundary ─────────────────────────────

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(ConcurrencyConflict),
            wait=wait_exponential(multiplier=self.retry_wait, max=1),
            stop=stop_after_attempt(self.max_attempts),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _execute(self, operation: Callable, *args, **kwargs):
        """Run ``operation`` in a transaction, retrying lost races.

        ``operation`` returns ``(result, events)``; events are published once
        the final attempt has committed.
        """
        def attempt():
            with transaction(self.connect()):
                return operation(*args, **kwargs)

        result, events = self._retrying()(attempt)
        self.events.publish_all(events)
        return result

    def _now(self) -> datetime:
        now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def _require_user(self, user_id: int) -> dict[str, Any]:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    @staticmethod
    def _previous_total(after: dict, gained: int) -> int:
        """Total XP just before this event.

        Derived from the totals read after this transaction's own writes, never
        from an earlier read: XP another request committed in between is not
        counted as ours.
        """
        return after["total_xp"] - gained

    def _collect_events(self, after: dict, gained: int, source_type: str, source_id: str,
                        streak: Optional[StreakResult], unlocked: list[Achievement]) -> list:
        user_id = after["id"]
        previous = self._previous_total(after, gained)
        events: list = []
        if gained:
            events.append(XpChanged(user_id, previous, after["total_xp"], source_type, source_id))
        old_level, new_level = level_for_xp(previous), level_for_xp(after["total_xp"])
        if new_level > old_level:
            events.append(LevelUp(user_id, old_level, new_level))
        if streak is not None and streak.changed:
            events.append(StreakChanged(user_id, streak.streak))
        for a in unlocked:
            events.append(AchievementUnlocked(user_id, a.id, a.title, a.xp_reward))
        return events

    # ── Quiz submission ──────────────────────────────────────────

    def submit_quiz_attempt(self, user_id: int, quiz_id: str, answers: Mapping[str, str],
                            time_spent_seconds: int, attempt_id: Optional[str] = None,
                            path_id: Optional[str] = None) -> QuizSubmissionResult:
        if isinstance(time_spent_seconds, bool) or not isinstance(time_spent_seconds, int):
            raise InvalidSubmission("timeSpentSeconds must be an integer")
        if time_spent_seconds < 0:
            raise InvalidSubmission("timeSpentSeconds must be non-negative")
        return self._execute(
            self._submit_quiz_attempt, user_id, quiz_id, dict(answers),
            time_spent_seconds, attempt_id, path_id,
        )

    def _submit_quiz_attempt(self, user_id, quiz_id, answers, time_spent_seconds,
                             attempt_id, path_id):
        user = self._require_user(user_id)

        if attempt_id:
            existing = self.attempts.get(attempt_id)
            if existing is not None:
                if existing["user_id"] != user_id:
                    raise InvalidSubmission(f"Attempt id {attempt_id!r} is already in use")
                return self._replay(user, existing), []

        quiz = self.catalog.quiz(quiz_id)
        if quiz is None:
            raise EntityNotFound("quiz", quiz_id)

        outcome = self.scorer.score(quiz, answers)
        now = self._now()
        attempt_id = attempt_id or uuid.uuid4().hex

        self.attempts.add(
            attempt_id, user_id, quiz_id, outcome.score, outcome.total_questions,
            time_spent_seconds, outcome.xp_earned, to_timestamp(now), outcome.answers,
        )
        xp = self.ledger.apply_xp(user_id, outcome.xp_earned, "quiz_attempt", attempt_id)
        streak = self.streaks.record_activity(user_id, now.date())
        if path_id:
            self.paths.mark_quiz_complete(user_id, path_id, quiz_id)
        unlocked = self.evaluator.evaluate(
            user_id, self.evaluator.snapshot(user_id, streak.streak)
        )

        after = self._require_user(user_id)
        gained = (outcome.xp_earned if xp.applied else 0) + _rewards(unlocked)
        new_level = level_for_xp(after["total_xp"])
        logger.info(
            "User %s scored %s/%s on quiz %s (+%s XP)",
            user_id, outcome.score, outcome.total_questions, quiz_id, outcome.xp_earned,
        )
        result = QuizSubmissionResult(
            attempt_id=attempt_id,
            score=outcome.score,
            total_questions=outcome.total_questions,
            percentage=outcome.percentage,
            xp_earned=outcome.xp_earned,
            new_total_xp=after["total_xp"],
            new_level=new_level,
            leveled_up=new_level > level_for_xp(self._previous_total(after, gained)),
            streak=after["streak"],
            newly_unlocked_achievements=unlocked,
        )
        return result, self._collect_events(after, gained, "quiz_attempt", attempt_id, streak, unlocked)

    def _replay(self, user: dict, attempt: dict) -> QuizSubmissionResult:
        total = attempt["total_questions"]
        return QuizSubmissionResult(
            attempt_id=attempt["id"],
            score=attempt["score"],
            total_questions=total,
            percentage=round(attempt["score"] / total * 100) if total else 0,
            xp_earned=attempt["xp_earned"],
            new_total_xp=user["total_xp"],
            new_level=level_for_xp(user["total_xp"]),
            leveled_up=False,
            streak=user["streak"],
            replayed=True,
        )

    # ── Lesson completion ────────────────────────────────────────

    def complete_lesson(self, user_id: int, lesson_id: str,
                        path_id: Optional[str] = None) -> LessonCompletionResult:
        return self._execute(self._complete_lesson, user_id, lesson_id, path_id)

    def _complete_lesson(self, user_id, lesson_id, path_id):
        self._require_user(user_id)
        lesson = self.catalog.lesson(lesson_id)
        if lesson is None:
            raise EntityNotFound("lesson", lesson_id)

        now = self._now()
        reward = lesson["xp_reward"]
        first_time = self.lesson_completions.add(user_id, lesson_id, reward, to_timestamp(now))
        xp_earned = 0
        if first_time:
            xp = self.ledger.apply_xp(user_id, reward, "lesson", lesson_id)
            xp_earned = reward if xp.applied else 0

        streak = self.streaks.record_activity(user_id, now.date())
        path_progress = None
        if path_id:
            path_progress = self.paths.mark_lesson_complete(user_id, path_id, lesson_id)
        unlocked = self.evaluator.evaluate(
            user_id, self.evaluator.snapshot(user_id, streak.streak)
        )

        after = self._require_user(user_id)
        gained = xp_earned + _rewards(unlocked)
        new_level = level_for_xp(after["total_xp"])
        result = LessonCompletionResult(
            lesson_id=lesson_id,
            xp_earned=xp_earned,
            new_total_xp=after["total_xp"],
            new_level=new_level,
            leveled_up=new_level > level_for_xp(self._previous_total(after, gained)),
            streak=after["streak"],
            already_completed=not first_time,
            newly_unlocked_achievements=unlocked,
            path_progress=path_progress,
        )
        return result, self._collect_events(after, gained, "lesson", lesson_id, streak, unlocked)

    # ── Achievement re-check ─────────────────────────────────────

    def recheck_achievements(self, user_id: int) -> list[Achievement]:
        return self._execute(self._recheck_achievements, user_id)

    def _recheck_achievements(self, user_id):
        user = self._require_user(user_id)
        unlocked = self.evaluator.evaluate(
            user_id, self.evaluator.snapshot(user_id, user["streak"])
        )
        after = self._require_user(user_id)
        return unlocked, self._collect_events(
            after, _rewards(unlocked), "recheck", str(user_id), None, unlocked
        )

    # ── Read path ────────────────────────────────────────────────

    def get_leaderboard(self, timeframe: str = "all", page: int = 1,
                        page_size: int = 50) -> LeaderboardPage:
        return self.ranker.rank(timeframe, page, page_size, now=self._now())

    def get_user_progress(self, user_id: int, path_id: str) -> PathProgress:
        self._require_user(user_id)
        return self.paths.get_progress(user_id, path_id)

    def list_user_paths(self, user_id: int) -> list[PathProgress]:
        self._require_user(user_id)
        return self.paths.list_enrollments(user_id)

    def get_user_stats(self, user_id: int) -> UserStats:
        user = self._require_user(user_id)
        quizzes = self.attempts.totals(user_id)
        last_active = user["last_active_date"]
        return UserStats(
            user_id=user["id"],
            display_name=user["name"],
            total_xp=user["total_xp"],
            streak=user["streak"],
            longest_streak=user["longest_streak"],
            last_active_date=last_active.isoformat() if last_active else None,
            quizzes_taken=quizzes["quizzes_taken"],
            lessons_completed=self.lesson_completions.count(user_id),
            average_score=round(quizzes["average_score"] or 0),
            study_time_seconds=quizzes["study_time_seconds"],
            achievements_unlocked=self.achievement_store.unlocked(user_id),
        )

    def recent_attempts(self, user_id: int, limit: int = 10) -> list[dict[str, Any]]:
        self._require_user(user_id)
        return self.attempts.recent(user_id, limit)


def init_progression(app) -> ProgressionService:
    """Build the app-wide service from config. Call once from create_app()."""
    bus = EventBus()
    install_logging_subscriber(bus)
    service = ProgressionService(
        events=bus,
        xp_per_correct=app.config.get("XP_PER_CORRECT_ANSWER", XP_PER_CORRECT_ANSWER),
        default_lesson_xp=app.config.get("DEFAULT_LESSON_XP", DEFAULT_LESSON_XP),
        max_attempts=app.config.get("PROGRESSION_MAX_ATTEMPTS", 5),
        retry_wait=app.config.get("PROGRESSION_RETRY_WAIT", 0.05),
    )
    app.extensions["progression"] = service
    return service


def get_service() -> ProgressionService:
    return current_app.extensions["progression"]
