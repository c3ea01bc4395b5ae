"""
Achievement evaluation.

Conditions are declarative JSON objects with a ``type`` key. Each type maps to
a predicate over a UserStatsSnapshot via CONDITION_CHECKS; new types are added
with @register_condition. Unlocks are exactly-once: the unlock insert is
keyed on (user_id, achievement_id) and only a fresh insert pays XP.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from database import to_timestamp, utcnow
from ledger import ProgressionLedger
from progression import Achievement, UserStatsSnapshot
from storage import AchievementStore, ContentCatalog, StatsReader

logger = logging.getLogger(__name__)

ConditionCheck = Callable[[dict, UserStatsSnapshot], bool]

CONDITION_CHECKS: dict[str, ConditionCheck] = {}


class InvalidCondition(ValueError):
    """A catalog condition is malformed. The achievement is skipped."""


def register_condition(condition_type: str) -> Callable[[ConditionCheck], ConditionCheck]:
    def decorator(fn: ConditionCheck) -> ConditionCheck:
        CONDITION_CHECKS[condition_type] = fn
        return fn
    return decorator


def _count_param(condition: dict, key: str, *aliases: str) -> int:
    for k in (key, *aliases):
        if k in condition:
            value = condition[k]
            break
    else:
        raise InvalidCondition(f"{condition.get('type')} condition needs {key!r}")
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidCondition(f"{key!r} must be a non-negative integer, got {value!r}")
    return value


@register_condition("quiz_completion")
def _quiz_completion(condition: dict, stats: UserStatsSnapshot) -> bool:
    return stats.quiz_attempts >= _count_param(condition, "count")


@register_condition("lesson_completion")
def _lesson_completion(condition: dict, stats: UserStatsSnapshot) -> bool:
    category = condition.get("category")
    count = condition.get("count")
    if not category:
        return stats.lessons_completed >= _count_param(condition, "count")

    completed = stats.completed_by_category.get(category, 0)
    if count == "all":
        total = stats.lessons_by_category.get(category, 0)
        return total > 0 and completed >= total
    return completed >= _count_param(condition, "count")


@register_condition("streak")
def _streak(condition: dict, stats: UserStatsSnapshot) -> bool:
    return stats.streak >= _count_param(condition, "days")


@register_condition("quiz_perfect_score")
def _perfect_score(condition: dict, stats: UserStatsSnapshot) -> bool:
    return stats.has_perfect_score


@register_condition("quiz_speed")
def _quiz_speed(condition: dict, stats: UserStatsSnapshot) -> bool:
    limit = _count_param(condition, "timeLimitSeconds", "timeLimit")
    return stats.fastest_attempt_seconds is not None and stats.fastest_attempt_seconds <= limit


def condition_met(condition: dict, stats: UserStatsSnapshot) -> bool:
    """Raises InvalidCondition for unknown types or malformed parameters."""
    check = CONDITION_CHECKS.get(condition.get("type", ""))
    if check is None:
        raise InvalidCondition(f"Unknown condition type {condition.get('type')!r}")
    return check(condition, stats)


class AchievementEvaluator:
    """Checks every locked achievement against the user's stats after an event."""

    def __init__(self, store: AchievementStore, stats: StatsReader, catalog: ContentCatalog,
                 ledger: ProgressionLedger, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.stats = stats
        self.catalog = catalog
        self.ledger = ledger
        self.clock = clock

    def snapshot(self, user_id: int, streak: int) -> UserStatsSnapshot:
        stats = self.stats.snapshot(user_id, streak)
        stats.lessons_by_category = self.catalog.lessons_by_category()
        return stats

    def evaluate(self, user_id: int, stats: UserStatsSnapshot) -> list[Achievement]:
        """Unlock and reward newly satisfied achievements. Returns only the new ones."""
        unlocked = self.store.unlocked_ids(user_id)
        now = to_timestamp(self.clock())
        newly: list[Achievement] = []

        for achievement in self.store.catalog():
            if achievement.id in unlocked:
                continue
            try:
                satisfied = condition_met(achievement.condition, stats)
            except InvalidCondition as exc:
                logger.warning("Skipping achievement %s: %s", achievement.id, exc)
                continue
            if not satisfied:
                continue
            if not self.store.unlock(user_id, achievement.id, now):
                continue  # unlocked by a concurrent writer
            self.ledger.apply_xp(user_id, achievement.xp_reward, "achievement", achievement.id)
            logger.info("User %s unlocked achievement %s", user_id, achievement.id)
            newly.append(achievement)

        return newly
