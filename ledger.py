"""
XP ledger and streak tracker.

Both mutate the users row with a conditional update on ``version``. A lost
race raises ConcurrencyConflict; the caller rolls back its transaction and
retries the whole event, so no increment is ever dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from database import to_timestamp, utcnow
from errors import ConcurrencyConflict, UserNotFound
from progression import level_for_xp, next_streak
from storage import UserStore, XpLedgerStore

logger = logging.getLogger(__name__)


@dataclass
class XpResult:
    total_xp: int
    level: int
    previous_total_xp: int
    previous_level: int
    applied: bool = True

    @property
    def leveled_up(self) -> bool:
        return self.level > self.previous_level


@dataclass
class StreakResult:
    streak: int
    longest_streak: int
    last_active_date: date
    changed: bool


class ProgressionLedger:
    """Applies non-negative XP deltas and keeps the cached level in step."""

    def __init__(self, users: UserStore, ledger: XpLedgerStore,
                 clock: Callable[[], datetime] = utcnow):
        self.users = users
        self.ledger = ledger
        self.clock = clock

    def apply_xp(self, user_id: int, delta: int, source_type: Optional[str] = None,
                 source_id: Optional[str] = None) -> XpResult:
        """Add ``delta`` XP to the user.

        With a ``source_type``/``source_id`` key the reward is paid at most
        once; a repeat returns the current totals with ``applied=False``.
        """
        if delta < 0:
            raise ValueError("XP delta must be non-negative")
        if source_type is not None and source_id is None:
            raise ValueError("source_id is required with source_type")

        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)

        previous = user["total_xp"]
        previous_level = level_for_xp(previous)

        if source_type is not None:
            recorded = self.ledger.record(
                user_id, source_type, str(source_id), delta, to_timestamp(self.clock())
            )
            if not recorded:
                logger.debug("XP for %s:%s already paid to user %s", source_type, source_id, user_id)
                return XpResult(previous, previous_level, previous, previous_level, applied=False)

        total = previous + delta
        level = level_for_xp(total)
        if not self.users.update_xp(user_id, total, level, user["version"]):
            raise ConcurrencyConflict(f"XP update for user {user_id} lost a race")

        if level > previous_level:
            logger.info("User %s reached level %s", user_id, level)
        return XpResult(total, level, previous, previous_level)


class StreakTracker:
    """Consecutive-day streak keyed on UTC calendar dates."""

    def __init__(self, users: UserStore):
        self.users = users

    def record_activity(self, user_id: int, activity_date: date) -> StreakResult:
        user = self.users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)

        streak = user["streak"]
        longest = user["longest_streak"]
        last_active = user["last_active_date"]

        new_streak, new_last = next_streak(streak, last_active, activity_date)
        if new_streak == streak and new_last == last_active:
            return StreakResult(streak, longest, last_active, changed=False)

        new_longest = max(longest, new_streak)
        if not self.users.update_streak(user_id, new_streak, new_longest, new_last, user["version"]):
            raise ConcurrencyConflict(f"Streak update for user {user_id} lost a race")
        return StreakResult(new_streak, new_longest, new_last, changed=new_streak != streak)
