"""
Leaderboard ranking.

Ordering is all-time total XP descending, ties broken by user id ascending.
The weekly and monthly timeframes only narrow the candidate set to users with
a quiz attempt inside the window; they still rank by all-time XP. Windowed XP
sums are not computed.

Each entry carries lesson, quiz and achievement aggregates; quiz aggregates
follow the same window. The board-wide stats count users active in the last
seven days plus quizzes and XP since midnight UTC.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from database import to_timestamp, utcnow
from progression import LeaderboardEntry, LeaderboardPage, LeaderboardStats
from storage import LeaderboardSource

TIMEFRAME_WINDOWS: dict[str, Optional[timedelta]] = {
    "all": None,
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}
ACTIVE_WINDOW = timedelta(days=7)
BADGE_LIMIT = 4


class LeaderboardRanker:
    def __init__(self, source: LeaderboardSource, clock: Callable[[], datetime] = utcnow):
        self.source = source
        self.clock = clock

    def window_start(self, timeframe: str, now: Optional[datetime] = None) -> Optional[str]:
        if timeframe not in TIMEFRAME_WINDOWS:
            raise ValueError(
                f"Unknown timeframe {timeframe!r}; expected one of {', '.join(TIMEFRAME_WINDOWS)}"
            )
        window = TIMEFRAME_WINDOWS[timeframe]
        if window is None:
            return None
        return to_timestamp((now or self.clock()) - window)

    def rank(self, timeframe: str = "all", page: int = 1, page_size: int = 50,
             now: Optional[datetime] = None) -> LeaderboardPage:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        now = (now or self.clock()).astimezone(timezone.utc)
        since = self.window_start(timeframe, now)
        offset = (page - 1) * page_size
        total = self.source.count(since)
        rows = self.source.page(offset, page_size, since) if offset < total else []

        entries = [
            LeaderboardEntry(
                user_id=r["user_id"],
                display_name=r["name"],
                total_xp=r["total_xp"],
                streak=r["streak"],
                rank=offset + i,
                completed_lessons=r.get("completed_lessons", 0),
                quizzes_taken=r.get("quizzes_taken", 0),
                average_score=round(r.get("average_score") or 0),
                study_time_seconds=r.get("study_time_seconds", 0),
                achievements_unlocked=len(r.get("badges", [])),
                badges=r.get("badges", [])[:BADGE_LIMIT],
            )
            for i, r in enumerate(rows, 1)
        ]
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        summary = self.source.summary(
            since, to_timestamp(today_start), (now - ACTIVE_WINDOW).date()
        )
        return LeaderboardPage(entries, total, page, page_size, timeframe,
                               stats=LeaderboardStats(**summary))
