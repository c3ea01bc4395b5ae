"""Tests for service.py — end-to-end progression events, atomicity, retries, events."""

import sqlite3
from datetime import date

import pytest

from db_stores import UserStoreDB
from errors import ConcurrencyConflict, EntityNotFound, InvalidSubmission, UserNotFound
from events import AchievementUnlocked, EventBus, LevelUp, StreakChanged, XpChanged
from service import ProgressionService

HTML_CORRECT = {"html-q1": "html-q1-b", "html-q2": "html-q2-b", "html-q3": "html-q3-a",
                "html-q4": "html-q4-b", "html-q5": "html-q5-b"}


def _three_of_five() -> dict:
    answers = dict(HTML_CORRECT)
    answers["html-q4"] = "html-q4-a"
    answers["html-q5"] = "html-q5-a"
    return answers


class FlakyUsers(UserStoreDB):
    """Loses the first ``failures`` XP writes as if another writer got there first."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def update_xp(self, user_id, total_xp, level, expected_version):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            return False
        return super().update_xp(user_id, total_xp, level, expected_version)


class RacingUsers(UserStoreDB):
    """A second client adds XP for the same user on one of our reads.

    The competing write goes through its own sqlite connection, just after the
    ``race_on``-th ``get()``. If our transaction already holds the write lock
    the competing write fails fast and the error is kept in ``blocked``.
    """

    def __init__(self, database: str, bonus: int, race_on: int = 1):
        self.database = database
        self.bonus = bonus
        self.race_on = race_on
        self.reads = 0
        self.blocked = None

    def get(self, user_id):
        user = super().get(user_id)
        self.reads += 1
        if self.reads == self.race_on:
            try:
                add_xp_elsewhere(self.database, user_id, self.bonus, timeout=0)
            except sqlite3.OperationalError as exc:
                self.blocked = exc
        return user


def add_xp_elsewhere(database: str, user_id: int, amount: int, timeout: float = 1.0) -> None:
    other = sqlite3.connect(database, timeout=timeout)
    try:
        other.execute(
            "UPDATE users SET total_xp = total_xp + ?, level = (total_xp + ?) / 100 + 1, "
            "version = version + 1 WHERE id = ?",
            (amount, amount, user_id),
        )
        other.commit()
    finally:
        other.close()


def _count(db, sql, *params):
    return db.execute(sql, params).fetchone()[0]


class TestSubmitQuizAttempt:
    def test_three_of_five_awards_thirty_plus_first_quiz(self, db, catalog, clock):
        result = ProgressionService(clock=clock).submit_quiz_attempt(
            1, "html-basics-quiz", _three_of_five(), 300,
        )
        assert result.score == 3
        assert result.total_questions == 5
        assert result.percentage == 60
        assert result.xp_earned == 30
        assert [a.id for a in result.newly_unlocked_achievements] == ["first-quiz"]
        assert result.new_total_xp == 80
        assert result.new_level == 1
        assert result.streak == 1

    def test_perfect_fast_attempt_levels_up(self, db, catalog, clock):
        result = ProgressionService(clock=clock).submit_quiz_attempt(
            1, "html-basics-quiz", HTML_CORRECT, 45,
        )
        ids = [a.id for a in result.newly_unlocked_achievements]
        assert ids == ["first-quiz", "perfect-score", "speed-demon"]
        assert result.new_total_xp == 50 + 50 + 150 + 75
        assert result.new_level == 4
        assert result.leveled_up

    def test_attempt_persisted_with_answers(self, db, catalog, clock):
        result = ProgressionService(clock=clock).submit_quiz_attempt(
            1, "html-basics-quiz", {"html-q1": "html-q1-b"}, 30,
        )
        row = db.execute("SELECT * FROM quiz_attempts WHERE id = ?", (result.attempt_id,)).fetchone()
        assert row["score"] == 1
        assert row["completed_at"] == "2026-03-02T12:00:00+00:00"
        assert _count(db, "SELECT COUNT(*) FROM attempt_answers WHERE attempt_id = ?", result.attempt_id) == 5

    def test_replayed_attempt_id_changes_nothing(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        first = service.submit_quiz_attempt(1, "html-basics-quiz", _three_of_five(), 300,
                                            attempt_id="client-key-1")
        second = service.submit_quiz_attempt(1, "html-basics-quiz", HTML_CORRECT, 10,
                                             attempt_id="client-key-1")
        assert second.replayed
        assert second.score == first.score
        assert second.new_total_xp == first.new_total_xp
        assert _count(db, "SELECT COUNT(*) FROM quiz_attempts WHERE user_id = 1") == 1

    def test_attempt_id_owned_by_another_user(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30, attempt_id="shared")
        with pytest.raises(InvalidSubmission):
            service.submit_quiz_attempt(2, "html-basics-quiz", {}, 30, attempt_id="shared")

    def test_unknown_quiz(self, db, catalog, clock):
        with pytest.raises(EntityNotFound):
            ProgressionService(clock=clock).submit_quiz_attempt(1, "nope", {}, 10)

    def test_unknown_user(self, db, catalog, clock):
        with pytest.raises(UserNotFound):
            ProgressionService(clock=clock).submit_quiz_attempt(999, "html-basics-quiz", {}, 10)

    @pytest.mark.parametrize("seconds", [-1, 1.5, "10", True])
    def test_bad_time_spent(self, db, catalog, clock, seconds):
        with pytest.raises(InvalidSubmission):
            ProgressionService(clock=clock).submit_quiz_attempt(1, "html-basics-quiz", {}, seconds)

    def test_invalid_answer_writes_nothing(self, db, catalog, clock):
        with pytest.raises(InvalidSubmission):
            ProgressionService(clock=clock).submit_quiz_attempt(
                1, "html-basics-quiz", {"html-q1": "css-q1-b"}, 10,
            )
        assert _count(db, "SELECT COUNT(*) FROM quiz_attempts") == 0
        assert UserStoreDB().get(1)["total_xp"] == 0

    def test_bad_path_rolls_back_everything(self, db, catalog, clock):
        with pytest.raises(EntityNotFound):
            ProgressionService(clock=clock).submit_quiz_attempt(
                1, "html-basics-quiz", HTML_CORRECT, 30, path_id="frontend-developer",
            )
        user = UserStoreDB().get(1)
        assert user["total_xp"] == 0
        assert user["streak"] == 0
        assert _count(db, "SELECT COUNT(*) FROM quiz_attempts") == 0
        assert _count(db, "SELECT COUNT(*) FROM user_achievements") == 0

    def test_path_progress_recorded(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30, path_id="web-foundations")
        progress = service.get_user_progress(1, "web-foundations")
        assert progress.completed_quiz_ids == ["html-basics-quiz"]
        assert progress.percent_complete == 25


class TestStreakThroughService:
    def test_d_d1_d3(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        clock.set_date(date(2026, 3, 2))
        assert service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30).streak == 1
        clock.set_date(date(2026, 3, 3))
        assert service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30).streak == 2
        clock.set_date(date(2026, 3, 5))
        assert service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30).streak == 1
        assert service.get_user_stats(1).longest_streak == 2

    def test_same_day_twice(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.complete_lesson(1, "html-intro")
        clock.advance(hours=3)
        assert service.complete_lesson(1, "html-forms").streak == 1


class TestCompleteLesson:
    def test_first_completion_awards_lesson_xp(self, db, catalog, clock):
        result = ProgressionService(clock=clock).complete_lesson(1, "js-functions")
        assert result.xp_earned == 20
        assert not result.already_completed
        assert result.new_total_xp == 20

    def test_default_lesson_xp(self, db, catalog, clock):
        assert ProgressionService(clock=clock).complete_lesson(1, "html-intro").xp_earned == 10

    def test_configured_default_lesson_xp(self, db, catalog, clock):
        service = ProgressionService(clock=clock, default_lesson_xp=12)
        assert service.complete_lesson(1, "html-intro").xp_earned == 12

    def test_repeat_completion_is_idempotent(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.complete_lesson(1, "html-intro")
        again = service.complete_lesson(1, "html-intro")
        assert again.already_completed
        assert again.xp_earned == 0
        assert again.new_total_xp == 10
        assert _count(db, "SELECT COUNT(*) FROM lesson_completions WHERE user_id = 1") == 1

    def test_level_up_from_95(self, db, catalog, clock):
        db.execute("UPDATE users SET total_xp = 95 WHERE id = 1")
        db.commit()
        result = ProgressionService(clock=clock).complete_lesson(1, "js-functions")
        assert result.new_total_xp == 115
        assert result.new_level == 2
        assert result.leveled_up
        assert UserStoreDB().get(1)["level"] == 2

    def test_category_achievement(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.complete_lesson(1, "html-intro")
        result = service.complete_lesson(1, "html-forms")
        assert [a.id for a in result.newly_unlocked_achievements] == ["html-master"]
        assert result.new_total_xp == 10 + 15 + 200

    def test_with_path(self, db, catalog, clock):
        result = ProgressionService(clock=clock).complete_lesson(1, "html-intro", path_id="web-foundations")
        assert result.path_progress.completed_lesson_ids == ["html-intro"]

    def test_unknown_lesson(self, db, catalog, clock):
        with pytest.raises(EntityNotFound):
            ProgressionService(clock=clock).complete_lesson(1, "nope")


class TestConcurrency:
    def test_conflict_is_retried_and_applied_once(self, db, catalog, clock):
        users = FlakyUsers(failures=2)
        service = ProgressionService(users=users, clock=clock, retry_wait=0)
        result = service.complete_lesson(1, "js-functions")
        assert result.new_total_xp == 20
        assert users.calls == 3
        assert _count(db, "SELECT COUNT(*) FROM xp_ledger WHERE user_id = 1") == 1
        assert _count(db, "SELECT COUNT(*) FROM lesson_completions WHERE user_id = 1") == 1

    def test_gives_up_after_max_attempts(self, db, catalog, clock):
        users = FlakyUsers(failures=10)
        service = ProgressionService(users=users, clock=clock, max_attempts=3, retry_wait=0)
        with pytest.raises(ConcurrencyConflict):
            service.complete_lesson(1, "js-functions")
        assert users.calls == 3
        assert UserStoreDB().get(1)["total_xp"] == 0
        assert _count(db, "SELECT COUNT(*) FROM lesson_completions") == 0

    def test_interleaved_users_are_independent(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.complete_lesson(1, "html-intro")
        service.complete_lesson(2, "html-intro")
        service.complete_lesson(1, "html-forms")
        assert UserStoreDB().get(1)["total_xp"] == 10 + 15 + 200
        assert UserStoreDB().get(2)["total_xp"] == 10


class TestTwoConnectionRaces:
    """Another connection commits XP for the same user while an event runs."""

    def _service(self, clock, users, bus):
        return ProgressionService(users=users, events=bus, clock=clock, retry_wait=0)

    def _bus(self):
        bus = EventBus()
        seen = []
        for event_type in (XpChanged, LevelUp):
            bus.subscribe(event_type, seen.append)
        return bus, seen

    def _set_xp(self, db, total_xp):
        db.execute("UPDATE users SET total_xp = ?, level = ? / 100 + 1 WHERE id = 1", (total_xp, total_xp))
        db.commit()

    def test_quiz_does_not_claim_concurrent_level_up(self, app, db, catalog, clock):
        self._set_xp(db, 95)
        users = RacingUsers(app.config["DATABASE"], bonus=20)
        bus, seen = self._bus()
        result = self._service(clock, users, bus).submit_quiz_attempt(
            1, "html-basics-quiz", {"html-q1": "html-q1-b"}, 30,
        )
        # 95 + 20 elsewhere = 115, then +10 quiz and +50 first-quiz here.
        assert users.blocked is None
        assert result.new_total_xp == 175
        assert result.new_level == 2
        assert result.leveled_up is False
        assert [type(e) for e in seen] == [XpChanged]
        assert (seen[0].previous_total_xp, seen[0].total_xp) == (115, 175)
        assert UserStoreDB().get(1)["total_xp"] == 175

    def test_lesson_does_not_claim_concurrent_level_up(self, app, db, catalog, clock):
        self._set_xp(db, 95)
        users = RacingUsers(app.config["DATABASE"], bonus=20)
        bus, seen = self._bus()
        result = self._service(clock, users, bus).complete_lesson(1, "html-forms")
        assert result.new_total_xp == 130
        assert result.leveled_up is False
        assert [type(e) for e in seen] == [XpChanged]
        assert (seen[0].previous_total_xp, seen[0].total_xp) == (115, 130)

    def test_own_xp_crossing_boundary_still_levels_up(self, app, db, catalog, clock):
        self._set_xp(db, 75)
        users = RacingUsers(app.config["DATABASE"], bonus=20)
        bus, seen = self._bus()
        result = self._service(clock, users, bus).complete_lesson(1, "js-functions")
        assert result.new_total_xp == 115
        assert result.leveled_up is True
        level_up = next(e for e in seen if isinstance(e, LevelUp))
        assert (level_up.previous_level, level_up.level) == (1, 2)

    def test_recheck_does_not_claim_concurrent_level_up(self, app, db, catalog, clock):
        self._set_xp(db, 95)
        db.execute(
            "INSERT INTO quiz_attempts (id, user_id, quiz_id, score, total_questions, "
            "time_spent_seconds, completed_at) VALUES ('legacy', 1, 'html-basics-quiz', 1, 5, 500, "
            "'2026-01-01T00:00:00+00:00')"
        )
        db.commit()
        users = RacingUsers(app.config["DATABASE"], bonus=20)
        bus, seen = self._bus()
        unlocked = self._service(clock, users, bus).recheck_achievements(1)
        assert [a.id for a in unlocked] == ["first-quiz"]
        assert [type(e) for e in seen] == [XpChanged]
        assert (seen[0].previous_total_xp, seen[0].total_xp) == (115, 165)

    def test_write_inside_event_waits_for_commit(self, app, db, catalog, clock):
        # The second read happens after the attempt row is written, so this
        # transaction already holds the write lock.
        users = RacingUsers(app.config["DATABASE"], bonus=20, race_on=2)
        bus, seen = self._bus()
        result = self._service(clock, users, bus).submit_quiz_attempt(
            1, "html-basics-quiz", {"html-q1": "html-q1-b"}, 30,
        )
        assert isinstance(users.blocked, sqlite3.OperationalError)
        assert result.new_total_xp == 60

        add_xp_elsewhere(app.config["DATABASE"], 1, 20)
        assert UserStoreDB().get(1)["total_xp"] == 80


class TestDomainEvents:
    def test_events_published_after_commit(self, db, catalog, clock):
        bus = EventBus()
        seen = []
        for event_type in (XpChanged, LevelUp, AchievementUnlocked, StreakChanged):
            bus.subscribe(event_type, seen.append)

        ProgressionService(events=bus, clock=clock).submit_quiz_attempt(
            1, "html-basics-quiz", HTML_CORRECT, 45,
        )
        types = [type(e) for e in seen]
        assert types.count(XpChanged) == 1
        assert types.count(AchievementUnlocked) == 3
        level_up = next(e for e in seen if isinstance(e, LevelUp))
        assert (level_up.previous_level, level_up.level) == (1, 4)
        xp = next(e for e in seen if isinstance(e, XpChanged))
        assert (xp.previous_total_xp, xp.total_xp) == (0, 325)

    def test_no_events_on_failure(self, db, catalog, clock):
        bus = EventBus()
        seen = []
        bus.subscribe(XpChanged, seen.append)
        with pytest.raises(InvalidSubmission):
            ProgressionService(events=bus, clock=clock).submit_quiz_attempt(
                1, "html-basics-quiz", {"bogus": "x"}, 10,
            )
        assert seen == []

    def test_failing_subscriber_does_not_break_result(self, db, catalog, clock):
        bus = EventBus()
        seen = []

        def explode(event):
            raise RuntimeError("subscriber down")

        bus.subscribe(XpChanged, explode)
        bus.subscribe(XpChanged, seen.append)
        result = ProgressionService(events=bus, clock=clock).complete_lesson(1, "html-intro")
        assert result.new_total_xp == 10
        assert len(seen) == 1


class TestReadOperations:
    def test_user_stats(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.submit_quiz_attempt(1, "html-basics-quiz", _three_of_five(), 300)
        service.complete_lesson(1, "html-intro")
        stats = service.get_user_stats(1)
        assert stats.total_xp == 90
        assert stats.quizzes_taken == 1
        assert stats.lessons_completed == 1
        assert stats.last_active_date == "2026-03-02"
        assert [a["id"] for a in stats.achievements_unlocked] == ["first-quiz"]
        assert stats.average_score == 60
        assert stats.study_time_seconds == 300
        d = stats.to_dict()
        assert d["xpIntoLevel"] == 90
        assert d["xpForNextLevel"] == 100
        assert d["averageScore"] == 60
        assert d["totalStudyTime"] == 300

    def test_average_score_across_attempts(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.submit_quiz_attempt(1, "html-basics-quiz", _three_of_five(), 100)
        service.submit_quiz_attempt(1, "html-basics-quiz", HTML_CORRECT, 50)
        stats = service.get_user_stats(1)
        assert stats.average_score == 80
        assert stats.study_time_seconds == 150

    def test_stats_without_attempts(self, db, catalog, clock):
        stats = ProgressionService(clock=clock).get_user_stats(1)
        assert stats.average_score == 0
        assert stats.study_time_seconds == 0

    def test_recent_attempts(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.submit_quiz_attempt(1, "html-basics-quiz", {}, 30)
        recent = service.recent_attempts(1)
        assert recent[0]["quiz_title"] == "HTML Basics Quiz"

    def test_recheck_achievements(self, db, catalog, clock):
        db.execute(
            "INSERT INTO quiz_attempts (id, user_id, quiz_id, score, total_questions, "
            "time_spent_seconds, completed_at) VALUES ('legacy', 1, 'html-basics-quiz', 1, 5, 500, "
            "'2026-01-01T00:00:00+00:00')"
        )
        db.commit()
        service = ProgressionService(clock=clock)
        assert [a.id for a in service.recheck_achievements(1)] == ["first-quiz"]
        assert service.recheck_achievements(1) == []
        assert UserStoreDB().get(1)["total_xp"] == 50

    def test_leaderboard(self, db, catalog, clock):
        service = ProgressionService(clock=clock)
        service.complete_lesson(2, "html-intro")
        board = service.get_leaderboard("weekly")
        assert board.total_count == 0
        board = service.get_leaderboard("all")
        assert board.entries[0].user_id == 2

    def test_stats_unknown_user(self, db, catalog, clock):
        with pytest.raises(UserNotFound):
            ProgressionService(clock=clock).get_user_stats(999)
