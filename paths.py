"""Learning path progress tracking.

Completed lessons and quizzes are sets per enrollment; marking an item twice
is a no-op. Nothing here awards XP.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from database import to_timestamp, utcnow
from errors import EntityNotFound
from progression import LearningPath, PathProgress
from storage import ContentCatalog, EnrollmentStore


class PathProgressTracker:
    def __init__(self, catalog: ContentCatalog, enrollments: EnrollmentStore,
                 clock: Callable[[], datetime] = utcnow):
        self.catalog = catalog
        self.enrollments = enrollments
        self.clock = clock

    def _path(self, path_id: str) -> LearningPath:
        path = self.catalog.path(path_id)
        if path is None:
            raise EntityNotFound("learning path", path_id)
        return path

    def _mark(self, user_id: int, path_id: str, item_type: str, item_id: str) -> PathProgress:
        path = self._path(path_id)
        members = path.lesson_ids if item_type == "lesson" else path.quiz_ids
        if item_id not in members:
            raise EntityNotFound(item_type, item_id, f"not part of learning path {path_id!r}")

        now = to_timestamp(self.clock())
        self.enrollments.ensure(user_id, path_id, now)
        self.enrollments.add_item(user_id, path_id, item_type, item_id, now)
        return self._progress(user_id, path)

    def mark_lesson_complete(self, user_id: int, path_id: str, lesson_id: str) -> PathProgress:
        return self._mark(user_id, path_id, "lesson", lesson_id)

    def mark_quiz_complete(self, user_id: int, path_id: str, quiz_id: str) -> PathProgress:
        return self._mark(user_id, path_id, "quiz", quiz_id)

    def get_progress(self, user_id: int, path_id: str) -> PathProgress:
        return self._progress(user_id, self._path(path_id))

    def list_enrollments(self, user_id: int) -> list[PathProgress]:
        result = []
        for path_id in self.enrollments.path_ids(user_id):
            path = self.catalog.path(path_id)
            if path is not None:
                result.append(self._progress(user_id, path))
        return result

    def _progress(self, user_id: int, path: LearningPath) -> PathProgress:
        enrollment = self.enrollments.get(user_id, path.id)
        if enrollment is None:
            return PathProgress(
                user_id=user_id, path_id=path.id,
                total_lessons=len(path.lesson_ids), total_quizzes=len(path.quiz_ids),
            )
        items = self.enrollments.items(user_id, path.id)
        # Only items still in the path count, so catalog edits cannot push past 100%.
        lesson_ids = set(path.lesson_ids)
        quiz_ids = set(path.quiz_ids)
        return PathProgress(
            user_id=user_id,
            path_id=path.id,
            total_lessons=len(path.lesson_ids),
            total_quizzes=len(path.quiz_ids),
            completed_lesson_ids=[i for i in items["lesson"] if i in lesson_ids],
            completed_quiz_ids=[i for i in items["quiz"] if i in quiz_ids],
            started_at=enrollment["started_at"],
            last_activity_at=enrollment["last_activity_at"],
        )
