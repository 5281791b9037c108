"""
Enrollment and lesson progress.

One Enrollment and one UserProgress row exist per (user, course). Both are
created by ``enroll``, which zeroes a progress row retained from an
earlier unenroll instead of adding a second one. The pair check is a query followed by an insert, so two
concurrent enrollments for the same pair can both succeed.
"""

import logging
import os
from typing import List, Optional

from catalog import CourseCatalog, lesson_ids, total_lesson_count
from database import Store, eq, now_utc
from errors import DuplicateEnrollment, NotEnrolled, NotFound
from schemas import (
    ENROLLMENTS,
    USER_PROGRESS,
    Enrollment,
    EnrollmentWithCourse,
    ProgressWithCourse,
    UserProgress,
    UserStatistics,
)

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"

UNENROLL_DROPS_PROGRESS = os.getenv("UNENROLL_DROPS_PROGRESS", "false").lower() in ("1", "true", "yes")


def progress_percentage(completed: int, total: int) -> int:
    """Whole percent, halves rounded up; 0 when the course has no lessons."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def classify(progress: UserProgress) -> str:
    if progress.progress_percentage == 0:
        return PENDING
    if progress.progress_percentage == 100:
        return COMPLETED
    return IN_PROGRESS


class EnrollmentService:
    def __init__(self, store: Store, catalog: CourseCatalog, drop_progress_on_unenroll: bool = UNENROLL_DROPS_PROGRESS):
        self.store = store
        self.catalog = catalog
        self.drop_progress_on_unenroll = drop_progress_on_unenroll

    def _pair(self, collection: str, user_id: str, course_id: str):
        return self.store.query(collection, [eq("user_id", user_id), eq("course_id", course_id)])

    # -----------------------------
    # Enrollment
    # -----------------------------
    def enroll(self, user_id: str, course_id: str) -> str:
        if self._pair(ENROLLMENTS, user_id, course_id):
            raise DuplicateEnrollment("User is already enrolled in this course")

        enrollment_id = self.store.insert(ENROLLMENTS, {
            "user_id": user_id,
            "course_id": course_id,
            "enrolled_at": now_utc(),
            "status": "active",
        })
        fresh = {
            "completed_lessons": 0,
            "total_lessons": 0,
            "progress_percentage": 0,
            "completed_lesson_ids": [],
            "last_accessed_at": now_utc(),
        }
        retained = self._pair(USER_PROGRESS, user_id, course_id)
        if retained:
            # a row kept from an earlier unenroll starts over
            self.store.update(USER_PROGRESS, retained[0]["id"], {**fresh, "updated_at": now_utc()})
        else:
            self.store.insert(USER_PROGRESS, {
                "user_id": user_id,
                "course_id": course_id,
                **fresh,
                "created_at": now_utc(),
            })
        logger.info("Enrolled user %s in course %s", user_id, course_id)
        return enrollment_id

    def is_enrolled(self, user_id: str, course_id: str) -> bool:
        try:
            return len(self._pair(ENROLLMENTS, user_id, course_id)) > 0
        except Exception:
            logger.exception("Could not check enrollment of %s in %s", user_id, course_id)
            return False

    def unenroll(self, user_id: str, course_id: str) -> None:
        enrollments = self._pair(ENROLLMENTS, user_id, course_id)
        if not enrollments:
            raise NotFound("Enrollment not found")
        self.store.delete(ENROLLMENTS, enrollments[0]["id"])
        if self.drop_progress_on_unenroll:
            for row in self._pair(USER_PROGRESS, user_id, course_id):
                self.store.delete(USER_PROGRESS, row["id"])
        logger.info("Unenrolled user %s from course %s", user_id, course_id)

    def list_user_enrollments(self, user_id: str) -> List[EnrollmentWithCourse]:
        try:
            enrollments = self.store.query(ENROLLMENTS, [eq("user_id", user_id)])
        except Exception:
            logger.exception("Could not list enrollments of %s", user_id)
            return []
        return [
            EnrollmentWithCourse(**Enrollment.model_validate(e).model_dump(),
                                 course=self.catalog.get_course_by_id(e["course_id"]))
            for e in enrollments
        ]

    # -----------------------------
    # Progress
    # -----------------------------
    def get_progress(self, user_id: str, course_id: str) -> Optional[UserProgress]:
        try:
            rows = self._pair(USER_PROGRESS, user_id, course_id)
        except Exception:
            logger.exception("Could not read progress of %s in %s", user_id, course_id)
            return None
        return UserProgress.model_validate(rows[0]) if rows else None

    def record_lesson_complete(self, user_id: str, course_id: str, lesson_id: str) -> UserProgress:
        rows = self._pair(USER_PROGRESS, user_id, course_id)
        if not rows:
            raise NotEnrolled("No progress record for this course")
        progress = UserProgress.model_validate(rows[0])
        course = self.catalog.get_course_by_id(course_id)
        known = lesson_ids(course)
        if lesson_id not in known:
            raise NotFound(f"Lesson {lesson_id} is not part of course {course_id}")
        if lesson_id in progress.completed_lesson_ids:
            return progress

        # lessons removed from the course since they were completed no longer count
        completed_ids = [i for i in progress.completed_lesson_ids if i in known] + [lesson_id]
        total = total_lesson_count(course)
        patch = {
            "completed_lesson_ids": completed_ids,
            "completed_lessons": len(completed_ids),
            "total_lessons": total,
            "progress_percentage": progress_percentage(len(completed_ids), total),
            "last_accessed_at": now_utc(),
            "updated_at": now_utc(),
        }
        self.store.update(USER_PROGRESS, progress.id, patch)
        return UserProgress.model_validate({**progress.model_dump(), **patch})

    def list_user_progress(self, user_id: str) -> List[ProgressWithCourse]:
        try:
            rows = self.store.query(USER_PROGRESS, [eq("user_id", user_id)])
        except Exception:
            logger.exception("Could not list progress of %s", user_id)
            return []
        return [
            ProgressWithCourse(**UserProgress.model_validate(row).model_dump(),
                               course=self.catalog.get_course_by_id(row["course_id"]))
            for row in rows
        ]

    def courses_in_progress(self, user_id: str) -> List[ProgressWithCourse]:
        return [p for p in self.list_user_progress(user_id) if classify(p) == IN_PROGRESS]

    def completed_courses(self, user_id: str) -> List[ProgressWithCourse]:
        return [p for p in self.list_user_progress(user_id) if classify(p) == COMPLETED]

    def pending_courses(self, user_id: str) -> List[EnrollmentWithCourse]:
        """Enrollments that have no progress row at all.

        This is not the same set as progress rows classified ``pending``
        (tracked, but still at 0%).
        """
        tracked = {p.course_id for p in self.list_user_progress(user_id)}
        return [e for e in self.list_user_enrollments(user_id) if e.course_id not in tracked]

    def user_statistics(self, user_id: str) -> UserStatistics:
        try:
            enrollments = self.store.query(ENROLLMENTS, [eq("user_id", user_id)])
            rows = [UserProgress.model_validate(r) for r in self.store.query(USER_PROGRESS, [eq("user_id", user_id)])]
        except Exception:
            logger.exception("Could not compute statistics for %s", user_id)
            return UserStatistics()
        classes = [classify(p) for p in rows]
        tracked = {p.course_id for p in rows}
        return UserStatistics(
            total_courses=len(enrollments),
            completed_courses=classes.count(COMPLETED),
            in_progress_courses=classes.count(IN_PROGRESS),
            pending_courses=sum(1 for e in enrollments if e["course_id"] not in tracked),
        )
