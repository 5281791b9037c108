"""Course catalog: read side for learners, write side for the admin back-office."""

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from database import OrderBy, Store, eq, now_utc
from schemas import COURSES, Course

logger = logging.getLogger(__name__)


def with_lesson_ids(modules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Give every lesson a stable id; progress rows reference lessons by it."""
    out = []
    for module in modules:
        lessons = [{**lesson, "id": lesson.get("id") or uuid4().hex} for lesson in module.get("lessons", [])]
        out.append({**module, "lessons": lessons})
    return out


def total_lesson_count(course: Optional[Course]) -> int:
    if course is None:
        return 0
    return sum(len(module.lessons) for module in course.modules)


def lesson_ids(course: Optional[Course]) -> List[str]:
    if course is None:
        return []
    return [lesson.id for module in course.modules for lesson in module.lessons]


def _courses(docs: List[Dict[str, Any]]) -> List[Course]:
    courses = []
    for d in docs:
        try:
            courses.append(Course.model_validate(d))
        except ValidationError:
            logger.exception("Skipping malformed course %s", d.get("id"))
    return courses


class CourseCatalog:
    def __init__(self, store: Store):
        self.store = store

    def list_active_courses(self) -> List[Course]:
        try:
            docs = self.store.query(COURSES, [eq("is_active", True), OrderBy("created_at", "desc")])
        except Exception:
            logger.exception("Could not list active courses")
            return []
        return _courses(docs)

    def list_all_courses_for_admin(self) -> List[Course]:
        try:
            docs = self.store.query(COURSES, [OrderBy("created_at", "desc")])
        except Exception:
            logger.exception("Could not list courses")
            return []
        return _courses(docs)

    def get_course_by_id(self, course_id: str) -> Optional[Course]:
        try:
            doc = self.store.get_one(COURSES, course_id)
        except Exception:
            logger.exception("Could not read course %s", course_id)
            return None
        return Course.model_validate(doc) if doc else None

    # -----------------------------
    # Admin
    # -----------------------------
    def create_course(self, data: Dict[str, Any]) -> str:
        doc = dict(data)
        doc["modules"] = with_lesson_ids(doc.get("modules") or [])
        if doc.get("is_active") is None:
            doc["is_active"] = True
        doc["created_at"] = now_utc()
        doc["updated_at"] = now_utc()
        course_id = self.store.insert(COURSES, doc)
        logger.info("Created course %s", course_id)
        return course_id

    def update_course(self, course_id: str, patch: Dict[str, Any]) -> None:
        patch = dict(patch)
        if "modules" in patch:
            patch["modules"] = with_lesson_ids(patch["modules"] or [])
        self.store.update(COURSES, course_id, {**patch, "updated_at": now_utc()})

    def deactivate_course(self, course_id: str) -> None:
        """Soft delete: the course disappears from the learner catalog but keeps its data."""
        self.store.update(COURSES, course_id, {"is_active": False, "deleted_at": now_utc()})
        logger.info("Deactivated course %s", course_id)

    def delete_course(self, course_id: str) -> None:
        self.store.delete(COURSES, course_id)
        logger.info("Deleted course %s", course_id)
