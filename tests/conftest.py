from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402

from assessment import AssessmentService  # noqa: E402
from catalog import CourseCatalog  # noqa: E402
from database import MemoryStore, now_utc  # noqa: E402
from identity import IdentityProvider  # noqa: E402
from main import app, get_store  # noqa: E402
from progress import EnrollmentService  # noqa: E402
from schemas import ASSESSMENTS, CHOICES, COURSES, LEARNING_STYLES, QUESTIONS, ROLES  # noqa: E402
from users import UserDirectory  # noqa: E402


class Seed:
    """Writes reference data straight into a store."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def roles(self) -> dict[str, str]:
        return {name: self.store.insert(ROLES, {"name": name}) for name in ("admin", "student")}

    def course(self, lessons_per_module: tuple[int, ...] = (3,), title: str = "Python Basics", **extra) -> str:
        modules = [
            {
                "title": f"Module {m + 1}",
                "lessons": [{"id": f"m{m + 1}-l{i + 1}", "title": f"Lesson {i + 1}"} for i in range(count)],
            }
            for m, count in enumerate(lessons_per_module)
        ]
        doc = {"title": title, "modules": modules, "is_active": True, "created_at": now_utc()}
        doc.update(extra)
        return self.store.insert(COURSES, doc)

    def learning_styles(self) -> dict[str, str]:
        return {
            "visual": self.store.insert(LEARNING_STYLES, {
                "name": "Visual",
                "description": "Learns through images",
                "characteristics": "Prefers diagrams\nRemembers faces\n",
            }),
            "auditory": self.store.insert(LEARNING_STYLES, {
                "name": "Auditory",
                "description": "Learns by listening",
                "characteristics": ["Enjoys lectures", "Talks things through"],
            }),
        }

    def assessment(self, styles: dict[str, str], assessment_type: str = "learning_style_test") -> dict[str, str]:
        """Two questions, stored out of order, each with a visual and an auditory choice."""
        assessment_id = self.store.insert(ASSESSMENTS, {"type": assessment_type, "is_active": True, "title": "Learning style"})
        ids = {"assessment": assessment_id}
        for number, order in (("q2", 2), ("q1", 1)):
            qid = self.store.insert(QUESTIONS, {"assessment_id": assessment_id, "text": f"Question {number}", "order": order})
            ids[number] = qid
            ids[f"{number}-auditory"] = self.store.insert(CHOICES, {
                "question_id": qid, "text": "Listen", "learning_style_id": styles["auditory"], "points": 1, "order": 2,
            })
            ids[f"{number}-visual"] = self.store.insert(CHOICES, {
                "question_id": qid, "text": "Look", "learning_style_id": styles["visual"], "points": 2, "order": 1,
            })
        return ids


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def seed(store: MemoryStore) -> Seed:
    return Seed(store)


@pytest.fixture
def identity(store: MemoryStore) -> IdentityProvider:
    return IdentityProvider(store)


@pytest.fixture
def catalog(store: MemoryStore) -> CourseCatalog:
    return CourseCatalog(store)


@pytest.fixture
def enrollments(store: MemoryStore, catalog: CourseCatalog) -> EnrollmentService:
    return EnrollmentService(store, catalog)


@pytest.fixture
def assessments(store: MemoryStore) -> AssessmentService:
    return AssessmentService(store)


@pytest.fixture
def users(store: MemoryStore, identity: IdentityProvider) -> UserDirectory:
    return UserDirectory(store, identity)


@pytest.fixture
def client(store: MemoryStore) -> Iterator[TestClient]:
    app.dependency_overrides[get_store] = lambda: store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
