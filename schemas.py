"""
Database Schemas for EduCorp

Each Pydantic model represents a document in a MongoDB collection. Collection
names are listed below; documents are validated and normalized when read so
the services never handle raw, loosely shaped dicts.

Collections:
- users: learner / admin profiles, keyed by identity id
- roles, user_roles: role reference data and the user<->role join
- courses: catalog with embedded modules and lessons
- enrollments, user_progress: one of each per (user, course)
- assessments, questions, choices: the learning-style test graph
- assessment_attempts, attempt_answers: submitted tests
- user_learning_style: append-only style assignment history
- learning_styles: style reference data
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator

USERS = "users"
ROLES = "roles"
USER_ROLES = "user_roles"
COURSES = "courses"
ENROLLMENTS = "enrollments"
USER_PROGRESS = "user_progress"
ASSESSMENTS = "assessments"
QUESTIONS = "questions"
CHOICES = "choices"
ASSESSMENT_ATTEMPTS = "assessment_attempts"
ATTEMPT_ANSWERS = "attempt_answers"
USER_LEARNING_STYLE = "user_learning_style"
LEARNING_STYLES = "learning_styles"


class User(BaseModel):
    id: str
    email: EmailStr
    display_name: str = ""
    name: str = ""
    learning_style_id: Optional[str] = Field(None, description="Null until an assessment is scored")
    learning_style_assigned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Role(BaseModel):
    id: str
    name: str = Field(..., description="admin, student")


class UserRole(BaseModel):
    id: str
    user_id: str
    role_id: str
    assigned_at: Optional[datetime] = None


class Lesson(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    duration: Optional[Union[int, str]] = None
    video_url: Optional[str] = None


class Module(BaseModel):
    title: str
    description: Optional[str] = None
    lessons: List[Lesson] = Field(default_factory=list)


class Course(BaseModel):
    id: str
    title: str
    description: str = ""
    short_description: str = ""
    level: str = Field("Beginner", description="Beginner, Intermediate, Advanced")
    duration: Optional[Union[int, str]] = None
    category: str = ""
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    modules: List[Module] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class Enrollment(BaseModel):
    id: str
    user_id: str
    course_id: str
    enrolled_at: Optional[datetime] = None
    status: str = "active"


class EnrollmentWithCourse(Enrollment):
    course: Optional[Course] = None


class UserProgress(BaseModel):
    id: str
    user_id: str
    course_id: str
    completed_lessons: int = 0
    total_lessons: int = 0
    progress_percentage: int = Field(0, ge=0, le=100)
    completed_lesson_ids: List[str] = Field(default_factory=list)
    last_accessed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProgressWithCourse(UserProgress):
    course: Optional[Course] = None


class UserStatistics(BaseModel):
    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    pending_courses: int = Field(0, description="Enrollments without a progress row")


class Choice(BaseModel):
    id: str
    question_id: str
    text: str
    learning_style_id: Optional[str] = None
    points: Optional[int] = None
    order: Optional[int] = None
    position: Optional[int] = None


class Question(BaseModel):
    id: str
    assessment_id: str
    text: str
    order: Optional[int] = None
    position: Optional[int] = None
    choices: List[Choice] = Field(default_factory=list)


class Assessment(BaseModel):
    id: str
    type: str
    title: Optional[str] = None
    is_active: bool = True
    questions: List[Question] = Field(default_factory=list)


class AssessmentAttempt(BaseModel):
    id: str
    user_id: str
    assessment_id: str
    status: str
    score: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AttemptAnswer(BaseModel):
    question_id: str
    choice_id: str
    learning_style_id: Optional[str] = None
    points: Optional[int] = None
    attempt_id: Optional[str] = None
    answered_at: Optional[datetime] = None


class UserLearningStyle(BaseModel):
    id: str
    user_id: str
    learning_style_id: str
    assessment_attempt_id: str
    assigned_at: Optional[datetime] = None


def _as_lines(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


class LearningStyle(BaseModel):
    id: str
    name: str
    short_name: Optional[str] = None
    description: str = ""
    characteristics: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    # stored either as a newline separated string or as a list
    @field_validator("characteristics", "recommendations", mode="before")
    @classmethod
    def _normalize_lines(cls, value):
        return _as_lines(value)
