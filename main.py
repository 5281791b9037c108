import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from assessment import AssessmentPass, AssessmentService, submit_learning_style_test
from catalog import CourseCatalog
from database import MemoryStore, MongoStore, Store, db
from errors import ConfigurationMissing, NotFound, ServiceError
from guards import Allow, auth_only_guard, dashboard_guard, load_auth_state, public_guard, role_guard
from identity import IdentityProvider, Session
from progress import EnrollmentService, classify
from users import ADMIN_ROLE, UserDirectory

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("educorp")

app = FastAPI(title="EduCorp API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# -----------------------------
# Dependencies
# -----------------------------
STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo")
_memory_store = MemoryStore() if STORE_BACKEND == "memory" else None


def get_store() -> Store:
    if _memory_store is not None:
        return _memory_store
    if db is None:
        raise ConfigurationMissing("Database not configured")
    return MongoStore(db)


def get_identity(store: Store = Depends(get_store)) -> IdentityProvider:
    return IdentityProvider(store)


def get_catalog(store: Store = Depends(get_store)) -> CourseCatalog:
    return CourseCatalog(store)


def get_enrollments(store: Store = Depends(get_store), catalog: CourseCatalog = Depends(get_catalog)) -> EnrollmentService:
    return EnrollmentService(store, catalog)


def get_assessments(store: Store = Depends(get_store)) -> AssessmentService:
    return AssessmentService(store)


def get_users(store: Store = Depends(get_store), identity: IdentityProvider = Depends(get_identity)) -> UserDirectory:
    return UserDirectory(store, identity)


def optional_session(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityProvider = Depends(get_identity),
) -> Optional[Session]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return identity.resolve(authorization.split(" ", 1)[1])


def require_auth(session: Optional[Session] = Depends(optional_session)) -> Session:
    if session is None:
        raise HTTPException(status_code=401, detail="Missing or invalid bearer token")
    return session


def require_roles(*allowed: str):
    def dependency(session: Session = Depends(require_auth), users: UserDirectory = Depends(get_users)) -> Session:
        decision = role_guard(load_auth_state(users, session), allowed)
        if not isinstance(decision, Allow):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return session
    return dependency


require_admin = require_roles(ADMIN_ROLE)


# -----------------------------
# Models
# -----------------------------
class RegisterRequest(BaseModel):
    name: str = ""
    display_name: Optional[str] = None
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CreateUserRequest(RegisterRequest):
    learning_style_id: Optional[str] = None


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    learning_style_id: Optional[str] = None


class RoleAssignment(BaseModel):
    role: str


class LessonIn(BaseModel):
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    duration: Optional[Any] = None
    video_url: Optional[str] = None


class ModuleIn(BaseModel):
    title: str
    description: Optional[str] = None
    lessons: List[LessonIn] = Field(default_factory=list)


class CourseCreate(BaseModel):
    title: str
    description: str = ""
    short_description: str = ""
    level: str = "Beginner"
    duration: Optional[Any] = None
    category: str = ""
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    modules: List[ModuleIn] = Field(default_factory=list)
    is_active: Optional[bool] = None


class CourseUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    level: Optional[str] = None
    duration: Optional[Any] = None
    category: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    modules: Optional[List[ModuleIn]] = None
    is_active: Optional[bool] = None


class AssessmentSubmission(BaseModel):
    answers: Dict[str, str] = Field(..., description="question id -> chosen choice id, in the order they were answered")


# -----------------------------
# Root & Health
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "EduCorp API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        target = _memory_store if _memory_store is not None else db
        if target is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = target.name
            response["connection_status"] = "Connected"
            response["collections"] = target.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# -----------------------------
# Auth
# -----------------------------
def _session_payload(session: Session, users: UserDirectory) -> Dict[str, Any]:
    user = users.get_user_by_id(session.uid)
    return {"token": session.token, "user": user}


@app.post("/auth/register")
def register(req: RegisterRequest, identity: IdentityProvider = Depends(get_identity), users: UserDirectory = Depends(get_users)):
    ctx = identity.context()
    users.register(ctx, req.model_dump())
    return _session_payload(ctx.current, users)


@app.post("/auth/login")
def login(req: LoginRequest, identity: IdentityProvider = Depends(get_identity), users: UserDirectory = Depends(get_users)):
    ctx = identity.context()
    return _session_payload(ctx.sign_in(req.email, req.password), users)


@app.post("/auth/logout")
def logout(session: Session = Depends(require_auth), identity: IdentityProvider = Depends(get_identity)):
    identity.context(session=session).sign_out()
    return {"ok": True}


@app.get("/auth/me")
def me(session: Session = Depends(require_auth), users: UserDirectory = Depends(get_users),
       assessments: AssessmentService = Depends(get_assessments)):
    user = users.get_user_by_id(session.uid)
    if user is None:
        raise NotFound("User profile not found")
    style = assessments.get_learning_style(user.learning_style_id) if user.learning_style_id else None
    return {"user": user, "roles": [r.name for r in users.get_user_roles(session.uid)], "learning_style": style}


@app.get("/auth/access/{view}")
def access(view: str, session: Optional[Session] = Depends(optional_session), users: UserDirectory = Depends(get_users)):
    state = load_auth_state(users, session)
    if view == "public":
        decision = public_guard(state)
    elif view == "auth":
        decision = auth_only_guard(state)
    elif view == "dashboard":
        decision = dashboard_guard(state)
    elif view == "admin":
        decision = role_guard(state, [ADMIN_ROLE])
    else:
        raise HTTPException(status_code=404, detail="Unknown view")
    return decision


# -----------------------------
# Courses & Progress
# -----------------------------
@app.get("/courses")
def list_courses(catalog: CourseCatalog = Depends(get_catalog)):
    return {"items": catalog.list_active_courses()}


@app.get("/courses/{course_id}")
def get_course(course_id: str, catalog: CourseCatalog = Depends(get_catalog)):
    course = catalog.get_course_by_id(course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@app.get("/courses/{course_id}/enrollment")
def get_enrollment(course_id: str, session: Session = Depends(require_auth),
                   enrollments: EnrollmentService = Depends(get_enrollments)):
    return {"enrolled": enrollments.is_enrolled(session.uid, course_id)}


@app.post("/courses/{course_id}/enrollment")
def enroll(course_id: str, session: Session = Depends(require_auth),
           catalog: CourseCatalog = Depends(get_catalog), enrollments: EnrollmentService = Depends(get_enrollments)):
    if catalog.get_course_by_id(course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return {"id": enrollments.enroll(session.uid, course_id)}


@app.delete("/courses/{course_id}/enrollment")
def unenroll(course_id: str, session: Session = Depends(require_auth),
             enrollments: EnrollmentService = Depends(get_enrollments)):
    enrollments.unenroll(session.uid, course_id)
    return {"ok": True}


@app.get("/courses/{course_id}/progress")
def get_course_progress(course_id: str, session: Session = Depends(require_auth),
                        enrollments: EnrollmentService = Depends(get_enrollments)):
    progress = enrollments.get_progress(session.uid, course_id)
    return {"progress": progress, "status": classify(progress) if progress else None}


@app.post("/courses/{course_id}/lessons/{lesson_id}/complete")
def complete_lesson(course_id: str, lesson_id: str, session: Session = Depends(require_auth),
                    enrollments: EnrollmentService = Depends(get_enrollments)):
    progress = enrollments.record_lesson_complete(session.uid, course_id, lesson_id)
    return {"progress": progress, "status": classify(progress)}


@app.get("/me/enrollments")
def my_enrollments(session: Session = Depends(require_auth), enrollments: EnrollmentService = Depends(get_enrollments)):
    return {"items": enrollments.list_user_enrollments(session.uid)}


@app.get("/me/progress")
def my_progress(status: Optional[str] = None, session: Session = Depends(require_auth),
                enrollments: EnrollmentService = Depends(get_enrollments)):
    if status == "pending":
        return {"items": enrollments.pending_courses(session.uid)}
    if status == "in-progress":
        return {"items": enrollments.courses_in_progress(session.uid)}
    if status == "completed":
        return {"items": enrollments.completed_courses(session.uid)}
    return {"items": enrollments.list_user_progress(session.uid)}


@app.get("/me/statistics")
def my_statistics(session: Session = Depends(require_auth), enrollments: EnrollmentService = Depends(get_enrollments)):
    return enrollments.user_statistics(session.uid)


# -----------------------------
# Learning styles
# -----------------------------
@app.get("/learning-styles")
def list_learning_styles(assessments: AssessmentService = Depends(get_assessments)):
    return {"items": assessments.list_learning_styles()}


@app.get("/learning-styles/{style_id}")
def get_learning_style(style_id: str, assessments: AssessmentService = Depends(get_assessments)):
    style = assessments.get_learning_style(style_id)
    if style is None:
        raise HTTPException(status_code=404, detail="Learning style not found")
    return style


def _active_assessment(assessments: AssessmentService):
    assessment = assessments.get_active_assessment()
    if assessment is None or not assessment.questions:
        raise ConfigurationMissing("Learning style test is not configured")
    return assessment


@app.get("/assessments/learning-style")
def get_assessment(session: Session = Depends(require_auth), assessments: AssessmentService = Depends(get_assessments)):
    return _active_assessment(assessments)


@app.post("/assessments/learning-style/submit")
def submit_assessment(sub: AssessmentSubmission, session: Session = Depends(require_auth),
                      assessments: AssessmentService = Depends(get_assessments),
                      users: UserDirectory = Depends(get_users)):
    run = AssessmentPass(_active_assessment(assessments))
    for question_id, choice_id in sub.answers.items():
        run.select(question_id, choice_id)
    style_id = submit_learning_style_test(assessments, users, session.uid, run)
    return {"learning_style_id": style_id, "learning_style": assessments.get_learning_style(style_id)}


# -----------------------------
# Admin: users
# -----------------------------
@app.get("/admin/users")
def admin_list_users(session: Session = Depends(require_admin), users: UserDirectory = Depends(get_users)):
    return {"items": users.list_users()}


@app.post("/admin/users")
def admin_create_user(req: CreateUserRequest, session: Session = Depends(require_admin),
                      users: UserDirectory = Depends(get_users)):
    return {"id": users.create_user(req.model_dump())}


@app.patch("/admin/users/{user_id}")
def admin_update_user(user_id: str, req: UpdateUserRequest, session: Session = Depends(require_admin),
                      users: UserDirectory = Depends(get_users)):
    users.update_user(user_id, req.model_dump(exclude_unset=True))
    return {"ok": True}


@app.delete("/admin/users/{user_id}")
def admin_delete_user(user_id: str, session: Session = Depends(require_admin), users: UserDirectory = Depends(get_users)):
    users.delete_user(user_id)
    return {"ok": True}


@app.post("/admin/users/{user_id}/roles")
def admin_assign_role(user_id: str, req: RoleAssignment, session: Session = Depends(require_admin),
                      users: UserDirectory = Depends(get_users)):
    link_id = users.assign_role(user_id, req.role)
    if link_id is None:
        raise HTTPException(status_code=400, detail="Unknown role")
    return {"id": link_id}


@app.get("/admin/users/{user_id}/enrollments")
def admin_user_enrollments(user_id: str, session: Session = Depends(require_admin),
                           enrollments: EnrollmentService = Depends(get_enrollments)):
    return {"items": enrollments.list_user_enrollments(user_id)}


@app.post("/admin/users/{user_id}/enrollments/{course_id}")
def admin_enroll(user_id: str, course_id: str, session: Session = Depends(require_admin),
                 enrollments: EnrollmentService = Depends(get_enrollments)):
    return {"id": enrollments.enroll(user_id, course_id)}


@app.delete("/admin/users/{user_id}/enrollments/{course_id}")
def admin_unenroll(user_id: str, course_id: str, session: Session = Depends(require_admin),
                   enrollments: EnrollmentService = Depends(get_enrollments)):
    enrollments.unenroll(user_id, course_id)
    return {"ok": True}


# -----------------------------
# Admin: courses
# -----------------------------
@app.get("/admin/courses")
def admin_list_courses(session: Session = Depends(require_admin), catalog: CourseCatalog = Depends(get_catalog)):
    return {"items": catalog.list_all_courses_for_admin()}


@app.post("/admin/courses")
def admin_create_course(req: CourseCreate, session: Session = Depends(require_admin),
                        catalog: CourseCatalog = Depends(get_catalog)):
    return {"id": catalog.create_course(req.model_dump())}


@app.patch("/admin/courses/{course_id}")
def admin_update_course(course_id: str, req: CourseUpdate, session: Session = Depends(require_admin),
                        catalog: CourseCatalog = Depends(get_catalog)):
    catalog.update_course(course_id, req.model_dump(exclude_unset=True))
    return {"ok": True}


@app.delete("/admin/courses/{course_id}")
def admin_deactivate_course(course_id: str, session: Session = Depends(require_admin),
                            catalog: CourseCatalog = Depends(get_catalog)):
    catalog.deactivate_course(course_id)
    return {"ok": True}


@app.delete("/admin/courses/{course_id}/permanent")
def admin_delete_course(course_id: str, session: Session = Depends(require_admin),
                        catalog: CourseCatalog = Depends(get_catalog)):
    catalog.delete_course(course_id)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
