import itertools
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytz
from fastapi.testclient import TestClient

from api.routes.auth import get_current_user
from app import create_app
from core.database import Database
from core.exceptions import AuthenticationError
from models import CourseModel, CourseTeacherModel, EnrollmentModel, UserModel
from models.enums import Sex, UserRole
from schemas.case_log import CaseLogCreate
from schemas.user import User
from utils.case_log_manager import CaseLogManager
from utils.notification_manager import NotificationManager
from utils.roster_sync import RosterClient


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    with database.session() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role: UserRole = UserRole.LEARNER, name: str = None, email: str = None) -> User:
        n = next(counter)
        prefix = role.value.lower()
        model = UserModel(
            user_id=f"{prefix}-{n}",
            email=email or f"{prefix}{n}@example.com",
            name=name or f"{role.value.title()} {n}",
            password_hash="unused",
            role=role,
        )
        db.add(model)
        db.commit()
        db.refresh(model)
        return User.model_validate(model)

    return _make


@pytest.fixture
def make_course(db):
    counter = itertools.count(1)

    def _make(teacher: User, co_teachers=(), end_date=None, faculty_name="Medicine", title=None) -> CourseModel:
        n = next(counter)
        course = CourseModel(
            course_id=f"course-{n}",
            title=title or f"Clinical Rotation {n}",
            name=title or f"Clinical Rotation {n}",
            enrollment_number=f"ENR-{n:03d}",
            faculty_name=faculty_name,
            teacher_id=teacher.user_id,
            end_date=end_date,
        )
        db.add(course)
        for co_teacher in co_teachers:
            db.add(CourseTeacherModel(course_id=course.course_id, teacher_id=co_teacher.user_id))
        db.commit()
        db.refresh(course)
        return course

    return _make


@pytest.fixture
def enroll(db):
    def _enroll(course: CourseModel, learner: User) -> EnrollmentModel:
        enrollment = EnrollmentModel(course_id=course.course_id, learner_id=learner.user_id)
        db.add(enrollment)
        db.commit()
        return enrollment

    return _enroll


def log_payload(course_id: str, **overrides) -> dict:
    payload = {
        "course_id": course_id,
        "date": datetime(2024, 3, 14, 9, 30, tzinfo=pytz.utc),
        "age": 42,
        "sex": Sex.FEMALE,
        "uhid": "UH-1001",
        "chief_complaint": "Chest pain for two days",
        "history_presenting": "Intermittent retrosternal pain on exertion",
        "clinical_examination": "BP 140/90, HR 96, no murmurs",
        "diagnosis": "Stable angina",
        "management": "Aspirin, statin, cardiology referral",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def log_manager(db):
    return CaseLogManager(db)


@pytest.fixture
def new_log(log_manager):
    def _new(learner: User, course: CourseModel, **overrides):
        return log_manager.create_log(learner, CaseLogCreate(**log_payload(course.course_id, **overrides)))

    return _new


@pytest.fixture
def world(make_user, make_course, enroll):
    """One course with an owner, a co-teacher, an enrolled learner and outsiders."""
    teacher = make_user(UserRole.TEACHER, name="Dr Owner")
    co_teacher = make_user(UserRole.TEACHER, name="Dr Co")
    outsider_teacher = make_user(UserRole.TEACHER, name="Dr Elsewhere")
    learner = make_user(UserRole.LEARNER, name="Asha Learner")
    other_learner = make_user(UserRole.LEARNER, name="Ben Other")
    admin = make_user(UserRole.ADMIN, name="Root Admin")
    course = make_course(teacher, co_teachers=[co_teacher])
    enroll(course, learner)
    return SimpleNamespace(
        teacher=teacher,
        co_teacher=co_teacher,
        outsider_teacher=outsider_teacher,
        learner=learner,
        other_learner=other_learner,
        admin=admin,
        course=course,
    )


@pytest.fixture
def acting():
    """Holder for the user the test client authenticates as."""
    return SimpleNamespace(user=None)


@pytest.fixture
def notifications():
    return NotificationManager(host=None)


@pytest.fixture
def client(database, acting, notifications):
    app = create_app(database=database, notifications=notifications, roster_client=RosterClient(url=None))

    def _current_user() -> User:
        if acting.user is None:
            raise AuthenticationError("Access token required")
        return acting.user

    app.dependency_overrides[get_current_user] = _current_user
    with TestClient(app) as test_client:
        yield test_client
