import json
from datetime import datetime

import httpx
import pytest
import pytz

from core.exceptions import DependencyError
from models import CourseModel, CourseTeacherModel, EnrollmentModel, UserModel
from models.enums import UserRole
from schemas.roster import RosterCourse
from utils.roster_sync import RosterClient, RosterSyncManager

ROSTER = [
    {
        "external_id": "crs-77",
        "title": "Internal Medicine Rotation",
        "enrollment_number": "IM-2024-A",
        "faculty_name": "Medicine",
        "hospital_name": "City General",
        "start_date": "2024-01-08T00:00:00Z",
        "end_date": "2024-06-28T00:00:00Z",
        "teacher": {"external_id": "t-1", "email": "Owner@Hospital.org", "name": "Dr Owner"},
        "co_teachers": [{"external_id": "t-2", "email": "co@hospital.org", "name": "Dr Co"}],
        "learners": [
            {"external_id": "l-1", "email": "asha@uni.edu", "name": "Asha", "student_id": "S-1"},
            {"external_id": "l-2", "email": "ben@uni.edu", "name": "Ben"},
        ],
    }
]


def _courses(data=ROSTER):
    return [RosterCourse.model_validate(item) for item in data]


def _counts(db):
    return tuple(
        db.query(model).count()
        for model in (UserModel, CourseModel, CourseTeacherModel, EnrollmentModel)
    )


class TestRosterSync:
    def test_first_sync_creates_everything(self, db):
        result = RosterSyncManager(db).sync(_courses())

        assert result.users_created == 4
        assert result.courses_created == 1
        assert result.co_teachers_created == 1
        assert result.enrollments_created == 2
        owner = db.query(UserModel).filter_by(external_id="t-1").one()
        assert owner.email == "owner@hospital.org"
        assert owner.role == UserRole.TEACHER
        course = db.query(CourseModel).filter_by(external_id="crs-77").one()
        assert course.teacher_id == owner.user_id
        assert course.name == "Internal Medicine Rotation"

    def test_second_sync_changes_nothing(self, db):
        manager = RosterSyncManager(db)
        manager.sync(_courses())
        before = _counts(db)

        result = manager.sync(_courses())

        assert result.model_dump() == {
            "users_created": 0,
            "users_updated": 0,
            "courses_created": 0,
            "courses_updated": 0,
            "enrollments_created": 0,
            "co_teachers_created": 0,
        }
        assert _counts(db) == before

    def test_matches_existing_accounts_by_email(self, db, make_user):
        local = make_user(UserRole.LEARNER, name="Asha Local", email="asha@uni.edu")

        result = RosterSyncManager(db).sync(_courses())

        assert result.users_created == 3
        assert result.users_updated == 1
        linked = db.query(UserModel).filter_by(user_id=local.user_id).one()
        assert linked.external_id == "l-1"
        assert linked.name == "Asha"

    def test_upstream_teacher_promotes_learner(self, db, make_user):
        make_user(UserRole.LEARNER, email="co@hospital.org")
        RosterSyncManager(db).sync(_courses())
        assert db.query(UserModel).filter_by(email="co@hospital.org").one().role == UserRole.TEACHER

    def test_course_updates_are_applied(self, db):
        manager = RosterSyncManager(db)
        manager.sync(_courses())
        changed = json.loads(json.dumps(ROSTER))
        changed[0]["end_date"] = "2024-07-31T00:00:00Z"

        result = manager.sync(_courses(changed))

        assert result.courses_updated == 1
        course = db.query(CourseModel).filter_by(external_id="crs-77").one()
        assert course.end_date.replace(tzinfo=pytz.utc) == datetime(2024, 7, 31, tzinfo=pytz.utc)


class TestRosterClient:
    def test_fetches_wrapped_payload(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"courses": ROSTER})

        client = RosterClient(
            url="https://roster.example.org/api/courses",
            token="secret",
            transport=httpx.MockTransport(handler),
        )
        courses = client.fetch_courses()

        assert seen["auth"] == "Bearer secret"
        assert [c.external_id for c in courses] == ["crs-77"]
        assert len(courses[0].learners) == 2

    def test_accepts_bare_list(self):
        client = RosterClient(
            url="https://roster.example.org/api/courses",
            token=None,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=ROSTER)),
        )
        assert len(client.fetch_courses()) == 1

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(200, text="<html>"),
            httpx.Response(200, json=[{"external_id": "x"}]),
        ],
    )
    def test_bad_upstream(self, response):
        client = RosterClient(
            url="https://roster.example.org/api/courses",
            transport=httpx.MockTransport(lambda request: response),
        )
        with pytest.raises(DependencyError):
            client.fetch_courses()

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = RosterClient(url="https://roster.example.org/api/courses", transport=httpx.MockTransport(handler))
        with pytest.raises(DependencyError):
            client.fetch_courses()

    def test_unconfigured(self):
        with pytest.raises(DependencyError):
            RosterClient(url=None).fetch_courses()
