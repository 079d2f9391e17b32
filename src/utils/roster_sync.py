"""Roster import from the upstream learning platform.

``RosterClient`` fetches courses with their teaching staff and learners;
``RosterSyncManager`` upserts them. Running a sync twice with the same
upstream data changes nothing the second time: users match on external id
and then email, courses on external id and then enrollment number, and links
on their natural (course, user) key.
"""

import logging
import secrets
from datetime import datetime
from typing import Iterable, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from config import ROSTER_SYNC_TIMEOUT, ROSTER_SYNC_TOKEN, ROSTER_SYNC_URL
from core.exceptions import DependencyError
from models.course import CourseModel
from models.course_teacher import CourseTeacherModel
from models.enrollment import EnrollmentModel
from models.enums import UserRole
from models.user import UserModel
from schemas.roster import RosterCourse, RosterUser, SyncResult
from utils.time_utils import as_utc
from utils.user_manager import UserManager

logger = logging.getLogger(__name__)

COURSE_FIELDS = (
    "title",
    "description",
    "faculty_name",
    "hospital_name",
    "location",
    "start_date",
    "end_date",
    "visible",
    "classroom_id",
    "classroom_name",
)


class RosterClient:
    """HTTP client for the upstream roster endpoint."""

    def __init__(
        self,
        url: Optional[str] = ROSTER_SYNC_URL,
        token: Optional[str] = ROSTER_SYNC_TOKEN,
        timeout: float = ROSTER_SYNC_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def fetch_courses(self) -> List[RosterCourse]:
        """Download and parse the upstream roster.

        Raises:
            DependencyError: If the endpoint is unconfigured, unreachable,
                answers with an error status or returns malformed data.
        """
        if not self.url:
            raise DependencyError("Roster sync is not configured")

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            with httpx.Client(timeout=httpx.Timeout(self.timeout), transport=self.transport) as client:
                resp = client.get(self.url, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("Roster API returned HTTP %s", e.response.status_code, exc_info=True)
            raise DependencyError("Roster service returned an error") from e
        except httpx.RequestError as e:
            logger.error("Network error calling roster API", exc_info=True)
            raise DependencyError("Roster service is unreachable") from e
        except ValueError as e:
            logger.error("Roster API returned invalid JSON", exc_info=True)
            raise DependencyError("Roster service returned invalid data") from e

        items = payload.get("courses", []) if isinstance(payload, dict) else payload
        try:
            return [RosterCourse.model_validate(item) for item in items]
        except (PydanticValidationError, TypeError) as e:
            logger.error("Roster payload failed validation: %s", e)
            raise DependencyError("Roster service returned invalid data") from e


class RosterSyncManager:
    """Idempotent upsert of upstream courses, staff and enrollments."""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserManager(db)

    def sync(self, courses: Iterable[RosterCourse]) -> SyncResult:
        result = SyncResult()
        for roster_course in courses:
            teacher = self._upsert_user(roster_course.teacher, UserRole.TEACHER, result)
            course = self._upsert_course(roster_course, teacher, result)
            for co_teacher in roster_course.co_teachers:
                user = self._upsert_user(co_teacher, UserRole.TEACHER, result)
                if user.user_id != course.teacher_id:
                    self._link_co_teacher(course, user, result)
            for learner in roster_course.learners:
                user = self._upsert_user(learner, UserRole.LEARNER, result)
                self._enroll(course, user, result)
        self.db.commit()
        logger.info("Roster sync finished: %s", result.model_dump())
        return result

    def _upsert_user(self, record: RosterUser, role: UserRole, result: SyncResult) -> UserModel:
        email = record.email.strip().lower()
        user = self.db.query(UserModel).filter(UserModel.external_id == record.external_id).first()
        if not user:
            user = self.db.query(UserModel).filter(UserModel.email == email).first()

        profile = {
            "name": record.name,
            "phone": record.phone,
            "city": record.city,
            "country": record.country,
            "student_id": record.student_id,
            "kyc_verified": record.kyc_verified,
        }
        if user is None:
            user = UserModel(
                user_id=secrets.token_hex(12),
                email=email,
                external_id=record.external_id,
                role=role,
                # Upstream accounts sign in through the platform; this hash
                # matches no password
                password_hash=self.users.hash_password(secrets.token_urlsafe(32)),
                **profile,
            )
            self.db.add(user)
            self.db.flush()
            result.users_created += 1
            return user

        changed = self._apply(user, dict(profile, external_id=record.external_id))
        # An upstream teacher assignment promotes a learner account
        if role == UserRole.TEACHER and user.role == UserRole.LEARNER:
            user.role = UserRole.TEACHER
            changed = True
        if changed:
            result.users_updated += 1
        return user

    def _upsert_course(self, record: RosterCourse, teacher: UserModel, result: SyncResult) -> CourseModel:
        course = self.db.query(CourseModel).filter(CourseModel.external_id == record.external_id).first()
        if not course:
            course = (
                self.db.query(CourseModel)
                .filter(CourseModel.enrollment_number == record.enrollment_number)
                .first()
            )

        values = {field: getattr(record, field) for field in COURSE_FIELDS}
        values["name"] = record.name or record.title
        values["teacher_id"] = teacher.user_id
        if course is None:
            course = CourseModel(
                course_id=secrets.token_hex(8),
                external_id=record.external_id,
                enrollment_number=record.enrollment_number,
                **values,
            )
            self.db.add(course)
            self.db.flush()
            result.courses_created += 1
            return course

        values["external_id"] = record.external_id
        if self._apply(course, values):
            result.courses_updated += 1
        return course

    def _link_co_teacher(self, course: CourseModel, teacher: UserModel, result: SyncResult) -> None:
        exists = (
            self.db.query(CourseTeacherModel.id)
            .filter(
                CourseTeacherModel.course_id == course.course_id,
                CourseTeacherModel.teacher_id == teacher.user_id,
            )
            .first()
        )
        if exists:
            return
        self.db.add(CourseTeacherModel(course_id=course.course_id, teacher_id=teacher.user_id))
        self.db.flush()
        result.co_teachers_created += 1

    def _enroll(self, course: CourseModel, learner: UserModel, result: SyncResult) -> None:
        exists = (
            self.db.query(EnrollmentModel.id)
            .filter(
                EnrollmentModel.course_id == course.course_id,
                EnrollmentModel.learner_id == learner.user_id,
            )
            .first()
        )
        if exists:
            return
        self.db.add(EnrollmentModel(course_id=course.course_id, learner_id=learner.user_id))
        self.db.flush()
        result.enrollments_created += 1

    @staticmethod
    def _apply(model, values: dict) -> bool:
        changed = False
        for key, value in values.items():
            if value is None:
                continue
            current = getattr(model, key)
            if isinstance(value, datetime):
                # SQLite hands datetimes back naive
                current, value = as_utc(current), as_utc(value)
            if current != value:
                setattr(model, key, value)
                changed = True
        return changed
