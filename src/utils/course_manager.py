"""Course, co-teacher and enrollment management utilities."""

import logging
import secrets
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models.case_log import CaseLogModel
from models.course import CourseModel
from models.course_teacher import CourseTeacherModel
from models.enrollment import EnrollmentModel
from models.enums import UserRole
from models.user import UserModel
from schemas.course import CourseInfo, CreateCourseRequest, UpdateCourseRequest
from schemas.user import User, UserBrief
from utils.access_policy import can_manage_course, course_teacher_ids
from utils.activity_recorder import record_activity
from utils.pagination import check_pagination

logger = logging.getLogger(__name__)


def teacher_course_ids(db: Session, teacher_id: str) -> List[str]:
    """Courses a teacher owns or co-teaches."""
    owned = db.query(CourseModel.course_id).filter(CourseModel.teacher_id == teacher_id)
    co_taught = db.query(CourseTeacherModel.course_id).filter(
        CourseTeacherModel.teacher_id == teacher_id
    )
    return sorted({row[0] for row in owned.union(co_taught).all()})


class CourseManager:
    """Manages courses, their teaching staff and learner enrollments."""

    def __init__(self, db: Session):
        self.db = db

    # --- Courses ---

    def get_course(self, course_id: str) -> CourseModel:
        model = self.db.query(CourseModel).filter(CourseModel.course_id == course_id).first()
        if not model:
            raise NotFoundError(f"Course '{course_id}' not found")
        return model

    def teacher_course_ids(self, teacher_id: str) -> List[str]:
        return teacher_course_ids(self.db, teacher_id)

    def get_course_for(self, actor: User, course_id: str) -> CourseModel:
        """Return a course the actor may see; hidden courses read as missing."""
        model = self.get_course(course_id)
        if actor.role == UserRole.ADMIN or actor.user_id in course_teacher_ids(model):
            return model
        if actor.role == UserRole.LEARNER and (model.visible or self.is_enrolled(course_id, actor.user_id)):
            return model
        raise NotFoundError(f"Course '{course_id}' not found")

    def list_courses(
        self,
        actor: User,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[CourseModel], int]:
        """List courses visible to the actor.

        Admins see every course, teachers the courses they own or co-teach,
        learners every visible course.

        Returns:
            The requested page of courses and the total match count.
        """
        check_pagination(page, limit)
        query = self.db.query(CourseModel)
        if actor.role == UserRole.TEACHER:
            ids = self.teacher_course_ids(actor.user_id)
            if not ids:
                return [], 0
            query = query.filter(CourseModel.course_id.in_(ids))
        elif actor.role == UserRole.LEARNER:
            query = query.filter(CourseModel.visible.is_(True))

        if search:
            term = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    CourseModel.title.ilike(term),
                    CourseModel.enrollment_number.ilike(term),
                    CourseModel.faculty_name.ilike(term),
                )
            )

        total = query.count()
        items = (
            query.order_by(CourseModel.created_at.desc(), CourseModel.title)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def create_course(self, actor: User, request: CreateCourseRequest) -> CourseModel:
        """Create a course owned by the acting teacher, or by a teacher an admin names.

        Raises:
            ForbiddenError: If a learner tries to create a course.
            ValidationError: If an admin omits the owner or names a non-teacher.
            ConflictError: If the enrollment number is taken.
        """
        if actor.role == UserRole.TEACHER:
            owner_id = actor.user_id
        elif actor.role == UserRole.ADMIN:
            if not request.teacher_id:
                raise ValidationError(
                    "A teacher must be assigned to the course",
                    fields={"teacher_id": "required"},
                )
            self._require_teacher(request.teacher_id, field="teacher_id")
            owner_id = request.teacher_id
        else:
            raise ForbiddenError("Only teachers and admins can create courses")

        self._check_enrollment_number(request.enrollment_number)
        values = request.model_dump(exclude={"teacher_id"})
        values["name"] = values.get("name") or request.title
        model = CourseModel(course_id=secrets.token_hex(8), teacher_id=owner_id, **values)
        self.db.add(model)
        self.db.flush()
        record_activity(self.db, actor.user_id, model.course_id, "COURSE_CREATED", title=model.title)
        self._commit_unique(request.enrollment_number)
        self.db.refresh(model)
        logger.info("Created course %s (%s) owned by %s", model.course_id, model.enrollment_number, owner_id)
        return model

    def update_course(self, actor: User, course_id: str, request: UpdateCourseRequest) -> CourseModel:
        model = self.get_course(course_id)
        if not can_manage_course(actor, model):
            raise ForbiddenError("Only the course owner or an admin can update this course")

        values = request.model_dump(exclude_unset=True, exclude_none=True)
        if "teacher_id" in values:
            if actor.role != UserRole.ADMIN:
                raise ForbiddenError("Only admins can reassign the course owner")
            self._require_teacher(values["teacher_id"], field="teacher_id")
        if "enrollment_number" in values and values["enrollment_number"] != model.enrollment_number:
            self._check_enrollment_number(values["enrollment_number"])

        start = values.get("start_date", model.start_date)
        end = values.get("end_date", model.end_date)
        if start and end and start > end:
            raise ValidationError(
                "Start date cannot be after end date",
                fields={"start_date": "must not be after end_date"},
            )

        for key, value in values.items():
            setattr(model, key, value)
        record_activity(self.db, actor.user_id, course_id, "COURSE_UPDATED", fields=sorted(values))
        self._commit_unique(values.get("enrollment_number", model.enrollment_number))
        self.db.refresh(model)
        logger.info("Updated course %s: %s", course_id, ", ".join(sorted(values)))
        return model

    def delete_course(self, actor: User, course_id: str) -> None:
        model = self.get_course(course_id)
        if not can_manage_course(actor, model):
            raise ForbiddenError("Only the course owner or an admin can delete this course")
        if model.enrollments:
            raise ConflictError("Cannot delete a course with enrolled learners")
        if self._count_logs(course_id):
            raise ConflictError("Cannot delete a course that has case logs")
        self.db.delete(model)
        self.db.commit()
        logger.info("Deleted course %s", course_id)

    # --- Co-teachers ---

    def add_co_teacher(self, actor: User, course_id: str, teacher_id: str) -> CourseTeacherModel:
        model = self.get_course(course_id)
        if not can_manage_course(actor, model):
            raise ForbiddenError("Only the course owner or an admin can manage co-teachers")
        self._require_teacher(teacher_id, field="teacher_id")
        if teacher_id == model.teacher_id:
            raise ConflictError("This teacher already owns the course")

        link = CourseTeacherModel(course_id=course_id, teacher_id=teacher_id)
        self.db.add(link)
        record_activity(self.db, actor.user_id, course_id, "CO_TEACHER_ADDED", teacher_id=teacher_id)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Teacher is already a co-teacher of this course") from e
        self.db.refresh(link)
        logger.info("Added co-teacher %s to course %s", teacher_id, course_id)
        return link

    def remove_co_teacher(self, actor: User, course_id: str, teacher_id: str) -> None:
        model = self.get_course(course_id)
        if not can_manage_course(actor, model):
            raise ForbiddenError("Only the course owner or an admin can manage co-teachers")
        link = (
            self.db.query(CourseTeacherModel)
            .filter(
                CourseTeacherModel.course_id == course_id,
                CourseTeacherModel.teacher_id == teacher_id,
            )
            .first()
        )
        if not link:
            raise NotFoundError(f"Teacher '{teacher_id}' is not a co-teacher of this course")
        self.db.delete(link)
        record_activity(self.db, actor.user_id, course_id, "CO_TEACHER_REMOVED", teacher_id=teacher_id)
        self.db.commit()
        logger.info("Removed co-teacher %s from course %s", teacher_id, course_id)

    # --- Enrollments ---

    def enroll(self, actor: User, course_id: str, learner_id: Optional[str] = None) -> EnrollmentModel:
        """Enroll a learner in a course.

        Learners enroll themselves; admins may enroll any learner.

        Raises:
            ForbiddenError: If a teacher tries to enroll.
            ConflictError: If the learner is already enrolled.
        """
        learner_id = self._resolve_learner(actor, learner_id)
        course = self.get_course(course_id)
        if actor.role == UserRole.LEARNER and not course.visible:
            raise NotFoundError(f"Course '{course_id}' not found")
        if self._get_enrollment(course_id, learner_id):
            raise ConflictError("Already enrolled in this course")

        enrollment = EnrollmentModel(course_id=course_id, learner_id=learner_id)
        self.db.add(enrollment)
        record_activity(self.db, actor.user_id, course_id, "ENROLLED", learner_id=learner_id)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Already enrolled in this course") from e
        self.db.refresh(enrollment)
        logger.info("Enrolled learner %s in course %s", learner_id, course_id)
        return enrollment

    def unenroll(self, actor: User, course_id: str, learner_id: Optional[str] = None) -> None:
        learner_id = self._resolve_learner(actor, learner_id)
        enrollment = self._get_enrollment(course_id, learner_id)
        if not enrollment:
            raise NotFoundError("Not enrolled in this course")
        has_logs = (
            self.db.query(CaseLogModel.log_id)
            .filter(CaseLogModel.course_id == course_id, CaseLogModel.created_by_id == learner_id)
            .first()
        )
        if has_logs:
            raise ConflictError("Cannot unenroll while case logs exist in this course")
        self.db.delete(enrollment)
        record_activity(self.db, actor.user_id, course_id, "UNENROLLED", learner_id=learner_id)
        self.db.commit()
        logger.info("Unenrolled learner %s from course %s", learner_id, course_id)

    def list_enrollments(self, actor: User, course_id: str) -> List[EnrollmentModel]:
        course = self.get_course(course_id)
        if actor.role != UserRole.ADMIN and actor.user_id not in course_teacher_ids(course):
            raise ForbiddenError("Only the course's teachers can list its enrollments")
        return (
            self.db.query(EnrollmentModel)
            .filter(EnrollmentModel.course_id == course_id)
            .order_by(EnrollmentModel.enrolled_at.desc())
            .all()
        )

    def list_enrolled(self, actor: User) -> List[EnrollmentModel]:
        """Enrollments of the acting learner, newest first."""
        if actor.role != UserRole.LEARNER:
            raise ForbiddenError("Only learners have enrollments")
        return (
            self.db.query(EnrollmentModel)
            .filter(EnrollmentModel.learner_id == actor.user_id)
            .order_by(EnrollmentModel.enrolled_at.desc())
            .all()
        )

    def is_enrolled(self, course_id: str, learner_id: str) -> bool:
        return self._get_enrollment(course_id, learner_id) is not None

    # --- Read models ---

    def to_info(self, model: CourseModel, actor: Optional[User] = None) -> CourseInfo:
        info = CourseInfo.model_validate(model)
        info.teacher = UserBrief.model_validate(model.teacher) if model.teacher else None
        info.co_teacher_ids = [link.teacher_id for link in model.co_teachers]
        info.enrollment_count = len(model.enrollments)
        info.log_count = self._count_logs(model.course_id)
        if actor is not None and actor.role == UserRole.LEARNER:
            enrollment = self._get_enrollment(model.course_id, actor.user_id)
            info.is_enrolled = enrollment is not None
            info.enrolled_at = enrollment.enrolled_at if enrollment else None
        return info

    # --- Helpers ---

    def _get_enrollment(self, course_id: str, learner_id: str) -> Optional[EnrollmentModel]:
        return (
            self.db.query(EnrollmentModel)
            .filter(
                EnrollmentModel.course_id == course_id,
                EnrollmentModel.learner_id == learner_id,
            )
            .first()
        )

    def _count_logs(self, course_id: str) -> int:
        return (
            self.db.query(func.count(CaseLogModel.log_id))
            .filter(CaseLogModel.course_id == course_id)
            .scalar()
        ) or 0

    def _resolve_learner(self, actor: User, learner_id: Optional[str]) -> str:
        if actor.role == UserRole.LEARNER:
            if learner_id and learner_id != actor.user_id:
                raise ForbiddenError("Learners can only manage their own enrollments")
            return actor.user_id
        if actor.role == UserRole.ADMIN:
            if not learner_id:
                raise ValidationError("learner_id is required", fields={"learner_id": "required"})
            self._require_role(learner_id, UserRole.LEARNER, field="learner_id")
            return learner_id
        raise ForbiddenError("Only learners and admins can manage enrollments")

    def _require_teacher(self, user_id: str, field: str) -> UserModel:
        return self._require_role(user_id, UserRole.TEACHER, field)

    def _require_role(self, user_id: str, role: UserRole, field: str) -> UserModel:
        user = self.db.query(UserModel).filter(UserModel.user_id == user_id).first()
        if not user:
            raise NotFoundError(f"User '{user_id}' not found")
        if user.role != role:
            raise ValidationError(
                f"User '{user_id}' is not a {role.value.lower()}",
                fields={field: f"must reference a {role.value}"},
            )
        return user

    def _check_enrollment_number(self, enrollment_number: str) -> None:
        taken = (
            self.db.query(CourseModel.course_id)
            .filter(CourseModel.enrollment_number == enrollment_number)
            .first()
        )
        if taken:
            raise ConflictError(
                "Course with this enrollment number already exists",
                fields={"enrollment_number": "already in use"},
            )

    def _commit_unique(self, enrollment_number: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Enrollment number collision on commit: %s", enrollment_number)
            raise ConflictError(
                "Course with this enrollment number already exists",
                fields={"enrollment_number": "already in use"},
            ) from e
