"""Capability checks for case logs.

Every workflow operation asks one of these predicates instead of comparing
role strings itself. They only read the actor and the loaded log/course and
never touch the session.
"""

from typing import Set

from models.case_log import CaseLogModel
from models.course import CourseModel
from models.enums import LogStatus, UserRole
from schemas.user import User


def course_teacher_ids(course: CourseModel) -> Set[str]:
    """Owner plus co-teachers of a course."""
    ids = {course.teacher_id}
    ids.update(link.teacher_id for link in course.co_teachers)
    return ids


def is_course_teacher(actor: User, course: CourseModel) -> bool:
    return actor.role == UserRole.TEACHER and actor.user_id in course_teacher_ids(course)


def can_manage_course(actor: User, course: CourseModel) -> bool:
    """Owner teacher or admin may change a course and its staff."""
    if actor.role == UserRole.ADMIN:
        return True
    return actor.role == UserRole.TEACHER and course.teacher_id == actor.user_id


def is_log_owner(actor: User, log: CaseLogModel) -> bool:
    return actor.user_id == log.created_by_id


def can_create_log(actor: User) -> bool:
    return actor.role == UserRole.LEARNER


def can_edit_log(actor: User, log: CaseLogModel) -> bool:
    return is_log_owner(actor, log) and log.status != LogStatus.APPROVED


def can_delete_log(actor: User, log: CaseLogModel) -> bool:
    return is_log_owner(actor, log) and log.status == LogStatus.DRAFT


def can_review_log(actor: User, log: CaseLogModel) -> bool:
    return is_course_teacher(actor, log.course)


def can_view_log(actor: User, log: CaseLogModel) -> bool:
    return (
        is_log_owner(actor, log)
        or can_review_log(actor, log)
        or actor.role == UserRole.ADMIN
    )
