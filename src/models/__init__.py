from .base import Base
from .user import UserModel
from .course import CourseModel
from .course_teacher import CourseTeacherModel
from .enrollment import EnrollmentModel
from .case_log import CaseLogModel
from .course_activity import CourseActivityModel

__all__ = [
    "Base",
    "UserModel",
    "CourseModel",
    "CourseTeacherModel",
    "EnrollmentModel",
    "CaseLogModel",
    "CourseActivityModel",
]
