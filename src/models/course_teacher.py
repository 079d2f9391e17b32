from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


class CourseTeacherModel(Base):
    """Co-teacher link granting review rights on a course."""

    __tablename__ = "course_teachers"
    __table_args__ = (
        UniqueConstraint("course_id", "teacher_id", name="uq_course_teachers_course_teacher"),
    )

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(String, ForeignKey("courses.course_id", ondelete="CASCADE"), index=True, nullable=False)
    teacher_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    course = relationship("CourseModel", back_populates="co_teachers")
    teacher = relationship("UserModel")
