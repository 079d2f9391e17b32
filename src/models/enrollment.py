from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


class EnrollmentModel(Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (
        UniqueConstraint("course_id", "learner_id", name="uq_course_enrollments_course_learner"),
    )

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(String, ForeignKey("courses.course_id", ondelete="CASCADE"), index=True, nullable=False)
    learner_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False)
    progress = Column(Float, nullable=False, default=0.0)
    completed = Column(Boolean, nullable=False, default=False)
    enrolled_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    course = relationship("CourseModel", back_populates="enrollments")
    learner = relationship("UserModel")
