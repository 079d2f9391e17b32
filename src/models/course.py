from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


class CourseModel(Base):
    __tablename__ = "courses"

    course_id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    name = Column(String, nullable=False)
    enrollment_number = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)

    faculty_name = Column(String, nullable=True)
    designation = Column(String, nullable=True)
    hospital_name = Column(String, nullable=True)
    location = Column(String, nullable=True)
    contact_program = Column(String, nullable=True)

    # Primary (owner) teacher
    teacher_id = Column(String, ForeignKey("users.user_id"), index=True, nullable=False)

    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="Active")
    visible = Column(Boolean, nullable=False, default=True)

    external_id = Column(String, unique=True, nullable=True)
    classroom_id = Column(Integer, nullable=True)
    classroom_name = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    teacher = relationship("UserModel", foreign_keys=[teacher_id])
    co_teachers = relationship(
        "CourseTeacherModel",
        back_populates="course",
        cascade="all, delete-orphan",
    )
    enrollments = relationship(
        "EnrollmentModel",
        back_populates="course",
        cascade="all, delete-orphan",
    )
    logs = relationship("CaseLogModel", back_populates="course")
