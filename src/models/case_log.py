"""Case log database model.

A case log is one medical case filed by a learner in a course and reviewed
by that course's teachers.
"""

from datetime import datetime

import pytz
from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from .base import Base
from .enums import LogStatus, Sex


def _utc_now() -> datetime:
    return datetime.now(pytz.utc)


class CaseLogModel(Base):
    __tablename__ = "case_logs"

    log_id = Column(String, primary_key=True, index=True)
    case_no = Column(String, unique=True, index=True, nullable=False)

    date = Column(DateTime(timezone=True), nullable=False, index=True)
    age = Column(Float, nullable=False)
    sex = Column(Enum(Sex, name="sex"), nullable=False)
    uhid = Column(String, nullable=False)
    chief_complaint = Column(Text, nullable=False)
    history_presenting = Column(Text, nullable=False)
    past_history = Column(Text, nullable=False, default="")
    personal_history = Column(Text, nullable=False, default="")
    family_history = Column(Text, nullable=False, default="")
    clinical_examination = Column(Text, nullable=False)
    lab_examinations = Column(Text, nullable=False, default="")
    diagnosis = Column(Text, nullable=False)
    management = Column(Text, nullable=False)

    status = Column(
        Enum(LogStatus, name="log_status"),
        nullable=False,
        default=LogStatus.DRAFT,
        index=True,
    )
    rejection_reason = Column(Text, nullable=True)
    teacher_comments = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    course_id = Column(String, ForeignKey("courses.course_id", ondelete="CASCADE"), index=True, nullable=False)
    created_by_id = Column(String, ForeignKey("users.user_id", ondelete="CASCADE"), index=True, nullable=False)
    approved_by_id = Column(String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    rejected_by_id = Column(String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)

    course = relationship("CourseModel", back_populates="logs")
    created_by = relationship("UserModel", foreign_keys=[created_by_id])
    approved_by = relationship("UserModel", foreign_keys=[approved_by_id])
    rejected_by = relationship("UserModel", foreign_keys=[rejected_by_id])
