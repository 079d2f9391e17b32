from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from .base import Base


class CourseActivityModel(Base):
    """Append-only audit record of actions taken inside a course."""

    __tablename__ = "course_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.user_id"), index=True, nullable=False)
    course_id = Column(String, ForeignKey("courses.course_id", ondelete="CASCADE"), index=True, nullable=False)
    action = Column(String, nullable=False)
    meta_info = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
