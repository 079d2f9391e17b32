"""Append-only course activity records.

Records are added to the caller's session and committed with the caller's
transaction, so an aborted transition leaves no trace.
"""

from typing import Any

from sqlalchemy.orm import Session

from models.course_activity import CourseActivityModel


def record_activity(db: Session, user_id: str, course_id: str, action: str, **meta_info: Any) -> None:
    db.add(
        CourseActivityModel(
            user_id=user_id,
            course_id=course_id,
            action=action,
            meta_info=meta_info,
        )
    )
