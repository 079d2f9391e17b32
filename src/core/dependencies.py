"""Dependency injection module for FastAPI.

This module provides dependency injection functions for FastAPI routes.
Managers are built per request around the request-scoped DB session.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.database import get_db
from utils import case_log_manager
from utils import course_manager
from utils import notification_manager
from utils import roster_sync
from utils import submission_aggregator
from utils import user_manager


def get_user_manager(db: Session = Depends(get_db)) -> user_manager.UserManager:
    """Get UserManager instance with request-scoped DB session.

    Args:
        db: Database session.

    Returns:
        UserManager instance.
    """
    return user_manager.UserManager(db)


def get_course_manager(db: Session = Depends(get_db)) -> course_manager.CourseManager:
    """Get CourseManager instance with request-scoped DB session."""
    return course_manager.CourseManager(db)


def get_case_log_manager(db: Session = Depends(get_db)) -> case_log_manager.CaseLogManager:
    """Get CaseLogManager instance with request-scoped DB session."""
    return case_log_manager.CaseLogManager(db)


def get_submission_aggregator(
    db: Session = Depends(get_db),
) -> submission_aggregator.SubmissionAggregator:
    """Get SubmissionAggregator instance with request-scoped DB session."""
    return submission_aggregator.SubmissionAggregator(db)


def get_roster_sync_manager(db: Session = Depends(get_db)) -> roster_sync.RosterSyncManager:
    return roster_sync.RosterSyncManager(db)


def get_roster_client(request: Request) -> roster_sync.RosterClient:
    """Roster client owned by the application."""
    return request.app.state.roster_client


def get_notification_manager(request: Request) -> notification_manager.NotificationManager:
    """Notification sender owned by the application."""
    return request.app.state.notifications


# Type aliases for dependency injection
UserManagerDep = Annotated[
    user_manager.UserManager, Depends(get_user_manager)
]
CourseManagerDep = Annotated[
    course_manager.CourseManager, Depends(get_course_manager)
]
CaseLogManagerDep = Annotated[
    case_log_manager.CaseLogManager, Depends(get_case_log_manager)
]
SubmissionAggregatorDep = Annotated[
    submission_aggregator.SubmissionAggregator, Depends(get_submission_aggregator)
]
RosterSyncManagerDep = Annotated[
    roster_sync.RosterSyncManager, Depends(get_roster_sync_manager)
]
RosterClientDep = Annotated[
    roster_sync.RosterClient, Depends(get_roster_client)
]
NotificationManagerDep = Annotated[
    notification_manager.NotificationManager, Depends(get_notification_manager)
]
