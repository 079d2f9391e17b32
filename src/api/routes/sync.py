"""Roster sync route (admin only)."""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends

from api.routes.auth import get_current_user
from core.dependencies import RosterClientDep, RosterSyncManagerDep
from core.exceptions import ForbiddenError
from models.enums import UserRole
from schemas.common import ApiResponse
from schemas.roster import RosterCourse
from schemas.user import User

router = APIRouter(prefix="/api/sync", tags=["Sync"])


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise ForbiddenError("Admin access required")
    return current_user


@router.post("/roster", response_model=ApiResponse, summary="Sync roster from the upstream platform")
def sync_roster(
    sync_manager: RosterSyncManagerDep,
    client: RosterClientDep,
    courses: Optional[List[RosterCourse]] = Body(default=None),
    current_user: User = Depends(require_admin),
) -> ApiResponse:
    """Upsert upstream courses, staff and enrollments.

    A request body, when given, is used as the roster; otherwise the
    configured upstream endpoint is fetched.
    """
    if courses is None:
        courses = client.fetch_courses()
    result = sync_manager.sync(courses)
    return ApiResponse(data=result, message="Roster synced successfully")
