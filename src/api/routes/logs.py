"""Case log routes: authoring for learners, review for teachers."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from api.routes.auth import get_current_user
from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from core.dependencies import CaseLogManagerDep, NotificationManagerDep
from models.case_log import CaseLogModel
from models.enums import LogStatus
from schemas.case_log import ApproveRequest, CaseLogCreate, CaseLogInfo, CaseLogUpdate, RejectRequest
from schemas.common import ApiResponse, Page, Pagination
from schemas.user import User
from utils.notification_manager import NotificationManager, SubmissionStatusEmail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/logs", tags=["Case Log"])


def enqueue_status_email(
    background_tasks: BackgroundTasks,
    notifications: NotificationManager,
    log: CaseLogModel,
    teacher: User,
) -> None:
    """Queue the learner's review email; runs after the response is sent."""
    payload = SubmissionStatusEmail.from_log(log, teacher_name=teacher.name)
    if payload is None:
        logger.info("No notification for log %s", log.log_id)
        return
    background_tasks.add_task(notifications.send_status_email, payload)


def _page(items, page: int, limit: int, total: int) -> Page:
    return Page(
        items=[CaseLogInfo.model_validate(m) for m in items],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("", response_model=ApiResponse, summary="List case logs")
def list_logs(
    log_manager: CaseLogManagerDep,
    course_id: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    items, total = log_manager.list_logs(
        current_user,
        course_id=course_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(data=_page(items, page, limit, total))


@router.get("/review", response_model=ApiResponse, summary="Teacher review queue")
def list_for_review(
    log_manager: CaseLogManagerDep,
    course_id: Optional[str] = None,
    status: LogStatus = LogStatus.SUBMITTED,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    items, total = log_manager.list_for_review(
        current_user, course_id=course_id, status=status, page=page, limit=limit
    )
    return ApiResponse(data=_page(items, page, limit, total))


@router.post("", response_model=ApiResponse, status_code=201, summary="Create case log")
def create_log(
    req: CaseLogCreate,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.create_log(current_user, req)
    return ApiResponse(data=CaseLogInfo.model_validate(model), message="Log created successfully")


@router.get("/{log_id}", response_model=ApiResponse, summary="Get case log")
def get_log(
    log_id: str,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    return ApiResponse(data=CaseLogInfo.model_validate(log_manager.get_log(current_user, log_id)))


@router.put("/{log_id}", response_model=ApiResponse, summary="Update case log")
def update_log(
    log_id: str,
    req: CaseLogUpdate,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.update_log(current_user, log_id, req)
    return ApiResponse(data=CaseLogInfo.model_validate(model), message="Log updated successfully")


@router.delete("/{log_id}", response_model=ApiResponse, summary="Delete draft case log")
def delete_log(
    log_id: str,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    log_manager.delete_log(current_user, log_id)
    return ApiResponse(message="Log deleted successfully")


@router.post("/{log_id}/submit", response_model=ApiResponse, summary="Submit case log")
def submit_log(
    log_id: str,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.submit_log(current_user, log_id)
    return ApiResponse(data=CaseLogInfo.model_validate(model), message="Log submitted successfully")


@router.post("/{log_id}/approve", response_model=ApiResponse, summary="Approve case log")
def approve_log(
    log_id: str,
    log_manager: CaseLogManagerDep,
    notifications: NotificationManagerDep,
    background_tasks: BackgroundTasks,
    req: Optional[ApproveRequest] = None,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.approve_log(current_user, log_id, req.teacher_comments if req else None)
    enqueue_status_email(background_tasks, notifications, model, current_user)
    return ApiResponse(data=CaseLogInfo.model_validate(model), message="Log approved successfully")


@router.post("/{log_id}/reject", response_model=ApiResponse, summary="Reject case log")
def reject_log(
    log_id: str,
    req: RejectRequest,
    log_manager: CaseLogManagerDep,
    notifications: NotificationManagerDep,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.reject_log(current_user, log_id, req.rejection_reason, req.teacher_comments)
    enqueue_status_email(background_tasks, notifications, model, current_user)
    return ApiResponse(data=CaseLogInfo.model_validate(model), message="Log rejected successfully")
