"""Teacher dashboard routes over grouped submissions."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import Response

from api.routes.auth import get_current_user
from api.routes.logs import enqueue_status_email
from config import MAX_PAGE_SIZE, SUBMISSIONS_PAGE_SIZE
from core.dependencies import CaseLogManagerDep, NotificationManagerDep, SubmissionAggregatorDep
from schemas.case_log import ApproveRequest, BulkApproveRequest, RejectRequest
from schemas.common import ApiResponse
from schemas.submission import SubmissionFilters
from schemas.user import User

router = APIRouter(prefix="/api/submissions", tags=["Submission"])


@router.get("", response_model=ApiResponse, summary="Teacher dashboard")
def list_submissions(
    aggregator: SubmissionAggregatorDep,
    search: Optional[str] = None,
    status: Optional[str] = None,
    department: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(SUBMISSIONS_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    filters = SubmissionFilters(
        search=search,
        status=status,
        department=department,
        start_date=start_date,
        end_date=end_date,
    )
    return ApiResponse(data=aggregator.list_submissions(current_user, filters, page=page, limit=limit))


@router.get("/stats", response_model=ApiResponse, summary="Dashboard statistics")
def dashboard_stats(
    aggregator: SubmissionAggregatorDep,
    period: int = 30,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    return ApiResponse(data=aggregator.dashboard_stats(current_user, period))


@router.get("/export", summary="Export cases as CSV or JSON")
def export_submissions(
    aggregator: SubmissionAggregatorDep,
    format: str = "csv",
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
) -> Response:
    filename, media_type, body = aggregator.export_submissions(
        current_user,
        export_format=format,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.post("/bulk-approve", response_model=ApiResponse, summary="Approve several cases")
def bulk_approve(
    req: BulkApproveRequest,
    log_manager: CaseLogManagerDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    result = log_manager.bulk_approve(current_user, req.case_ids, req.teacher_comments)
    return ApiResponse(data=result, message=f"{result.approved_count} cases approved successfully")


@router.get("/learners/{learner_id}", response_model=ApiResponse, summary="All cases of one learner")
def learner_cases(
    learner_id: str,
    aggregator: SubmissionAggregatorDep,
    status: Optional[str] = None,
    course_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    return ApiResponse(
        data=aggregator.learner_cases(
            current_user,
            learner_id,
            status=status,
            course_id=course_id,
            limit=limit,
            offset=offset,
        )
    )


@router.get("/{log_id}", response_model=ApiResponse, summary="Get one submitted case")
def get_submission(
    log_id: str,
    aggregator: SubmissionAggregatorDep,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    return ApiResponse(data=aggregator.get_submission(current_user, log_id))


@router.post("/{log_id}/approve", response_model=ApiResponse, summary="Approve case")
def approve_submission(
    log_id: str,
    aggregator: SubmissionAggregatorDep,
    log_manager: CaseLogManagerDep,
    notifications: NotificationManagerDep,
    background_tasks: BackgroundTasks,
    req: Optional[ApproveRequest] = None,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.approve_log(current_user, log_id, req.teacher_comments if req else None)
    enqueue_status_email(background_tasks, notifications, model, current_user)
    return ApiResponse(
        data=aggregator.get_submission(current_user, log_id),
        message="Submission approved successfully",
    )


@router.post("/{log_id}/reject", response_model=ApiResponse, summary="Reject case")
def reject_submission(
    log_id: str,
    req: RejectRequest,
    aggregator: SubmissionAggregatorDep,
    log_manager: CaseLogManagerDep,
    notifications: NotificationManagerDep,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    model = log_manager.reject_log(current_user, log_id, req.rejection_reason, req.teacher_comments)
    enqueue_status_email(background_tasks, notifications, model, current_user)
    return ApiResponse(
        data=aggregator.get_submission(current_user, log_id),
        message="Submission rejected successfully",
    )
