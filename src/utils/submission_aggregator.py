"""Teacher dashboard views over case logs.

A "submission" is every non-draft case one learner filed in one course. Its
status rolls up from the cases it holds (rejected beats pending beats
approved) and its priority comes from how close the course end date is.

Two pagination modes exist. ``cases`` pages over raw case rows and groups the
page afterwards, so a page may hold fewer submissions than ``limit`` and one
learner's cases can straddle two pages. ``submissions`` groups all matching
rows first and pages over the groups.
"""

import csv
import io
import json
import logging
import math
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, joinedload

from config import MAX_PAGE_SIZE, SUBMISSION_PAGINATION_MODE
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from models.case_log import CaseLogModel
from models.course import CourseModel
from models.enums import PENDING_STATUSES, LogStatus, UserRole
from models.user import UserModel
from schemas.case_log import CaseLogInfo
from schemas.submission import (
    DashboardStats,
    DepartmentStats,
    LearnerCases,
    RecentActivity,
    StatusSummary,
    Submission,
    SubmissionCase,
    SubmissionDetail,
    SubmissionFilters,
    SubmissionPage,
)
from schemas.user import User
from utils.course_manager import teacher_course_ids
from utils.pagination import check_date_range, check_pagination, parse_status_filter
from utils.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

PAGINATION_MODES = ("cases", "submissions")
EXPORT_FORMATS = ("csv", "json")
RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 10
LEARNER_CASES_DEFAULT_LIMIT = 20

CSV_COLUMNS = [
    "Case No",
    "Student Name",
    "Student Email",
    "Course",
    "Department",
    "Hospital",
    "Status",
    "Age",
    "Sex",
    "UHID",
    "Chief Complaint",
    "Diagnosis",
    "Submitted At",
    "Approved At",
    "Rejected At",
    "Rejection Reason",
]


def case_priority(end_date: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Urgency of a case from its course end date.

    Returns:
        ``overdue`` past the end date, ``high`` inside the last day,
        ``medium`` inside the last week, ``low`` otherwise or when the
        course has no end date.
    """
    if end_date is None:
        return "low"
    now = now or utc_now()
    days_left = math.ceil((as_utc(end_date) - now).total_seconds() / 86400)
    if days_left < 0:
        return "overdue"
    if days_left < 1:
        return "high"
    if days_left < 7:
        return "medium"
    return "low"


def submission_status(statuses: Iterable[LogStatus]) -> str:
    statuses = list(statuses)
    if any(s == LogStatus.REJECTED for s in statuses):
        return "rejected"
    if any(s in PENDING_STATUSES for s in statuses):
        return "pending"
    if statuses and all(s == LogStatus.APPROVED for s in statuses):
        return "approved"
    return "draft"


def group_submissions(logs: Iterable[CaseLogModel], now: Optional[datetime] = None) -> List[Submission]:
    """Group logs by (learner, course), keeping first-seen order."""
    now = now or utc_now()
    groups: "OrderedDict[Tuple[str, str], List[CaseLogModel]]" = OrderedDict()
    for log in logs:
        groups.setdefault((log.created_by_id, log.course_id), []).append(log)
    return [_build_submission(group, now) for group in groups.values()]


def _build_submission(group: List[CaseLogModel], now: datetime) -> Submission:
    head = group[0]
    course = head.course
    priority = case_priority(course.end_date if course else None, now)
    statuses = [log.status for log in group]
    approved = sum(1 for s in statuses if s == LogStatus.APPROVED)
    return Submission(
        id=head.created_by_id,
        learner_id=head.created_by_id,
        learner_name=head.created_by.name if head.created_by else "Unknown",
        course_id=head.course_id,
        task_title=course.title if course else "Unknown Course",
        submission_date=head.submitted_at or head.created_at,
        due_date=course.end_date if course else None,
        department=(course.faculty_name if course else None) or "Unknown",
        priority=priority,
        status=submission_status(statuses),
        total_cases=len(group),
        approved_cases=approved,
        rejected_cases=sum(1 for s in statuses if s == LogStatus.REJECTED),
        pending_cases=sum(1 for s in statuses if s in PENDING_STATUSES),
        completed_cases=approved,
        cases=[_build_case(log, priority) for log in group],
    )


def _build_case(log: CaseLogModel, priority: str) -> SubmissionCase:
    return SubmissionCase(
        log_id=log.log_id,
        case_no=log.case_no,
        date=log.date.date().isoformat(),
        age=log.age,
        sex=log.sex,
        uhid=log.uhid,
        chief_complaint=log.chief_complaint,
        history_presenting=log.history_presenting,
        past_history=log.past_history,
        personal_history=log.personal_history,
        family_history=log.family_history,
        clinical_examination=log.clinical_examination,
        lab_examinations=log.lab_examinations,
        diagnosis=log.diagnosis,
        management=log.management,
        status=log.status,
        rejection_reason=log.rejection_reason or "",
        priority=priority,
        course_id=log.course_id,
    )


class SubmissionAggregator:
    """Read-only dashboard queries scoped to one teacher's courses."""

    def __init__(self, db: Session, pagination_mode: str = SUBMISSION_PAGINATION_MODE):
        if pagination_mode not in PAGINATION_MODES:
            raise ValueError(f"Unknown pagination mode: {pagination_mode}")
        self.db = db
        self.pagination_mode = pagination_mode

    def _course_ids(self, actor: User) -> List[str]:
        if actor.role != UserRole.TEACHER:
            raise ForbiddenError("Only teachers can access the submissions dashboard")
        return teacher_course_ids(self.db, actor.user_id)

    def _log_query(self, course_ids: List[str]) -> Query:
        return (
            self.db.query(CaseLogModel)
            .options(
                joinedload(CaseLogModel.course),
                joinedload(CaseLogModel.created_by),
                joinedload(CaseLogModel.approved_by),
            )
            .filter(CaseLogModel.course_id.in_(course_ids))
        )

    def list_submissions(
        self,
        actor: User,
        filters: Optional[SubmissionFilters] = None,
        page: int = 1,
        limit: int = 14,
    ) -> SubmissionPage:
        """Grouped dashboard listing.

        Args:
            actor: Requesting teacher.
            filters: Status, search, department and created-at range.
            page: 1-based page number.
            limit: Page size, counted in case rows or in submissions
                depending on the pagination mode.

        Returns:
            One page of submissions with its pagination block.
        """
        filters = filters or SubmissionFilters()
        check_pagination(page, limit)
        check_date_range(filters.start_date, filters.end_date)
        status = parse_status_filter(filters.status)

        course_ids = self._course_ids(actor)
        if not course_ids:
            return self._page([], page, limit, 0)

        query = self._log_query(course_ids).filter(CaseLogModel.status != LogStatus.DRAFT)
        if status is not None:
            query = query.filter(CaseLogModel.status == status)
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            query = query.filter(
                or_(
                    CaseLogModel.created_by.has(UserModel.name.ilike(pattern)),
                    CaseLogModel.course.has(CourseModel.title.ilike(pattern)),
                    CaseLogModel.case_no.ilike(pattern),
                )
            )
        if filters.department:
            query = query.filter(
                CaseLogModel.course.has(CourseModel.faculty_name.ilike(f"%{filters.department}%"))
            )
        if filters.start_date:
            query = query.filter(CaseLogModel.created_at >= filters.start_date)
        if filters.end_date:
            query = query.filter(CaseLogModel.created_at <= filters.end_date)
        query = query.order_by(CaseLogModel.created_at.desc(), CaseLogModel.status.asc())

        now = utc_now()
        if self.pagination_mode == "cases":
            total = query.count()
            rows = query.offset((page - 1) * limit).limit(limit).all()
            return self._page(group_submissions(rows, now), page, limit, total)

        submissions = group_submissions(query.all(), now)
        start = (page - 1) * limit
        return self._page(submissions[start:start + limit], page, limit, len(submissions))

    def _page(self, submissions: List[Submission], page: int, limit: int, total: int) -> SubmissionPage:
        return SubmissionPage(
            submissions=submissions,
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if limit else 0,
            },
            pagination_mode=self.pagination_mode,
        )

    def get_submission(self, actor: User, log_id: str) -> SubmissionDetail:
        course_ids = self._course_ids(actor)
        log = None
        if course_ids:
            log = (
                self._log_query(course_ids)
                .filter(CaseLogModel.log_id == log_id)
                .first()
            )
        if not log:
            raise NotFoundError("Submission not found or you do not have permission to view it")
        return self._detail(log)

    @staticmethod
    def _detail(log: CaseLogModel, now: Optional[datetime] = None) -> SubmissionDetail:
        course = log.course
        learner = log.created_by
        return SubmissionDetail(
            id=log.log_id,
            learner_id=log.created_by_id,
            learner_name=learner.name if learner else "Unknown",
            learner_email=learner.email if learner else None,
            task_title=course.title if course else "Unknown Course",
            course_name=course.name if course else "Unknown",
            department=(course.faculty_name if course else None) or "Unknown",
            hospital_name=(course.hospital_name if course else None) or "Unknown",
            status=log.status.value.lower(),
            priority=case_priority(course.end_date if course else None, now),
            log=CaseLogInfo.model_validate(log),
        )

    def dashboard_stats(self, actor: User, period: int = 30) -> DashboardStats:
        """Status counts over the last ``period`` days plus recent activity."""
        if period < 1 or period > 365:
            raise ValidationError(
                "Period must be between 1 and 365 days",
                fields={"period": "must be between 1 and 365"},
            )
        course_ids = self._course_ids(actor)
        now = utc_now()
        logs: List[CaseLogModel] = []
        recent: List[CaseLogModel] = []
        if course_ids:
            logs = (
                self._log_query(course_ids)
                .filter(CaseLogModel.created_at >= now - timedelta(days=period))
                .all()
            )
            recent = (
                self._log_query(course_ids)
                .filter(CaseLogModel.updated_at >= now - timedelta(days=RECENT_ACTIVITY_DAYS))
                .order_by(CaseLogModel.updated_at.desc())
                .limit(RECENT_ACTIVITY_LIMIT)
                .all()
            )

        counts = {status: 0 for status in LogStatus}
        departments: Dict[str, DepartmentStats] = {}
        for log in logs:
            counts[log.status] += 1
            dept = departments.setdefault(
                (log.course.faculty_name if log.course else None) or "Unknown",
                DepartmentStats(),
            )
            dept.total += 1
            if log.status == LogStatus.APPROVED:
                dept.approved += 1
            elif log.status == LogStatus.REJECTED:
                dept.rejected += 1
            elif log.status in PENDING_STATUSES:
                dept.pending += 1

        approved = counts[LogStatus.APPROVED]
        rejected = counts[LogStatus.REJECTED]
        processed = approved + rejected
        summary = StatusSummary(
            total=len(logs),
            approved=approved,
            rejected=rejected,
            pending=sum(counts[s] for s in PENDING_STATUSES),
            draft=counts[LogStatus.DRAFT],
            approval_rate=round(approved / processed * 100, 1) if processed else 0.0,
        )
        return DashboardStats(
            period=period,
            summary=summary,
            department_stats=departments,
            recent_activity=[
                RecentActivity(
                    log_id=log.log_id,
                    case_no=log.case_no,
                    student_name=log.created_by.name if log.created_by else "Unknown",
                    course_title=log.course.title if log.course else "Unknown Course",
                    status=log.status.value.lower(),
                    updated_at=log.updated_at,
                )
                for log in recent
            ],
        )

    def learner_cases(
        self,
        actor: User,
        learner_id: str,
        status: Optional[str] = None,
        course_id: Optional[str] = None,
        limit: int = LEARNER_CASES_DEFAULT_LIMIT,
        offset: int = 0,
    ) -> LearnerCases:
        """Every case one learner filed in the teacher's courses."""
        if not learner_id or not learner_id.strip():
            raise ValidationError("Valid user ID is required", fields={"learner_id": "required"})
        learner_id = learner_id.strip()
        course_ids = self._course_ids(actor)
        learner = self.db.query(UserModel).filter(UserModel.user_id == learner_id).first()
        if not learner:
            raise NotFoundError(f"User '{learner_id}' not found")
        status_filter = parse_status_filter(status)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        offset = max(offset, 0)

        if course_id:
            course_ids = [c for c in course_ids if c == course_id]
        logs: List[CaseLogModel] = []
        total = 0
        if course_ids:
            query = self._log_query(course_ids).filter(CaseLogModel.created_by_id == learner_id)
            if status_filter is not None:
                query = query.filter(CaseLogModel.status == status_filter)
            total = query.count()
            logs = (
                query.order_by(CaseLogModel.created_at.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

        message = None
        if not logs:
            message = (
                "No submissions found for this user in your courses"
                if total == 0
                else "No submissions match the provided filters"
            )
        now = utc_now()
        return LearnerCases(
            user_id=learner.user_id,
            user_name=learner.name,
            user_email=learner.email,
            total_cases=total,
            returned_cases=len(logs),
            cases=[self._detail(log, now) for log in logs],
            limit=limit,
            offset=offset,
            has_more=total > offset + len(logs),
            message=message,
        )

    def export_submissions(
        self,
        actor: User,
        export_format: str = "csv",
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Tuple[str, str, str]:
        """Render the teacher's cases as a downloadable file.

        Returns:
            ``(filename, media_type, body)``.

        Raises:
            ValidationError: On an unknown format, status or date range.
            NotFoundError: If nothing matches.
        """
        if export_format not in EXPORT_FORMATS:
            raise ValidationError(
                'Format must be either "csv" or "json"',
                fields={"format": "must be csv or json"},
            )
        check_date_range(start_date, end_date)
        status_filter = parse_status_filter(status)
        course_ids = self._course_ids(actor)

        logs: List[CaseLogModel] = []
        if course_ids:
            query = self._log_query(course_ids)
            if status_filter is not None:
                query = query.filter(CaseLogModel.status == status_filter)
            if start_date:
                query = query.filter(CaseLogModel.created_at >= start_date)
            if end_date:
                query = query.filter(CaseLogModel.created_at <= end_date)
            logs = query.order_by(CaseLogModel.created_at.desc()).all()
        if not logs:
            raise NotFoundError("No submissions found matching the criteria")

        now = utc_now()
        stem = f"submissions-{now.date().isoformat()}"
        logger.info("Exporting %d cases as %s for %s", len(logs), export_format, actor.user_id)
        if export_format == "csv":
            return f"{stem}.csv", "text/csv; charset=utf-8", self._to_csv(logs)

        payload = {
            "success": True,
            "export_date": now.isoformat(),
            "total_records": len(logs),
            "data": [CaseLogInfo.model_validate(log).model_dump(mode="json") for log in logs],
        }
        return f"{stem}.json", "application/json", json.dumps(payload)

    @staticmethod
    def _to_csv(logs: List[CaseLogModel]) -> str:
        def stamp(value: Optional[datetime]) -> str:
            return as_utc(value).isoformat() if value else ""

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for log in logs:
            course = log.course
            learner = log.created_by
            writer.writerow(
                [
                    log.case_no,
                    learner.name if learner else "",
                    learner.email if learner else "",
                    course.title if course else "",
                    (course.faculty_name if course else "") or "",
                    (course.hospital_name if course else "") or "",
                    log.status.value,
                    log.age if log.age is not None else "",
                    log.sex.value if log.sex else "",
                    log.uhid or "",
                    log.chief_complaint or "",
                    log.diagnosis or "",
                    stamp(log.submitted_at),
                    stamp(log.approved_at),
                    stamp(log.rejected_at),
                    log.rejection_reason or "",
                ]
            )
        return buffer.getvalue()
