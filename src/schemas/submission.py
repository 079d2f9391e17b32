"""Teacher dashboard schema definitions.

A submission groups every case one learner filed in one course.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from models.enums import LogStatus, Sex
from schemas.case_log import CaseLogInfo


class SubmissionCase(BaseModel):
    log_id: str
    case_no: str
    date: str
    age: Optional[float] = None
    sex: Optional[Sex] = None
    uhid: Optional[str] = None
    chief_complaint: Optional[str] = None
    history_presenting: Optional[str] = None
    past_history: Optional[str] = None
    personal_history: Optional[str] = None
    family_history: Optional[str] = None
    clinical_examination: Optional[str] = None
    lab_examinations: Optional[str] = None
    diagnosis: Optional[str] = None
    management: Optional[str] = None
    status: LogStatus
    rejection_reason: str = ""
    priority: str
    course_id: str


class Submission(BaseModel):
    id: str = Field(description="Learner id; one submission per learner per course.")
    learner_id: str
    learner_name: str
    course_id: str
    task_title: str
    submission_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    department: str
    priority: str
    status: str
    total_cases: int
    approved_cases: int
    rejected_cases: int
    pending_cases: int
    completed_cases: int
    cases: List[SubmissionCase]


class SubmissionPage(BaseModel):
    submissions: List[Submission]
    pagination: Dict[str, int]
    pagination_mode: str


class SubmissionFilters(BaseModel):
    search: Optional[str] = None
    status: Optional[str] = None
    department: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class StatusSummary(BaseModel):
    total: int
    approved: int
    rejected: int
    pending: int
    draft: int
    approval_rate: float


class DepartmentStats(BaseModel):
    total: int = 0
    approved: int = 0
    rejected: int = 0
    pending: int = 0


class RecentActivity(BaseModel):
    log_id: str
    case_no: str
    student_name: str
    course_title: str
    status: str
    updated_at: datetime


class DashboardStats(BaseModel):
    period: int
    summary: StatusSummary
    department_stats: Dict[str, DepartmentStats]
    recent_activity: List[RecentActivity]


class SubmissionDetail(BaseModel):
    """One case as seen from the review dashboard."""

    id: str
    learner_id: str
    learner_name: str
    learner_email: Optional[str] = None
    task_title: str
    course_name: str
    department: str
    hospital_name: str
    status: str
    priority: str
    log: CaseLogInfo


class LearnerCases(BaseModel):
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    total_cases: int
    returned_cases: int
    cases: List[SubmissionDetail]
    limit: int
    offset: int
    has_more: bool
    message: Optional[str] = None


class BulkApproveResult(BaseModel):
    approved_count: int
    requested_count: int
    approved_ids: List[str]
