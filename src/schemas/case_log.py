"""Case log schema definitions.

Request models validate the clinical fields with the same limits the review
forms use; ``CaseLogInfo`` is the read model returned by every log endpoint.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.enums import LogStatus, Sex
from schemas.user import UserBrief


class CaseLogCreate(BaseModel):
    course_id: str = Field(min_length=1)
    date: datetime
    age: float = Field(gt=0, le=120, description="Age must be a valid number between 1 and 120")
    sex: Sex
    uhid: str = Field(min_length=1, max_length=20)
    chief_complaint: str = Field(min_length=1, max_length=1000)
    history_presenting: str = Field(min_length=1, max_length=2000)
    past_history: str = Field(default="", max_length=1000)
    personal_history: str = Field(default="", max_length=1000)
    family_history: str = Field(default="", max_length=1000)
    clinical_examination: str = Field(min_length=1, max_length=2000)
    lab_examinations: str = Field(default="", max_length=2000)
    diagnosis: str = Field(min_length=1, max_length=1000)
    management: str = Field(min_length=1, max_length=2000)
    status: LogStatus = LogStatus.DRAFT

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: LogStatus) -> LogStatus:
        if value not in (LogStatus.DRAFT, LogStatus.SUBMITTED):
            raise ValueError("Status must be DRAFT or SUBMITTED")
        return value


class CaseLogUpdate(BaseModel):
    date: Optional[datetime] = None
    age: Optional[float] = Field(default=None, gt=0, le=120)
    sex: Optional[Sex] = None
    uhid: Optional[str] = Field(default=None, min_length=1, max_length=20)
    chief_complaint: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    history_presenting: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    past_history: Optional[str] = Field(default=None, max_length=1000)
    personal_history: Optional[str] = Field(default=None, max_length=1000)
    family_history: Optional[str] = Field(default=None, max_length=1000)
    clinical_examination: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    lab_examinations: Optional[str] = Field(default=None, max_length=2000)
    diagnosis: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    management: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    status: Optional[LogStatus] = None

    @field_validator("status")
    @classmethod
    def editable_status(cls, value: Optional[LogStatus]) -> Optional[LogStatus]:
        if value is not None and value not in (
            LogStatus.DRAFT,
            LogStatus.SUBMITTED,
            LogStatus.RESUBMITTED,
        ):
            raise ValueError("Status must be DRAFT, SUBMITTED, or RESUBMITTED")
        return value


class ApproveRequest(BaseModel):
    teacher_comments: Optional[str] = None


class RejectRequest(BaseModel):
    rejection_reason: str
    teacher_comments: Optional[str] = None


class BulkApproveRequest(BaseModel):
    case_ids: List[str]
    teacher_comments: Optional[str] = None


class CourseBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    title: str
    enrollment_number: str
    faculty_name: Optional[str] = None
    hospital_name: Optional[str] = None
    end_date: Optional[datetime] = None


class CaseLogInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: str
    case_no: str
    date: datetime
    age: float
    sex: Sex
    uhid: str
    chief_complaint: str
    history_presenting: str
    past_history: str
    personal_history: str
    family_history: str
    clinical_examination: str
    lab_examinations: str
    diagnosis: str
    management: str
    status: LogStatus
    rejection_reason: Optional[str] = None
    teacher_comments: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    course_id: str
    created_by_id: str
    approved_by_id: Optional[str] = None
    rejected_by_id: Optional[str] = None
    course: Optional[CourseBrief] = None
    created_by: Optional[UserBrief] = None
    approved_by: Optional[UserBrief] = None
