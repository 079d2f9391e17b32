"""Course and enrollment schema definitions."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from schemas.user import UserBrief


class CreateCourseRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    name: Optional[str] = Field(default=None, max_length=200)
    enrollment_number: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=2000)
    faculty_name: Optional[str] = Field(default=None, max_length=200)
    designation: Optional[str] = None
    hospital_name: Optional[str] = None
    location: Optional[str] = None
    contact_program: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str = "Active"
    visible: bool = True
    teacher_id: Optional[str] = Field(
        default=None,
        description="Owner teacher; only honoured when an admin creates the course.",
    )

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date cannot be after end_date")
        return self


class UpdateCourseRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    name: Optional[str] = Field(default=None, max_length=200)
    enrollment_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=2000)
    faculty_name: Optional[str] = Field(default=None, max_length=200)
    designation: Optional[str] = None
    hospital_name: Optional[str] = None
    location: Optional[str] = None
    contact_program: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[str] = None
    visible: Optional[bool] = None
    teacher_id: Optional[str] = None


class CourseInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    title: str
    name: str
    enrollment_number: str
    description: Optional[str] = None
    faculty_name: Optional[str] = None
    hospital_name: Optional[str] = None
    location: Optional[str] = None
    teacher_id: str
    teacher: Optional[UserBrief] = None
    co_teacher_ids: List[str] = Field(default_factory=list)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str
    visible: bool
    enrollment_count: int = 0
    log_count: int = 0
    is_enrolled: Optional[bool] = None
    enrolled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class EnrollRequest(BaseModel):
    course_id: str
    learner_id: Optional[str] = Field(
        default=None,
        description="Learner to enroll; only honoured for admins.",
    )


class UnenrollRequest(BaseModel):
    learner_id: Optional[str] = None


class CoTeacherRequest(BaseModel):
    teacher_id: str


class EnrollmentInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: str
    learner_id: str
    learner: Optional[UserBrief] = None
    progress: float
    completed: bool
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
