"""Upstream roster records consumed by the sync step."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RosterUser(BaseModel):
    external_id: str
    email: str
    name: str
    phone: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    student_id: Optional[str] = None
    kyc_verified: bool = False


class RosterCourse(BaseModel):
    external_id: str
    title: str
    enrollment_number: str
    name: Optional[str] = None
    description: Optional[str] = None
    faculty_name: Optional[str] = None
    hospital_name: Optional[str] = None
    location: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    visible: bool = True
    classroom_id: Optional[int] = None
    classroom_name: Optional[str] = None
    teacher: RosterUser
    co_teachers: List[RosterUser] = Field(default_factory=list)
    learners: List[RosterUser] = Field(default_factory=list)


class SyncResult(BaseModel):
    users_created: int = 0
    users_updated: int = 0
    courses_created: int = 0
    courses_updated: int = 0
    enrollments_created: int = 0
    co_teachers_created: int = 0
