"""Closed enumerations shared by models, schemas and managers."""

import enum


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    LEARNER = "LEARNER"


class LogStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESUBMITTED = "RESUBMITTED"


class Sex(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    TRANSGENDER = "TRANSGENDER"
    OTHER = "OTHER"


# Statuses waiting for a teacher decision
PENDING_STATUSES = (LogStatus.SUBMITTED, LogStatus.RESUBMITTED)
