"""User database model.

This module defines the User database model using SQLAlchemy.
"""

from sqlalchemy import Boolean, Column, DateTime, Enum, String
from sqlalchemy.sql import func

from .base import Base
from .enums import UserRole


class UserModel(Base):
    """User database model."""

    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.LEARNER)

    phone = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    address = Column(String, nullable=True)

    # Identity in the upstream learning platform
    external_id = Column(String, unique=True, nullable=True)
    kyc_verified = Column(Boolean, nullable=False, default=False)
    student_id = Column(String, nullable=True)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
