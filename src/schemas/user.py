"""User schema definitions."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models.enums import UserRole


class User(BaseModel):
    """Identity of an authenticated actor plus public profile fields."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: str
    name: str
    role: UserRole
    phone: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    external_id: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    name: str
    email: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=200)
    role: UserRole = UserRole.LEARNER
    phone: Optional[str] = None
    admin_token: Optional[str] = Field(
        default=None,
        description="Required when registering as TEACHER or ADMIN.",
    )


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class LoginResponse(BaseModel):
    user: User
    token: str
