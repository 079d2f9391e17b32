"""Authentication routes.

This module handles HTTP endpoints for user authentication and registration,
and the bearer-token dependency every other route uses to identify the actor.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from core.dependencies import UserManagerDep
from core.exceptions import AuthenticationError
from schemas.common import ApiResponse
from schemas.user import LoginRequest, LoginResponse, RegisterRequest, User
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

# HTTP Bearer token security; missing headers are reported by verify_token
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token.

    Args:
        data: Data to encode in the token.
        expires_delta: Optional expiration time delta.

    Returns:
        Encoded JWT token string.
    """
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Verify JWT token from Authorization header.

    Args:
        credentials: HTTP Bearer token credentials.

    Returns:
        Decoded token payload.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired.
    """
    if credentials is None:
        raise AuthenticationError("Access token required")
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token") from e
    if payload.get("sub") is None:
        raise AuthenticationError("Invalid authentication credentials")
    return payload


def get_current_user(
    user_manager: UserManagerDep,
    token_payload: dict = Depends(verify_token),
) -> User:
    """Get current authenticated user.

    Args:
        user_manager: Injected UserManager instance.
        token_payload: Decoded JWT token payload.

    Returns:
        Current User object.

    Raises:
        AuthenticationError: If the user no longer exists.
    """
    model = user_manager.get_user_by_id(token_payload["sub"])
    if model is None:
        raise AuthenticationError("User not found")
    return User.model_validate(model)


@router.post("/register", response_model=ApiResponse, status_code=201, summary="Register")
def register(req: RegisterRequest, user_manager: UserManagerDep) -> ApiResponse:
    """Register a new user.

    Learners register freely; teacher and admin accounts need the
    configured admin token.
    """
    model = user_manager.register(req)
    user = User.model_validate(model)
    token = create_access_token({"sub": user.user_id, "role": user.role.value})
    return ApiResponse(
        data=LoginResponse(user=user, token=token),
        message="User registered successfully",
    )


@router.post("/login", response_model=ApiResponse, summary="Login")
def login(req: LoginRequest, user_manager: UserManagerDep) -> ApiResponse:
    model = user_manager.authenticate(req.email, req.password)
    user = User.model_validate(model)
    token = create_access_token({"sub": user.user_id, "role": user.role.value})
    return ApiResponse(data=LoginResponse(user=user, token=token), message="Login successful")


@router.post("/logout", response_model=ApiResponse, summary="Logout")
def logout(current_user: User = Depends(get_current_user)) -> ApiResponse:
    """Logout endpoint.

    Tokens are stateless, so logout is handled client-side by dropping the
    token. This endpoint exists for API consistency.
    """
    logger.info("User logged out: %s", current_user.user_id)
    return ApiResponse(message="Logged out successfully")


@router.get("/me", response_model=ApiResponse, summary="Current user")
def get_current_user_info(current_user: User = Depends(get_current_user)) -> ApiResponse:
    return ApiResponse(data=current_user)
