"""User management utilities.

This module provides user storage, password hashing and credential checks.
"""

import logging
import secrets
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import ADMIN_TOKEN
from core.exceptions import AuthenticationError, ConflictError, ForbiddenError
from models.enums import UserRole
from models.user import UserModel
from schemas.user import RegisterRequest
from utils.time_utils import utc_now

logger = logging.getLogger(__name__)

# Bcrypt rounds for password hashing (higher = more secure but slower)
BCRYPT_ROUNDS = 12

# bcrypt ignores everything past 72 bytes
BCRYPT_MAX_BYTES = 72


class UserManager:
    """Manages user data persistence and operations using SQLAlchemy."""

    def __init__(self, db: Session):
        """Initialize UserManager.

        Args:
            db: SQLAlchemy Session.
        """
        self.db = db

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain text password.

        Returns:
            Hashed password (bcrypt hash string).
        """
        password_bytes = password.encode("utf-8")
        if len(password_bytes) > BCRYPT_MAX_BYTES:
            logger.warning("Password exceeds %d bytes, truncating", BCRYPT_MAX_BYTES)
            password_bytes = password_bytes[:BCRYPT_MAX_BYTES]
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password_bytes, salt).decode("utf-8")

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            plain_password: Plain text password to verify.
            hashed_password: Bcrypt hash string to verify against.

        Returns:
            True if password matches, False otherwise.
        """
        password_bytes = plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]
        try:
            return bcrypt.checkpw(password_bytes, hashed_password.encode("utf-8"))
        except ValueError as e:
            # Malformed stored hash
            logger.error("Password verification error: %s", e)
            return False

    def create_user(
        self,
        email: str,
        password: str,
        name: str,
        role: UserRole = UserRole.LEARNER,
        phone: Optional[str] = None,
        **profile,
    ) -> UserModel:
        """Create a new user.

        Args:
            email: Login email, unique across users.
            password: Plain text password.
            name: Display name.
            role: Global role.
            phone: Optional phone number.
            **profile: Extra profile columns (city, country, external_id, ...).

        Returns:
            Created UserModel.

        Raises:
            ConflictError: If the email is already registered.
        """
        email = email.strip().lower()
        if self.get_user_by_email(email):
            raise ConflictError(
                "User already exists with this email",
                fields={"email": "already registered"},
            )

        model = UserModel(
            user_id=secrets.token_hex(12),
            email=email,
            name=name.strip(),
            password_hash=self.hash_password(password),
            role=role,
            phone=phone,
            **profile,
        )
        # Two concurrent registrations can both pass the check above; the
        # unique index on email decides
        try:
            self.db.add(model)
            self.db.commit()
            self.db.refresh(model)
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                "User already exists with this email",
                fields={"email": "already registered"},
            ) from e

        logger.info("Created user: %s (%s)", model.user_id, role.value)
        return model

    def register(self, request: RegisterRequest) -> UserModel:
        """Self-registration; elevated roles need the admin token."""
        if request.role in (UserRole.TEACHER, UserRole.ADMIN):
            if not ADMIN_TOKEN or request.admin_token != ADMIN_TOKEN:
                raise ForbiddenError(
                    f"Registering as {request.role.value} requires a valid admin token"
                )
        return self.create_user(
            email=request.email,
            password=request.password,
            name=request.name,
            role=request.role,
            phone=request.phone,
        )

    def authenticate(self, email: str, password: str) -> UserModel:
        """Check credentials and stamp ``last_login``.

        Raises:
            AuthenticationError: On unknown email or wrong password. Both
                cases share one message.
        """
        model = self.get_user_by_email(email)
        if not model or not self.verify_password(password, model.password_hash):
            raise AuthenticationError("Invalid email or password")
        model.last_login = utc_now()
        self.db.commit()
        self.db.refresh(model)
        logger.info("User logged in: %s", model.user_id)
        return model

    def get_user_by_email(self, email: str) -> Optional[UserModel]:
        return (
            self.db.query(UserModel)
            .filter(UserModel.email == email.strip().lower())
            .first()
        )

    def get_user_by_id(self, user_id: str) -> Optional[UserModel]:
        return self.db.query(UserModel).filter(UserModel.user_id == user_id).first()
