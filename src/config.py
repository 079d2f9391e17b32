"""Configuration module for the case log review service.

This module provides centralized configuration management, including directory
paths, API server settings, database, authentication, workflow limits,
notification transport and roster sync settings.
All configuration values can be overridden via environment variables.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Directory Configuration ---

# Root directory of the project
ROOT_DIR = Path(__file__).parent.parent.resolve()

# Data directory name
DATA_DIR_NAME = "data"
DATA_DIR = ROOT_DIR / DATA_DIR_NAME

# --- Runtime Configuration ---

# "development" adds error details to responses; anything else hides them
APP_ENV: str = os.getenv("APP_ENV", "production").lower()

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# --- API Server Configuration ---

API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))

# CORS allowed origins (comma-separated list)
_CORS_ALLOWED_ORIGINS_STR: str = os.getenv(
    "CORS_ALLOWED_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
)
CORS_ALLOWED_ORIGINS: List[str] = [
    origin.strip()
    for origin in _CORS_ALLOWED_ORIGINS_STR.split(",")
    if origin.strip()
]

# --- Database Configuration ---

DATABASE_URL: str = os.getenv(
    "DATABASE_URL", f"sqlite:///{DATA_DIR}/case_logs.db"
)

# --- Authentication Configuration ---

JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
    os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7))
)

# Required to self-register as teacher or admin
ADMIN_TOKEN: Optional[str] = os.getenv("ADMIN_TOKEN")

# --- Pagination Configuration ---

DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
SUBMISSIONS_PAGE_SIZE: int = int(os.getenv("SUBMISSIONS_PAGE_SIZE", "14"))
MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

# --- Review Workflow Configuration ---

REJECTION_REASON_MIN_LENGTH: int = int(os.getenv("REJECTION_REASON_MIN_LENGTH", "10"))
REJECTION_REASON_MAX_LENGTH: int = int(os.getenv("REJECTION_REASON_MAX_LENGTH", "1000"))
TEACHER_COMMENTS_MAX_LENGTH: int = int(os.getenv("TEACHER_COMMENTS_MAX_LENGTH", "1000"))
BULK_APPROVE_MAX: int = int(os.getenv("BULK_APPROVE_MAX", "50"))

# Attempts at inserting a log before a case number collision is reported
CASE_NUMBER_MAX_ATTEMPTS: int = int(os.getenv("CASE_NUMBER_MAX_ATTEMPTS", "5"))

# "cases": page over raw case rows, then group (historical behaviour).
# "submissions": group every matching row, then page over the groups.
SUBMISSION_PAGINATION_MODE: str = os.getenv("SUBMISSION_PAGINATION_MODE", "cases").lower()

# --- Notification Configuration ---

SMTP_HOST: Optional[str] = os.getenv("SMTP_HOST")
SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER: Optional[str] = os.getenv("SMTP_USER")
SMTP_PASSWORD: Optional[str] = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS: bool = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
EMAIL_FROM: str = os.getenv("EMAIL_FROM", SMTP_USER or "noreply@example.com")
EMAIL_SENDER_NAME: str = os.getenv("EMAIL_SENDER_NAME", "Case Log Review")
FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

NOTIFY_MAX_ATTEMPTS: int = int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3"))
NOTIFY_RETRY_DELAY_SECONDS: float = float(os.getenv("NOTIFY_RETRY_DELAY_SECONDS", "2"))

# --- Roster Sync Configuration ---

ROSTER_SYNC_URL: Optional[str] = os.getenv("ROSTER_SYNC_URL")
ROSTER_SYNC_TOKEN: Optional[str] = os.getenv("ROSTER_SYNC_TOKEN")
ROSTER_SYNC_TIMEOUT: float = float(os.getenv("ROSTER_SYNC_TIMEOUT", "30"))
