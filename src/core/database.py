"""Database connection and session management.

This module wraps the SQLAlchemy engine and session factory in a ``Database``
object. The application entry point constructs it and owns its lifecycle.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import DATA_DIR, DATABASE_URL
from models.base import Base
# Import models to ensure they are registered with Base.metadata
import models  # noqa: F401


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str = DATABASE_URL, engine: Optional[Engine] = None):
        self.url = url
        self.engine = engine or self._create_engine(url)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, pool_pre_ping=True)
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory data
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        DATA_DIR.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a session that is closed on exit."""
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()


def get_db(request: Request) -> Iterator[Session]:
    """Dependency for getting a request-scoped database session."""
    database: Database = request.app.state.database
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
