"""Main FastAPI application module.

This module builds the FastAPI application, wires the database and outbound
collaborators into ``app.state`` and registers all route handlers.
"""

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.routes import auth, courses, logs, submissions, sync
from config import API_HOST, API_PORT, APP_ENV, CORS_ALLOWED_ORIGINS
from core.database import Database
from core.exceptions import CaseLogError, DependencyError
from core.logging_config import setup_logging
from utils.notification_manager import NotificationManager
from utils.roster_sync import RosterClient

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _error_body(kind: str, message: str, fields: Optional[dict] = None, detail: Optional[str] = None) -> dict:
    error = {"kind": kind, "message": message}
    if fields:
        error["fields"] = fields
    if detail and APP_ENV == "development":
        error["detail"] = detail
    return {"success": False, "error": error, "message": message}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CaseLogError)
    def handle_case_log_error(request: Request, exc: CaseLogError) -> JSONResponse:
        if isinstance(exc, DependencyError):
            logger.error("[%s] %s: %s", _request_id(request), exc.kind, exc.message, exc_info=exc)
        else:
            logger.info("[%s] %s %s -> %s: %s", _request_id(request), request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.kind, exc.message, exc.fields),
        )

    @app.exception_handler(RequestValidationError)
    def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = {}
        for error in exc.errors():
            loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
            fields[".".join(loc) or "request"] = error.get("msg", "invalid")
        return JSONResponse(
            status_code=400,
            content=_error_body("VALIDATION_ERROR", "Validation failed", fields),
        )

    @app.exception_handler(SQLAlchemyError)
    def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("[%s] Storage failure on %s %s", _request_id(request), request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=DependencyError.status_code,
            content=_error_body(DependencyError.kind, "Storage is temporarily unavailable", detail=str(exc)),
        )

    @app.exception_handler(Exception)
    def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("[%s] Unhandled error on %s %s", _request_id(request), request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_body("INTERNAL_ERROR", "Internal server error", detail=repr(exc)),
        )


def create_app(
    database: Optional[Database] = None,
    notifications: Optional[NotificationManager] = None,
    roster_client: Optional[RosterClient] = None,
) -> FastAPI:
    """Build the application.

    Args:
        database: Storage to serve from; a ``Database`` over
            ``DATABASE_URL`` when omitted.
        notifications: Email sender; SMTP settings from config when omitted.
        roster_client: Upstream roster client; config defaults when omitted.

    Returns:
        The configured FastAPI application.
    """
    setup_logging()

    app = FastAPI(
        title="Case Log Review API",
        description="Backend API for learner case logs, teacher review and course rosters.",
        version="1.0.0",
    )
    # Only a database built here is disposed on shutdown
    owns_database = database is None
    app.state.database = database or Database()
    app.state.notifications = notifications or NotificationManager()
    app.state.roster_client = roster_client or RosterClient()

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    register_exception_handlers(app)

    # Register route handlers
    app.include_router(auth.router)
    app.include_router(courses.router)
    app.include_router(logs.router)
    app.include_router(submissions.router)
    app.include_router(sync.router)

    @app.on_event("startup")
    def startup_tasks() -> None:
        app.state.database.create_all()
        logger.info("Database ready at %s", app.state.database.engine.url.render_as_string(hide_password=True))

    @app.on_event("shutdown")
    def shutdown_tasks() -> None:
        if owns_database:
            app.state.database.dispose()

    @app.get("/", summary="API root", tags=["Info"])
    def root() -> dict:
        """API root, returns API information and documentation links."""
        return {
            "name": "Case Log Review API",
            "version": "1.0.0",
            "docs": {
                "swagger": "/docs",
                "redoc": "/redoc",
            },
            "health": "/api/health",
        }

    @app.get("/api/health", summary="Health check", tags=["Health"])
    def health() -> dict:
        return {"status": "ok"}

    return app


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    server_url = f"http://{API_HOST}:{API_PORT}"
    print(f"Case Log Review API: {server_url}")
    print(f"API docs: {server_url}/docs")
    uvicorn.run("app:create_app", factory=True, host=API_HOST, port=API_PORT, reload=True)
