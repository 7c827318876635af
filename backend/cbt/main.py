"""
Main FastAPI application.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cbt.api.v1.api import api_router
from cbt.core.config import settings
from cbt.core.error_responses import ErrorMessages
from cbt.core.exceptions import ErrorKind, SessionEngineError
from cbt.core.logging_config import setup_logging
from cbt.middleware import PerformanceMonitoringMiddleware, RequestLoggingMiddleware

# Initialize logging configuration at startup
setup_logging()

logger = logging.getLogger(__name__)

# Engine error kind -> HTTP status code
ERROR_KIND_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Seconds a client should wait before retrying after a storage failure
STORAGE_RETRY_AFTER_SECONDS = 1


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan event handler.

    - On startup: logs the effective environment
    - On shutdown: disposes of the database connection pool
    """
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting ({settings.ENV})")

    yield

    from cbt.models import engine

    engine.dispose()
    logger.info("Application shutting down - database connections closed")


# OpenAPI tags metadata
tags_metadata = [
    {
        "name": "health",
        "description": "Health check endpoints for monitoring application status",
    },
    {
        "name": "test-sessions",
        "description": "Test session lifecycle, answer submission, review and analytics",
    },
    {
        "name": "admin",
        "description": "Maintenance jobs (expiry sweep, stats reconciliation) behind X-Admin-Token",
    },
]


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        description=(
            "**CBT Session API** - timed test sessions for computer-based testing.\n\n"
            "This API provides:\n"
            "* Starting and resuming timed test sessions\n"
            "* Answer submission with automatic scoring\n"
            "* Completion, abandonment and automatic expiry\n"
            "* Session review and test analytics for test centers\n\n"
            "## Authentication\n\n"
            "Endpoints require a JWT Bearer access token with a `role` claim "
            "(`student`, `owner` or `admin`). Maintenance endpoints use the "
            "`X-Admin-Token` header instead."
        ),
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        openapi_tags=tags_metadata,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Configure Request Logging
    app.add_middleware(RequestLoggingMiddleware)

    # Configure Performance Monitoring
    app.add_middleware(
        PerformanceMonitoringMiddleware,
        slow_request_threshold=settings.SLOW_REQUEST_THRESHOLD_SECONDS,
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.exception_handler(SessionEngineError)
    async def session_engine_exception_handler(
        request: Request, exc: SessionEngineError
    ):
        """
        Map engine error kinds to HTTP status codes.
        """
        status_code = ERROR_KIND_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)
        headers = None
        if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
            headers = {"Retry-After": str(STORAGE_RETRY_AFTER_SECONDS)}
            logger.error(
                f"Storage unavailable on {request.method} {request.url.path}: "
                f"{exc.message}"
            )
        else:
            logger.info(
                f"{exc.__class__.__name__} on {request.method} "
                f"{request.url.path}: {exc.message}"
            )

        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": exc.kind},
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Handle HTTP exceptions raised by the authentication layer.
        """
        if exc.status_code >= 500:
            logger.error(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        """
        Handle request validation errors.
        """
        errors = [
            {
                "loc": list(error.get("loc", [])),
                "msg": str(error.get("msg", "")),
                "type": str(error.get("type", "")),
            }
            for error in exc.errors()
        ]
        logger.info(f"Request validation failed on {request.url.path}: {errors}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected exceptions.

        Generates a unique error_id (UUID) for each exception to enable
        support teams to trace specific errors in logs. The error_id is
        included in the response body and logged with the full exception.
        """
        error_id = str(uuid.uuid4())

        logger.exception(
            f"Unhandled exception [error_id={error_id}]: {exc}",
            extra={"error_id": error_id},
        )

        # Don't leak internal details
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": ErrorMessages.INTERNAL_ERROR,
                "error_id": error_id,
            },
        )

    return app


app = create_application()


@app.get("/")
async def root():
    """
    Root endpoint.
    """
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
