import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobengine.config.logging import get_logger

logger = get_logger(__name__)


class JobEngineException(Exception):
    """Base exception for the job engine."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class UnknownJobType(JobEngineException):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(
            f"Unknown job type: {job_type}",
            status.HTTP_400_BAD_REQUEST,
            {"job_type": job_type},
        )


class HandlerExecutionError(JobEngineException):
    """Wraps an exception raised by a job handler."""

    def __init__(self, job_id: Any, job_type: str, cause: BaseException):
        self.job_id = job_id
        self.job_type = job_type
        self.cause = cause
        super().__init__(
            str(cause) or cause.__class__.__name__,
            details={
                "job_id": str(job_id),
                "job_type": job_type,
                "exception": cause.__class__.__name__,
            },
        )


class InvalidStateTransition(JobEngineException):
    """Raised when an operation is not allowed from the current state."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_409_CONFLICT, details)


class NotFoundError(JobEngineException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: Any):
        super().__init__("Job not found", {"job_id": str(job_id)})


class CronJobNotFoundError(NotFoundError):
    def __init__(self, cron_job_id: Any):
        super().__init__("Cron job not found", {"cron_job_id": str(cron_job_id)})


class ValidationError(JobEngineException):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class InvalidCronExpression(ValidationError):
    def __init__(self, expression: str, reason: str):
        super().__init__(
            f"Invalid cron expression '{expression}': {reason}",
            {"cron_expression": expression},
        )


class StrategyConfigurationError(ValidationError):
    """Raised when a cron strategy is missing or misconfigured."""


class ScheduleSkipped(JobEngineException):
    """A due schedule was not executed (cannot run or already in flight).

    Never counts as a failure on the schedule.
    """

    def __init__(self, cron_job_id: Any, reason: str):
        self.cron_job_id = cron_job_id
        self.reason = reason
        super().__init__(
            f"Cron job {cron_job_id} skipped: {reason}",
            status.HTTP_409_CONFLICT,
            {"cron_job_id": str(cron_job_id), "reason": reason},
        )


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def job_engine_exception_handler(
    request: Request, exc: JobEngineException
) -> JSONResponse:
    """Handle job engine specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        from jobengine.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response
