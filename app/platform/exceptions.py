from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger(__name__)


class AppError(Exception):
    """Base for errors that map onto an API response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(AppError):
    """Bad input that passed schema parsing, e.g. too many URLs on a project."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    """A scan is already running for the scan or project being targeted."""

    status_code = status.HTTP_409_CONFLICT


class AnalysisError(Exception):
    """Raised by an analysis strategy that could not analyze a URL."""


class AnalysisExhaustedError(AnalysisError):
    """Every analysis strategy failed for a URL."""

    def __init__(self, failures):
        self.failures = list(failures)
        reasons = "; ".join(f"{failure.strategy}: {failure.reason}" for failure in self.failures)
        super().__init__(f"All analysis methods failed: {reasons}")


class ScanAttemptLostError(Exception):
    """The scan finished or was claimed again while a background attempt was still running."""


def add_exception_handlers(app: FastAPI):
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return api_response(message=exc.message, status_code=exc.status_code, data=exc.data)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
