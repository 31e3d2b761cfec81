"""
Centralized exception handling for Scoutbase.
Provides the error taxonomy of the ingestion pipeline and standardized
error responses across the operator API.
"""
from typing import Optional, Dict, Any, List
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class AppException(Exception):
    """
    Base exception class for application-specific errors.

    All custom exceptions should inherit from this class to ensure
    consistent error handling and response formatting.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize application exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (default: 500)
            error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
            details: Additional error details dictionary
        """
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppException):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details=details
        )


class NotFoundError(AppException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": identifier}
        )


class DatabaseError(AppException):
    """Raised when a database operation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="DATABASE_ERROR",
            details=details
        )


class ExternalAPIError(AppException):
    """Raised when an external provider answers with a non-retryable failure."""

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        full_message = f"External API error ({service}): {message}"
        super().__init__(
            message=full_message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="EXTERNAL_API_ERROR",
            details={"service": service, **details} if details else {"service": service}
        )


class TransientSourceError(AppException):
    """
    Raised when a provider call keeps failing with rate-limit, server or
    network errors after every retry has been used.

    Surfaces as a per-item failure in the enrichment loop.
    """

    def __init__(self, service: str, message: str, attempts: int = 0):
        super().__init__(
            message=f"Transient failure ({service}) after {attempts} attempt(s): {message}",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="TRANSIENT_SOURCE_ERROR",
            details={"service": service, "attempts": attempts}
        )


class RateLimitError(AppException):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        details = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_code="RATE_LIMIT_ERROR",
            details=details
        )


class FatalOrchestrationError(AppException):
    """Raised when an enrichment run fails outside the per-player boundary."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="ORCHESTRATION_ERROR",
            details=details
        )


class AmbiguousIdentity(AppException):
    """
    An external record matched several canonical players too closely to pick one.

    Carries every candidate id so the record can be queued for review.
    """

    def __init__(self, source: str, source_player_id: str, candidate_ids: List[int]):
        super().__init__(
            message=f"Ambiguous identity for {source}:{source_player_id}",
            status_code=status.HTTP_409_CONFLICT,
            error_code="AMBIGUOUS_IDENTITY",
            details={"candidate_player_ids": list(candidate_ids)}
        )
        self.source = source
        self.source_player_id = source_player_id
        self.candidate_ids = list(candidate_ids)


class BudgetExhaustedError(Exception):
    """
    Control signal: the request budget for the current run has been spent.

    Not an AppException; the orchestrator catches it and records the
    exhaustion in the run summary.
    """

    def __init__(self, source: str, used: int, limit: int):
        self.source = source
        self.used = used
        self.limit = limit
        super().__init__(f"Request budget exhausted for {source}: {used}/{limit}")


def create_error_response(
    exception: AppException,
    include_traceback: bool = False
) -> JSONResponse:
    """
    Create standardized error response from AppException.

    Args:
        exception: AppException instance
        include_traceback: Whether to include traceback in response (default: False)

    Returns:
        JSONResponse with standardized error format
    """
    response_data = {
        "error": {
            "code": exception.error_code,
            "message": exception.message,
            "status_code": exception.status_code
        }
    }

    if exception.details:
        response_data["error"]["details"] = exception.details

    if include_traceback:
        import traceback
        response_data["error"]["traceback"] = traceback.format_exc()

    return JSONResponse(
        status_code=exception.status_code,
        content=response_data
    )


def handle_app_exception(exception: AppException) -> JSONResponse:
    """
    Handle AppException and return standardized response.

    Args:
        exception: AppException instance

    Returns:
        JSONResponse with error details
    """
    logger.error(
        f"AppException: {exception.error_code} - {exception.message}",
        extra={"error_code": exception.error_code, "details": exception.details}
    )
    return create_error_response(exception, include_traceback=False)


def handle_http_exception(exception: HTTPException) -> JSONResponse:
    """Wrap FastAPI's HTTPException in the standardized error envelope."""
    app_exception = AppException(
        message=str(exception.detail),
        status_code=exception.status_code,
        error_code="HTTP_ERROR",
    )
    return create_error_response(app_exception)


def handle_generic_exception(exception: Exception) -> JSONResponse:
    """
    Handle generic exceptions and convert to standardized format.

    Args:
        exception: Generic Exception instance

    Returns:
        JSONResponse with error details
    """
    logger.error(f"Unhandled exception: {str(exception)}", exc_info=True)

    app_exception = AppException(
        message="An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code="INTERNAL_ERROR",
        details={"original_error": str(exception)}
    )
    return create_error_response(app_exception, include_traceback=False)
