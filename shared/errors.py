"""
Shared error handling for the Todo Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class TodoServiceException(Exception):
    """Base exception for Todo Service components."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(TodoServiceException):
    """Missing, malformed or rejected credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class VerificationUnavailableError(TodoServiceException):
    """The credential could not be checked (timeout or transport failure)."""

    status_code = 500

    def __init__(self, message: str = "Token verification unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("VERIFICATION_UNAVAILABLE", message, details)


class ValidationError(TodoServiceException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(TodoServiceException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConflictError(TodoServiceException):
    """Unique constraint would be violated."""

    status_code = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class RetrievalError(TodoServiceException):
    """The source of truth failed to answer a query or mutation."""

    status_code = 500

    def __init__(self, message: str = "Failed to retrieve data", details: Optional[Dict[str, Any]] = None):
        super().__init__("RETRIEVAL_ERROR", message, details)


class CacheUnavailableError(TodoServiceException):
    """Cache backend failed for a reason other than a missing key."""

    status_code = 503

    def __init__(self, message: str = "Cache unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)


class ExternalServiceError(TodoServiceException):
    """External service errors."""

    status_code = 503

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class StartupError(TodoServiceException):
    """The service cannot safely start."""

    status_code = 500

    def __init__(self, message: str = "Service startup failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STARTUP_ERROR", message, details)
