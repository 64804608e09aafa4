"""
Shared error handling for the client gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error payload handed to callers for user-facing reporting."""

    request_id: Optional[str] = None
    code: str
    message: str
    status_code: Optional[int] = None
    details: Dict[str, Any] = {}


class GatewayException(Exception):
    """Base exception for the client gateway."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            status_code=getattr(self, "status_code", None),
            details=self.details
        )


class TransportError(GatewayException):
    """No response was received from the backend."""

    def __init__(self, message: str = "Network request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)


class ApiError(GatewayException):
    """The backend answered with an error status."""

    def __init__(self, status_code: int, message: str = "Request failed",
                 details: Optional[Dict[str, Any]] = None, code: str = "API_ERROR"):
        self.status_code = status_code
        super().__init__(code, message, details)


class AuthenticationError(ApiError):
    """Authentication-related errors (401)."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 status_code: int = 401):
        super().__init__(status_code, message, details, code="AUTHENTICATION_ERROR")


class AuthorizationError(ApiError):
    """Authorization-related errors (403)."""

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None,
                 status_code: int = 403):
        super().__init__(status_code, message, details, code="AUTHORIZATION_ERROR")


class ValidationError(ApiError):
    """Validation and business-rule errors (400/422)."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None,
                 status_code: int = 400):
        super().__init__(status_code, message, details, code="VALIDATION_ERROR")


class NotFoundError(ApiError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None,
                 status_code: int = 404):
        super().__init__(status_code, message, details, code="NOT_FOUND")


class StorageError(GatewayException):
    """Secure key-value store failures."""

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


_STATUS_ERRORS = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
    422: ValidationError,
}


def error_for_status(status_code: int, message: str, details: Optional[Dict[str, Any]] = None) -> ApiError:
    """Build the most specific ApiError subclass for an HTTP status."""
    error_cls = _STATUS_ERRORS.get(status_code)
    if error_cls is None:
        return ApiError(status_code, message, details)
    return error_cls(message, details, status_code=status_code)
