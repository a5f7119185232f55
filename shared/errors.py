"""
Shared error handling for the API gateway.

Every client-facing failure is a ``GatewayException`` carrying its HTTP
status. The rendered body is always ``{"error": <message>, "code": <status>}``.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


# Messages shown to callers when running in production.
GENERIC_MESSAGES: Dict[int, str] = {
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: int


def error_message(status_code: int, message: str, generic: bool = False) -> str:
    """Pick the caller-visible message for a status code."""
    if generic:
        return GENERIC_MESSAGES.get(status_code, message)
    return message


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.headers = headers or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_response(self, generic: bool = False) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=error_message(self.status_code, self.message, generic),
            code=self.status_code,
        )


class AuthRequiredError(GatewayException):
    """No API key supplied."""

    status_code = 401
    default_message = "API key required"


class InvalidApiKeyError(GatewayException):
    """API key unknown, inactive or expired."""

    status_code = 403
    default_message = "Invalid API key"


class ClientNotFoundError(GatewayException):
    """API key references a client that no longer exists."""

    status_code = 403
    default_message = "Client not found"


class TargetNotFoundError(GatewayException):
    """No routing target for the key or path."""

    status_code = 404
    default_message = "Target not found"


class InsufficientCreditsError(GatewayException):
    """Balance lower than the request cost."""

    status_code = 429
    default_message = "Insufficient credits"

    def __init__(self, remaining: int, required: int, status_code: Optional[int] = None):
        super().__init__(
            details={"remaining": remaining, "required": required},
            headers={
                "X-Credits-Remaining": str(remaining),
                "X-Credits-Required": str(required),
            },
            status_code=status_code,
        )
        self.remaining = remaining
        self.required = required


class UpstreamUnavailableError(GatewayException):
    """Backend could not be reached or timed out."""

    status_code = 502
    default_message = "Backend request failed"


class ValidationError(GatewayException):
    """Request payload failed validation."""

    status_code = 400
    default_message = "Validation failed"


class NotFoundError(GatewayException):
    """Admin resource does not exist."""

    status_code = 404
    default_message = "Not Found"


class MethodNotAllowedError(GatewayException):
    """Service route called with an unsupported method."""

    status_code = 405
    default_message = "Method Not Allowed"


class ConflictError(GatewayException):
    """Admin resource already exists."""

    status_code = 409
    default_message = "Conflict"


class AdminAuthError(GatewayException):
    """Admin credentials missing or wrong."""

    status_code = 401
    default_message = "Authentication required"


class StorageError(GatewayException):
    """Key-value store failure."""

    status_code = 500
    default_message = "Internal Server Error"
