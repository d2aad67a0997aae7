"""Error handling module for gamehub.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "PORTS_EXHAUSTED",
        "message": "No free port available in the configured range"
    }
}

Usage:
    from gamehub.core.errors import InstanceNotFoundError

    raise InstanceNotFoundError()
    raise LifecycleConflictError("Stop already in progress")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    LIFECYCLE_CONFLICT = "LIFECYCLE_CONFLICT"
    PORTS_EXHAUSTED = "PORTS_EXHAUSTED"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    STREAM_DETACHED = "STREAM_DETACHED"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class GameHubError(Exception):
    """Base exception for gamehub.

    All gamehub specific exceptions inherit from this class so FastAPI
    can handle them in one place.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code to return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class UnauthorizedError(GameHubError):
    """401 Unauthorized - Missing or invalid session credential."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class AuthorizationError(GameHubError):
    """403 Forbidden - Principal may not access this instance."""

    def __init__(self, message: str = "Permission denied") -> None:
        super().__init__(ErrorCode.FORBIDDEN, message, 403)


class InstanceNotFoundError(GameHubError):
    """404 Not Found - Instance not found."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class InvalidStateError(GameHubError):
    """409 Conflict - Operation not allowed in the current instance status."""

    def __init__(self, message: str = "Operation not allowed in current state") -> None:
        super().__init__(ErrorCode.INVALID_STATE, message, 409)


class LifecycleConflictError(GameHubError):
    """409 Conflict - Another lifecycle operation is in flight."""

    def __init__(
        self, message: str = "Another lifecycle operation is in progress"
    ) -> None:
        super().__init__(ErrorCode.LIFECYCLE_CONFLICT, message, 409)


class PortsExhaustedError(GameHubError):
    """503 Service Unavailable - No free port in the configured range."""

    def __init__(
        self, message: str = "No free port available in the configured range"
    ) -> None:
        super().__init__(ErrorCode.PORTS_EXHAUSTED, message, 503)


class RuntimeUnavailableError(GameHubError):
    """503 Service Unavailable - Container engine unreachable."""

    def __init__(self, message: str = "Container runtime unavailable") -> None:
        super().__init__(ErrorCode.RUNTIME_UNAVAILABLE, message, 503)


class RuntimeOperationError(GameHubError):
    """502 Bad Gateway - Container engine rejected an operation."""

    def __init__(self, message: str = "Container runtime operation failed") -> None:
        super().__init__(ErrorCode.RUNTIME_ERROR, message, 502)


class StreamDetachError(GameHubError):
    """Upstream stream ended or failed while a session was attached."""

    def __init__(self, message: str = "Upstream stream detached") -> None:
        super().__init__(ErrorCode.STREAM_DETACHED, message, 502)
