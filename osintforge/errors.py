"""Module errors: structured error taxonomy for the OSINTForge job pipeline."""
#
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional

# PURPOSE:
# Every failure that crosses a component boundary is an OsintError carrying a
# searchable code, a human-readable message and a details dict. The intake API
# renders them verbatim; workers persist the message on the failed job.
#
# ERROR CODE FORMAT:
# - INPUT_XXX: Input validation errors (never retried)
# - RATE_XXX: Rate limiting errors
# - SANDBOX_XXX: Sandboxed process failures
# - TOOL_XXX: Tool execution / output parsing errors
# - WEBHOOK_XXX: Webhook delivery errors
# - JOB_XXX: Job lifecycle errors
# - AUTH_XXX: Authentication/authorization errors
# - DB_XXX: Database errors
# - CONFIG_XXX: Configuration errors
#
# USAGE:
#   from osintforge.errors import SandboxError, SandboxFailure
#
#   raise SandboxError(
#       SandboxFailure.TIMEOUT,
#       "Execution timed out after 1000ms",
#       details={"timeout_ms": 1000},
#   )
#


class ErrorCode(Enum):
    # Input Errors
    VALIDATION_FAILED = "INPUT_001"
    TOOL_NOT_FOUND = "INPUT_002"

    # Rate Limit Errors
    RATE_LIMIT_EXCEEDED = "RATE_001"
    RATE_LIMIT_STORE_UNAVAILABLE = "RATE_002"

    # Sandbox Errors
    SANDBOX_SPAWN_FAILED = "SANDBOX_001"
    SANDBOX_NONZERO_EXIT = "SANDBOX_002"
    SANDBOX_TIMEOUT = "SANDBOX_003"
    SANDBOX_IMAGE_UNAVAILABLE = "SANDBOX_004"

    # Tool Errors
    TOOL_EXEC_FAILED = "TOOL_001"
    TOOL_OUTPUT_PARSE_ERROR = "TOOL_002"

    # Webhook Errors
    WEBHOOK_DELIVERY_FAILED = "WEBHOOK_001"
    WEBHOOK_NOT_FOUND = "WEBHOOK_002"
    WEBHOOK_PAYLOAD_INVALID = "WEBHOOK_003"

    # Job Errors
    JOB_NOT_FOUND = "JOB_001"
    JOB_INVALID_TRANSITION = "JOB_002"

    # Auth Errors
    AUTH_TOKEN_MISSING = "AUTH_001"
    AUTH_PERMISSION_DENIED = "AUTH_002"

    # Database Errors
    DB_QUERY_FAILED = "DB_001"
    DB_INIT_FAILED = "DB_002"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"

    # System Errors
    SYSTEM_INTERNAL_ERROR = "SYSTEM_001"


class OsintError(Exception):
    """
    Base exception class for OSINTForge with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "SANDBOX_003")
        message: Human-readable error message
        details: Optional dictionary with additional context
        http_status: Suggested HTTP status code for API responses
    """

    default_code: ErrorCode = ErrorCode.SYSTEM_INTERNAL_ERROR

    # Map error codes to HTTP status codes
    HTTP_STATUS_MAP: Dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_FAILED: 400,        # Bad Request
        ErrorCode.TOOL_NOT_FOUND: 400,
        ErrorCode.RATE_LIMIT_EXCEEDED: 429,      # Too Many Requests
        ErrorCode.RATE_LIMIT_STORE_UNAVAILABLE: 503,
        ErrorCode.SANDBOX_SPAWN_FAILED: 503,     # Service Unavailable
        ErrorCode.SANDBOX_NONZERO_EXIT: 500,
        ErrorCode.SANDBOX_TIMEOUT: 408,          # Request Timeout
        ErrorCode.SANDBOX_IMAGE_UNAVAILABLE: 503,
        ErrorCode.TOOL_EXEC_FAILED: 500,
        ErrorCode.TOOL_OUTPUT_PARSE_ERROR: 500,
        ErrorCode.WEBHOOK_DELIVERY_FAILED: 502,  # Bad Gateway
        ErrorCode.WEBHOOK_NOT_FOUND: 404,
        ErrorCode.WEBHOOK_PAYLOAD_INVALID: 500,
        ErrorCode.JOB_NOT_FOUND: 404,            # Not Found
        ErrorCode.JOB_INVALID_TRANSITION: 409,   # Conflict
        ErrorCode.AUTH_TOKEN_MISSING: 401,       # Unauthorized
        ErrorCode.AUTH_PERMISSION_DENIED: 403,   # Forbidden
        ErrorCode.DB_QUERY_FAILED: 500,
        ErrorCode.DB_INIT_FAILED: 500,
        ErrorCode.CONFIG_INVALID: 500,
        ErrorCode.SYSTEM_INTERNAL_ERROR: 500,
    }

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status or self.HTTP_STATUS_MAP.get(self.code, 500)

        # Build exception message with code for easy debugging
        super().__init__(f"[{self.code.value}] {message}")

    def __str__(self) -> str:
        return self.message

    def qualified(self, tool_name: str) -> "OsintError":
        """
        Return a copy of this error whose message names the tool that raised it.

        The error class and code are preserved so callers can still branch on
        the failure kind. Already-qualified errors are returned unchanged.
        """
        if self.details.get("tool") == tool_name:
            return self
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        clone.message = f"Execution failed for {tool_name}: {self.message}"
        clone.details = {**self.details, "tool": tool_name}
        clone.args = (f"[{clone.code.value}] {clone.message}",)
        return clone

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OsintError":
        """Rebuild a generic OsintError from its serialized form."""
        return OsintError(
            data["message"],
            code=ErrorCode(data["code"]),
            details=data.get("details", {}),
            http_status=data.get("http_status"),
        )


class ValidationError(OsintError):
    """Input does not satisfy a tool's schema. Rejected before any work starts."""

    default_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **kwargs: Any):
        self.errors = list(errors or [])
        details = kwargs.pop("details", None) or {}
        if self.errors:
            details = {**details, "errors": self.errors}
        super().__init__(message, details=details, **kwargs)


class RateLimitError(OsintError):
    """A request exceeded its sliding-window budget."""

    default_code = ErrorCode.RATE_LIMIT_EXCEEDED

    def __init__(self, message: str, retry_after_seconds: int, info: Any = None, **kwargs: Any):
        self.retry_after_seconds = retry_after_seconds
        self.info = info
        details = kwargs.pop("details", None) or {}
        details = {**details, "retry_after": retry_after_seconds}
        super().__init__(message, details=details, **kwargs)


class CounterStoreError(OsintError):
    """The shared counter store (Redis) could not be reached."""

    default_code = ErrorCode.RATE_LIMIT_STORE_UNAVAILABLE


class ExecutionError(OsintError):
    """A tool execution failed after input validation succeeded."""

    default_code = ErrorCode.TOOL_EXEC_FAILED


class SandboxFailure(str, Enum):
    SPAWN = "spawn"
    EXIT = "exit"
    TIMEOUT = "timeout"
    IMAGE = "image"


_SANDBOX_CODES = {
    SandboxFailure.SPAWN: ErrorCode.SANDBOX_SPAWN_FAILED,
    SandboxFailure.EXIT: ErrorCode.SANDBOX_NONZERO_EXIT,
    SandboxFailure.TIMEOUT: ErrorCode.SANDBOX_TIMEOUT,
    SandboxFailure.IMAGE: ErrorCode.SANDBOX_IMAGE_UNAVAILABLE,
}


class SandboxError(ExecutionError):
    """The sandboxed process could not be started, exited non-zero, or timed out."""

    def __init__(
        self,
        kind: SandboxFailure,
        message: str,
        *,
        exit_code: Optional[int] = None,
        stderr: str = "",
        **kwargs: Any,
    ):
        self.kind = kind
        self.exit_code = exit_code
        self.stderr = stderr
        details = kwargs.pop("details", None) or {}
        details = {**details, "kind": kind.value}
        if exit_code is not None:
            details["exit_code"] = exit_code
        kwargs.setdefault("code", _SANDBOX_CODES[kind])
        super().__init__(message, details=details, **kwargs)


class ParseError(ExecutionError):
    """Neither the structured nor the text parser recognised the tool output."""

    default_code = ErrorCode.TOOL_OUTPUT_PARSE_ERROR


class DeliveryError(OsintError):
    """A webhook endpoint answered non-2xx or could not be reached."""

    default_code = ErrorCode.WEBHOOK_DELIVERY_FAILED

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None, **kwargs: Any):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message, **kwargs)


class NotFoundError(OsintError):
    default_code = ErrorCode.JOB_NOT_FOUND


class InvalidTransitionError(OsintError):
    default_code = ErrorCode.JOB_INVALID_TRANSITION


class AuthenticationError(OsintError):
    default_code = ErrorCode.AUTH_TOKEN_MISSING


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(error: Exception, context: Optional[str] = None) -> OsintError:
    """
    Convert a generic exception to an OsintError.

    Useful for catching unexpected exceptions and wrapping them in structured errors.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while parsing tool output")

    Returns:
        OsintError with appropriate code and message
    """
    if isinstance(error, OsintError):
        return error

    error_type = type(error).__name__

    if "Timeout" in error_type:
        code = ErrorCode.SANDBOX_TIMEOUT
    elif "Permission" in error_type:
        code = ErrorCode.AUTH_PERMISSION_DENIED
    elif "sqlite" in type(error).__module__:
        code = ErrorCode.DB_QUERY_FAILED
    else:
        code = ErrorCode.SYSTEM_INTERNAL_ERROR

    message = str(error) or error_type
    if context:
        message = f"{context}: {message}"

    return OsintError(
        message,
        code=code,
        details={
            "original_type": error_type,
            "original_message": str(error),
        },
    )


# ============================================================================
# Module-Level Exports
# ============================================================================

__all__ = [
    "ErrorCode",
    "OsintError",
    "ValidationError",
    "RateLimitError",
    "CounterStoreError",
    "ExecutionError",
    "SandboxFailure",
    "SandboxError",
    "ParseError",
    "DeliveryError",
    "NotFoundError",
    "InvalidTransitionError",
    "AuthenticationError",
    "handle_error",
]
