"""
webkit - Custom Exception Hierarchy
=====================================

What:  Application-specific exceptions for startup, runtime and request errors.
How:   Each exception carries a message and an optional context dict.
       Startup code lets them reach `main`, which turns them into a fatal exit;
       request-time errors are mapped to HTTP responses by the handlers
       registered in main.py.

Exception Hierarchy:
    WebkitError (base)
    ├── ConfigError            → fatal at startup
    ├── DatabaseError          → fatal at startup, 500 at request time
    ├── ValidatorError         → fatal at startup
    ├── ServerError            → fatal
    │   ├── BindError              listener could not bind its address
    │   └── ShutdownTimeoutError   in-flight requests outlived the deadline
    ├── CallApiError           → returned to the caller of call_api (502 if unhandled)
    │   └── ResponseDecodeError    200 response whose body could not be decoded
    ├── ValidationError        → 400 Bad Request
    └── NotFoundError          → 404 Not Found
"""

from typing import Any, Dict, Optional


class WebkitError(Exception):
    """
    Base exception for all webkit errors.

    Attributes:
        message:  Human-readable description (safe to return in API responses)
        context:  Additional debug info (logged, never returned to the client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigError(WebkitError):
    """
    Raised when configuration cannot be located, parsed or validated.

    When:  init_by_file() with a missing, unreadable or malformed file.
    Fatal: There is no partial-success path; main() exits the process.
    """

    def __init__(
        self,
        message: str = "config init fail",
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if path:
            ctx["path"] = path
        super().__init__(message=message, context=ctx)
        self.path = path


class DatabaseError(WebkitError):
    """
    Raised when the database engine cannot be built or reached.

    Security Note:
        The API response for this error is always generic. Connection strings
        and driver messages stay in the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ValidatorError(WebkitError):
    """Raised when the request validator cannot be installed."""

    def __init__(
        self,
        message: str = "validator init fail",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ServerError(WebkitError):
    """
    Raised when the HTTP server lifecycle fails.

    Every failure in the lifecycle is fatal; nothing here is retried.
    """

    def __init__(
        self,
        message: str = "server error",
        addr: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if addr:
            ctx["addr"] = addr
        super().__init__(message=message, context=ctx)
        self.addr = addr


class BindError(ServerError):
    """Raised when the listener cannot bind its address."""


class ShutdownTimeoutError(ServerError):
    """
    Raised when graceful shutdown does not finish before its deadline.

    When:  A request handler is still running after `shutdown_timeout` seconds.
    """

    def __init__(
        self,
        timeout: float,
        addr: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout"] = timeout
        super().__init__(
            message=f"Server shutdown: deadline of {timeout:g}s exceeded",
            addr=addr,
            context=ctx,
        )
        self.timeout = timeout


class CallApiError(WebkitError):
    """
    Raised by call_api when the remote side answers with a non-200 status.

    The message embeds the status line and the raw response body text;
    no attempt is made to parse a structured error body.

    Attributes:
        status_code: HTTP status returned by the remote service (None if unknown)
        body:        Raw response body text
    """

    def __init__(
        self,
        message: str = "CoreServer error",
        status_code: Optional[int] = None,
        body: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.body = body


class ResponseDecodeError(CallApiError):
    """Raised when a 200 response body is not valid JSON for the result type."""


class ValidationError(WebkitError):
    """
    Raised when client input fails a business rule.

    HTTP:  400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(WebkitError):
    """Raised when a requested resource does not exist (HTTP 404)."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
