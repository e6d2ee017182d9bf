"""
Error handling with sanitized, structured JSON responses.

Domain errors from core.errors map to their declared status codes; request
validation, HTTP and database errors get fixed codes; anything else is a 500
whose message never leaks internals.
"""

import logging
import re
import traceback
from typing import Any, Callable, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.errors import ATSError

logger = logging.getLogger(__name__)

SENSITIVE_PATTERNS = [
    re.compile(r'password["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'token["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'secret["\s:=]+[^"\s,}]+', re.IGNORECASE),
    re.compile(r'authorization["\s:]+[^"\s,}]+', re.IGNORECASE),
    # Credentials embedded in a database URL
    re.compile(r"(?<=://)[^/\s:@]+:[^/\s@]+(?=@)"),
]


def sanitize_error_message(message: Any) -> str:
    """
    Remove credentials from an error message.

    Args:
        message: Original error message

    Returns:
        Sanitized error message
    """
    sanitized = str(message)
    for pattern in SENSITIVE_PATTERNS:
        sanitized = pattern.sub("[REDACTED]", sanitized)
    return sanitized


def get_safe_error_details(exc: Exception, include_details: bool = False) -> dict[str, Any]:
    details = {
        "type": type(exc).__name__,
        "message": sanitize_error_message(str(exc)),
    }
    if include_details:
        details["traceback"] = traceback.format_exc()
    return details


def error_response(
    status_code: int,
    code: str,
    message: str,
    path: str,
    method: str,
    details: Optional[Any] = None,
) -> JSONResponse:
    """Build the common ``{"error": {...}}`` response body."""
    body: dict[str, Any] = {
        "code": code,
        "message": message,
        "path": path,
        "method": method,
    }
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def format_validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": sanitize_error_message(error["msg"]),
            "type": error["type"],
        }
        for error in exc.errors()
    ]


def classify_exception(exc: Exception, debug: bool = False) -> tuple[int, str, str, Any]:
    """
    Map an exception to ``(status_code, error_code, message, details)``.

    Args:
        exc: The exception to classify
        debug: Whether to attach exception details to internal errors
    """
    if isinstance(exc, ATSError):
        return exc.status_code, exc.code, exc.message, exc.details

    if isinstance(exc, StarletteHTTPException):
        return exc.status_code, "HTTP_EXCEPTION", sanitize_error_message(exc.detail), None

    if isinstance(exc, RequestValidationError):
        return (
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed",
            format_validation_errors(exc),
        )

    details = get_safe_error_details(exc, include_details=True) if debug else None

    if isinstance(exc, IntegrityError):
        return (
            status.HTTP_409_CONFLICT,
            "INTEGRITY_ERROR",
            "Database integrity constraint violated",
            details,
        )
    if isinstance(exc, OperationalError):
        return (
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "DATABASE_ERROR",
            "Database service temporarily unavailable",
            None,
        )
    if isinstance(exc, SQLAlchemyError):
        return (
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "DATABASE_ERROR",
            "A database error occurred",
            details,
        )
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        details,
    )


def log_exception(exc: Exception, status_code: int, method: str, path: str) -> None:
    if status_code >= 500:
        logger.error(
            f"Unhandled exception: {method} {path} - "
            f"{type(exc).__name__}: {sanitize_error_message(str(exc))}",
            exc_info=exc,
        )
    else:
        logger.warning(
            f"{type(exc).__name__}: {method} {path} - Status: {status_code}"
        )


class ErrorHandlingMiddleware:
    """
    Outermost ASGI guard.

    Exceptions that escape the routers and FastAPI's own handlers are turned
    into the same structured body the registered handlers produce.
    """

    def __init__(self, app: Callable, debug: bool = False):
        self.app = app
        self.debug = debug

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            path = scope.get("path", "unknown")
            method = scope.get("method", "unknown")
            status_code, code, message, details = classify_exception(exc, self.debug)
            log_exception(exc, status_code, method, path)
            response = error_response(status_code, code, message, path, method, details)
            await response(scope, receive, send)


def setup_error_handlers(app, debug: bool = False):
    """
    Register exception handlers on a FastAPI application.

    Args:
        app: FastAPI application instance
        debug: Whether internal error responses include exception details
    """

    async def handle(request: Request, exc: Exception) -> JSONResponse:
        status_code, code, message, details = classify_exception(exc, debug)
        log_exception(exc, status_code, request.method, request.url.path)
        return error_response(
            status_code, code, message, request.url.path, request.method, details
        )

    app.add_exception_handler(ATSError, handle)
    app.add_exception_handler(StarletteHTTPException, handle)
    app.add_exception_handler(RequestValidationError, handle)
    app.add_exception_handler(SQLAlchemyError, handle)
    app.add_exception_handler(Exception, handle)
