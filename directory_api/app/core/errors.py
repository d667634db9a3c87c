"""
Error taxonomy shared by services and endpoints.

Services raise subclasses of :class:`DirectoryError`; the exception
handlers installed by :func:`register_exception_handlers` turn them
into the uniform ``{"error": {"code", "message"}}`` body.  Codes are
stable and meant for clients; messages are for humans and may change.
"""

import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .config import settings


logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Base class for errors with a stable code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, headers: Optional[Dict[str, str]] = None) -> None:
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


class InvalidInputError(DirectoryError):
    code = "INVALID_INPUT"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class UnauthorizedError(DirectoryError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class ForbiddenError(DirectoryError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(DirectoryError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class AlreadyFlaggedError(DirectoryError):
    code = "ALREADY_FLAGGED"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "You have already flagged this review"


class ConflictError(DirectoryError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


def retry_after_seconds(reset_in_ms: int) -> int:
    """Whole seconds until a window resets, rounded up and never below one."""
    return max(1, -(-reset_in_ms // 1000))


class RateLimitedError(DirectoryError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."

    def __init__(self, reset_in_ms: int, message: Optional[str] = None) -> None:
        self.reset_in_ms = reset_in_ms
        reset_seconds = str(retry_after_seconds(reset_in_ms))
        super().__init__(
            message,
            headers={
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": reset_seconds,
                "Retry-After": reset_seconds,
            },
        )


_HTTP_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "INVALID_INPUT",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "INVALID_INPUT",
    status.HTTP_409_CONFLICT: "CONFLICT",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "INVALID_INPUT",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMITED",
}


def error_body(code: str, message: str) -> Dict[str, Dict[str, str]]:
    return {"error": {"code": code, "message": message}}


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    first = errors[0]
    # Drop the "body"/"path"/"query" prefix FastAPI adds to locations.
    location = [str(part) for part in first.get("loc", ())][1:]
    message = first.get("msg", "Invalid input")
    return f"{'.'.join(location)}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers rendering every error in the uniform shape."""

    @app.exception_handler(DirectoryError)
    async def handle_directory_error(request: Request, exc: DirectoryError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("INVALID_INPUT", _first_validation_message(exc)),
        )

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        code = _HTTP_STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        # Exception text is only exposed while developing.
        message = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", message),
        )
