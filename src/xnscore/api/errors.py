"""XnScore API error handling.

Provides XnScoreHttpError and FastAPI exception handlers producing the
error envelope with request_id tracing:

- code: machine-readable error code (e.g. "NOT_ELDER", "UNAUTHORIZED")
- message: human-readable message
- details: optional context, never secrets or stack traces
- request_id: request correlation id, also echoed as X-Request-Id

Global exception handlers:
- XnScoreHttpError: Application-specific errors with structured envelope
- XnScoreError: Engine errors mapped to HTTP statuses by type
- HTTPException: FastAPI/Starlette HTTP exceptions, routing 404/405 included
- RequestValidationError: Pydantic validation errors
- Exception: Catch-all for unhandled exceptions (fail closed, no stack traces)
"""

import logging
import uuid
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from xnscore.errors import (
    CircleNotFoundError,
    EligibilityDeniedError,
    EndorsementError,
    EventStoreUnavailableError,
    MemberNotFoundError,
    StaleDataError,
    StorageUnavailableError,
    ValidationError,
    VouchError,
    VouchNotFoundError,
    XnScoreError,
)

logger = logging.getLogger(__name__)

# Fallback codes for framework-raised HTTP exceptions.
_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "UNPROCESSABLE_ENTITY",
    503: "SERVICE_UNAVAILABLE",
}


class ErrorResponse(BaseModel):
    """Error envelope schema."""

    code: str
    message: str
    details: dict[str, Any] | None = None
    request_id: str


def _request_id(request: Request) -> str:
    """Id set by RequestIdMiddleware, else the incoming header, else a fresh UUID."""
    request_id = getattr(request.state, "request_id", None) or request.headers.get(
        "X-Request-Id"
    )
    return str(request_id) if request_id else str(uuid.uuid4())


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Serialize the error envelope and set the X-Request-Id header."""
    envelope = ErrorResponse(
        code=code, message=message, details=details, request_id=_request_id(request)
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(),
        headers={"X-Request-Id": envelope.request_id},
    )


class XnScoreHttpError(Exception):
    """Application-level HTTP error with structured error envelope.

    Attributes:
        status_code: HTTP status code (e.g., 401, 404, 500).
        code: Machine-readable error code (e.g., "UNAUTHORIZED").
        message: Human-readable error message.
        details: Optional dict with additional error context.
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def to_http_error(exc: XnScoreError) -> XnScoreHttpError:
    """Map an engine error onto an HTTP status and error code."""
    if isinstance(exc, ValidationError):
        return XnScoreHttpError(400, exc.code, exc.message, exc.details)
    if isinstance(exc, MemberNotFoundError):
        return XnScoreHttpError(
            404, "MEMBER_NOT_FOUND", str(exc), {"member_id": exc.member_id}
        )
    if isinstance(exc, CircleNotFoundError):
        return XnScoreHttpError(
            404, "CIRCLE_NOT_FOUND", str(exc), {"circle_id": exc.circle_id}
        )
    if isinstance(exc, VouchNotFoundError):
        return XnScoreHttpError(404, "VOUCH_NOT_FOUND", str(exc), {"vouch_id": exc.vouch_id})
    if isinstance(exc, VouchError):
        status = 403 if exc.code == "UNAUTHORIZED_REVOKE" else 409
        return XnScoreHttpError(status, exc.code, exc.message)
    if isinstance(exc, EndorsementError):
        return XnScoreHttpError(409, exc.code, exc.message)
    if isinstance(exc, EligibilityDeniedError):
        return XnScoreHttpError(
            403, "ELIGIBILITY_DENIED", str(exc), {"reasons": list(exc.reasons)}
        )
    if isinstance(exc, StaleDataError | EventStoreUnavailableError):
        return XnScoreHttpError(503, "SCORE_UNAVAILABLE", "Score data is temporarily unavailable")
    if isinstance(exc, StorageUnavailableError):
        return XnScoreHttpError(503, "STORAGE_UNAVAILABLE", "Storage is temporarily unavailable")
    return XnScoreHttpError(500, "INTERNAL_ERROR", "An internal error occurred")


async def xnscore_http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for XnScoreHttpError."""
    assert isinstance(exc, XnScoreHttpError)

    return error_response(request, exc.status_code, exc.code, exc.message, exc.details)


async def xnscore_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler for engine errors raised by handlers."""
    assert isinstance(exc, XnScoreError)

    http_error = to_http_error(exc)
    if http_error.status_code >= 500:
        logger.warning(
            "Engine error: %s",
            type(exc).__name__,
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
    return await xnscore_http_error_handler(request, http_error)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map standard HTTP exceptions to the error envelope."""
    assert isinstance(exc, StarletteHTTPException)

    code = _STATUS_CODES.get(exc.status_code, "ERROR")
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"
    return error_response(request, exc.status_code, code, message)


async def request_validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map Pydantic validation errors to the error envelope without raw internals."""
    assert isinstance(exc, RequestValidationError)

    safe_details: list[dict[str, Any]] = []
    for error in exc.errors():
        loc = error.get("loc", ())
        safe_loc = [str(part) for part in loc if part not in ("body", "query", "path")]
        safe_details.append(
            {
                "field": ".".join(safe_loc) if safe_loc else "request",
                "message": error.get("msg", "Validation error"),
            }
        )

    return error_response(
        request,
        422,
        "REQUEST_VALIDATION_FAILED",
        "Request validation failed",
        {"errors": safe_details} if safe_details else None,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler. Fails closed with a generic 500; never exposes internals."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception: %s",
        type(exc).__name__,
        extra={"request_id": request_id},
    )

    return error_response(request, 500, "INTERNAL_ERROR", "An internal error occurred")
