from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from site_coverage_app.core.env import SITECOV_ERROR_INCLUDE_DETAILS, get_env_bool
from site_coverage_app.db import DataConnectionError
from site_coverage_app.errors import SchemaBootstrapRequiredError, SiteTrackingError

ERROR_CODE_BAD_REQUEST = "BAD_REQUEST"
ERROR_CODE_REQUEST_INVALID = "REQUEST_INVALID"
ERROR_CODE_FORBIDDEN = "FORBIDDEN"
ERROR_CODE_LOCKED = "LOCKED_MODE"
ERROR_CODE_SCHEMA_BOOTSTRAP_REQUIRED = "SCHEMA_BOOTSTRAP_REQUIRED"
ERROR_CODE_DB_CONNECTION = "DB_CONNECTION_ERROR"
ERROR_CODE_INTERNAL = "INTERNAL_SERVER_ERROR"

# SiteTrackingError.code -> HTTP status
SITE_TRACKING_STATUS_CODES: dict[str, int] = {
    "PARSE_ERROR": 400,
    "VALIDATION_ERROR": 422,
    "ELIGIBILITY_ERROR": 409,
    "NOT_FOUND": 404,
    "PERSISTENCE_ERROR": 503,
}

_HTTP_STATUS_CODES: dict[int, str] = {
    400: ERROR_CODE_BAD_REQUEST,
    401: "UNAUTHORIZED",
    403: ERROR_CODE_FORBIDDEN,
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: ERROR_CODE_REQUEST_INVALID,
}


@dataclass(frozen=True)
class ApiErrorSpec:
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


class ApiError(RuntimeError):
    """An error raised by a route that already knows its status code and envelope code."""

    def __init__(self, *, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.spec = ApiErrorSpec(status_code=int(status_code), code=str(code), message=str(message), details=details)


def request_id_from_request(request: Request) -> str:
    request_id = str(getattr(request.state, "request_id", "") or "").strip()
    return request_id or str(request.headers.get("x-request-id", "") or "").strip() or "-"


def build_api_error_payload(
    *,
    code: str,
    message: str,
    request_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details and get_env_bool(SITECOV_ERROR_INCLUDE_DETAILS, default=False):
        error["details"] = details
    return {
        "ok": False,
        "error": error,
        "request_id": request_id or "-",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def api_error_response(request: Request, spec: ApiErrorSpec) -> JSONResponse:
    request_id = request_id_from_request(request)
    payload = build_api_error_payload(
        code=spec.code,
        message=spec.message,
        request_id=request_id,
        details=spec.details,
    )
    return JSONResponse(payload, status_code=spec.status_code, headers={"X-Request-ID": request_id})


# (exception type, status, envelope code, message); the exception text goes under details.reason
_INFRASTRUCTURE_ERRORS: tuple[tuple[type[Exception], int, str, str], ...] = (
    (
        SchemaBootstrapRequiredError,
        503,
        ERROR_CODE_SCHEMA_BOOTSTRAP_REQUIRED,
        "Site tracking tables are not ready. Run the schema bootstrap and retry.",
    ),
    (DataConnectionError, 503, ERROR_CODE_DB_CONNECTION, "The database is unavailable. Try again shortly."),
)

# (exception type, status, envelope code, fallback message); the exception text is the message
_CLIENT_ERRORS: tuple[tuple[type[Exception], int, str, str], ...] = (
    (PermissionError, 403, ERROR_CODE_FORBIDDEN, "Forbidden."),
    (ValueError, 400, ERROR_CODE_BAD_REQUEST, "Bad request."),
)


def normalize_exception(exc: Exception) -> ApiErrorSpec:
    """Map any exception raised while serving an API request onto the JSON error envelope."""
    if isinstance(exc, ApiError):
        return exc.spec
    if isinstance(exc, SiteTrackingError):
        details = {**exc.details(), "retryable": exc.retryable}
        return ApiErrorSpec(SITE_TRACKING_STATUS_CODES.get(exc.code, 500), exc.code, str(exc), details)
    if isinstance(exc, RequestValidationError):
        return ApiErrorSpec(422, ERROR_CODE_REQUEST_INVALID, "Request parameters are invalid.", {"errors": exc.errors()})
    for exc_type, status_code, code, message in _INFRASTRUCTURE_ERRORS:
        if isinstance(exc, exc_type):
            return ApiErrorSpec(status_code, code, message, {"reason": str(exc)})
    for exc_type, status_code, code, fallback in _CLIENT_ERRORS:
        if isinstance(exc, exc_type):
            return ApiErrorSpec(status_code, code, str(exc) or fallback)
    if isinstance(exc, StarletteHTTPException):
        status_code = int(exc.status_code)
        return ApiErrorSpec(
            status_code,
            _HTTP_STATUS_CODES.get(status_code, ERROR_CODE_INTERNAL),
            str(exc.detail or "Request failed."),
        )
    return ApiErrorSpec(
        500,
        ERROR_CODE_INTERNAL,
        "An unexpected error occurred.",
        {"type": type(exc).__name__, "reason": str(exc)},
    )
