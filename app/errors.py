from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", details: dict[str, Any] | None = None):
        super().__init__(422, code, message, details)


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "NOT_FOUND", details: dict[str, Any] | None = None):
        super().__init__(404, code, message, details)


class AuthorizationError(ApiError):
    def __init__(self, message: str = "Insufficient permissions.", *, code: str = "FORBIDDEN"):
        super().__init__(403, code, message)


class ConflictError(ApiError):
    def __init__(self, message: str, *, code: str = "CONFLICT", details: dict[str, Any] | None = None):
        super().__init__(409, code, message, details)


class PartialFailureError(ApiError):
    """Raised when a migration batch could not move every eligible item.

    Answers 207 while at least one item was moved, 500 when nothing was.
    """

    def __init__(
        self,
        message: str,
        *,
        moved_count: int,
        failures: list[dict[str, Any]],
        code: str = "MOVE_PARTIALLY_FAILED",
        details: dict[str, Any] | None = None,
    ):
        payload = {"moved_count": moved_count, "failures": failures}
        if details:
            payload.update(details)
        super().__init__(207 if moved_count > 0 else 500, code, message, payload)
        self.moved_count = moved_count
        self.failures = failures


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
