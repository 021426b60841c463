"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://lms.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.code = code or type(self).__name__
        super().__init__(detail)


# ── 400 ─────────────────────────────────────────────────────────────

class ValidationError(AppException):
    """400 — input or business-rule validation failure, detected before mutation."""

    def __init__(
        self,
        detail: str = "One or more fields failed validation.",
        errors: Optional[dict[str, list[str]]] = None,
        code: str = "ValidationError",
    ) -> None:
        super().__init__(
            status_code=400,
            error_type="validation-error",
            title="Validation Error",
            detail=detail,
            errors=errors,
            code=code,
        )


class InvalidDateRange(ValidationError):
    def __init__(self, start_date: Any, end_date: Any) -> None:
        super().__init__(
            detail=f"Start date {start_date} is after end date {end_date}.",
            errors={"start_date": ["Must be on or before end_date."]},
            code="InvalidDateRange",
        )


class BeforeJoining(ValidationError):
    def __init__(self, start_date: Any, joining_date: Any) -> None:
        super().__init__(
            detail=f"Leave cannot start ({start_date}) before the joining date ({joining_date}).",
            errors={"start_date": ["Must be on or after the employee's joining date."]},
            code="BeforeJoining",
        )


class ZeroDurationRequest(ValidationError):
    def __init__(self) -> None:
        super().__init__(
            detail="The selected range contains no working days.",
            errors={"dates": ["Range must include at least one weekday."]},
            code="ZeroDurationRequest",
        )


class NoBalanceRecord(ValidationError):
    def __init__(self, leave_type: str, year: int) -> None:
        super().__init__(
            detail=f"No leave balance found for {leave_type} in {year}. Please contact HR.",
            errors={"leave_type_id": [f"No balance record for {year}."]},
            code="NoBalanceRecord",
        )


# ── 403 ─────────────────────────────────────────────────────────────

class ForbiddenError(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
            code="Forbidden",
        )


# ── 404 ─────────────────────────────────────────────────────────────

class NotFoundError(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any, code: str = "NotFound") -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
            code=code,
        )


class RequestNotFound(NotFoundError):
    def __init__(self, request_id: Any) -> None:
        super().__init__("LeaveRequest", request_id, code="RequestNotFound")


# ── 409 ─────────────────────────────────────────────────────────────

class ConflictError(AppException):
    """409 — request conflicts with the current state of the data.

    Leave workflow conflicts (balance, overlap, non-pending transition) are
    400; ``code`` tells them apart.
    """

    def __init__(
        self,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        code: str = "Conflict",
        status_code: int = 409,
    ) -> None:
        super().__init__(
            status_code=status_code,
            error_type="conflict",
            title="Conflict",
            detail=detail,
            errors=errors,
            code=code,
        )


class DuplicateError(ConflictError):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
            code="Duplicate",
        )


class InsufficientBalance(ConflictError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            detail=f"Insufficient leave balance. Available: {available}, Requested: {requested}.",
            errors={"balance": [f"Only {available} day(s) available."]},
            code="InsufficientBalance",
            status_code=400,
        )
        self.requested = requested
        self.available = available


class OverlappingRequest(ConflictError):
    def __init__(self, start_date: Any, end_date: Any) -> None:
        super().__init__(
            detail=(
                f"A pending or approved leave request already overlaps "
                f"{start_date} to {end_date}."
            ),
            errors={"dates": ["Overlaps an existing pending or approved request."]},
            code="OverlappingRequest",
            status_code=400,
        )


class NotPending(ConflictError):
    def __init__(self, status: Any) -> None:
        value = getattr(status, "value", status)
        super().__init__(
            detail=f"Leave request is already {value}; only pending requests can change state.",
            errors={"status": [f"Current status is '{value}'."]},
            code="NotPending",
            status_code=400,
        )
        self.status = value


# ── 500 ─────────────────────────────────────────────────────────────

class PersistenceError(AppException):
    """500 — the store failed mid-transaction; everything was rolled back."""

    def __init__(self, detail: str = "The operation could not be persisted. Please retry.") -> None:
        super().__init__(
            status_code=500,
            error_type="persistence-error",
            title="Persistence Error",
            detail=detail,
            code="PersistenceError",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
        "code": exc.code,
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info("%s %s refused: %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=400,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 400,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "code": "ValidationError",
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
