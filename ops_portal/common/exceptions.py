"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://ops-portal.local/errors"


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
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class UnauthorizedException(AppException):
    """403 — actor lacks the role or permission for the operation."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="unauthorized",
            title="Unauthorized",
            detail=detail,
        )


class InvalidActorException(AppException):
    """403 — actor is not the approver the current step is waiting for."""

    def __init__(self, required_role: str, actor_role: str) -> None:
        super().__init__(
            status_code=403,
            error_type="invalid-actor",
            title="Invalid Approver",
            detail=(
                f"This step must be decided by a '{required_role}'; "
                f"actor has role '{actor_role}'."
            ),
        )


class OutOfOrderException(AppException):
    """409 — an earlier approval step is still unresolved."""

    def __init__(self, order: int, blocking_order: int) -> None:
        super().__init__(
            status_code=409,
            error_type="out-of-order",
            title="Approval Out Of Order",
            detail=(
                f"Step {order} cannot be decided before step "
                f"{blocking_order} is approved."
            ),
        )


class AlreadyTerminalException(AppException):
    """409 — the approval chain (or the targeted step) is already closed."""

    def __init__(self, detail: str = "The approval chain is already closed.") -> None:
        super().__init__(
            status_code=409,
            error_type="already-terminal",
            title="Already Terminal",
            detail=detail,
        )


class InsufficientBalanceException(AppException):
    """422 — a ledger posting would drive the remaining balance negative."""

    def __init__(self, leave_type: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient {leave_type} balance. "
                f"Available: {available}, Requested: {requested}."
            ),
            errors={"balance": [f"Available: {available}, Requested: {requested}."]},
        )
        self.available = available
        self.requested = requested


class VersionConflictException(AppException):
    """409 — a concurrent writer committed first; the unit of work is retried."""

    def __init__(self, entity_type: str, entity_id: Any = None) -> None:
        super().__init__(
            status_code=409,
            error_type="version-conflict",
            title="Version Conflict",
            detail=f"{entity_type} '{entity_id}' was modified concurrently.",
        )
        self.entity_type = entity_type


class ConflictError(AppException):
    """409 — concurrent writers kept winning; retries were exhausted."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=(
                f"The operation lost {attempts} consecutive concurrent-update "
                "races. Please retry."
            ),
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
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
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
