"""
Response Contract
=================

Every error leaves the service in one envelope:

    {
      "success": false,
      "code": "MACHINE_READABLE_CODE",
      "message": "Human readable message",
      "requestId": "...",
      "action": "retry | contact_admin | fix_request | read_only_mode | retry_after_Ns",
      "details": {...}            # only when present
    }
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ServiceError

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    404: "NOT_FOUND",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    429: "RATE_LIMITED",
    503: "SERVICE_UNAVAILABLE",
}


def derive_code(status_code: int, code: Optional[str] = None) -> str:
    if code:
        return str(code)
    return _STATUS_CODES.get(status_code, "SERVER_ERROR")


def derive_action(status_code: int, action: Optional[str] = None, retry_after: Optional[int] = None) -> str:
    if action:
        return action
    if status_code == 429:
        return f"retry_after_{retry_after}s" if retry_after else "retry_after"
    if status_code == 503:
        return "read_only_mode"
    if status_code >= 500:
        return "contact_admin"
    return "retry"


def request_id_of(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def error_envelope(
    status_code: int,
    message: str,
    *,
    request_id: Optional[str] = None,
    code: Optional[str] = None,
    action: Optional[str] = None,
    details: Any = None,
    retry_after: Optional[int] = None,
    **extra: Any,
) -> Dict[str, Any]:
    body = {
        "success": False,
        "code": derive_code(status_code, code),
        "message": message or "Request failed",
        "requestId": request_id,
        "action": derive_action(status_code, action, retry_after),
    }
    if details:
        body["details"] = details
    if retry_after:
        body["retryAfter"] = retry_after
    for key, value in extra.items():
        if value is not None:
            body[key] = value
    return body


def error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    code: Optional[str] = None,
    action: Optional[str] = None,
    details: Any = None,
    headers: Optional[Dict[str, str]] = None,
    retry_after: Optional[int] = None,
    **extra: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            status_code,
            message,
            request_id=request_id_of(request),
            code=code,
            action=action,
            details=details,
            retry_after=retry_after,
            **extra,
        ),
        headers=headers,
    )


def _sanitize_error_detail(detail: Any) -> Any:
    if isinstance(detail, str):
        return " ".join(detail.split())[:300]
    return detail


# =============================================================================
# Exception Handlers
# =============================================================================

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = _sanitize_error_detail(exc.detail)
    code = action = details = None

    if isinstance(detail, dict):
        message = detail.get("message") or detail.get("error") or "Request failed"
        code = detail.get("code") or detail.get("error")
        action = detail.get("action")
        details = detail.get("details")
    elif exc.status_code == 404 and detail == "Not Found":
        message = f"Route {request.url.path} not found"
    else:
        message = detail or "Request failed"

    return error_response(
        request,
        exc.status_code,
        message,
        code=code,
        action=action,
        details=details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return structured validation errors without leaking inputs."""
    errors = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    message = "; ".join(str(e["msg"]) for e in errors) or "Invalid request"
    return error_response(
        request,
        400,
        message,
        code="VALIDATION_ERROR",
        action="fix_request",
        details={"errors": errors},
    )


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    reason = str(exc.orig).lower()
    if "not null" in reason or "not-null" in reason:
        return error_response(
            request,
            400,
            "A required field is missing",
            code="VALIDATION_ERROR",
            action="fix_request",
        )
    return error_response(
        request,
        400,
        "Resource already exists",
        code="DUPLICATE",
        action="contact_admin",
    )


async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"Service error on {request.method} {request.url.path}: {exc.code} {exc.message}")
    return error_response(
        request,
        exc.status_code,
        exc.message,
        code=exc.code,
        action=exc.action,
        details=exc.details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return the envelope"""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc.__class__.__name__}",
        exc_info=exc,
    )
    return error_response(request, 500, "Internal server error", code="SERVER_ERROR")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
