"""
Admin audit trail for mutating authenticated requests.

Runs after the transaction middleware has committed or rolled back, so
the entry is written in its own session and survives a rolled back
request.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..audit import record_admin_audit, resolve_audit_target

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _scope_for(path: str) -> str:
    return "superadmin" if path.startswith("/api/superadmin") else "admin"


class AdminAuditMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if request.method not in MUTATING_METHODS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)

        auth = getattr(request.state, "auth", None)
        if auth is None:
            return response

        firm = getattr(request.state, "firm", None)
        action = f"{request.method} {request.url.path}"
        try:
            record_admin_audit(
                actor=auth.xid or auth.email,
                action=action,
                firm_id=firm.id if firm is not None else auth.firm_id,
                user_id=auth.user_id,
                target=resolve_audit_target(dict(request.path_params)),
                scope=_scope_for(request.url.path),
                request_id=getattr(request.state, "request_id", None),
                status=response.status_code,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        except Exception as e:
            logger.warning(f"[ADMIN_AUDIT] Failed to record {action}: {e}")

        return response
