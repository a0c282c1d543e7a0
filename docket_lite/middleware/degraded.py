"""
Degraded mode guard: while the system is DEGRADED only reads get through.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..system_state import get_state, is_degraded
from .response_contract import error_response

READ_ONLY_METHODS = {"GET", "HEAD", "OPTIONS"}

# SuperAdmins must be able to switch back to NORMAL
ALWAYS_ALLOWED_PREFIXES = ("/api/superadmin/system-state",)


class DegradedGuardMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if not is_degraded() or request.method in READ_ONLY_METHODS:
            return await call_next(request)
        if request.url.path.startswith(ALWAYS_ALLOWED_PREFIXES):
            return await call_next(request)

        return error_response(
            request,
            503,
            "System is in degraded mode. Write operations are temporarily blocked.",
            code="system_degraded",
            systemState=get_state(),
        )
