"""
Security Middleware
====================

Security headers on every response, optional HTTPS redirect, and
`Cache-Control: no-store` on API responses (they carry tenant data).
"""

import os

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

ENFORCE_HTTPS = os.environ.get("ENFORCE_HTTPS", "false").lower() in ("true", "1", "yes")
HSTS_MAX_AGE = int(os.environ.get("HSTS_MAX_AGE", "31536000"))

API_CSP = "default-src 'none'; frame-ancestors 'none';"


def _is_https(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Headers added:
    - X-Content-Type-Options / X-Frame-Options / Referrer-Policy
    - Content-Security-Policy (API only, nothing is rendered)
    - Strict-Transport-Security (HTTPS or proxied HTTPS)
    - Cache-Control: no-store (/api and /f routes)
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if ENFORCE_HTTPS and not _is_https(request):
            url = str(request.url).replace("http://", "https://", 1)
            return RedirectResponse(url, status_code=301)

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = API_CSP

        if _is_https(request):
            response.headers["Strict-Transport-Security"] = f"max-age={HSTS_MAX_AGE}; includeSubDomains"

        path = request.url.path
        if path.startswith("/api/") or path.startswith("/f/"):
            response.headers["Cache-Control"] = "no-store"

        return response
