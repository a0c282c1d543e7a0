"""
Request Logger Middleware
=========================

Assigns the request id (incoming X-Request-ID or a new uuid), records
request metrics and logs each request with PII masked.
"""

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..metrics import metrics
from ..pii import sanitize_for_log

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
LOGGED_BODY_METHODS = {"POST", "PUT", "PATCH"}
MAX_LOGGED_BODY = 4096


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return f"{request.method} {template or request.url.path}"


async def _sanitized_body(request: Request):
    body = await request.body()
    if not body or len(body) > MAX_LOGGED_BODY:
        return None
    try:
        return sanitize_for_log(json.loads(body))
    except ValueError:
        return None


class RequestLoggerMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        client_ip = request.client.host if request.client else "-"
        logger.info(f"[{request_id}] {request.method} {request.url.path} - IP: {client_ip}")
        if request.method in LOGGED_BODY_METHODS:
            body = await _sanitized_body(request)
            if body is not None:
                logger.debug(f"[{request_id}] Request body: {body}")

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.record_request(_route_label(request), duration_ms)
            metrics.record_error(500)
            logger.error(f"[{request_id}] {request.method} {request.url.path} failed after {duration_ms:.1f}ms")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_request(_route_label(request), duration_ms)
        if response.status_code >= 400:
            metrics.record_error(response.status_code)

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)"
        )
        return response
