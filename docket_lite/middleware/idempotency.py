"""
Idempotency Middleware
======================

Mutating requests must carry an `Idempotency-Key` header. The first
response for a key is cached in memory and replayed (with
`Idempotent-Replay: true`) for any retry with the same fingerprint:

    sha256(method | path | firm id | user id | sha256(body))

Reusing a key for a different request is a 409. Auth and tenant login
paths are exempt (see Settings.idempotency_exempt_prefixes).
"""

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..auth import bearer_token, decode_token
from ..config import get_settings, is_idempotency_enforced
from .response_contract import error_response

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "Idempotent-Replay"
_SKIPPED_HEADERS = {"content-length", "x-request-id"}


@dataclass
class CachedResponse:
    status_code: int
    body: bytes
    headers: Dict[str, str]
    media_type: Optional[str]


@dataclass
class IdempotencyRecord:
    fingerprint: str
    response: Optional[CachedResponse] = None


_cache_lock = threading.Lock()
_idempotency_cache: Dict[str, IdempotencyRecord] = {}


def reset_idempotency_cache() -> None:
    with _cache_lock:
        _idempotency_cache.clear()


def _sha256(value: bytes) -> str:
    return hashlib.sha256(value).hexdigest()


def build_fingerprint(request: Request, body: bytes) -> str:
    token = bearer_token(request.headers.get("authorization"))
    payload = (decode_token(token) if token else None) or {}
    firm_id = payload.get("firm_id") or "none"
    user_id = payload.get("sub") or "anonymous"

    route = request.url.path
    if request.url.query:
        route = f"{route}?{request.url.query}"

    raw = "|".join([request.method, route, str(firm_id), str(user_id), _sha256(body)])
    return _sha256(raw.encode())


def _is_exempt(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in get_settings().idempotency_exempt())


def _replay(cached: CachedResponse) -> Response:
    headers = dict(cached.headers)
    headers[REPLAY_HEADER] = "true"
    return Response(
        content=cached.body,
        status_code=cached.status_code,
        headers=headers,
        media_type=cached.media_type,
    )


class IdempotencyMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if request.method not in MUTATING_METHODS or not is_idempotency_enforced():
            return await call_next(request)
        if _is_exempt(request.url.path):
            return await call_next(request)

        key = request.headers.get(IDEMPOTENCY_HEADER)
        if not key:
            return error_response(
                request,
                400,
                "Idempotency-Key header is required for this request",
                code="idempotency_key_required",
                action="fix_request",
            )

        body = await request.body()
        fingerprint = build_fingerprint(request, body)

        with _cache_lock:
            record = _idempotency_cache.get(key)
            if record is not None and record.fingerprint != fingerprint:
                conflict = True
            else:
                conflict = False
                if record is None:
                    record = IdempotencyRecord(fingerprint=fingerprint)
                    _idempotency_cache[key] = record
            cached = record.response if record is not None else None

        if conflict:
            logger.warning(f"Idempotency key reused for a different request: {request.method} {request.url.path}")
            return error_response(
                request,
                409,
                "Idempotency key was already used for a different request",
                code="idempotency_key_conflict",
                action="fix_request",
            )

        if cached is not None:
            logger.info(f"Idempotent replay for {request.method} {request.url.path}")
            return _replay(cached)

        response = await call_next(request)

        chunks = [chunk async for chunk in response.body_iterator]
        content = b"".join(chunks)
        headers = {k: v for k, v in response.headers.items() if k.lower() not in _SKIPPED_HEADERS}

        with _cache_lock:
            record.response = CachedResponse(
                status_code=response.status_code,
                body=content,
                headers=headers,
                media_type=response.media_type,
            )

        return Response(
            content=content,
            status_code=response.status_code,
            headers=headers,
            media_type=response.media_type,
        )
