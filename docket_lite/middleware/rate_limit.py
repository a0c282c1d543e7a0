"""
Rate Limiting Middleware
========================

Redis sliding-window rate limiting, keyed by the authenticated user
(JWT `sub`) or, for anonymous calls, the client IP. Auth endpoints get a
stricter budget. Enabled with RATE_LIMIT_ENABLED=true; without a
reachable redis every request is allowed.
"""

import logging
import os
import time
from typing import Callable, Optional, Tuple

import redis
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth import bearer_token, decode_token
from ..metrics import metrics
from .response_contract import error_response

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

RATE_LIMIT_PER_USER = int(os.environ.get("RATE_LIMIT_PER_USER", "120"))  # requests per minute
RATE_LIMIT_PER_IP = int(os.environ.get("RATE_LIMIT_PER_IP", "60"))
RATE_LIMIT_AUTH = int(os.environ.get("RATE_LIMIT_AUTH", "10"))  # login attempts per minute

SKIP_PATHS = {"/health", "/health/ready", "/docs", "/openapi.json"}


class RateLimiter:
    """
    Redis-based rate limiter using sliding window algorithm.
    """

    def __init__(self, redis_url: str = REDIS_URL):
        self.redis_url = redis_url
        self._client = None
        self._unavailable = False

    @property
    def client(self):
        """Lazy-load Redis client"""
        if self._unavailable:
            return None
        if self._client is None:
            try:
                client = redis.from_url(self.redis_url, decode_responses=True, socket_connect_timeout=1)
                client.ping()
                self._client = client
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed, rate limiting disabled: {e}")
                self._unavailable = True
        return self._client

    def is_allowed(self, key: str, limit: int, window_seconds: int = 60) -> Tuple[bool, int, int]:
        """
        Check if request is allowed under rate limit.

        Returns:
            (is_allowed, remaining, reset_time)
        """
        client = self.client
        if client is None:
            return (True, limit, 0)

        now = time.time()
        window_start = now - window_seconds

        try:
            pipe = client.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(now): now})
            pipe.expire(key, window_seconds)
            results = pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Rate limit check failed: {e}")
            return (True, limit, 0)

        current_count = results[1]
        reset_time = int(now + window_seconds)
        if current_count >= limit:
            return (False, 0, reset_time)
        return (True, max(0, limit - current_count - 1), reset_time)


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get singleton rate limiter instance"""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def _rate_limit_key(request: Request) -> Tuple[str, int]:
    path = request.url.path
    client_ip = request.client.host if request.client else "unknown"
    if path.startswith("/api/auth") or path.endswith("/login"):
        return f"ratelimit:auth:{client_ip}", RATE_LIMIT_AUTH

    token = bearer_token(request.headers.get("authorization"))
    payload = decode_token(token) if token else None
    if payload and payload.get("sub"):
        return f"ratelimit:user:{payload['sub']}", RATE_LIMIT_PER_USER
    return f"ratelimit:ip:{client_ip}", RATE_LIMIT_PER_IP


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting.
    """

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.limiter = limiter or get_rate_limiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in SKIP_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        key, limit = _rate_limit_key(request)
        allowed, remaining, reset = self.limiter.is_allowed(key, limit, window_seconds=60)

        if not allowed:
            retry_after = max(1, reset - int(time.time()))
            metrics.record_rate_limit_hit()
            logger.warning(f"Rate limit exceeded for {key} on {request.method} {request.url.path}")
            return error_response(
                request,
                429,
                f"Rate limit exceeded: {limit} requests per minute",
                retry_after=retry_after,
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
