"""
Middleware Package
==================

Request pipeline, outer to inner:

    CORS -> security headers -> request logger -> rate limit (opt-in)
    -> degraded guard -> idempotency -> admin audit -> transaction
"""

from .audit import AdminAuditMiddleware
from .degraded import DegradedGuardMiddleware
from .idempotency import IdempotencyMiddleware, reset_idempotency_cache
from .rate_limit import RateLimitMiddleware, RateLimiter, get_rate_limiter
from .request_logger import RequestLoggerMiddleware
from .response_contract import error_envelope, error_response, register_exception_handlers
from .security import SecurityHeadersMiddleware
from .transaction import TransactionMiddleware, execute_write, get_write_db

__all__ = [
    "AdminAuditMiddleware",
    "DegradedGuardMiddleware",
    "IdempotencyMiddleware",
    "reset_idempotency_cache",
    "RateLimitMiddleware",
    "RateLimiter",
    "get_rate_limiter",
    "RequestLoggerMiddleware",
    "error_envelope",
    "error_response",
    "register_exception_handlers",
    "SecurityHeadersMiddleware",
    "TransactionMiddleware",
    "execute_write",
    "get_write_db",
]
