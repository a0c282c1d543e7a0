"""
Docket Lite - FastAPI Application
=================================

Multi-tenant case management API.

Run with:
    uvicorn docket_lite.api:app --reload --port 8000
"""

import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api_admin import router as admin_router
from .api_auth import router as auth_router, tenant_router
from .api_cases import router as cases_router
from .api_categories import router as categories_router
from .api_clients import router as clients_router
from .api_search import router as search_router, worklist_router
from .api_superadmin import router as superadmin_router
from .api_tasks import router as tasks_router
from .api_users import router as users_router
from .config import get_settings
from .db import get_db_session, init_db
from .db.session import new_session
from .firm_bootstrap import ensure_superadmin
from .middleware import (
    AdminAuditMiddleware,
    DegradedGuardMiddleware,
    IdempotencyMiddleware,
    RateLimitMiddleware,
    RequestLoggerMiddleware,
    SecurityHeadersMiddleware,
    TransactionMiddleware,
    register_exception_handlers,
)
from .system_state import get_state, mark_degraded
from .token_blacklist import remove_expired_blacklist_entries, sync_to_redis

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title=settings.service_name,
    description="Multi-tenant legal case management API",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Starlette wraps each new middleware around the previous ones, so the list
# below reads inner to outer: the transaction is innermost, CORS outermost.
app.add_middleware(TransactionMiddleware)
app.add_middleware(AdminAuditMiddleware)
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(DegradedGuardMiddleware)

if settings.rate_limit_enabled:
    app.add_middleware(RateLimitMiddleware)
    logger.info("Rate limiting middleware enabled")

app.add_middleware(RequestLoggerMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

CORS_ALLOW_ORIGINS = settings.cors_origins()
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Idempotent-Replay", "Retry-After"],
)

app.include_router(auth_router)
app.include_router(tenant_router)
app.include_router(cases_router)
app.include_router(clients_router)
app.include_router(categories_router)
app.include_router(tasks_router)
app.include_router(search_router)
app.include_router(worklist_router)
app.include_router(users_router)
app.include_router(admin_router)
app.include_router(superadmin_router)


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness: the process is up."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health/ready", tags=["Health"])
async def readiness_check():
    """Readiness: the database answers. A failed check degrades the system."""
    db = new_session()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed: {e}")
        mark_degraded("database_unavailable", str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "error", "systemState": get_state()},
        )
    finally:
        db.close()

    return {"status": "ready", "database": "ok", "systemState": get_state()}


# =============================================================================
# LIFECYCLE
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    logger.info(f"Starting {settings.service_name} v{settings.service_version} ({settings.environment})")

    for warning in settings.validate_config():
        logger.warning(warning)

    init_db()

    with get_db_session() as db:
        superadmin = ensure_superadmin(db)
        if superadmin is not None:
            logger.info(f"Platform SuperAdmin available: {superadmin.id}")

    try:
        with get_db_session() as db:
            purged = remove_expired_blacklist_entries(db)
            if purged:
                logger.info(f"Purged {purged} expired blacklist entries")
            sync_to_redis(db)
    except SQLAlchemyError as e:
        logger.warning(f"Token blacklist sync skipped: {e}")
