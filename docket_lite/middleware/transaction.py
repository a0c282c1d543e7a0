"""
Transaction Middleware
======================

Each mutating request runs in one database session opened here and
exposed as `request.state.db`:

- response status < 400  -> commit (post-commit side effects then run)
- response status >= 400 -> rollback
- unhandled exception    -> rollback, exception propagates
- commit failure         -> rollback, 500 envelope

Write paths must go through `get_write_db` / `execute_write`, which
refuse to run outside such a transaction.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..db.session import new_session
from ..errors import TransactionRequiredError
from ..metrics import transaction_monitor
from .response_contract import error_response

logger = logging.getLogger(__name__)

MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

T = TypeVar("T")


def has_active_transaction(request: Request) -> bool:
    return bool(getattr(request.state, "transaction_active", False)) and getattr(request.state, "db", None) is not None


def get_write_db(request: Request) -> Session:
    """FastAPI dependency: the request transaction session, or 500."""
    if not has_active_transaction(request):
        logger.error(f"Mutation attempted without active transaction: {request.method} {request.url.path}")
        raise TransactionRequiredError()
    return request.state.db


def execute_write(request: Request, fn: Callable[[Session], T]) -> T:
    """Run `fn(db)` inside the request transaction."""
    return fn(get_write_db(request))


class TransactionMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        if request.method not in MUTATING_METHODS:
            return await call_next(request)

        db = new_session()
        try:
            await run_in_threadpool(db.connection)
        except SQLAlchemyError as e:
            transaction_monitor.record_start_failure()
            transaction_monitor.record_unavailable()
            logger.error(f"Failed to start transaction for {request.method} {request.url.path}: {e}")
            await run_in_threadpool(db.close)
            return error_response(
                request,
                503,
                "Database temporarily unavailable",
                code="TRANSACTION_UNAVAILABLE",
            )

        request.state.db = db
        request.state.transaction_active = True
        transaction_monitor.record_start()

        try:
            try:
                response = await call_next(request)
            except Exception:
                await run_in_threadpool(db.rollback)
                transaction_monitor.record_rollback()
                raise

            if response.status_code >= 400:
                await run_in_threadpool(db.rollback)
                transaction_monitor.record_rollback()
                return response

            try:
                await run_in_threadpool(db.commit)
            except SQLAlchemyError as e:
                logger.error(f"Commit failed for {request.method} {request.url.path}: {e}")
                await run_in_threadpool(db.rollback)
                transaction_monitor.record_rollback()
                return error_response(
                    request,
                    500,
                    "Failed to save changes",
                    code="TRANSACTION_COMMIT_FAILED",
                )

            transaction_monitor.record_commit()
            return response
        finally:
            request.state.transaction_active = False
            request.state.db = None
            await run_in_threadpool(db.close)
