"""
FastAPI Dependencies
====================

Request-scoped database access, authentication and firm authorization.

    db      = Depends(get_request_db)      # request transaction or own session
    auth    = Depends(require_auth)         # Bearer JWT, not revoked, active user
    scope   = Depends(authorize_firm_permission(Permission.CASE_VIEW))
    admin   = Depends(require_admin)
"""

import logging
from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from .auth import (
    AuthContext, Permission, ROLE_PERMISSIONS,
    bearer_token, decode_token, get_auth_service, resolve_firm_role, token_jti,
)
from .db.models import User, UserRole
from .db.session import new_session
from .metrics import metrics
from .soft_delete import Actor
from .tenancy import FirmContext, resolve_firm_context
from .token_blacklist import is_blacklisted

logger = logging.getLogger(__name__)


# =============================================================================
# DATABASE
# =============================================================================

def get_request_db(request: Request) -> Generator[Session, None, None]:
    """
    The request transaction session when one is active (mutating requests),
    otherwise a short-lived read session.
    """
    db = getattr(request.state, "db", None)
    if db is not None:
        yield db
        return

    db = new_session()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# AUTHENTICATION
# =============================================================================

def _unauthorized(message: str) -> HTTPException:
    metrics.record_auth_failure()
    return HTTPException(status_code=401, detail=message)


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_request_db),
) -> Optional[AuthContext]:
    """
    Resolve the caller from `Authorization: Bearer <jwt>`.

    Returns None when no token is sent; raises 401 for a bad, revoked or
    orphaned token.
    """
    token = bearer_token(authorization)
    if not token:
        return None

    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        raise _unauthorized("Invalid or expired token")

    if is_blacklisted(db, token_jti(token, payload)):
        raise _unauthorized("Token has been revoked")

    auth = get_auth_service(db).get_auth_context(payload.get("sub"), token_firm_id=payload.get("firm_id"))
    if not auth:
        raise _unauthorized("User not found or inactive")

    request.state.auth = auth
    request.state.token_payload = payload
    return auth


async def require_auth(auth: Optional[AuthContext] = Depends(get_current_user)) -> AuthContext:
    """Require authenticated user"""
    if not auth:
        raise _unauthorized("Authentication required")
    return auth


async def require_superadmin(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    if not auth.is_super_admin:
        logger.warning(f"SuperAdmin route denied for {auth.user_id}")
        raise HTTPException(status_code=403, detail="SuperAdmin access required")
    return auth


# =============================================================================
# FIRM AUTHORIZATION
# =============================================================================

@dataclass
class FirmScope:
    """Authenticated caller acting inside a resolved firm"""
    auth: AuthContext
    firm: FirmContext
    role: str
    permissions: frozenset
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def firm_id(self) -> str:
        return self.firm.id

    @property
    def xid(self) -> str:
        return self.auth.xid or self.auth.email

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def actor(self) -> Actor:
        return Actor(
            xid=self.xid,
            user_id=self.auth.user_id,
            firm_id=self.firm.id,
            request_id=self.request_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )


async def get_firm_context(
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: Session = Depends(get_request_db),
) -> FirmContext:
    context = resolve_firm_context(
        db,
        auth,
        request.method,
        path_params=request.path_params,
        headers=request.headers,
        request_id=getattr(request.state, "request_id", None),
    )
    request.state.firm = context
    return context


def authorize_firm_permission(permission: Optional[Permission] = None):
    """
    Dependency factory: firm membership plus (optionally) one permission.

    An impersonating SuperAdmin acts with the Admin permission set;
    READ_ONLY sessions are already limited to reads by firm resolution.
    """
    async def dependency(
        request: Request,
        auth: AuthContext = Depends(require_auth),
        firm: FirmContext = Depends(get_firm_context),
        db: Session = Depends(get_request_db),
    ) -> FirmScope:
        if auth.is_super_admin:
            role = UserRole.ADMIN.value
            permissions = ROLE_PERMISSIONS[role]
        else:
            membership = resolve_firm_role(db, auth.user_id, firm.id)
            if membership is None:
                logger.warning(f"User {auth.user_id} is not a member of firm {firm.id}")
                raise HTTPException(status_code=403, detail="Not a member of this firm")
            role = membership.role
            permissions = membership.permissions

        if permission is not None and permission not in permissions:
            logger.warning(f"Permission denied: {auth.user_id} lacks {permission.value} in {firm.id}")
            raise HTTPException(status_code=403, detail=f"Missing permission: {permission.value}")

        return FirmScope(
            auth=auth,
            firm=firm,
            role=role,
            permissions=permissions,
            request_id=getattr(request.state, "request_id", None),
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

    return dependency


require_firm_member = authorize_firm_permission()


async def require_admin(scope: FirmScope = Depends(require_firm_member)) -> FirmScope:
    if not scope.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return scope


async def require_client_approver(
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_request_db),
) -> FirmScope:
    """Admins at the top of the hierarchy, or explicitly allowed to approve."""
    if scope.auth.is_super_admin:
        return scope

    user = db.query(User).filter(User.id == scope.auth.user_id).first()
    if user is None or not (user.manager_id is None or user.can_approve_clients):
        raise HTTPException(status_code=403, detail="Client approval permission required")
    return scope
