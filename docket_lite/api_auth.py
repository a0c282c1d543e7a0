"""
Auth API
========

- POST /api/auth/login            - email + password (optional firm_slug)
- POST /api/auth/refresh          - rotate refresh token
- POST /api/auth/logout           - revoke current access (and refresh) token
- GET  /api/auth/me               - current user
- POST /api/auth/set-password     - invite token -> ACTIVE account
- POST /api/auth/forgot-password  - issue reset token
- POST /api/auth/reset-password   - consume reset token

Tenant login (no auth required):
- GET  /f/{firm_slug}/login       - public firm metadata
- POST /f/{firm_slug}/login       - login scoped to the firm
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .auth import (
    AuthContext, MAX_PASSWORD_BYTES,
    bearer_token, create_token_pair, decode_token, get_auth_service, get_password_hash,
    hash_token, is_password_too_long, token_jti,
)
from .db.models import Firm, FirmStatus, PasswordResetToken, User, UserStatus
from .db.session import after_commit
from .dependencies import get_request_db, require_auth
from .email_utils import dev_token_fields, send_password_reset_email
from .metrics import metrics
from .schemas import (
    ForgotPasswordRequest, LoginRequest, RefreshTokenRequest, ResetPasswordRequest,
    SetPasswordRequest, TenantLoginRequest, UserResponse, ok,
)
from .tenancy import resolve_optional_firm, resolve_tenant
from .token_blacklist import is_blacklisted, revoke_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])
tenant_router = APIRouter(prefix="/f", tags=["Tenant"])

RESET_TOKEN_HOURS = 1


def _check_password_length(password: str) -> None:
    if is_password_too_long(password):
        raise HTTPException(status_code=400, detail=f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")


def _ensure_firm_active(db: Session, user: User) -> None:
    if not user.firm_id:
        return
    firm = db.query(Firm).filter(Firm.id == user.firm_id).first()
    if firm is None or firm.status != FirmStatus.ACTIVE:
        raise HTTPException(
            status_code=403,
            detail={
                "code": "FIRM_SUSPENDED",
                "message": "Your firm is not active. Please contact support.",
                "action": "contact_admin",
            },
        )


def _login(db: Session, email: str, password: str, firm_id: Optional[str] = None) -> dict:
    _check_password_length(password)

    user = get_auth_service(db).authenticate_user(email, password, firm_id=firm_id)
    if not user:
        metrics.record_auth_failure()
        raise HTTPException(status_code=401, detail="Invalid email or password")

    _ensure_firm_active(db, user)

    tokens = create_token_pair(user)
    logger.info(f"Login succeeded for user {user.id}")
    return ok({
        **tokens,
        "user": UserResponse.model_validate(user).model_dump(),
        "firm_id": user.firm_id,
    })


@router.post("/login")
async def login(body: LoginRequest, db: Session = Depends(get_request_db)):
    """
    Login with email and password.

    With `firm_slug` the lookup is restricted to that firm; without it
    the first matching account (firm member or SuperAdmin) wins.
    """
    firm_id = None
    if body.firm_slug:
        firm_id = resolve_tenant(db, body.firm_slug).id
    return _login(db, body.email, body.password, firm_id=firm_id)


@router.post("/refresh")
async def refresh(body: RefreshTokenRequest, db: Session = Depends(get_request_db)):
    payload = decode_token(body.refresh_token)
    if not payload or payload.get("type") != "refresh":
        metrics.record_auth_failure()
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    jti = token_jti(body.refresh_token, payload)
    if is_blacklisted(db, jti):
        metrics.record_auth_failure()
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    user = db.query(User).filter(User.id == payload.get("sub")).first()
    if not user or not user.is_active or user.status == UserStatus.DISABLED:
        metrics.record_auth_failure()
        raise HTTPException(status_code=401, detail="User not found or inactive")

    # Rotation: the old refresh token cannot be used twice
    expires_at = datetime.utcfromtimestamp(payload["exp"]) if payload.get("exp") else datetime.utcnow() + timedelta(days=7)
    revoke_token(db, jti, expires_at, "refresh", user.id)

    return ok(create_token_pair(user))


@router.post("/logout")
async def logout(
    body: Optional[RefreshTokenRequest] = None,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_request_db),
):
    """
    Logout and invalidate the current access token.
    Also invalidates the refresh token if provided.
    """
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="No token provided")

    payload = decode_token(token)
    if not payload:
        return ok(message="Logged out")

    tokens = [(token, payload)]
    if body and body.refresh_token:
        refresh_payload = decode_token(body.refresh_token)
        if refresh_payload:
            tokens.append((body.refresh_token, refresh_payload))

    for raw, claims in tokens:
        exp = claims.get("exp")
        expires_at = datetime.utcfromtimestamp(exp) if exp else datetime.utcnow() + timedelta(hours=1)
        revoke_token(db, token_jti(raw, claims), expires_at, claims.get("type", "access"), claims.get("sub"))

    logger.info(f"User {payload.get('sub')} logged out")
    return ok(message="Logged out")


@router.get("/me")
async def me(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_request_db)):
    """Get current authenticated user info from token"""
    firm = db.query(Firm).filter(Firm.id == auth.firm_id).first() if auth.firm_id else None
    return ok({
        "user_id": auth.user_id,
        "xid": auth.xid,
        "email": auth.email,
        "name": auth.name,
        "role": auth.role,
        "is_admin": auth.is_admin,
        "is_super_admin": auth.is_super_admin,
        "firm": {
            "id": firm.id,
            "firm_id": firm.firm_id,
            "name": firm.name,
            "slug": firm.firm_slug,
        } if firm else None,
    })


@router.post("/set-password")
async def set_password(body: SetPasswordRequest, db: Session = Depends(get_request_db)):
    """Complete an invite: set the password and activate the account."""
    _check_password_length(body.password)

    user = db.query(User).filter(
        User.password_setup_token_hash == hash_token(body.token),
        User.password_setup_expires > datetime.utcnow(),
    ).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired password setup token")

    user.password_hash = get_password_hash(body.password)
    user.password_setup_token_hash = None
    user.password_setup_expires = None
    user.must_change_password = False
    if user.status == UserStatus.INVITED:
        user.status = UserStatus.ACTIVE

    logger.info(f"User {user.xid} completed password setup")
    return ok({"xid": user.xid, "status": user.status.value}, message="Password set successfully")


@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordRequest, db: Session = Depends(get_request_db)):
    """
    Request a password reset token.

    Always answers the same way so the response does not reveal whether
    the email is registered.
    """
    message = "If this email is registered, a reset link will be sent."

    query = db.query(User).filter(
        User.email == body.email.strip().lower(),
        User.is_active == True,  # noqa: E712
        User.status == UserStatus.ACTIVE,
    )
    if body.firm_slug:
        firm = resolve_optional_firm(db, body=body.model_dump())
        if firm is None:
            return ok(message=message)
        query = query.filter(User.firm_id == firm.id)
    user = query.first()

    if not user:
        return ok(message=message)

    token = secrets.token_urlsafe(32)
    db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id).delete()
    db.add(PasswordResetToken(
        user_id=user.id,
        token_hash=hash_token(token),
        expires_at=datetime.utcnow() + timedelta(hours=RESET_TOKEN_HOURS),
    ))

    after_commit(db, send_password_reset_email, user.email, token, user.name)
    return ok(message=message, **dev_token_fields(token))


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, db: Session = Depends(get_request_db)):
    _check_password_length(body.new_password)

    reset_token = db.query(PasswordResetToken).filter(
        PasswordResetToken.token_hash == hash_token(body.token),
        PasswordResetToken.used_at.is_(None),
        PasswordResetToken.expires_at > datetime.utcnow(),
    ).first()
    if not reset_token:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    user = db.query(User).filter(User.id == reset_token.user_id).first()
    if not user:
        raise HTTPException(status_code=400, detail="User not found")

    user.password_hash = get_password_hash(body.new_password)
    user.must_change_password = False
    reset_token.used_at = datetime.utcnow()

    logger.info(f"Password reset completed for user {user.id}")
    return ok(message="Password has been reset")


# =============================================================================
# TENANT LOGIN (/f/{firm_slug})
# =============================================================================

@tenant_router.get("/{firm_slug}/login")
async def tenant_login_page(firm_slug: str, db: Session = Depends(get_request_db)):
    """Public firm metadata for the firm's login page."""
    firm = resolve_tenant(db, firm_slug)
    return ok({
        "firm_id": firm.firm_id,
        "name": firm.name,
        "slug": firm.firm_slug,
        "status": firm.status.value,
    })


@tenant_router.post("/{firm_slug}/login")
async def tenant_login(firm_slug: str, body: TenantLoginRequest, db: Session = Depends(get_request_db)):
    firm = resolve_tenant(db, firm_slug)
    return _login(db, body.email, body.password, firm_id=firm.id)
