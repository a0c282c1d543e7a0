"""
Authorization Module (RBAC) with JWT Support
=============================================

Identity and role-based access control for the case management backend.

Roles:
- SuperAdmin: platform scoped. Manages firms, never a firm member.
  May act inside a firm only through an impersonation session.
- Admin: full firm management (users, clients, categories, stats)
- Employee: day-to-day case and task work

Authorization Flow:
1. Decode the Bearer JWT (access token, not revoked)
2. Load the active user behind `sub`
3. Resolve the firm context for firm-scoped routes (see tenancy.py)
4. Check the firm role's permission set
"""

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .db.models import User, UserRole, UserStatus
from .pii import mask_email

logger = logging.getLogger(__name__)

# JWT configuration
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
JWT_REFRESH_TOKEN_EXPIRE_DAYS = int(os.environ.get("JWT_REFRESH_TOKEN_EXPIRE_DAYS", "7"))


# =============================================================================
# PERMISSION TYPES
# =============================================================================

class Permission(str, Enum):
    """Firm-scoped permissions"""
    CASE_VIEW = "CASE_VIEW"
    CASE_CREATE = "CASE_CREATE"
    CASE_UPDATE = "CASE_UPDATE"
    CASE_ACTION = "CASE_ACTION"
    CASE_ASSIGN = "CASE_ASSIGN"
    CASE_ADMIN_VIEW = "CASE_ADMIN_VIEW"
    USER_VIEW = "USER_VIEW"
    USER_MANAGE = "USER_MANAGE"
    CLIENT_VIEW = "CLIENT_VIEW"
    CLIENT_MANAGE = "CLIENT_MANAGE"
    CLIENT_APPROVE = "CLIENT_APPROVE"
    CATEGORY_VIEW = "CATEGORY_VIEW"
    CATEGORY_MANAGE = "CATEGORY_MANAGE"
    REPORT_VIEW = "REPORT_VIEW"
    TASK_VIEW = "TASK_VIEW"
    TASK_MANAGE = "TASK_MANAGE"
    ADMIN_STATS = "ADMIN_STATS"
    STORAGE_MANAGE = "STORAGE_MANAGE"


# Role to permissions mapping. SuperAdmin is intentionally absent:
# platform scope never grants firm permissions.
ROLE_PERMISSIONS = {
    UserRole.ADMIN.value: frozenset({
        Permission.CASE_VIEW, Permission.CASE_CREATE, Permission.CASE_UPDATE,
        Permission.CASE_ACTION, Permission.CASE_ASSIGN, Permission.CASE_ADMIN_VIEW,
        Permission.USER_VIEW, Permission.USER_MANAGE,
        Permission.CLIENT_VIEW, Permission.CLIENT_MANAGE, Permission.CLIENT_APPROVE,
        Permission.CATEGORY_VIEW, Permission.CATEGORY_MANAGE,
        Permission.REPORT_VIEW,
        Permission.TASK_VIEW, Permission.TASK_MANAGE,
        Permission.ADMIN_STATS, Permission.STORAGE_MANAGE,
    }),
    UserRole.EMPLOYEE.value: frozenset({
        Permission.CASE_VIEW, Permission.CASE_CREATE, Permission.CASE_UPDATE,
        Permission.CASE_ACTION,
        Permission.USER_VIEW,
        Permission.CLIENT_VIEW,
        Permission.CATEGORY_VIEW,
        Permission.TASK_VIEW, Permission.TASK_MANAGE,
    }),
}

_SUPER_ADMIN_SPELLINGS = {"superadmin", "super_admin"}


def is_super_admin_role(role: Optional[str]) -> bool:
    """Accepts SuperAdmin, SUPER_ADMIN and SUPERADMIN (any case)."""
    if not role:
        return False
    return str(getattr(role, "value", role)).strip().lower() in _SUPER_ADMIN_SPELLINGS


def permissions_for_role(role: Optional[str]) -> frozenset:
    return ROLE_PERMISSIONS.get(str(getattr(role, "value", role)), frozenset())


# =============================================================================
# PASSWORD HASHING
# =============================================================================

# bcrypt truncates passwords at 72 bytes; enforce to avoid 500s.
MAX_PASSWORD_BYTES = 72

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def is_password_too_long(password: str) -> bool:
    """Return True if password exceeds bcrypt 72-byte limit."""
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    if is_password_too_long(plain_password):
        logger.warning("Auth failed: password exceeds bcrypt 72-byte limit")
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning(f"Auth failed: invalid password format ({e})")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    if is_password_too_long(password):
        raise ValueError("Password exceeds bcrypt 72-byte limit")
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """sha256 hex digest used to store one-time tokens"""
    return hashlib.sha256(token.encode()).hexdigest()


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def _token_claims(user: User) -> dict:
    return {
        "sub": user.id,
        "firm_id": user.firm_id,
        "role": user.role,
        "xid": user.xid,
    }


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access", "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token"""
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(days=JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "type": "refresh", "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_token_pair(user: User) -> dict:
    claims = _token_claims(user)
    return {
        "access_token": create_access_token(claims),
        "refresh_token": create_refresh_token(claims),
        "token_type": "bearer",
    }


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer <jwt>` header."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def token_jti(token: str, payload: Optional[dict] = None) -> str:
    """JWT id, falling back to a digest of the raw token."""
    if payload and payload.get("jti"):
        return payload["jti"]
    return hashlib.sha256(token.encode()).hexdigest()[:32]


# =============================================================================
# AUTH CONTEXT
# =============================================================================

@dataclass
class AuthContext:
    """Authorization context for a request"""
    user_id: str
    firm_id: Optional[str]
    xid: Optional[str]
    email: str
    name: str
    role: str
    token_firm_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return is_super_admin_role(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def has_permission(self, permission: Permission) -> bool:
        """Check if the user's own role grants a permission"""
        return permission in permissions_for_role(self.role)


# =============================================================================
# FIRM ROLE RESOLUTION
# =============================================================================

@dataclass
class FirmMembership:
    """Role a user holds inside a specific firm"""
    user_id: str
    firm_id: str
    role: str
    permissions: frozenset


def resolve_firm_role(db: Session, user_id: Optional[str], firm_id: Optional[str]) -> Optional[FirmMembership]:
    """
    Resolve the firm-scoped role for a user.

    Firm membership (User.firm_id) is the source of truth. Returns None if
    the user is missing, inactive, deleted, outside the firm, a SuperAdmin
    or holds an unknown role.
    """
    if not user_id or not firm_id:
        return None

    user = db.query(User).filter(
        User.id == user_id,
        User.firm_id == firm_id,
        User.is_active == True,  # noqa: E712
    ).first()
    if not user:
        return None

    if is_super_admin_role(user.role):
        return None

    permissions = ROLE_PERMISSIONS.get(user.role)
    if not permissions:
        return None

    return FirmMembership(user_id=user.id, firm_id=firm_id, role=user.role, permissions=permissions)


# =============================================================================
# AUTH SERVICE (SQLAlchemy-based)
# =============================================================================

class AuthService:
    """Authentication service using SQLAlchemy"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _context_from_user(user: User, token_firm_id: Optional[str] = None) -> AuthContext:
        return AuthContext(
            user_id=user.id,
            firm_id=user.firm_id,
            xid=user.xid,
            email=user.email,
            name=user.name,
            role=user.role,
            token_firm_id=token_firm_id,
        )

    def get_auth_context(self, user_id: str, token_firm_id: Optional[str] = None) -> Optional[AuthContext]:
        """
        Build auth context for a user.

        Args:
            user_id: User ID from the JWT `sub` claim
            token_firm_id: firm id claimed by the token

        Returns:
            AuthContext if user exists and is active, None otherwise
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active or user.status == UserStatus.DISABLED:
            logger.warning(f"Auth failed: user {user_id} not found or inactive")
            return None

        return self._context_from_user(user, token_firm_id=token_firm_id)

    def find_login_candidates(self, email: str, firm_id: Optional[str] = None):
        query = self.db.query(User).filter(User.email == email.strip().lower())
        if firm_id:
            query = query.filter(User.firm_id == firm_id)
        return query.all()

    def authenticate_user(self, email: str, password: str, firm_id: Optional[str] = None) -> Optional[User]:
        """
        Authenticate a user by email and password.

        Args:
            email: User email
            password: Plain text password
            firm_id: restrict the lookup to one firm (slug-scoped login)

        Returns:
            The user if authentication succeeds, None otherwise
        """
        candidates = [u for u in self.find_login_candidates(email, firm_id) if u.is_active]
        if not candidates:
            logger.warning(f"Auth failed: email {mask_email(email)} not found")
            return None

        for user in candidates:
            if user.password_hash and verify_password(password, user.password_hash):
                user.last_login = datetime.utcnow()
                return user

        logger.warning(f"Auth failed: invalid password for {mask_email(email)}")
        return None

    def require_permission(self, auth: AuthContext, permission: Permission, firm_id: Optional[str] = None) -> bool:
        """
        Check if user has permission, optionally within a specific firm.

        Returns:
            True if authorized, False otherwise
        """
        if firm_id:
            membership = resolve_firm_role(self.db, auth.user_id, firm_id)
            allowed = membership is not None and permission in membership.permissions
        else:
            allowed = auth.has_permission(permission)

        if not allowed:
            logger.warning(f"Permission denied: {auth.user_id} lacks {permission.value}")
        return allowed


def get_auth_service(db: Session) -> AuthService:
    """Get AuthService instance for a database session"""
    return AuthService(db)
