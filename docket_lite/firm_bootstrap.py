"""
Firm Bootstrap
==============

Creates a firm hierarchy in one savepoint:

    Firm (FIRM001, unique slug)
      -> default system Client (C000001)
      -> Admin user (X000001, INVITED, password setup token)

Creating a firm whose name already exists returns the existing firm.
Emails go out only after the surrounding transaction commits.

Also seeds the platform SuperAdmin from settings.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit import log_superadmin_action
from .auth import get_password_hash, hash_token, is_super_admin_role
from .config import get_settings, is_firm_creation_disabled
from .counters import generate_client_id, generate_next_xid
from .db.models import (
    ApprovalStatus, BootstrapStatus, Client, ClientStatus, Firm, FirmStatus,
    User, UserRole, UserStatus,
)
from .db.session import after_commit
from .email_utils import send_firm_created_email, send_password_setup_email
from .errors import FirmBootstrapError, ServiceError, ValidationFailed

logger = logging.getLogger(__name__)

FIRM_ID_NUMBER = re.compile(r"^FIRM(\d+)$")
_EMAIL_ADAPTER = TypeAdapter(EmailStr)


@dataclass
class FirmBootstrapResult:
    firm: Firm
    default_client: Optional[Client]
    admin: Optional[User]
    created: bool
    setup_token: Optional[str] = None


@dataclass
class InviteResult:
    user: User
    setup_token: str


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").strip().lower()).strip("-")
    return slug or "firm"


def _unique_slug(db: Session, name: str) -> str:
    base = slugify(name)
    slug = base
    suffix = 1
    while db.query(Firm.id).filter(Firm.firm_slug == slug).first() is not None:
        suffix += 1
        slug = f"{base}-{suffix}"
    return slug


def _next_firm_id(db: Session) -> str:
    highest = 0
    for (firm_id,) in db.query(Firm.firm_id).all():
        match = FIRM_ID_NUMBER.match(firm_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"FIRM{highest + 1:03d}"


def _field(payload: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = payload.get(name)
        if value:
            return str(value).strip()
    return ""


def validate_email(email: str) -> str:
    try:
        email = _EMAIL_ADAPTER.validate_python((email or "").strip())
    except ValidationError:
        raise ValidationFailed("Invalid email format")
    return email.lower()


# =============================================================================
# USER INVITES
# =============================================================================

def invite_user(
    db: Session,
    firm: Firm,
    *,
    name: str,
    email: str,
    role: str = UserRole.EMPLOYEE.value,
    manager_id: Optional[str] = None,
    can_approve_clients: bool = False,
    is_system: bool = False,
    send_email: bool = True,
) -> InviteResult:
    """
    Create an INVITED user with a fresh xID and password setup token.

    The setup email is queued for after commit.
    """
    if is_super_admin_role(role):
        raise ValidationFailed("SuperAdmin cannot be created inside a firm")
    if role not in (UserRole.ADMIN.value, UserRole.EMPLOYEE.value):
        raise ValidationFailed(f"Invalid role: {role}")

    email = validate_email(email)
    existing = (
        db.query(User.id)
        .filter(User.firm_id == firm.id, User.email == email)
        .execution_options(include_deleted=True)
        .first()
    )
    if existing is not None:
        raise ServiceError("User with this email already exists", status_code=400, code="DUPLICATE")

    token = secrets.token_urlsafe(32)
    now = datetime.utcnow()
    user = User(
        firm_id=firm.id,
        xid=generate_next_xid(db, firm.id),
        email=email,
        name=name.strip(),
        role=role,
        status=UserStatus.INVITED,
        is_active=True,
        is_system=is_system,
        password_setup_token_hash=hash_token(token),
        password_setup_expires=now + timedelta(hours=get_settings().password_setup_token_hours),
        invite_sent_at=now,
        manager_id=manager_id,
        can_approve_clients=can_approve_clients,
    )
    db.add(user)
    db.flush()

    if send_email:
        after_commit(db, send_password_setup_email, user.email, user.name, token, user.xid, firm.firm_slug)

    logger.info(f"Invited user {user.xid} to firm {firm.firm_id} as {role}")
    return InviteResult(user=user, setup_token=token)


def reissue_setup_token(db: Session, user: User, firm: Firm) -> str:
    """New setup token for a user that has not activated yet."""
    if user.status != UserStatus.INVITED:
        raise ValidationFailed("User has already activated their account")

    token = secrets.token_urlsafe(32)
    user.password_setup_token_hash = hash_token(token)
    user.password_setup_expires = datetime.utcnow() + timedelta(hours=get_settings().password_setup_token_hours)
    user.invite_sent_at = datetime.utcnow()
    db.flush()

    after_commit(db, send_password_setup_email, user.email, user.name, token, user.xid, firm.firm_slug)
    return token


# =============================================================================
# FIRM HIERARCHY
# =============================================================================

def create_firm_hierarchy(
    db: Session,
    payload: Dict[str, Any],
    performed_by: Optional[User] = None,
    request_id: Optional[str] = None,
) -> FirmBootstrapResult:
    """
    Create Firm, default Client and Admin atomically.

    Args:
        payload: name, adminName, adminEmail (snake_case accepted too)
        performed_by: SuperAdmin user creating the firm
        request_id: correlation id for logs

    Raises:
        ServiceError: 503 when firm creation is disabled
        ValidationFailed: missing or malformed fields
        FirmBootstrapError: any failure while creating the hierarchy
    """
    tag = f"[FIRM_BOOTSTRAP][{request_id or '-'}]"

    if is_firm_creation_disabled():
        raise ServiceError(
            "Firm creation is temporarily disabled",
            status_code=503,
            code="FIRM_CREATION_DISABLED",
        )

    name = _field(payload, "name", "firm_name", "firmName")
    admin_name = _field(payload, "admin_name", "adminName")
    admin_email = _field(payload, "admin_email", "adminEmail")

    if not name:
        raise ValidationFailed("Firm name is required")
    if not admin_name:
        raise ValidationFailed("Admin name is required")
    if not admin_email:
        raise ValidationFailed("Admin email is required")
    admin_email = validate_email(admin_email)

    existing = db.query(Firm).filter(Firm.name == name).first()
    if existing is not None:
        logger.info(f"{tag} Firm {name!r} already exists as {existing.firm_id}, returning it")
        client = None
        if existing.default_client_id:
            client = db.query(Client).filter(Client.id == existing.default_client_id).first()
        admin = (
            db.query(User)
            .filter(User.firm_id == existing.id, User.role == UserRole.ADMIN.value)
            .order_by(User.created_at.asc())
            .first()
        )
        return FirmBootstrapResult(firm=existing, default_client=client, admin=admin, created=False)

    try:
        with db.begin_nested():
            firm_id = _next_firm_id(db)
            firm = Firm(
                firm_id=firm_id,
                name=name,
                firm_slug=_unique_slug(db, name),
                status=FirmStatus.ACTIVE,
                bootstrap_status=BootstrapStatus.PENDING,
            )
            db.add(firm)
            db.flush()

            client = Client(
                firm_id=firm.id,
                client_id=generate_client_id(db, firm.id),
                business_name=name,
                business_email=f"{firm_id.lower()}@system.local",
                status=ClientStatus.ACTIVE,
                approval_status=ApprovalStatus.APPROVED,
                is_system_client=True,
                is_active=True,
                created_by_xid="SYSTEM",
            )
            db.add(client)
            db.flush()
            firm.default_client_id = client.id

            invite = invite_user(
                db,
                firm,
                name=admin_name,
                email=admin_email,
                role=UserRole.ADMIN.value,
                can_approve_clients=True,
                is_system=True,
                send_email=False,
            )

            firm.bootstrap_status = BootstrapStatus.COMPLETED
            db.flush()
    except (ServiceError, SQLAlchemyError) as e:
        logger.error(f"{tag} Firm hierarchy creation failed for {name!r}: {e}")
        if isinstance(e, ValidationFailed):
            raise
        raise FirmBootstrapError(f"Failed to create firm: {getattr(e, 'message', e)}")

    admin = invite.user
    logger.info(f"{tag} Created firm {firm.firm_id} ({firm.firm_slug}) with admin {admin.xid}")

    if performed_by is not None:
        log_superadmin_action(
            db,
            action_type="FIRM_CREATED",
            description=f"Created firm {firm.name} ({firm.firm_id})",
            performed_by=performed_by.email,
            performed_by_id=performed_by.id,
            target_entity_type="Firm",
            target_entity_id=firm.id,
            metadata={"request_id": request_id, "admin_xid": admin.xid},
        )
        after_commit(
            db, send_firm_created_email,
            performed_by.email, firm.firm_id, firm.name, client.client_id, admin.xid, admin.email,
        )

    after_commit(
        db, send_password_setup_email,
        admin.email, admin.name, invite.setup_token, admin.xid, firm.firm_slug,
    )

    return FirmBootstrapResult(
        firm=firm,
        default_client=client,
        admin=admin,
        created=True,
        setup_token=invite.setup_token,
    )


# =============================================================================
# PLATFORM SUPERADMIN
# =============================================================================

def ensure_superadmin(db: Session) -> Optional[User]:
    """Create the platform SuperAdmin from settings if it does not exist yet."""
    settings = get_settings()
    if not settings.superadmin_email or not settings.superadmin_password:
        return None

    email = settings.superadmin_email.strip().lower()
    user = (
        db.query(User)
        .filter(User.email == email, User.firm_id.is_(None))
        .execution_options(include_deleted=True)
        .first()
    )
    if user is not None:
        return user

    user = User(
        firm_id=None,
        xid=None,
        email=email,
        name=settings.superadmin_name,
        role=UserRole.SUPER_ADMIN.value,
        status=UserStatus.ACTIVE,
        is_active=True,
        is_system=True,
        password_hash=get_password_hash(settings.superadmin_password),
    )
    db.add(user)
    db.flush()
    logger.info("Seeded platform SuperAdmin")
    return user
