"""
Users API
=========

Firm members. New users are invited (status INVITED with a password setup
token) and get the next xID of their firm; the xID and firm never change.

- GET    /api/users
- POST   /api/users                  (Admin)
- GET    /api/users/{user_id}        (internal id or xID)
- PATCH  /api/users/{user_id}        (Admin)
- PATCH  /api/users/{user_id}/status (Admin)
- DELETE /api/users/{user_id}        (Admin, disables login)
- POST   /api/users/{user_id}/restore
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from .auth import Permission
from .db.models import Firm, User, UserRole, UserStatus
from .dependencies import FirmScope, authorize_firm_permission, get_request_db, require_admin
from .email_utils import dev_token_fields
from .firm_bootstrap import invite_user
from .middleware.transaction import get_write_db
from .schemas import UserCreateRequest, UserResponse, UserStatusRequest, UserUpdateRequest, ok
from .soft_delete import restore, soft_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])

FIRM_ROLES = (UserRole.ADMIN.value, UserRole.EMPLOYEE.value)


def _serialize(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


def _user_query(db: Session, firm_id: str, identifier: str, include_deleted: bool = False):
    query = db.query(User).filter(
        User.firm_id == firm_id,
        or_(User.id == identifier, User.xid == identifier.upper()),
    )
    if include_deleted:
        query = query.execution_options(include_deleted=True)
    return query


def _user_or_404(db: Session, firm_id: str, identifier: str, include_deleted: bool = False) -> User:
    user = _user_query(db, firm_id, identifier, include_deleted).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _validate_manager(db: Session, firm_id: str, manager_id: Optional[str], user_id: Optional[str] = None) -> None:
    if not manager_id:
        return
    if manager_id == user_id:
        raise HTTPException(status_code=400, detail="User cannot be their own manager")
    if not db.query(User.id).filter(User.id == manager_id, User.firm_id == firm_id).first():
        raise HTTPException(status_code=400, detail="Manager not found")


def _ensure_not_self(scope: FirmScope, user: User, action: str) -> None:
    if user.id == scope.auth.user_id:
        raise HTTPException(status_code=400, detail=f"You cannot {action} your own account")


@router.get("")
async def list_users(
    scope: FirmScope = Depends(authorize_firm_permission(Permission.USER_VIEW)),
    db: Session = Depends(get_request_db),
):
    users = db.query(User).filter(User.firm_id == scope.firm_id).order_by(User.xid.asc()).all()
    return ok([_serialize(u) for u in users])


@router.post("", status_code=201)
async def create_user(
    body: UserCreateRequest,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    """
    Invite a user into the firm.

    In development without SMTP the setup token is echoed as `_dev_token`.
    """
    if not body.role or not body.role.strip():
        raise HTTPException(status_code=400, detail="Role is required")
    _validate_manager(db, scope.firm_id, body.manager_id)

    firm = db.query(Firm).filter(Firm.id == scope.firm_id).first()
    invite = invite_user(
        db,
        firm,
        name=body.name,
        email=body.email,
        role=body.role.strip(),
        manager_id=body.manager_id,
        can_approve_clients=body.can_approve_clients,
    )
    return ok(_serialize(invite.user), message="User invited", **dev_token_fields(invite.setup_token))


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.USER_VIEW)),
    db: Session = Depends(get_request_db),
):
    return ok(_serialize(_user_or_404(db, scope.firm_id, user_id)))


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    body: UserUpdateRequest,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    changes = body.model_dump(exclude_unset=True)
    if "firm_id" in changes or "xid" in changes:
        raise HTTPException(status_code=400, detail="firm_id/xID cannot be changed")

    user = _user_or_404(db, scope.firm_id, user_id)

    if "role" in changes:
        if changes["role"] not in FIRM_ROLES:
            raise HTTPException(status_code=400, detail=f"Invalid role: {changes['role']}")
        if user.id == scope.auth.user_id and changes["role"] != user.role:
            raise HTTPException(status_code=400, detail="You cannot change your own role")
    if "manager_id" in changes:
        _validate_manager(db, scope.firm_id, changes["manager_id"], user_id=user.id)

    for key, value in changes.items():
        setattr(user, key, value)
    db.flush()
    return ok(_serialize(user))


@router.patch("/{user_id}/status")
async def set_user_status(
    user_id: str,
    body: UserStatusRequest,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    user = _user_or_404(db, scope.firm_id, user_id)
    if not body.is_active:
        _ensure_not_self(scope, user, "deactivate")
        if user.is_system:
            raise HTTPException(status_code=400, detail="The firm's primary admin cannot be deactivated")

    user.is_active = body.is_active
    if body.is_active and user.status == UserStatus.DISABLED:
        user.status = UserStatus.ACTIVE if user.password_hash else UserStatus.INVITED
    elif not body.is_active:
        user.status = UserStatus.DISABLED
    db.flush()

    logger.info(f"User {user.xid} {'activated' if body.is_active else 'deactivated'} by {scope.xid}")
    return ok(_serialize(user))


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    user = _user_or_404(db, scope.firm_id, user_id, include_deleted=True)
    _ensure_not_self(scope, user, "delete")
    if user.is_system:
        raise HTTPException(status_code=400, detail="The firm's primary admin cannot be deleted")

    soft_delete(db, User, {"id": user.id, "firm_id": scope.firm_id}, scope.actor())
    return ok(_serialize(user), message="User deleted")


@router.post("/{user_id}/restore")
async def restore_user(
    user_id: str,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    user = _user_or_404(db, scope.firm_id, user_id, include_deleted=True)
    user = restore(db, User, {"id": user.id, "firm_id": scope.firm_id}, scope.actor())
    return ok(_serialize(user), message="User restored")
