"""
SuperAdmin API
==============

Platform-scoped routes. SuperAdmins never touch firm data here; to work
inside a firm they open an impersonation session (switch-firm) and send
the X-Impersonated-Firm-Id / X-Impersonation-Session-Id headers on
firm-scoped routes.

- GET   /api/superadmin/stats
- GET   /api/superadmin/firms
- POST  /api/superadmin/firms
- PATCH /api/superadmin/firms/{firm_id}/status       (ACTIVE / SUSPENDED)
- POST  /api/superadmin/firms/{firm_id}/disable
- POST  /api/superadmin/firms/{firm_id}/activate
- POST  /api/superadmin/firms/{firm_id}/deactivate
- POST  /api/superadmin/firms/{firm_id}/admins
- POST  /api/superadmin/switch-firm
- POST  /api/superadmin/exit-firm
- GET   /api/superadmin/metrics
- GET   /api/superadmin/soft-delete/diagnostics
- GET   /api/superadmin/system-state
- POST  /api/superadmin/system-state
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from .audit import log_superadmin_action
from .auth import AuthContext
from .db.models import Case, Client, Firm, FirmStatus, User, UserRole
from .dependencies import get_request_db, require_superadmin
from .email_utils import dev_token_fields
from .firm_bootstrap import create_firm_hierarchy, invite_user
from .metrics import metrics, transaction_monitor
from .middleware.transaction import get_write_db
from .pii import mask_email
from .schemas import (
    ExitFirmRequest, FirmAdminCreateRequest, FirmCreateRequest, FirmResponse, FirmStatusRequest,
    SwitchFirmRequest, SystemStateRequest, UserResponse, ok,
)
from .soft_delete import build_diagnostics
from .system_state import SystemStateName, get_state, mark_degraded, set_state
from .tenancy import ImpersonationMode, find_firm

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/superadmin", tags=["SuperAdmin"])

PATCHABLE_FIRM_STATUSES = (FirmStatus.ACTIVE, FirmStatus.SUSPENDED)


def _serialize_firm(firm: Firm) -> dict:
    return FirmResponse.model_validate(firm).model_dump()


def _firm_or_404(db: Session, firm_id: str) -> Firm:
    firm = find_firm(db, firm_id)
    if not firm:
        raise HTTPException(status_code=404, detail="Firm not found")
    return firm


def _audit(db: Session, request: Request, auth: AuthContext, action_type: str, description: str, **kwargs):
    log_superadmin_action(
        db,
        action_type=action_type,
        description=description,
        performed_by=auth.email,
        performed_by_id=auth.user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        **kwargs,
    )


# =============================================================================
# PLATFORM
# =============================================================================

@router.get("/stats")
async def platform_stats(
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_request_db),
):
    firms_by_status = {status.value: 0 for status in FirmStatus}
    for status, count in db.query(Firm.status, func.count(Firm.id)).group_by(Firm.status).all():
        firms_by_status[status.value] = count

    return ok({
        "firms": {"total": sum(firms_by_status.values()), "by_status": firms_by_status},
        "users": db.query(func.count(User.id)).filter(User.firm_id.isnot(None)).scalar() or 0,
        "clients": db.query(func.count(Client.id)).scalar() or 0,
        "cases": db.query(func.count(Case.id)).scalar() or 0,
    })


# =============================================================================
# FIRMS
# =============================================================================

@router.get("/firms")
async def list_firms(
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_request_db),
):
    user_counts = dict(
        db.query(User.firm_id, func.count(User.id))
        .filter(User.firm_id.isnot(None))
        .group_by(User.firm_id)
        .all()
    )
    firms = db.query(Firm).order_by(Firm.created_at.asc()).all()
    return ok([
        {**_serialize_firm(firm), "user_count": user_counts.get(firm.id, 0)}
        for firm in firms
    ])


@router.post("/firms", status_code=201)
async def create_firm(
    request: Request,
    response: Response,
    body: FirmCreateRequest,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    """
    Create a firm with its default client and first Admin.

    An existing firm with the same name is returned with 200 instead.
    """
    performed_by = db.query(User).filter(User.id == auth.user_id).first()
    result = create_firm_hierarchy(
        db,
        body.model_dump(),
        performed_by=performed_by,
        request_id=getattr(request.state, "request_id", None),
    )

    if not result.created:
        response.status_code = 200
        return ok(
            {"firm": _serialize_firm(result.firm)},
            message="Firm already exists",
            created=False,
        )

    data = {
        "firm": _serialize_firm(result.firm),
        "default_client_id": result.default_client.client_id if result.default_client else None,
        "admin": UserResponse.model_validate(result.admin).model_dump() if result.admin else None,
    }
    return ok(data, message="Firm created", created=True, **dev_token_fields(result.setup_token))


def _transition_firm(db: Session, request: Request, auth: AuthContext, firm_id: str, target: FirmStatus) -> Firm:
    firm = _firm_or_404(db, firm_id)
    if firm.status == target:
        raise HTTPException(status_code=400, detail=f"Firm is already {target.value}")

    previous = firm.status
    firm.status = target
    db.flush()

    _audit(
        db, request, auth,
        "FIRM_STATUS_CHANGED",
        f"Firm {firm.firm_id} changed from {previous.value} to {target.value}",
        target_entity_type="Firm",
        target_entity_id=firm.id,
        metadata={"from": previous.value, "to": target.value},
    )
    logger.info(f"Firm {firm.firm_id} status {previous.value} -> {target.value} by {mask_email(auth.email)}")
    return firm


@router.patch("/firms/{firm_id}/status")
async def update_firm_status(
    firm_id: str,
    request: Request,
    body: FirmStatusRequest,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    if body.status not in PATCHABLE_FIRM_STATUSES:
        raise HTTPException(status_code=400, detail="Status must be ACTIVE or SUSPENDED")
    firm = _transition_firm(db, request, auth, firm_id, body.status)
    return ok(_serialize_firm(firm))


@router.post("/firms/{firm_id}/disable")
async def disable_firm(
    firm_id: str,
    request: Request,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    return ok(_serialize_firm(_transition_firm(db, request, auth, firm_id, FirmStatus.SUSPENDED)))


@router.post("/firms/{firm_id}/activate")
async def activate_firm(
    firm_id: str,
    request: Request,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    return ok(_serialize_firm(_transition_firm(db, request, auth, firm_id, FirmStatus.ACTIVE)))


@router.post("/firms/{firm_id}/deactivate")
async def deactivate_firm(
    firm_id: str,
    request: Request,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    return ok(_serialize_firm(_transition_firm(db, request, auth, firm_id, FirmStatus.INACTIVE)))


@router.post("/firms/{firm_id}/admins", status_code=201)
async def create_firm_admin(
    firm_id: str,
    request: Request,
    body: FirmAdminCreateRequest,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    firm = _firm_or_404(db, firm_id)
    invite = invite_user(
        db,
        firm,
        name=body.name,
        email=body.email,
        role=UserRole.ADMIN.value,
        can_approve_clients=True,
    )
    _audit(
        db, request, auth,
        "FIRM_ADMIN_CREATED",
        f"Created admin {invite.user.xid} for firm {firm.firm_id}",
        target_entity_type="User",
        target_entity_id=invite.user.id,
        metadata={"firm_id": firm.id},
    )
    return ok(
        UserResponse.model_validate(invite.user).model_dump(),
        message="Firm admin invited",
        **dev_token_fields(invite.setup_token),
    )


# =============================================================================
# IMPERSONATION
# =============================================================================

@router.post("/switch-firm")
async def switch_firm(
    request: Request,
    body: SwitchFirmRequest,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    """
    Open an impersonation session on a firm.

    The returned session id must accompany every firm-scoped request made
    while impersonating.
    """
    try:
        mode = ImpersonationMode(body.mode.strip().upper())
    except ValueError:
        raise HTTPException(status_code=400, detail="Mode must be READ_ONLY or FULL_ACCESS")

    firm = _firm_or_404(db, body.firm_id)
    if firm.status != FirmStatus.ACTIVE:
        raise HTTPException(status_code=400, detail=f"Firm is {firm.status.value}")

    session_id = str(uuid.uuid4())
    _audit(
        db, request, auth,
        "IMPERSONATION_STARTED",
        f"Switched into firm {firm.firm_id} ({mode.value})",
        target_entity_type="Firm",
        target_entity_id=firm.id,
        metadata={"session_id": session_id, "mode": mode.value},
    )
    logger.info(f"SuperAdmin {mask_email(auth.email)} switched into {firm.firm_id} ({mode.value}), session {session_id}")

    return ok({
        "impersonation_session_id": session_id,
        "mode": mode.value,
        "firm": {"id": firm.id, "firm_id": firm.firm_id, "name": firm.name, "slug": firm.firm_slug},
    })


@router.post("/exit-firm")
async def exit_firm(
    request: Request,
    body: Optional[ExitFirmRequest] = Body(None),
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    session_id = body.session_id if body else None
    _audit(
        db, request, auth,
        "IMPERSONATION_ENDED",
        "Returned to platform scope",
        metadata={"session_id": session_id},
    )
    return ok({"scope": "GLOBAL", "session_id": session_id})


# =============================================================================
# OPERATIONS
# =============================================================================

@router.get("/metrics")
async def get_metrics(auth: AuthContext = Depends(require_superadmin)):
    return ok({
        "requests": metrics.snapshot(),
        "transactions": transaction_monitor.snapshot(),
        "system_state": get_state(),
    })


@router.get("/soft-delete/diagnostics")
async def soft_delete_diagnostics(
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_request_db),
):
    return ok(build_diagnostics(db))


@router.get("/system-state")
async def read_system_state(auth: AuthContext = Depends(require_superadmin)):
    return ok(get_state())


@router.post("/system-state")
async def update_system_state(
    request: Request,
    body: SystemStateRequest,
    auth: AuthContext = Depends(require_superadmin),
    db: Session = Depends(get_write_db),
):
    try:
        target = SystemStateName(body.state.strip().upper())
    except ValueError:
        raise HTTPException(status_code=400, detail="State must be NORMAL or DEGRADED")

    if target == SystemStateName.DEGRADED:
        mark_degraded(body.reason or f"Set by {auth.email}")
    else:
        set_state(target)

    _audit(
        db, request, auth,
        "SYSTEM_STATE_CHANGED",
        f"System state set to {target.value}",
        metadata={"reason": body.reason},
    )
    return ok(get_state())
