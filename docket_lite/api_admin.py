"""
Firm Admin API
==============

- GET  /api/admin/stats                           - dashboard counts
- POST /api/admin/users/{user_id}/resend-invite   - new password setup token
- GET  /api/admin/audit-logs                      - persisted + recent audit entries
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from .audit import get_recent_audit_entries
from .auth import Permission
from .db.models import (
    AdminAuditLog, ApprovalStatus, Case, CaseStatus, Category, Client, Firm, Task, User, UserStatus,
)
from .dependencies import FirmScope, authorize_firm_permission, get_request_db, require_admin
from .email_utils import dev_token_fields
from .firm_bootstrap import reissue_setup_token
from .middleware.transaction import get_write_db
from .schemas import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def _count(db: Session, model, *criteria) -> int:
    return db.query(func.count(model.id)).filter(*criteria).scalar() or 0


@router.get("/stats")
async def admin_stats(
    scope: FirmScope = Depends(authorize_firm_permission(Permission.ADMIN_STATS)),
    db: Session = Depends(get_request_db),
):
    firm_id = scope.firm_id

    cases_by_status = {status.value: 0 for status in CaseStatus}
    rows = (
        db.query(Case.status, func.count(Case.id))
        .filter(Case.firm_id == firm_id)
        .group_by(Case.status)
        .all()
    )
    for status, count in rows:
        cases_by_status[status.value] = count

    return ok({
        "users": {
            "total": _count(db, User, User.firm_id == firm_id),
            "active": _count(db, User, User.firm_id == firm_id, User.status == UserStatus.ACTIVE),
            "invited": _count(db, User, User.firm_id == firm_id, User.status == UserStatus.INVITED),
        },
        "clients": {
            "total": _count(db, Client, Client.firm_id == firm_id),
            "pending_approval": _count(
                db, Client, Client.firm_id == firm_id, Client.approval_status == ApprovalStatus.PENDING,
            ),
        },
        "cases": {
            "total": sum(cases_by_status.values()),
            "by_status": cases_by_status,
        },
        "categories": _count(db, Category, Category.firm_id == firm_id),
        "tasks": _count(db, Task, Task.firm_id == firm_id),
    })


@router.post("/users/{user_id}/resend-invite")
async def resend_invite(
    user_id: str,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    user = db.query(User).filter(User.firm_id == scope.firm_id, User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    firm = db.query(Firm).filter(Firm.id == scope.firm_id).first()
    token = reissue_setup_token(db, user, firm)
    logger.info(f"Invite re-sent to {user.xid} by {scope.xid}")
    return ok({"xid": user.xid}, message="Invite email re-sent", **dev_token_fields(token))


@router.get("/audit-logs")
async def audit_logs(
    limit: int = Query(100, ge=1, le=500),
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_request_db),
):
    rows = (
        db.query(AdminAuditLog)
        .filter(AdminAuditLog.firm_id == scope.firm_id)
        .order_by(AdminAuditLog.created_at.desc())
        .limit(limit)
        .all()
    )
    entries = [
        {
            "id": row.id,
            "actor": row.actor,
            "action": row.action,
            "target": row.target,
            "scope": row.scope,
            "status": row.status,
            "request_id": row.request_id,
            "reason": row.reason,
            "duration_ms": row.duration_ms,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]
    return ok(entries, recent=get_recent_audit_entries(firm_id=scope.firm_id, limit=limit))
