"""
Cases API
=========

Firm-scoped case management. Every lookup goes through the firm id
resolved for the request, so another firm's case is simply "not found".

- GET    /api/cases
- POST   /api/cases
- GET    /api/cases/{case_id}                 (internal id or case number)
- PATCH  /api/cases/{case_id}
- POST   /api/cases/{case_id}/status
- DELETE /api/cases/{case_id}                 (Admin)
- POST   /api/cases/{case_id}/restore         (Admin)
- GET    /api/cases/{case_id}/comments
- POST   /api/cases/{case_id}/comments
- GET    /api/cases/{case_id}/attachments
- POST   /api/cases/{case_id}/attachments
- DELETE /api/cases/{case_id}/attachments/{attachment_id}
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .auth import Permission
from .counters import generate_case_number, resolve_case_identifier
from .db.models import (
    ApprovalStatus, Attachment, Case, CasePriority, CaseStatus, Category, ClientStatus,
    Comment, Firm,
)
from .dependencies import FirmScope, authorize_firm_permission, get_request_db, require_admin
from .middleware.transaction import get_write_db
from .repositories import CaseRepository, ClientRepository
from .schemas import (
    AttachmentCreateRequest, AttachmentResponse, CaseCreateRequest, CaseResponse,
    CaseStatusRequest, CaseUpdateRequest, CommentCreateRequest, CommentResponse,
    DeleteRequest, ok,
)
from .soft_delete import restore, soft_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cases", tags=["Cases"])

CLOSED_STATUSES = {CaseStatus.CLOSED, CaseStatus.ARCHIVED}


def _case_or_404(db: Session, firm_id: str, identifier: str, include_deleted: bool = False) -> Case:
    case = resolve_case_identifier(db, firm_id, identifier, include_deleted=include_deleted)
    if not case:
        raise HTTPException(status_code=404, detail="Case not found")
    return case


def _serialize(case: Case) -> dict:
    return CaseResponse.model_validate(case).model_dump()


def _history_entry(from_status, to_status, actor_xid: str, comment: Optional[str] = None) -> dict:
    return {
        "from": getattr(from_status, "value", from_status),
        "to": getattr(to_status, "value", to_status),
        "changed_by_xid": actor_xid,
        "changed_at": datetime.utcnow().isoformat(),
        "comment": comment,
    }


def _validate_category(db: Session, firm_id: str, category_id: Optional[str]) -> None:
    if not category_id:
        return
    category = db.query(Category).filter(Category.id == category_id, Category.firm_id == firm_id).first()
    if not category or not category.is_active:
        raise HTTPException(status_code=400, detail="Category not found or inactive")


@router.get("")
async def list_cases(
    status: Optional[CaseStatus] = Query(None),
    priority: Optional[CasePriority] = Query(None),
    client_id: Optional[str] = Query(None),
    assigned_to_xid: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    filters = {
        "status": status,
        "priority": priority,
        "client_id": client_id,
        "assigned_to_xid": assigned_to_xid,
    }
    repo = CaseRepository(db)
    cases = repo.find(scope.firm_id, filters, limit=limit, offset=offset)
    return ok([_serialize(c) for c in cases], total=repo.count(scope.firm_id, filters))


@router.post("", status_code=201)
async def create_case(
    body: CaseCreateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_CREATE)),
    db: Session = Depends(get_write_db),
):
    """
    Create a case. Without `client_id` the firm's default client is used.
    """
    _validate_category(db, scope.firm_id, body.category_id)

    clients = ClientRepository(db)
    if body.client_id:
        client = clients.find_by_id(scope.firm_id, body.client_id)
        if not client:
            raise HTTPException(status_code=400, detail="Client not found")
    else:
        firm = db.query(Firm).filter(Firm.id == scope.firm_id).first()
        client = clients.find_by_id(scope.firm_id, firm.default_client_id) if firm and firm.default_client_id else None

    if client is not None:
        if client.status != ClientStatus.ACTIVE:
            raise HTTPException(status_code=400, detail="Client is inactive")
        if client.approval_status == ApprovalStatus.REJECTED:
            raise HTTPException(status_code=400, detail="Client has been rejected")

    status = body.status or CaseStatus.OPEN
    fields = body.model_dump(exclude={"client_id", "client_name", "status"})
    case = CaseRepository(db).create(
        scope.firm_id,
        **fields,
        status=status,
        client_id=client.id if client else None,
        client_name=body.client_name or (client.business_name if client else None),
        case_number=generate_case_number(db, scope.firm_id),
        created_by_xid=scope.xid,
        status_history=[_history_entry(None, status, scope.xid, "Case created")],
        actual_close_date=datetime.utcnow() if status in CLOSED_STATUSES else None,
    )

    logger.info(f"Case {case.case_number} created in firm {scope.firm_id} by {scope.xid}")
    return ok(_serialize(case))


@router.get("/{case_id}")
async def get_case(
    case_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    return ok(_serialize(_case_or_404(db, scope.firm_id, case_id)))


@router.patch("/{case_id}")
async def update_case(
    case_id: str,
    body: CaseUpdateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_UPDATE)),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    changes = body.model_dump(exclude_unset=True)

    if "assigned_to_xid" in changes and Permission.CASE_ASSIGN not in scope.permissions:
        raise HTTPException(status_code=403, detail=f"Missing permission: {Permission.CASE_ASSIGN.value}")
    if "category_id" in changes:
        _validate_category(db, scope.firm_id, changes["category_id"])

    case = CaseRepository(db).update(scope.firm_id, case.id, changes)
    return ok(_serialize(case))


@router.post("/{case_id}/status")
async def change_case_status(
    case_id: str,
    body: CaseStatusRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_ACTION)),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    if case.status == body.status:
        raise HTTPException(status_code=400, detail=f"Case is already {body.status.value}")

    history = list(case.status_history or [])
    history.append(_history_entry(case.status, body.status, scope.xid, body.comment))
    case.status_history = history

    if body.status in CLOSED_STATUSES:
        case.actual_close_date = case.actual_close_date or datetime.utcnow()
    else:
        case.actual_close_date = None
    case.status = body.status
    db.flush()

    logger.info(f"Case {case.case_number} moved to {body.status.value} by {scope.xid}")
    return ok(_serialize(case))


@router.delete("/{case_id}")
async def delete_case(
    case_id: str,
    body: Optional[DeleteRequest] = Body(None),
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id, include_deleted=True)
    soft_delete(db, Case, {"id": case.id, "firm_id": scope.firm_id}, scope.actor(), body.reason if body else None)
    return ok(_serialize(case), message="Case deleted")


@router.post("/{case_id}/restore")
async def restore_case(
    case_id: str,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id, include_deleted=True)
    case = restore(db, Case, {"id": case.id, "firm_id": scope.firm_id}, scope.actor())
    return ok(_serialize(case), message="Case restored")


# =============================================================================
# COMMENTS
# =============================================================================

@router.get("/{case_id}/comments")
async def list_comments(
    case_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    comments = (
        db.query(Comment)
        .filter(Comment.case_id == case.id, Comment.firm_id == scope.firm_id)
        .order_by(Comment.created_at.asc())
        .all()
    )
    return ok([CommentResponse.model_validate(c).model_dump() for c in comments])


@router.post("/{case_id}/comments", status_code=201)
async def add_comment(
    case_id: str,
    body: CommentCreateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_ACTION)),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    comment = Comment(firm_id=scope.firm_id, case_id=case.id, text=body.text, created_by_xid=scope.xid)
    db.add(comment)
    db.flush()
    return ok(CommentResponse.model_validate(comment).model_dump())


# =============================================================================
# ATTACHMENTS (metadata only)
# =============================================================================

@router.get("/{case_id}/attachments")
async def list_attachments(
    case_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    attachments = (
        db.query(Attachment)
        .filter(Attachment.case_id == case.id, Attachment.firm_id == scope.firm_id)
        .order_by(Attachment.created_at.asc())
        .all()
    )
    return ok([AttachmentResponse.model_validate(a).model_dump() for a in attachments])


@router.post("/{case_id}/attachments", status_code=201)
async def add_attachment(
    case_id: str,
    body: AttachmentCreateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_UPDATE)),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    attachment = Attachment(
        firm_id=scope.firm_id,
        case_id=case.id,
        file_name=body.file_name,
        mime_type=body.mime_type,
        size_bytes=body.size_bytes,
        description=body.description,
        uploaded_by_xid=scope.xid,
    )
    db.add(attachment)
    db.flush()
    return ok(AttachmentResponse.model_validate(attachment).model_dump())


@router.delete("/{case_id}/attachments/{attachment_id}")
async def delete_attachment(
    case_id: str,
    attachment_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_UPDATE)),
    db: Session = Depends(get_write_db),
):
    case = _case_or_404(db, scope.firm_id, case_id)
    attachment = soft_delete(
        db, Attachment,
        {"id": attachment_id, "case_id": case.id, "firm_id": scope.firm_id},
        scope.actor(),
    )
    if attachment is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    return ok({"id": attachment.id}, message="Attachment deleted")
