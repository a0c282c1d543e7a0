"""
Clients API
===========

- GET    /api/clients
- POST   /api/clients                        (approval starts PENDING)
- GET    /api/clients/{client_id}            (internal id or C000001)
- PATCH  /api/clients/{client_id}
- PATCH  /api/clients/{client_id}/status
- POST   /api/clients/{client_id}/approve    (client approver)
- POST   /api/clients/{client_id}/reject     (client approver)
- DELETE /api/clients/{client_id}            (Admin, cascades to cases)
- POST   /api/clients/{client_id}/restore    (Admin)

The firm's system client cannot be edited, deactivated or deleted.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .auth import Permission
from .counters import generate_client_id
from .db.models import ApprovalStatus, Client, ClientStatus
from .dependencies import (
    FirmScope, authorize_firm_permission, get_request_db, require_admin, require_client_approver,
)
from .middleware.transaction import get_write_db
from .repositories import ClientRepository
from .schemas import (
    ClientCreateRequest, ClientDecisionRequest, ClientResponse, ClientStatusRequest,
    ClientUpdateRequest, DeleteRequest, ok,
)
from .soft_delete import restore, soft_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["Clients"])


def _client_or_404(db: Session, firm_id: str, identifier: str, include_deleted: bool = False) -> Client:
    client = ClientRepository(db).find_by_id(firm_id, identifier, include_deleted=include_deleted)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


def _ensure_not_system(client: Client) -> None:
    if client.is_system_client:
        raise HTTPException(status_code=400, detail="The firm's default client cannot be modified")


def _serialize(client: Client) -> dict:
    return ClientResponse.model_validate(client).model_dump()


@router.get("")
async def list_clients(
    status: Optional[ClientStatus] = Query(None),
    approval_status: Optional[ApprovalStatus] = Query(None),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CLIENT_VIEW)),
    db: Session = Depends(get_request_db),
):
    clients = ClientRepository(db).find(scope.firm_id, status=status, approval_status=approval_status)
    return ok([_serialize(c) for c in clients])


@router.post("", status_code=201)
async def create_client(
    body: ClientCreateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CLIENT_MANAGE)),
    db: Session = Depends(get_write_db),
):
    client = ClientRepository(db).create(
        scope.firm_id,
        **body.model_dump(),
        client_id=generate_client_id(db, scope.firm_id),
        status=ClientStatus.ACTIVE,
        approval_status=ApprovalStatus.PENDING,
        created_by_xid=scope.xid,
    )
    logger.info(f"Client {client.client_id} created in firm {scope.firm_id} (pending approval)")
    return ok(_serialize(client))


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CLIENT_VIEW)),
    db: Session = Depends(get_request_db),
):
    return ok(_serialize(_client_or_404(db, scope.firm_id, client_id)))


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    body: ClientUpdateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CLIENT_MANAGE)),
    db: Session = Depends(get_write_db),
):
    client = _client_or_404(db, scope.firm_id, client_id)
    _ensure_not_system(client)
    client = ClientRepository(db).update(scope.firm_id, client.id, body.model_dump(exclude_unset=True))
    return ok(_serialize(client))


@router.patch("/{client_id}/status")
async def set_client_status(
    client_id: str,
    body: ClientStatusRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CLIENT_MANAGE)),
    db: Session = Depends(get_write_db),
):
    client = _client_or_404(db, scope.firm_id, client_id)
    _ensure_not_system(client)
    client.status = body.status
    client.is_active = body.status == ClientStatus.ACTIVE
    db.flush()
    return ok(_serialize(client))


def _decide(db: Session, scope: FirmScope, client_id: str, decision: ApprovalStatus) -> Client:
    client = _client_or_404(db, scope.firm_id, client_id)
    if client.approval_status != ApprovalStatus.PENDING:
        raise HTTPException(
            status_code=400,
            detail=f"Client is already {client.approval_status.value.lower()}",
        )
    client.approval_status = decision
    client.approved_by_xid = scope.xid
    client.approved_at = datetime.utcnow()
    db.flush()
    logger.info(f"Client {client.client_id} {decision.value.lower()} by {scope.xid}")
    return client


@router.post("/{client_id}/approve")
async def approve_client(
    client_id: str,
    scope: FirmScope = Depends(require_client_approver),
    db: Session = Depends(get_write_db),
):
    return ok(_serialize(_decide(db, scope, client_id, ApprovalStatus.APPROVED)))


@router.post("/{client_id}/reject")
async def reject_client(
    client_id: str,
    body: Optional[ClientDecisionRequest] = Body(None),
    scope: FirmScope = Depends(require_client_approver),
    db: Session = Depends(get_write_db),
):
    client = _decide(db, scope, client_id, ApprovalStatus.REJECTED)
    return ok(_serialize(client), reason=body.reason if body else None)


@router.delete("/{client_id}")
async def delete_client(
    client_id: str,
    body: Optional[DeleteRequest] = Body(None),
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    client = _client_or_404(db, scope.firm_id, client_id, include_deleted=True)
    _ensure_not_system(client)
    soft_delete(db, Client, {"id": client.id, "firm_id": scope.firm_id}, scope.actor(), body.reason if body else None)
    return ok(_serialize(client), message="Client deleted")


@router.post("/{client_id}/restore")
async def restore_client(
    client_id: str,
    scope: FirmScope = Depends(require_admin),
    db: Session = Depends(get_write_db),
):
    client = _client_or_404(db, scope.firm_id, client_id, include_deleted=True)
    client = restore(db, Client, {"id": client.id, "firm_id": scope.firm_id}, scope.actor())
    return ok(_serialize(client), message="Client restored")
