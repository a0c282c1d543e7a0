"""
Search and Worklists API
========================

Read-only views for finding cases inside the caller's firm.

- GET /api/search?q=term                      (case number, title, client, category, comments, attachments)
- GET /api/worklists/global                   (open cases nobody is assigned to)
- GET /api/worklists/category/{category_id}   (open cases in one category)
- GET /api/worklists/employee/me              (open cases assigned to the caller)

Worklists leave out closed and archived cases.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .auth import Permission
from .db.models import Case, Category, CaseStatus
from .dependencies import FirmScope, authorize_firm_permission, get_request_db
from .repositories import CaseRepository
from .schemas import CaseResponse, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["Search"])
worklist_router = APIRouter(prefix="/api/worklists", tags=["Worklists"])

FINISHED_STATUSES = (CaseStatus.CLOSED, CaseStatus.ARCHIVED)


def _serialize(case: Case) -> dict:
    return CaseResponse.model_validate(case).model_dump()


@router.get("")
async def search_cases(
    q: str = Query("", max_length=200),
    limit: int = Query(100, ge=1, le=500),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    term = q.strip()
    if not term:
        raise HTTPException(status_code=400, detail='Search query parameter "q" is required')

    cases = CaseRepository(db).search(scope.firm_id, term, limit=limit)
    logger.debug(f"Search in firm {scope.firm_id} returned {len(cases)} cases")
    return ok([_serialize(c) for c in cases], total=len(cases), query=term)


@worklist_router.get("/global")
async def global_worklist(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    cases = CaseRepository(db).worklist(
        scope.firm_id, FINISHED_STATUSES, unassigned=True, limit=limit, offset=offset,
    )
    return ok([_serialize(c) for c in cases], total=len(cases))


@worklist_router.get("/category/{category_id}")
async def category_worklist(
    category_id: str,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    category = db.query(Category).filter(Category.id == category_id, Category.firm_id == scope.firm_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    cases = CaseRepository(db).worklist(
        scope.firm_id, FINISHED_STATUSES, category_id=category.id, limit=limit, offset=offset,
    )
    return ok([_serialize(c) for c in cases], total=len(cases), category={"id": category.id, "name": category.name})


@worklist_router.get("/employee/me")
async def employee_worklist(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CASE_VIEW)),
    db: Session = Depends(get_request_db),
):
    cases = CaseRepository(db).worklist(
        scope.firm_id, FINISHED_STATUSES, assigned_to_xid=scope.xid, limit=limit, offset=offset,
    )
    return ok([_serialize(c) for c in cases], total=len(cases))
