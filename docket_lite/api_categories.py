"""
Categories API
==============

- GET    /api/categories                 (?include_inactive=true)
- POST   /api/categories
- PUT    /api/categories/{category_id}
- DELETE /api/categories/{category_id}   (refused while cases use it)
- POST   /api/categories/{category_id}/restore
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from .auth import Permission
from .db.models import Category
from .dependencies import FirmScope, authorize_firm_permission, get_request_db
from .middleware.transaction import get_write_db
from .schemas import CategoryRequest, CategoryResponse, ok
from .soft_delete import restore, soft_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["Categories"])


def _serialize(category: Category) -> dict:
    return CategoryResponse.model_validate(category).model_dump()


def _ensure_unique_name(db: Session, firm_id: str, name: str, exclude_id: str = None) -> None:
    query = db.query(Category).filter(Category.firm_id == firm_id, Category.name == name)
    if exclude_id:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=400, detail=f"Category '{name}' already exists")


@router.get("")
async def list_categories(
    include_inactive: bool = Query(False),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CATEGORY_VIEW)),
    db: Session = Depends(get_request_db),
):
    query = db.query(Category).filter(Category.firm_id == scope.firm_id)
    if not include_inactive:
        query = query.filter(Category.is_active == True)  # noqa: E712
    return ok([_serialize(c) for c in query.order_by(Category.name.asc()).all()])


@router.post("", status_code=201)
async def create_category(
    body: CategoryRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CATEGORY_MANAGE)),
    db: Session = Depends(get_write_db),
):
    _ensure_unique_name(db, scope.firm_id, body.name)
    category = Category(
        firm_id=scope.firm_id,
        name=body.name,
        is_active=True if body.is_active is None else body.is_active,
    )
    db.add(category)
    db.flush()
    logger.info(f"Category '{category.name}' created in firm {scope.firm_id}")
    return ok(_serialize(category))


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    body: CategoryRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CATEGORY_MANAGE)),
    db: Session = Depends(get_write_db),
):
    category = db.query(Category).filter(Category.id == category_id, Category.firm_id == scope.firm_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    _ensure_unique_name(db, scope.firm_id, body.name, exclude_id=category.id)
    category.name = body.name
    if body.is_active is not None:
        category.is_active = body.is_active
    db.flush()
    return ok(_serialize(category))


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CATEGORY_MANAGE)),
    db: Session = Depends(get_write_db),
):
    category = soft_delete(db, Category, {"id": category_id, "firm_id": scope.firm_id}, scope.actor())
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return ok(_serialize(category), message="Category deleted")


@router.post("/{category_id}/restore")
async def restore_category(
    category_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.CATEGORY_MANAGE)),
    db: Session = Depends(get_write_db),
):
    category = restore(db, Category, {"id": category_id, "firm_id": scope.firm_id}, scope.actor())
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return ok(_serialize(category), message="Category restored")
