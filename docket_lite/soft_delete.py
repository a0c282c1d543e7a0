"""
Soft Delete Service
===================

Delete and restore for `SoftDeleteMixin` entities, with cascades:

    Client -> Cases -> (Tasks, Attachments, Comments)

Deletes are idempotent: the first delete's timestamp, actor and reason
are kept. Restores refuse while a parent is still deleted and append to
`restore_history`. Every delete/restore is written to the admin audit
trail; audit problems never fail the operation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .audit import record_admin_audit
from .config import get_settings
from .db.models import (
    Attachment, Case, Category, Client, Comment, Task, User, UserStatus,
    SOFT_DELETE_MODELS,
)
from .errors import SoftDeleteError

logger = logging.getLogger(__name__)


@dataclass
class Actor:
    """Who performs a delete/restore and from which request"""
    xid: Optional[str] = None
    user_id: Optional[str] = None
    firm_id: Optional[str] = None
    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _query(db: Session, model, filters: Dict[str, Any]):
    return db.query(model).filter_by(**filters).execution_options(include_deleted=True)


def _emit_audit(db: Session, action: str, model, doc, actor: Optional[Actor], reason: Optional[str] = None):
    if actor is None:
        return
    try:
        record_admin_audit(
            db,
            actor=actor.xid or "UNKNOWN_ACTOR",
            firm_id=actor.firm_id or getattr(doc, "firm_id", None) or "UNKNOWN_FIRM",
            user_id=actor.user_id,
            action=f"{action} {model.__name__}",
            target=doc.id,
            scope="admin",
            request_id=actor.request_id,
            status=200,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            reason=reason,
        )
    except Exception as e:
        logger.warning(f"[SOFT_DELETE][AUDIT] Failed to record audit: {e}")


def _mark_deleted(doc, actor_xid: Optional[str], reason: Optional[str]) -> None:
    if doc.deleted_at is None:
        doc.deleted_at = datetime.utcnow()
        doc.deleted_by_xid = actor_xid
        doc.delete_reason = reason


def _clear_deleted(doc, actor_xid: Optional[str]) -> None:
    history = list(doc.restore_history or [])
    history.append({
        "restored_at": datetime.utcnow().isoformat(),
        "restored_by_xid": actor_xid,
    })
    doc.restore_history = history
    doc.deleted_at = None
    doc.deleted_by_xid = None
    doc.delete_reason = None


def _soft_delete_many(db: Session, model, filters: Dict[str, Any], actor_xid, reason) -> List:
    docs = _query(db, model, filters).all()
    for doc in docs:
        _mark_deleted(doc, actor_xid, reason)
    return docs


def _restore_many(db: Session, model, filters: Dict[str, Any], actor_xid) -> List:
    docs = _query(db, model, filters).filter(model.deleted_at.isnot(None)).all()
    for doc in docs:
        _clear_deleted(doc, actor_xid)
    return docs


def _ensure_category_not_in_use(db: Session, category: Category) -> None:
    in_use = db.query(func.count(Case.id)).filter(Case.category_id == category.id).scalar()
    if in_use:
        raise SoftDeleteError("Category is in use by existing cases and cannot be deleted")


def _cascade_delete(db: Session, model, doc, actor_xid, reason) -> None:
    if model is Client:
        cases = _soft_delete_many(db, Case, {"client_id": doc.id, "firm_id": doc.firm_id}, actor_xid, reason)
        for case in cases:
            _cascade_delete(db, Case, case, actor_xid, reason)
    elif model is Case:
        for child in (Task, Attachment, Comment):
            _soft_delete_many(db, child, {"case_id": doc.id, "firm_id": doc.firm_id}, actor_xid, reason)


def soft_delete(
    db: Session,
    model,
    filters: Dict[str, Any],
    actor: Optional[Actor] = None,
    reason: Optional[str] = None,
):
    """
    Soft delete the first row matching `filters` (deleted rows included).

    Returns the row, or None if nothing matched.
    """
    actor_xid = actor.xid if actor else None
    doc = _query(db, model, filters).first()
    if doc is None:
        return None

    if model is Category:
        _ensure_category_not_in_use(db, doc)

    # User deletes disable login rather than removing data
    if model is User:
        doc.status = UserStatus.DISABLED
        doc.is_active = False

    _mark_deleted(doc, actor_xid, reason)
    _cascade_delete(db, model, doc, actor_xid, reason)
    db.flush()

    _emit_audit(db, "SOFT_DELETE", model, doc, actor, reason)
    logger.info(f"Soft deleted {model.__name__} {doc.id}")
    return doc


def _ensure_parents_active(db: Session, model, doc) -> None:
    if model is Case and doc.client_id:
        parent = _query(db, Client, {"id": doc.client_id}).first()
        if parent is not None and parent.deleted_at is not None:
            raise SoftDeleteError("Cannot restore case while client is deleted")

    if model is Task and doc.case_id:
        parent = _query(db, Case, {"id": doc.case_id}).first()
        if parent is not None and parent.deleted_at is not None:
            raise SoftDeleteError("Cannot restore task while parent case is deleted")

    if model in (Attachment, Comment):
        parent = _query(db, Case, {"id": doc.case_id}).first()
        if parent is not None and parent.deleted_at is not None:
            raise SoftDeleteError("Cannot restore child while parent case is deleted")


def restore(db: Session, model, filters: Dict[str, Any], actor: Optional[Actor] = None):
    """
    Restore the first row matching `filters`.

    Rows that are not deleted are returned untouched. Restoring a Case also
    restores its tasks, attachments and comments.
    """
    actor_xid = actor.xid if actor else None
    doc = _query(db, model, filters).first()
    if doc is None or doc.deleted_at is None:
        return doc

    _ensure_parents_active(db, model, doc)
    _clear_deleted(doc, actor_xid)

    if model is User:
        doc.is_active = True
        if doc.status == UserStatus.DISABLED:
            doc.status = UserStatus.ACTIVE

    if model is Case:
        for child in (Task, Attachment, Comment):
            _restore_many(db, child, {"case_id": doc.id, "firm_id": doc.firm_id}, actor_xid)

    db.flush()
    _emit_audit(db, "RESTORE", model, doc, actor)
    logger.info(f"Restored {model.__name__} {doc.id}")
    return doc


def build_diagnostics(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Per-entity soft delete counts and purge eligibility."""
    retention_days = get_settings().soft_delete_retention_days
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)

    summary = []
    for model in SOFT_DELETE_MODELS:
        deleted_count, oldest = db.query(
            func.count(model.id), func.min(model.deleted_at)
        ).filter(model.deleted_at.isnot(None)).execution_options(include_deleted=True).one()
        eligible = db.query(func.count(model.id)).filter(
            model.deleted_at.isnot(None), model.deleted_at <= cutoff
        ).execution_options(include_deleted=True).scalar()
        summary.append({
            "entity": model.__name__,
            "deleted_count": deleted_count or 0,
            "oldest_deleted_at": oldest.isoformat() if oldest else None,
            "eligible_for_purge": eligible or 0,
        })

    return {
        "retention_days": retention_days,
        "cutoff": cutoff.isoformat(),
        "summary": summary,
    }
