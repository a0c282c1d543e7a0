"""
Audit Trails
============

Two trails:
- Admin audit: mutating firm/admin actions (recorded by the admin audit
  middleware and by soft delete / restore).
- SuperAdmin audit: platform actions (firm lifecycle, impersonation).

Recent admin entries are also kept in a bounded in-memory buffer for quick
inspection. Audit failures are logged and never fail the caller.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import AdminAuditLog, SuperadminAuditLog
from .db.session import get_db_session

logger = logging.getLogger(__name__)

TARGET_PARAM_PRIORITY = ("case_id", "client_id", "user_id", "id", "xid")

_buffer_lock = threading.Lock()
_audit_buffer: deque = deque(maxlen=get_settings().audit_buffer_size)


def resolve_audit_target(path_params: Optional[Dict[str, Any]]) -> Optional[str]:
    """Pick the most specific identifier out of the route params."""
    if not path_params:
        return None
    for key in TARGET_PARAM_PRIORITY:
        if path_params.get(key):
            return str(path_params[key])
    first = next(iter(path_params.values()), None)
    return str(first) if first is not None else None


def get_recent_audit_entries(firm_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    with _buffer_lock:
        entries = list(_audit_buffer)
    if firm_id:
        entries = [e for e in entries if e.get("firm_id") == firm_id]
    return entries[-limit:][::-1]


def clear_audit_buffer() -> None:
    with _buffer_lock:
        _audit_buffer.clear()


def record_admin_audit(
    db: Optional[Session] = None,
    *,
    actor: str,
    action: str,
    firm_id: Optional[str] = None,
    user_id: Optional[str] = None,
    target: Optional[str] = None,
    scope: str = "admin",
    request_id: Optional[str] = None,
    status: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    duration_ms: Optional[int] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Record an admin audit entry.

    With `db`, the entry is written in a savepoint of that session's
    transaction (and is lost if it rolls back). Without it, the entry is
    written in its own session. A failed write never fails the caller.
    """
    entry = {
        "actor": actor or "UNKNOWN_ACTOR",
        "firm_id": firm_id,
        "user_id": user_id,
        "action": action,
        "target": target,
        "scope": scope,
        "request_id": request_id,
        "status": status,
        "ip_address": ip_address,
        "user_agent": (user_agent or "")[:512] or None,
        "duration_ms": duration_ms,
        "reason": reason,
    }

    with _buffer_lock:
        _audit_buffer.append({**entry, "created_at": datetime.utcnow().isoformat()})

    if db is not None:
        db.flush()

    try:
        if db is not None:
            with db.begin_nested():
                db.add(AdminAuditLog(**entry))
        else:
            with get_db_session() as own:
                own.add(AdminAuditLog(**entry))
    except SQLAlchemyError as e:
        logger.warning(f"[ADMIN_AUDIT] Failed to persist audit entry for {action}: {e}")

    return entry


def log_superadmin_action(
    db: Session,
    *,
    action_type: str,
    description: str,
    performed_by: str,
    performed_by_id: Optional[str] = None,
    target_entity_type: Optional[str] = None,
    target_entity_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Record a SuperAdmin action inside the caller's transaction."""
    db.flush()

    try:
        with db.begin_nested():
            db.add(SuperadminAuditLog(
                action_type=action_type,
                description=description,
                performed_by=performed_by,
                performed_by_id=performed_by_id,
                target_entity_type=target_entity_type,
                target_entity_id=target_entity_id,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:512] or None,
                extra_data=metadata or {},
            ))
    except SQLAlchemyError as e:
        logger.error(f"[SUPERADMIN_AUDIT] Failed to record {action_type}: {e}")
