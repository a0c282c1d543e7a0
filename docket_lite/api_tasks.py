"""
Tasks API
=========

Lightweight work items, optionally attached to a case of the same firm.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import Permission
from .counters import resolve_case_identifier
from .db.models import Task, TaskStatus
from .dependencies import FirmScope, authorize_firm_permission, get_request_db
from .middleware.transaction import get_write_db
from .schemas import TaskCreateRequest, TaskResponse, TaskUpdateRequest, ok
from .soft_delete import soft_delete

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


def _serialize(task: Task) -> dict:
    return TaskResponse.model_validate(task).model_dump()


def _task_or_404(db: Session, firm_id: str, task_id: str) -> Task:
    task = db.query(Task).filter(Task.id == task_id, Task.firm_id == firm_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _apply_completion(task: Task) -> None:
    if task.status == TaskStatus.COMPLETED:
        task.completed_at = task.completed_at or datetime.utcnow()
    else:
        task.completed_at = None


@router.get("/stats")
async def task_stats(
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_VIEW)),
    db: Session = Depends(get_request_db),
):
    rows = (
        db.query(Task.status, func.count(Task.id))
        .filter(Task.firm_id == scope.firm_id)
        .group_by(Task.status)
        .all()
    )
    by_status = {status.value: 0 for status in TaskStatus}
    for status, count in rows:
        by_status[status.value] = count
    return ok({"total": sum(by_status.values()), "by_status": by_status})


@router.get("")
async def list_tasks(
    status: Optional[TaskStatus] = Query(None),
    case_id: Optional[str] = Query(None),
    assigned_to_xid: Optional[str] = Query(None),
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_VIEW)),
    db: Session = Depends(get_request_db),
):
    query = db.query(Task).filter(Task.firm_id == scope.firm_id)
    if status:
        query = query.filter(Task.status == status)
    if case_id:
        case = resolve_case_identifier(db, scope.firm_id, case_id)
        if not case:
            return ok([])
        query = query.filter(Task.case_id == case.id)
    if assigned_to_xid:
        query = query.filter(Task.assigned_to_xid == assigned_to_xid)
    return ok([_serialize(t) for t in query.order_by(Task.created_at.desc()).all()])


@router.post("", status_code=201)
async def create_task(
    body: TaskCreateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_MANAGE)),
    db: Session = Depends(get_write_db),
):
    case_id = None
    if body.case_id:
        case = resolve_case_identifier(db, scope.firm_id, body.case_id)
        if not case:
            raise HTTPException(status_code=400, detail="Case not found")
        case_id = case.id

    task = Task(
        firm_id=scope.firm_id,
        **body.model_dump(exclude={"case_id"}),
        case_id=case_id,
        created_by_xid=scope.xid,
    )
    _apply_completion(task)
    db.add(task)
    db.flush()
    return ok(_serialize(task))


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_VIEW)),
    db: Session = Depends(get_request_db),
):
    return ok(_serialize(_task_or_404(db, scope.firm_id, task_id)))


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdateRequest,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_MANAGE)),
    db: Session = Depends(get_write_db),
):
    task = _task_or_404(db, scope.firm_id, task_id)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(task, key, value)
    _apply_completion(task)
    db.flush()
    return ok(_serialize(task))


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    scope: FirmScope = Depends(authorize_firm_permission(Permission.TASK_MANAGE)),
    db: Session = Depends(get_write_db),
):
    task = soft_delete(db, Task, {"id": task_id, "firm_id": scope.firm_id}, scope.actor())
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    logger.info(f"Task {task.id} deleted by {scope.xid}")
    return ok({"id": task.id}, message="Task deleted")
