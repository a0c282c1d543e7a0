"""
Firm-scoped repositories.

`firm_id` is always the first argument and always part of the WHERE
clause, so a row belonging to another firm is indistinguishable from a
missing one.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from .db.models import Attachment, Case, Category, Client, Comment


def _contains(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CaseRepository:

    def __init__(self, db: Session):
        self.db = db

    def _scoped(self, firm_id: str, include_deleted: bool = False):
        if not firm_id:
            raise ValueError("firm_id is required")
        query = self.db.query(Case).filter(Case.firm_id == firm_id)
        if include_deleted:
            query = query.execution_options(include_deleted=True)
        return query

    def find(self, firm_id: str, filters: Optional[Dict[str, Any]] = None, limit: int = 100, offset: int = 0) -> List[Case]:
        query = self._scoped(firm_id)
        for key, value in (filters or {}).items():
            if value is not None:
                query = query.filter(getattr(Case, key) == value)
        return query.order_by(Case.created_at.desc()).offset(offset).limit(limit).all()

    def count(self, firm_id: str, filters: Optional[Dict[str, Any]] = None) -> int:
        query = self._scoped(firm_id)
        for key, value in (filters or {}).items():
            if value is not None:
                query = query.filter(getattr(Case, key) == value)
        return query.count()

    def search(self, firm_id: str, term: str, limit: int = 100) -> List[Case]:
        """
        Case-insensitive substring search over case number, title, client
        name and id, category name, comment text and attachment file names.
        """
        pattern = _contains(term)

        def like(column):
            return column.ilike(pattern, escape="\\")

        comment_hits = select(Comment.case_id).where(
            Comment.firm_id == firm_id, Comment.deleted_at.is_(None), like(Comment.text),
        )
        attachment_hits = select(Attachment.case_id).where(
            Attachment.firm_id == firm_id, Attachment.deleted_at.is_(None), like(Attachment.file_name),
        )

        query = (
            self._scoped(firm_id)
            .outerjoin(Client, Client.id == Case.client_id)
            .outerjoin(Category, Category.id == Case.category_id)
            .filter(or_(
                like(Case.case_number),
                like(Case.title),
                like(Case.client_name),
                like(Client.client_id),
                like(Client.business_name),
                like(Category.name),
                Case.id.in_(comment_hits),
                Case.id.in_(attachment_hits),
            ))
        )
        return query.order_by(Case.created_at.desc()).limit(limit).all()

    def worklist(
        self,
        firm_id: str,
        exclude_statuses: Iterable = (),
        category_id: Optional[str] = None,
        assigned_to_xid: Optional[str] = None,
        unassigned: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Case]:
        query = self._scoped(firm_id)
        excluded = list(exclude_statuses)
        if excluded:
            query = query.filter(Case.status.notin_(excluded))
        if category_id is not None:
            query = query.filter(Case.category_id == category_id)
        if assigned_to_xid is not None:
            query = query.filter(Case.assigned_to_xid == assigned_to_xid)
        if unassigned:
            query = query.filter(or_(Case.assigned_to_xid.is_(None), Case.assigned_to_xid == ""))
        return query.order_by(Case.created_at.desc()).offset(offset).limit(limit).all()

    def find_by_id(self, firm_id: str, case_id: str, include_deleted: bool = False) -> Optional[Case]:
        return self._scoped(firm_id, include_deleted).filter(Case.id == case_id).first()

    def find_by_case_number(self, firm_id: str, case_number: str) -> Optional[Case]:
        return self._scoped(firm_id).filter(Case.case_number == case_number).first()

    def create(self, firm_id: str, **fields) -> Case:
        fields.pop("firm_id", None)
        case = Case(firm_id=firm_id, **fields)
        self.db.add(case)
        self.db.flush()
        return case

    def update(self, firm_id: str, case_id: str, changes: Dict[str, Any]) -> Optional[Case]:
        case = self.find_by_id(firm_id, case_id)
        if case is None:
            return None
        for key, value in changes.items():
            if key in ("id", "firm_id", "case_number"):
                continue
            setattr(case, key, value)
        self.db.flush()
        return case


class ClientRepository:

    def __init__(self, db: Session):
        self.db = db

    def _scoped(self, firm_id: str, include_deleted: bool = False):
        if not firm_id:
            raise ValueError("firm_id is required")
        query = self.db.query(Client).filter(Client.firm_id == firm_id)
        if include_deleted:
            query = query.execution_options(include_deleted=True)
        return query

    def find(self, firm_id: str, status=None, approval_status=None) -> List[Client]:
        query = self._scoped(firm_id)
        if status is not None:
            query = query.filter(Client.status == status)
        if approval_status is not None:
            query = query.filter(Client.approval_status == approval_status)
        return query.order_by(Client.client_id).all()

    def find_by_id(self, firm_id: str, identifier: str, include_deleted: bool = False) -> Optional[Client]:
        """Look up by internal id or client id (C000001)."""
        return self._scoped(firm_id, include_deleted).filter(
            (Client.id == identifier) | (Client.client_id == identifier)
        ).first()

    def create(self, firm_id: str, **fields) -> Client:
        fields.pop("firm_id", None)
        client = Client(firm_id=firm_id, **fields)
        self.db.add(client)
        self.db.flush()
        return client

    def update(self, firm_id: str, identifier: str, changes: Dict[str, Any]) -> Optional[Client]:
        client = self.find_by_id(firm_id, identifier)
        if client is None:
            return None
        for key, value in changes.items():
            if key in ("id", "firm_id", "client_id", "is_system_client"):
                continue
            setattr(client, key, value)
        self.db.flush()
        return client
