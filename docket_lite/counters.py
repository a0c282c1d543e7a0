"""
Counters and Identifiers
========================

Firm-scoped atomic sequences and the human-readable identifiers built on
them:

- xID (users):        X000001
- client id:          C000001
- case number:        CASE-20260109-00001 (daily sequence per firm)

Usage:
    seq = get_next_sequence(db, "case", firm.id)
"""

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db.models import Case, Counter, User
from .errors import CounterError

logger = logging.getLogger(__name__)

XID_PATTERN = re.compile(r"^X(\d{6})$")
CASE_NUMBER_PATTERN = re.compile(r"^CASE-\d{8}-\d{5}$")


def _validate(name: Optional[str], firm_id: Optional[str]) -> None:
    if not name or not isinstance(name, str):
        raise CounterError("Counter name is required and must be a string")
    if not firm_id or not isinstance(firm_id, str):
        raise CounterError("Firm ID is required for tenant-scoped counters")


def _increment(db: Session, name: str, firm_id: str) -> int:
    result = db.execute(
        update(Counter)
        .where(Counter.name == name, Counter.firm_id == firm_id)
        .values(seq=Counter.seq + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def get_next_sequence(db: Session, name: str, firm_id: str) -> int:
    """
    Atomically increment and return the (name, firm) sequence.

    The counter is created on first use (first value is 1). A concurrent
    first insert loses the unique constraint race and retries the update once.
    """
    _validate(name, firm_id)

    if not _increment(db, name, firm_id):
        try:
            with db.begin_nested():
                db.add(Counter(name=name, firm_id=firm_id, seq=1))
            return 1
        except IntegrityError:
            logger.info(f"Counter {name}/{firm_id} created concurrently, retrying increment")
            if not _increment(db, name, firm_id):
                raise CounterError(f"Error getting next sequence for {name}/{firm_id} after retry")

    seq = db.query(Counter.seq).filter(Counter.name == name, Counter.firm_id == firm_id).scalar()
    if seq is None:
        raise CounterError(f"Error getting next sequence for {name}/{firm_id}")
    return seq


def get_current_sequence(db: Session, name: str, firm_id: str) -> Optional[int]:
    """Current value without incrementing (None if the counter does not exist)."""
    if not name or not firm_id:
        raise CounterError("Counter name and firm ID are required")
    return db.query(Counter.seq).filter(Counter.name == name, Counter.firm_id == firm_id).scalar()


def initialize_counter(db: Session, name: str, firm_id: str, start_value: int) -> None:
    """
    Seed a counter (migrations only). Never overwrites an existing counter.
    """
    if not name or not firm_id:
        raise CounterError("Counter name and firm ID are required")
    if not isinstance(start_value, int) or isinstance(start_value, bool) or start_value < 0:
        raise CounterError("Start value must be a non-negative number")

    existing = db.query(Counter).filter(Counter.name == name, Counter.firm_id == firm_id).first()
    if existing:
        raise CounterError(
            f"Counter {name}/{firm_id} already exists with seq={existing.seq}. Cannot re-initialize."
        )

    db.add(Counter(name=name, firm_id=firm_id, seq=start_value))
    db.flush()


# =============================================================================
# IDENTIFIERS
# =============================================================================

def generate_next_xid(db: Session, firm_id: str) -> str:
    """Next xID in the firm: highest existing (deleted users included) + 1."""
    xids = (
        db.query(User.xid)
        .filter(User.firm_id == firm_id, User.xid.isnot(None))
        .execution_options(include_deleted=True)
        .all()
    )
    highest = 0
    for (xid,) in xids:
        match = XID_PATTERN.match(xid or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"X{highest + 1:06d}"


def generate_client_id(db: Session, firm_id: str) -> str:
    return f"C{get_next_sequence(db, 'client', firm_id):06d}"


def generate_case_number(db: Session, firm_id: str, now: Optional[datetime] = None) -> str:
    day = (now or datetime.utcnow()).strftime("%Y%m%d")
    seq = get_next_sequence(db, f"case:{day}", firm_id)
    return f"CASE-{day}-{seq:05d}"


def resolve_case_identifier(
    db: Session,
    firm_id: str,
    identifier: str,
    include_deleted: bool = False,
) -> Optional[Case]:
    """Find a firm's case by internal id or case number."""
    if not firm_id or not identifier:
        return None

    identifier = identifier.strip()
    if CASE_NUMBER_PATTERN.match(identifier.upper()):
        condition = Case.case_number == identifier.upper()
    else:
        condition = or_(Case.id == identifier, Case.case_number == identifier)

    query = db.query(Case).filter(Case.firm_id == firm_id, condition)
    if include_deleted:
        query = query.execution_options(include_deleted=True)
    return query.first()
