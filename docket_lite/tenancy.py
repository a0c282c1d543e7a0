"""
Firm Context Resolution
=======================

Single source of truth for "which firm is this request acting on".

Firm-scoped API routes resolve the firm from, in order:
1. X-Impersonated-Firm-Id (SuperAdmin impersonation only)
2. path `firm_slug`
3. path `firm_id` (FIRM001 style or internal id)
4. the JWT `firm_id` claim
5. the authenticated user's own firm

SuperAdmins are platform scoped: they reach firm data only through an
impersonation session, read-only unless FULL_ACCESS was requested.
Non-SuperAdmins can never act on a firm other than the one in their token.

Slug routes (/f/{firm_slug}/...) use `resolve_tenant`, which needs no
authentication and reports firm problems with user-facing codes.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import AuthContext
from .db.models import Firm, FirmStatus
from .errors import ServiceError

logger = logging.getLogger(__name__)

FIRM_ID_PATTERN = re.compile(r"^FIRM\d{3,}$", re.IGNORECASE)
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

IMPERSONATED_FIRM_HEADER = "x-impersonated-firm-id"
IMPERSONATION_SESSION_HEADER = "x-impersonation-session-id"
IMPERSONATION_MODE_HEADER = "x-impersonation-mode"


class ImpersonationMode(str, Enum):
    READ_ONLY = "READ_ONLY"
    FULL_ACCESS = "FULL_ACCESS"


class FirmContextError(ServiceError):
    status_code = 403
    code = "FIRM_CONTEXT_REJECTED"


@dataclass
class ImpersonationContext:
    """SuperAdmin acting inside a firm"""
    firm_id: str
    session_id: str
    mode: ImpersonationMode

    @property
    def read_only(self) -> bool:
        return self.mode == ImpersonationMode.READ_ONLY


@dataclass
class FirmContext:
    """Resolved firm for the current request"""
    id: str
    firm_id: str
    slug: str
    status: str
    name: str
    impersonation: Optional[ImpersonationContext] = None
    sources: List[str] = field(default_factory=list)

    @property
    def is_impersonating(self) -> bool:
        return self.impersonation is not None

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "slug": self.slug, "status": self.status}


def normalize_slug(slug: Optional[str]) -> Optional[str]:
    if not slug:
        return None
    normalized = str(slug).strip().lower()
    return normalized or None


def find_firm(db: Session, identifier: Optional[str]) -> Optional[Firm]:
    """Find a firm by internal id or FIRMnnn id."""
    if not identifier:
        return None
    identifier = str(identifier).strip()
    if FIRM_ID_PATTERN.match(identifier):
        return db.query(Firm).filter(Firm.firm_id == identifier.upper()).first()
    return db.query(Firm).filter(Firm.id == identifier).first()


def find_firm_by_slug(db: Session, slug: Optional[str]) -> Optional[Firm]:
    normalized = normalize_slug(slug)
    if not normalized:
        return None
    return db.query(Firm).filter(Firm.firm_slug == normalized).first()


def _parse_mode(raw: Optional[str]) -> ImpersonationMode:
    try:
        return ImpersonationMode((raw or ImpersonationMode.READ_ONLY.value).strip().upper())
    except ValueError:
        logger.warning(f"Unknown impersonation mode {raw!r}, falling back to READ_ONLY")
        return ImpersonationMode.READ_ONLY


def resolve_firm_context(
    db: Session,
    auth: AuthContext,
    method: str,
    path_params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    request_id: Optional[str] = None,
) -> FirmContext:
    """
    Resolve and validate the firm for a firm-scoped request.

    Raises:
        FirmContextError: 400 when nothing resolves, 403 for boundary violations
    """
    path_params = path_params or {}
    headers = headers or {}
    tag = f"[FIRM_CONTEXT][{request_id or '-'}]"

    impersonated_firm_id = headers.get(IMPERSONATED_FIRM_HEADER)
    impersonation_session_id = headers.get(IMPERSONATION_SESSION_HEADER)
    impersonation_mode = _parse_mode(headers.get(IMPERSONATION_MODE_HEADER))

    if auth.is_super_admin:
        if not impersonated_firm_id:
            logger.warning(f"{tag} SuperAdmin boundary violation on {method}")
            raise FirmContextError("Superadmin cannot access firm-scoped routes")
        if not impersonation_session_id:
            logger.warning(f"{tag} SuperAdmin impersonation missing session ID on {method}")
            raise FirmContextError("Impersonation session ID is required")
        logger.info(f"{tag} SuperAdmin impersonating firm {impersonated_firm_id}, session {impersonation_session_id}")

    candidates = []
    if auth.is_super_admin:
        candidates.append(("impersonation", lambda: find_firm(db, impersonated_firm_id)))
    if path_params.get("firm_slug"):
        candidates.append(("path_slug", lambda: find_firm_by_slug(db, path_params.get("firm_slug"))))
    if path_params.get("firm_id"):
        candidates.append(("path_firm_id", lambda: find_firm(db, path_params.get("firm_id"))))
    if auth.token_firm_id:
        candidates.append(("jwt", lambda: find_firm(db, auth.token_firm_id)))
    if auth.firm_id:
        candidates.append(("session", lambda: find_firm(db, auth.firm_id)))

    firm = None
    source = None
    for name, lookup in candidates:
        firm = lookup()
        if firm is not None:
            source = name
            break

    if firm is None:
        logger.error(
            f"{tag} Firm context missing or unresolved "
            f"(jwt={auth.token_firm_id}, params={dict(path_params)}, impersonated={impersonated_firm_id})"
        )
        raise FirmContextError("Firm context missing", status_code=400, code="FIRM_CONTEXT_MISSING")

    status = getattr(firm.status, "value", firm.status)
    if status != FirmStatus.ACTIVE.value:
        logger.warning(f"{tag} Firm disabled: {firm.id} ({status})")
        raise FirmContextError("Firm is disabled. Please contact support.", code="FIRM_DISABLED")

    if not auth.is_super_admin and auth.token_firm_id and firm.id != auth.token_firm_id:
        logger.error(f"{tag} Firm mismatch detected (token={auth.token_firm_id}, resolved={firm.id})")
        raise FirmContextError("Firm mismatch detected for authenticated user", code="FIRM_MISMATCH")

    if not auth.is_super_admin and auth.firm_id and firm.id != auth.firm_id:
        logger.error(f"{tag} Cross-firm access attempt by {auth.user_id} on {firm.id}")
        raise FirmContextError("Firm mismatch detected for authenticated user", code="FIRM_MISMATCH")

    impersonation = None
    if auth.is_super_admin:
        impersonation = ImpersonationContext(
            firm_id=firm.id,
            session_id=impersonation_session_id,
            mode=impersonation_mode,
        )

    context = FirmContext(
        id=firm.id,
        firm_id=firm.firm_id,
        slug=firm.firm_slug,
        status=status,
        name=firm.name,
        impersonation=impersonation,
        sources=[source],
    )
    logger.info(f"{tag} Firm context resolved: {firm.id} ({firm.firm_slug}) via {source}")

    if impersonation and impersonation.read_only and method.upper() in MUTATING_METHODS:
        logger.warning(f"{tag} Read-only impersonation: blocked {method}")
        raise FirmContextError(
            "Read-only impersonation: write operations are not allowed",
            code="IMPERSONATION_READ_ONLY",
        )

    return context


# =============================================================================
# SLUG ROUTES
# =============================================================================

def resolve_tenant(db: Session, firm_slug: Optional[str]) -> Firm:
    """
    Resolve an ACTIVE firm from a /f/{firm_slug} URL.

    Raises:
        ServiceError: 404 FIRM_NOT_FOUND, 403 FIRM_INACTIVE / FIRM_SUSPENDED
    """
    normalized = normalize_slug(firm_slug)
    firm = find_firm_by_slug(db, normalized) if normalized else None

    logger.info(f"firm_login_attempt slug={normalized} found={firm is not None}")

    if firm is None:
        raise ServiceError(
            "Firm not found. Please check your login URL.",
            status_code=404,
            code="FIRM_NOT_FOUND",
            action="contact_admin",
        )

    status = getattr(firm.status, "value", firm.status)
    if status == FirmStatus.INACTIVE.value:
        raise ServiceError(
            "This firm is inactive. Please contact support.",
            status_code=403,
            code="FIRM_INACTIVE",
            action="contact_admin",
        )
    if status != FirmStatus.ACTIVE.value:
        raise ServiceError(
            f"This firm is currently {status.lower()}. Please contact support.",
            status_code=403,
            code="FIRM_SUSPENDED",
            action="contact_admin",
        )
    return firm


def resolve_optional_firm(
    db: Session,
    body: Optional[Mapping[str, Any]] = None,
    query: Optional[Mapping[str, Any]] = None,
    path_params: Optional[Mapping[str, Any]] = None,
) -> Optional[Firm]:
    """
    Best-effort firm lookup from a slug in body, query or path (in that
    order). Never raises; returns None when nothing usable is found.
    """
    slug = None
    for source in (body, query, path_params):
        if not source:
            continue
        slug = source.get("firm_slug") or source.get("firmSlug")
        if slug:
            break

    if not slug:
        return None

    try:
        return find_firm_by_slug(db, slug)
    except SQLAlchemyError as e:
        logger.warning(f"Optional firm resolution failed for slug {slug!r}: {e}")
        return None
