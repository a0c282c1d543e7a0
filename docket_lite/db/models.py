"""
SQLAlchemy Models for Database
==============================

Schema for the multi-tenant case management backend:
- Firms (tenants) and their users
- Clients, categories and cases
- Tasks, attachments and comments hanging off cases
- Sequence counters, audit trails and auth bookkeeping

Every firm-owned entity carries `firm_id`. Entities that support
soft delete mix in `SoftDeleteMixin`; the session layer hides
deleted rows from ORM queries unless asked otherwise.

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey,
    UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import relationship, declarative_base

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    """Platform and firm roles"""
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    EMPLOYEE = "Employee"


class UserStatus(str, enum.Enum):
    """User onboarding / access status"""
    INVITED = "INVITED"
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class FirmStatus(str, enum.Enum):
    """Firm lifecycle status"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class BootstrapStatus(str, enum.Enum):
    """Firm hierarchy bootstrap progress"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ClientStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ApprovalStatus(str, enum.Enum):
    """Client approval workflow"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CaseStatus(str, enum.Enum):
    """Case lifecycle status"""
    OPEN = "open"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    CLOSED = "closed"
    ARCHIVED = "archived"


class CasePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# =============================================================================
# SOFT DELETE
# =============================================================================

class SoftDeleteMixin:
    """
    Soft delete markers.

    Rows are never removed; `deleted_at` hides them from default ORM
    queries (see db.session). `restore_history` keeps one entry per restore.
    """
    deleted_at = Column(DateTime, nullable=True, index=True)
    deleted_by_xid = Column(String(20), nullable=True)
    delete_reason = Column(Text, nullable=True)
    restore_history = Column(JSONB, default=list)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# =============================================================================
# TENANCY
# =============================================================================

class Firm(Base):
    """Law firm (tenant)"""
    __tablename__ = "firms"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(20), nullable=False, unique=True)  # FIRM001
    name = Column(String(255), nullable=False, unique=True)
    firm_slug = Column(String(255), nullable=False, unique=True, index=True)
    status = Column(Enum(FirmStatus), default=FirmStatus.ACTIVE, nullable=False)
    bootstrap_status = Column(Enum(BootstrapStatus), default=BootstrapStatus.PENDING, nullable=False)
    default_client_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    extra_data = Column(JSONB, default=dict)  # Note: 'metadata' is reserved by SQLAlchemy

    users = relationship("User", back_populates="firm")
    clients = relationship("Client", back_populates="firm")


class User(SoftDeleteMixin, Base):
    """User in the system (firm member or platform SuperAdmin)"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=True)  # NULL for SuperAdmin
    xid = Column(String(20), nullable=True)  # X000001
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(String(32), default=UserRole.EMPLOYEE.value, nullable=False)
    status = Column(Enum(UserStatus), default=UserStatus.INVITED, nullable=False)
    is_active = Column(Boolean, default=True)
    is_system = Column(Boolean, default=False)
    password_hash = Column(String(255), nullable=True)
    password_setup_token_hash = Column(String(64), nullable=True)
    password_setup_expires = Column(DateTime, nullable=True)
    invite_sent_at = Column(DateTime, nullable=True)
    must_change_password = Column(Boolean, default=False)
    manager_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    can_approve_clients = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("firm_id", "email", name="uq_user_firm_email"),
        UniqueConstraint("firm_id", "xid", name="uq_user_firm_xid"),
    )

    firm = relationship("Firm", back_populates="users")


# =============================================================================
# CLIENTS / CATEGORIES / CASES
# =============================================================================

class Client(SoftDeleteMixin, Base):
    """Client of a firm"""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String(20), nullable=False)  # C000001
    business_name = Column(String(255), nullable=False)
    business_email = Column(String(255), nullable=True)
    business_address = Column(Text, nullable=True)
    primary_contact_number = Column(String(50), nullable=True)
    status = Column(Enum(ClientStatus), default=ClientStatus.ACTIVE, nullable=False)
    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False)
    approved_by_xid = Column(String(20), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    is_system_client = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_by_xid = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("firm_id", "client_id", name="uq_client_firm_client_id"),
    )

    firm = relationship("Firm", back_populates="clients")


class Category(SoftDeleteMixin, Base):
    """Admin-managed case category"""
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("firm_id", "name", name="uq_category_firm_name"),
    )


class Case(SoftDeleteMixin, Base):
    """Legal case"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    case_number = Column(String(32), nullable=False)  # CASE-20260109-00001
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(CaseStatus), default=CaseStatus.OPEN, nullable=False)
    priority = Column(Enum(CasePriority), default=CasePriority.MEDIUM, nullable=False)
    category_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    client_id = Column(String(36), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    assigned_to_xid = Column(String(20), nullable=True)
    created_by_xid = Column(String(20), nullable=True)
    status_history = Column(JSONB, default=list)
    due_date = Column(DateTime, nullable=True)
    actual_close_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("firm_id", "case_number", name="uq_case_firm_number"),
        Index("ix_cases_firm_status", "firm_id", "status"),
    )

    client = relationship("Client")
    category = relationship("Category")


class Task(SoftDeleteMixin, Base):
    """Task attached to a case"""
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, nullable=False)
    priority = Column(Enum(CasePriority), default=CasePriority.MEDIUM, nullable=False)
    assigned_to_xid = Column(String(20), nullable=True)
    created_by_xid = Column(String(20), nullable=True)
    due_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Attachment(SoftDeleteMixin, Base):
    """Attachment metadata for a case"""
    __tablename__ = "attachments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    uploaded_by_xid = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Comment(SoftDeleteMixin, Base):
    """Comment on a case"""
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    firm_id = Column(String(36), ForeignKey("firms.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_by_xid = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# COUNTERS / AUDIT
# =============================================================================

class Counter(Base):
    """Per-firm named sequence"""
    __tablename__ = "counters"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(100), nullable=False)
    firm_id = Column(String(36), nullable=False)
    seq = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("name", "firm_id", name="uq_counter_name_firm"),
    )


class AdminAuditLog(Base):
    """Audit trail of mutating admin/firm actions"""
    __tablename__ = "admin_audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    actor = Column(String(100), nullable=False)
    firm_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(36), nullable=True)
    action = Column(String(255), nullable=False)
    target = Column(String(255), nullable=True)
    scope = Column(String(50), nullable=True)
    request_id = Column(String(64), nullable=True)
    status = Column(Integer, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SuperadminAuditLog(Base):
    """Audit trail of platform-level SuperAdmin actions"""
    __tablename__ = "superadmin_audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    action_type = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    performed_by = Column(String(255), nullable=False)
    performed_by_id = Column(String(36), nullable=True)
    target_entity_type = Column(String(50), nullable=True)
    target_entity_id = Column(String(36), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    extra_data = Column(JSONB, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


# =============================================================================
# AUTH BOOKKEEPING
# =============================================================================

class TokenBlacklist(Base):
    """Revoked JWTs (durable mirror of the redis blacklist)"""
    __tablename__ = "token_blacklist"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    jti = Column(String(64), nullable=False, unique=True, index=True)
    token_type = Column(String(20), default="access")
    user_id = Column(String(36), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class PasswordResetToken(Base):
    """One-time password reset token (hash only)"""
    __tablename__ = "password_reset_tokens"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


SOFT_DELETE_MODELS = (User, Client, Case, Task, Attachment, Comment, Category)
