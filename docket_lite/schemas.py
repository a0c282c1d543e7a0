"""
Pydantic Schemas for Docket Lite
================================

Request bodies and response shapes for the HTTP API.

Successful responses are wrapped as `{"success": true, "data": ...}`;
errors use the envelope in middleware.response_contract.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationInfo, field_validator

from .db.models import (
    ApprovalStatus, CasePriority, CaseStatus, ClientStatus, FirmStatus, TaskStatus,
)


def ok(data: Any = None, **extra: Any) -> Dict[str, Any]:
    body = {"success": True, "data": data}
    body.update(extra)
    return body


def _not_blank(value: Optional[str], field_name: str) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    return value


def _not_null(value: Any, field_name: str) -> Any:
    """Partial updates may omit a required column but never null it."""
    if value is None:
        raise ValueError(f"{field_name} cannot be null")
    return value


# =============================================================================
# AUTH
# =============================================================================

class LoginRequest(BaseModel):
    email: str
    password: str
    firm_slug: Optional[str] = None


class TenantLoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class SetPasswordRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=8)


class ForgotPasswordRequest(BaseModel):
    email: str
    firm_slug: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8)


# =============================================================================
# CASES
# =============================================================================

class CaseCreateRequest(BaseModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    status: CaseStatus = CaseStatus.OPEN
    priority: CasePriority = CasePriority.MEDIUM
    category_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    assigned_to_xid: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_required(cls, v: str) -> str:
        return _not_blank(v, "Title")


class CaseUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    priority: Optional[CasePriority] = None
    category_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    assigned_to_xid: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _not_blank(v, "Title")

    @field_validator("title", "priority", mode="before")
    @classmethod
    def required_not_null(cls, v: Any, info: ValidationInfo) -> Any:
        return _not_null(v, info.field_name)


class CaseStatusRequest(BaseModel):
    status: CaseStatus
    comment: Optional[str] = None


class DeleteRequest(BaseModel):
    reason: Optional[str] = None


class CaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_number: str
    title: str
    description: Optional[str] = None
    status: CaseStatus
    priority: CasePriority
    category_id: Optional[str] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    assigned_to_xid: Optional[str] = None
    created_by_xid: Optional[str] = None
    status_history: List[Dict[str, Any]] = []
    due_date: Optional[datetime] = None
    actual_close_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @field_validator("status_history", mode="before")
    @classmethod
    def default_history(cls, v):
        return v or []


class CommentCreateRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def text_required(cls, v: str) -> str:
        return _not_blank(v, "Comment text")


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: str
    text: str
    created_by_xid: Optional[str] = None
    created_at: Optional[datetime] = None


class AttachmentCreateRequest(BaseModel):
    file_name: str = Field(..., max_length=255)
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None

    @field_validator("file_name")
    @classmethod
    def file_name_required(cls, v: str) -> str:
        return _not_blank(v, "File name")


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: str
    file_name: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    description: Optional[str] = None
    uploaded_by_xid: Optional[str] = None
    created_at: Optional[datetime] = None


# =============================================================================
# CLIENTS / CATEGORIES
# =============================================================================

class ClientCreateRequest(BaseModel):
    business_name: str = Field(..., max_length=255)
    business_email: Optional[str] = None
    business_address: Optional[str] = None
    primary_contact_number: Optional[str] = None

    @field_validator("business_name")
    @classmethod
    def business_name_required(cls, v: str) -> str:
        return _not_blank(v, "Business name")


class ClientUpdateRequest(BaseModel):
    business_name: Optional[str] = Field(None, max_length=255)
    business_email: Optional[str] = None
    business_address: Optional[str] = None
    primary_contact_number: Optional[str] = None

    @field_validator("business_name")
    @classmethod
    def business_name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _not_blank(v, "Business name")

    @field_validator("business_name", mode="before")
    @classmethod
    def required_not_null(cls, v: Any, info: ValidationInfo) -> Any:
        return _not_null(v, info.field_name)


class ClientStatusRequest(BaseModel):
    status: ClientStatus


class ClientDecisionRequest(BaseModel):
    reason: Optional[str] = None


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    business_name: str
    business_email: Optional[str] = None
    business_address: Optional[str] = None
    primary_contact_number: Optional[str] = None
    status: ClientStatus
    approval_status: ApprovalStatus
    approved_by_xid: Optional[str] = None
    approved_at: Optional[datetime] = None
    is_system_client: bool = False
    created_by_xid: Optional[str] = None
    created_at: Optional[datetime] = None


class CategoryRequest(BaseModel):
    name: str = Field(..., max_length=255)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        return _not_blank(v, "Category name")


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    is_active: bool = True
    created_at: Optional[datetime] = None


# =============================================================================
# TASKS
# =============================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    case_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: CasePriority = CasePriority.MEDIUM
    assigned_to_xid: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_required(cls, v: str) -> str:
        return _not_blank(v, "Title")


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[CasePriority] = None
    assigned_to_xid: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _not_blank(v, "Title")

    @field_validator("title", "status", "priority", mode="before")
    @classmethod
    def required_not_null(cls, v: Any, info: ValidationInfo) -> Any:
        return _not_null(v, info.field_name)


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    case_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: CasePriority
    assigned_to_xid: Optional[str] = None
    created_by_xid: Optional[str] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# =============================================================================
# USERS
# =============================================================================

class UserCreateRequest(BaseModel):
    email: EmailStr
    name: str
    role: str
    manager_id: Optional[str] = None
    can_approve_clients: bool = False

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        return _not_blank(v, "Name")


class UserUpdateRequest(BaseModel):
    """`firm_id` and `xid` are accepted only so they can be rejected."""
    name: Optional[str] = None
    role: Optional[str] = None
    manager_id: Optional[str] = None
    can_approve_clients: Optional[bool] = None
    firm_id: Optional[str] = None
    xid: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        return _not_blank(v, "Name")

    @field_validator("name", "role", "can_approve_clients", mode="before")
    @classmethod
    def required_not_null(cls, v: Any, info: ValidationInfo) -> Any:
        return _not_null(v, info.field_name)


class UserStatusRequest(BaseModel):
    is_active: bool


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    xid: Optional[str] = None
    email: str
    name: str
    role: str
    status: str
    is_active: bool = True
    manager_id: Optional[str] = None
    can_approve_clients: bool = False
    invite_sent_at: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v):
        return getattr(v, "value", v)


# =============================================================================
# FIRMS / SUPERADMIN
# =============================================================================

class FirmCreateRequest(BaseModel):
    name: Optional[str] = None
    admin_name: Optional[str] = None
    admin_email: Optional[EmailStr] = None


class FirmStatusRequest(BaseModel):
    status: FirmStatus


class FirmAdminCreateRequest(BaseModel):
    name: str
    email: EmailStr


class SwitchFirmRequest(BaseModel):
    firm_id: str
    mode: str = "READ_ONLY"


class ExitFirmRequest(BaseModel):
    session_id: Optional[str] = None


class SystemStateRequest(BaseModel):
    state: str
    reason: Optional[str] = None


class FirmResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    firm_id: str
    name: str
    firm_slug: str
    status: FirmStatus
    bootstrap_status: str
    default_client_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("bootstrap_status", mode="before")
    @classmethod
    def bootstrap_value(cls, v):
        return getattr(v, "value", v)
