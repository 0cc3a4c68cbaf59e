"""Admin account management schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from esg_auth.models.account import AccountRole


class AdminCreate(BaseModel):
    """Schema for creating an admin account."""

    email: EmailStr = Field(..., description="Admin email address")
    role: AccountRole = Field(..., description="Admin role")
    display_name: Optional[str] = Field(None, alias="displayName", max_length=255)
    password: Optional[str] = Field(
        None, max_length=128, description="Temporary password for the first sign-in"
    )

    class Config:
        populate_by_name = True

    @field_validator("role")
    def validate_role(cls, v: AccountRole) -> AccountRole:
        if not v.is_admin:
            raise ValueError("Role must be an admin role")
        return v


class PasswordChange(BaseModel):
    """Schema for an admin replacing their own password."""

    current_password: Optional[str] = Field(None, alias="currentPassword", max_length=128)
    new_password: str = Field(..., alias="newPassword", max_length=128)

    class Config:
        populate_by_name = True


class AdminAction(str, Enum):
    CHANGE_ROLE = "change_role"
    DEACTIVATE = "deactivate"
    ACTIVATE = "activate"


class AdminUpdate(BaseModel):
    """Schema for PATCH /api/admin/admins/{id}."""

    action: AdminAction
    role: Optional[AccountRole] = None


class AdminResponse(BaseModel):
    id: str
    email: str
    role: str
    display_name: Optional[str] = Field(None, alias="displayName")
    is_active: bool = Field(..., alias="isActive")
    last_login_at: Optional[datetime] = Field(None, alias="lastLoginAt")
    created_at: datetime = Field(..., alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class AdminEnvelope(BaseModel):
    ok: bool = True
    admin: AdminResponse


class AdminList(BaseModel):
    ok: bool = True
    admins: List[AdminResponse]
    total: int
    active: int
