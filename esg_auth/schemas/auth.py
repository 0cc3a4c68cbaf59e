"""Session, recovery-code and magic-link Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class TokenData(BaseModel):
    """JWT token payload data."""

    sub: str = Field(..., description="Subject (account ID)")
    role: str = Field(..., description="Account role at issue time")
    exp: datetime = Field(..., description="Token expiration time")
    iat: datetime = Field(..., description="Token issued at time")
    jti: str = Field(..., description="JWT ID, matches the session row")


class OkResponse(BaseModel):
    ok: bool = True


class AccountSummary(BaseModel):
    id: str
    email: str
    role: str
    display_name: Optional[str] = Field(None, alias="displayName")

    class Config:
        from_attributes = True
        populate_by_name = True


class SessionResponse(BaseModel):
    """Current session information."""

    ok: bool = True
    account: AccountSummary
    method: str
    expires_at: datetime = Field(..., alias="expiresAt")

    class Config:
        populate_by_name = True


class RecoveryCodeLoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")
    code: str = Field(..., min_length=8, max_length=32, description="Recovery code")


class PasswordLoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Admin email")
    password: str = Field(..., min_length=1, max_length=128)


class RecoveryCodeLoginResponse(BaseModel):
    ok: bool = True
    admin: Optional[AccountSummary] = None
    remaining_codes: int = Field(..., alias="remainingCodes")
    session_expires_at: datetime = Field(..., alias="sessionExpiresAt")
    warning: Optional[str] = None

    class Config:
        populate_by_name = True


class RecoveryCodesResponse(BaseModel):
    ok: bool = True
    recovery_codes: List[str] = Field(..., alias="recoveryCodes")

    class Config:
        populate_by_name = True


class MagicLinkRequest(BaseModel):
    email: EmailStr = Field(..., description="Email to send the sign-in link to")
    redirect_to: Optional[str] = Field(None, alias="redirectTo", max_length=512)

    class Config:
        populate_by_name = True


class AdminLoginResponse(BaseModel):
    ok: bool = True
    admin: AccountSummary
    session_expires_at: datetime = Field(..., alias="sessionExpiresAt")

    class Config:
        populate_by_name = True
