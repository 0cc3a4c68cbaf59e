"""WebAuthn-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class PasskeyEmailRequest(BaseModel):
    """Body carrying only the account email."""

    email: EmailStr = Field(..., description="Account email")


class PasskeyRegistrationStart(BaseModel):
    """Schema for starting passkey registration."""

    email: EmailStr = Field(..., description="Account email")
    display_name: Optional[str] = Field(
        None, alias="displayName", max_length=255, description="Display name for WebAuthn"
    )

    class Config:
        populate_by_name = True


class PasskeyCeremonyFinish(BaseModel):
    """Schema for finishing a registration or authentication ceremony."""

    email: EmailStr = Field(..., description="Account email")
    response: Dict[str, Any] = Field(
        ..., description="PublicKeyCredential JSON produced by the browser"
    )


class AdminPasskeyLoginFinish(BaseModel):
    email: EmailStr
    auth_response: Dict[str, Any] = Field(..., alias="authResponse")

    class Config:
        populate_by_name = True


class CeremonyOptionsResponse(BaseModel):
    """Options for navigator.credentials.create()/get()."""

    ok: bool = True
    options: Dict[str, Any] = Field(..., description="WebAuthn options JSON")


class PasskeyStatusResponse(BaseModel):
    ok: bool = True
    has_user: bool = Field(..., alias="hasUser")
    has_passkey: bool = Field(..., alias="hasPasskey")
    can_use_passkey: bool = Field(..., alias="canUsePasskey")

    class Config:
        populate_by_name = True


class PasskeyRemoveRequest(BaseModel):
    passkey_id: str = Field(..., alias="passkeyId", min_length=1)

    class Config:
        populate_by_name = True


class CredentialResponse(BaseModel):
    """Schema for credential information in responses."""

    id: str = Field(..., description="Credential record ID")
    credential_id: str = Field(
        ..., alias="credentialId", description="WebAuthn credential ID (base64url)"
    )
    name: Optional[str] = Field(None, description="User-assigned credential name")
    device_type: Optional[str] = Field(None, alias="deviceType")
    transports: List[str] = Field(default_factory=list)
    backed_up: bool = Field(..., alias="backedUp")
    last_used_at: Optional[datetime] = Field(None, alias="lastUsedAt")
    created_at: datetime = Field(..., alias="createdAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_model(cls, credential) -> "CredentialResponse":
        return cls(
            id=credential.id,
            credential_id=credential.credential_id_b64,
            name=credential.name,
            device_type=credential.device_type,
            transports=credential.transports_list,
            backed_up=credential.backed_up,
            last_used_at=credential.last_used_at,
            created_at=credential.created_at,
        )


class CredentialList(BaseModel):
    ok: bool = True
    passkeys: List[CredentialResponse]


class RegistrationVerifyResponse(BaseModel):
    ok: bool = True
    recovery_codes: List[str] = Field(..., alias="recoveryCodes")
    warning: Optional[str] = None

    class Config:
        populate_by_name = True
