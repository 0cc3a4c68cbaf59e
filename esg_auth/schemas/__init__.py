"""Pydantic schemas for API request/response models."""

from esg_auth.schemas.admin import (
    AdminAction,
    AdminCreate,
    AdminEnvelope,
    AdminList,
    AdminResponse,
    AdminUpdate,
)
from esg_auth.schemas.auth import (
    AccountSummary,
    AdminLoginResponse,
    MagicLinkRequest,
    OkResponse,
    RecoveryCodeLoginRequest,
    RecoveryCodeLoginResponse,
    RecoveryCodesResponse,
    SessionResponse,
    TokenData,
)
from esg_auth.schemas.webauthn import (
    AdminPasskeyLoginFinish,
    CeremonyOptionsResponse,
    CredentialList,
    CredentialResponse,
    PasskeyCeremonyFinish,
    PasskeyEmailRequest,
    PasskeyRegistrationStart,
    PasskeyRemoveRequest,
    PasskeyStatusResponse,
    RegistrationVerifyResponse,
)

__all__ = [
    "AccountSummary",
    "AdminAction",
    "AdminCreate",
    "AdminEnvelope",
    "AdminList",
    "AdminLoginResponse",
    "AdminPasskeyLoginFinish",
    "AdminResponse",
    "AdminUpdate",
    "CeremonyOptionsResponse",
    "CredentialList",
    "CredentialResponse",
    "MagicLinkRequest",
    "OkResponse",
    "PasskeyCeremonyFinish",
    "PasskeyEmailRequest",
    "PasskeyRegistrationStart",
    "PasskeyRemoveRequest",
    "PasskeyStatusResponse",
    "RecoveryCodeLoginRequest",
    "RecoveryCodeLoginResponse",
    "RecoveryCodesResponse",
    "RegistrationVerifyResponse",
    "SessionResponse",
    "TokenData",
]
