"""Database models for the authentication kernel."""

from esg_auth.models.account import Account, AccountRole, normalize_email
from esg_auth.models.auth_session import AuthMethod, AuthSession
from esg_auth.models.magic_link_token import DeliveryStatus, MagicLinkToken
from esg_auth.models.recovery_code import RecoveryCode
from esg_auth.models.security_log import SecurityEventType, SecurityLog
from esg_auth.models.webauthn_challenge import CeremonyType, WebAuthnChallenge
from esg_auth.models.webauthn_credential import WebAuthnCredential

__all__ = [
    "Account",
    "AccountRole",
    "AuthMethod",
    "AuthSession",
    "CeremonyType",
    "DeliveryStatus",
    "MagicLinkToken",
    "RecoveryCode",
    "SecurityEventType",
    "SecurityLog",
    "WebAuthnChallenge",
    "WebAuthnCredential",
    "normalize_email",
]
