"""Business logic services."""

from esg_auth.services.account_service import AccountService
from esg_auth.services.challenge_service import ChallengeService
from esg_auth.services.magic_link_service import MagicLinkService
from esg_auth.services.recovery_code_service import RecoveryCodeService
from esg_auth.services.session_service import IssuedSession, SessionContext, SessionService
from esg_auth.services.webauthn_service import WebAuthnService

__all__ = [
    "AccountService",
    "ChallengeService",
    "IssuedSession",
    "MagicLinkService",
    "RecoveryCodeService",
    "SessionContext",
    "SessionService",
    "WebAuthnService",
]
