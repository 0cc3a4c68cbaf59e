"""Client-side ceremony orchestration."""

from esg_auth.client.authenticator import Authenticator, SoftwareAuthenticator
from esg_auth.client.orchestrator import (
    AuthApiClient,
    CeremonyOrchestrator,
    LoginState,
    PasskeyLogin,
    SignInMethod,
    SignInResult,
)

__all__ = [
    "AuthApiClient",
    "Authenticator",
    "CeremonyOrchestrator",
    "LoginState",
    "PasskeyLogin",
    "SignInMethod",
    "SignInResult",
    "SoftwareAuthenticator",
]
