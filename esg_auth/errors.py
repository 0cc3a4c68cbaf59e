"""Authentication error taxonomy.

Services raise these; ``esg_auth.main`` renders them as JSON. ``public_message``
is what the client sees, while the exception's own message (``str(exc)``) may
carry internal detail for the server log and must never be sent to the client.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for every expected authentication failure."""

    code = "auth_error"
    status_code = 400
    public_message = "Request could not be completed."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.public_message)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"ok": False, "code": self.code, "message": self.public_message}


class AccountNotFound(AuthError):
    code = "account_not_found"
    status_code = 404
    public_message = "Account not found."


class NoPasskeyAvailable(AuthError):
    code = "no_passkey"
    status_code = 404
    public_message = "No passkey is registered for this account."


class ChallengeExpiredOrMissing(AuthError):
    code = "challenge_expired"
    status_code = 400
    public_message = "Challenge not found or expired. Please start again."


class AttestationInvalid(AuthError):
    code = "attestation_invalid"
    status_code = 400
    public_message = "Could not verify passkey."


class AssertionInvalid(AuthError):
    code = "assertion_invalid"
    status_code = 401
    public_message = "Could not verify passkey."


class CredentialNotRecognized(AuthError):
    code = "credential_not_recognized"
    status_code = 401
    public_message = "Could not verify passkey."


class RecoveryCodeInvalid(AuthError):
    code = "recovery_code_invalid"
    status_code = 401
    public_message = "Invalid email or recovery code."


class PasswordInvalid(AuthError):
    code = "invalid_credentials"
    status_code = 401
    public_message = "Invalid email or password."


class SessionExpiredOrInvalid(AuthError):
    code = "session_invalid"
    status_code = 401
    public_message = "Session is invalid. Please sign in again."


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    public_message = "Authentication required."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    public_message = "You do not have permission to perform this action."


class CeremonyCancelledByUser(AuthError):
    """The browser/platform ceremony was dismissed (WebAuthn NotAllowedError)."""

    code = "ceremony_cancelled"
    status_code = 400
    public_message = "Request cancelled."


class MagicLinkInvalid(AuthError):
    code = "magic_link_invalid"
    status_code = 400
    public_message = "This sign-in link is invalid or has expired."

    def __init__(self, detail: Optional[str] = None, reason: str = "invalid"):
        super().__init__(detail)
        self.reason = reason


class MagicLinkRateLimited(AuthError):
    code = "magic_link_rate_limited"
    status_code = 429
    public_message = "Too many sign-in link requests. Please try again later."


class PasskeyNotFound(AuthError):
    code = "passkey_not_found"
    status_code = 404
    public_message = "Passkey not found."


class InvalidOperation(AuthError):
    code = "invalid_operation"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class GenericLoginFailure(AuthError):
    """Collapsed client-facing form of AccountNotFound / NoPasskeyAvailable."""

    code = "login_unavailable"
    status_code = 404
    public_message = (
        "Passkey sign-in is not available for this email. "
        "Use an email link or register a passkey."
    )


class VerificationFailed(AuthError):
    """Collapsed client-facing form of every cryptographic verification failure."""

    code = "verification_failed"
    status_code = 401
    public_message = "Could not verify passkey. Please try again."
