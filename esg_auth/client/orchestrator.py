"""Client-side ceremony orchestration over the HTTP API."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import httpx

from esg_auth import errors
from esg_auth.client.authenticator import Authenticator
from esg_auth.errors import AuthError, CeremonyCancelledByUser

logger = logging.getLogger(__name__)

# Wire error code -> exception class
ERRORS_BY_CODE: Dict[str, Type[AuthError]] = {
    cls.code: cls
    for cls in vars(errors).values()
    if isinstance(cls, type) and issubclass(cls, AuthError) and cls is not AuthError
}


class LoginState(str, Enum):
    IDLE = "idle"
    CHALLENGE_REQUESTED = "challenge_requested"
    AWAITING_BROWSER_CEREMONY = "awaiting_browser_ceremony"
    VERIFYING = "verifying"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class SignInMethod(str, Enum):
    PASSKEY = "passkey"
    PASSKEY_REGISTRATION = "passkey_registration"
    RECOVERY_CODE = "recovery_code"
    MAGIC_LINK = "magic_link"
    PASSWORD = "password"


@dataclass
class PasskeyStatus:
    has_user: bool
    has_passkey: bool
    can_use_passkey: bool


class AuthApiClient:
    """
    Thin wrapper over the auth endpoints.

    Error bodies are turned back into the matching ``AuthError`` subclass.
    The wrapped ``httpx.AsyncClient`` keeps the session cookies.
    """

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self.http.post(path, json=payload or {})
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_success:
            return body

        error_cls = ERRORS_BY_CODE.get(body.get("code"), AuthError)
        if error_cls is errors.InvalidOperation:
            raise errors.InvalidOperation(body.get("message", ""))
        error = error_cls(body.get("message"))
        error.status_code = response.status_code
        raise error

    async def passkey_status(self, email: str) -> PasskeyStatus:
        body = await self._post("/api/auth/passkey/status", {"email": email})
        return PasskeyStatus(
            has_user=body["hasUser"],
            has_passkey=body["hasPasskey"],
            can_use_passkey=body["canUsePasskey"],
        )

    async def registration_options(
        self, email: str, display_name: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {"email": email}
        if display_name:
            payload["displayName"] = display_name
        body = await self._post("/api/auth/passkey/register/options", payload)
        return body["options"]

    async def registration_verify(self, email: str, attestation: Dict[str, Any]) -> List[str]:
        body = await self._post(
            "/api/auth/passkey/register/verify", {"email": email, "response": attestation}
        )
        return body.get("recoveryCodes", [])

    async def authentication_options(self, email: str) -> Dict[str, Any]:
        body = await self._post("/api/auth/passkey/authenticate/options", {"email": email})
        return body["options"]

    async def authentication_verify(self, email: str, assertion: Dict[str, Any]) -> None:
        await self._post(
            "/api/auth/passkey/authenticate/verify", {"email": email, "response": assertion}
        )

    async def recovery_code_login(self, email: str, code: str) -> Dict[str, Any]:
        return await self._post("/api/auth/recovery-code", {"email": email, "code": code})

    async def admin_password_login(self, email: str, password: str) -> Dict[str, Any]:
        return await self._post("/api/admin/auth/login", {"email": email, "password": password})

    async def request_magic_link(self, email: str, redirect_to: Optional[str] = None) -> None:
        payload = {"email": email}
        if redirect_to:
            payload["redirectTo"] = redirect_to
        await self._post("/api/auth/magic-link/request", payload)


class PasskeyLogin:
    """
    One passkey sign-in attempt.

    Idle -> ChallengeRequested -> AwaitingBrowserCeremony -> Verifying ->
    Authenticated | Failed. A finished attempt cannot be rerun.
    """

    def __init__(self, api: AuthApiClient, authenticator: Authenticator):
        self.api = api
        self.authenticator = authenticator
        self.state = LoginState.IDLE
        self.history: List[LoginState] = [LoginState.IDLE]
        self.error: Optional[AuthError] = None

    def _enter(self, state: LoginState) -> None:
        logger.debug(f"Passkey login: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def run(self, email: str) -> None:
        if self.state is not LoginState.IDLE:
            raise RuntimeError(f"login attempt already {self.state.value}")

        try:
            self._enter(LoginState.CHALLENGE_REQUESTED)
            options = await self.api.authentication_options(email)

            self._enter(LoginState.AWAITING_BROWSER_CEREMONY)
            assertion = await self.authenticator.get(options)

            self._enter(LoginState.VERIFYING)
            await self.api.authentication_verify(email, assertion)
        except AuthError as e:
            self.error = e
            self._enter(LoginState.FAILED)
            raise

        self._enter(LoginState.AUTHENTICATED)


@dataclass
class SignInResult:
    authenticated: bool
    method: SignInMethod
    next_method: Optional[SignInMethod] = None
    recovery_codes: List[str] = field(default_factory=list)
    warning: Optional[str] = None
    error: Optional[AuthError] = None


class CeremonyOrchestrator:
    """
    Picks and runs a sign-in method for an email.

    Passkey first; registration on demand when the account has no passkey;
    after ``passkey_failure_threshold`` failed passkey attempts the caller is
    steered to a recovery code. A dismissed browser prompt is re-raised as
    ``CeremonyCancelledByUser`` and does not count as a failure.
    Admin accounts may also sign in with a password.
    """

    def __init__(
        self,
        api: AuthApiClient,
        authenticator: Authenticator,
        passkey_failure_threshold: int = 2,
    ):
        self.api = api
        self.authenticator = authenticator
        self.passkey_failure_threshold = passkey_failure_threshold
        self.passkey_failures = 0
        self.attempts: List[PasskeyLogin] = []

    @property
    def recovery_suggested(self) -> bool:
        return self.passkey_failures >= self.passkey_failure_threshold

    async def sign_in(self, email: str, display_name: Optional[str] = None) -> SignInResult:
        if self.recovery_suggested:
            return SignInResult(
                authenticated=False,
                method=SignInMethod.PASSKEY,
                next_method=SignInMethod.RECOVERY_CODE,
            )

        status = await self.api.passkey_status(email)
        if not status.has_passkey:
            return await self.register(email, display_name)

        login = PasskeyLogin(self.api, self.authenticator)
        self.attempts.append(login)
        try:
            await login.run(email)
        except CeremonyCancelledByUser:
            raise
        except AuthError as e:
            self.passkey_failures += 1
            logger.info(f"Passkey attempt {self.passkey_failures} failed: {e.code}")
            return SignInResult(
                authenticated=False,
                method=SignInMethod.PASSKEY,
                next_method=(
                    SignInMethod.RECOVERY_CODE if self.recovery_suggested else SignInMethod.PASSKEY
                ),
                error=e,
            )

        self.passkey_failures = 0
        return SignInResult(authenticated=True, method=SignInMethod.PASSKEY)

    async def register(self, email: str, display_name: Optional[str] = None) -> SignInResult:
        """Create a passkey for ``email``; the server signs the account in."""
        options = await self.api.registration_options(email, display_name)
        attestation = await self.authenticator.create(options)
        codes = await self.api.registration_verify(email, attestation)
        return SignInResult(
            authenticated=True,
            method=SignInMethod.PASSKEY_REGISTRATION,
            recovery_codes=codes,
        )

    async def sign_in_with_recovery_code(self, email: str, code: str) -> SignInResult:
        body = await self.api.recovery_code_login(email, code)
        self.passkey_failures = 0
        return SignInResult(
            authenticated=True,
            method=SignInMethod.RECOVERY_CODE,
            warning=body.get("warning"),
        )

    async def sign_in_with_password(self, email: str, password: str) -> SignInResult:
        """Admin panel only; the session lands in the admin cookie."""
        await self.api.admin_password_login(email, password)
        self.passkey_failures = 0
        return SignInResult(authenticated=True, method=SignInMethod.PASSWORD)

    async def send_magic_link(self, email: str, redirect_to: Optional[str] = None) -> SignInResult:
        """The link is followed out of band, so this never authenticates by itself."""
        await self.api.request_magic_link(email, redirect_to)
        return SignInResult(authenticated=False, method=SignInMethod.MAGIC_LINK)
