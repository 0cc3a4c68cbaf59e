"""Admin panel authentication endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.database import get_db
from esg_auth.errors import (
    AccountNotFound,
    AssertionInvalid,
    CredentialNotRecognized,
    NoPasskeyAvailable,
    VerificationFailed,
)
from esg_auth.models.auth_session import AuthMethod
from esg_auth.schemas.admin import PasswordChange
from esg_auth.schemas.auth import (
    AccountSummary,
    AdminLoginResponse,
    OkResponse,
    PasswordLoginRequest,
    RecoveryCodeLoginRequest,
    RecoveryCodeLoginResponse,
)
from esg_auth.schemas.webauthn import (
    AdminPasskeyLoginFinish,
    CeremonyOptionsResponse,
    CredentialList,
    CredentialResponse,
    PasskeyEmailRequest,
    PasskeyRemoveRequest,
    RegistrationVerifyResponse,
)
from esg_auth.security.auth import (
    clear_session_cookie,
    get_optional_admin_session,
    set_session_cookie,
)
from esg_auth.security.client_info import ClientInfo, get_client_info
from esg_auth.security.rate_limiting import AUTH_LIMIT, limiter
from esg_auth.security.roles import require_admin_role
from esg_auth.services.password_service import PasswordService
from esg_auth.services.recovery_code_service import RecoveryCodeService
from esg_auth.services.session_service import SessionContext, SessionService
from esg_auth.services.webauthn_service import WebAuthnService

logger = logging.getLogger(__name__)

router = APIRouter()

require_admin = require_admin_role()


@router.post("/login", response_model=AdminLoginResponse)
@limiter.limit(AUTH_LIMIT)
async def admin_password_login(
    request: Request,
    response: Response,
    payload: PasswordLoginRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Sign an admin in with email and password.

    Every failure is the same 401 ``invalid_credentials``.
    """
    account = await PasswordService(db).authenticate(payload.email, payload.password, client)

    issued = await SessionService(db).issue(account, AuthMethod.PASSWORD, client)
    set_session_cookie(response, issued, admin=True)

    logger.info(f"Admin {account.id} signed in with a password")
    return AdminLoginResponse(
        admin=AccountSummary.model_validate(account),
        session_expires_at=issued.expires_at,
    )


@router.post("/password", response_model=OkResponse)
async def admin_change_password(
    payload: PasswordChange,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Set or replace the signed-in admin's password."""
    await PasswordService(db).change_password(
        context.account, payload.current_password, payload.new_password, client
    )
    return OkResponse()


@router.post("/passkey/login-begin", response_model=CeremonyOptionsResponse)
@limiter.limit(AUTH_LIMIT)
async def admin_login_begin(
    request: Request,
    payload: PasskeyEmailRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Begin admin passkey sign-in.

    Unknown emails, non-admin accounts and admins without a passkey all get
    the same 401.
    """
    try:
        options = await WebAuthnService(db).begin_authentication(
            payload.email, client, admin_only=True
        )
    except (AccountNotFound, NoPasskeyAvailable) as e:
        logger.info(f"Admin passkey sign-in refused: {e}")
        raise VerificationFailed(str(e))
    return CeremonyOptionsResponse(options=options)


@router.post("/passkey/login-finish", response_model=AdminLoginResponse)
@limiter.limit(AUTH_LIMIT)
async def admin_login_finish(
    request: Request,
    response: Response,
    payload: AdminPasskeyLoginFinish,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Complete admin passkey sign-in and set the admin session cookie."""
    try:
        outcome = await WebAuthnService(db).finish_authentication(
            payload.email, payload.auth_response, client, admin_only=True
        )
    except (AccountNotFound, AssertionInvalid, CredentialNotRecognized) as e:
        raise VerificationFailed(str(e))

    issued = await SessionService(db).issue(outcome.account, AuthMethod.PASSKEY, client)
    set_session_cookie(response, issued, admin=True)

    logger.info(f"Admin {outcome.account.id} signed in with a passkey")
    return AdminLoginResponse(
        admin=AccountSummary.model_validate(outcome.account),
        session_expires_at=issued.expires_at,
    )


@router.post("/passkey/register-begin", response_model=CeremonyOptionsResponse)
async def admin_register_begin(
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Begin adding a passkey to the signed-in admin account."""
    options = await WebAuthnService(db).begin_registration(context.account.id, client)
    return CeremonyOptionsResponse(options=options)


@router.post("/passkey/register-finish", response_model=RegistrationVerifyResponse)
async def admin_register_finish(
    attestation: Dict[str, Any] = Body(...),
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Complete passkey registration for the signed-in admin.

    The body is the attestation JSON exactly as the browser produced it.
    """
    outcome = await WebAuthnService(db).finish_registration(
        context.account.id, attestation, client
    )
    return RegistrationVerifyResponse(recovery_codes=outcome.recovery_codes)


@router.get("/passkey/list", response_model=CredentialList)
async def admin_list_passkeys(
    context: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    credentials = await WebAuthnService(db).get_account_credentials(context.account.id)
    return CredentialList(passkeys=[CredentialResponse.from_model(c) for c in credentials])


@router.delete("/passkey/remove", response_model=OkResponse)
async def admin_remove_passkey(
    payload: PasskeyRemoveRequest,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Any:
    await WebAuthnService(db).remove_credential(context.account, payload.passkey_id, client)
    return OkResponse()


@router.post("/recovery-code", response_model=RecoveryCodeLoginResponse)
@limiter.limit(AUTH_LIMIT)
async def admin_recovery_code_login(
    request: Request,
    response: Response,
    payload: RecoveryCodeLoginRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Sign an admin in with a one-time recovery code."""
    outcome = await RecoveryCodeService(db).consume(
        payload.email, payload.code, client, admin_only=True
    )

    issued = await SessionService(db).issue(outcome.account, AuthMethod.RECOVERY_CODE, client)
    set_session_cookie(response, issued, admin=True)

    return RecoveryCodeLoginResponse(
        admin=AccountSummary.model_validate(outcome.account),
        remaining_codes=outcome.remaining,
        session_expires_at=issued.expires_at,
        warning=outcome.warning,
    )


@router.post("/logout", response_model=OkResponse)
async def admin_logout(
    response: Response,
    client: ClientInfo = Depends(get_client_info),
    context: Optional[SessionContext] = Depends(get_optional_admin_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    if context is not None:
        await SessionService(db).revoke(context.session.token_jti, client)
    clear_session_cookie(response, admin=True)
    return OkResponse()
