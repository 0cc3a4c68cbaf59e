"""End-user passkey endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.database import get_db
from esg_auth.errors import (
    AccountNotFound,
    AssertionInvalid,
    ChallengeExpiredOrMissing,
    CredentialNotRecognized,
    GenericLoginFailure,
    NoPasskeyAvailable,
    Unauthenticated,
    VerificationFailed,
)
from esg_auth.models.account import Account
from esg_auth.models.auth_session import AuthMethod
from esg_auth.schemas.auth import OkResponse
from esg_auth.schemas.webauthn import (
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
from esg_auth.security.auth import get_current_session, get_optional_session, set_session_cookie
from esg_auth.security.client_info import ClientInfo, get_client_info
from esg_auth.security.rate_limiting import AUTH_LIMIT, limiter
from esg_auth.services.account_service import AccountService
from esg_auth.services.session_service import SessionContext, SessionService
from esg_auth.services.webauthn_service import WebAuthnService

logger = logging.getLogger(__name__)

router = APIRouter()

RECOVERY_CODES_NOTICE = "Store these recovery codes somewhere safe. They are shown only once."


async def authorize_registration(
    account: Account,
    context: Optional[SessionContext],
    webauthn_service: WebAuthnService,
) -> None:
    """
    Decide whether the caller may enrol a passkey on ``account`` here.

    Admin accounts enrol only through the admin panel. Any other account needs
    its own session, unless it is still unclaimed: never signed in and
    holding no passkey.

    Raises:
        Unauthenticated: The caller may not add a passkey to this account
    """
    if account.is_admin:
        raise Unauthenticated(f"admin account {account.id} enrols via the admin panel")
    if context is not None and context.account.id == account.id:
        return
    if account.last_login_at is None and not await webauthn_service.get_account_credentials(
        account.id
    ):
        return
    raise Unauthenticated(f"account {account.id} is claimed; its own session is required")


@router.post("/register/options", response_model=CeremonyOptionsResponse)
@limiter.limit(AUTH_LIMIT)
async def registration_options(
    request: Request,
    payload: PasskeyRegistrationStart,
    client: ClientInfo = Depends(get_client_info),
    context: Optional[SessionContext] = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Begin passkey registration.

    Unknown emails get an account created on the spot. Existing accounts are
    subject to ``authorize_registration``.
    """
    account = await AccountService(db).get_or_create_by_email(
        payload.email, display_name=payload.display_name
    )

    webauthn_service = WebAuthnService(db)
    await authorize_registration(account, context, webauthn_service)

    options = await webauthn_service.begin_registration(account.id, client)
    return CeremonyOptionsResponse(options=options)


@router.post("/register/verify", response_model=RegistrationVerifyResponse)
@limiter.limit(AUTH_LIMIT)
async def registration_verify(
    request: Request,
    response: Response,
    payload: PasskeyCeremonyFinish,
    client: ClientInfo = Depends(get_client_info),
    context: Optional[SessionContext] = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Complete passkey registration and sign the account in.

    Recovery codes appear in the response only when a new batch was
    generated; they are never retrievable again.
    """
    account = await AccountService(db).get_by_email(payload.email)
    if account is None:
        raise ChallengeExpiredOrMissing(f"no account for {payload.email}")

    webauthn_service = WebAuthnService(db)
    await authorize_registration(account, context, webauthn_service)
    outcome = await webauthn_service.finish_registration(account.id, payload.response, client)

    issued = await SessionService(db).issue(account, AuthMethod.PASSKEY, client)
    set_session_cookie(response, issued)

    return RegistrationVerifyResponse(
        recovery_codes=outcome.recovery_codes,
        warning=RECOVERY_CODES_NOTICE if outcome.recovery_codes else None,
    )


@router.post("/authenticate/options", response_model=CeremonyOptionsResponse)
@limiter.limit(AUTH_LIMIT)
async def authentication_options(
    request: Request,
    payload: PasskeyEmailRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Begin passkey sign-in."""
    try:
        options = await WebAuthnService(db).begin_authentication(payload.email, client)
    except (AccountNotFound, NoPasskeyAvailable) as e:
        logger.info(f"Passkey sign-in unavailable: {e}")
        raise GenericLoginFailure(str(e))
    return CeremonyOptionsResponse(options=options)


@router.post("/authenticate/verify", response_model=OkResponse)
@limiter.limit(AUTH_LIMIT)
async def authentication_verify(
    request: Request,
    response: Response,
    payload: PasskeyCeremonyFinish,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Complete passkey sign-in and set the session cookie."""
    try:
        outcome = await WebAuthnService(db).finish_authentication(
            payload.email, payload.response, client
        )
    except AccountNotFound as e:
        logger.info(f"Passkey sign-in unavailable: {e}")
        raise GenericLoginFailure(str(e))
    except (AssertionInvalid, CredentialNotRecognized) as e:
        raise VerificationFailed(str(e))

    issued = await SessionService(db).issue(outcome.account, AuthMethod.PASSKEY, client)
    set_session_cookie(response, issued)
    return OkResponse()


@router.post("/status", response_model=PasskeyStatusResponse)
@limiter.limit(AUTH_LIMIT)
async def passkey_status(
    request: Request,
    payload: PasskeyEmailRequest,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Tell the client which sign-in paths are open for an email."""
    status = await WebAuthnService(db).status(payload.email)
    return PasskeyStatusResponse(
        has_user=status.has_user,
        has_passkey=status.has_passkey,
        can_use_passkey=status.can_use_passkey,
    )


@router.get("/list", response_model=CredentialList)
async def list_passkeys(
    context: SessionContext = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    credentials = await WebAuthnService(db).get_account_credentials(context.account.id)
    return CredentialList(passkeys=[CredentialResponse.from_model(c) for c in credentials])


@router.delete("/remove", response_model=OkResponse)
async def remove_passkey(
    payload: PasskeyRemoveRequest,
    client: ClientInfo = Depends(get_client_info),
    context: SessionContext = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    await WebAuthnService(db).remove_credential(context.account, payload.passkey_id, client)
    return OkResponse()
