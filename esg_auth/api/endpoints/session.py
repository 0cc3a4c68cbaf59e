"""End-user session, logout and recovery code endpoints."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.database import get_db
from esg_auth.models.auth_session import AuthMethod
from esg_auth.schemas.auth import (
    AccountSummary,
    OkResponse,
    RecoveryCodeLoginRequest,
    RecoveryCodeLoginResponse,
    RecoveryCodesResponse,
    SessionResponse,
)
from esg_auth.security.auth import (
    clear_session_cookie,
    get_current_session,
    get_optional_session,
    set_session_cookie,
)
from esg_auth.security.client_info import ClientInfo, get_client_info
from esg_auth.security.rate_limiting import AUTH_LIMIT, limiter
from esg_auth.services.recovery_code_service import RecoveryCodeService
from esg_auth.services.session_service import SessionContext, SessionService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/session", response_model=SessionResponse)
async def current_session(context: SessionContext = Depends(get_current_session)) -> Any:
    """Return the signed-in account."""
    return SessionResponse(
        account=AccountSummary.model_validate(context.account),
        method=context.session.method,
        expires_at=context.session.expires_at,
    )


@router.post("/logout", response_model=OkResponse)
async def logout(
    response: Response,
    client: ClientInfo = Depends(get_client_info),
    context: Optional[SessionContext] = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Revoke the current session. Succeeds even without one."""
    if context is not None:
        await SessionService(db).revoke(context.session.token_jti, client)
    clear_session_cookie(response)
    return OkResponse()


@router.post(
    "/recovery-code",
    response_model=RecoveryCodeLoginResponse,
    response_model_exclude_none=True,
)
@limiter.limit(AUTH_LIMIT)
async def recovery_code_login(
    request: Request,
    response: Response,
    payload: RecoveryCodeLoginRequest,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Sign in with a one-time recovery code when no passkey is at hand."""
    outcome = await RecoveryCodeService(db).consume(payload.email, payload.code, client)

    issued = await SessionService(db).issue(outcome.account, AuthMethod.RECOVERY_CODE, client)
    set_session_cookie(response, issued)

    return RecoveryCodeLoginResponse(
        remaining_codes=outcome.remaining,
        session_expires_at=issued.expires_at,
        warning=outcome.warning,
    )


@router.post("/recovery-codes/regenerate", response_model=RecoveryCodesResponse)
async def regenerate_recovery_codes(
    context: SessionContext = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Replace every recovery code of the signed-in account."""
    codes = await RecoveryCodeService(db).regenerate(context.account.id)
    return RecoveryCodesResponse(recovery_codes=codes)
