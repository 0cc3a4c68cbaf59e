"""Session cookie dependencies."""

import logging
from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.database import get_db
from esg_auth.errors import SessionExpiredOrInvalid, Unauthenticated
from esg_auth.services.session_service import IssuedSession, SessionContext, SessionService

logger = logging.getLogger(__name__)


def set_session_cookie(response: Response, issued: IssuedSession, admin: bool = False) -> None:
    """Attach the session cookie; ``Max-Age`` follows the session lifetime."""
    cookie = settings.get_cookie_config(admin=admin)
    cookie["max_age"] = issued.max_age
    response.set_cookie(value=issued.token, **cookie)


def clear_session_cookie(response: Response, admin: bool = False) -> None:
    cookie = settings.get_cookie_config(admin=admin)
    response.delete_cookie(
        key=cookie["key"],
        path=cookie["path"],
        domain=cookie["domain"],
        secure=cookie["secure"],
        httponly=cookie["httponly"],
        samesite=cookie["samesite"],
    )


async def _resolve(request: Request, db: AsyncSession, admin: bool) -> SessionContext:
    cookie_name = settings.admin_session_cookie_name if admin else settings.session_cookie_name
    token = request.cookies.get(cookie_name)
    if not token:
        raise Unauthenticated(f"no {cookie_name} cookie")

    context = await SessionService(db).validate(token)
    if admin and not context.role.is_admin:
        raise SessionExpiredOrInvalid(f"admin cookie held by non-admin {context.account.id}")
    return context


async def get_current_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SessionContext:
    """
    Get the caller's end-user session.

    Raises:
        Unauthenticated: No session cookie
        SessionExpiredOrInvalid: Cookie present but not valid
    """
    return await _resolve(request, db, admin=False)


async def get_optional_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[SessionContext]:
    try:
        return await _resolve(request, db, admin=False)
    except (Unauthenticated, SessionExpiredOrInvalid):
        return None


async def get_admin_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> SessionContext:
    """Get the caller's admin panel session."""
    return await _resolve(request, db, admin=True)


async def get_optional_admin_session(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[SessionContext]:
    try:
        return await _resolve(request, db, admin=True)
    except (Unauthenticated, SessionExpiredOrInvalid):
        return None
