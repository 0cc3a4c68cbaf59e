"""Magic link sign-in endpoints."""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from esg_auth.config import settings
from esg_auth.database import get_db
from esg_auth.errors import MagicLinkInvalid
from esg_auth.schemas.auth import MagicLinkRequest, OkResponse
from esg_auth.security.auth import set_session_cookie
from esg_auth.security.client_info import ClientInfo, get_client_info
from esg_auth.security.rate_limiting import AUTH_LIMIT, limiter
from esg_auth.services.email import EmailProvider, get_email_provider
from esg_auth.services.magic_link_service import MagicLinkService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/request", response_model=OkResponse)
@limiter.limit(AUTH_LIMIT)
async def request_magic_link(
    request: Request,
    payload: MagicLinkRequest,
    client: ClientInfo = Depends(get_client_info),
    provider: EmailProvider = Depends(get_email_provider),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Email a single-use sign-in link.

    The response is the same whether or not an account exists for the email.
    """
    await MagicLinkService(db, provider).request_link(payload.email, payload.redirect_to, client)
    return OkResponse()


def redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=303)
    response.headers["Cache-Control"] = "no-store"
    return response


def failure_redirect(reason: str) -> RedirectResponse:
    query = urlencode({"error": f"magic-link-{reason}"})
    return redirect(f"{settings.magic_link_error_redirect}?{query}")


@router.get("/verify")
async def verify_magic_link(
    token: Optional[str] = Query(None),
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """
    Redeem the link, set the session cookie and redirect into the app.

    The link is opened from an email, so failures redirect to the sign-in
    page with ``error=magic-link-<reason>`` instead of returning JSON.
    """
    try:
        outcome = await MagicLinkService(db).consume(token or "", client)
    except MagicLinkInvalid as e:
        logger.warning(f"Magic link verification failed ({e.reason}): {e}")
        return failure_redirect(e.reason)
    except Exception:
        logger.error("Unexpected magic link verification error", exc_info=True)
        await db.rollback()
        return failure_redirect("unexpected")

    response = redirect(outcome.redirect_to)
    set_session_cookie(response, outcome.issued)
    return response
