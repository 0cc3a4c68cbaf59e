"""Request rate limiting for credential-checking endpoints."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from esg_auth.config import settings

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)

AUTH_LIMIT = settings.rate_limit_auth


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit exceeded: {request.method} {request.url.path} ({exc.detail})")
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "code": "rate_limited",
            "message": "Too many requests. Please try again later.",
        },
        headers={"Retry-After": "60"},
    )


def configure_rate_limiting(app: FastAPI) -> Limiter:
    """Attach the limiter to the app and register its error handler."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    return limiter
