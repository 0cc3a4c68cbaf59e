"""Signed session token encoding."""

import uuid
from datetime import datetime
from typing import Optional

from jose import JWTError, jwt

from esg_auth.config import settings
from esg_auth.schemas.auth import TokenData


def create_access_token(data: dict, expires_at: datetime, jti: Optional[str] = None) -> str:
    """
    Create a JWT for a session.

    Args:
        data: Token payload data (``sub`` and ``role`` at minimum)
        expires_at: Absolute expiry (naive UTC)
        jti: Token identifier; generated when omitted

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    to_encode.update({
        "exp": expires_at,
        "iat": datetime.utcnow(),
        "jti": jti or str(uuid.uuid4()),
    })

    return jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.algorithm
    )


def verify_token(token: str) -> Optional[TokenData]:
    """
    Verify and decode a JWT token.

    Returns:
        TokenData: Decoded token data or None if the signature, expiry or
        claims are invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
    except JWTError:
        return None

    sub = payload.get("sub")
    jti = payload.get("jti")
    if not sub or not jti:
        return None

    return TokenData(
        sub=sub,
        role=payload.get("role", ""),
        exp=datetime.utcfromtimestamp(payload.get("exp", 0)),
        iat=datetime.utcfromtimestamp(payload.get("iat", 0)),
        jti=jti,
    )
