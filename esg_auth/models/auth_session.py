"""Server-side session records backing the signed session cookie."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from esg_auth.database import Base


class AuthMethod(str, Enum):
    PASSKEY = "passkey"
    RECOVERY_CODE = "recovery_code"
    MAGIC_LINK = "magic_link"
    PASSWORD = "password"


class AuthSession(Base):
    """
    Evidence of a successful authentication.

    The cookie carries a JWT whose ``jti`` must match ``token_jti`` here;
    deleting the row revokes the cookie regardless of its signature.
    """

    __tablename__ = "auth_sessions"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        index=True,
    )

    account_id = Column(
        String(36),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token_jti = Column(String(64), unique=True, nullable=False, index=True)

    role = Column(String(32), nullable=False, doc="Account role at issue time")

    method = Column(String(32), nullable=False)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)

    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuthSession(id={self.id}, account_id={self.account_id}, method='{self.method}')>"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at
